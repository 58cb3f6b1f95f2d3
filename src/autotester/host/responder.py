"""
Responder（host 侧）：人类提交回答时写出 feedback 文件，并唤醒进程内等待者。

进程内等待使用显式单槽 `PendingFeedback`：
- 空闲：没有本地调用在等待下一条回答；
- 已挂起：有一个本地调用在等待；再次 `arm()` 抛 `FeedbackAlreadyPendingError`。
"""

from __future__ import annotations

import logging
import threading
from typing import Optional, Sequence

from autotester.core.errors import FeedbackAlreadyPendingError
from autotester.ipc.messages import FeedbackMessage
from autotester.ipc.session import ChannelSession

logger = logging.getLogger(__name__)


class PendingFeedback:
    """“等待下一条人类回答”的显式单槽状态。"""

    def __init__(self) -> None:
        """创建空闲状态的槽位。"""

        self._lock = threading.Lock()
        self._armed = False
        self._event = threading.Event()
        self._value: Optional[str] = None

    @property
    def armed(self) -> bool:
        """是否有本地等待在途。"""

        with self._lock:
            return self._armed

    def arm(self) -> None:
        """
        挂起一个等待。

        异常：
        - FeedbackAlreadyPendingError：已有等待在途
        """

        with self._lock:
            if self._armed:
                raise FeedbackAlreadyPendingError("a local feedback wait is already pending")
            self._armed = True
            self._value = None
            self._event.clear()

    def resolve(self, text: str) -> bool:
        """用一条回答结束等待；无等待时返回 False。"""

        with self._lock:
            if not self._armed:
                return False
            self._armed = False
            self._value = text
            self._event.set()
            return True

    def wait(self, timeout_sec: Optional[float] = None) -> Optional[str]:
        """
        阻塞直到 resolve 或超时。

        返回：
        - str：回答文本
        - None：超时（槽位随之释放）
        """

        if self._event.wait(timeout_sec):
            with self._lock:
                return self._value
        with self._lock:
            if self._event.is_set():
                return self._value
            self._armed = False
        return None


class Responder:
    """
    把人类回答写入 channel 的 feedback 控制文件。

    参数：
    - session：channel 上下文
    """

    def __init__(self, session: ChannelSession) -> None:
        """绑定 session channel。"""

        self._session = session
        self.pending = PendingFeedback()

    def submit(self, text: str, images: Optional[Sequence[str]] = None) -> bool:
        """
        提交一次回答。

        参数：
        - text：回答文本
        - images：data URI 或裸 base64 图片列表（按顺序）

        返回：
        - True：已写出 feedback
        - False：文本为空且无图片（忽略）
        """

        text = text or ""
        imgs = [str(x) for x in (images or [])]
        if not text.strip() and not imgs:
            return False
        msg = FeedbackMessage(feedback=text, images=imgs)
        self._session.mailbox.write("feedback", msg.model_dump())
        if self.pending.resolve(text):
            logger.debug("Resolved local feedback wait")
        return True
