"""
Waiter（server 侧）：写出 request，然后在有限时间内轮询 feedback。

单次调用的状态机：`IDLE -> REQUEST_SENT -> FULFILLED | TIMED_OUT`（两个终态）。
每次调用都使用全新的 `FeedbackCall`，不复用上一次的状态。

并发约束：
- 同一 channel 上的并发 `request_feedback()` 属于调用方责任，本模块不做保护；
  （stdio server 层会拒绝第二个并发 tools/call，见 `autotester.server.dispatcher`）。
"""

from __future__ import annotations

from enum import Enum
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from autotester.config.mirror import ConfigMirror
from autotester.ipc.images import save_feedback_images
from autotester.ipc.messages import ConfigSnapshot, FeedbackMessage, RequestMessage
from autotester.ipc.session import ChannelSession

logger = logging.getLogger(__name__)

TIMEOUT_TEXT = "[Timeout: No feedback received]"

ContentBlock = Dict[str, Any]


class WaitState(str, Enum):
    """单次调用的状态。"""

    IDLE = "idle"
    REQUEST_SENT = "request_sent"
    FULFILLED = "fulfilled"
    TIMED_OUT = "timed_out"


def timeout_result() -> List[ContentBlock]:
    """超时哨兵结果（形状与正常结果一致）。"""

    return [{"type": "text", "text": TIMEOUT_TEXT}]


class FeedbackCall:
    """
    一次 request/feedback 往返（一次性对象）。

    参数：
    - session：channel 上下文
    - config_reader：读取 config 快照（用于 footer）
    - clock：单调时钟（测试可注入）
    """

    def __init__(
        self,
        session: ChannelSession,
        *,
        config_reader: Callable[[], ConfigSnapshot],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """创建一次性调用对象（初始状态 IDLE）。"""

        self._session = session
        self._config_reader = config_reader
        self._clock = clock
        self.state = WaitState.IDLE

    def _poll_once(self) -> Optional[FeedbackMessage]:
        """尝试消费一条 feedback；无效或空回答返回 None。"""

        obj = self._session.mailbox.try_consume("feedback")
        if obj is None:
            return None
        try:
            msg = FeedbackMessage.model_validate(obj)
        except ValidationError:
            logger.debug("Dropping feedback with invalid shape", exc_info=True)
            return None
        if msg.is_empty():
            return None
        return msg

    def _build_result(self, msg: FeedbackMessage) -> List[ContentBlock]:
        """把回答转换为 MCP content blocks（文本 + 图片引用 + footer，随后是图片 block）。"""

        text = msg.feedback
        image_blocks: List[ContentBlock] = []
        if msg.images:
            saved = save_feedback_images(self._session.paths.images_dir, msg.images)
            text += f"\n\n[User attached {len(msg.images)} image(s)]"
            for item in saved:
                text += f"\n- Image {item.index}: {item.path}"
                image_blocks.append(item.payload.to_content_block())
        footer = self._config_reader().footer
        return [{"type": "text", "text": text + footer}, *image_blocks]

    def run(
        self,
        prompt: str,
        *,
        timeout_ms: int,
        cancel: Optional[threading.Event] = None,
    ) -> List[ContentBlock]:
        """
        执行一次往返。

        参数：
        - prompt：展示给人类的文本
        - timeout_ms：总等待上限（从调用开始计时，包含 settle delay）
        - cancel：可选；set 后尽快放弃等待（返回超时哨兵结果）

        返回：
        - 成功：`[{type:text}, *{type:image}]`
        - 超时/放弃：`[{type:text, text:"[Timeout: No feedback received]"}]`
        """

        if self.state is not WaitState.IDLE:
            raise RuntimeError("FeedbackCall is single-use")
        timings = self._session.timings
        stop = cancel or threading.Event()
        deadline = self._clock() + max(int(timeout_ms), 0) / 1000.0

        mailbox = self._session.mailbox
        self._session.ensure()
        # 丢弃上一轮残留的回答，避免把旧 feedback 当作本次结果
        mailbox.discard("feedback")
        mailbox.write("request", RequestMessage(prompt=prompt).model_dump())
        self.state = WaitState.REQUEST_SENT

        settle = min(timings.settle_delay_sec, max(deadline - self._clock(), 0.0))
        if not stop.wait(settle):
            while True:
                msg = self._poll_once()
                if msg is not None:
                    self.state = WaitState.FULFILLED
                    return self._build_result(msg)
                remaining = deadline - self._clock()
                if remaining <= 0:
                    break
                if stop.wait(min(timings.poll_interval_sec, remaining)):
                    break

        self.state = WaitState.TIMED_OUT
        return timeout_result()


class FeedbackWaiter:
    """
    `request_feedback()` 入口：每次调用构造新的 `FeedbackCall`。

    参数：
    - session：channel 上下文
    - config_mirror：可选；默认读取同一 session 的 config 快照
    """

    def __init__(self, session: ChannelSession, *, config_mirror: Optional[ConfigMirror] = None) -> None:
        """绑定 session channel。"""

        self._session = session
        self._config = config_mirror or ConfigMirror(session)

    def new_call(self) -> FeedbackCall:
        """创建新的一次性调用对象。"""

        return FeedbackCall(self._session, config_reader=self._config.read)

    def request_feedback(
        self,
        prompt: str,
        timeout_ms: Optional[int] = None,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> List[ContentBlock]:
        """向人类提问并等待回答（超时返回哨兵结果，不抛异常）。"""

        if timeout_ms is None:
            timeout_ms = self._session.timings.feedback_timeout_ms
        return self.new_call().run(prompt, timeout_ms=timeout_ms, cancel=cancel)
