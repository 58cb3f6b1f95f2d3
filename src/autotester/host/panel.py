"""
面板控制器（host 侧 UI 的状态机与消息协议）。

面板接收的消息：
- `{command:"showPrompt", message[, skipAddMessage]}` / `{command:"enableInput"}`
- `{command:"config", enterToSubmit, ctrlEnterToSubmit}`
- `{command:"restoreMessages", messages}` / `{command:"focus"}` / `{command:"submitted", success}`

面板发回的消息：
- `{command:"submit", text, images}` / `{command:"clear"}` / `{command:"ready"}`

渲染本身不在本模块范围内：任何实现 `PanelView` 协议的对象都可以接入
（终端实现见 `autotester.host.console`）。
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import threading
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, runtime_checkable

from autotester.config.settings import AutoTesterSettings
from autotester.host.conversation import ConversationLog, FeedbackHistory
from autotester.host.responder import Responder

logger = logging.getLogger(__name__)

WAITING_PROMPT = "Agent is waiting for your feedback..."


@runtime_checkable
class PanelView(Protocol):
    """面板渲染端需要实现的最小接口。"""

    def post_message(self, message: Dict[str, Any]) -> None:
        """把一条消息交给面板（不得长时间阻塞）。"""

    def reveal(self) -> None:
        """请求把面板切到前台。"""


@dataclass
class PanelState:
    """面板输入状态（面板被隐藏/重建后据此恢复）。"""

    input_enabled: bool = False
    pending_prompt: Optional[str] = None


class PanelController:
    """
    面板状态与消息路由（对应编辑器侧边栏 view provider）。

    参数：
    - responder：提交回答时写 feedback 文件
    - settings_provider：返回当前设置（用于发送面板 config）
    - history：可选；已提交回答的历史
    """

    def __init__(
        self,
        *,
        responder: Responder,
        settings_provider: Callable[[], AutoTesterSettings],
        history: Optional[FeedbackHistory] = None,
    ) -> None:
        """创建控制器（尚未绑定渲染端）。"""

        self._responder = responder
        self._settings_provider = settings_provider
        self.history = history or FeedbackHistory()
        self.log = ConversationLog()
        self.state = PanelState()
        self._lock = threading.RLock()
        self._view: Optional[PanelView] = None

    def attach(self, view: PanelView) -> None:
        """绑定渲染端（面板可见后调用；之后等待其发出 `ready`）。"""

        self._view = view

    def _post(self, message: Dict[str, Any]) -> None:
        """向渲染端发送消息（未绑定时丢弃；渲染端异常只记录日志）。"""

        view = self._view
        if view is None:
            return
        try:
            view.post_message(message)
        except Exception:
            logger.warning("Posting %s to panel failed", message.get("command"), exc_info=True)

    def reveal(self) -> None:
        """请求面板切到前台（best-effort）。"""

        view = self._view
        if view is not None:
            try:
                view.reveal()
            except Exception:
                logger.warning("Revealing panel failed", exc_info=True)

    def handle_message(self, message: Mapping[str, Any]) -> None:
        """处理面板发回的一条消息（未知 command 忽略）。"""

        command = message.get("command")
        if command == "submit":
            images = message.get("images")
            self.handle_submit(str(message.get("text") or ""), list(images) if isinstance(images, list) else None)
        elif command == "clear":
            with self._lock:
                self.history.clear()
                self.log.clear()
        elif command == "ready":
            self.send_config()
            self.restore_state()
        else:
            logger.debug("Ignoring panel message %r", command)

    def handle_submit(self, text: str, images: Optional[list] = None) -> bool:
        """
        人类提交回答：记录对话、写 feedback 文件、关闭输入。

        返回：
        - False：文本为空且无图片（忽略）
        """

        if not text.strip() and not images:
            return False
        with self._lock:
            self.log.add_user(text, images)
            self.state.input_enabled = False
            self.state.pending_prompt = None
            self.history.add(text)
        self._responder.submit(text, images)
        self._post({"command": "submitted", "success": True})
        return True

    def restore_state(self) -> None:
        """面板重新可见时回放对话并恢复输入状态。"""

        with self._lock:
            messages = self.log.to_wire()
            enabled = self.state.input_enabled or bool(self.state.pending_prompt)
            pending = self.state.pending_prompt
        if messages:
            self._post({"command": "restoreMessages", "messages": messages})
        if enabled:
            self._post({"command": "enableInput"})
            if pending:
                self._post({"command": "showPrompt", "message": pending, "skipAddMessage": True})

    def send_config(self) -> None:
        """把当前输入行为设置发给面板。"""

        self._post(self._settings_provider().panel_config_message())

    def show_prompt(self, message: str) -> None:
        """展示 agent 的提问并开放输入。"""

        with self._lock:
            if message and message.strip():
                self.log.add_agent(message)
            self.state.input_enabled = True
            self.state.pending_prompt = message
        self._post({"command": "showPrompt", "message": message})
        self.reveal()

    def focus_input(self) -> None:
        """请求面板把焦点放到输入框。"""

        self._post({"command": "focus"})

    def wait_for_feedback(self, timeout_sec: Optional[float] = None) -> Optional[str]:
        """
        进程内等待下一条回答（不经过 server 侧）。

        异常：
        - FeedbackAlreadyPendingError：已有本地等待在途
        """

        self._responder.pending.arm()
        self.show_prompt(WAITING_PROMPT)
        return self._responder.pending.wait(timeout_sec)
