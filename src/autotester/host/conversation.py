from __future__ import annotations

from dataclasses import dataclass
import threading
from typing import Any, Dict, List, Literal, Optional, Sequence

Author = Literal["user", "agent"]


@dataclass(frozen=True)
class ChatMessage:
    """对话记录中的一条消息（面板恢复时按顺序回放）。"""

    text: str
    type: Author
    images: Optional[List[str]] = None

    def to_wire(self) -> Dict[str, Any]:
        """转换为面板 `restoreMessages` 使用的形状。"""

        obj: Dict[str, Any] = {"text": self.text, "type": self.type}
        if self.images:
            obj["images"] = list(self.images)
        return obj


class ConversationLog:
    """
    有序对话记录（只存在于 host 进程内存中，不跨重启持久化）。

    说明：
    - prompt/answer 时追加；显式 clear 时清空；
    - 可被 poller 线程与面板输入线程同时访问（内部加锁）。
    """

    def __init__(self) -> None:
        """创建空的对话记录。"""

        self._lock = threading.Lock()
        self._messages: List[ChatMessage] = []

    def add_agent(self, text: str) -> None:
        """追加一条 agent 提问。"""

        with self._lock:
            self._messages.append(ChatMessage(text=text, type="agent"))

    def add_user(self, text: str, images: Optional[Sequence[str]] = None) -> None:
        """追加一条人类回答（纯图片回答记为 `(image)`）。"""

        with self._lock:
            self._messages.append(ChatMessage(text=text or "(image)", type="user", images=list(images) if images else None))

    def clear(self) -> None:
        """清空对话记录。"""

        with self._lock:
            self._messages = []

    def messages(self) -> List[ChatMessage]:
        """返回消息快照（按时间顺序）。"""

        with self._lock:
            return list(self._messages)

    def to_wire(self) -> List[Dict[str, Any]]:
        """返回可直接发给面板的消息列表。"""

        return [m.to_wire() for m in self.messages()]

    def __len__(self) -> int:
        """返回消息条数。"""

        with self._lock:
            return len(self._messages)


class FeedbackHistory:
    """已提交回答文本的简单历史（进程内）。"""

    def __init__(self) -> None:
        """创建空历史。"""

        self._entries: List[str] = []

    def add(self, text: str) -> None:
        """记录一条已提交的回答。"""

        self._entries.append(text)

    def clear(self) -> None:
        """清空历史。"""

        self._entries = []

    @property
    def entries(self) -> List[str]:
        """返回历史快照。"""

        return list(self._entries)
