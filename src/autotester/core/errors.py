"""
Bridge 内部错误分类（异常类型）。

说明：
- 文件 IPC 的“瞬时 IO / 坏 payload”不走异常（由下一次 poll tick 自然重试）；
- 协议错误以 `JsonRpcError` 在 dispatcher 内部传递，最终映射为 JSON-RPC error 对象；
- 唯一的致命错误是 channel 目录无法创建（`ChannelUnavailableError`）。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


class AutoTesterError(Exception):
    """Bridge 内部错误基类（不建议直接抛出）。"""


@dataclass(frozen=True)
class FrameworkIssue:
    """结构化问题对象（CLI 输出 errors 时使用）。"""

    code: str
    message: str
    details: Dict[str, Any]


class FrameworkError(AutoTesterError):
    """结构化错误（英文 `code/message/details`）。"""

    def __init__(self, *, code: str, message: str, details: Dict[str, Any] | None = None) -> None:
        """创建结构化错误。

        参数：
        - `code`：稳定错误码（英文大写下划线）
        - `message`：英文错误消息
        - `details`：结构化上下文信息
        """

        super().__init__(message)
        self.code = code
        self.message = message
        self.details: Dict[str, Any] = details or {}

    def __str__(self) -> str:
        """返回用于日志的字符串表示。"""

        return f"{self.code}: {self.message}"

    def to_issue(self) -> FrameworkIssue:
        """把异常转换为可序列化问题对象。"""

        return FrameworkIssue(code=self.code, message=self.message, details=dict(self.details))


class ChannelUnavailableError(FrameworkError):
    """channel 目录无法创建（致命：之后无法进行任何协调）。"""

    def __init__(self, path: str, reason: str) -> None:
        """创建 channel 不可用错误（记录目录与原因）。"""

        super().__init__(
            code="CHANNEL_UNAVAILABLE",
            message="Feedback channel directory cannot be created.",
            details={"path": path, "reason": reason},
        )


class FeedbackAlreadyPendingError(AutoTesterError):
    """同一 channel 上已有一个等待中的 feedback 请求。"""


class JsonRpcError(AutoTesterError):
    """
    JSON-RPC 协议错误（映射为 response.error）。

    参数：
    - code：JSON-RPC 错误码（例如 -32601 / -32602）
    - message：可读错误信息
    """

    def __init__(self, code: int, message: str) -> None:
        """创建协议错误。"""

        super().__init__(message)
        self.code = int(code)
        self.message = str(message)

    def to_error_object(self) -> Dict[str, Any]:
        """转换为 JSON-RPC `error` 对象。"""

        return {"code": self.code, "message": self.message}
