"""
JSON-RPC 2.0 dispatcher（MCP 最小子集：initialize / tools/list / tools/call）。

路由：
- `initialize`：返回协议版本、capabilities 与 serverInfo（总是成功）
- `initialized` / `notifications/*`：通知，不产生响应
- `tools/list`：返回唯一的动态命名工具（名称/说明来自 config 快照）
- `tools/call`：名称匹配时调用 Waiter；否则 -32602
- 其它方法：-32601

约束：
- 坏 JSON / 非 object 帧：丢弃（不响应、不崩溃），通过 `on_malformed` hook 可观测；
- 同一时刻只允许一个 tools/call 等待人类回答；第二个并发调用返回 -32000。
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Callable, Dict, Optional

from autotester import __version__
from autotester.config.mirror import ConfigMirror
from autotester.core.errors import JsonRpcError
from autotester.ipc.messages import ConfigSnapshot
from autotester.ipc.session import ChannelSession
from autotester.server.waiter import FeedbackWaiter

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
SERVER_NAME = "auto-tester"
DEFAULT_CALL_DESCRIPTION = "Changes made. Please review."

PENDING_REQUEST = -32000
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

FrameHook = Callable[[str, Exception], None]


def _log_dropped_frame(line: str, exc: Exception) -> None:
    """默认的坏帧诊断：写 debug 日志。"""

    logger.debug("Dropping malformed JSON-RPC frame (%s): %.200s", exc, line)


def build_tool_descriptor(config: ConfigSnapshot) -> Dict[str, Any]:
    """由 config 快照构造 tools/list 中的工具描述。"""

    return {
        "name": config.tool_name,
        "description": config.tool_description,
        "inputSchema": {
            "type": "object",
            "properties": {"description": {"type": "string", "description": "What was changed"}},
        },
    }


def is_notification(frame: Dict[str, Any]) -> bool:
    """是否为通知帧（不产生响应）。"""

    method = str(frame.get("method") or "")
    return method == "initialized" or method.startswith("notifications/")


class CallSlot:
    """
    “是否有 tools/call 正在等待回答”的显式单槽状态。

    状态：
    - 空：没有调用在途
    - 持有 request id：有一个调用在途（其余调用被拒绝）
    """

    _EMPTY = object()

    def __init__(self) -> None:
        """创建空槽位。"""

        self._lock = threading.Lock()
        self._current: Any = self._EMPTY

    @property
    def busy(self) -> bool:
        """是否有调用在途。"""

        with self._lock:
            return self._current is not self._EMPTY

    def try_acquire(self, request_id: Any) -> bool:
        """尝试占用槽位；已被占用时返回 False。"""

        with self._lock:
            if self._current is not self._EMPTY:
                return False
            self._current = request_id
            return True

    def release(self) -> None:
        """释放槽位。"""

        with self._lock:
            self._current = self._EMPTY


class McpDispatcher:
    """
    单个 session channel 上的 JSON-RPC 路由器。

    参数：
    - session：channel 上下文（timings.feedback_timeout_ms 为 tools/call 的等待上限）
    - waiter：可选；默认 `FeedbackWaiter(session)`
    - config_mirror：可选；默认读取同一 session 的 config 快照
    - on_malformed：坏帧诊断回调（默认写 debug 日志）
    """

    def __init__(
        self,
        session: ChannelSession,
        *,
        waiter: Optional[FeedbackWaiter] = None,
        config_mirror: Optional[ConfigMirror] = None,
        on_malformed: Optional[FrameHook] = None,
    ) -> None:
        """创建 dispatcher。"""

        self._session = session
        self._config = config_mirror or ConfigMirror(session)
        self._waiter = waiter or FeedbackWaiter(session, config_mirror=self._config)
        self._on_malformed = on_malformed or _log_dropped_frame
        self.slot = CallSlot()

    def parse_frame(self, line: str) -> Optional[Dict[str, Any]]:
        """解析一行 JSON；坏帧返回 None（并回调诊断 hook）。"""

        try:
            frame = json.loads(line)
        except ValueError as e:
            self._report(line, e)
            return None
        if not isinstance(frame, dict):
            self._report(line, ValueError("frame must be a JSON object"))
            return None
        return frame

    def _report(self, line: str, exc: Exception) -> None:
        """调用诊断 hook（hook 自身异常只记录日志）。"""

        try:
            self._on_malformed(line, exc)
        except Exception:
            logger.warning("Malformed-frame hook raised", exc_info=True)

    def handle_line(self, line: str, *, cancel: Optional[threading.Event] = None) -> Optional[Dict[str, Any]]:
        """解析并处理一行；坏帧与通知返回 None。"""

        frame = self.parse_frame(line)
        if frame is None:
            return None
        return self.handle_frame(frame, cancel=cancel)

    def handle_frame(self, frame: Dict[str, Any], *, cancel: Optional[threading.Event] = None) -> Optional[Dict[str, Any]]:
        """
        处理一个请求帧。

        返回：
        - dict：JSON-RPC response（result 或 error）
        - None：通知帧（不响应）
        """

        if is_notification(frame):
            return None
        request_id = frame.get("id")
        method = str(frame.get("method") or "")
        params = frame.get("params")
        try:
            result = self._route(method, params if isinstance(params, dict) else {}, request_id, cancel)
        except JsonRpcError as e:
            return {"jsonrpc": "2.0", "id": request_id, "error": e.to_error_object()}
        except Exception as e:
            logger.warning("Unhandled error in %s", method, exc_info=True)
            return {"jsonrpc": "2.0", "id": request_id, "error": {"code": INTERNAL_ERROR, "message": str(e) or "internal error"}}
        return {"jsonrpc": "2.0", "id": request_id, "result": result}

    def _route(self, method: str, params: Dict[str, Any], request_id: Any, cancel: Optional[threading.Event]) -> Dict[str, Any]:
        """按 method 路由到处理逻辑；未知方法抛 -32601。"""

        if method == "initialize":
            return {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {"tools": {}},
                "serverInfo": {"name": SERVER_NAME, "version": __version__},
            }
        if method == "tools/list":
            return {"tools": [build_tool_descriptor(self._config.read())]}
        if method == "tools/call":
            return self._handle_tools_call(params, request_id, cancel)
        raise JsonRpcError(METHOD_NOT_FOUND, f"Method not found: {method}")

    def _handle_tools_call(self, params: Dict[str, Any], request_id: Any, cancel: Optional[threading.Event]) -> Dict[str, Any]:
        """tools/call：校验工具名、占用槽位并等待人类回答。"""

        name = params.get("name")
        args = params.get("arguments")
        if not isinstance(args, dict):
            args = {}
        config = self._config.read()
        if name != config.tool_name:
            raise JsonRpcError(INVALID_PARAMS, f"Unknown tool: {name}")

        description = str(args.get("description") or "").strip() or DEFAULT_CALL_DESCRIPTION
        if not self.slot.try_acquire(request_id):
            raise JsonRpcError(PENDING_REQUEST, "Feedback request already pending")
        try:
            content = self._waiter.request_feedback(
                description,
                self._session.timings.feedback_timeout_ms,
                cancel=cancel,
            )
        finally:
            self.slot.release()
        return {"content": content}
