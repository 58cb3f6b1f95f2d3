"""
Server 侧（短生命周期进程）：stdio JSON-RPC dispatcher 与 Waiter。

由 host 以 `python -m autotester.server --feedback-dir <dir>` 拉起。
"""

from __future__ import annotations

from autotester.server.dispatcher import McpDispatcher, build_tool_descriptor
from autotester.server.framing import LineFramer
from autotester.server.stdio import StdioServer
from autotester.server.waiter import TIMEOUT_TEXT, FeedbackCall, FeedbackWaiter, WaitState

__all__ = [
    "FeedbackCall",
    "FeedbackWaiter",
    "LineFramer",
    "McpDispatcher",
    "StdioServer",
    "TIMEOUT_TEXT",
    "WaitState",
    "build_tool_descriptor",
]
