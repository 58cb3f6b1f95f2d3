"""
Host 侧（长生命周期 UI 进程）：session 生命周期、request poller、responder 与面板控制器。
"""

from __future__ import annotations

from autotester.host.conversation import ChatMessage, ConversationLog, FeedbackHistory
from autotester.host.extension import BridgeHost, ServerDefinition
from autotester.host.panel import PanelController, PanelView
from autotester.host.poller import RequestPoller
from autotester.host.responder import PendingFeedback, Responder

__all__ = [
    "BridgeHost",
    "ChatMessage",
    "ConversationLog",
    "FeedbackHistory",
    "PanelController",
    "PanelView",
    "PendingFeedback",
    "RequestPoller",
    "Responder",
    "ServerDefinition",
]
