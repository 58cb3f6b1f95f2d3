from __future__ import annotations

from autotester.core.errors import (
    AutoTesterError,
    ChannelUnavailableError,
    FeedbackAlreadyPendingError,
    FrameworkError,
    FrameworkIssue,
    JsonRpcError,
)

__all__ = [
    "AutoTesterError",
    "ChannelUnavailableError",
    "FeedbackAlreadyPendingError",
    "FrameworkError",
    "FrameworkIssue",
    "JsonRpcError",
]
