"""
文件 IPC：session channel、mailbox 与消息结构。

host 侧与 server 侧是两个互不共享内存的进程；两者之间唯一的同步原语是
channel 目录里控制文件的“存在/不存在”。
"""

from __future__ import annotations

from autotester.ipc.mailbox import Mailbox
from autotester.ipc.messages import ConfigSnapshot, FeedbackMessage, RequestMessage
from autotester.ipc.paths import ChannelPaths, get_channel_paths
from autotester.ipc.session import BridgeTimings, ChannelSession

__all__ = [
    "BridgeTimings",
    "ChannelPaths",
    "ChannelSession",
    "ConfigSnapshot",
    "FeedbackMessage",
    "Mailbox",
    "RequestMessage",
    "get_channel_paths",
]
