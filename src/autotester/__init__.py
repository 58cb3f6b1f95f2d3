"""
autotester：让编码 agent 在任务中途向人类提问并阻塞等待回答的文件 IPC bridge。

组成：
- `autotester.ipc`：session channel 目录与 mailbox（两进程之间唯一的同步原语）
- `autotester.host`：长生命周期 UI 进程一侧（poller / responder / 面板）
- `autotester.server`：每个 agent 会话一个的 stdio JSON-RPC 进程（dispatcher / waiter）
- `autotester.config`：用户设置与 config 快照镜像
"""

from __future__ import annotations

__version__ = "1.0.0"

__all__ = ["__version__"]
