"""
Session channel（一次 host 会话私有的 mailbox 目录）。

说明：
- host 侧在启动时 `ChannelSession.create()`：生成新的 instance id 并创建
  `<root>/<instance_id>/`，不同 host 会话的目录互不相交；
- server 侧用 `ChannelSession.attach()` 绑定到 host 传入的目录（不拥有其生命周期）；
- `cleanup()` 整体删除目录：只执行一次，容忍目录已被部分/全部删除。

该对象作为显式上下文在组件之间以参数传递（不使用模块级全局状态），
因此同一测试进程里可以同时存在多个 session。
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import secrets
import shutil
import threading
from pathlib import Path
from typing import Optional

from autotester.core.errors import ChannelUnavailableError
from autotester.ipc.mailbox import Mailbox, MalformedHook
from autotester.ipc.paths import ChannelPaths, default_channel_root, get_channel_paths

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BridgeTimings:
    """
    轮询节拍与超时（毫秒）。

    字段：
    - poll_interval_ms：host poller 与 server waiter 的固定轮询间隔
    - settle_delay_ms：写出 request 后、开始等待 feedback 前的固定延迟
    - feedback_timeout_ms：一次 tools/call 等待人类回答的上限
    """

    poll_interval_ms: int = 500
    settle_delay_ms: int = 500
    feedback_timeout_ms: int = 300_000

    @property
    def poll_interval_sec(self) -> float:
        """轮询间隔（秒）。"""

        return self.poll_interval_ms / 1000.0

    @property
    def settle_delay_sec(self) -> float:
        """settle delay（秒）。"""

        return self.settle_delay_ms / 1000.0


class ChannelSession:
    """
    一个 session channel 的上下文值（paths + mailbox + timings）。

    参数：
    - channel_dir：channel 目录
    - instance_id：会话 id（attach 场景下取目录名）
    - timings：轮询节拍与超时
    - on_malformed：坏 payload 的诊断回调（透传给 Mailbox）
    """

    def __init__(
        self,
        *,
        channel_dir: Path,
        instance_id: Optional[str] = None,
        timings: Optional[BridgeTimings] = None,
        on_malformed: Optional[MalformedHook] = None,
    ) -> None:
        """创建上下文（不创建目录；见 `create()` / `ensure()`）。"""

        self._paths: ChannelPaths = get_channel_paths(channel_dir=channel_dir)
        self.instance_id = str(instance_id or self._paths.channel_dir.name)
        self.timings = timings or BridgeTimings()
        self.mailbox = Mailbox(self._paths, on_malformed=on_malformed)
        self._cleanup_lock = threading.Lock()
        self._cleaned = False

    @classmethod
    def create(
        cls,
        *,
        root: Optional[Path] = None,
        timings: Optional[BridgeTimings] = None,
        on_malformed: Optional[MalformedHook] = None,
    ) -> "ChannelSession":
        """
        创建一个全新的 session channel（host 侧启动时调用）。

        异常：
        - ChannelUnavailableError：目录无法创建（致命）
        """

        instance_id = secrets.token_hex(8)
        base = Path(root) if root is not None else default_channel_root()
        session = cls(channel_dir=base / instance_id, instance_id=instance_id, timings=timings, on_malformed=on_malformed)
        session.ensure()
        logger.info("Feedback channel created at %s", session.paths.channel_dir)
        return session

    @classmethod
    def attach(
        cls,
        channel_dir: Path,
        *,
        timings: Optional[BridgeTimings] = None,
        on_malformed: Optional[MalformedHook] = None,
    ) -> "ChannelSession":
        """绑定到一个已知目录（server 侧使用；不存在时按需创建）。"""

        return cls(channel_dir=channel_dir, timings=timings, on_malformed=on_malformed)

    @property
    def paths(self) -> ChannelPaths:
        """channel 路径集合。"""

        return self._paths

    def ensure(self) -> None:
        """确保 channel 目录存在。"""

        try:
            self._paths.channel_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ChannelUnavailableError(str(self._paths.channel_dir), str(e)) from e

    def cleanup(self) -> bool:
        """
        删除整个 channel 目录（仅执行一次；重复调用为 no-op）。

        返回：
        - True：本次调用执行了删除
        - False：此前已执行过
        """

        with self._cleanup_lock:
            if self._cleaned:
                return False
            self._cleaned = True
        shutil.rmtree(self._paths.channel_dir, ignore_errors=True)
        logger.info("Feedback channel removed: %s", self._paths.channel_dir)
        return True
