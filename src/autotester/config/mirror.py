"""
Config 快照镜像（host 写、server 读；两进程不共享内存）。

语义：
- host 侧在启动时与每次设置变更时整体替换写入 `config` 控制文件；
- server 侧在每次 tools/list 与 tools/call 时重新读取（最终一致，允许短暂陈旧）；
- 文件缺失/损坏/字段不合法时回退到内置默认值，dispatcher 不会因此失败。
"""

from __future__ import annotations

import logging
from typing import Union

from pydantic import ValidationError

from autotester.config.settings import AutoTesterSettings
from autotester.ipc.messages import ConfigSnapshot
from autotester.ipc.session import ChannelSession

logger = logging.getLogger(__name__)


class ConfigMirror:
    """绑定到一个 session channel 的 config 快照读写器。"""

    def __init__(self, session: ChannelSession) -> None:
        """绑定 session channel。"""

        self._session = session

    def write(self, source: Union[AutoTesterSettings, ConfigSnapshot]) -> ConfigSnapshot:
        """
        写入（整体替换）config 快照。

        参数：
        - source：完整设置或已构造好的快照

        返回：
        - 实际写入的快照
        """

        snapshot = source.to_snapshot() if isinstance(source, AutoTesterSettings) else source
        self._session.mailbox.write("config", snapshot.to_wire())
        return snapshot

    def read(self) -> ConfigSnapshot:
        """读取当前快照；任何失败都回退到默认值（缺失字段逐项补默认）。"""

        obj = self._session.mailbox.peek("config")
        if obj is None:
            return ConfigSnapshot()
        try:
            return ConfigSnapshot.model_validate(obj)
        except ValidationError:
            logger.debug("Invalid config snapshot; using defaults", exc_info=True)
            return ConfigSnapshot()
