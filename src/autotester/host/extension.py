"""
Host 生命周期（对应编辑器扩展的 activate/deactivate）。

activate：
- 创建全新的 session channel（唯一目录）；
- 写出 config 快照；
- 启动 request poller 与（可选的）设置文件 watcher。

deactivate：
- 停止 poller / watcher；
- 删除整个 channel 目录（只执行一次，容忍目录已被部分/全部删除）。

server 侧进程由宿主根据 `server_definition()` 拉起（每个 agent 会话一个）。
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from autotester import __version__
from autotester.config.mirror import ConfigMirror
from autotester.config.settings import AutoTesterSettings
from autotester.config.watcher import SettingsWatcher
from autotester.host.panel import PanelController, PanelView
from autotester.host.poller import RequestPoller
from autotester.host.responder import Responder
from autotester.ipc.messages import RequestMessage
from autotester.ipc.session import ChannelSession

logger = logging.getLogger(__name__)

SERVER_LABEL = "Auto Tester"


@dataclass(frozen=True)
class ServerDefinition:
    """拉起 stdio server 所需的命令行（宿主据此 spawn）。"""

    label: str
    command: str
    args: List[str]
    env: Dict[str, str] = field(default_factory=dict)
    version: str = __version__

    def argv(self) -> List[str]:
        """返回完整 argv（command + args）。"""

        return [self.command, *self.args]

    def to_dict(self) -> Dict[str, Any]:
        """转换为可 JSON 输出的 dict。"""

        return {"label": self.label, "command": self.command, "args": list(self.args), "env": dict(self.env), "version": self.version}


class BridgeHost:
    """
    长生命周期的 host 侧（UI 进程）。

    参数：
    - view：可选；面板渲染端（可在 activate 后再 `controller.attach()`）
    - settings：可选；初始设置（与 settings_path 同时给出时以文件为准；文件被删除后回退到这份设置）
    - settings_path：可选；YAML 设置文件，变更后自动重写 config 快照
    - channel_root：可选；session 目录的父目录（默认 `<tmp>/.autotester`）
    - watch_interval_sec：设置文件轮询间隔
    """

    def __init__(
        self,
        *,
        view: Optional[PanelView] = None,
        settings: Optional[AutoTesterSettings] = None,
        settings_path: Optional[Path] = None,
        channel_root: Optional[Path] = None,
        watch_interval_sec: float = 1.0,
    ) -> None:
        """创建 host（尚未激活；见 `activate()`）。"""

        self._view = view
        self._settings_path = Path(settings_path) if settings_path is not None else None
        self._channel_root = channel_root
        self._watch_interval_sec = watch_interval_sec
        self.settings = settings or AutoTesterSettings()
        self.session: Optional[ChannelSession] = None
        self.controller: Optional[PanelController] = None
        self._mirror: Optional[ConfigMirror] = None
        self._poller: Optional[RequestPoller] = None
        self._watcher: Optional[SettingsWatcher] = None

    @property
    def active(self) -> bool:
        """是否已激活（持有 session channel）。"""

        return self.session is not None

    @property
    def poller(self) -> Optional[RequestPoller]:
        """当前 request poller（未激活时为 None）。"""

        return self._poller

    def activate(self) -> ChannelSession:
        """
        启动 host 会话。

        异常：
        - ChannelUnavailableError：channel 目录无法创建（致命）
        """

        if self.session is not None:
            return self.session
        if self._settings_path is not None:
            self._watcher = SettingsWatcher(
                self._settings_path,
                self.on_settings_changed,
                interval_sec=self._watch_interval_sec,
                fallback=self.settings,
            )
            self.settings = self._watcher.load() if self._settings_path.exists() else self.settings

        session = ChannelSession.create(root=self._channel_root, timings=self.settings.timings.to_timings())
        self._mirror = ConfigMirror(session)
        self._mirror.write(self.settings)

        responder = Responder(session)
        self.controller = PanelController(responder=responder, settings_provider=lambda: self.settings)
        if self._view is not None:
            self.controller.attach(self._view)

        self._poller = RequestPoller(session, self._on_request)
        self.session = session
        self._poller.start()
        if self._watcher is not None:
            self._watcher.start()
        logger.info("Auto Tester host activated (channel %s)", session.instance_id)
        return session

    def _on_request(self, msg: RequestMessage) -> None:
        """poller 投递回调：切到面板并展示提问（空白 prompt 只切换焦点）。"""

        controller = self.controller
        if controller is None:
            return
        controller.reveal()
        if msg.prompt.strip():
            controller.show_prompt(msg.prompt)

    def on_settings_changed(self, settings: AutoTesterSettings) -> None:
        """设置变更：重写 config 快照并通知面板。"""

        self.settings = settings
        if self._mirror is not None:
            self._mirror.write(settings)
        if self.controller is not None:
            self.controller.send_config()

    def server_definition(self) -> ServerDefinition:
        """返回 stdio server 的启动定义（把本会话的 channel 目录传给子进程）。"""

        if self.session is None:
            raise RuntimeError("host is not activated")
        timings = self.session.timings
        return ServerDefinition(
            label=SERVER_LABEL,
            command=sys.executable,
            args=[
                "-m",
                "autotester.server",
                "--feedback-dir",
                str(self.session.paths.channel_dir),
                "--timeout-ms",
                str(timings.feedback_timeout_ms),
                "--poll-interval-ms",
                str(timings.poll_interval_ms),
                "--settle-delay-ms",
                str(timings.settle_delay_ms),
            ],
        )

    def deactivate(self) -> None:
        """停止后台循环并删除 channel 目录（可重复调用）。"""

        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None
        if self._poller is not None:
            self._poller.stop()
            self._poller = None
        session, self.session = self.session, None
        if session is not None:
            session.cleanup()

    def __enter__(self) -> "BridgeHost":
        """上下文管理器入口：激活 host。"""

        self.activate()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[no-untyped-def]
        """上下文管理器退出：停用 host 并清理 channel。"""

        self.deactivate()

