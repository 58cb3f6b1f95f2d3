from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import tempfile
from typing import Literal

MessageKind = Literal["request", "feedback", "config"]

CHANNEL_ROOT_NAME = ".autotester"


@dataclass(frozen=True)
class ChannelPaths:
    """channel 目录与三个控制文件的路径集合。"""

    channel_dir: Path
    request_path: Path
    feedback_path: Path
    config_path: Path
    images_dir: Path

    def for_kind(self, kind: MessageKind) -> Path:
        """按消息种类返回控制文件路径。"""

        if kind == "request":
            return self.request_path
        if kind == "feedback":
            return self.feedback_path
        if kind == "config":
            return self.config_path
        raise ValueError(f"unknown message kind: {kind}")


def default_channel_root() -> Path:
    """所有 session channel 的父目录（`<tmp>/.autotester`）。"""

    return (Path(tempfile.gettempdir()) / CHANNEL_ROOT_NAME).resolve()


def get_channel_paths(*, channel_dir: Path) -> ChannelPaths:
    """
    获取 channel 相关路径（均位于 channel_dir 下）。

    参数：
    - channel_dir：session 私有目录（例如 `<tmp>/.autotester/<instance_id>`）
    """

    d = Path(channel_dir).expanduser().resolve()
    return ChannelPaths(
        channel_dir=d,
        request_path=d / "request.json",
        feedback_path=d / "feedback.json",
        config_path=d / "config.json",
        images_dir=d / "images",
    )
