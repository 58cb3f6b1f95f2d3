"""配置：用户设置（YAML + pydantic）、设置文件监听与 config 快照镜像。"""

from __future__ import annotations

from autotester.config.mirror import ConfigMirror
from autotester.config.settings import AutoTesterSettings, load_settings, load_settings_dicts
from autotester.config.watcher import SettingsWatcher

__all__ = ["AutoTesterSettings", "ConfigMirror", "SettingsWatcher", "load_settings", "load_settings_dicts"]
