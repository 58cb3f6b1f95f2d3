"""
用户设置加载器（YAML）。

设计目标：
- 内置默认配置 `autotester/assets/default.yaml` 通过 `importlib.resources` 随 package 分发；
- 支持加载多个 YAML overlay，按顺序做深度合并（后者覆盖前者）；
- 使用 pydantic 做 schema 校验；默认拒绝未知字段（避免拼写错误被静默吞掉）。
"""

from __future__ import annotations

from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, MutableMapping

import yaml
from pydantic import BaseModel, ConfigDict, Field

from autotester.core.errors import FrameworkError
from autotester.ipc.messages import DEFAULT_FOOTER, DEFAULT_TOOL_DESCRIPTION, DEFAULT_TOOL_NAME, ConfigSnapshot
from autotester.ipc.session import BridgeTimings


def _deep_merge(base: MutableMapping[str, Any], overlay: Mapping[str, Any]) -> MutableMapping[str, Any]:
    """
    深度合并两个 dict（overlay 覆盖 base）。

    合并规则：
    - dict + dict：递归合并
    - 其它类型：overlay 直接覆盖
    """

    for key, overlay_value in overlay.items():
        if key in base and isinstance(base[key], dict) and isinstance(overlay_value, Mapping):
            _deep_merge(base[key], overlay_value)  # type: ignore[arg-type]
            continue
        base[key] = deepcopy(overlay_value)
    return base


class TimingsConfig(BaseModel):
    """轮询节拍与超时（毫秒）。"""

    model_config = ConfigDict(extra="forbid")

    poll_interval_ms: int = Field(default=500, ge=1)
    settle_delay_ms: int = Field(default=500, ge=0)
    feedback_timeout_ms: int = Field(default=300_000, ge=1)

    def to_timings(self) -> BridgeTimings:
        """转换为运行时使用的 `BridgeTimings`。"""

        return BridgeTimings(
            poll_interval_ms=self.poll_interval_ms,
            settle_delay_ms=self.settle_delay_ms,
            feedback_timeout_ms=self.feedback_timeout_ms,
        )


class AutoTesterSettings(BaseModel):
    """
    host 侧可配置项（对应编辑器里的 `autotester.*` 设置命名空间）。

    字段：
    - tool_name / tool_description / footer：镜像到 config 快照供 server 侧读取
    - enter_to_submit / ctrl_enter_to_submit：面板输入行为（仅 host 侧使用）
    - timings：轮询节拍与超时
    """

    model_config = ConfigDict(extra="forbid")

    tool_name: str = Field(default=DEFAULT_TOOL_NAME, min_length=1)
    tool_description: str = DEFAULT_TOOL_DESCRIPTION
    footer: str = DEFAULT_FOOTER
    enter_to_submit: bool = True
    ctrl_enter_to_submit: bool = False
    timings: TimingsConfig = Field(default_factory=TimingsConfig)

    def to_snapshot(self) -> ConfigSnapshot:
        """提取需要镜像给 server 侧的 config 快照。"""

        return ConfigSnapshot(tool_name=self.tool_name, tool_description=self.tool_description, footer=self.footer)

    def panel_config_message(self) -> Dict[str, Any]:
        """构造发给面板的 `config` 消息。"""

        return {
            "command": "config",
            "enterToSubmit": self.enter_to_submit,
            "ctrlEnterToSubmit": self.ctrl_enter_to_submit,
        }


def load_default_settings_dict() -> Dict[str, Any]:
    """
    读取内置默认配置（YAML）并返回 dict。

    异常：
    - RuntimeError：读取失败或内容不是 mapping(dict)
    """

    from importlib.resources import files

    text = files("autotester.assets").joinpath("default.yaml").read_text(encoding="utf-8")
    obj = yaml.safe_load(text) or {}
    if not isinstance(obj, dict):
        raise RuntimeError("embedded default config root must be a mapping(dict)")
    return obj


def load_yaml_mapping(path: Path) -> Dict[str, Any]:
    """
    加载 YAML overlay 并确保根节点为 mapping(dict)。

    异常：
    - FrameworkError：文件不存在、解析失败或根节点不是 mapping
    """

    p = Path(path)
    if not p.exists():
        raise FrameworkError(code="CONFIG_NOT_FOUND", message="Settings file not found.", details={"path": str(p)})
    try:
        obj = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise FrameworkError(
            code="CONFIG_LOAD_FAILED",
            message="Settings file load failed.",
            details={"path": str(p), "reason": str(exc)},
        ) from exc
    if not isinstance(obj, dict):
        raise FrameworkError(
            code="CONFIG_INVALID",
            message="Settings file root must be an object.",
            details={"path": str(p), "actual": type(obj).__name__},
        )
    return obj


def load_settings_dicts(overlays: Iterable[Mapping[str, Any]]) -> AutoTesterSettings:
    """把多个 dict 依次深度合并到内置默认配置上，并做 schema 校验。"""

    merged: Dict[str, Any] = load_default_settings_dict()
    for overlay in overlays:
        _deep_merge(merged, overlay)
    return AutoTesterSettings.model_validate(merged)


def load_settings(paths: Iterable[Path] = ()) -> AutoTesterSettings:
    """
    加载默认配置 + YAML overlays。

    参数：
    - paths：overlay 文件路径（按顺序合并；后者覆盖前者）

    异常：
    - FrameworkError：overlay 读取失败
    - pydantic.ValidationError：合并后的配置不合法
    """

    return load_settings_dicts(load_yaml_mapping(p) for p in paths)
