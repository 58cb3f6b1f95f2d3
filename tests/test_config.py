from __future__ import annotations

from pathlib import Path
from typing import List

import pytest
from pydantic import ValidationError

from autotester.config.mirror import ConfigMirror
from autotester.config.settings import AutoTesterSettings, load_settings, load_settings_dicts
from autotester.config.watcher import SettingsWatcher
from autotester.core.errors import FrameworkError
from autotester.ipc.messages import DEFAULT_FOOTER, DEFAULT_TOOL_DESCRIPTION, ConfigSnapshot
from autotester.ipc.session import ChannelSession


def test_embedded_defaults() -> None:
    s = load_settings()
    assert s.tool_name == "run_auto_tester"
    assert s.tool_description == DEFAULT_TOOL_DESCRIPTION
    assert s.footer == DEFAULT_FOOTER
    assert s.enter_to_submit is True
    assert s.ctrl_enter_to_submit is False
    assert (s.timings.poll_interval_ms, s.timings.settle_delay_ms, s.timings.feedback_timeout_ms) == (500, 500, 300_000)


def test_overlays_deep_merge_in_order(tmp_path: Path) -> None:
    a = tmp_path / "a.yaml"
    a.write_text("tool_name: first\ntimings:\n  poll_interval_ms: 50\n", encoding="utf-8")
    b = tmp_path / "b.yaml"
    b.write_text("tool_name: second\n", encoding="utf-8")

    s = load_settings([a, b])
    assert s.tool_name == "second"
    assert s.timings.poll_interval_ms == 50
    assert s.timings.settle_delay_ms == 500


def test_unknown_keys_are_rejected() -> None:
    with pytest.raises(ValidationError):
        load_settings_dicts([{"tool_nmae": "typo"}])
    with pytest.raises(ValidationError):
        load_settings_dicts([{"timings": {"poll_interval_ms": 0}}])


def test_missing_overlay_file(tmp_path: Path) -> None:
    with pytest.raises(FrameworkError) as ei:
        load_settings([tmp_path / "missing.yaml"])
    assert ei.value.code == "CONFIG_NOT_FOUND"


def test_overlay_root_must_be_mapping(tmp_path: Path) -> None:
    p = tmp_path / "list.yaml"
    p.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(FrameworkError) as ei:
        load_settings([p])
    assert ei.value.code == "CONFIG_INVALID"
    assert ei.value.to_issue().details["actual"] == "list"


def test_overlay_parse_failure(tmp_path: Path) -> None:
    p = tmp_path / "bad.yaml"
    p.write_text("tool_name: [unclosed\n", encoding="utf-8")
    with pytest.raises(FrameworkError) as ei:
        load_settings([p])
    assert ei.value.code == "CONFIG_LOAD_FAILED"


def test_panel_config_message() -> None:
    s = AutoTesterSettings(enter_to_submit=False, ctrl_enter_to_submit=True)
    assert s.panel_config_message() == {"command": "config", "enterToSubmit": False, "ctrlEnterToSubmit": True}


def test_mirror_round_trip_uses_camel_case(session: ChannelSession) -> None:
    mirror = ConfigMirror(session)
    written = mirror.write(AutoTesterSettings(tool_name="foo", footer="\nbye"))

    raw = session.mailbox.peek("config")
    assert raw == {"toolName": "foo", "toolDescription": DEFAULT_TOOL_DESCRIPTION, "footer": "\nbye"}
    assert mirror.read() == written


def test_mirror_read_falls_back_to_defaults(session: ChannelSession) -> None:
    mirror = ConfigMirror(session)
    assert mirror.read() == ConfigSnapshot()

    session.mailbox.write("config", {"toolName": "partial"})
    got = mirror.read()
    assert got.tool_name == "partial"
    assert got.footer == DEFAULT_FOOTER

    session.mailbox.write("config", {"toolName": 5})
    assert mirror.read() == ConfigSnapshot()

    session.paths.config_path.write_text("not json", encoding="utf-8")
    assert mirror.read() == ConfigSnapshot()


def test_watcher_reports_changes(tmp_path: Path) -> None:
    path = tmp_path / "settings.yaml"
    seen: List[AutoTesterSettings] = []
    w = SettingsWatcher(path, seen.append)

    assert w.check() is None

    path.write_text("tool_name: foo\n", encoding="utf-8")
    changed = w.check()
    assert changed is not None and changed.tool_name == "foo"
    assert w.check() is None

    path.write_text("unknown_key: 1\n", encoding="utf-8")
    assert w.check() is None
    assert [s.tool_name for s in seen] == ["foo"]

    path.unlink()
    reverted = w.check()
    assert reverted is not None and reverted.tool_name == "run_auto_tester"
    assert [s.tool_name for s in seen] == ["foo", "run_auto_tester"]


def test_watcher_thread_start_stop(tmp_path: Path) -> None:
    w = SettingsWatcher(tmp_path / "settings.yaml", lambda s: None, interval_sec=0.01)
    w.start()
    w.start()
    w.stop()
    w.stop()


def test_watcher_falls_back_to_given_settings_when_file_removed(tmp_path: Path) -> None:
    path = tmp_path / "settings.yaml"
    path.write_text("tool_name: from_file\n", encoding="utf-8")
    initial = AutoTesterSettings(tool_name="initial", ctrl_enter_to_submit=True)
    seen: List[AutoTesterSettings] = []
    w = SettingsWatcher(path, seen.append, fallback=initial)

    assert w.load().tool_name == "from_file"
    path.unlink()
    reverted = w.check()
    assert reverted is not None
    assert reverted.tool_name == "initial"
    assert reverted.ctrl_enter_to_submit is True
    assert reverted is not initial
