from __future__ import annotations

from pathlib import Path

import pytest

from autotester.ipc.session import BridgeTimings, ChannelSession


@pytest.fixture
def fast_timings() -> BridgeTimings:
    """测试用的短节拍（20ms 轮询 / 20ms settle / 5s 超时）。"""

    return BridgeTimings(poll_interval_ms=20, settle_delay_ms=20, feedback_timeout_ms=5000)


@pytest.fixture
def session(tmp_path: Path, fast_timings: BridgeTimings) -> ChannelSession:
    """在 tmp_path 下创建一个全新的 session channel。"""

    s = ChannelSession.create(root=tmp_path / "channels", timings=fast_timings)
    yield s
    s.cleanup()
