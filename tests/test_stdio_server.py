from __future__ import annotations

import io
import json
import os
import threading
import time
from pathlib import Path
from typing import Any, Dict, List

from autotester.config.settings import AutoTesterSettings, TimingsConfig
from autotester.host.extension import BridgeHost
from autotester.ipc.messages import DEFAULT_FOOTER
from autotester.ipc.session import BridgeTimings, ChannelSession
from autotester.server.dispatcher import McpDispatcher
from autotester.server.stdio import StdioServer
from autotester.server.waiter import TIMEOUT_TEXT


def _lines(out: io.StringIO) -> List[Dict[str, Any]]:
    return [json.loads(x) for x in out.getvalue().splitlines() if x.strip()]


def test_two_frames_in_one_chunk_give_exactly_one_response(session: ChannelSession) -> None:
    stdin = io.BytesIO(
        b'{"jsonrpc":"2.0","id":1,"method":"initialize","params":{}}\n'
        b'{"jsonrpc":"2.0","method":"notifications/initialized"}\n'
    )
    stdout = io.StringIO()

    assert StdioServer(McpDispatcher(session), stdin=stdin, stdout=stdout).serve() == 0

    responses = _lines(stdout)
    assert len(responses) == 1
    assert responses[0]["id"] == 1
    assert responses[0]["result"]["serverInfo"]["name"] == "auto-tester"
    assert stdout.getvalue().endswith("\n")


def test_invalid_second_line_does_not_break_first_response(session: ChannelSession) -> None:
    stdin = io.BytesIO(b'{"jsonrpc":"2.0","id":1,"method":"tools/list"}\n{not valid json}\n')
    stdout = io.StringIO()

    assert StdioServer(McpDispatcher(session), stdin=stdin, stdout=stdout).serve() == 0

    responses = _lines(stdout)
    assert len(responses) == 1
    assert responses[0]["id"] == 1
    assert responses[0]["result"]["tools"][0]["name"] == "run_auto_tester"


def test_text_stdin_and_malformed_frames(session: ChannelSession) -> None:
    stdin = io.StringIO('garbage\n{"jsonrpc":"2.0","id":"a","method":"tools/list"}\n{"jsonrpc":"2.0","id":2,"method":"nope"}\n')
    stdout = io.StringIO()

    StdioServer(McpDispatcher(session), stdin=stdin, stdout=stdout).serve()

    responses = _lines(stdout)
    assert [r["id"] for r in responses] == ["a", 2]
    assert responses[0]["result"]["tools"][0]["name"] == "run_auto_tester"
    assert responses[1]["error"]["code"] == -32601


def test_unterminated_trailing_frame_is_ignored(session: ChannelSession) -> None:
    stdin = io.BytesIO(b'{"jsonrpc":"2.0","id":1,"method":"tools/list"}')
    stdout = io.StringIO()
    StdioServer(McpDispatcher(session), stdin=stdin, stdout=stdout).serve()
    assert stdout.getvalue() == ""


def test_eof_abandons_in_flight_call(tmp_path: Path) -> None:
    s = ChannelSession.create(root=tmp_path, timings=BridgeTimings(poll_interval_ms=20, settle_delay_ms=20, feedback_timeout_ms=60_000))
    stdin = io.BytesIO(b'{"jsonrpc":"2.0","id":7,"method":"tools/call","params":{"name":"run_auto_tester"}}\n')
    stdout = io.StringIO()

    started = time.monotonic()
    code = StdioServer(McpDispatcher(s), stdin=stdin, stdout=stdout).serve(join_timeout_sec=5.0)

    assert code == 0
    assert time.monotonic() - started < 5.0
    responses = _lines(stdout)
    assert len(responses) == 1
    assert responses[0]["id"] == 7
    assert responses[0]["result"]["content"] == [{"type": "text", "text": TIMEOUT_TEXT}]


class _AutoAnswerView:
    """面板替身：展示提问时立即以固定文本回答。"""

    def __init__(self, answer: str) -> None:
        self.answer = answer
        self.host: BridgeHost
        self.messages: List[Dict[str, Any]] = []

    def post_message(self, message: Dict[str, Any]) -> None:
        self.messages.append(message)
        if message.get("command") == "showPrompt" and self.host.controller is not None:
            self.host.controller.handle_submit(self.answer)

    def reveal(self) -> None:
        pass


def test_end_to_end_through_host_and_server(tmp_path: Path) -> None:
    view = _AutoAnswerView("ship it")
    settings = AutoTesterSettings(timings=TimingsConfig(poll_interval_ms=20, settle_delay_ms=20, feedback_timeout_ms=10_000))
    host = BridgeHost(view=view, settings=settings, channel_root=tmp_path)
    view.host = host
    host.activate()
    try:
        assert host.session is not None
        server_session = ChannelSession.attach(host.session.paths.channel_dir, timings=host.session.timings)

        r, w = os.pipe()
        stdout = io.StringIO()
        with os.fdopen(r, "rb") as stdin:
            server = StdioServer(McpDispatcher(server_session), stdin=stdin, stdout=stdout)
            t = threading.Thread(target=server.serve, daemon=True)
            t.start()

            frames = [
                {"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {}},
                {"jsonrpc": "2.0", "method": "notifications/initialized"},
                {"jsonrpc": "2.0", "id": 2, "method": "tools/list"},
                {"jsonrpc": "2.0", "id": 3, "method": "tools/call", "params": {"name": "run_auto_tester", "arguments": {"description": "added login"}}},
            ]
            os.write(w, "".join(json.dumps(f) + "\n" for f in frames).encode("utf-8"))

            deadline = time.monotonic() + 10
            while time.monotonic() < deadline and not any(x.get("id") == 3 for x in _lines(stdout)):
                time.sleep(0.02)
            os.close(w)
            t.join(timeout=5)

        by_id = {x["id"]: x for x in _lines(stdout)}
        assert set(by_id) == {1, 2, 3}
        assert by_id[2]["result"]["tools"][0]["name"] == "run_auto_tester"
        assert by_id[3]["result"]["content"] == [{"type": "text", "text": "ship it" + DEFAULT_FOOTER}]

        assert host.controller is not None
        log = [(m.type, m.text) for m in host.controller.log.messages()]
        assert log == [("agent", "added login"), ("user", "ship it")]
        assert {"command": "submitted", "success": True} in view.messages
    finally:
        host.deactivate()


class _InstantWaiter:
    """替身 Waiter：立即返回固定回答。"""

    def request_feedback(self, prompt: str, timeout_ms=None, *, cancel=None):  # type: ignore[no-untyped-def]
        return [{"type": "text", "text": f"ok: {prompt}"}]


def test_finished_call_workers_are_pruned(session: ChannelSession) -> None:
    r, w = os.pipe()
    stdout = io.StringIO()
    with os.fdopen(r, "rb") as stdin:
        server = StdioServer(McpDispatcher(session, waiter=_InstantWaiter()), stdin=stdin, stdout=stdout)  # type: ignore[arg-type]
        t = threading.Thread(target=server.serve, daemon=True)
        t.start()

        for i in range(1, 4):
            frame = {"jsonrpc": "2.0", "id": i, "method": "tools/call", "params": {"name": "run_auto_tester"}}
            os.write(w, (json.dumps(frame) + "\n").encode("utf-8"))
            deadline = time.monotonic() + 5
            while time.monotonic() < deadline and not any(x.get("id") == i for x in _lines(stdout)):
                time.sleep(0.01)
            time.sleep(0.05)

        assert server.worker_count == 1
        os.close(w)
        t.join(timeout=5)

    assert [x["id"] for x in _lines(stdout)] == [1, 2, 3]
