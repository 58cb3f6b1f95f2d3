from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from autotester.ipc.mailbox import Mailbox
from autotester.ipc.paths import get_channel_paths


def _mailbox(tmp_path: Path, hook=None) -> Mailbox:  # type: ignore[no-untyped-def]
    return Mailbox(get_channel_paths(channel_dir=tmp_path / "ch"), on_malformed=hook)


def test_write_then_consume_removes_file(tmp_path: Path) -> None:
    mb = _mailbox(tmp_path)
    mb.write("request", {"prompt": "hello", "timestamp": 1})

    assert mb.exists("request")
    assert mb.try_consume("request") == {"prompt": "hello", "timestamp": 1}
    assert not mb.exists("request")
    assert mb.try_consume("request") is None


def test_consume_on_missing_channel_dir_is_none(tmp_path: Path) -> None:
    mb = _mailbox(tmp_path)
    assert mb.try_consume("feedback") is None
    assert mb.peek("config") is None


def test_write_leaves_no_temp_files(tmp_path: Path) -> None:
    mb = _mailbox(tmp_path)
    mb.write("config", {"toolName": "a"})
    mb.write("config", {"toolName": "b"})

    names = sorted(p.name for p in mb.paths.channel_dir.iterdir())
    assert names == ["config.json"]
    assert mb.peek("config") == {"toolName": "b"}


def test_peek_does_not_consume(tmp_path: Path) -> None:
    mb = _mailbox(tmp_path)
    mb.write("config", {"footer": "x"})
    assert mb.peek("config") == {"footer": "x"}
    assert mb.exists("config")


def test_malformed_payload_is_dropped_and_reported(tmp_path: Path) -> None:
    seen: List[Tuple[str, Exception]] = []
    mb = _mailbox(tmp_path, hook=lambda kind, exc: seen.append((kind, exc)))
    mb.paths.channel_dir.mkdir(parents=True)
    mb.paths.request_path.write_text("{not json", encoding="utf-8")

    assert mb.try_consume("request") is None
    assert [k for k, _ in seen] == ["request"]
    # 坏 payload 同样被认领删除，不会在下一轮重复报告
    assert not mb.exists("request")
    assert mb.try_consume("request") is None
    assert len(seen) == 1


def test_non_object_payload_is_malformed(tmp_path: Path) -> None:
    seen: List[str] = []
    mb = _mailbox(tmp_path, hook=lambda kind, exc: seen.append(kind))
    mb.paths.channel_dir.mkdir(parents=True)
    mb.paths.feedback_path.write_text("[1, 2]", encoding="utf-8")

    assert mb.try_consume("feedback") is None
    assert seen == ["feedback"]


def test_failing_hook_does_not_propagate(tmp_path: Path) -> None:
    def _boom(kind: str, exc: Exception) -> None:
        raise RuntimeError("hook failed")

    mb = _mailbox(tmp_path, hook=_boom)
    mb.paths.channel_dir.mkdir(parents=True)
    mb.paths.request_path.write_text("nope", encoding="utf-8")
    assert mb.try_consume("request") is None


def test_discard_is_idempotent(tmp_path: Path) -> None:
    mb = _mailbox(tmp_path)
    mb.discard("feedback")
    mb.write("feedback", {"feedback": "old"})
    mb.discard("feedback")
    mb.discard("feedback")
    assert not mb.exists("feedback")


def test_concurrent_consumers_receive_message_at_most_once(tmp_path: Path) -> None:
    mb = _mailbox(tmp_path)
    mb.write("request", {"prompt": "only once"})

    results: List[Optional[Dict[str, Any]]] = []
    lock = threading.Lock()
    barrier = threading.Barrier(8)

    def _consume() -> None:
        barrier.wait()
        got = mb.try_consume("request")
        with lock:
            results.append(got)

    threads = [threading.Thread(target=_consume) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)

    delivered = [r for r in results if r is not None]
    assert delivered == [{"prompt": "only once"}]
    assert len(results) == 8
