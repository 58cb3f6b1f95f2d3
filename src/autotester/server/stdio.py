"""
stdio JSON-RPC server（每个 agent 会话由 host 拉起一个短生命周期进程）。

行为：
- 从 stdin 读取任意切分的 chunk，按换行分帧；
- `tools/call` 在工作线程中等待人类回答，期间其它帧照常响应；
- 每个需要响应的请求帧写出恰好一行 JSON（以换行结尾）；通知与坏帧不写；
- stdin 结束时通知在途等待放弃，返回退出码 0。

日志只写 stderr（stdout 专用于协议帧）。
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import threading
from pathlib import Path
from typing import Any, Dict, IO, List, Optional, Sequence, Union

from autotester.ipc.paths import default_channel_root
from autotester.ipc.session import BridgeTimings, ChannelSession
from autotester.server.dispatcher import McpDispatcher
from autotester.server.framing import LineFramer

logger = logging.getLogger(__name__)


class StdioServer:
    """
    把 `McpDispatcher` 挂到一对流上。

    参数：
    - dispatcher：JSON-RPC 路由器
    - stdin：输入流（text 或 binary；有 `read1` 时按 chunk 读取，否则按行读取）
    - stdout：输出 text 流
    - chunk_size：单次读取上限（bytes）
    """

    def __init__(
        self,
        dispatcher: McpDispatcher,
        *,
        stdin: IO[Any],
        stdout: IO[str],
        chunk_size: int = 65536,
    ) -> None:
        """创建 server（尚未开始读取；见 `serve()`）。"""

        self._dispatcher = dispatcher
        self._stdin = stdin
        self._stdout = stdout
        self._chunk_size = int(chunk_size)
        self._framer = LineFramer()
        self._write_lock = threading.Lock()
        self._cancel = threading.Event()
        self._workers: List[threading.Thread] = []

    def _read_chunk(self) -> Union[bytes, str]:
        """读取一个 chunk；EOF 时返回空值。"""

        read1 = getattr(self._stdin, "read1", None)
        if callable(read1):
            return read1(self._chunk_size)
        return self._stdin.readline()

    def _write(self, response: Dict[str, Any]) -> None:
        """写出一行响应（写锁保证多线程下行不交错）。"""

        line = json.dumps(response, separators=(",", ":"))
        with self._write_lock:
            self._stdout.write(line + "\n")
            self._stdout.flush()

    def _answer(self, frame: Dict[str, Any]) -> None:
        """处理一个帧并写出响应（通知不写）。"""

        response = self._dispatcher.handle_frame(frame, cancel=self._cancel)
        if response is not None:
            self._write(response)

    def _dispatch_line(self, line: str) -> None:
        """分发一行：tools/call 交给工作线程，其余帧同步处理。"""

        frame = self._dispatcher.parse_frame(line)
        if frame is None:
            return
        if frame.get("method") == "tools/call":
            t = threading.Thread(target=self._answer, args=(frame,), name="autotester-tools-call", daemon=True)
            self._workers = [w for w in self._workers if w.is_alive()]
            self._workers.append(t)
            t.start()
            return
        self._answer(frame)

    @property
    def worker_count(self) -> int:
        """当前登记的 tools/call 工作线程数（已结束的线程在下一次分发时移除）。"""

        return len(self._workers)

    def serve(self, *, join_timeout_sec: float = 2.0) -> int:
        """
        处理输入直到 EOF。

        参数：
        - join_timeout_sec：EOF 后等待在途 tools/call 放弃并写出结果的最长时间

        返回：
        - 退出码（总是 0）
        """

        while True:
            chunk = self._read_chunk()
            if not chunk:
                break
            for line in self._framer.feed(chunk):
                self._dispatch_line(line)

        self._cancel.set()
        for t in self._workers:
            t.join(timeout=join_timeout_sec)
        return 0


def _build_parser() -> argparse.ArgumentParser:
    """构造 server 进程参数解析器。"""

    p = argparse.ArgumentParser(prog="autotester-server", description="Auto Tester MCP stdio server")
    p.add_argument("--feedback-dir", default=None, help="session channel directory (written by the host)")
    p.add_argument("--timeout-ms", type=int, default=None, help="max wait for a human answer per tools/call")
    p.add_argument("--poll-interval-ms", type=int, default=None)
    p.add_argument("--settle-delay-ms", type=int, default=None)
    return p


def _timings_from_args(args: argparse.Namespace) -> BridgeTimings:
    """由命令行参数构造 timings（缺省项取默认值）。"""

    base = BridgeTimings()
    return BridgeTimings(
        poll_interval_ms=args.poll_interval_ms if args.poll_interval_ms is not None else base.poll_interval_ms,
        settle_delay_ms=args.settle_delay_ms if args.settle_delay_ms is not None else base.settle_delay_ms,
        feedback_timeout_ms=args.timeout_ms if args.timeout_ms is not None else base.feedback_timeout_ms,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    进程入口：绑定 channel 目录并服务 stdin/stdout。

    环境变量：
    - `AUTOTESTER_LOG_LEVEL`：stderr 日志级别（默认 WARNING）
    """

    args = _build_parser().parse_args(list(argv) if argv is not None else None)
    logging.basicConfig(
        stream=sys.stderr,
        level=str(os.environ.get("AUTOTESTER_LOG_LEVEL") or "WARNING").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # 未传目录时退回共享的默认目录（兼容旧的启动方式）
    channel_dir = Path(args.feedback_dir) if args.feedback_dir else default_channel_root()
    session = ChannelSession.attach(channel_dir, timings=_timings_from_args(args))
    stdin = getattr(sys.stdin, "buffer", sys.stdin)
    server = StdioServer(McpDispatcher(session), stdin=stdin, stdout=sys.stdout)
    return server.serve()
