"""
Request poller（host 侧）：固定间隔检查 request 控制文件。

说明：
- 每个 tick 执行一次 `try_consume("request")`；同一条 request 至多投递一次（由 mailbox 认领语义保证）；
- 投递给 UI 是 fire-and-forget：回调在独立的投递线程中执行，不阻塞后续 tick；
- 固定间隔、无退避：最坏延迟为一个间隔。
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, wait
import logging
import threading
from typing import Callable, List, Optional

from pydantic import ValidationError

from autotester.ipc.messages import RequestMessage
from autotester.ipc.session import ChannelSession

logger = logging.getLogger(__name__)

RequestHandler = Callable[[RequestMessage], None]


class RequestPoller:
    """
    参数：
    - session：channel 上下文（使用 timings.poll_interval_ms）
    - on_request：收到 request 时的回调（在投递线程中执行）
    """

    def __init__(self, session: ChannelSession, on_request: RequestHandler) -> None:
        """创建 poller（尚未启动；见 `start()`）。"""

        self._session = session
        self._on_request = on_request
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="autotester-deliver")
        self._deliveries: List[Future] = []
        self._lock = threading.Lock()

    def _deliver(self, msg: RequestMessage) -> None:
        """投递线程入口：调用回调，异常只记录日志。"""

        try:
            self._on_request(msg)
        except Exception:
            logger.warning("Request delivery to panel failed", exc_info=True)

    def tick(self) -> Optional[RequestMessage]:
        """
        执行一次轮询。

        返回：
        - RequestMessage：本次消费到的 request（已提交投递）
        - None：无 request 或 payload 不合法
        """

        obj = self._session.mailbox.try_consume("request")
        if obj is None:
            return None
        try:
            msg = RequestMessage.model_validate(obj)
        except ValidationError:
            logger.debug("Dropping request with invalid shape", exc_info=True)
            return None
        fut = self._executor.submit(self._deliver, msg)
        with self._lock:
            self._deliveries = [f for f in self._deliveries if not f.done()]
            self._deliveries.append(fut)
        return msg

    def flush(self, timeout_sec: Optional[float] = None) -> None:
        """等待已提交的投递完成（测试与关闭时使用）。"""

        with self._lock:
            pending = list(self._deliveries)
        if pending:
            wait(pending, timeout=timeout_sec)

    def _run(self) -> None:
        """poller 线程入口：固定间隔 tick，直到 stop。"""

        interval = self._session.timings.poll_interval_sec
        while not self._stop.wait(interval):
            try:
                self.tick()
            except Exception:
                logger.warning("Request poll tick failed", exc_info=True)

    def start(self) -> None:
        """启动后台轮询线程（重复调用为 no-op）。"""

        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="autotester-poller", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """停止轮询并关闭投递线程（不等待未完成的投递）。"""

        self._stop.set()
        t = self._thread
        if t is not None and t is not threading.current_thread():
            t.join(timeout=max(self._session.timings.poll_interval_sec * 2, 1.0))
        self._thread = None
        self._executor.shutdown(wait=False)

    @property
    def running(self) -> bool:
        """轮询线程是否在运行。"""

        return self._thread is not None and self._thread.is_alive()
