"""
设置文件变更监听（固定间隔轮询 mtime）。

说明：
- host 侧的“设置变更通知流”：文件 mtime/size 变化时重新加载并回调；
- 文件被删除时回退到 `fallback`（未给出时为内置默认配置）；
- 新内容不合法时保留上一份设置并记录 warning（不回调）。
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, Optional, Tuple

from pydantic import ValidationError

from autotester.config.settings import AutoTesterSettings, load_settings
from autotester.core.errors import FrameworkError

logger = logging.getLogger(__name__)

SettingsCallback = Callable[[AutoTesterSettings], None]


class SettingsWatcher:
    """
    监听单个 YAML 设置文件。

    参数：
    - path：设置文件路径（可以尚不存在）
    - on_change：设置变更回调（在 watcher 线程内调用）
    - interval_sec：轮询间隔
    - fallback：可选；文件不存在时使用的设置（默认内置默认配置）
    """

    def __init__(
        self,
        path: Path,
        on_change: SettingsCallback,
        *,
        interval_sec: float = 1.0,
        fallback: Optional[AutoTesterSettings] = None,
    ) -> None:
        """创建 watcher（记录文件当前指纹，不立即回调）。"""

        self._path = Path(path)
        self._on_change = on_change
        self._interval_sec = float(interval_sec)
        self._fallback = fallback
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._fingerprint = self._stat()

    def _stat(self) -> Optional[Tuple[int, int]]:
        """返回文件指纹 `(mtime_ns, size)`；文件不存在时为 None。"""

        try:
            st = self._path.stat()
        except OSError:
            return None
        return (st.st_mtime_ns, st.st_size)

    def load(self) -> AutoTesterSettings:
        """按当前文件内容加载设置（文件不存在时为 fallback 或默认配置）。"""

        if not self._path.exists():
            if self._fallback is not None:
                return self._fallback.model_copy(deep=True)
            return load_settings()
        return load_settings([self._path])

    def check(self) -> Optional[AutoTesterSettings]:
        """
        检查一次文件是否变化。

        返回：
        - AutoTesterSettings：发生变化且加载成功（已回调）
        - None：无变化或加载失败
        """

        fp = self._stat()
        if fp == self._fingerprint:
            return None
        self._fingerprint = fp
        try:
            settings = self.load()
        except (FrameworkError, ValidationError):
            logger.warning("Ignoring invalid settings file %s", self._path, exc_info=True)
            return None
        try:
            self._on_change(settings)
        except Exception:
            logger.warning("Settings change handler failed", exc_info=True)
        return settings

    def _run(self) -> None:
        """watcher 线程入口：固定间隔调用 `check()`。"""

        while not self._stop.wait(self._interval_sec):
            self.check()

    def start(self) -> None:
        """启动后台轮询线程（重复调用为 no-op）。"""

        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="autotester-settings", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """停止轮询并等待线程退出。"""

        self._stop.set()
        t = self._thread
        if t is not None and t is not threading.current_thread():
            t.join(timeout=max(self._interval_sec * 2, 1.0))
        self._thread = None
