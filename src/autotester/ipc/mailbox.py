"""
文件 mailbox（request / feedback / config 三个控制文件）。

语义：
- 文件“存在”即表示有一条待处理消息；“不存在”表示尚无消息或已被消费；
- `write()` 整文件替换（临时文件 + `os.replace`），读者只会看到完整旧内容或完整新内容；
- `try_consume()` 先把控制文件 rename 到一个私有名字（原子认领），再读取并删除：
  认领成功的消费者是唯一的，之后任何消费者都不会再观察到这条消息；
- 坏 JSON 视为“无消息”（跳过本轮），通过 `on_malformed` hook 可观测，不向上抛出。
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import secrets
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

from autotester.ipc.paths import ChannelPaths, MessageKind

logger = logging.getLogger(__name__)

MalformedHook = Callable[[str, Exception], None]


def _log_malformed(kind: str, exc: Exception) -> None:
    """默认的坏 payload 诊断：写 debug 日志。"""

    logger.debug("Dropping malformed %s message: %s", kind, exc)


class Mailbox:
    """
    channel 目录上的控制文件读写。

    参数：
    - paths：channel 路径集合
    - on_malformed：坏 payload 的诊断回调（默认写 debug 日志）
    """

    def __init__(self, paths: ChannelPaths, *, on_malformed: Optional[MalformedHook] = None) -> None:
        """创建 mailbox（不创建目录；首次写入时按需创建）。"""

        self._paths = paths
        self._on_malformed = on_malformed or _log_malformed

    @property
    def paths(self) -> ChannelPaths:
        """channel 路径集合。"""

        return self._paths

    def _report(self, kind: str, exc: Exception) -> None:
        """调用诊断 hook（hook 自身异常只记录日志）。"""

        try:
            self._on_malformed(kind, exc)
        except Exception:
            logger.warning("Malformed-message hook raised", exc_info=True)

    def exists(self, kind: MessageKind) -> bool:
        """控制文件当前是否存在（即是否有待处理消息）。"""

        return self._paths.for_kind(kind).exists()

    def write(self, kind: MessageKind, payload: Mapping[str, Any]) -> None:
        """
        原子写入控制文件（覆盖已有内容）。

        参数：
        - kind：request|feedback|config
        - payload：可 JSON 序列化的 mapping
        """

        target = self._paths.for_kind(kind)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(f"{target.name}.{secrets.token_hex(4)}.tmp")
        try:
            tmp.write_text(json.dumps(dict(payload), ensure_ascii=False), encoding="utf-8")
            os.replace(tmp, target)
        finally:
            with contextlib.suppress(OSError):
                if tmp.exists():
                    tmp.unlink()

    def _load(self, kind: str, path: Path) -> Optional[Dict[str, Any]]:
        """读取并解析 JSON object；不存在返回 None，损坏时回调 hook 并返回 None。"""

        try:
            obj = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            self._report(kind, e)
            return None
        if not isinstance(obj, dict):
            self._report(kind, ValueError(f"{kind} payload must be an object, got {type(obj).__name__}"))
            return None
        return obj

    def try_consume(self, kind: MessageKind) -> Optional[Dict[str, Any]]:
        """
        认领并消费一条消息（至多一次投递）。

        返回：
        - dict：成功消费的 payload
        - None：没有消息、被其他消费者抢先认领、IO 瞬时失败或 payload 损坏
        """

        target = self._paths.for_kind(kind)
        claimed = target.with_name(f"{target.name}.{secrets.token_hex(4)}.claimed")
        try:
            os.replace(target, claimed)
        except FileNotFoundError:
            return None
        except OSError:
            # 瞬时 IO（例如文件被短暂占用）：交给下一次 tick 重试
            logger.debug("Could not claim %s message", kind, exc_info=True)
            return None
        try:
            return self._load(kind, claimed)
        finally:
            with contextlib.suppress(OSError):
                claimed.unlink()

    def peek(self, kind: MessageKind) -> Optional[Dict[str, Any]]:
        """读取控制文件但不消费（config 快照读取使用）。"""

        return self._load(kind, self._paths.for_kind(kind))

    def discard(self, kind: MessageKind) -> None:
        """删除控制文件（幂等：不存在时为 no-op）。"""

        with contextlib.suppress(FileNotFoundError):
            self._paths.for_kind(kind).unlink()
