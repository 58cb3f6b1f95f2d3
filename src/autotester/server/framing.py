from __future__ import annotations

import codecs
from typing import List, Union


class LineFramer:
    """
    换行分帧器：跨 chunk 缓存不完整的尾部数据，只返回完整行。

    说明：
    - 输入可以是 bytes（按 UTF-8 增量解码，多字节字符可被任意切分）或 str；
    - 返回的行不含换行符；空白行被跳过；
    - 流结束时残留的不完整尾部不会作为一帧处理（见 `pending`）。
    """

    def __init__(self) -> None:
        """创建空缓冲区。"""

        self._buf = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, chunk: Union[bytes, str]) -> List[str]:
        """追加一个 chunk，返回其中已完整的行。"""

        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buf += chunk
        *complete, self._buf = self._buf.split("\n")
        return [line.rstrip("\r") for line in complete if line.strip()]

    @property
    def pending(self) -> str:
        """尚未遇到换行的尾部数据。"""

        return self._buf
