from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
import logging
from pathlib import Path
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_MIME = "image/png"


@dataclass(frozen=True)
class ImagePayload:
    """一张图片的传输形态（base64 数据 + MIME）。"""

    data: str
    mime_type: str

    @property
    def extension(self) -> str:
        """由 MIME 推导文件扩展名（`image/jpeg` -> `jpeg`；无法推导时为 `png`）。"""

        _, _, sub = self.mime_type.partition("/")
        return sub or "png"

    def to_content_block(self) -> dict:
        """转换为 MCP image content block。"""

        return {"type": "image", "data": self.data, "mimeType": self.mime_type}


@dataclass(frozen=True)
class SavedImage:
    """一张已落盘的图片（序号从 1 开始）。"""

    index: int
    path: Path
    payload: ImagePayload


def parse_data_uri(uri: str) -> ImagePayload:
    """
    解析 `data:<mime>;base64,<data>`；不是 data URI 时按裸 base64（png）处理。

    参数：
    - uri：data URI 或裸 base64 字符串
    """

    if uri.startswith("data:") and ";base64," in uri:
        mime, data = uri[len("data:"):].split(";base64,", 1)
        return ImagePayload(data=data, mime_type=mime or DEFAULT_IMAGE_MIME)
    return ImagePayload(data=uri, mime_type=DEFAULT_IMAGE_MIME)


def encode_data_uri(raw: bytes, mime_type: str = DEFAULT_IMAGE_MIME) -> str:
    """把原始字节编码为 data URI。"""

    return f"data:{mime_type};base64,{base64.b64encode(raw).decode('ascii')}"


def _save_one(images_dir: Path, index: int, uri: str) -> Optional[SavedImage]:
    """解码并写出单张图片；失败返回 None。"""

    payload = parse_data_uri(uri)
    try:
        raw = base64.b64decode(payload.data)
    except (binascii.Error, ValueError):
        logger.debug("Skipping image %d: invalid base64", index)
        return None
    path = images_dir / f"feedback_image_{index}.{payload.extension}"
    try:
        path.write_bytes(raw)
    except OSError:
        logger.debug("Skipping image %d: write to %s failed", index, path, exc_info=True)
        return None
    return SavedImage(index=index, path=path, payload=payload)


def save_feedback_images(images_dir: Path, images: Sequence[str]) -> List[SavedImage]:
    """
    解码一次 feedback 的全部图片并落盘到 `images/`（文件名按序号命名）。

    说明：
    - 每个 feedback 周期从 1 开始编号，后一次会覆盖前一次的同名文件；
    - 解码或写入失败的图片被跳过（不影响其余图片与文本回答）。
    """

    if not images:
        return []
    images_dir.mkdir(parents=True, exist_ok=True)
    saved: List[SavedImage] = []
    for i, uri in enumerate(images, start=1):
        item = _save_one(images_dir, i, str(uri))
        if item is not None:
            saved.append(item)
    return saved
