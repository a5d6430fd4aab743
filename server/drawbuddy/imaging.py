"""图片归一化 — 剥离 data URL 前缀，得到可直接外发的 base64 载荷。"""

from __future__ import annotations

import base64
import binascii
import logging
import re
from dataclasses import dataclass

from drawbuddy.errors import InvalidImageData

logger = logging.getLogger(__name__)

_DATA_URL_RE = re.compile(r"^data:(?P<media_type>[^;,]+)?(?P<params>(?:;[^;,]*)*),(?P<data>.*)$", re.S)

DEFAULT_MEDIA_TYPE = "image/jpeg"


@dataclass(frozen=True)
class ImagePayload:
    media_type: str
    data: str  # base64

    @property
    def data_url(self) -> str:
        return f"data:{self.media_type};base64,{self.data}"


def normalize_image(raw: str) -> ImagePayload:
    """解析客户端抓拍的图片字符串。

    支持 ``data:image/<fmt>;base64,<payload>`` 和裸 base64（按 JPEG 处理）。
    载荷内容原样返回，只做合法性校验。
    """
    if not raw or not raw.strip():
        raise InvalidImageData("No image data received")

    raw = raw.strip()
    media_type = DEFAULT_MEDIA_TYPE
    match = _DATA_URL_RE.match(raw)
    if match:
        media_type = (match.group("media_type") or "").lower()
        params = match.group("params").lower().split(";")
        if not media_type.startswith("image/") or "base64" not in params:
            raise InvalidImageData(f"Unsupported image encoding: {raw[:40]!r}")
        data = match.group("data")
    else:
        data = raw

    if not data:
        raise InvalidImageData("Image payload is empty")

    try:
        base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidImageData("Image payload is not valid base64") from e

    logger.debug("Image normalized: %s, %d chars", media_type, len(data))
    return ImagePayload(media_type=media_type, data=data)
