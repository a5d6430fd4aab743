"""参考图搜索 — Google Custom Search 图片结果，尽力而为。"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

if TYPE_CHECKING:
    from drawbuddy.config import SearchConfig

logger = logging.getLogger(__name__)


class ReferenceImageFinder:
    """按关键词查找参考图 URL。任何失败都返回空列表，从不抛异常。"""

    def __init__(
        self, config: SearchConfig, transport: httpx.AsyncBaseTransport | None = None
    ) -> None:
        self.config = config
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.config.api_key and self.config.cse_id)

    async def find(self, keyword: str, count: int | None = None) -> list[str]:
        count = self.config.count if count is None else count
        if not self.is_configured:
            logger.debug("Image search credentials missing, skipping search")
            return []
        if count <= 0 or not keyword.strip():
            return []

        params: dict[str, Any] = {
            "key": self.config.api_key,
            "cx": self.config.cse_id,
            "searchType": "image",
            "q": keyword,
            # Custom Search 单次最多 10 条
            "num": min(count, 10),
        }

        try:
            async with httpx.AsyncClient(
                timeout=self.config.timeout, transport=self._transport
            ) as client:
                resp = await client.get(self.config.endpoint, params=params)
                resp.raise_for_status()
                items = resp.json().get("items") or []
        except httpx.HTTPStatusError as e:
            logger.warning(
                "Image search error %s: %s", e.response.status_code, e.response.text[:200]
            )
            return []
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.warning("Image search failed: %r", e)
            return []

        links = [item["link"] for item in items if isinstance(item, dict) and item.get("link")]
        logger.info("Image search %r: %d results", keyword, len(links))
        return links[:count]
