"""视觉模型客户端 — OpenAI 兼容 /chat/completions，点评 + 关键词共用一种请求。"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from drawbuddy.errors import EmptyCritique, ModelUnavailable, SearchDegraded

if TYPE_CHECKING:
    from drawbuddy.config import LLMConfig
    from drawbuddy.imaging import ImagePayload

logger = logging.getLogger(__name__)

_CRITIQUE_PERSONA = (
    "You are an AI assistant that helps people draw. Look at the picture and say "
    "what to draw next and exactly where on the drawing. Do not suggest improvements "
    "or give advice, only one concrete instruction of what to draw and where."
)

_CRITIQUE_RULES = (
    " Do not repeat previous instructions."
    " Answer strictly in {language}, very briefly, in exactly 1-2 sentences."
)

_CRITIQUE_USER_PROMPT = "Here is a photo of my drawing. Tell me what to draw next and where."

_KEYWORD_PERSONA = (
    "Based on this drawing, give only one keyword or a short phrase (1-3 words) "
    "in {language} to search for reference images that would help improve this drawing. "
    "Reply with the phrase only."
)


class VisionClient:
    """视觉语言模型客户端。"""

    def __init__(self, config: LLMConfig) -> None:
        self.config = config
        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        self._client = httpx.AsyncClient(
            base_url=self.config.base_url,
            headers={"Authorization": f"Bearer {self.config.api_key}"},
            timeout=httpx.Timeout(self.config.timeout),
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def is_configured(self) -> bool:
        return bool(self.config.api_key)

    def build_critique_persona(self, history: list[str]) -> str:
        """点评 system prompt：人设 + 历史指令 + 不重复要求。"""
        persona = _CRITIQUE_PERSONA
        if history:
            persona += f" Previous instructions: {' | '.join(history)}."
        persona += _CRITIQUE_RULES.format(language=self.config.critique_language)
        return persona

    def build_keyword_persona(self) -> str:
        return _KEYWORD_PERSONA.format(language=self.config.keyword_language)

    def build_messages(
        self,
        image: ImagePayload,
        persona: str,
        prompt: str = _CRITIQUE_USER_PROMPT,
    ) -> list[dict[str, Any]]:
        """组装 messages（system + 文本与图片混合的 user）。"""
        return [
            {"role": "system", "content": persona},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": image.data_url}},
                ],
            },
        ]

    async def query(
        self,
        image: ImagePayload,
        persona: str,
        max_tokens: int,
        prompt: str = _CRITIQUE_USER_PROMPT,
    ) -> str:
        """单次视觉问答，返回第一条回答文本（可能为空串）。

        网络错误、超时、HTTP 错误码或响应结构异常都抛 ModelUnavailable。
        """
        if not self._client:
            raise RuntimeError("Vision client not started")

        payload: dict[str, Any] = {
            "model": self.config.model,
            "messages": self.build_messages(image, persona, prompt),
            "max_tokens": max_tokens,
        }

        try:
            resp = await self._client.post("/chat/completions", json=payload)
            resp.raise_for_status()
            body = resp.json()
            content = body["choices"][0]["message"].get("content")
        except httpx.HTTPStatusError as e:
            logger.error(
                "Vision API error %s: %s", e.response.status_code, e.response.text[:200]
            )
            raise ModelUnavailable() from e
        except httpx.HTTPError as e:
            logger.error("Vision API request failed: %r", e)
            raise ModelUnavailable() from e
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            logger.error("Malformed vision API response: %r", e)
            raise ModelUnavailable("Malformed response from the AI model") from e

        return (content or "").strip()

    async def critique(self, image: ImagePayload, history: list[str]) -> str:
        """生成一条简短绘画指令，保证非空。"""
        text = await self.query(
            image,
            self.build_critique_persona(history),
            self.config.critique_max_tokens,
        )
        if not text:
            raise EmptyCritique()
        return text

    async def extract_keyword(self, image: ImagePayload) -> str:
        """提取 1-3 词的参考图搜索短语。任何失败都视为 SearchDegraded。"""
        try:
            keyword = await self.query(
                image,
                self.build_keyword_persona(),
                self.config.keyword_max_tokens,
            )
        except ModelUnavailable as e:
            raise SearchDegraded("Keyword extraction failed") from e

        keyword = keyword.strip().strip("\"'«».").strip()
        if not keyword:
            raise SearchDegraded("Empty search keyword")
        return keyword
