"""语音合成 — OpenAI 兼容 /audio/speech 或 Edge-TTS，输出整段 MP3。"""

from __future__ import annotations

import base64
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import edge_tts
import httpx

from drawbuddy.errors import SpeechSynthesisFailed

if TYPE_CHECKING:
    from drawbuddy.config import TTSConfig

logger = logging.getLogger(__name__)

AUDIO_MEDIA_TYPE = "audio/mpeg"


def encode_audio(audio: bytes, media_type: str = AUDIO_MEDIA_TYPE) -> str:
    """二进制音频 → data URL，供 JSON 消息携带。"""
    return f"data:{media_type};base64,{base64.b64encode(audio).decode('ascii')}"


class TTSBackend(ABC):
    """TTS 后端协议。"""

    async def start(self) -> None:
        pass

    async def close(self) -> None:
        pass

    @abstractmethod
    async def synthesize(self, text: str) -> bytes:
        """合成文本为完整 MP3 数据。"""
        ...  # pragma: no cover


class OpenAITTSBackend(TTSBackend):
    """OpenAI 兼容语音接口。"""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        model: str = "tts-1",
        voice: str = "alloy",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.voice = voice
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=httpx.Timeout(self.timeout),
            transport=self._transport,
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def synthesize(self, text: str) -> bytes:
        if self._client is None:
            raise RuntimeError("TTS client not started")
        resp = await self._client.post(
            "/audio/speech",
            json={"model": self.model, "voice": self.voice, "input": text},
        )
        resp.raise_for_status()
        return resp.content


class EdgeTTSBackend(TTSBackend):
    """Edge-TTS 后端 — 云端合成，收集整句 MP3。"""

    def __init__(self, voice: str = "ru-RU-SvetlanaNeural") -> None:
        self.voice = voice

    async def synthesize(self, text: str) -> bytes:
        communicate = edge_tts.Communicate(text, self.voice)

        mp3_chunks: list[bytes] = []
        async for chunk in communicate.stream():
            if chunk["type"] == "audio":
                mp3_chunks.append(chunk["data"])
        return b"".join(mp3_chunks)


class TTSManager:
    """按配置选择单一后端，不做自动降级或重试。"""

    def __init__(self, config: TTSConfig, fallback_api_key: str = "") -> None:
        self.config = config
        self._backends: dict[str, TTSBackend] = {
            "openai": OpenAITTSBackend(
                config.base_url,
                config.api_key or fallback_api_key,
                model=config.model,
                voice=config.voice,
                timeout=config.timeout,
            ),
            "edge": EdgeTTSBackend(config.edge_voice),
        }
        self._current: str = config.default_backend

    @property
    def current_backend(self) -> str:
        return self._current

    async def start(self) -> None:
        for backend in self._backends.values():
            await backend.start()

    async def close(self) -> None:
        for backend in self._backends.values():
            await backend.close()

    async def synthesize(self, text: str) -> bytes:
        """合成整段音频。失败或无音频时抛 SpeechSynthesisFailed。"""
        if not text.strip():
            raise SpeechSynthesisFailed("Nothing to synthesize")

        backend = self._backends[self._current]
        try:
            audio = await backend.synthesize(text)
        except Exception as e:
            logger.error("TTS (%s) failed: %r", self._current, e)
            raise SpeechSynthesisFailed() from e

        if not audio:
            logger.error("TTS (%s) returned no audio", self._current)
            raise SpeechSynthesisFailed("Speech service returned no audio")
        return audio
