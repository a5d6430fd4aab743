"""共享 fixtures — mock WebSocket, 测试配置, Session 等。"""

from __future__ import annotations

import asyncio
import base64
import json
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from drawbuddy.config import Settings, load_settings
from drawbuddy.errors import ModelUnavailable, SearchDegraded
from drawbuddy.memory.history import ConversationMemory
from drawbuddy.ws.session import Session

FIXTURES_DIR = Path(__file__).parent / "fixtures"

# 1x1 透明 PNG
PNG_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)
PNG_DATA_URL = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode()

AUDIO_BYTES = b"ID3\x03\x00fake-mp3-audio"


# ────────────────────── Mock WebSocket ──────────────────────


class MockWebSocket:
    """模拟 FastAPI WebSocket，记录发送的消息。"""

    def __init__(self, headers: dict[str, str] | None = None) -> None:
        self.headers = headers or {}
        self.sent_text: list[str] = []
        self._receive_queue: asyncio.Queue = asyncio.Queue()
        self.accepted = False
        self.closed = False
        self.close_code: int | None = None

    async def accept(self) -> None:
        self.accepted = True

    async def send_text(self, data: str) -> None:
        self.sent_text.append(data)

    async def receive(self) -> dict[str, Any]:
        return await self._receive_queue.get()

    async def close(self, code: int = 1000) -> None:
        self.closed = True
        self.close_code = code

    def inject_text(self, data: str) -> None:
        """注入一条 JSON 文本消息到接收队列。"""
        self._receive_queue.put_nowait({"type": "websocket.receive", "text": data})

    def inject_bytes(self, data: bytes) -> None:
        """注入一条二进制消息到接收队列。"""
        self._receive_queue.put_nowait({"type": "websocket.receive", "bytes": data})

    def inject_disconnect(self) -> None:
        """注入断开事件。"""
        self._receive_queue.put_nowait({"type": "websocket.disconnect"})

    def get_sent_json_messages(self) -> list[dict]:
        """将所有已发送的 JSON 文本解析为 dict 列表。"""
        return [json.loads(t) for t in self.sent_text]

    def get_sent_messages_by_type(self, msg_type: str) -> list[dict]:
        """筛选指定 type 的已发送消息。"""
        return [m for m in self.get_sent_json_messages() if m.get("type") == msg_type]


# ────────────────────── Fixtures ──────────────────────


@pytest.fixture
def test_config() -> Settings:
    """加载测试专用配置。"""
    return load_settings(FIXTURES_DIR / "test_config.toml")


@pytest.fixture
def mock_ws() -> MockWebSocket:
    return MockWebSocket()


@pytest.fixture
def session(mock_ws: MockWebSocket) -> Session:
    """创建一个测试 Session，挂载 mock_ws。"""
    return Session(connection_id="conn-1", ws=mock_ws)  # type: ignore[arg-type]


@pytest.fixture
def memory() -> ConversationMemory:
    return ConversationMemory(max_items=3)


@pytest.fixture
def image_data_url() -> str:
    return PNG_DATA_URL


@pytest.fixture
def mock_llm() -> MagicMock:
    """Mock VisionClient — 固定点评和关键词。"""
    llm = MagicMock()
    llm.start = AsyncMock()
    llm.close = AsyncMock()
    llm.is_configured = True
    llm.critique = AsyncMock(return_value="Draw a circle in the top-left.")
    llm.extract_keyword = AsyncMock(return_value="cat sketch")
    return llm


@pytest.fixture
def failing_llm(mock_llm) -> MagicMock:
    """点评调用失败的 VisionClient。"""
    mock_llm.critique = AsyncMock(side_effect=ModelUnavailable())
    mock_llm.extract_keyword = AsyncMock(side_effect=SearchDegraded())
    return mock_llm


@pytest.fixture
def mock_tts() -> MagicMock:
    """Mock TTSManager — 返回固定 MP3 字节。"""
    tts = MagicMock()
    tts.current_backend = "openai"
    tts.start = AsyncMock()
    tts.close = AsyncMock()
    tts.synthesize = AsyncMock(return_value=AUDIO_BYTES)
    return tts


@pytest.fixture
def mock_finder() -> MagicMock:
    """Mock ReferenceImageFinder。"""
    finder = MagicMock()
    finder.is_configured = True
    finder.find = AsyncMock(return_value=["url1", "url2"])
    return finder


@pytest.fixture
def audio_bytes() -> bytes:
    return AUDIO_BYTES


@pytest.fixture
def make_ws():
    """创建额外的 MockWebSocket（多连接场景）。"""
    return MockWebSocket
