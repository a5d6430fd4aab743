"""E2E 测试专用 fixtures — mock 外部服务，使用 TestClient。"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from starlette.testclient import TestClient

from drawbuddy.config import Settings, load_settings

FIXTURES_DIR = Path(__file__).parent.parent / "fixtures"

ALLOWED_ORIGIN = "http://testclient.local"


# ────────────────────── E2E WebSocket Client ──────────────────────


class E2EWebSocketClient:
    """E2E 测试 WebSocket 客户端辅助类。"""

    def __init__(self, websocket) -> None:
        self.ws = websocket
        self.received: list[dict] = []

    def send_json(self, data: dict) -> None:
        self.ws.send_json(data)

    def send_ping(self) -> None:
        self.send_json({"type": "ping"})

    def send_drawing(self, image: str) -> None:
        self.send_json({"type": "analyze-drawing", "image": image})

    def receive_json_msg(self) -> dict:
        data = self.ws.receive_json()
        self.received.append(data)
        return data

    def wait_for_message_type(self, msg_type: str, max_messages: int = 20) -> dict | None:
        """接收消息直到收到指定类型。"""
        for _ in range(max_messages):
            msg = self.receive_json_msg()
            if msg.get("type") == msg_type:
                return msg
        return None

    def get_message_sequence(self) -> list[str]:
        return [m.get("type") for m in self.received]


# ────────────────────── Fixtures ──────────────────────


@pytest.fixture
def e2e_settings() -> Settings:
    return load_settings(FIXTURES_DIR / "test_config.toml")


@pytest.fixture
def mock_vision_client(mock_llm) -> MagicMock:
    return mock_llm


@pytest.fixture
def mock_tts_manager(mock_tts) -> MagicMock:
    return mock_tts


@pytest.fixture
def mock_image_finder(mock_finder) -> MagicMock:
    mock_finder.find = AsyncMock(return_value=["url1", "url2"])
    return mock_finder


@pytest.fixture
def e2e_app_and_client(e2e_settings, mock_vision_client, mock_tts_manager, mock_image_finder):
    """创建带有 mock 组件的 FastAPI 应用和 TestClient。"""
    from drawbuddy.app import create_app

    with patch("drawbuddy.app.VisionClient") as MockVision, \
         patch("drawbuddy.app.TTSManager") as MockTTS, \
         patch("drawbuddy.app.ReferenceImageFinder") as MockFinder:

        MockVision.return_value = mock_vision_client
        MockTTS.return_value = mock_tts_manager
        MockFinder.return_value = mock_image_finder

        app = create_app(e2e_settings)

        with TestClient(app) as client:
            yield app, client


@pytest.fixture
def client(e2e_app_and_client) -> TestClient:
    _, client = e2e_app_and_client
    return client


@pytest.fixture
def ws_client(e2e_app_and_client):
    """创建 WebSocket 客户端工厂。"""
    _, client = e2e_app_and_client

    @contextmanager
    def _connect(origin: str = ALLOWED_ORIGIN):
        with client.websocket_connect("/ws", headers={"origin": origin}) as ws:
            yield E2EWebSocketClient(ws)

    return _connect
