"""WebSocket 消息类型定义 — Pydantic 模型。"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel


# ────────────────────── 基础 ──────────────────────

class BaseMessage(BaseModel):
    type: str


# ────────────────────── Client → Server ──────────────────────

class PingMessage(BaseMessage):
    type: Literal["ping"] = "ping"


class AnalyzeDrawingMessage(BaseMessage):
    type: Literal["analyze-drawing"] = "analyze-drawing"
    image: str  # data URL


# ────────────────────── Server → Client ──────────────────────

class PongMessage(BaseMessage):
    type: Literal["pong"] = "pong"


class DrawingFeedbackMessage(BaseMessage):
    type: Literal["drawing-feedback"] = "drawing-feedback"
    text: str
    audio: str | None  # data URL；speech_required=false 且合成失败时为 None
    images: list[str] = []


class ErrorMessage(BaseMessage):
    type: Literal["error"] = "error"
    message: str
    details: str | None = None


# ────────────────────── 解析 ──────────────────────

_CLIENT_TYPES: dict[str, type[BaseMessage]] = {
    "ping": PingMessage,
    "analyze-drawing": AnalyzeDrawingMessage,
}


def parse_client_message(data: dict) -> BaseMessage:
    """解析 Client → Server 的 JSON 消息。"""
    msg_type = data.get("type")
    cls = _CLIENT_TYPES.get(msg_type)  # type: ignore[arg-type]
    if cls is None:
        raise ValueError(f"Unknown client message type: {msg_type!r}")
    return cls(**data)
