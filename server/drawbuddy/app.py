"""FastAPI 应用工厂 + lifespan。"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from drawbuddy.config import Settings, load_settings
from drawbuddy.memory.history import ConversationMemory
from drawbuddy.pipeline.llm import VisionClient
from drawbuddy.pipeline.orchestrator import Orchestrator
from drawbuddy.pipeline.tts import TTSManager
from drawbuddy.search import ReferenceImageFinder
from drawbuddy.ws.handler import WebSocketHandler
from drawbuddy.ws.session import Session

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """启动/关闭生命周期管理。"""
    settings: Settings = app.state.settings

    # 1. 日志
    logging.basicConfig(
        level=getattr(logging, settings.server.log_level),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    # 2. 凭据检查，缺失直接失败
    settings.require_credentials()
    if not settings.search_configured:
        logger.warning("Image search credentials not configured, reference images disabled")

    # 3. 视觉模型
    llm = VisionClient(settings.llm)
    await llm.start()

    # 4. TTS
    tts = TTSManager(settings.tts, fallback_api_key=settings.llm.api_key)
    await tts.start()

    # 5. 参考图搜索
    finder = ReferenceImageFinder(settings.search)

    # 6. 会话与记忆
    sessions: dict[str, Session] = {}
    memory = ConversationMemory(settings.pipeline.history_size)

    # 7. Orchestrator
    orchestrator = Orchestrator(
        llm, tts, finder, memory, speech_required=settings.pipeline.speech_required
    )

    # 8. Handler
    handler = WebSocketHandler(
        sessions,
        orchestrator,
        memory,
        allowed_origin=settings.server.allowed_origin,
        heartbeat_timeout=settings.pipeline.heartbeat_timeout,
    )

    # Store on app state
    app.state.handler = handler
    app.state.sessions = sessions
    app.state.memory = memory
    app.state.llm = llm
    app.state.finder = finder

    logger.info(
        "DrawBuddy ready: model=%s tts=%s search=%s",
        settings.llm.model,
        tts.current_backend,
        "on" if settings.search_configured else "off",
    )

    yield

    # Shutdown (reverse order)
    for session in list(sessions.values()):
        await orchestrator.cancel_pipeline(session)
    await tts.close()
    await llm.close()


def create_app(settings: Settings | None = None) -> FastAPI:
    """创建 FastAPI 应用。"""
    if settings is None:
        settings = load_settings()

    app = FastAPI(title="DrawBuddy Server", lifespan=lifespan)
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.server.allowed_origin],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.websocket("/ws")
    async def ws_endpoint(ws: WebSocket):
        handler: WebSocketHandler = app.state.handler
        await handler.handle_connection(ws)

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "vision_configured": app.state.llm.is_configured if hasattr(app.state, "llm") else False,
            "search_configured": settings.search_configured,
            "connections": len(app.state.sessions) if hasattr(app.state, "sessions") else 0,
        }

    @app.get("/test-search")
    async def test_search(q: str = "cat drawing"):
        """诊断用：直接跑一次参考图搜索。"""
        finder: ReferenceImageFinder = app.state.finder
        images = await finder.find(q)
        return {"success": bool(images), "images": images}

    return app
