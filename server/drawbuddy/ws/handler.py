"""WebSocket endpoint + 消息路由分发。"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import TYPE_CHECKING

from fastapi import WebSocket, WebSocketDisconnect, status

from drawbuddy.ws.protocol import AnalyzeDrawingMessage, PongMessage, parse_client_message
from drawbuddy.ws.session import Session, new_connection_id

if TYPE_CHECKING:
    from drawbuddy.memory.history import ConversationMemory
    from drawbuddy.pipeline.orchestrator import Orchestrator

logger = logging.getLogger(__name__)

# 心跳检查周期 (秒)
HEARTBEAT_CHECK_INTERVAL = 30


class WebSocketHandler:
    """管理连接生命周期与会话记忆，路由单个连接的消息。"""

    def __init__(
        self,
        sessions: dict[str, Session],
        orchestrator: Orchestrator,
        memory: ConversationMemory,
        allowed_origin: str = "",
        heartbeat_timeout: int = 90,
    ) -> None:
        self._sessions = sessions
        self._orchestrator = orchestrator
        self._memory = memory
        self._allowed_origin = allowed_origin.rstrip("/")
        self._heartbeat_timeout = heartbeat_timeout

    def origin_allowed(self, origin: str | None) -> bool:
        """无 Origin 头（非浏览器客户端）放行；配置为 * 时全部放行。"""
        if not origin or not self._allowed_origin or self._allowed_origin == "*":
            return True
        return origin.rstrip("/") == self._allowed_origin

    async def handle_connection(self, ws: WebSocket) -> None:
        """处理完整的 WebSocket 连接生命周期。"""
        origin = ws.headers.get("origin")
        if not self.origin_allowed(origin):
            logger.warning("Rejected WebSocket from origin %s", origin)
            await ws.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        await ws.accept()
        session = Session(new_connection_id(), ws)
        self._sessions[session.connection_id] = session
        logger.info("Client connected: %s", session.connection_id)

        heartbeat_task = asyncio.create_task(self._heartbeat_monitor(session))

        try:
            await self._message_loop(session)
        except WebSocketDisconnect:
            pass
        except Exception:
            logger.exception("WebSocket error: %s", session.connection_id)
        finally:
            heartbeat_task.cancel()
            self.disconnect(session)

    def disconnect(self, session: Session) -> None:
        """断开：立即清空记忆；进行中的调用不取消，结果到达后丢弃。"""
        session.closed = True
        self._memory.clear(session.connection_id)
        self._sessions.pop(session.connection_id, None)
        logger.info("Client disconnected: %s", session.connection_id)

    async def _message_loop(self, session: Session) -> None:
        """消息接收主循环。"""
        while True:
            msg = await session.ws.receive()

            if msg["type"] == "websocket.disconnect":
                break

            if msg["type"] == "websocket.receive":
                if "text" in msg and msg["text"]:
                    await self._route_json(session, msg["text"])
                elif "bytes" in msg and msg["bytes"]:
                    logger.warning("Ignoring binary frame from %s", session.connection_id)

    async def _route_json(self, session: Session, raw: str) -> None:
        """解析 JSON 并路由到处理器。"""
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Invalid JSON from %s: %s", session.connection_id, raw[:100])
            return

        if not isinstance(data, dict):
            logger.warning("Unexpected payload from %s: %s", session.connection_id, raw[:100])
            return

        try:
            msg = parse_client_message(data)
        except ValueError as e:
            logger.warning("Unknown message from %s: %s", session.connection_id, e)
            return

        # 任何消息都说明连接还活着
        session.update_heartbeat()

        if msg.type == "ping":
            await session.ws.send_text(PongMessage().model_dump_json())

        elif isinstance(msg, AnalyzeDrawingMessage):
            logger.info("Received drawing analysis request from %s", session.connection_id)
            await self._orchestrator.handle_analyze(session, msg.image)

    async def _heartbeat_monitor(self, session: Session) -> None:
        """监控心跳超时。"""
        try:
            while True:
                await asyncio.sleep(HEARTBEAT_CHECK_INTERVAL)
                elapsed = time.monotonic() - session.last_heartbeat
                if elapsed > self._heartbeat_timeout:
                    logger.warning(
                        "Heartbeat timeout for %s (%.0fs)", session.connection_id, elapsed
                    )
                    await session.ws.close()
                    break
        except asyncio.CancelledError:
            pass
