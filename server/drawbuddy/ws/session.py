"""会话对象 — 聚合单个 WebSocket 连接的所有状态。"""

from __future__ import annotations

import asyncio
import enum
import time
import uuid
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import WebSocket


class AnalysisState(enum.Enum):
    IDLE = "idle"
    NORMALIZING = "normalizing"
    CRITIQUING = "critiquing"
    ENRICHING = "enriching"  # 语音合成 ∥ 关键词 → 参考图搜索
    EMITTING = "emitting"
    FAILED = "failed"


_VALID_TRANSITIONS: dict[AnalysisState, set[AnalysisState]] = {
    AnalysisState.IDLE: {AnalysisState.NORMALIZING},
    AnalysisState.NORMALIZING: {AnalysisState.CRITIQUING, AnalysisState.FAILED},
    AnalysisState.CRITIQUING: {AnalysisState.ENRICHING, AnalysisState.FAILED},
    AnalysisState.ENRICHING: {AnalysisState.EMITTING, AnalysisState.FAILED},
    AnalysisState.EMITTING: {AnalysisState.IDLE},
    AnalysisState.FAILED: {AnalysisState.IDLE},
}


def new_connection_id() -> str:
    return uuid.uuid4().hex


class Session:
    """每个 WebSocket 连接一个 Session 实例。"""

    def __init__(self, connection_id: str, ws: WebSocket) -> None:
        self.connection_id = connection_id
        self.ws = ws

        # 状态
        self.state: AnalysisState = AnalysisState.IDLE
        self.closed: bool = False

        # 流水线
        self.pipeline_task: asyncio.Task | None = None
        self.pipeline_lock = asyncio.Lock()

        self.last_heartbeat: float = time.monotonic()

    @property
    def is_busy(self) -> bool:
        return self.pipeline_task is not None and not self.pipeline_task.done()

    def transition_to(self, new_state: AnalysisState) -> None:
        """状态机转换，校验合法路径。"""
        allowed = _VALID_TRANSITIONS.get(self.state, set())
        if new_state not in allowed:
            raise ValueError(
                f"Invalid state transition: {self.state.value} → {new_state.value}"
            )
        self.state = new_state

    def update_heartbeat(self) -> None:
        self.last_heartbeat = time.monotonic()
