"""流水线编排 — 图片归一化 → 视觉点评 → (语音 ∥ 关键词 → 参考图) → 下发。"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from drawbuddy.errors import (
    AnalysisError,
    SearchDegraded,
    SpeechSynthesisFailed,
    describe_failure,
)
from drawbuddy.imaging import normalize_image
from drawbuddy.pipeline.tts import encode_audio
from drawbuddy.ws.protocol import BaseMessage, DrawingFeedbackMessage, ErrorMessage
from drawbuddy.ws.session import AnalysisState

if TYPE_CHECKING:
    from drawbuddy.imaging import ImagePayload
    from drawbuddy.memory.history import ConversationMemory
    from drawbuddy.pipeline.llm import VisionClient
    from drawbuddy.pipeline.tts import TTSManager
    from drawbuddy.search import ReferenceImageFinder
    from drawbuddy.ws.session import Session

logger = logging.getLogger(__name__)


class Orchestrator:
    """单次抓拍事件的分析编排器。

    会话记忆只在事件成功时追加一次；任何致命失败都不会改动记忆，
    并且只向客户端发送一条 error。
    """

    def __init__(
        self,
        llm: VisionClient,
        tts: TTSManager,
        finder: ReferenceImageFinder,
        memory: ConversationMemory,
        speech_required: bool = True,
    ) -> None:
        self.llm = llm
        self.tts = tts
        self.finder = finder
        self.memory = memory
        self.speech_required = speech_required

    async def handle_analyze(self, session: Session, image_data: str) -> None:
        """处理 analyze-drawing：同一连接同时只跑一个事件，重叠的直接丢弃。"""
        if session.is_busy or session.pipeline_lock.locked():
            logger.info("Dropping capture from %s: analysis in progress", session.connection_id)
            return
        session.pipeline_task = asyncio.create_task(self.run(session, image_data))

    async def cancel_pipeline(self, session: Session) -> None:
        """取消进行中的事件（仅在服务关闭时使用）。"""
        task = session.pipeline_task
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        session.pipeline_task = None
        session.state = AnalysisState.IDLE

    async def run(self, session: Session, image_data: str) -> None:
        """完整流水线，结束时 session 回到 IDLE。"""
        async with session.pipeline_lock:
            try:
                await self._run_pipeline(session, image_data)
            except asyncio.CancelledError:
                logger.info("Analysis cancelled for %s", session.connection_id)
                raise
            except AnalysisError as e:
                logger.warning(
                    "Analysis failed for %s: %s (%s)",
                    session.connection_id, e.message, type(e).__name__,
                )
                await self._fail(session, e.message, describe_failure(e))
            except Exception as e:
                logger.exception("Unexpected analysis error for %s", session.connection_id)
                await self._fail(session, "Failed to analyze drawing", describe_failure(e))
            finally:
                session.state = AnalysisState.IDLE

    async def _run_pipeline(self, session: Session, image_data: str) -> None:
        # 1. 归一化
        session.transition_to(AnalysisState.NORMALIZING)
        image = normalize_image(image_data)

        # 2. 视觉点评（带最近指令，避免重复）
        session.transition_to(AnalysisState.CRITIQUING)
        history = self.memory.get(session.connection_id)
        critique = await self.llm.critique(image, history)
        logger.info("Critique for %s: %s", session.connection_id, critique)

        # 3. 语音合成 ∥ 关键词 → 参考图
        session.transition_to(AnalysisState.ENRICHING)
        audio_result, images = await asyncio.gather(
            self.tts.synthesize(critique),
            self._find_references(session, image),
            return_exceptions=True,
        )
        if isinstance(images, BaseException):
            # _find_references 自身吸收错误，这里只剩取消之类
            raise images
        audio = self._resolve_audio(session, audio_result)

        if session.closed:
            logger.info("Discarding result for disconnected %s", session.connection_id)
            return

        # 4. 下发
        session.transition_to(AnalysisState.EMITTING)
        await self._send(
            session,
            DrawingFeedbackMessage(
                text=critique,
                audio=encode_audio(audio) if audio is not None else None,
                images=images,
            ),
        )

        # 5. 送达后才记入记忆；发送期间断开的会话已被清理，不再写入
        if session.closed:
            return
        self.memory.append(session.connection_id, critique)
        logger.info(
            "Feedback sent to %s (%d reference images)", session.connection_id, len(images)
        )

    def _resolve_audio(self, session: Session, result: bytes | BaseException) -> bytes | None:
        if not isinstance(result, BaseException):
            return result
        if not isinstance(result, SpeechSynthesisFailed):
            raise result
        if self.speech_required:
            raise result
        logger.warning("Speech failed for %s, sending text only", session.connection_id)
        return None

    async def _find_references(self, session: Session, image: ImagePayload) -> list[str]:
        """关键词提取 + 图片搜索；失败降级为空列表。"""
        if not self.finder.is_configured:
            return []
        try:
            keyword = await self.llm.extract_keyword(image)
            logger.info("Search keyword for %s: %r", session.connection_id, keyword)
            return await self.finder.find(keyword)
        except asyncio.CancelledError:
            raise
        except SearchDegraded as e:
            logger.warning("Reference search degraded for %s: %s", session.connection_id, e.message)
        except Exception:
            logger.exception("Reference search error for %s", session.connection_id)
        return []

    async def _fail(self, session: Session, message: str, details: str) -> None:
        session.state = AnalysisState.FAILED
        try:
            await self._send(session, ErrorMessage(message=message, details=details))
        except Exception as e:
            logger.warning("Could not deliver error to %s: %r", session.connection_id, e)

    async def _send(self, session: Session, msg: BaseMessage) -> None:
        if session.closed:
            logger.info(
                "Dropping %s for disconnected %s", msg.type, session.connection_id
            )
            return
        await session.ws.send_text(msg.model_dump_json())
