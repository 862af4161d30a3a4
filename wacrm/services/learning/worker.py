"""Learning hand-off queue - post-reply learning writes off the response path."""

import asyncio
from dataclasses import dataclass

import structlog

from wacrm.core.config import settings
from wacrm.models import FeedbackRating
from wacrm.services.learning.store import LearningStore
from wacrm.services.learning.text import (
    FAQ_INTENTS,
    GENERAL_INTENT,
    detect_intent,
    extract_keywords,
)

logger = structlog.get_logger()


@dataclass
class LearningJob:
    """One answered exchange to learn from."""

    tenant_id: str
    session_id: str
    conversation_id: str
    agent_id: str | None
    question: str
    answer: str


class LearningQueue:
    """Bounded queue drained by a single background worker.

    The orchestrator only ever calls ``enqueue``; a full queue drops the job
    and the reply path never waits on a learning write.
    """

    def __init__(self, store: LearningStore, maxsize: int | None = None) -> None:
        self.store = store
        self._queue: asyncio.Queue[LearningJob] = asyncio.Queue(
            maxsize=maxsize if maxsize is not None else settings.learning_queue_size
        )
        self._worker: asyncio.Task | None = None

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def enqueue(self, job: LearningJob) -> bool:
        """Hand a job to the worker. Returns False when the queue is full."""
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            logger.warning(
                "Learning queue full, dropping job",
                tenant_id=job.tenant_id,
                conversation_id=job.conversation_id,
            )
            return False
        return True

    # ==================== Worker lifecycle ====================

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run())
            logger.info("Learning worker started")

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        logger.info("Learning worker stopped")

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    async def drain(self) -> int:
        """Process queued jobs inline, without a worker. Returns the number processed."""
        processed = 0
        while not self._queue.empty():
            job = self._queue.get_nowait()
            try:
                await self.record_interaction(job)
            finally:
                self._queue.task_done()
            processed += 1
        return processed

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self.record_interaction(job)
            finally:
                self._queue.task_done()

    # ==================== Job ====================

    async def record_interaction(self, job: LearningJob) -> None:
        """Learn from one answered exchange. Failures are logged, never raised."""
        try:
            intent = detect_intent(job.question)
            keywords = extract_keywords(job.question)

            if self._can_store_faq(job.question, intent, keywords):
                await self.store.create_or_update_faq(job.tenant_id, job.question, job.answer)

            await self.store.update_conversation_context(
                job.tenant_id, job.conversation_id, job.question
            )

            if keywords and intent != GENERAL_INTENT:
                await self.store.learn_pattern(
                    job.tenant_id, intent, keywords, job.answer, was_successful=True
                )

            await self.store.record_feedback(
                job.tenant_id,
                job.question,
                job.answer,
                FeedbackRating.NEUTRAL,
                feature="whatsapp_auto",
                conversation_id=job.conversation_id,
                metadata={
                    "conversation_id": job.conversation_id,
                    "session_id": job.session_id,
                    "agent_id": job.agent_id,
                    "intent": intent,
                    "keywords": keywords,
                },
            )

            logger.debug(
                "Learning interaction recorded",
                tenant_id=job.tenant_id,
                conversation_id=job.conversation_id,
                intent=intent,
            )
        except Exception as e:
            logger.warning(
                "Failed to record learning interaction",
                tenant_id=job.tenant_id,
                conversation_id=job.conversation_id,
                error=str(e),
            )

    @staticmethod
    def _can_store_faq(question: str, intent: str, keywords: list[str]) -> bool:
        if intent not in FAQ_INTENTS:
            return False
        if len(question.strip()) < settings.ai_agent_min_message_length:
            return False
        return len(keywords) >= settings.ai_agent_min_keywords
