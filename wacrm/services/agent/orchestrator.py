"""AI response orchestrator - gates, batching and delivery of automatic replies."""

import asyncio
import math
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from enum import Enum

import structlog

from wacrm.cache.base import CacheBackend
from wacrm.core.config import settings
from wacrm.core.exceptions import ChannelError
from wacrm.core.timeutils import local_now, utcnow
from wacrm.models import AIAgent, Conversation, Message, MessageDirection, Session
from wacrm.models.agent import NO_SESSION
from wacrm.models.message import AI_AGENT_SENDER_NAME
from wacrm.services.agent.responder import ChatResponder
from wacrm.services.learning.worker import LearningJob, LearningQueue
from wacrm.services.messages.store import MessageStore
from wacrm.storage.base import StorageBackend

logger = structlog.get_logger()

GLOBAL_RATE_WINDOW_SECONDS = 60


class AutoReplyOutcome(str, Enum):
    """What happened to one auto-reply trigger."""

    SENT = "sent"
    DISABLED = "disabled"
    HUMAN_TAKEOVER = "human_takeover"
    RATE_LIMITED = "rate_limited"
    NO_AGENT = "no_agent"
    OUTSIDE_SERVICE_HOURS = "outside_service_hours"
    DEBOUNCED = "debounced"
    EMPTY_MESSAGE = "empty_message"
    SUPERSEDED = "superseded"  # A newer inbound message owns the batch
    GENERATION_FAILED = "generation_failed"
    DISCARDED = "discarded"  # Human took over while generating
    SEND_FAILED = "send_failed"
    ERROR = "error"


def debounce_key(conversation_id: str) -> str:
    return f"ai_agent_debounce:{conversation_id}"


def global_rate_key(session_id: str) -> str:
    return f"ai_agent_global:{session_id}"


class ResponseOrchestrator:
    """Decides whether and when to auto-reply, then generates and sends the reply.

    Handles:
    - Gates: human takeover, per-session rate, agent availability,
      service hours and per-conversation debounce
    - Batching: waits out the debounce window so a burst of short messages
      gets a single reply to all of them
    - Delivery: send, persist as the AI agent, hand off to learning

    Every gate failure is a silent skip. Nothing here raises into the webhook.
    """

    def __init__(
        self,
        storage: StorageBackend,
        cache: CacheBackend,
        responder: ChatResponder,
        messages: MessageStore,
        learning_queue: LearningQueue | None = None,
        debounce_seconds: float | None = None,
        message_window_seconds: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.storage = storage
        self.cache = cache
        self.responder = responder
        self.messages = messages
        self.learning_queue = learning_queue
        self.debounce_seconds = (
            settings.ai_agent_debounce_seconds if debounce_seconds is None else debounce_seconds
        )
        self.message_window_seconds = (
            settings.ai_agent_message_window_seconds
            if message_window_seconds is None
            else message_window_seconds
        )
        self.sleep = sleep
        self.clock = clock
        self._tasks: set[asyncio.Task] = set()

    # ==================== Scheduling ====================

    def schedule(self, session: Session, conversation: Conversation, trigger: Message) -> asyncio.Task:
        """Run ``process`` in the background so the webhook can answer right away."""
        task = asyncio.create_task(self.process(session, conversation, trigger))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait for every scheduled trigger to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ==================== Flow ====================

    async def process(
        self,
        session: Session,
        conversation: Conversation,
        trigger: Message,
    ) -> AutoReplyOutcome:
        """Evaluate one inbound message as an auto-reply trigger."""
        if not settings.ai_agent_enabled:
            return AutoReplyOutcome.DISABLED

        try:
            return await self._process(session, conversation, trigger)
        except Exception as e:
            logger.error(
                "AI Agent unexpected error",
                session_id=session.id,
                conversation_id=conversation.id,
                error=str(e),
                exc_info=True,
            )
            return AutoReplyOutcome.ERROR

    async def _process(
        self,
        session: Session,
        conversation: Conversation,
        trigger: Message,
    ) -> AutoReplyOutcome:
        tenant_id = session.tenant_id
        conversation = await self.storage.get_conversation(tenant_id, conversation.id) or conversation
        log = logger.bind(session_id=session.id, conversation_id=conversation.id)

        if await self._is_taken_over(session, conversation):
            log.info("AI Agent: human takeover detected, skipping response")
            return AutoReplyOutcome.HUMAN_TAKEOVER

        count = int(await self.cache.get(global_rate_key(session.id)) or 0)
        if count >= settings.ai_agent_rate_limit_per_minute:
            log.info("AI Agent: global rate limit reached", count=count)
            return AutoReplyOutcome.RATE_LIMITED

        agent = await self._find_agent(session)
        if agent is None:
            log.debug("AI Agent not active for session")
            return AutoReplyOutcome.NO_AGENT

        if not agent.is_within_service_hours(local_now(settings.service_hours_timezone, self.clock())):
            log.info("AI Agent: outside service hours, skipping response")
            return AutoReplyOutcome.OUTSIDE_SERVICE_HOURS

        if await self.cache.get(debounce_key(conversation.id)) is not None:
            log.info("AI Agent: debounce active, skipping response")
            return AutoReplyOutcome.DEBOUNCED

        if not (trigger.content or "").strip():
            log.debug("AI Agent: empty message, skipping")
            return AutoReplyOutcome.EMPTY_MESSAGE

        # Let the burst settle; the last message of the burst answers for all of them
        if self.debounce_seconds > 0:
            await self.sleep(self.debounce_seconds)
        if await self._has_newer_inbound(tenant_id, conversation.id, trigger):
            log.debug("AI Agent: newer message will answer this batch")
            return AutoReplyOutcome.SUPERSEDED

        if not await self._claim(session, conversation):
            log.info("AI Agent: another trigger claimed this conversation")
            return AutoReplyOutcome.DEBOUNCED

        text = await self._combine_recent_messages(tenant_id, conversation.id, trigger.content or "")
        log.info(
            "AI Agent processing message",
            agent_id=agent.id,
            agent_name=agent.name,
            message_length=len(text),
        )

        reply = await self.responder.generate(tenant_id, text, agent, conversation.id)
        if not reply.success or not reply.response:
            log.warning("AI Agent failed to generate response", error=reply.message, reason=reply.reason)
            return AutoReplyOutcome.GENERATION_FAILED

        conversation = await self.storage.get_conversation(tenant_id, conversation.id) or conversation
        if await self._is_taken_over(session, conversation):
            log.info("AI Agent: human takeover detected after generation, discarding response")
            return AutoReplyOutcome.DISCARDED

        try:
            await self.messages.send_text(
                tenant_id, conversation, reply.response, sender_name=AI_AGENT_SENDER_NAME
            )
        except ChannelError as e:
            log.error("Failed to send AI Agent response", error=e.message, code=e.code)
            return AutoReplyOutcome.SEND_FAILED

        if self.learning_queue is not None:
            self.learning_queue.enqueue(
                LearningJob(
                    tenant_id=tenant_id,
                    session_id=session.id,
                    conversation_id=conversation.id,
                    agent_id=agent.id,
                    question=text,
                    answer=reply.response,
                )
            )

        log.info("AI Agent response sent", source=reply.source)
        return AutoReplyOutcome.SENT

    # ==================== Gates ====================

    async def _is_taken_over(self, session: Session, conversation: Conversation) -> bool:
        """Assigned to someone other than the session owner, or a human wrote recently."""
        assigned = conversation.assigned_user_id
        if assigned is not None and assigned != session.user_id:
            return True

        since = self.clock() - timedelta(minutes=settings.ai_agent_human_takeover_minutes)
        recent = await self.storage.list_messages(
            session.tenant_id,
            conversation.id,
            direction=MessageDirection.OUTGOING,
            since=since,
        )
        return any(msg.sender_name != AI_AGENT_SENDER_NAME for msg in recent)

    async def _find_agent(self, session: Session) -> AIAgent | None:
        """Active agent bound to this session, else an active global agent."""
        agents = [
            agent
            for agent in await self.storage.list_agents(session.tenant_id)
            if agent.is_active and agent.session_id != NO_SESSION
        ]
        for agent in agents:
            if agent.session_id == session.id:
                return agent
        for agent in agents:
            if agent.session_id is None:
                return agent
        return None

    async def _has_newer_inbound(self, tenant_id: str, conversation_id: str, trigger: Message) -> bool:
        """A newer inbound text exists; its own trigger answers the batch."""
        newer = await self.storage.list_messages(
            tenant_id, conversation_id, direction=MessageDirection.INCOMING, since=trigger.created_at
        )
        return any(
            msg.id != trigger.id
            and msg.created_at > trigger.created_at
            and msg.type == "text"
            and (msg.content or "").strip()
            for msg in newer
        )

    async def _claim(self, session: Session, conversation: Conversation) -> bool:
        """Take the debounce lock and count the reply against the session rate."""
        ttl = max(1, math.ceil(self.debounce_seconds))
        claimed = await self.cache.add(debounce_key(conversation.id), self.clock().isoformat(), ttl=ttl)
        if claimed:
            await self.cache.increment(global_rate_key(session.id), 1, ttl=GLOBAL_RATE_WINDOW_SECONDS)
        return claimed

    async def _combine_recent_messages(
        self,
        tenant_id: str,
        conversation_id: str,
        current: str,
    ) -> str:
        """Join the window's inbound texts oldest first, dropping blanks and repeats."""
        since = self.clock() - timedelta(seconds=self.message_window_seconds)
        recent = await self.storage.list_messages(
            tenant_id,
            conversation_id,
            direction=MessageDirection.INCOMING,
            since=since,
        )
        texts = list(dict.fromkeys(msg.content for msg in recent if msg.content))
        if len(texts) > 1:
            logger.info(
                "AI Agent: combined multiple messages",
                conversation_id=conversation_id,
                message_count=len(texts),
            )
            return "\n".join(texts)
        return current
