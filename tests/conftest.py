"""Pytest configuration and fixtures."""

import uuid
from typing import Any

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from wacrm.api import dependencies
from wacrm.api.main import create_app
from wacrm.cache.memory import InMemoryCache
from wacrm.core.exceptions import ChannelError
from wacrm.core.timeutils import utcnow
from wacrm.models import (
    AIAgent,
    AIFeature,
    AIPlan,
    Conversation,
    Message,
    MessageDirection,
    PlanStatus,
    SendResult,
    Session,
    SessionStatus,
    TenantPlan,
)
from wacrm.services.channels.base import ChannelClient
from wacrm.services.conversation import ConversationResolver
from wacrm.services.learning import LearningStore
from wacrm.services.llm import AIGateway
from wacrm.services.messages import MessageStore
from wacrm.services.quota import QuotaEnforcer
from wacrm.services.sessions import SessionManager
from wacrm.services.webhooks import WebhookIngestor
from wacrm.storage.memory import InMemoryStorage

TENANT_ID = "test-tenant"
SESSION_ID = "session-1"
OWNER_ID = "owner-1"


class FakeChannel(ChannelClient):
    """Records outbound calls instead of talking to the WhatsApp service."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.created: list[str] = []
        self.disconnected: list[str] = []
        self.deleted: list[str] = []
        self.history: list[dict[str, Any]] = []
        self.fail = False

    @property
    def channel_name(self) -> str:
        return "whatsapp"

    def _check(self) -> None:
        if self.fail:
            raise ChannelError("WhatsApp service error: unreachable", channel="whatsapp")

    async def send_text(self, session_id: str, to: str, text: str) -> SendResult:
        self._check()
        self.sent.append({"session_id": session_id, "to": to, "text": text})
        return SendResult(provider_message_id=f"OUT-{len(self.sent)}", to=to)

    async def send_media(self, session_id, to, media_type, media, mimetype, filename, caption=None):
        self._check()
        self.sent.append({"session_id": session_id, "to": to, "type": media_type, "filename": filename})
        return SendResult(provider_message_id=f"OUT-{len(self.sent)}", to=to)

    async def fetch_history(self, session_id: str, jid: str, count: int = 50) -> list[dict[str, Any]]:
        self._check()
        return self.history[:count]

    async def create_session(self, session_id: str, phone_number: str | None) -> None:
        self._check()
        self.created.append(session_id)

    async def get_qr_code(self, session_id: str) -> dict[str, Any]:
        self._check()
        return {"qrCode": "data:image/png;base64,QR"}

    async def disconnect_session(self, session_id: str) -> None:
        self._check()
        self.disconnected.append(session_id)

    async def delete_session(self, session_id: str) -> None:
        self._check()
        self.deleted.append(session_id)


def _conversation(**overrides: Any) -> Conversation:
    data: dict[str, Any] = {
        "id": "conv-1",
        "tenant_id": TENANT_ID,
        "session_id": SESSION_ID,
        "remote_jid": "5511999990000@s.whatsapp.net",
        "contact_phone": "5511999990000",
        "assigned_user_id": OWNER_ID,
    }
    data.update(overrides)
    return Conversation(**data)


def _message_record(tenant_id: str, conversation_id: str, provider_id: str | None, **kwargs: Any) -> Message:
    return Message(
        id=str(uuid.uuid4()),
        tenant_id=tenant_id,
        conversation_id=conversation_id,
        provider_message_id=provider_id,
        direction=kwargs.pop("direction", MessageDirection.INCOMING),
        **kwargs,
    )


def _message_payload(**overrides: Any) -> dict[str, Any]:
    """A ``message`` webhook body as the WhatsApp service sends it."""
    data: dict[str, Any] = {
        "event": "message",
        "sessionId": SESSION_ID,
        "from": "5511999990000@s.whatsapp.net",
        "fromMe": False,
        "type": "text",
        "text": "Olá, gostaria de informações",
        "messageId": "MSG-1",
        "timestamp": int(utcnow().timestamp()),
        "pushName": "Maria",
    }
    data.update(overrides)
    return data


@pytest.fixture
def storage():
    """Create in-memory storage for tests."""
    return InMemoryStorage()


@pytest.fixture
def cache():
    """Create in-memory cache for tests."""
    return InMemoryCache()


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def quota(storage, cache):
    return QuotaEnforcer(storage, cache)


@pytest.fixture
def gateway(quota):
    return AIGateway(quota, provider="groq", groq_api_key="test-key", gemini_api_key="")


@pytest.fixture
def learning(storage):
    return LearningStore(storage)


@pytest.fixture
def message_store(storage, channel):
    return MessageStore(storage, channel)


@pytest.fixture
def resolver(storage):
    return ConversationResolver(storage)


@pytest.fixture
def ingestor(storage, resolver, message_store):
    """Ingestor without an AI orchestrator."""
    return WebhookIngestor(storage, resolver, message_store)


@pytest_asyncio.fixture
async def tenant_plan(storage):
    """Active plan with every feature enabled and fresh counters."""
    plan = TenantPlan(
        tenant_id=TENANT_ID,
        plan=AIPlan(
            id="plan-pro",
            name="Pro",
            slug="pro",
            monthly_token_limit=10000,
            daily_token_limit=1000,
            request_limit_per_minute=10,
            enabled_features=set(AIFeature),
        ),
        status=PlanStatus.ACTIVE,
        last_reset_date=utcnow().date(),
    )
    return await storage.create_tenant_plan_if_absent(plan)


@pytest_asyncio.fixture
async def session(storage):
    """A connected session owned by OWNER_ID."""
    s = Session(
        id=SESSION_ID,
        tenant_id=TENANT_ID,
        user_id=OWNER_ID,
        name="Vendas",
        phone_number="5511988887777",
        status=SessionStatus.CONNECTED,
    )
    return await storage.save_session(s)


@pytest_asyncio.fixture
async def agent(storage):
    """Active agent bound to the test session, always on."""
    a = AIAgent(id="agent-1", tenant_id=TENANT_ID, name="Atendente", session_id=SESSION_ID)
    return await storage.save_agent(a)


@pytest.fixture
def app(storage, cache, channel, quota, gateway, learning, message_store, ingestor):
    """Create test application wired to the in-memory test doubles."""
    application = create_app()
    overrides = {
        dependencies.get_storage: lambda: storage,
        dependencies.get_cache: lambda: cache,
        dependencies.get_quota: lambda: quota,
        dependencies.get_gateway: lambda: gateway,
        dependencies.get_learning_store: lambda: learning,
        dependencies.get_message_store: lambda: message_store,
        dependencies.get_ingestor: lambda: ingestor,
        dependencies.get_session_manager: lambda: SessionManager(storage, channel),
    }
    application.dependency_overrides.update(overrides)
    return application


@pytest_asyncio.fixture
async def client(app):
    """Create test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def make_conversation():
    """Factory for unsaved conversations in the test session."""
    return _conversation


@pytest_asyncio.fixture
async def conversation(storage):
    """A stored direct conversation assigned to the session owner."""
    return await storage.insert_conversation(_conversation())


@pytest.fixture
def make_payload():
    """Factory for ``message`` webhook bodies."""
    return _message_payload


@pytest.fixture
def make_message():
    """Factory for unsaved messages: ``make_message(tenant_id, conversation_id, provider_id)``."""
    return _message_record
