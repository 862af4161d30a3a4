"""FastAPI dependencies for dependency injection."""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from wacrm.cache.base import CacheBackend
from wacrm.cache.memory import InMemoryCache
from wacrm.core.config import Settings, settings
from wacrm.services.agent import ChatResponder, ResponseOrchestrator
from wacrm.services.channels import ChannelClient, get_whatsapp_client
from wacrm.services.conversation import ConversationResolver
from wacrm.services.learning import LearningQueue, LearningStore
from wacrm.services.llm import AIGateway
from wacrm.services.messages import MessageStore
from wacrm.services.quota import QuotaEnforcer
from wacrm.services.sessions import SessionManager
from wacrm.services.webhooks import WebhookIngestor
from wacrm.storage.base import StorageBackend
from wacrm.storage.memory import InMemoryStorage


# Storage singleton
_storage: StorageBackend | None = None

# Cache singleton
_cache: CacheBackend | None = None

# Service singletons
_gateway: AIGateway | None = None
_learning_queue: LearningQueue | None = None
_orchestrator: ResponseOrchestrator | None = None


def get_storage() -> StorageBackend:
    """Get the storage backend singleton.

    Uses in-memory storage unless ``storage_backend`` selects Firestore.
    """
    global _storage
    if _storage is None:
        if settings.storage_backend == "firestore":
            from wacrm.storage.firestore import FirestoreStorage
            _storage = FirestoreStorage(project_id=settings.gcp_project_id or None)
        else:
            _storage = InMemoryStorage()
    return _storage


def get_cache() -> CacheBackend:
    """Get the cache backend singleton (Redis when configured, else in-process)."""
    global _cache
    if _cache is None:
        if settings.cache_backend == "redis":
            from wacrm.cache.redis import RedisCache
            _cache = RedisCache(settings.redis_url)
        else:
            _cache = InMemoryCache()
    return _cache


def get_channel() -> ChannelClient:
    return get_whatsapp_client()


def get_quota() -> QuotaEnforcer:
    return QuotaEnforcer(get_storage(), get_cache())


def get_gateway() -> AIGateway:
    global _gateway
    if _gateway is None:
        _gateway = AIGateway(get_quota())
    return _gateway


def get_learning_store() -> LearningStore:
    return LearningStore(get_storage())


def get_learning_queue() -> LearningQueue:
    global _learning_queue
    if _learning_queue is None:
        _learning_queue = LearningQueue(get_learning_store())
    return _learning_queue


def get_message_store() -> MessageStore:
    return MessageStore(get_storage(), get_channel())


def get_resolver() -> ConversationResolver:
    return ConversationResolver(get_storage())


def get_orchestrator() -> ResponseOrchestrator:
    """Get the orchestrator singleton; it owns the in-flight auto-reply tasks."""
    global _orchestrator
    if _orchestrator is None:
        responder = ChatResponder(get_gateway(), get_learning_store(), get_cache(), get_quota())
        _orchestrator = ResponseOrchestrator(
            get_storage(),
            get_cache(),
            responder,
            get_message_store(),
            get_learning_queue(),
        )
    return _orchestrator


def get_ingestor() -> WebhookIngestor:
    return WebhookIngestor(get_storage(), get_resolver(), get_message_store(), get_orchestrator())


def get_session_manager() -> SessionManager:
    return SessionManager(get_storage(), get_channel())


# Type aliases for cleaner dependency injection
StorageDep = Annotated[StorageBackend, Depends(get_storage)]
CacheDep = Annotated[CacheBackend, Depends(get_cache)]
SettingsDep = Annotated[Settings, Depends(lambda: settings)]
QuotaDep = Annotated[QuotaEnforcer, Depends(get_quota)]
GatewayDep = Annotated[AIGateway, Depends(get_gateway)]
LearningDep = Annotated[LearningStore, Depends(get_learning_store)]
MessagesDep = Annotated[MessageStore, Depends(get_message_store)]
IngestorDep = Annotated[WebhookIngestor, Depends(get_ingestor)]
SessionsDep = Annotated[SessionManager, Depends(get_session_manager)]


async def verify_webhook_secret(x_webhook_secret: str | None = Header(None)) -> bool:
    """Check the shared secret sent by the WhatsApp service.

    An empty ``whatsapp_webhook_secret`` disables the check.
    """
    if not settings.whatsapp_webhook_secret:
        return True

    if x_webhook_secret != settings.whatsapp_webhook_secret:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook secret",
        )

    return True


WebhookAuthDep = Annotated[bool, Depends(verify_webhook_secret)]
