"""AI plan, tenant usage counters and quota decision models."""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from wacrm.core.timeutils import utcnow


class AIFeature(str, Enum):
    """Capabilities a plan can enable."""

    CHAT = "chat"
    AUTOFILL = "autofill"
    SUMMARIZE = "summarize"
    LEAD_ANALYSIS = "lead_analysis"
    EMAIL_DRAFT = "email_draft"
    KNOWLEDGE_BASE = "knowledge_base"


class PlanStatus(str, Enum):
    """Status of a tenant's plan subscription."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class QuotaReason(str, Enum):
    """Machine-readable reasons for a quota or rate decline."""

    NO_PLAN = "no_plan"
    FEATURE_DISABLED = "feature_disabled"
    MONTHLY_LIMIT_EXCEEDED = "monthly_limit_exceeded"
    DAILY_LIMIT_EXCEEDED = "daily_limit_exceeded"
    PLAN_INACTIVE = "plan_inactive"
    PLAN_EXPIRED = "plan_expired"
    RATE_LIMITED = "rate_limited"


class AIPlan(BaseModel):
    """A purchasable AI plan with token limits and feature flags."""

    id: str
    name: str
    slug: str
    monthly_token_limit: int = 10000
    daily_token_limit: int = 1000
    request_limit_per_minute: int = 10
    enabled_features: set[AIFeature] = Field(
        default_factory=lambda: {AIFeature.CHAT, AIFeature.SUMMARIZE, AIFeature.KNOWLEDGE_BASE}
    )

    def is_feature_enabled(self, feature: AIFeature | str) -> bool:
        try:
            return AIFeature(feature) in self.enabled_features
        except ValueError:
            return False


class TenantPlan(BaseModel):
    """A tenant's subscription to a plan plus its usage counters."""

    tenant_id: str
    plan: AIPlan | None = None
    status: PlanStatus = PlanStatus.ACTIVE
    started_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime | None = None

    custom_monthly_limit: int | None = None
    custom_daily_limit: int | None = None

    # Counters are only mutated through storage-level atomic operations
    tokens_used_this_month: int = 0
    tokens_used_today: int = 0
    last_reset_date: date | None = None

    @property
    def monthly_limit(self) -> int:
        if self.custom_monthly_limit is not None:
            return self.custom_monthly_limit
        return self.plan.monthly_token_limit if self.plan else 10000

    @property
    def daily_limit(self) -> int:
        if self.custom_daily_limit is not None:
            return self.custom_daily_limit
        return self.plan.daily_token_limit if self.plan else 1000

    @property
    def request_limit_per_minute(self) -> int:
        return self.plan.request_limit_per_minute if self.plan else 10

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at < now


class TokenUsageRecord(BaseModel):
    """One recorded provider call (or cache hit) for usage reporting."""

    tenant_id: str
    feature: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    model: str | None = None
    cache_hit: bool = False
    response_time_ms: int | None = None
    user_id: str | None = None
    usage_date: date
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class QuotaDecision:
    """Outcome of a feature or usage check."""

    allowed: bool
    reason: QuotaReason | None = None
    message: str | None = None
    upgrade_required: bool = False
    used: int | None = None
    limit: int | None = None
    monthly_remaining: int | None = None
    daily_remaining: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"allowed": self.allowed}
        if self.reason:
            data["reason"] = self.reason.value
        if self.message:
            data["message"] = self.message
        if self.upgrade_required:
            data["upgrade_required"] = True
        for key in ("used", "limit", "monthly_remaining", "daily_remaining"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


@dataclass
class RateDecision:
    """Outcome of a short-window rate check."""

    allowed: bool
    remaining: int | None = None
    retry_after: int | None = None
    reason: QuotaReason | None = None
    message: str | None = None
