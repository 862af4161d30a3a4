"""Quota & rate enforcer - per-tenant token budgets and request rate limits."""

import math
import uuid
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import structlog

from wacrm.cache.base import CacheBackend
from wacrm.core.config import settings
from wacrm.core.timeutils import utcnow
from wacrm.models import (
    AIFeature,
    AIPlan,
    PlanStatus,
    QuotaDecision,
    QuotaReason,
    RateDecision,
    TenantPlan,
    TokenUsageRecord,
)
from wacrm.storage.base import StorageBackend

logger = structlog.get_logger()

RATE_WINDOW_SECONDS = 60


def estimate_tokens(text: str) -> int:
    """Rough token estimate: about four characters per token."""
    return math.ceil(len(text) / 4)


class QuotaEnforcer:
    """Admission decisions for AI provider calls.

    Handles:
    - Feature gate (plan capability flags)
    - Usage gate (monthly/daily token budgets with lazy boundary reset)
    - Rate gate (fixed 60s request window per tenant)
    - Usage recording (store-level atomic increments)

    Every check is evaluated before the provider is called. Counters are never
    read-modify-written in the application.
    """

    def __init__(
        self,
        storage: StorageBackend,
        cache: CacheBackend,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.storage = storage
        self.cache = cache
        self.clock = clock

    # ==================== Plan ====================

    def _default_plan(self) -> AIPlan:
        return AIPlan(
            id=str(uuid.uuid4()),
            name="Free",
            slug="free",
            monthly_token_limit=settings.default_monthly_token_limit,
            daily_token_limit=settings.default_daily_token_limit,
            request_limit_per_minute=settings.default_request_limit_per_minute,
        )

    async def get_tenant_plan(self, tenant_id: str) -> TenantPlan:
        """Get the tenant's plan, creating the default Free plan on first use."""
        tenant_plan = await self.storage.get_tenant_plan(tenant_id)
        if tenant_plan is not None:
            return tenant_plan

        tenant_plan = await self.storage.create_tenant_plan_if_absent(
            TenantPlan(
                tenant_id=tenant_id,
                plan=self._default_plan(),
                status=PlanStatus.ACTIVE,
                started_at=self.clock(),
                last_reset_date=self.clock().date(),
            )
        )
        logger.info(
            "Created default AI plan",
            tenant_id=tenant_id,
            plan=tenant_plan.plan.slug if tenant_plan.plan else None,
        )
        return tenant_plan

    async def _refresh_plan(self, tenant_id: str) -> TenantPlan:
        """Reset counters if a day/month boundary was crossed, then re-read."""
        await self.get_tenant_plan(tenant_id)
        if await self.storage.reset_usage_if_stale(tenant_id, self.clock().date()):
            logger.info("Reset token counters", tenant_id=tenant_id, date=self.clock().date().isoformat())
        return await self.get_tenant_plan(tenant_id)

    # ==================== Gates ====================

    async def can_use_feature(self, tenant_id: str, feature: AIFeature | str) -> QuotaDecision:
        """Check that the tenant's plan enables ``feature``."""
        tenant_plan = await self.get_tenant_plan(tenant_id)
        plan = tenant_plan.plan

        if plan is None:
            return QuotaDecision(
                allowed=False,
                reason=QuotaReason.NO_PLAN,
                message="Nenhum plano configurado.",
            )

        if not plan.is_feature_enabled(feature):
            name = feature.value if isinstance(feature, AIFeature) else feature
            return QuotaDecision(
                allowed=False,
                reason=QuotaReason.FEATURE_DISABLED,
                message=f"Recurso '{name}' não disponível no plano {plan.name}.",
                upgrade_required=True,
            )

        return QuotaDecision(allowed=True)

    async def can_use_tokens(
        self,
        tenant_id: str,
        feature: AIFeature | str,
        estimated_tokens: int = 500,
    ) -> QuotaDecision:
        """Feature gate, then the usage gate against the refreshed counters.

        Args:
            tenant_id: Tenant to check
            feature: Requested capability
            estimated_tokens: Tokens the call is expected to consume

        Returns:
            QuotaDecision; declines carry a machine-readable reason
        """
        feature_check = await self.can_use_feature(tenant_id, feature)
        if not feature_check.allowed:
            return feature_check

        tenant_plan = await self._refresh_plan(tenant_id)
        monthly_limit = tenant_plan.monthly_limit
        daily_limit = tenant_plan.daily_limit

        if tenant_plan.tokens_used_this_month + estimated_tokens > monthly_limit:
            return QuotaDecision(
                allowed=False,
                reason=QuotaReason.MONTHLY_LIMIT_EXCEEDED,
                message=f"Limite mensal de {monthly_limit} tokens atingido.",
                used=tenant_plan.tokens_used_this_month,
                limit=monthly_limit,
            )

        if tenant_plan.tokens_used_today + estimated_tokens > daily_limit:
            return QuotaDecision(
                allowed=False,
                reason=QuotaReason.DAILY_LIMIT_EXCEEDED,
                message=f"Limite diário de {daily_limit} tokens atingido.",
                used=tenant_plan.tokens_used_today,
                limit=daily_limit,
            )

        if tenant_plan.status != PlanStatus.ACTIVE:
            return QuotaDecision(
                allowed=False,
                reason=QuotaReason.PLAN_INACTIVE,
                message="Plano inativo ou suspenso.",
            )

        if tenant_plan.is_expired(self.clock()):
            return QuotaDecision(
                allowed=False,
                reason=QuotaReason.PLAN_EXPIRED,
                message="Plano expirado.",
            )

        return QuotaDecision(
            allowed=True,
            monthly_remaining=monthly_limit - tenant_plan.tokens_used_this_month,
            daily_remaining=daily_limit - tenant_plan.tokens_used_today,
        )

    @staticmethod
    def _rate_key(tenant_id: str) -> str:
        return f"rate_limit:{tenant_id}"

    async def check_rate_limit(self, tenant_id: str) -> RateDecision:
        """Check the tenant's request count in the current 60s window."""
        tenant_plan = await self.get_tenant_plan(tenant_id)
        limit = tenant_plan.request_limit_per_minute
        count = int(await self.cache.get(self._rate_key(tenant_id)) or 0)

        if count >= limit:
            return RateDecision(
                allowed=False,
                reason=QuotaReason.RATE_LIMITED,
                message=f"Limite de {limit} requisições/minuto atingido.",
                retry_after=RATE_WINDOW_SECONDS,
            )

        return RateDecision(allowed=True, remaining=limit - count)

    async def increment_rate_limit(self, tenant_id: str) -> int:
        """Count one provider request in the current window."""
        return await self.cache.increment(self._rate_key(tenant_id), 1, ttl=RATE_WINDOW_SECONDS)

    # ==================== Usage ====================

    async def record_usage(
        self,
        tenant_id: str,
        feature: AIFeature | str,
        prompt_tokens: int,
        completion_tokens: int,
        model: str | None = None,
        cache_hit: bool = False,
        response_time_ms: int | None = None,
        user_id: str | None = None,
    ) -> None:
        """Log one call and atomically add its tokens to both counters."""
        now = self.clock()
        record = TokenUsageRecord(
            tenant_id=tenant_id,
            feature=feature.value if isinstance(feature, AIFeature) else feature,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            model=model,
            cache_hit=cache_hit,
            response_time_ms=response_time_ms,
            user_id=user_id,
            usage_date=now.date(),
            created_at=now,
        )
        await self.storage.record_token_usage(record)

        await self._refresh_plan(tenant_id)
        await self.storage.increment_usage(tenant_id, record.total_tokens)

        logger.info(
            "Token usage recorded",
            tenant_id=tenant_id,
            feature=record.feature,
            tokens=record.total_tokens,
            cache_hit=cache_hit,
        )

    async def get_usage_stats(self, tenant_id: str) -> dict[str, Any]:
        """Plan, counters, per-feature totals for this month and the last 7 days."""
        tenant_plan = await self._refresh_plan(tenant_id)
        plan = tenant_plan.plan
        monthly_limit = tenant_plan.monthly_limit
        daily_limit = tenant_plan.daily_limit

        def _bucket(used: int, limit: int) -> dict[str, Any]:
            return {
                "used": used,
                "limit": limit,
                "remaining": max(0, limit - used),
                "percentage": round(used / limit * 100, 1) if limit > 0 else 0,
            }

        today = self.clock().date()
        month_start = today.replace(day=1)
        history_start = today - timedelta(days=7)
        records = await self.storage.list_token_usage(tenant_id, since=min(month_start, history_start))

        by_feature: dict[str, dict[str, int]] = defaultdict(lambda: {"tokens": 0, "requests": 0})
        daily: dict[str, dict[str, int]] = defaultdict(lambda: {"tokens": 0, "requests": 0})
        for record in records:
            if record.usage_date >= month_start:
                by_feature[record.feature]["tokens"] += record.total_tokens
                by_feature[record.feature]["requests"] += 1
            if record.usage_date >= history_start:
                daily[record.usage_date.isoformat()]["tokens"] += record.total_tokens
                daily[record.usage_date.isoformat()]["requests"] += 1

        return {
            "plan_name": plan.name if plan else "Unknown",
            "plan": {
                "id": plan.id if plan else None,
                "name": plan.name if plan else "Unknown",
                "slug": plan.slug if plan else "unknown",
            },
            "monthly": _bucket(tenant_plan.tokens_used_this_month, monthly_limit),
            "daily": _bucket(tenant_plan.tokens_used_today, daily_limit),
            "status": tenant_plan.status.value,
            "expires_at": tenant_plan.expires_at.isoformat() if tenant_plan.expires_at else None,
            "by_feature": dict(by_feature),
            "daily_history": [
                {"usage_date": day, **totals} for day, totals in sorted(daily.items())
            ],
        }
