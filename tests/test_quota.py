"""Tests for the quota and rate enforcer."""

from datetime import date, datetime, timedelta, timezone

import pytest

from wacrm.models import AIFeature, AIPlan, PlanStatus, QuotaReason, TenantPlan
from wacrm.services.quota import QuotaEnforcer


class MovableClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _plan(**overrides) -> TenantPlan:
    data = {
        "tenant_id": "t1",
        "plan": AIPlan(
            id="plan-free",
            name="Free",
            slug="free",
            monthly_token_limit=10000,
            daily_token_limit=1000,
            request_limit_per_minute=3,
        ),
        "status": PlanStatus.ACTIVE,
        "last_reset_date": date(2025, 3, 10),
    }
    data.update(overrides)
    return TenantPlan(**data)


@pytest.fixture
def clock():
    return MovableClock(datetime(2025, 3, 10, 15, 0, tzinfo=timezone.utc))


@pytest.fixture
def enforcer(storage, cache, clock):
    return QuotaEnforcer(storage, cache, clock=clock)


@pytest.mark.asyncio
async def test_default_plan_created_on_first_use(enforcer, storage):
    tenant_plan = await enforcer.get_tenant_plan("new-tenant")

    assert tenant_plan.plan.slug == "free"
    assert tenant_plan.status == PlanStatus.ACTIVE
    assert await storage.get_tenant_plan("new-tenant") is not None


@pytest.mark.asyncio
async def test_monthly_limit_declines_before_provider_call(enforcer, storage):
    """9990 of 10000 used; a 20 token request would cross the monthly limit."""
    await storage.create_tenant_plan_if_absent(_plan(tokens_used_this_month=9990, tokens_used_today=0))

    decision = await enforcer.can_use_tokens("t1", AIFeature.CHAT, estimated_tokens=20)

    assert decision.allowed is False
    assert decision.reason == QuotaReason.MONTHLY_LIMIT_EXCEEDED
    assert decision.used == 9990
    assert decision.limit == 10000
    assert decision.to_dict()["reason"] == "monthly_limit_exceeded"


@pytest.mark.asyncio
async def test_daily_limit(enforcer, storage):
    await storage.create_tenant_plan_if_absent(_plan(tokens_used_this_month=2000, tokens_used_today=990))

    decision = await enforcer.can_use_tokens("t1", AIFeature.CHAT, estimated_tokens=20)

    assert decision.allowed is False
    assert decision.reason == QuotaReason.DAILY_LIMIT_EXCEEDED


@pytest.mark.asyncio
async def test_custom_limits_override_plan(enforcer, storage):
    await storage.create_tenant_plan_if_absent(
        _plan(tokens_used_this_month=9990, custom_monthly_limit=50000, custom_daily_limit=50000)
    )

    decision = await enforcer.can_use_tokens("t1", AIFeature.CHAT, estimated_tokens=20)

    assert decision.allowed is True
    assert decision.monthly_remaining == 50000 - 9990


@pytest.mark.asyncio
async def test_feature_disabled_requires_upgrade(enforcer, storage):
    await storage.create_tenant_plan_if_absent(_plan())

    decision = await enforcer.can_use_tokens("t1", AIFeature.LEAD_ANALYSIS)

    assert decision.allowed is False
    assert decision.reason == QuotaReason.FEATURE_DISABLED
    assert decision.upgrade_required is True


@pytest.mark.asyncio
async def test_inactive_plan(enforcer, storage):
    await storage.create_tenant_plan_if_absent(_plan(status=PlanStatus.SUSPENDED))

    decision = await enforcer.can_use_tokens("t1", AIFeature.CHAT)

    assert decision.allowed is False
    assert decision.reason == QuotaReason.PLAN_INACTIVE


@pytest.mark.asyncio
async def test_expired_plan(enforcer, storage, clock):
    await storage.create_tenant_plan_if_absent(_plan(expires_at=clock.now - timedelta(days=1)))

    decision = await enforcer.can_use_tokens("t1", AIFeature.CHAT)

    assert decision.allowed is False
    assert decision.reason == QuotaReason.PLAN_EXPIRED


@pytest.mark.asyncio
async def test_counters_reset_on_new_day(enforcer, storage, clock):
    await storage.create_tenant_plan_if_absent(_plan(tokens_used_this_month=5000, tokens_used_today=1000))

    assert (await enforcer.can_use_tokens("t1", AIFeature.CHAT, 10)).allowed is False

    clock.now += timedelta(days=1)
    decision = await enforcer.can_use_tokens("t1", AIFeature.CHAT, 10)

    assert decision.allowed is True
    plan = await storage.get_tenant_plan("t1")
    assert plan.tokens_used_today == 0
    assert plan.tokens_used_this_month == 5000


@pytest.mark.asyncio
async def test_counters_reset_on_new_month(enforcer, storage, clock):
    await storage.create_tenant_plan_if_absent(
        _plan(tokens_used_this_month=10000, tokens_used_today=100, last_reset_date=date(2025, 2, 28))
    )

    decision = await enforcer.can_use_tokens("t1", AIFeature.CHAT, 10)

    assert decision.allowed is True
    plan = await storage.get_tenant_plan("t1")
    assert plan.tokens_used_this_month == 0


@pytest.mark.asyncio
async def test_rate_limit_window(enforcer, storage):
    await storage.create_tenant_plan_if_absent(_plan())

    for _ in range(3):
        assert (await enforcer.check_rate_limit("t1")).allowed is True
        await enforcer.increment_rate_limit("t1")

    decision = await enforcer.check_rate_limit("t1")
    assert decision.allowed is False
    assert decision.reason == QuotaReason.RATE_LIMITED
    assert decision.retry_after == 60


@pytest.mark.asyncio
async def test_record_usage_updates_counters_and_history(enforcer, storage):
    await storage.create_tenant_plan_if_absent(_plan())

    await enforcer.record_usage("t1", AIFeature.CHAT, prompt_tokens=100, completion_tokens=50, model="m")
    await enforcer.record_usage("t1", AIFeature.SUMMARIZE, prompt_tokens=10, completion_tokens=10)

    stats = await enforcer.get_usage_stats("t1")
    assert stats["monthly"]["used"] == 170
    assert stats["daily"]["used"] == 170
    assert stats["by_feature"]["chat"] == {"tokens": 150, "requests": 1}
    assert stats["daily_history"] == [{"usage_date": "2025-03-10", "tokens": 170, "requests": 2}]
    assert stats["plan_name"] == "Free"
