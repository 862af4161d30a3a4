"""Quota service - token budgets and request rate limits."""

from wacrm.services.quota.enforcer import QuotaEnforcer, estimate_tokens

__all__ = ["QuotaEnforcer", "estimate_tokens"]
