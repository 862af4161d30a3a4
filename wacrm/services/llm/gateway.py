"""AI provider gateway using LiteLLM, with quota gates and cost-driven model selection."""

import json
import re
import time
from dataclasses import dataclass, field
from typing import Any

import litellm
import structlog

from wacrm.core.config import settings
from wacrm.models import AIFeature
from wacrm.services.llm import prompts
from wacrm.services.quota.enforcer import QuotaEnforcer, estimate_tokens

logger = structlog.get_logger()

litellm.suppress_debug_info = not settings.app_debug

MSG_NOT_CONFIGURED = "Chave da API de IA não configurada."
MSG_EMPTY_RESPONSE = "Resposta vazia."
MSG_PROVIDER_RATE_LIMITED = "Limite da API atingido. Aguarde."
MSG_API_ERROR = "Erro na API: "
MSG_PROCESSING_ERROR = "Erro ao processar."

# Features that always get the full model
COMPLEX_FEATURES = frozenset(
    {AIFeature.AUTOFILL.value, AIFeature.LEAD_ANALYSIS.value, AIFeature.EMAIL_DRAFT.value}
)

SIMPLE_MESSAGE_PATTERNS = tuple(
    re.compile(pattern)
    for pattern in (
        r"^(oi|olá|ola|hello|hi|hey|eai|e ai)[\s!?.]*$",
        r"^(bom dia|boa tarde|boa noite)[\s!?.]*$",
        r"^(ok|sim|não|nao|obrigado|obrigada|valeu|thanks)[\s!?.]*$",
        r"^(tchau|bye|adeus|até mais|ate mais)[\s!?.]*$",
        r"^(tudo bem|como vai|beleza)[\s!?]*$",
    )
)
SIMPLE_MESSAGE_MAX_LENGTH = 15
FAST_SUMMARY_MAX_LENGTH = 500
TOP_P = 0.9

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


@dataclass
class GatewayResult:
    """Uniform success/failure envelope for one provider request."""

    success: bool
    response: str | None = None
    message: str | None = None
    reason: str | None = None
    upgrade_required: bool = False
    model_used: str | None = None
    usage: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success}
        if self.success:
            data["response"] = self.response
            data["model_used"] = self.model_used
            data["usage"] = self.usage
        else:
            data["message"] = self.message
            if self.reason:
                data["reason"] = self.reason
            if self.upgrade_required:
                data["upgrade_required"] = True
        return data


def is_simple_message(message: str) -> bool:
    """Greeting/confirmation/farewell, or just very short."""
    text = message.strip().lower()
    if any(pattern.match(text) for pattern in SIMPLE_MESSAGE_PATTERNS):
        return True
    return len(text) < SIMPLE_MESSAGE_MAX_LENGTH


def extract_json(content: str) -> dict[str, Any] | None:
    """Strip code fences and parse the first ``{...}`` object, or None."""
    content = re.sub(r"```json\s*", "", content, flags=re.IGNORECASE)
    content = re.sub(r"```\s*$", "", content)
    content = re.sub(r"^```\s*", "", content, flags=re.MULTILINE)

    match = _JSON_OBJECT.search(content)
    if not match:
        return None
    try:
        decoded = json.loads(match.group(0).strip())
    except json.JSONDecodeError:
        logger.warning("Failed to parse JSON from AI response", content=content[:200])
        return None
    return decoded if isinstance(decoded, dict) else None


class AIGateway:
    """One entry point for every AI feature.

    Handles:
    - Provider selection (groq or gemini, with automatic credential fallback)
    - Model selection (fast model for simple chat and short summaries)
    - Quota and rate gates before the provider call
    - Usage recording after a successful call

    ``generate`` never raises; every failure comes back as a GatewayResult.
    """

    def __init__(
        self,
        quota: QuotaEnforcer,
        provider: str | None = None,
        groq_api_key: str | None = None,
        gemini_api_key: str | None = None,
    ) -> None:
        self.quota = quota
        self.timeout = settings.ai_request_timeout_seconds

        provider = provider or settings.ai_provider
        groq_key = settings.groq_api_key if groq_api_key is None else groq_api_key
        gemini_key = settings.gemini_api_key if gemini_api_key is None else gemini_api_key

        if provider == "groq" and not groq_key and gemini_key:
            logger.warning("AI provider fallback: groq key missing, using gemini")
            provider = "gemini"
        if provider == "gemini" and not gemini_key and groq_key:
            logger.warning("AI provider fallback: gemini key missing, using groq")
            provider = "groq"

        self.provider = provider
        if provider == "gemini":
            self.api_key = gemini_key
            self.model = settings.gemini_model
            self.fast_model = settings.gemini_model
        else:
            self.api_key = groq_key
            self.model = settings.groq_model
            self.fast_model = settings.groq_fast_model

        logger.info("AI gateway initialized", provider=self.provider, model=self.model)

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def get_model_info(self) -> dict[str, Any]:
        return {
            "provider": "Gemini" if self.provider == "gemini" else "Groq",
            "model": self.model,
            "configured": self.is_configured(),
        }

    def select_model(self, feature: AIFeature | str, prompt: str) -> str:
        """Full model for complex features, fast model for simple chat and short summaries."""
        name = feature.value if isinstance(feature, AIFeature) else feature
        if name in COMPLEX_FEATURES:
            return self.model
        if name == AIFeature.CHAT.value and is_simple_message(prompt):
            logger.debug("Using fast model for simple message", prompt=prompt[:50])
            return self.fast_model
        if name == AIFeature.SUMMARIZE.value and len(prompt) < FAST_SUMMARY_MAX_LENGTH:
            return self.fast_model
        return self.model

    def _litellm_model(self, model: str) -> str:
        return f"{self.provider}/{model}"

    # ==================== Generation ====================

    async def generate(
        self,
        tenant_id: str,
        feature: AIFeature | str,
        prompt: str,
        system_instruction: str = "",
        temperature: float = 0.7,
        max_tokens: int = 500,
        user_id: str | None = None,
    ) -> GatewayResult:
        """Run one gated provider request.

        Args:
            tenant_id: Tenant whose quota is charged
            feature: Feature tag (drives model selection and the feature gate)
            prompt: User prompt
            system_instruction: Optional system prompt, compacted before sending
            temperature: Sampling temperature
            max_tokens: Response token ceiling
            user_id: Optional user for usage attribution

        Returns:
            GatewayResult with the response and usage, or a failure message
        """
        if not self.is_configured():
            return GatewayResult(success=False, message=MSG_NOT_CONFIGURED)

        model = self.select_model(feature, prompt)

        try:
            decision = await self.quota.can_use_tokens(
                tenant_id, feature, estimate_tokens(prompt + system_instruction)
            )
            rate = await self.quota.check_rate_limit(tenant_id)
        except Exception as e:
            logger.error("Quota check failed", tenant_id=tenant_id, error=str(e), exc_info=True)
            return GatewayResult(success=False, message=MSG_PROCESSING_ERROR, model_used=model)

        if not decision.allowed:
            logger.info(
                "AI request declined by quota",
                tenant_id=tenant_id,
                reason=decision.reason.value if decision.reason else None,
            )
            return GatewayResult(
                success=False,
                message=decision.message,
                reason=decision.reason.value if decision.reason else None,
                upgrade_required=decision.upgrade_required,
            )

        if not rate.allowed:
            logger.info("AI request rate limited", tenant_id=tenant_id)
            return GatewayResult(
                success=False,
                message=rate.message,
                reason=rate.reason.value if rate.reason else None,
            )

        messages = []
        if system_instruction:
            messages.append(
                {"role": "system", "content": prompts.compact_system_prompt(system_instruction)}
            )
        messages.append({"role": "user", "content": prompt})

        start_time = time.perf_counter()
        try:
            response = await litellm.acompletion(
                model=self._litellm_model(model),
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                top_p=TOP_P,
                api_key=self.api_key,
                timeout=self.timeout,
            )
        except litellm.RateLimitError as e:
            logger.error("AI API error", provider=self.provider, status=429, error=str(e), model=model)
            return GatewayResult(success=False, message=MSG_PROVIDER_RATE_LIMITED, model_used=model)
        except (litellm.Timeout, litellm.APIConnectionError) as e:
            logger.error("AI provider error", provider=self.provider, error=str(e))
            return GatewayResult(success=False, message=MSG_PROCESSING_ERROR, model_used=model)
        except Exception as e:
            status = getattr(e, "status_code", None)
            if status is None:
                logger.error("AI provider error", provider=self.provider, error=str(e))
                return GatewayResult(success=False, message=MSG_PROCESSING_ERROR, model_used=model)
            if status == 429:
                return GatewayResult(success=False, message=MSG_PROVIDER_RATE_LIMITED, model_used=model)
            detail = getattr(e, "message", None) or str(e)
            logger.error("AI API error", provider=self.provider, status=status, error=detail, model=model)
            return GatewayResult(success=False, message=MSG_API_ERROR + detail, model_used=model)
        finally:
            await self._count_request(tenant_id)

        response_time_ms = int((time.perf_counter() - start_time) * 1000)

        try:
            text = response.choices[0].message.content
            usage = getattr(response, "usage", None)
            prompt_tokens = int(getattr(usage, "prompt_tokens", 0) or 0)
            completion_tokens = int(getattr(usage, "completion_tokens", 0) or 0)
        except (AttributeError, IndexError, TypeError, ValueError) as e:
            logger.error("Malformed AI response", provider=self.provider, error=str(e))
            return GatewayResult(success=False, message=MSG_PROCESSING_ERROR, model_used=model)

        if not text:
            return GatewayResult(success=False, message=MSG_EMPTY_RESPONSE, model_used=model)

        try:
            await self.quota.record_usage(
                tenant_id,
                feature,
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                model=model,
                cache_hit=False,
                response_time_ms=response_time_ms,
                user_id=user_id,
            )
        except Exception as e:
            # The reply is returned even when accounting fails
            logger.error(
                "Failed to record token usage",
                tenant_id=tenant_id,
                tokens=prompt_tokens + completion_tokens,
                error=str(e),
                exc_info=True,
            )

        logger.info(
            "AI completion successful",
            provider=self.provider,
            model=model,
            feature=feature.value if isinstance(feature, AIFeature) else feature,
            tokens_in=prompt_tokens,
            tokens_out=completion_tokens,
            latency_ms=response_time_ms,
        )

        return GatewayResult(
            success=True,
            response=text,
            model_used=model,
            usage={
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "total_tokens": prompt_tokens + completion_tokens,
            },
        )

    async def _count_request(self, tenant_id: str) -> None:
        try:
            await self.quota.increment_rate_limit(tenant_id)
        except Exception as e:
            logger.error("Failed to count AI request", tenant_id=tenant_id, error=str(e))

    async def generate_json(
        self,
        tenant_id: str,
        feature: AIFeature | str,
        prompt: str,
        system_instruction: str = "",
        temperature: float = 0.3,
        max_tokens: int = 250,
    ) -> tuple[GatewayResult, dict[str, Any] | None]:
        """Generate, then parse the first JSON object out of the response."""
        result = await self.generate(
            tenant_id, feature, prompt, system_instruction, temperature, max_tokens
        )
        if not result.success or not result.response:
            return result, None
        return result, extract_json(result.response)

    # ==================== Features ====================

    async def autofill(
        self,
        tenant_id: str,
        card: dict[str, Any],
        comments: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        result, data = await self.generate_json(
            tenant_id,
            AIFeature.AUTOFILL,
            prompts.build_autofill_prompt(card, comments or []),
            prompts.AUTOFILL_SYSTEM_PROMPT,
            temperature=0.4,
            max_tokens=350,
        )
        if not result.success:
            return result.to_dict()
        if data is None:
            return {"success": False, "message": "Não foi possível extrair sugestões."}
        return {"success": True, "suggestions": data, "usage": result.usage}

    async def summarize(self, tenant_id: str, messages: list[dict[str, Any]]) -> GatewayResult:
        if not messages:
            return GatewayResult(success=False, message="Sem mensagens.")
        return await self.generate(
            tenant_id,
            AIFeature.SUMMARIZE,
            prompts.build_summary_prompt(messages),
            temperature=0.3,
            max_tokens=120,
        )

    async def email_draft(
        self,
        tenant_id: str,
        purpose: str,
        contact: dict[str, Any],
        tone: str = "professional",
    ) -> GatewayResult:
        return await self.generate(
            tenant_id,
            AIFeature.EMAIL_DRAFT,
            prompts.build_email_prompt(purpose, contact, tone),
            "Redator.",
            temperature=0.5,
            max_tokens=300,
        )

    async def lead_analysis(self, tenant_id: str, lead: dict[str, Any]) -> dict[str, Any]:
        result, data = await self.generate_json(
            tenant_id,
            AIFeature.LEAD_ANALYSIS,
            prompts.build_lead_prompt(lead),
            "Analista.",
            temperature=0.3,
            max_tokens=150,
        )
        if not result.success:
            return result.to_dict()
        if data is None:
            return {"success": False, "message": "Erro na análise."}
        return {"success": True, "analysis": data}
