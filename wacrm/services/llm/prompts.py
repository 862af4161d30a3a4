"""Prompt shaping - compact system prompts and learning-aware user prompts.

Every piece of text sent to the provider goes through a fixed character budget
here, so prompt size (and cost) stays bounded whatever the agent configuration.
"""

import json
import re
from typing import Any

from wacrm.models import CustomInstructions, EnrichedContext, StructuredInstructions
from wacrm.services.learning.text import truncate

SYSTEM_PROMPT_PREFIX = "Assistente virtual em PT-BR."
MAX_SYSTEM_PROMPT = 300
MAX_CUSTOM_INSTRUCTIONS = 2000
MAX_KNOWLEDGE_BASE = 200
MAX_FAQ_HINT = 100

# (field, label, budget) in prompt order
STRUCTURED_SECTIONS: tuple[tuple[str, str, int], ...] = (
    ("function_definition", "Sua função: ", 300),
    ("company_info", "Sobre a empresa/produtos: ", 400),
    ("tone", "Tom da conversa: ", 150),
    ("knowledge_guidelines", "Orientações de conhecimento: ", 200),
    ("incorrect_info_prevention", "IMPORTANTE - Prevenção de erros: ", 200),
    ("human_escalation_rules", "Encaminhar para humano quando: ", 200),
    ("useful_links", "Links úteis para compartilhar: ", 200),
    ("conversation_examples", "Exemplos de conversa:\n", 300),
)

QUICK_RESPONSES: dict[str, str] = {
    "oi": "Olá! Como posso ajudar você hoje?",
    "olá": "Olá! Como posso ajudar você hoje?",
    "ola": "Olá! Como posso ajudar você hoje?",
    "hello": "Olá! Como posso ajudar você hoje?",
    "hi": "Olá! Como posso ajudar você hoje?",
    "bom dia": "Bom dia! Como posso ajudar?",
    "boa tarde": "Boa tarde! Como posso ajudar?",
    "boa noite": "Boa noite! Como posso ajudar?",
    "ok": "Entendido! Posso ajudar com mais alguma coisa?",
    "obrigado": "Por nada! Estou à disposição.",
    "obrigada": "Por nada! Estou à disposição.",
    "valeu": "Por nada! Qualquer dúvida, estou aqui.",
    "tchau": "Até mais! Foi um prazer ajudar.",
    "bye": "Até mais! Foi um prazer ajudar.",
    "até mais": "Até mais! Volte sempre.",
    "ate mais": "Até mais! Volte sempre.",
}

CONTEXT_KEYWORDS = (
    "anterior", "último", "falamos", "disse", "mencionou",
    "pedido", "compra", "serviço", "produto",
)
QUESTION_KEYWORDS = (
    "como", "qual", "quando", "onde", "quanto", "preço", "valor",
    "horário", "funciona", "serviço", "produto", "?",
)
MIN_CONTEXT_MESSAGE_LENGTH = 20

_TRAILING_PUNCTUATION = re.compile(r"[!?.]+$")
_WHITESPACE = re.compile(r"\s+")


def quick_response(message: str) -> str | None:
    """Canned reply for conversational fillers, or None."""
    normalized = _TRAILING_PUNCTUATION.sub("", message.strip().lower())
    return QUICK_RESPONSES.get(normalized)


def needs_enriched_context(message: str) -> bool:
    if len(message) < MIN_CONTEXT_MESSAGE_LENGTH:
        return False
    lowered = message.lower()
    return any(keyword in lowered for keyword in CONTEXT_KEYWORDS)


def needs_knowledge_base(message: str) -> bool:
    lowered = message.lower()
    return any(keyword in lowered for keyword in QUESTION_KEYWORDS)


def compact_system_prompt(prompt: str) -> str:
    """Collapse whitespace and cut to the system prompt budget."""
    return truncate(_WHITESPACE.sub(" ", prompt.strip()), MAX_SYSTEM_PROMPT)


def build_system_prompt(instructions: StructuredInstructions | CustomInstructions | None) -> str:
    """Agent instructions as a budgeted system prompt."""
    if isinstance(instructions, CustomInstructions):
        return f"{SYSTEM_PROMPT_PREFIX}\n\n" + truncate(
            instructions.custom_instructions, MAX_CUSTOM_INSTRUCTIONS
        )

    parts = [SYSTEM_PROMPT_PREFIX]
    if instructions is not None:
        for field, label, budget in STRUCTURED_SECTIONS:
            value = getattr(instructions, field)
            if value:
                parts.append(label + truncate(value, budget))
    return "\n\n".join(parts)


def build_chat_prompt(
    message: str,
    learned: EnrichedContext | None = None,
    knowledge_base: str | None = None,
    faq_hint_threshold: float = 0.6,
    faq_direct_threshold: float = 0.75,
) -> str:
    """User prompt with compact ``Info:``/``Ref:``/``Tópicos:``/``KB:`` lines before the message."""
    parts: list[str] = []

    if learned is not None:
        if learned.memories:
            info = ";".join(f"{m.key}:{m.value}" for m in learned.memories[:2])
            parts.append(f"Info:{info}")

        faq = learned.faq
        if faq is not None and faq_hint_threshold <= faq.helpfulness_score < faq_direct_threshold:
            parts.append("Ref:" + truncate(faq.answer, MAX_FAQ_HINT))

        context = learned.conversation_context
        if context is not None and context.topics:
            parts.append("Tópicos:" + ",".join(context.topics[:3]))

    if knowledge_base and needs_knowledge_base(message):
        parts.append("KB:" + truncate(knowledge_base, MAX_KNOWLEDGE_BASE))

    if not parts:
        return message
    return "\n".join(parts) + f"\nMsg:{message}"


# ==================== Feature prompts ====================


def build_card_context(card: dict[str, Any], comments: list[dict[str, Any]]) -> str:
    """Compact deal-card description for the autofill feature."""
    lines: list[str] = []

    contact = card.get("contact") or {}
    if contact.get("name"):
        line = f"Contato: {contact['name']}"
        if contact.get("company_name"):
            line += f" - {contact['company_name']}"
        lines.append(line)
        if contact.get("notes"):
            lines.append("Notas do contato: " + truncate(contact["notes"], 150))

    lines.append("Estágio: " + ((card.get("stage") or {}).get("name") or "N/A"))
    if card.get("value"):
        lines.append(f"Valor do negócio: R$ {float(card['value']):.2f}")
    if card.get("priority"):
        lines.append(f"Prioridade atual: {card['priority']}")
    if card.get("description"):
        lines.append("Observação atual: " + truncate(card["description"], 200))

    if comments:
        lines.append("--- Comentários recentes ---")
        for comment in comments[-5:]:
            author = (comment.get("user") or {}).get("name") or "Usuário"
            lines.append(f"[{author}] " + truncate(comment.get("content") or "", 150))

    return "\n".join(lines)


AUTOFILL_SYSTEM_PROMPT = (
    "Você é um assistente de vendas experiente em CRM. Analise os dados do lead e gere "
    "insights acionáveis. Responda APENAS com JSON válido, sem texto adicional."
)


def build_autofill_prompt(card: dict[str, Any], comments: list[dict[str, Any]]) -> str:
    return (
        build_card_context(card, comments)
        + '\n\nGere JSON: {"priority":"low|medium|high","observation":"análise estratégica do lead",'
        '"suggested_next_action":"ação específica"}'
    )


def build_summary_prompt(messages: list[dict[str, Any]]) -> str:
    """Last 8 messages as ``C:``/``A:`` lines (contact/agent)."""
    lines = []
    for msg in messages[-8:]:
        role = "C" if msg.get("direction") == "incoming" else "A"
        lines.append(f"{role}:{truncate(msg.get('content') or '', 60)}\n")
    return "Resumo(2linhas)+sentimento(pos/neu/neg):\n" + "".join(lines)


def build_email_prompt(purpose: str, contact: dict[str, Any], tone: str = "professional") -> str:
    name = contact.get("name") or "Cliente"
    return f"Email {tone} p/ {name}:{purpose}. Assunto+corpo."


def build_lead_prompt(lead: dict[str, Any]) -> str:
    essentials = {k: lead[k] for k in ("name", "email", "company", "value") if k in lead}
    info = json.dumps(essentials, ensure_ascii=False)
    return (
        f"Lead:{info}\nJSON:{{quality_score(1-10),qualification(hot/warm/cold),"
        "priority(high/med/low)}"
    )
