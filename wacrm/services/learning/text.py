"""Text helpers for the learning store: normalisation, hashing, keywords and intents."""

import hashlib
import re

STOP_WORDS = frozenset({
    "o", "a", "os", "as", "um", "uma", "de", "da", "do", "em", "no", "na",
    "para", "com", "por", "que", "qual", "como", "quando", "onde", "é", "são",
    "foi", "ser", "ter", "eu", "você", "ele", "ela", "nós", "eles", "meu", "seu",
    "isso", "este", "esta", "esse", "essa", "oi", "olá", "bom", "boa", "dia",
    "tarde", "noite", "obrigado", "obrigada", "por favor", "sim", "não",
})

# Ordered: the first intent with a matching keyword wins
INTENTS: dict[str, tuple[str, ...]] = {
    "greeting": ("oi", "olá", "bom dia", "boa tarde", "boa noite", "hello", "hi"),
    "price_inquiry": ("preço", "valor", "quanto custa", "custo", "orçamento", "budget"),
    "availability": ("disponível", "tem", "existe", "vocês tem", "disponibilidade"),
    "support": ("ajuda", "suporte", "problema", "erro", "não funciona", "bug"),
    "scheduling": ("agendar", "marcar", "horário", "agenda", "reservar", "appointment"),
    "info": ("informação", "info", "saber", "conhecer", "mais sobre", "explicar"),
    "complaint": ("reclamação", "insatisfeito", "ruim", "péssimo", "problema"),
    "thanks": ("obrigado", "obrigada", "agradeço", "valeu", "thanks"),
    "goodbye": ("tchau", "até mais", "bye", "adeus", "até logo"),
    "order": ("pedido", "comprar", "quero", "pedir", "encomendar"),
    "payment": ("pagamento", "pagar", "pix", "cartão", "boleto", "transferência"),
    "delivery": ("entrega", "frete", "envio", "prazo", "chegada"),
}

GENERAL_INTENT = "general"

# Intents whose question/answer pairs are worth caching as FAQ
FAQ_INTENTS = frozenset({
    "price_inquiry", "availability", "support", "scheduling",
    "info", "order", "payment", "delivery",
})

# Answers that must never be cached, or the bot loops on "I didn't understand"
GENERIC_FALLBACKS = (
    "não entendi muito bem",
    "nao entendi muito bem",
    "pode me explicar o que você está procurando",
    "pode me explicar o que voce esta procurando",
    "estou aqui para ajudar",
)

MIN_KEYWORD_LENGTH = 3
MAX_KEYWORDS = 10
MAX_TOPICS = 5

_NON_WORD = re.compile(r"[^\w]|_")
_PUNCTUATION = re.compile(r"[^\w\s]|_")
_WHITESPACE = re.compile(r"\s+")


def normalize_question(text: str) -> str:
    """Lowercase, strip punctuation and collapse whitespace."""
    normalized = _PUNCTUATION.sub("", text.strip().lower())
    return _WHITESPACE.sub(" ", normalized).strip()


def hash_question(text: str) -> str:
    """MD5 of the normalized question; the FAQ cache key."""
    return hashlib.md5(normalize_question(text).encode("utf-8")).hexdigest()


def extract_keywords(text: str) -> list[str]:
    """Stop-word filtered words of at least three characters, first ten, unique."""
    keywords: list[str] = []
    for word in _WHITESPACE.split(text.strip().lower()):
        word = _NON_WORD.sub("", word)
        if len(word) >= MIN_KEYWORD_LENGTH and word not in STOP_WORDS:
            keywords.append(word)
    return list(dict.fromkeys(keywords[:MAX_KEYWORDS]))


def extract_topics(text: str) -> list[str]:
    return extract_keywords(text)[:MAX_TOPICS]


def detect_intent(text: str) -> str:
    """Substring-match the intent table in order; ``general`` when nothing matches."""
    lowered = text.lower()
    for intent, keywords in INTENTS.items():
        if any(keyword in lowered for keyword in keywords):
            return intent
    return GENERAL_INTENT


def is_generic_fallback(answer: str) -> bool:
    normalized = answer.strip().lower()
    return any(phrase in normalized for phrase in GENERIC_FALLBACKS)


def truncate(text: str, limit: int) -> str:
    """Cut ``text`` to ``limit`` characters, marking the cut with an ellipsis."""
    return text if len(text) <= limit else text[:limit] + "..."
