"""AI agent configuration models."""

from datetime import datetime, time
from typing import Annotated, Literal

from pydantic import BaseModel, Field

from wacrm.core.timeutils import utcnow

# Sentinel session binding meaning "this agent never answers on WhatsApp"
NO_SESSION = "none"

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class ServiceWindow(BaseModel):
    """Service hours for one weekday, as ``HH:MM`` strings."""

    enabled: bool = False
    start: str | None = None
    end: str | None = None

    def contains(self, moment: time) -> bool:
        """Inclusive check; an incomplete or disabled window always contains."""
        if not self.enabled or not self.start or not self.end:
            return True
        current = moment.strftime("%H:%M")
        return self.start <= current <= self.end


class KnowledgeDocument(BaseModel):
    """A knowledge-base document attached to an agent."""

    name: str
    content: str = ""


class StructuredInstructions(BaseModel):
    """Field-by-field agent instructions."""

    kind: Literal["structured"] = "structured"
    function_definition: str | None = None
    company_info: str | None = None
    tone: str | None = None
    knowledge_guidelines: str | None = None
    incorrect_info_prevention: str | None = None
    human_escalation_rules: str | None = None
    useful_links: str | None = None
    conversation_examples: str | None = None


class CustomInstructions(BaseModel):
    """Free-form agent instructions."""

    kind: Literal["custom"] = "custom"
    custom_instructions: str


AgentInstructions = Annotated[
    StructuredInstructions | CustomInstructions,
    Field(discriminator="kind"),
]


class AIAgent(BaseModel):
    """An AI agent that auto-answers on one session or globally."""

    id: str
    tenant_id: str
    name: str
    is_active: bool = True
    session_id: str | None = Field(
        default=None, description="Bound session; None = any session, 'none' = disabled"
    )
    human_service_hours: dict[str, ServiceWindow] = Field(default_factory=dict)
    instructions: AgentInstructions = Field(default_factory=StructuredInstructions)
    documents: list[KnowledgeDocument] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def knowledge_base(self) -> str:
        """Concatenate non-empty documents into one knowledge-base text."""
        return "".join(
            f"\n\n--- {doc.name} ---\n{doc.content}" for doc in self.documents if doc.content
        )

    def is_within_service_hours(self, local_now: datetime) -> bool:
        """Check today's window in the agent's local time. Missing config means always on."""
        window = self.human_service_hours.get(WEEKDAYS[local_now.weekday()])
        if window is None:
            return True
        return window.contains(local_now.time())
