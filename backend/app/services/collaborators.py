"""Interfaces the webhook pipeline consumes from the rest of the application."""

from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from app.schemas.analytics import LeadExtraction, ParsedAnalytics
from app.schemas.webhook import TranscriptEntry


@dataclass(frozen=True)
class AgentRef:
    internal_agent_id: int
    owner_user_id: int
    name: str


@dataclass(frozen=True)
class ContactResult:
    contact_id: Optional[int]
    created: bool = False
    updated: bool = False


@dataclass(frozen=True)
class DeductionResult:
    success: bool
    transaction_id: Optional[int] = None
    balance_after: Optional[int] = None
    already_applied: bool = False


@dataclass(frozen=True)
class CallCompletedEvent:
    call_id: int
    agent_id: int
    user_id: int
    conversation_id: str
    status: str
    changed_fields: List[str] = field(default_factory=list)


class AgentDirectory(Protocol):
    async def find_agent_by_provider_id(self, provider_agent_id: str) -> Optional[AgentRef]:
        ...


class TranscriptStore(Protocol):
    async def store(self, call_id: int, entries: List[TranscriptEntry]) -> int:
        ...


class LeadAnalyticsStore(Protocol):
    async def store(self, call_id: int, user_id: int, analytics: ParsedAnalytics) -> int:
        ...


class ContactService(Protocol):
    async def create_or_update(
        self,
        user_id: int,
        phone_number: Optional[str],
        extraction: LeadExtraction,
        call_id: int,
    ) -> ContactResult:
        ...

    async def link_contact_to_call(self, call_id: int, contact_id: int) -> None:
        ...


class BillingLedger(Protocol):
    async def deduct_credits(
        self,
        user_id: int,
        amount: int,
        description: str,
        reference_id: str,
    ) -> DeductionResult:
        ...


class CallEventPublisher(Protocol):
    def publish(self, event: CallCompletedEvent) -> None:
        ...
