"""Webhook schemas: canonical notification shape and acknowledgements."""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ProviderCallStatus(str, Enum):
    """Status reported by the provider for a finished conversation."""
    DONE = "done"
    FAILED = "failed"
    ERROR = "error"


class PayloadShape(str, Enum):
    """Historical notification layouts the normalizer understands."""
    LEGACY = "legacy"
    NEW = "new"


class TranscriptEntry(BaseModel):
    """One turn of the conversation."""
    role: str = "unknown"
    message: str = ""
    time_in_call_secs: Optional[float] = None


class PhoneInfo(BaseModel):
    direction: Optional[str] = None
    external_number: Optional[str] = None
    agent_number: Optional[str] = None
    call_sid: Optional[str] = None


class CallMetadata(BaseModel):
    start_time: Optional[int] = Field(None, description="Unix seconds")
    duration_seconds: int = 0
    phone_info: Optional[PhoneInfo] = None
    # Remaining provider metadata, merged into the stored call metadata.
    extra: Dict[str, Any] = Field(default_factory=dict)


class CanonicalWebhookPayload(BaseModel):
    """Single in-memory shape every supported notification is normalized into."""
    conversation_id: str
    agent_provider_id: str
    status: ProviderCallStatus
    transcript_entries: List[TranscriptEntry] = Field(default_factory=list)
    metadata: CallMetadata
    analysis_raw_string: Optional[str] = None
    shape: PayloadShape = PayloadShape.NEW
    # True only when the transcript arrived as a list of role-tagged turns.
    transcript_structured: bool = False

    @property
    def caller_phone_number(self) -> Optional[str]:
        info = self.metadata.phone_info
        if info is None:
            return None
        return info.external_number or info.agent_number

    @property
    def user_turn_count(self) -> Optional[int]:
        """User turns in the conversation, or None when the transcript cannot tell."""
        if not self.transcript_structured:
            return None
        return sum(1 for entry in self.transcript_entries if entry.role.lower() == "user")


class WebhookAck(BaseModel):
    """Response returned to the provider on success."""
    success: bool = True
    message: str = "Webhook processed successfully"
    processing_time_ms: int
    processing_id: Optional[str] = None


class WebhookErrorAck(BaseModel):
    success: bool = False
    error: str


class WebhookHealth(BaseModel):
    success: bool = True
    message: str = "Webhook endpoint is healthy"
    timestamp: str
