"""Call model for provider conversation tracking."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class CallStatus(str, Enum):
    """Call lifecycle status."""
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class CallSource(str, Enum):
    """Where the conversation came from."""
    PHONE = "phone"
    INTERNET = "internet"
    UNKNOWN = "unknown"


class Call(Base):
    """One provider conversation, keyed by its conversation id."""

    __tablename__ = "calls"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    # Provider identity (idempotency key)
    elevenlabs_conversation_id: Mapped[str] = mapped_column(
        String(100), unique=True, index=True, nullable=False
    )

    # Ownership
    agent_id: Mapped[int] = mapped_column(ForeignKey("agents.id"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    contact_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("contacts.id"), nullable=True, index=True
    )

    # Caller
    phone_number: Mapped[str] = mapped_column(String(32), nullable=False, default="unknown")
    call_source: Mapped[str] = mapped_column(String(20), default=CallSource.UNKNOWN.value)
    caller_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    caller_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Duration and billing
    duration_seconds: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    credits_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    status: Mapped[str] = mapped_column(String(20), default=CallStatus.IN_PROGRESS.value)
    call_metadata: Mapped[Dict[str, Any]] = mapped_column(
        "metadata", JSON, default=dict, nullable=False
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Call {self.elevenlabs_conversation_id} ({self.status})>"
