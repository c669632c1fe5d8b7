"""Lead analytics model for per-call lead scoring."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base

# Free-text values from the analysis are clipped to these before storage.
LEVEL_MAX_LENGTH = 100
EXTRACTED_MAX_LENGTH = 255


class LeadStatusTag(str, Enum):
    """Lead temperature derived from the total score."""
    COLD = "Cold"
    WARM = "Warm"
    HOT = "Hot"
    RAW = "Raw"


class LeadAnalytics(Base):
    """Parsed lead score for a single call (one row per call)."""

    __tablename__ = "lead_analytics"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    call_id: Mapped[int] = mapped_column(
        ForeignKey("calls.id"), unique=True, index=True, nullable=False
    )
    user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)

    # Category scores
    intent_level: Mapped[str] = mapped_column(String(LEVEL_MAX_LENGTH), default="Unknown")
    intent_score: Mapped[int] = mapped_column(Integer, default=0)
    urgency_level: Mapped[str] = mapped_column(String(LEVEL_MAX_LENGTH), default="Unknown")
    urgency_score: Mapped[int] = mapped_column(Integer, default=0)
    budget_constraint: Mapped[str] = mapped_column(String(LEVEL_MAX_LENGTH), default="Unknown")
    budget_score: Mapped[int] = mapped_column(Integer, default=0)
    fit_alignment: Mapped[str] = mapped_column(String(LEVEL_MAX_LENGTH), default="Unknown")
    fit_score: Mapped[int] = mapped_column(Integer, default=0)
    engagement_health: Mapped[str] = mapped_column(String(LEVEL_MAX_LENGTH), default="Unknown")
    engagement_score: Mapped[int] = mapped_column(Integer, default=0)

    total_score: Mapped[int] = mapped_column(Integer, default=0, index=True)
    lead_status_tag: Mapped[str] = mapped_column(
        String(10), default=LeadStatusTag.RAW.value, index=True
    )
    reasoning: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    # CTA interactions
    cta_pricing_clicked: Mapped[bool] = mapped_column(Boolean, default=False)
    cta_demo_clicked: Mapped[bool] = mapped_column(Boolean, default=False)
    cta_followup_clicked: Mapped[bool] = mapped_column(Boolean, default=False)
    cta_sample_clicked: Mapped[bool] = mapped_column(Boolean, default=False)
    cta_website_clicked: Mapped[bool] = mapped_column(Boolean, default=False)
    cta_escalated_to_human: Mapped[bool] = mapped_column(Boolean, default=False)

    # Extraction
    extracted_name: Mapped[Optional[str]] = mapped_column(String(EXTRACTED_MAX_LENGTH), nullable=True)
    extracted_email: Mapped[Optional[str]] = mapped_column(String(EXTRACTED_MAX_LENGTH), nullable=True)
    company_name: Mapped[Optional[str]] = mapped_column(String(EXTRACTED_MAX_LENGTH), nullable=True)
    smart_notification: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    demo_book_datetime: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)

    parse_tier: Mapped[int] = mapped_column(Integer, default=4)
    raw_analysis_data: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<LeadAnalytics call={self.call_id} {self.total_score} ({self.lead_status_tag})>"
