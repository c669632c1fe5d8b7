"""Structured lead analytics parsed from the provider's analysis string."""

from typing import Dict, Optional

from pydantic import BaseModel, Field

UNKNOWN_LEVEL = "Unknown"


class CategoryScore(BaseModel):
    """Level label plus its 1-3 score (0 when the category is missing)."""
    level: str = UNKNOWN_LEVEL
    score: int = Field(0, ge=0, le=3)


class CtaFlags(BaseModel):
    pricing: bool = False
    demo: bool = False
    followup: bool = False
    sample: bool = False
    escalated: bool = False
    website: bool = False


class LeadExtraction(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    company_name: Optional[str] = None
    smart_notification: Optional[str] = None


class ParsedAnalytics(BaseModel):
    intent: CategoryScore = Field(default_factory=CategoryScore)
    urgency: CategoryScore = Field(default_factory=CategoryScore)
    budget: CategoryScore = Field(default_factory=CategoryScore)
    fit: CategoryScore = Field(default_factory=CategoryScore)
    engagement: CategoryScore = Field(default_factory=CategoryScore)

    total_score: int = Field(0, ge=0, le=15)
    lead_status_tag: str = "Raw"
    score_capped: bool = False

    cta_flags: CtaFlags = Field(default_factory=CtaFlags)
    extraction: LeadExtraction = Field(default_factory=LeadExtraction)
    reasoning: Dict[str, str] = Field(default_factory=dict)
    demo_book_datetime: Optional[str] = None

    # 1 strict JSON, 2 quote swap, 3 tolerant converter, 4 raw fallback
    parse_tier: int = Field(4, ge=1, le=4)
    raw_analysis_data: Optional[str] = None

    @property
    def is_fallback(self) -> bool:
        return self.parse_tier == 4
