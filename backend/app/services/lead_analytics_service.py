"""Persistence of parsed lead analytics, one row per call."""

from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.lead_analytics import EXTRACTED_MAX_LENGTH, LEVEL_MAX_LENGTH, LeadAnalytics
from app.schemas.analytics import ParsedAnalytics
from app.utils.logging import get_logger

logger = get_logger("services.lead_analytics")


def _clip(value: Optional[str], limit: int) -> Optional[str]:
    if value is None or len(value) <= limit:
        return value
    return value[:limit]


def analytics_columns(analytics: ParsedAnalytics) -> Dict[str, Any]:
    """Flatten ``ParsedAnalytics`` into ``LeadAnalytics`` column values."""
    flags = analytics.cta_flags
    extraction = analytics.extraction
    return {
        "intent_level": _clip(analytics.intent.level, LEVEL_MAX_LENGTH),
        "intent_score": analytics.intent.score,
        "urgency_level": _clip(analytics.urgency.level, LEVEL_MAX_LENGTH),
        "urgency_score": analytics.urgency.score,
        "budget_constraint": _clip(analytics.budget.level, LEVEL_MAX_LENGTH),
        "budget_score": analytics.budget.score,
        "fit_alignment": _clip(analytics.fit.level, LEVEL_MAX_LENGTH),
        "fit_score": analytics.fit.score,
        "engagement_health": _clip(analytics.engagement.level, LEVEL_MAX_LENGTH),
        "engagement_score": analytics.engagement.score,
        "total_score": analytics.total_score,
        "lead_status_tag": analytics.lead_status_tag,
        "reasoning": dict(analytics.reasoning),
        "cta_pricing_clicked": flags.pricing,
        "cta_demo_clicked": flags.demo,
        "cta_followup_clicked": flags.followup,
        "cta_sample_clicked": flags.sample,
        "cta_website_clicked": flags.website,
        "cta_escalated_to_human": flags.escalated,
        "extracted_name": _clip(extraction.name, EXTRACTED_MAX_LENGTH),
        "extracted_email": _clip(extraction.email, EXTRACTED_MAX_LENGTH),
        "company_name": _clip(extraction.company_name, EXTRACTED_MAX_LENGTH),
        "smart_notification": extraction.smart_notification,
        "demo_book_datetime": analytics.demo_book_datetime,
        "parse_tier": analytics.parse_tier,
        "raw_analysis_data": analytics.raw_analysis_data,
    }


class SqlLeadAnalyticsStore:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def store(self, call_id: int, user_id: int, analytics: ParsedAnalytics) -> int:
        """Insert the call's analytics, or overwrite them on re-delivery."""
        columns = analytics_columns(analytics)
        async with self.session_maker() as db:
            result = await db.execute(
                select(LeadAnalytics).where(LeadAnalytics.call_id == call_id)
            )
            row = result.scalar_one_or_none()
            created = row is None
            if row is None:
                row = LeadAnalytics(call_id=call_id, user_id=user_id)
                db.add(row)
            for key, value in columns.items():
                setattr(row, key, value)
            await db.flush()
            analytics_id = row.id
            await db.commit()

        logger.info(
            "lead_analytics_stored",
            call_id=call_id,
            analytics_id=analytics_id,
            created=created,
            total_score=analytics.total_score,
            lead_status=analytics.lead_status_tag,
            parse_tier=analytics.parse_tier,
            has_demo_booking=analytics.demo_book_datetime is not None,
        )
        return analytics_id
