"""Schemas package initialization."""

from app.schemas.analytics import CategoryScore, CtaFlags, LeadExtraction, ParsedAnalytics
from app.schemas.webhook import (
    CallMetadata,
    CanonicalWebhookPayload,
    PayloadShape,
    PhoneInfo,
    ProviderCallStatus,
    TranscriptEntry,
    WebhookAck,
    WebhookErrorAck,
    WebhookHealth,
)

__all__ = [
    # Analytics
    "CategoryScore",
    "CtaFlags",
    "LeadExtraction",
    "ParsedAnalytics",
    # Webhook
    "CallMetadata",
    "CanonicalWebhookPayload",
    "PayloadShape",
    "PhoneInfo",
    "ProviderCallStatus",
    "TranscriptEntry",
    "WebhookAck",
    "WebhookErrorAck",
    "WebhookHealth",
]
