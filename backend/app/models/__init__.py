"""Models package initialization."""

from app.models.agent import Agent
from app.models.call import Call, CallSource, CallStatus
from app.models.contact import Contact
from app.models.credit_transaction import CreditTransaction
from app.models.lead_analytics import LeadAnalytics, LeadStatusTag
from app.models.transcript import Transcript
from app.models.user import User
from app.models.webhook_event import WebhookEvent

__all__ = [
    # User
    "User",
    # Agent
    "Agent",
    # Call
    "Call",
    "CallSource",
    "CallStatus",
    "Transcript",
    # Lead
    "LeadAnalytics",
    "LeadStatusTag",
    "Contact",
    # Billing
    "CreditTransaction",
    # Webhooks
    "WebhookEvent",
]
