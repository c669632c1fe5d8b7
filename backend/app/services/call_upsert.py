"""Find-or-create of the durable call record keyed by conversation id.

Repeated deliveries for the same conversation mutate the existing row
instead of inserting a new one, so provider retries are harmless.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import insert, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.call import Call, CallSource, CallStatus
from app.schemas.analytics import LeadExtraction
from app.schemas.webhook import CanonicalWebhookPayload, ProviderCallStatus
from app.services.collaborators import AgentRef
from app.utils.logging import get_logger
from app.utils.utils import billing_minutes, format_duration, normalize_phone

logger = get_logger("webhooks.call_upsert")

UNKNOWN_PHONE = "unknown"
_TERMINAL_STATUSES = {CallStatus.COMPLETED.value, CallStatus.FAILED.value}


@dataclass
class UpsertOutcome:
    call: Call
    created: bool
    display_duration: str


def map_call_status(status: ProviderCallStatus) -> str:
    if status is ProviderCallStatus.DONE:
        return CallStatus.COMPLETED.value
    return CallStatus.FAILED.value


def caller_phone_for(payload: CanonicalWebhookPayload) -> str:
    return normalize_phone(payload.caller_phone_number) or UNKNOWN_PHONE


def _call_source(payload: CanonicalWebhookPayload) -> str:
    if payload.metadata.phone_info is not None:
        return CallSource.PHONE.value
    if payload.metadata.extra.get("call_type") in {"web", "websocket", "internet"}:
        return CallSource.INTERNET.value
    return CallSource.UNKNOWN.value


def _build_values(
    payload: CanonicalWebhookPayload,
    agent: AgentRef,
    extraction: Optional[LeadExtraction],
    processing_id: str,
) -> Dict[str, Any]:
    now = datetime.now(timezone.utc)
    seconds = payload.metadata.duration_seconds
    minutes = billing_minutes(seconds)
    credits_used = minutes
    display_duration = format_duration(seconds)
    status = map_call_status(payload.status)

    metadata = {
        **payload.metadata.extra,
        "processed_at": now.isoformat(),
        "processing_id": processing_id,
        "display_duration": display_duration,
        "credits_used": credits_used,
    }
    return {
        "elevenlabs_conversation_id": payload.conversation_id,
        "agent_id": agent.internal_agent_id,
        "user_id": agent.owner_user_id,
        "phone_number": caller_phone_for(payload),
        "call_source": _call_source(payload),
        "caller_name": extraction.name if extraction else None,
        "caller_email": extraction.email if extraction else None,
        "duration_seconds": seconds,
        "duration_minutes": minutes,
        "credits_used": credits_used,
        "status": status,
        "call_metadata": metadata,
        "completed_at": now if status in _TERMINAL_STATUSES else None,
    }


async def find_call_by_conversation_id(db: AsyncSession, conversation_id: str) -> Optional[Call]:
    result = await db.execute(
        select(Call).where(Call.elevenlabs_conversation_id == conversation_id)
    )
    return result.scalar_one_or_none()


async def _insert_if_absent(db: AsyncSession, values: Dict[str, Any]) -> bool:
    """Insert the row unless the conversation id already exists; True if inserted."""
    bind = db.get_bind()
    dialect = bind.dialect.name if bind is not None else ""
    row = {getattr(Call, key): value for key, value in values.items()}

    dialect_insert = None
    if dialect == "postgresql":
        dialect_insert = pg_insert
    elif dialect == "sqlite":
        dialect_insert = sqlite_insert

    if dialect_insert is not None:
        stmt = (
            dialect_insert(Call)
            .values(row)
            .on_conflict_do_nothing(index_elements=["elevenlabs_conversation_id"])
        )
        result = await db.execute(stmt)
        return result.rowcount == 1

    try:
        async with db.begin_nested():
            await db.execute(insert(Call).values(row))
    except IntegrityError:
        return False
    return True


def _apply_update(call: Call, values: Dict[str, Any]) -> None:
    # Reassign rather than mutate so the JSON column is flagged dirty.
    call.call_metadata = {**(call.call_metadata or {}), **values["call_metadata"]}

    call.duration_seconds = values["duration_seconds"]
    call.duration_minutes = values["duration_minutes"]
    call.credits_used = values["credits_used"]

    new_status = values["status"]
    if call.status != CallStatus.COMPLETED.value or new_status == CallStatus.COMPLETED.value:
        call.status = new_status
    if call.completed_at is None and call.status in _TERMINAL_STATUSES:
        call.completed_at = values["completed_at"] or datetime.now(timezone.utc)

    if (call.phone_number or UNKNOWN_PHONE) == UNKNOWN_PHONE:
        call.phone_number = values["phone_number"]
    if call.call_source == CallSource.UNKNOWN.value:
        call.call_source = values["call_source"]
    if not call.caller_name and values["caller_name"]:
        call.caller_name = values["caller_name"]
    if not call.caller_email and values["caller_email"]:
        call.caller_email = values["caller_email"]


async def upsert_call(
    db: AsyncSession,
    payload: CanonicalWebhookPayload,
    agent: AgentRef,
    extraction: Optional[LeadExtraction],
    processing_id: str,
) -> UpsertOutcome:
    """Create the call for ``payload.conversation_id`` or update it in place.

    The caller owns the transaction and commits it.
    """
    values = _build_values(payload, agent, extraction, processing_id)
    display_duration = values["call_metadata"]["display_duration"]

    existing = await find_call_by_conversation_id(db, payload.conversation_id)
    created = False
    if existing is None:
        created = await _insert_if_absent(db, values)
        existing = await find_call_by_conversation_id(db, payload.conversation_id)
        if existing is None:
            raise RuntimeError(
                f"Call for conversation {payload.conversation_id} vanished after insert"
            )
        if not created:
            logger.info(
                "call_insert_conflict_retried_as_update",
                conversation_id=payload.conversation_id,
                processing_id=processing_id,
            )

    if not created:
        _apply_update(existing, values)
    await db.flush()

    logger.info(
        "call_record_created" if created else "call_record_updated",
        processing_id=processing_id,
        conversation_id=payload.conversation_id,
        call_id=existing.id,
        status=existing.status,
        duration_seconds=existing.duration_seconds,
        duration_minutes=existing.duration_minutes,
        credits_used=existing.credits_used,
        phone_number=existing.phone_number,
    )
    return UpsertOutcome(call=existing, created=created, display_duration=display_duration)
