import pytest
from sqlalchemy import func, select

from app.database import async_session_maker
from app.models.call import Call, CallStatus
from app.schemas.analytics import LeadExtraction
from app.schemas.webhook import (
    CallMetadata,
    CanonicalWebhookPayload,
    PhoneInfo,
    ProviderCallStatus,
)
from app.services.call_upsert import map_call_status, upsert_call
from app.services.collaborators import AgentRef
from app.utils.utils import billing_minutes, format_duration


def make_payload(conversation_id, duration=61, status=ProviderCallStatus.DONE, phone="+919876543210", extra=None):
    return CanonicalWebhookPayload(
        conversation_id=conversation_id,
        agent_provider_id="agent_x",
        status=status,
        metadata=CallMetadata(
            duration_seconds=duration,
            phone_info=PhoneInfo(external_number=phone) if phone else None,
            extra=extra or {},
        ),
    )


async def _upsert(payload, agent, extraction=None, processing_id="proc_test"):
    async with async_session_maker() as db:
        outcome = await upsert_call(db, payload, agent, extraction, processing_id)
        await db.commit()
        return outcome


@pytest.mark.parametrize(
    "seconds, minutes",
    [(0, 0), (1, 1), (59, 1), (60, 1), (61, 2), (125, 3)],
)
def test_billing_minutes_round_up(seconds, minutes):
    assert billing_minutes(seconds) == minutes


@pytest.mark.parametrize(
    "seconds, text",
    [(45, "45 sec"), (60, "1 min"), (61, "1 min 1 sec"), (125, "2 min 5 sec")],
)
def test_format_duration(seconds, text):
    assert format_duration(seconds) == text


def test_status_mapping_to_call_status():
    assert map_call_status(ProviderCallStatus.DONE) == CallStatus.COMPLETED.value
    assert map_call_status(ProviderCallStatus.ERROR) == CallStatus.FAILED.value
    assert map_call_status(ProviderCallStatus.FAILED) == CallStatus.FAILED.value


@pytest.mark.asyncio
async def test_new_call_gets_duration_and_credits(seed_owner, conversation_id):
    user_id, agent_id, _ = await seed_owner()
    agent = AgentRef(internal_agent_id=agent_id, owner_user_id=user_id, name="Sales Agent")

    outcome = await _upsert(
        make_payload(conversation_id),
        agent,
        LeadExtraction(name="Asha Rao", email="asha@example.com"),
        processing_id="proc_first",
    )

    assert outcome.created is True
    assert outcome.display_duration == "1 min 1 sec"
    call = outcome.call
    assert call.duration_seconds == 61
    assert call.duration_minutes == 2
    assert call.credits_used == 2
    assert call.status == CallStatus.COMPLETED.value
    assert call.completed_at is not None
    assert call.phone_number == "+919876543210"
    assert call.call_source == "phone"
    assert call.caller_name == "Asha Rao"
    assert call.call_metadata["processing_id"] == "proc_first"
    assert call.call_metadata["display_duration"] == "1 min 1 sec"
    assert call.call_metadata["credits_used"] == 2
    assert "processed_at" in call.call_metadata


@pytest.mark.asyncio
async def test_redelivery_updates_single_row(seed_owner, conversation_id):
    user_id, agent_id, _ = await seed_owner()
    agent = AgentRef(internal_agent_id=agent_id, owner_user_id=user_id, name="Sales Agent")

    first = await _upsert(make_payload(conversation_id, extra={"call_type": "phone"}), agent)
    second = await _upsert(
        make_payload(conversation_id, duration=130, extra={"recording": "r.mp3"}),
        agent,
        processing_id="proc_second",
    )

    assert second.created is False
    assert second.call.id == first.call.id
    assert second.call.duration_minutes == 3
    assert second.call.call_metadata["call_type"] == "phone"
    assert second.call.call_metadata["recording"] == "r.mp3"
    assert second.call.call_metadata["processing_id"] == "proc_second"

    async with async_session_maker() as db:
        count = await db.scalar(
            select(func.count()).select_from(Call).where(
                Call.elevenlabs_conversation_id == conversation_id
            )
        )
    assert count == 1


@pytest.mark.asyncio
async def test_completed_call_is_not_downgraded(seed_owner, conversation_id):
    user_id, agent_id, _ = await seed_owner()
    agent = AgentRef(internal_agent_id=agent_id, owner_user_id=user_id, name="Sales Agent")

    await _upsert(make_payload(conversation_id), agent)
    outcome = await _upsert(make_payload(conversation_id, status=ProviderCallStatus.ERROR), agent)

    assert outcome.call.status == CallStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_unknown_phone_is_filled_on_redelivery(seed_owner, conversation_id):
    user_id, agent_id, _ = await seed_owner()
    agent = AgentRef(internal_agent_id=agent_id, owner_user_id=user_id, name="Sales Agent")

    first = await _upsert(make_payload(conversation_id, phone=None), agent)
    assert first.call.phone_number == "unknown"

    second = await _upsert(make_payload(conversation_id, phone="+15550001111"), agent)
    assert second.call.phone_number == "+15550001111"


@pytest.mark.asyncio
async def test_zero_duration_call_has_no_credits(seed_owner, conversation_id):
    user_id, agent_id, _ = await seed_owner()
    agent = AgentRef(internal_agent_id=agent_id, owner_user_id=user_id, name="Sales Agent")

    outcome = await _upsert(make_payload(conversation_id, duration=0), agent)

    assert outcome.call.duration_minutes == 0
    assert outcome.call.credits_used == 0
