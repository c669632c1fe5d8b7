import asyncio
import hashlib
import hmac
import json
import time

import structlog
from fastapi.testclient import TestClient
from structlog.testing import capture_logs
from sqlalchemy import func, select

from app.config import settings
from app.database import async_session_maker
from app.main import app
from app.models.call import Call
from app.models.lead_analytics import LeadAnalytics
from app.models.webhook_event import WebhookEvent
from app.services.agent_directory import SqlAgentDirectory
from app.services.billing_service import SqlBillingLedger
from app.services.call_events import call_event_bus
from app.services import signature, webhook_processor
from app.services.lead_analytics_service import SqlLeadAnalyticsStore
from app.services.transcript_service import SqlTranscriptStore
from app.services.webhook_processor import WebhookProcessor, get_webhook_processor

client = TestClient(app)

POST_CALL_URL = "/webhooks/elevenlabs/post-call"


def build_signature_header(body: bytes, secret: str, timestamp: str) -> str:
    signature = hmac.new(
        secret.encode("utf-8"),
        timestamp.encode("utf-8") + b"." + body,
        hashlib.sha256,
    ).hexdigest()
    return f"t={timestamp},v0={signature}"


def post_call_body(conversation_id: str, provider_agent_id: str) -> bytes:
    payload = {
        "type": "post_call_transcription",
        "event_timestamp": int(time.time()),
        "data": {
            "agent_id": provider_agent_id,
            "conversation_id": conversation_id,
            "status": "done",
            "transcript": [
                {"role": "agent", "message": "Hello from Acme", "time_in_call_secs": 0},
                {"role": "user", "message": "Hi", "time_in_call_secs": 2},
            ],
            "metadata": {
                "call_duration_secs": 95,
                "phone_call": {"external_number": "+14155550123"},
            },
            "analysis": {
                "data_collection_results": {
                    "default": {"value": "{'total_score': 6, 'lead_status_tag': 'Cold'}"}
                }
            },
        },
    }
    return json.dumps(payload).encode("utf-8")


def signed_post(body: bytes, secret: str, header_name: str = "elevenlabs-signature"):
    signature_header = build_signature_header(body, secret, str(int(time.time())))
    return client.post(
        POST_CALL_URL,
        content=body,
        headers={"content-type": "application/json", header_name: signature_header},
    )


def count_rows(model, **filters) -> int:
    async def _count():
        async with async_session_maker() as db:
            stmt = select(func.count()).select_from(model)
            for key, value in filters.items():
                stmt = stmt.where(getattr(model, key) == value)
            return await db.scalar(stmt)

    return asyncio.run(_count())


def test_signed_delivery_is_processed(monkeypatch, seed_owner, conversation_id):
    monkeypatch.setattr(settings, "elevenlabs_webhook_secret", "test-secret")
    _, _, provider_agent_id = asyncio.run(seed_owner())

    response = signed_post(post_call_body(conversation_id, provider_agent_id), "test-secret")

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["message"] == "Webhook processed successfully"
    assert isinstance(data["processing_time_ms"], int)
    assert data["processing_id"].startswith("proc_")
    assert count_rows(Call, elevenlabs_conversation_id=conversation_id) == 1
    assert count_rows(WebhookEvent, processing_id=data["processing_id"], status="processed") == 1


def test_alternate_signature_header_is_accepted(monkeypatch, seed_owner, conversation_id):
    monkeypatch.setattr(settings, "elevenlabs_webhook_secret", "test-secret")
    _, _, provider_agent_id = asyncio.run(seed_owner())

    response = signed_post(
        post_call_body(conversation_id, provider_agent_id),
        "test-secret",
        header_name="x-elevenlabs-signature",
    )

    assert response.status_code == 200


def test_duplicate_delivery_keeps_one_call(monkeypatch, seed_owner, conversation_id):
    monkeypatch.setattr(settings, "elevenlabs_webhook_secret", "test-secret")
    _, _, provider_agent_id = asyncio.run(seed_owner())
    body = post_call_body(conversation_id, provider_agent_id)

    for _ in range(3):
        response = signed_post(body, "test-secret")
        assert response.status_code == 200

    assert count_rows(Call, elevenlabs_conversation_id=conversation_id) == 1


def test_invalid_signature_returns_401(monkeypatch, seed_owner, conversation_id):
    monkeypatch.setattr(settings, "elevenlabs_webhook_secret", "test-secret")
    _, _, provider_agent_id = asyncio.run(seed_owner())

    response = signed_post(post_call_body(conversation_id, provider_agent_id), "wrong-secret")

    assert response.status_code == 401
    assert count_rows(Call, elevenlabs_conversation_id=conversation_id) == 0


def test_missing_signature_returns_401(monkeypatch, conversation_id):
    monkeypatch.setattr(settings, "elevenlabs_webhook_secret", "test-secret")

    response = client.post(
        POST_CALL_URL,
        content=post_call_body(conversation_id, "agent_any"),
        headers={"content-type": "application/json"},
    )

    assert response.status_code == 401


def test_unsigned_delivery_accepted_without_secret(monkeypatch, seed_owner, conversation_id):
    monkeypatch.setattr(settings, "elevenlabs_webhook_secret", None)
    _, _, provider_agent_id = asyncio.run(seed_owner())

    with capture_logs() as logs:
        monkeypatch.setattr(signature, "logger", structlog.get_logger("webhooks.signature"))
        response = client.post(
            POST_CALL_URL,
            content=post_call_body(conversation_id, provider_agent_id),
            headers={"content-type": "application/json"},
        )

    assert response.status_code == 200
    assert response.json()["success"] is True
    warnings = [entry for entry in logs if entry["event"] == "webhook_signature_verification_disabled"]
    assert len(warnings) == 1
    assert warnings[0]["log_level"] == "warning"


def test_unknown_agent_returns_failed_ack(monkeypatch, conversation_id):
    monkeypatch.setattr(settings, "elevenlabs_webhook_secret", "test-secret")

    response = signed_post(post_call_body(conversation_id, "agent_missing"), "test-secret")

    assert response.status_code == 500
    data = response.json()
    assert data["success"] is False
    assert data["error"] == "Agent not found for ElevenLabs agent ID: agent_missing"
    assert count_rows(WebhookEvent, conversation_id=conversation_id, status="failed") == 1


def test_invalid_json_returns_failed_ack(monkeypatch):
    monkeypatch.setattr(settings, "elevenlabs_webhook_secret", "test-secret")

    response = signed_post(b"{not json", "test-secret")

    assert response.status_code == 500
    assert response.json()["success"] is False
    assert response.json()["error"].startswith("Invalid JSON body")


def test_non_utf8_body_passes_signature_check(monkeypatch):
    monkeypatch.setattr(settings, "elevenlabs_webhook_secret", "test-secret")

    response = signed_post(b'{"conversation_id": "\xff"}', "test-secret")

    assert response.status_code == 500
    assert response.json()["error"].startswith("Invalid JSON body")


def test_stalled_call_upsert_returns_failed_ack(monkeypatch, seed_owner, conversation_id):
    monkeypatch.setattr(settings, "elevenlabs_webhook_secret", "test-secret")
    _, _, provider_agent_id = asyncio.run(seed_owner())

    async def stalled_upsert(db, payload, agent, extraction, processing_id):
        await asyncio.sleep(5)

    def processor_with_short_timeout():
        processor = get_webhook_processor()
        processor.step_timeout = 0.2
        return processor

    monkeypatch.setattr(webhook_processor, "upsert_call", stalled_upsert)
    app.dependency_overrides[get_webhook_processor] = processor_with_short_timeout
    try:
        response = signed_post(post_call_body(conversation_id, provider_agent_id), "test-secret")
    finally:
        app.dependency_overrides.pop(get_webhook_processor, None)

    assert response.status_code == 500
    assert response.json()["error"] == "Call upsert timed out after 0.2s"
    assert count_rows(Call, elevenlabs_conversation_id=conversation_id) == 0
    assert count_rows(WebhookEvent, conversation_id=conversation_id, status="failed") == 1


def test_failing_contact_step_still_acknowledges(monkeypatch, seed_owner, conversation_id):
    monkeypatch.setattr(settings, "elevenlabs_webhook_secret", "test-secret")
    _, _, provider_agent_id = asyncio.run(seed_owner())

    class BrokenContacts:
        async def create_or_update(self, user_id, phone_number, extraction, call_id):
            raise RuntimeError("contacts table locked")

        async def link_contact_to_call(self, call_id, contact_id):
            pass

    def processor_with_broken_contacts():
        return WebhookProcessor(
            session_maker=async_session_maker,
            agents=SqlAgentDirectory(async_session_maker),
            transcripts=SqlTranscriptStore(async_session_maker),
            analytics=SqlLeadAnalyticsStore(async_session_maker),
            contacts=BrokenContacts(),
            billing=SqlBillingLedger(async_session_maker),
            events=call_event_bus,
        )

    app.dependency_overrides[get_webhook_processor] = processor_with_broken_contacts
    try:
        response = signed_post(post_call_body(conversation_id, provider_agent_id), "test-secret")
    finally:
        app.dependency_overrides.pop(get_webhook_processor, None)

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert count_rows(Call, elevenlabs_conversation_id=conversation_id) == 1
    assert count_rows(LeadAnalytics) >= 1
    assert count_rows(
        WebhookEvent, processing_id=response.json()["processing_id"], status="partial"
    ) == 1


def test_webhook_health():
    response = client.get("/webhooks/health")

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["message"] == "Webhook endpoint is healthy"
    assert "timestamp" in data


def test_app_health():
    assert client.get("/").json()["status"] == "healthy"
    assert client.get("/health").json()["status"] == "healthy"
