"""ElevenLabs post-call webhook endpoints."""

import json
import time
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from app.config import settings
from app.schemas.webhook import WebhookAck, WebhookErrorAck, WebhookHealth
from app.services.errors import WebhookProcessingError
from app.services.signature import verify_webhook_signature
from app.services.webhook_processor import (
    WebhookProcessor,
    get_webhook_processor,
    new_processing_id,
    record_webhook_event,
)
from app.utils.logging import get_logger

router = APIRouter()
logger = get_logger("api.webhooks")

SIGNATURE_HEADERS = ("elevenlabs-signature", "x-elevenlabs-signature")


def _signature_header(request: Request) -> Optional[str]:
    for name in SIGNATURE_HEADERS:
        value = request.headers.get(name)
        if value:
            return value
    return None


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _conversation_hint(tree: Any) -> Optional[str]:
    if not isinstance(tree, dict):
        return None
    data = tree.get("data")
    if isinstance(data, dict) and data.get("conversation_id"):
        return str(data["conversation_id"])
    value = tree.get("conversation_id")
    return str(value) if value else None


@router.post(
    "/elevenlabs/post-call",
    response_model=WebhookAck,
    responses={401: {"description": "Invalid signature"}, 500: {"model": WebhookErrorAck}},
)
async def elevenlabs_post_call(
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    started = time.perf_counter()
    processing_id = new_processing_id()
    body = await request.body()
    signature_header = _signature_header(request)

    logger.info(
        "webhook_request_received",
        processing_id=processing_id,
        content_length=len(body),
        content_type=request.headers.get("content-type"),
        has_signature=signature_header is not None,
    )

    check = verify_webhook_signature(
        body,
        signature_header,
        settings.elevenlabs_webhook_secret,
        tolerance_seconds=settings.webhook_tolerance_seconds,
    )
    if not check:
        logger.warning(
            "webhook_signature_invalid",
            processing_id=processing_id,
            reason=check.reason,
        )
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    tree: Any = None
    try:
        tree = json.loads(body.decode("utf-8"))
        report = await processor.process(tree, processing_id=processing_id)
    except Exception as e:
        elapsed = _elapsed_ms(started)
        if isinstance(e, (json.JSONDecodeError, UnicodeDecodeError)):
            error = f"Invalid JSON body: {e}"
        else:
            error = str(e) or type(e).__name__
        conversation_id = (
            e.conversation_id if isinstance(e, WebhookProcessingError) else None
        ) or _conversation_hint(tree)
        logger.error(
            "webhook_processing_failed",
            processing_id=processing_id,
            conversation_id=conversation_id,
            error=error,
            error_type=type(e).__name__,
            processing_time_ms=elapsed,
        )
        await record_webhook_event(
            processor.session_maker,
            processing_id,
            elapsed,
            conversation_id=conversation_id,
            error=error,
            timeout=processor.step_timeout,
        )
        return JSONResponse(
            status_code=500,
            content=WebhookErrorAck(error=error).model_dump(),
        )

    elapsed = _elapsed_ms(started)
    await record_webhook_event(
        processor.session_maker,
        processing_id,
        elapsed,
        report=report,
        timeout=processor.step_timeout,
    )
    logger.info(
        "webhook_request_completed",
        processing_id=processing_id,
        conversation_id=report.conversation_id,
        call_id=report.call_id,
        failed_steps=report.failed_steps,
        processing_time_ms=elapsed,
    )
    return WebhookAck(processing_time_ms=elapsed, processing_id=processing_id)


@router.get("/health", response_model=WebhookHealth)
async def webhook_health():
    return WebhookHealth(timestamp=datetime.now(timezone.utc).isoformat())
