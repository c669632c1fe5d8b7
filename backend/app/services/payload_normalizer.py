"""Collapse the historical ElevenLabs post-call shapes into one canonical payload.

Two layouts are in the wild:

* ``legacy``: flat body with ``conversation_id``, ``duration_seconds`` and
  ``phone_number`` at the top level.
* ``new``: the post-call transcription body, optionally wrapped in
  ``{"type": ..., "event_timestamp": ..., "data": {...}}``, with durations under
  ``metadata.call_duration_secs`` and a list transcript.
"""

import json
from typing import Any, Dict, List, Optional, Tuple

from app.schemas.webhook import (
    CallMetadata,
    CanonicalWebhookPayload,
    PayloadShape,
    PhoneInfo,
    ProviderCallStatus,
    TranscriptEntry,
)
from app.services.errors import MalformedPayload
from app.utils.logging import get_logger

logger = get_logger("webhooks.normalizer")

_DONE_STATUSES = {"done", "completed", "success", "succeeded"}
_ERROR_STATUSES = {"error", "errored"}

_ANALYSIS_PATHS: Tuple[Tuple[str, ...], ...] = (
    ("data", "analysis", "data_collection_results", "default", "value"),
    ("analysis", "data_collection_results", "default", "value"),
    ("analysis", "value"),
)


def _dig(tree: Any, path: Tuple[str, ...]) -> Any:
    node = tree
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _clean_str(value: Any) -> Optional[str]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    return cleaned or None


def _to_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _map_status(value: Any) -> Optional[ProviderCallStatus]:
    raw = _clean_str(value)
    if raw is None:
        return None
    lowered = raw.lower()
    if lowered in _DONE_STATUSES:
        return ProviderCallStatus.DONE
    if lowered in _ERROR_STATUSES:
        return ProviderCallStatus.ERROR
    return ProviderCallStatus.FAILED


def _unwrap(tree: Dict[str, Any]) -> Dict[str, Any]:
    data = tree.get("data")
    if isinstance(data, dict) and ("conversation_id" in data or "agent_id" in data):
        return data
    return tree


def detect_shape(body: Dict[str, Any]) -> PayloadShape:
    """Shape discriminant: nested duration metadata means the new shape."""
    metadata = body.get("metadata")
    if isinstance(metadata, dict) and "call_duration_secs" in metadata:
        return PayloadShape.NEW
    if "duration_seconds" in body or "phone_number" in body:
        return PayloadShape.LEGACY
    if isinstance(body.get("transcript"), list):
        return PayloadShape.NEW
    return PayloadShape.LEGACY


def _transcript_entries(value: Any) -> List[TranscriptEntry]:
    if isinstance(value, str):
        text = value.strip()
        return [TranscriptEntry(role="unknown", message=text)] if text else []
    if not isinstance(value, list):
        return []
    entries: List[TranscriptEntry] = []
    for item in value:
        if not isinstance(item, dict):
            continue
        message = item.get("message")
        if not isinstance(message, str):
            message = "" if message is None else str(message)
        time_in_call = item.get("time_in_call_secs")
        entries.append(
            TranscriptEntry(
                role=_clean_str(item.get("role")) or "unknown",
                message=message,
                time_in_call_secs=(
                    float(time_in_call)
                    if isinstance(time_in_call, (int, float)) and not isinstance(time_in_call, bool)
                    else None
                ),
            )
        )
    return entries


def find_analysis_string(tree: Dict[str, Any]) -> Optional[str]:
    """Return the embedded analytics string, checking known locations in priority order."""
    for path in _ANALYSIS_PATHS:
        value = _dig(tree, path)
        if value is None:
            continue
        if isinstance(value, str):
            if value.strip():
                return value
            continue
        if isinstance(value, (dict, list)):
            return json.dumps(value)
    return None


def _identity(body: Dict[str, Any]) -> Tuple[Optional[str], Optional[str], Optional[ProviderCallStatus]]:
    return (
        _clean_str(body.get("conversation_id")),
        _clean_str(body.get("agent_id")),
        _map_status(body.get("status")),
    )


def _require(
    conversation_id: Optional[str],
    agent_id: Optional[str],
    status: Optional[ProviderCallStatus],
    duration: Optional[int],
    shape: PayloadShape,
) -> None:
    missing = [
        name
        for name, value in (
            ("conversation_id", conversation_id),
            ("agent_id", agent_id),
            ("status", status),
            ("duration", duration),
        )
        if value is None
    ]
    if missing:
        raise MalformedPayload(
            f"Missing required field(s) for {shape.value} payload: {', '.join(missing)}",
            conversation_id=conversation_id,
        )


def _from_new(tree: Dict[str, Any], body: Dict[str, Any]) -> CanonicalWebhookPayload:
    conversation_id, agent_id, status = _identity(body)
    metadata = body.get("metadata") if isinstance(body.get("metadata"), dict) else {}
    duration = _to_int(metadata.get("call_duration_secs"))
    _require(conversation_id, agent_id, status, duration, PayloadShape.NEW)

    phone_call = metadata.get("phone_call")
    phone_info = None
    if isinstance(phone_call, dict):
        phone_info = PhoneInfo(
            direction=_clean_str(phone_call.get("direction")),
            external_number=_clean_str(phone_call.get("external_number")),
            agent_number=_clean_str(phone_call.get("agent_number")),
            call_sid=_clean_str(phone_call.get("call_sid")),
        )

    return CanonicalWebhookPayload(
        conversation_id=conversation_id,
        agent_provider_id=agent_id,
        status=status,
        transcript_entries=_transcript_entries(body.get("transcript")),
        transcript_structured=isinstance(body.get("transcript"), list),
        metadata=CallMetadata(
            start_time=_to_int(metadata.get("start_time_unix_secs")),
            duration_seconds=max(duration, 0),
            phone_info=phone_info,
            extra=dict(metadata),
        ),
        analysis_raw_string=find_analysis_string(tree),
        shape=PayloadShape.NEW,
    )


def _from_legacy(tree: Dict[str, Any], body: Dict[str, Any]) -> CanonicalWebhookPayload:
    conversation_id, agent_id, status = _identity(body)
    duration = _to_int(body.get("duration_seconds"))
    _require(conversation_id, agent_id, status, duration, PayloadShape.LEGACY)

    phone_number = _clean_str(body.get("phone_number"))
    extra = {
        key: body[key]
        for key in ("recording_url", "timestamp")
        if body.get(key) is not None
    }

    return CanonicalWebhookPayload(
        conversation_id=conversation_id,
        agent_provider_id=agent_id,
        status=status,
        transcript_entries=_transcript_entries(body.get("transcript")),
        transcript_structured=isinstance(body.get("transcript"), list),
        metadata=CallMetadata(
            start_time=None,
            duration_seconds=max(duration, 0),
            phone_info=PhoneInfo(external_number=phone_number) if phone_number else None,
            extra=extra,
        ),
        analysis_raw_string=find_analysis_string(tree),
        shape=PayloadShape.LEGACY,
    )


def normalize(raw_tree: Any) -> CanonicalWebhookPayload:
    """Map any supported notification into a ``CanonicalWebhookPayload``.

    Raises ``MalformedPayload`` only when identity, status or duration are
    missing under every known shape.
    """
    if not isinstance(raw_tree, dict):
        raise MalformedPayload(f"Webhook body must be a JSON object, got {type(raw_tree).__name__}")

    body = _unwrap(raw_tree)
    shape = detect_shape(body)
    mappers = (_from_new, _from_legacy) if shape is PayloadShape.NEW else (_from_legacy, _from_new)

    first_error: Optional[MalformedPayload] = None
    for mapper in mappers:
        try:
            payload = mapper(raw_tree, body)
        except MalformedPayload as e:
            first_error = first_error or e
            continue
        logger.debug(
            "webhook_payload_normalized",
            conversation_id=payload.conversation_id,
            shape=payload.shape.value,
            has_analysis=payload.analysis_raw_string is not None,
            transcript_entries=len(payload.transcript_entries),
        )
        return payload

    logger.warning(
        "webhook_payload_malformed",
        error=str(first_error),
        payload_keys=list(body.keys()),
    )
    raise first_error
