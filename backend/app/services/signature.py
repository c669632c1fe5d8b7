"""ElevenLabs webhook signature verification.

The provider signs every delivery with a header of the form
``t=<unix-seconds>,v0=<hex-hmac>`` where the HMAC-SHA256 is computed over
``"<timestamp>." + <raw body bytes>`` with the shared webhook secret. The
body is signed as received, never decoded.
"""

import hashlib
import hmac
import time
from typing import NamedTuple, Optional

from app.utils.logging import get_logger

logger = get_logger("webhooks.signature")

DEFAULT_TOLERANCE_SECONDS = 300


class SignatureCheck(NamedTuple):
    valid: bool
    reason: str

    def __bool__(self) -> bool:
        return self.valid


def _reject(reason: str, **context) -> SignatureCheck:
    logger.warning("webhook_signature_rejected", reason=reason, **context)
    return SignatureCheck(False, reason)


def compute_signature(raw_body: bytes, timestamp: str, secret: str) -> str:
    signed_payload = timestamp.encode("utf-8") + b"." + raw_body
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def verify_webhook_signature(
    raw_body: bytes,
    signature_header: Optional[str],
    secret: Optional[str],
    now: Optional[float] = None,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
) -> SignatureCheck:
    """Check a delivery's signature header. Never raises."""
    if not secret:
        logger.warning(
            "webhook_signature_verification_disabled",
            detail="No webhook secret configured; accepting unsigned delivery",
        )
        return SignatureCheck(True, "verification_disabled")

    if not signature_header:
        return _reject("missing_header")

    parts = signature_header.split(",")
    if len(parts) != 2:
        return _reject("malformed_header", parts_count=len(parts))

    timestamp_part, hash_part = (part.strip() for part in parts)
    if not timestamp_part.startswith("t=") or not hash_part.startswith("v0="):
        return _reject(
            "missing_prefix",
            timestamp_prefix=timestamp_part.startswith("t="),
            hash_prefix=hash_part.startswith("v0="),
        )

    timestamp = timestamp_part[2:]
    provided_hex = hash_part[3:]
    try:
        webhook_ts = int(timestamp)
    except ValueError:
        return _reject("invalid_timestamp")

    try:
        expected = bytes.fromhex(compute_signature(raw_body, timestamp, secret))
        provided = bytes.fromhex(provided_hex)
    except ValueError:
        return _reject("invalid_digest_encoding")

    if len(provided) != len(expected):
        return _reject("digest_length_mismatch", provided_length=len(provided))

    if not hmac.compare_digest(provided, expected):
        return _reject("digest_mismatch")

    now_ts = int(time.time() if now is None else now)
    drift = abs(now_ts - webhook_ts)
    if drift > tolerance_seconds:
        return _reject("timestamp_out_of_tolerance", drift_seconds=drift)

    return SignatureCheck(True, "ok")
