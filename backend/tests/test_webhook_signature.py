import hashlib
import hmac
import json
import time

import structlog
from structlog.testing import capture_logs

from app.services import signature
from app.services.signature import compute_signature, verify_webhook_signature

SECRET = "test-secret"
BODY = json.dumps({"conversation_id": "conv_sig", "status": "done"}).encode("utf-8")


def build_signature_header(body: bytes, secret: str, timestamp: str) -> str:
    signature = hmac.new(
        secret.encode("utf-8"),
        timestamp.encode("utf-8") + b"." + body,
        hashlib.sha256,
    ).hexdigest()
    return f"t={timestamp},v0={signature}"


def test_valid_signature_accepted():
    now = int(time.time())
    header = build_signature_header(BODY, SECRET, str(now))

    check = verify_webhook_signature(BODY, header, SECRET, now=now)

    assert check.valid is True
    assert check.reason == "ok"


def test_compute_signature_matches_hmac_sha256():
    expected = hmac.new(b"s3cr3t", b"1700000000.{}", hashlib.sha256).hexdigest()
    assert compute_signature(b"{}", "1700000000", "s3cr3t") == expected


def test_missing_v0_prefix_rejected():
    now = int(time.time())
    header = build_signature_header(BODY, SECRET, str(now)).replace("v0=", "v1=")

    check = verify_webhook_signature(BODY, header, SECRET, now=now)

    assert not check
    assert check.reason == "missing_prefix"


def test_header_with_extra_parts_rejected():
    now = int(time.time())
    header = build_signature_header(BODY, SECRET, str(now)) + ",v1=abc"

    check = verify_webhook_signature(BODY, header, SECRET, now=now)

    assert check.valid is False
    assert check.reason == "malformed_header"


def test_missing_header_rejected():
    check = verify_webhook_signature(BODY, None, SECRET)
    assert check.valid is False
    assert check.reason == "missing_header"


def test_mismatched_digest_rejected():
    now = int(time.time())
    header = build_signature_header(BODY, "other-secret", str(now))

    check = verify_webhook_signature(BODY, header, SECRET, now=now)

    assert check.valid is False
    assert check.reason == "digest_mismatch"


def test_tampered_body_rejected():
    now = int(time.time())
    header = build_signature_header(BODY, SECRET, str(now))

    check = verify_webhook_signature(BODY + b" ", header, SECRET, now=now)

    assert check.valid is False


def test_short_digest_rejected_without_error():
    now = int(time.time())
    header = f"t={now},v0=abcd"

    check = verify_webhook_signature(BODY, header, SECRET, now=now)

    assert check.valid is False
    assert check.reason == "digest_length_mismatch"


def test_non_hex_digest_rejected_without_error():
    now = int(time.time())
    header = f"t={now},v0=not-a-hex-digest"

    check = verify_webhook_signature(BODY, header, SECRET, now=now)

    assert check.valid is False
    assert check.reason == "invalid_digest_encoding"


def test_stale_timestamp_rejected():
    now = int(time.time())
    signed_at = now - 301
    header = build_signature_header(BODY, SECRET, str(signed_at))

    check = verify_webhook_signature(BODY, header, SECRET, now=now)

    assert check.valid is False
    assert check.reason == "timestamp_out_of_tolerance"


def test_future_timestamp_rejected():
    now = int(time.time())
    header = build_signature_header(BODY, SECRET, str(now + 301))

    check = verify_webhook_signature(BODY, header, SECRET, now=now)

    assert check.valid is False


def test_timestamp_at_tolerance_edge_accepted():
    now = int(time.time())
    header = build_signature_header(BODY, SECRET, str(now - 300))

    assert verify_webhook_signature(BODY, header, SECRET, now=now).valid is True


def test_non_numeric_timestamp_rejected():
    header = "t=yesterday,v0=" + "0" * 64
    check = verify_webhook_signature(BODY, header, SECRET)
    assert check.reason == "invalid_timestamp"


def test_no_secret_skips_verification():
    check = verify_webhook_signature(BODY, None, None)

    assert check.valid is True
    assert check.reason == "verification_disabled"


def test_non_utf8_body_is_verified_over_raw_bytes():
    now = int(time.time())
    body = b'{"conversation_id": "conv_bin", "note": "\xff\xfe"}'
    header = build_signature_header(body, SECRET, str(now))

    assert verify_webhook_signature(body, header, SECRET, now=now).valid is True

    tampered = verify_webhook_signature(body.replace(b"\xfe", b"\xfd"), header, SECRET, now=now)
    assert tampered.valid is False
    assert tampered.reason == "digest_mismatch"


def test_no_secret_logs_warning(monkeypatch):
    with capture_logs() as logs:
        monkeypatch.setattr(signature, "logger", structlog.get_logger("webhooks.signature"))
        verify_webhook_signature(BODY, None, None)

    assert logs == [
        {
            "event": "webhook_signature_verification_disabled",
            "log_level": "warning",
            "detail": "No webhook secret configured; accepting unsigned delivery",
        }
    ]
