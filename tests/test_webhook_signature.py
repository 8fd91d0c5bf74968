import hashlib
import hmac

import pytest

from app.services.webhook_signature import (
    WebhookSignatureVerifier,
    WebhookValidationError,
    WebhookVerificationError,
    build_signature,
)

SECRET = "test-secret"


def _expected_signature(secret: str, timestamp: str, raw_body: bytes) -> str:
    message = f"v0:{timestamp}:{raw_body.decode('utf-8')}".encode("utf-8")
    return "v0=" + hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


@pytest.mark.parametrize(
    ("timestamp", "raw_body"),
    [
        ("1700000000", b'{"event":"meeting.participant_joined"}'),
        ("0", b"{}"),
        ("1712345678", '{"topic":"Revisión semanal"}'.encode("utf-8")),
    ],
)
def test_build_signature_matches_zoom_formula(timestamp: str, raw_body: bytes) -> None:
    assert build_signature(SECRET, timestamp, raw_body) == _expected_signature(SECRET, timestamp, raw_body)


def test_verify_accepts_valid_signature() -> None:
    raw_body = b'{"event":"recording.completed","payload":{}}'
    verifier = WebhookSignatureVerifier(SECRET)

    verifier.verify(
        raw_body=raw_body,
        timestamp="1700000000",
        signature=_expected_signature(SECRET, "1700000000", raw_body),
    )


@pytest.mark.parametrize(
    ("secret", "timestamp", "raw_body"),
    [
        ("other-secret", "1700000000", b'{"event":"recording.completed"}'),
        (SECRET, "1700000001", b'{"event":"recording.completed"}'),
        (SECRET, "1700000000", b'{"event":"recording.completed "}'),
    ],
)
def test_verify_rejects_tampered_inputs(secret: str, timestamp: str, raw_body: bytes) -> None:
    signature = _expected_signature(SECRET, "1700000000", b'{"event":"recording.completed"}')
    verifier = WebhookSignatureVerifier(secret)

    with pytest.raises(WebhookVerificationError, match="Invalid signature"):
        verifier.verify(raw_body=raw_body, timestamp=timestamp, signature=signature)


@pytest.mark.parametrize(
    ("timestamp", "signature"),
    [(None, "v0=abc"), ("1700000000", None), ("", "")],
)
def test_verify_rejects_missing_headers(timestamp: str | None, signature: str | None) -> None:
    verifier = WebhookSignatureVerifier(SECRET)

    with pytest.raises(WebhookVerificationError, match="headers missing"):
        verifier.verify(raw_body=b"{}", timestamp=timestamp, signature=signature)


def test_verify_rejects_when_secret_not_configured() -> None:
    verifier = WebhookSignatureVerifier("")

    with pytest.raises(WebhookVerificationError, match="not configured"):
        verifier.verify(raw_body=b"{}", timestamp="1", signature=build_signature("", "1", b"{}"))


def test_verify_enforces_timestamp_tolerance_when_enabled() -> None:
    raw_body = b"{}"
    verifier = WebhookSignatureVerifier(
        SECRET,
        timestamp_tolerance_seconds=300,
        time_func=lambda: 1_700_001_000.0,
    )

    verifier.verify(
        raw_body=raw_body,
        timestamp="1700000800",
        signature=build_signature(SECRET, "1700000800", raw_body),
    )
    with pytest.raises(WebhookVerificationError, match="tolerance"):
        verifier.verify(
            raw_body=raw_body,
            timestamp="1700000000",
            signature=build_signature(SECRET, "1700000000", raw_body),
        )


def test_url_validation_response_hashes_plain_token() -> None:
    verifier = WebhookSignatureVerifier(SECRET)

    response = verifier.build_url_validation_response("qgg8vlvZRS6UYooatFL8Aw")

    assert response.plainToken == "qgg8vlvZRS6UYooatFL8Aw"
    assert response.encryptedToken == hmac.new(
        SECRET.encode("utf-8"),
        b"qgg8vlvZRS6UYooatFL8Aw",
        hashlib.sha256,
    ).hexdigest()


@pytest.mark.parametrize("plain_token", [None, "", 123])
def test_url_validation_requires_plain_token(plain_token: object) -> None:
    verifier = WebhookSignatureVerifier(SECRET)

    with pytest.raises(WebhookValidationError, match="plainToken missing"):
        verifier.build_url_validation_response(plain_token)


def test_url_validation_reports_missing_plain_token_before_missing_secret() -> None:
    verifier = WebhookSignatureVerifier("")

    with pytest.raises(WebhookValidationError, match="plainToken missing"):
        verifier.build_url_validation_response(None)
    with pytest.raises(WebhookVerificationError, match="not configured"):
        verifier.build_url_validation_response("qgg8vlvZRS6UYooatFL8Aw")
