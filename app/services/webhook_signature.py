from __future__ import annotations

import hashlib
import hmac
import time
from collections.abc import Callable

from app.schemas.zoom import UrlValidationResponse

SIGNATURE_VERSION = "v0"


class WebhookVerificationError(Exception):
    pass


class WebhookValidationError(Exception):
    pass


def compute_hmac_hex(secret: str, message: str | bytes) -> str:
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(
        key=secret.encode("utf-8"),
        msg=message,
        digestmod=hashlib.sha256,
    ).hexdigest()


def build_signature(secret: str, timestamp: str, raw_body: bytes) -> str:
    message = b"%s:%s:%s" % (
        SIGNATURE_VERSION.encode("ascii"),
        timestamp.encode("utf-8"),
        raw_body,
    )
    return f"{SIGNATURE_VERSION}={compute_hmac_hex(secret, message)}"


class WebhookSignatureVerifier:
    def __init__(
        self,
        secret: str,
        timestamp_tolerance_seconds: int = 0,
        time_func: Callable[[], float] = time.time,
    ) -> None:
        self.secret = secret
        self.timestamp_tolerance_seconds = max(timestamp_tolerance_seconds, 0)
        self._time_func = time_func

    def build_url_validation_response(self, plain_token: object) -> UrlValidationResponse:
        if not isinstance(plain_token, str) or not plain_token:
            raise WebhookValidationError("plainToken missing")
        self._require_secret()
        return UrlValidationResponse(
            plainToken=plain_token,
            encryptedToken=compute_hmac_hex(self.secret, plain_token),
        )

    def verify(
        self,
        *,
        raw_body: bytes,
        timestamp: str | None,
        signature: str | None,
    ) -> None:
        self._require_secret()
        if not signature or not timestamp:
            raise WebhookVerificationError("Verification headers missing.")

        if self.timestamp_tolerance_seconds and not self._is_timestamp_fresh(timestamp):
            raise WebhookVerificationError("Request timestamp outside tolerance window.")

        expected_signature = build_signature(self.secret, timestamp, raw_body)
        if not hmac.compare_digest(expected_signature.encode("utf-8"), signature.strip().encode("utf-8")):
            raise WebhookVerificationError("Invalid signature.")

    def _require_secret(self) -> None:
        if not self.secret:
            raise WebhookVerificationError("Webhook secret token is not configured.")

    def _is_timestamp_fresh(self, timestamp: str) -> bool:
        try:
            sent_at = int(timestamp.strip())
        except ValueError:
            return False
        return abs(int(self._time_func()) - sent_at) <= self.timestamp_tolerance_seconds
