import base64
import json
import logging
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from functools import lru_cache
from typing import Any
from urllib import error, parse, request

from app.core.config import get_settings

logger = logging.getLogger(__name__)

TOKEN_EXPIRY_SAFETY_MARGIN_SECONDS = 300


class ZoomOAuthError(Exception):
    pass


@dataclass
class CachedToken:
    value: str | None = None
    expires_at_epoch_ms: int = 0

    def is_usable(self, now_epoch_ms: int) -> bool:
        return bool(self.value) and now_epoch_ms < self.expires_at_epoch_ms


class ZoomTokenManager:
    """Acquires and caches a Zoom Server-to-Server OAuth access token.

    The token is cached until five minutes before the expiry reported by Zoom.
    A failed exchange never leaves a token in the cache.
    """

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        account_id: str = "",
        grant_type: str = "account_credentials",
        scopes: Sequence[str] = (),
        token_url: str = "https://zoom.us/oauth/token",
        timeout_seconds: float = 10.0,
        time_func: Callable[[], float] = time.time,
    ) -> None:
        self.client_id = client_id.strip()
        self.client_secret = client_secret.strip()
        self.account_id = account_id.strip()
        self.grant_type = grant_type
        self.scopes = tuple(scope for scope in scopes if scope)
        self.token_url = token_url
        self.timeout_seconds = timeout_seconds
        self._time_func = time_func
        self._cache = CachedToken()
        self._lock = threading.Lock()

    @property
    def cached_token(self) -> CachedToken:
        return self._cache

    def get_access_token(self, force_refresh: bool = False) -> str:
        with self._lock:
            if force_refresh:
                self._cache = CachedToken()
            elif self._cache.is_usable(self._now_epoch_ms()) and self._cache.value:
                return self._cache.value

            access_token, expires_in = self._request_token()
            self._cache = CachedToken(
                value=access_token,
                expires_at_epoch_ms=self._now_epoch_ms()
                + (expires_in - TOKEN_EXPIRY_SAFETY_MARGIN_SECONDS) * 1000,
            )
            logger.info(
                "Zoom access token acquired grant_type=%s token_length=%s token_prefix=%s expires_in=%s",
                self.grant_type,
                len(access_token),
                access_token[:8],
                expires_in,
            )
            return access_token

    def _request_token(self) -> tuple[str, int]:
        if not self.client_id or not self.client_secret:
            raise ZoomOAuthError("Zoom OAuth client credentials are not configured.")
        if self.grant_type == "account_credentials" and not self.account_id:
            raise ZoomOAuthError("Zoom OAuth account_id is required for account_credentials grant.")

        req = request.Request(
            self.token_url,
            data=parse.urlencode(self._build_form()).encode("utf-8"),
            headers={
                "Authorization": f"Basic {self._basic_credentials()}",
                "Content-Type": "application/x-www-form-urlencoded",
                "Accept": "application/json",
            },
            method="POST",
        )
        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                response_body = response.read()
        except TimeoutError as exc:
            raise ZoomOAuthError("Zoom OAuth token request timed out.") from exc
        except error.HTTPError as exc:
            body_text = exc.read().decode("utf-8", errors="ignore")
            raise ZoomOAuthError(
                f"Zoom OAuth token HTTP {exc.code}: {extract_error_reason(body_text)}",
            ) from exc
        except error.URLError as exc:
            raise ZoomOAuthError(f"Zoom OAuth token connection error: {exc.reason}") from exc

        try:
            payload = json.loads(response_body.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ZoomOAuthError("Zoom OAuth token endpoint returned invalid JSON.") from exc

        if not isinstance(payload, dict):
            raise ZoomOAuthError("Zoom OAuth token response is not a JSON object.")

        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token.strip():
            raise ZoomOAuthError("Zoom OAuth token response did not include access_token.")

        expires_in = payload.get("expires_in")
        if isinstance(expires_in, bool) or not isinstance(expires_in, int | float):
            raise ZoomOAuthError("Zoom OAuth token response did not include expires_in.")

        scope = payload.get("scope")
        if isinstance(scope, str) and scope:
            logger.debug("Zoom OAuth token scopes=%s", scope)
        return access_token.strip(), int(expires_in)

    def _build_form(self) -> dict[str, str]:
        form = {"grant_type": self.grant_type}
        if self.grant_type == "account_credentials":
            form["account_id"] = self.account_id
        if self.scopes:
            form["scope"] = " ".join(self.scopes)
        return form

    def _basic_credentials(self) -> str:
        raw_credentials = f"{self.client_id}:{self.client_secret}".encode("utf-8")
        return base64.b64encode(raw_credentials).decode("ascii")

    def _now_epoch_ms(self) -> int:
        return int(self._time_func() * 1000)


def extract_error_reason(body_text: str) -> str:
    if not body_text:
        return "empty response body"
    try:
        parsed: Any = json.loads(body_text)
    except json.JSONDecodeError:
        return body_text
    if isinstance(parsed, dict):
        for key in ("reason", "error_description", "message", "error"):
            value = parsed.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return body_text


@lru_cache
def get_zoom_token_manager() -> ZoomTokenManager:
    settings = get_settings()
    return ZoomTokenManager(
        client_id=settings.zoom_client_id,
        client_secret=settings.zoom_client_secret,
        account_id=settings.zoom_account_id,
        grant_type=settings.zoom_oauth_grant_type,
        scopes=settings.zoom_oauth_scopes,
        token_url=settings.zoom_oauth_token_url,
        timeout_seconds=settings.zoom_token_timeout_seconds,
    )


def clear_zoom_token_manager_cache() -> None:
    get_zoom_token_manager.cache_clear()
