import json
import logging
from collections.abc import Mapping
from typing import Any
from urllib import error, parse, request

from app.schemas.zoom import RecordingFile, parse_recording_files
from app.services.zoom_token_manager import ZoomTokenManager, extract_error_reason

logger = logging.getLogger(__name__)


class ZoomApiError(Exception):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def encode_meeting_uuid(meeting_uuid: str) -> str:
    # Zoom requires double encoding when the UUID starts with "/" or contains "//".
    encoded = parse.quote(meeting_uuid, safe="")
    if meeting_uuid.startswith("/") or "//" in meeting_uuid:
        return parse.quote(encoded, safe="")
    return encoded


class ZoomApiClient:
    def __init__(
        self,
        token_manager: ZoomTokenManager,
        api_base_url: str = "https://api.zoom.us/v2",
        timeout_seconds: float = 10.0,
    ) -> None:
        self.token_manager = token_manager
        self.api_base_url = api_base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    def get_recordings(self, meeting_uuid: str) -> list[RecordingFile]:
        cleaned_uuid = meeting_uuid.strip()
        if not cleaned_uuid:
            raise ZoomApiError("Meeting UUID is required to list recordings.")

        payload = self._request_json(f"/meetings/{encode_meeting_uuid(cleaned_uuid)}/recordings")
        recording_files = parse_recording_files(payload.get("recording_files"))
        logger.info(
            "Zoom recordings resolved meeting_uuid=%s file_count=%s file_types=%s",
            cleaned_uuid,
            len(recording_files),
            ",".join(recording_file.file_type for recording_file in recording_files),
        )
        return recording_files

    def _request_json(self, path: str, *, allow_token_refresh: bool = True) -> Mapping[str, Any]:
        access_token = self.token_manager.get_access_token()
        req = request.Request(
            f"{self.api_base_url}{path}",
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/json",
            },
            method="GET",
        )

        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                response_body = response.read()
        except TimeoutError as exc:
            raise ZoomApiError("Zoom API request timed out.") from exc
        except error.HTTPError as exc:
            if exc.code == 401 and allow_token_refresh:
                logger.warning("Zoom API rejected cached token path=%s; refreshing once", path)
                self.token_manager.get_access_token(force_refresh=True)
                return self._request_json(path, allow_token_refresh=False)
            body_text = exc.read().decode("utf-8", errors="ignore")
            raise ZoomApiError(
                f"Zoom API HTTP {exc.code} for {path}: {extract_error_reason(body_text)}",
                status_code=exc.code,
            ) from exc
        except error.URLError as exc:
            raise ZoomApiError(f"Zoom API connection error: {exc.reason}") from exc

        try:
            parsed_body = json.loads(response_body.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ZoomApiError("Zoom API returned invalid JSON.") from exc

        if not isinstance(parsed_body, Mapping):
            raise ZoomApiError("Zoom API response is not a JSON object.")
        return parsed_body
