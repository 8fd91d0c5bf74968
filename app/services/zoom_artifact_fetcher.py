import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum
from urllib import error, parse, request

from app.schemas.zoom import RecordingFile
from app.services.zoom_token_manager import ZoomOAuthError, ZoomTokenManager

logger = logging.getLogger(__name__)


class ZoomArtifactDownloadError(Exception):
    pass


class DownloadAuthStrategy(StrEnum):
    bearer_header = "bearer_header"
    access_token_query = "access_token_query"
    passcode_query = "passcode_query"
    access_token_and_passcode_query = "access_token_and_passcode_query"

    @property
    def needs_access_token(self) -> bool:
        return self is not DownloadAuthStrategy.passcode_query

    @property
    def needs_passcode(self) -> bool:
        return self in {
            DownloadAuthStrategy.passcode_query,
            DownloadAuthStrategy.access_token_and_passcode_query,
        }


class ArtifactOrigin(StrEnum):
    api = "api"
    webhook = "webhook"


@dataclass(frozen=True)
class DownloadCredentials:
    origin: ArtifactOrigin = ArtifactOrigin.api
    download_token: str | None = None
    passcode: str | None = None


class ZoomArtifactFetcher:
    """Downloads transcript and audio artifacts referenced by Zoom recording files.

    API-resolved URLs and webhook-embedded URLs accept different credentials, so
    each origin has its own ordered list of strategies. Strategies are tried in
    order until one returns a usable response.
    """

    def __init__(
        self,
        token_manager: ZoomTokenManager,
        *,
        timeout_seconds: float = 30.0,
        api_strategies: Sequence[str] = (DownloadAuthStrategy.bearer_header,),
        webhook_strategies: Sequence[str] = tuple(DownloadAuthStrategy),
        access_token_query_param: str = "access_token",
        passcode_query_param: str = "pwd",
    ) -> None:
        self.token_manager = token_manager
        self.timeout_seconds = timeout_seconds
        self.api_strategies = tuple(DownloadAuthStrategy(name) for name in api_strategies)
        self.webhook_strategies = tuple(DownloadAuthStrategy(name) for name in webhook_strategies)
        self.access_token_query_param = access_token_query_param
        self.passcode_query_param = passcode_query_param

    def fetch_transcript(
        self,
        recording_file: RecordingFile,
        credentials: DownloadCredentials | None = None,
    ) -> str:
        raw_body = self._download(recording_file.download_url, credentials or DownloadCredentials())
        return raw_body.decode("utf-8-sig", errors="replace")

    def fetch_audio(
        self,
        download_url: str,
        credentials: DownloadCredentials | None = None,
    ) -> bytes:
        return self._download(download_url, credentials or DownloadCredentials(), expect_binary=True)

    def _download(
        self,
        download_url: str,
        credentials: DownloadCredentials,
        expect_binary: bool = False,
    ) -> bytes:
        strategies = (
            self.api_strategies
            if credentials.origin == ArtifactOrigin.api
            else self.webhook_strategies
        )
        failures: list[str] = []
        access_token: str | None = None
        access_token_error: str | None = None

        for strategy in strategies:
            if strategy.needs_passcode and not credentials.passcode:
                failures.append(f"{strategy.value}: no passcode available")
                continue
            if strategy.needs_access_token and access_token is None and access_token_error is None:
                try:
                    access_token = self._resolve_access_token(credentials)
                except ZoomOAuthError as exc:
                    access_token_error = str(exc)
            if strategy.needs_access_token and access_token is None:
                failures.append(f"{strategy.value}: {access_token_error}")
                continue

            req = self._build_request(download_url, strategy, access_token, credentials.passcode)
            try:
                body = self._perform(req, expect_binary=expect_binary)
            except ZoomArtifactDownloadError as exc:
                failures.append(f"{strategy.value}: {exc}")
                logger.info(
                    "Zoom artifact download attempt failed origin=%s strategy=%s reason=%s",
                    credentials.origin.value,
                    strategy.value,
                    exc,
                )
                continue

            logger.info(
                "Zoom artifact downloaded origin=%s strategy=%s bytes=%s",
                credentials.origin.value,
                strategy.value,
                len(body),
            )
            return body

        if not failures:
            failures.append("no download strategies configured")
        raise ZoomArtifactDownloadError(
            f"Unable to download Zoom artifact ({credentials.origin.value}): " + "; ".join(failures),
        )

    def _resolve_access_token(self, credentials: DownloadCredentials) -> str:
        if credentials.origin == ArtifactOrigin.webhook and credentials.download_token:
            return credentials.download_token
        return self.token_manager.get_access_token()

    def _build_request(
        self,
        download_url: str,
        strategy: DownloadAuthStrategy,
        access_token: str | None,
        passcode: str | None,
    ) -> request.Request:
        query: dict[str, str] = {}
        headers: dict[str, str] = {}
        if strategy == DownloadAuthStrategy.bearer_header and access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        if strategy in {
            DownloadAuthStrategy.access_token_query,
            DownloadAuthStrategy.access_token_and_passcode_query,
        } and access_token:
            query[self.access_token_query_param] = access_token
        if strategy.needs_passcode and passcode:
            query[self.passcode_query_param] = passcode
        return request.Request(_append_query(download_url, query), headers=headers, method="GET")

    def _perform(self, req: request.Request, *, expect_binary: bool) -> bytes:
        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                content_type = _content_type(response)
                body = response.read()
        except TimeoutError as exc:
            raise ZoomArtifactDownloadError("request timed out") from exc
        except error.HTTPError as exc:
            raise ZoomArtifactDownloadError(f"HTTP {exc.code}") from exc
        except error.URLError as exc:
            raise ZoomArtifactDownloadError(f"connection error: {exc.reason}") from exc

        if expect_binary and content_type == "text/html":
            raise ZoomArtifactDownloadError("received an HTML page instead of audio")
        if not body:
            raise ZoomArtifactDownloadError("empty response body")
        return body


def _append_query(url: str, query: dict[str, str]) -> str:
    if not query:
        return url
    separator = "&" if parse.urlsplit(url).query else "?"
    return f"{url}{separator}{parse.urlencode(query)}"


def _content_type(response: object) -> str:
    headers = getattr(response, "headers", None)
    if headers is None:
        return ""
    raw_value = headers.get("Content-Type") or ""
    return raw_value.split(";", maxsplit=1)[0].strip().lower()
