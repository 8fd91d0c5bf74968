import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from app.core.config import Settings
from app.schemas.feedback import FeedbackResult
from app.schemas.zoom import (
    PARTICIPANT_JOINED_EVENT,
    PARTICIPANT_LEFT_EVENT,
    RECORDING_COMPLETED_EVENT,
    TRANSCRIPT_COMPLETED_EVENT,
    MeetingParticipant,
    RecordingFile,
    WebhookAckResponse,
    parse_recording_files,
)
from app.services.feedback_dispatcher import FeedbackDispatcher
from app.services.feedback_generator import FeedbackGenerator
from app.services.participant_registry import MeetingParticipantRegistry, get_participant_registry
from app.services.transcript_normalizer import (
    AudioTooLargeError,
    AudioTranscriber,
    AudioTranscriptionError,
    TranscriptionConfigurationError,
    normalize_vtt,
)
from app.services.zoom_api_client import ZoomApiClient, ZoomApiError
from app.services.zoom_artifact_fetcher import (
    ArtifactOrigin,
    DownloadCredentials,
    ZoomArtifactDownloadError,
    ZoomArtifactFetcher,
)
from app.services.zoom_token_manager import ZoomOAuthError, get_zoom_token_manager

logger = logging.getLogger(__name__)

TRANSCRIPT_CANDIDATE_ERRORS = (
    ZoomArtifactDownloadError,
    ZoomOAuthError,
    AudioTooLargeError,
    AudioTranscriptionError,
    TranscriptionConfigurationError,
)


@dataclass(frozen=True)
class ZoomWebhookEvent:
    event_type: str
    payload: Mapping[str, Any] = field(default_factory=dict)
    raw_body: bytes = b""
    signature: str | None = None
    timestamp: str | None = None
    download_token: str | None = None

    @property
    def meeting_object(self) -> Mapping[str, Any]:
        meeting_object = self.payload.get("object")
        if isinstance(meeting_object, Mapping):
            return meeting_object
        return {}

    @property
    def meeting_uuid(self) -> str | None:
        return _to_text(self.meeting_object.get("uuid"))


class ZoomEventService:
    def __init__(
        self,
        settings: Settings,
        registry: MeetingParticipantRegistry | None = None,
        zoom_api_client: ZoomApiClient | None = None,
        artifact_fetcher: ZoomArtifactFetcher | None = None,
        audio_transcriber: AudioTranscriber | None = None,
        feedback_generator: FeedbackGenerator | None = None,
        feedback_dispatcher: FeedbackDispatcher | None = None,
    ) -> None:
        self.settings = settings
        self.registry = registry or get_participant_registry()
        token_manager = get_zoom_token_manager()
        self.zoom_api_client = zoom_api_client or ZoomApiClient(
            token_manager=token_manager,
            api_base_url=settings.zoom_api_base_url,
            timeout_seconds=settings.zoom_api_timeout_seconds,
        )
        self.artifact_fetcher = artifact_fetcher or ZoomArtifactFetcher(
            token_manager,
            timeout_seconds=settings.zoom_download_timeout_seconds,
            api_strategies=settings.zoom_api_download_strategies,
            webhook_strategies=settings.zoom_webhook_download_strategies,
        )
        self.audio_transcriber = audio_transcriber or AudioTranscriber(
            api_key=settings.openai_api_key,
            model=settings.openai_transcribe_model,
            language=settings.openai_transcribe_language,
            max_audio_bytes=settings.max_audio_bytes,
            timeout_seconds=settings.openai_timeout_seconds,
        )
        self.feedback_generator = feedback_generator or FeedbackGenerator(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            temperature=settings.feedback_temperature,
            max_tokens=settings.feedback_max_tokens,
            timeout_seconds=settings.openai_timeout_seconds,
        )
        self.feedback_dispatcher = feedback_dispatcher or FeedbackDispatcher()
        self._handlers: dict[str, Callable[[ZoomWebhookEvent], WebhookAckResponse]] = {
            PARTICIPANT_JOINED_EVENT: self._handle_participant_event,
            PARTICIPANT_LEFT_EVENT: self._handle_participant_event,
            RECORDING_COMPLETED_EVENT: self._handle_recording_completed,
            TRANSCRIPT_COMPLETED_EVENT: self._handle_transcript_completed,
        }

    def process_event(self, event: ZoomWebhookEvent) -> WebhookAckResponse:
        handler = self._handlers.get(event.event_type)
        if handler is None:
            logger.info("Unhandled Zoom event type=%s", event.event_type)
            return WebhookAckResponse(event_type=event.event_type, meeting_uuid=event.meeting_uuid)
        return handler(event)

    def _handle_participant_event(self, event: ZoomWebhookEvent) -> WebhookAckResponse:
        meeting_uuid = event.meeting_uuid
        raw_participant = event.meeting_object.get("participant")
        participant = (
            _participant_from_payload(raw_participant)
            if isinstance(raw_participant, Mapping)
            else None
        )
        if not meeting_uuid or participant is None:
            logger.info("Zoom participant event missing meeting UUID or participant type=%s", event.event_type)
            return WebhookAckResponse(
                event_type=event.event_type,
                meeting_uuid=meeting_uuid,
                detail="missing meeting uuid or participant",
            )

        if event.event_type == PARTICIPANT_JOINED_EVENT:
            changed = self.registry.add_participant(meeting_uuid, participant)
            action = "participant_added" if changed else "participant_already_tracked"
        else:
            changed = self.registry.remove_participant(meeting_uuid, participant.id)
            action = "participant_removed" if changed else "participant_not_tracked"

        participant_count = self.registry.participant_count(meeting_uuid)
        logger.info(
            "Zoom participant event type=%s meeting_uuid=%s participant_id=%s action=%s participant_count=%s",
            event.event_type,
            meeting_uuid,
            participant.id,
            action,
            participant_count,
        )
        return WebhookAckResponse(
            event_type=event.event_type,
            meeting_uuid=meeting_uuid,
            action=action,
            participant_count=participant_count,
        )

    def _handle_recording_completed(self, event: ZoomWebhookEvent) -> WebhookAckResponse:
        meeting_uuid = event.meeting_uuid
        recording_files = parse_recording_files(event.meeting_object.get("recording_files"))
        logger.info(
            "Zoom recording completed meeting_uuid=%s file_count=%s file_types=%s",
            meeting_uuid,
            len(recording_files),
            ",".join(recording_file.file_type for recording_file in recording_files),
        )
        if not meeting_uuid:
            return WebhookAckResponse(event_type=event.event_type, detail="missing meeting uuid")

        self.registry.remember_recording_files(meeting_uuid, recording_files)
        return WebhookAckResponse(
            event_type=event.event_type,
            meeting_uuid=meeting_uuid,
            action="recording_files_recorded",
        )

    def _handle_transcript_completed(self, event: ZoomWebhookEvent) -> WebhookAckResponse:
        meeting_uuid = event.meeting_uuid
        if not meeting_uuid:
            logger.info("Zoom transcript completed event missing meeting UUID")
            return WebhookAckResponse(event_type=event.event_type, detail="missing meeting uuid")

        if not self.registry.try_begin_processing(meeting_uuid):
            logger.info(
                "Zoom transcript already processed or in progress meeting_uuid=%s",
                meeting_uuid,
            )
            return WebhookAckResponse(
                event_type=event.event_type,
                meeting_uuid=meeting_uuid,
                action="skipped_duplicate",
            )

        dispatched = False
        try:
            participants = self.registry.get_participants(meeting_uuid)
            if not participants:
                logger.info(
                    "No tracked participants meeting_uuid=%s; continuing with unknown participants",
                    meeting_uuid,
                )
            transcript = self._load_transcript(event, participants)
            feedback = self.feedback_generator.generate_feedback(transcript, participants)
            self.feedback_dispatcher.dispatch(
                meeting_uuid=meeting_uuid,
                feedback=feedback,
                participants=participants,
            )
            dispatched = True
        except Exception as exc:
            logger.exception("Zoom feedback pipeline failed meeting_uuid=%s", meeting_uuid)
            return WebhookAckResponse(
                event_type=event.event_type,
                meeting_uuid=meeting_uuid,
                action="pipeline_failed",
                detail=str(exc),
            )
        finally:
            self.registry.finish_processing(meeting_uuid, dispatched=dispatched)

        return self._build_dispatched_response(event, meeting_uuid, feedback, len(participants))

    def _load_transcript(
        self,
        event: ZoomWebhookEvent,
        participants: list[MeetingParticipant],
    ) -> str:
        meeting_uuid = event.meeting_uuid or ""
        sources: list[tuple[list[RecordingFile], DownloadCredentials]] = []
        try:
            api_files = self.zoom_api_client.get_recordings(meeting_uuid)
        except (ZoomApiError, ZoomOAuthError) as exc:
            logger.warning(
                "Zoom recordings lookup failed meeting_uuid=%s; falling back to webhook files: %s",
                meeting_uuid,
                exc,
            )
        else:
            sources.append((api_files, DownloadCredentials(origin=ArtifactOrigin.api)))

        webhook_files = parse_recording_files(event.meeting_object.get("recording_files"))
        if not webhook_files:
            webhook_files = self.registry.get_recording_files(meeting_uuid)
        sources.append(
            (
                webhook_files,
                DownloadCredentials(
                    origin=ArtifactOrigin.webhook,
                    download_token=event.download_token,
                    passcode=_extract_passcode(event.meeting_object),
                ),
            ),
        )

        last_error: Exception | None = None
        for recording_files, credentials in sources:
            for recording_file in self._order_candidates(recording_files):
                try:
                    transcript = self._fetch_and_normalize(recording_file, credentials, participants)
                except TRANSCRIPT_CANDIDATE_ERRORS as exc:
                    logger.warning(
                        "Transcript candidate failed meeting_uuid=%s origin=%s file_type=%s: %s",
                        meeting_uuid,
                        credentials.origin.value,
                        recording_file.file_type,
                        exc,
                    )
                    last_error = exc
                    continue
                if transcript:
                    logger.info(
                        "Transcript prepared meeting_uuid=%s origin=%s file_type=%s chars=%s",
                        meeting_uuid,
                        credentials.origin.value,
                        recording_file.file_type,
                        len(transcript),
                    )
                    return transcript
                last_error = ZoomArtifactDownloadError(
                    f"{recording_file.file_type} artifact produced an empty transcript",
                )

        if last_error:
            raise last_error
        raise ZoomArtifactDownloadError("No transcript or audio recording file is available.")

    def _order_candidates(self, recording_files: list[RecordingFile]) -> list[RecordingFile]:
        transcripts = [recording_file for recording_file in recording_files if recording_file.is_transcript]
        audios = [recording_file for recording_file in recording_files if recording_file.is_audio]
        if self.settings.zoom_transcript_source == "audio":
            return audios[:1] + transcripts[:1]
        return transcripts[:1] + audios[:1]

    def _fetch_and_normalize(
        self,
        recording_file: RecordingFile,
        credentials: DownloadCredentials,
        participants: list[MeetingParticipant],
    ) -> str:
        if recording_file.is_transcript:
            vtt_content = self.artifact_fetcher.fetch_transcript(recording_file, credentials)
            return normalize_vtt(vtt_content)
        audio = self.artifact_fetcher.fetch_audio(recording_file.download_url, credentials)
        return self.audio_transcriber.transcribe(audio, participants)

    def _build_dispatched_response(
        self,
        event: ZoomWebhookEvent,
        meeting_uuid: str,
        feedback: FeedbackResult,
        participant_count: int,
    ) -> WebhookAckResponse:
        return WebhookAckResponse(
            event_type=event.event_type,
            meeting_uuid=meeting_uuid,
            action="feedback_dispatched",
            feedback_kind=feedback.kind.value,
            participant_count=participant_count,
        )


def _participant_from_payload(raw_participant: Mapping[str, Any]) -> MeetingParticipant | None:
    participant_id = (
        _to_text(raw_participant.get("user_id"))
        or _to_text(raw_participant.get("participant_user_id"))
        or _to_text(raw_participant.get("id"))
        or _to_text(raw_participant.get("participant_uuid"))
    )
    if not participant_id:
        return None
    return MeetingParticipant(
        id=participant_id,
        name=_to_text(raw_participant.get("user_name")) or "Unknown participant",
        email=_to_text(raw_participant.get("email")),
        join_time=datetime.now(UTC),
    )


def _extract_passcode(meeting_object: Mapping[str, Any]) -> str | None:
    return _to_text(meeting_object.get("recording_play_passcode")) or _to_text(
        meeting_object.get("password"),
    )


def _to_text(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    return text or None
