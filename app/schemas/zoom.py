from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

URL_VALIDATION_EVENT = "endpoint.url_validation"
PARTICIPANT_JOINED_EVENT = "meeting.participant_joined"
PARTICIPANT_LEFT_EVENT = "meeting.participant_left"
RECORDING_COMPLETED_EVENT = "recording.completed"
TRANSCRIPT_COMPLETED_EVENT = "recording.transcript_completed"

TRANSCRIPT_FILE_TYPES = frozenset({"TRANSCRIPT", "CC"})
AUDIO_FILE_TYPES = frozenset({"M4A", "AUDIO_ONLY"})


class UrlValidationResponse(BaseModel):
    plainToken: str
    encryptedToken: str


class MeetingParticipant(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: str | None = None
    join_time: datetime


class RecordingFile(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str | None = None
    file_type: str = ""
    file_extension: str | None = None
    download_url: str
    recording_type: str | None = None
    file_size: int | None = None
    status: str | None = None

    @property
    def is_transcript(self) -> bool:
        if self.file_type.upper() in TRANSCRIPT_FILE_TYPES:
            return True
        if (self.recording_type or "").lower() == "audio_transcript":
            return True
        return (self.file_extension or "").upper() == "VTT"

    @property
    def is_audio(self) -> bool:
        if self.file_type.upper() in AUDIO_FILE_TYPES:
            return True
        return (self.recording_type or "").lower() == "audio_only"

    @classmethod
    def from_payload(cls, raw_file: Mapping[str, Any]) -> "RecordingFile | None":
        download_url = raw_file.get("download_url")
        if not isinstance(download_url, str) or not download_url.strip():
            return None
        raw_size = raw_file.get("file_size")
        return cls(
            id=_to_optional_text(raw_file.get("id")),
            file_type=_to_optional_text(raw_file.get("file_type")) or "",
            file_extension=_to_optional_text(raw_file.get("file_extension")),
            download_url=download_url.strip(),
            recording_type=_to_optional_text(raw_file.get("recording_type")),
            file_size=raw_size if isinstance(raw_size, int) and not isinstance(raw_size, bool) else None,
            status=_to_optional_text(raw_file.get("status")),
        )


class WebhookAckResponse(BaseModel):
    status: str = "Event received."
    event_type: str | None = None
    meeting_uuid: str | None = None
    action: str = "ignored"
    detail: str | None = None
    feedback_kind: str | None = None
    participant_count: int | None = None


def parse_recording_files(raw_files: Any) -> list[RecordingFile]:
    if not isinstance(raw_files, list):
        return []
    files: list[RecordingFile] = []
    for raw_file in raw_files:
        if not isinstance(raw_file, Mapping):
            continue
        recording_file = RecordingFile.from_payload(raw_file)
        if recording_file:
            files.append(recording_file)
    return files


def _to_optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
