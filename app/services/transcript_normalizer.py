import logging
import re
from collections.abc import Iterable, Sequence
from typing import Any, NamedTuple

from openai import OpenAI, OpenAIError

from app.schemas.zoom import MeetingParticipant

logger = logging.getLogger(__name__)

VTT_HEADER = "WEBVTT"
VTT_TIMING_ARROW = "-->"
MAX_SPEAKER_LABEL_LENGTH = 50
_NUMERIC_LINE_PATTERN = re.compile(r"^\d+$")


class TranscriptLine(NamedTuple):
    speaker: str | None
    text: str

    def render(self) -> str:
        if self.speaker:
            return f"{self.speaker}: {self.text}"
        return self.text


class AudioTooLargeError(Exception):
    pass


class AudioTranscriptionError(Exception):
    pass


class TranscriptionConfigurationError(Exception):
    pass


def parse_vtt_lines(lines: Iterable[str]) -> list[TranscriptLine]:
    """Turn subtitle lines into ``(speaker, text)`` pairs.

    Header, cue timing and cue number lines are dropped. A ``Name: text`` line sets
    the current speaker, which is carried forward to unlabeled lines that follow.
    Never raises on malformed input.
    """
    parsed: list[TranscriptLine] = []
    current_speaker: str | None = None

    for raw_line in lines:
        if not isinstance(raw_line, str):
            continue
        line = raw_line.strip()
        if _is_cue_metadata(line):
            continue

        speaker, separator, remainder = line.partition(":")
        speaker = speaker.strip()
        remainder = remainder.strip()
        if separator and remainder and len(speaker) < MAX_SPEAKER_LABEL_LENGTH:
            current_speaker = speaker or current_speaker
            parsed.append(TranscriptLine(current_speaker, remainder))
        elif separator:
            parsed.append(TranscriptLine(None, line))
        else:
            parsed.append(TranscriptLine(current_speaker, line))

    return parsed


def normalize_vtt(vtt_content: str | None) -> str:
    if not vtt_content:
        return ""
    return render_transcript(parse_vtt_lines(vtt_content.splitlines()))


def render_transcript(lines: Sequence[TranscriptLine]) -> str:
    return "\n".join(line.render() for line in lines)


def format_timestamp(seconds: float) -> str:
    total_seconds = max(int(seconds), 0)
    minutes, remaining_seconds = divmod(total_seconds, 60)
    return f"{minutes:02d}:{remaining_seconds:02d}"


def _is_cue_metadata(line: str) -> bool:
    return (
        not line
        or line.startswith(VTT_HEADER)
        or VTT_TIMING_ARROW in line
        or bool(_NUMERIC_LINE_PATTERN.match(line))
    )


class AudioTranscriber:
    def __init__(
        self,
        *,
        api_key: str,
        model: str = "whisper-1",
        language: str = "en",
        max_audio_bytes: int = 25 * 1024 * 1024,
        timeout_seconds: float = 60.0,
        client: Any | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.language = language
        self.max_audio_bytes = max_audio_bytes
        self.timeout_seconds = timeout_seconds
        self._client = client

    def transcribe(
        self,
        audio: bytes,
        participants: Sequence[MeetingParticipant] = (),
        filename: str = "meeting-audio.m4a",
    ) -> str:
        if len(audio) > self.max_audio_bytes:
            raise AudioTooLargeError(
                f"Audio payload is {len(audio)} bytes; the transcription service accepts at most "
                f"{self.max_audio_bytes} bytes.",
            )
        if not audio:
            raise AudioTranscriptionError("Audio payload is empty.")

        request_options: dict[str, Any] = {
            "model": self.model,
            "file": (filename, audio),
            "language": self.language,
            "response_format": "verbose_json",
            "timestamp_granularities": ["segment"],
        }
        prompt = build_speaker_prompt(participants)
        if prompt:
            request_options["prompt"] = prompt

        logger.info(
            "Submitting audio for transcription model=%s bytes=%s participant_hints=%s",
            self.model,
            len(audio),
            len(participants),
        )
        try:
            response = self._get_client().audio.transcriptions.create(**request_options)
        except OpenAIError as exc:
            raise AudioTranscriptionError(f"Speech-to-text request failed: {exc}") from exc

        formatted_segments: list[str] = []
        for segment in _read_field(response, "segments") or []:
            segment_text = _read_field(segment, "text")
            if not isinstance(segment_text, str) or not segment_text.strip():
                continue
            start = _read_field(segment, "start") or 0
            formatted_segments.append(f"[{format_timestamp(start)}] {segment_text.strip()}")
        if formatted_segments:
            return "\n".join(formatted_segments)

        text = _read_field(response, "text")
        if isinstance(text, str):
            return text.strip()
        if isinstance(response, str):
            return response.strip()
        raise AudioTranscriptionError("Speech-to-text response did not include text.")

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        if not self.api_key:
            raise TranscriptionConfigurationError("OpenAI API key is not configured for transcription.")
        self._client = OpenAI(api_key=self.api_key, timeout=self.timeout_seconds)
        return self._client


def build_speaker_prompt(participants: Sequence[MeetingParticipant]) -> str | None:
    names = [participant.name for participant in participants if participant.name]
    if not names:
        return None
    return f"This is a meeting with the following participants: {', '.join(names)}."


def _read_field(value: Any, field_name: str) -> Any:
    if isinstance(value, dict):
        return value.get(field_name)
    return getattr(value, field_name, None)
