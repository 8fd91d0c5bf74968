from datetime import UTC, datetime
from types import SimpleNamespace

import pytest
from openai import APIConnectionError
import httpx

from app.schemas.zoom import MeetingParticipant
from app.services.transcript_normalizer import (
    AudioTooLargeError,
    AudioTranscriber,
    AudioTranscriptionError,
    TranscriptionConfigurationError,
    TranscriptLine,
    format_timestamp,
    normalize_vtt,
    parse_vtt_lines,
)

SAMPLE_VTT = """WEBVTT

1
00:00:00.000 --> 00:00:05.000
John Smith: Good morning everyone, thanks for joining today's meeting.

2
00:00:05.500 --> 00:00:10.000
Sarah Johnson: Hi John, glad to be here.
"""


class _FakeTranscriptions:
    def __init__(self, response: object = None, failure: Exception | None = None) -> None:
        self.response = response
        self.failure = failure
        self.calls: list[dict[str, object]] = []

    def create(self, **kwargs: object) -> object:
        self.calls.append(kwargs)
        if self.failure:
            raise self.failure
        return self.response


def _fake_client(transcriptions: _FakeTranscriptions) -> SimpleNamespace:
    return SimpleNamespace(audio=SimpleNamespace(transcriptions=transcriptions))


def _participant(name: str) -> MeetingParticipant:
    return MeetingParticipant(id=name.lower(), name=name, join_time=datetime.now(UTC))


def test_normalize_vtt_keeps_only_speaker_lines_in_order() -> None:
    assert normalize_vtt(SAMPLE_VTT) == (
        "John Smith: Good morning everyone, thanks for joining today's meeting.\n"
        "Sarah Johnson: Hi John, glad to be here."
    )


def test_parse_vtt_lines_carries_speaker_to_unlabeled_lines() -> None:
    lines = [
        "WEBVTT",
        "00:00:00.000 --> 00:00:02.000",
        "Mike Chen: Are we still targeting Friday?",
        "00:00:02.000 --> 00:00:04.000",
        "I want to be sure before the demo.",
    ]

    assert parse_vtt_lines(lines) == [
        TranscriptLine("Mike Chen", "Are we still targeting Friday?"),
        TranscriptLine("Mike Chen", "I want to be sure before the demo."),
    ]


def test_parse_vtt_lines_emits_unlabeled_text_without_speaker() -> None:
    assert parse_vtt_lines(["just some words"]) == [TranscriptLine(None, "just some words")]


def test_parse_vtt_lines_ignores_long_or_empty_labels() -> None:
    long_prefix = "This sentence is far too long to be anyone's display name really"
    lines = [f"{long_prefix}: and continues", "Agenda:"]

    assert parse_vtt_lines(lines) == [
        TranscriptLine(None, f"{long_prefix}: and continues"),
        TranscriptLine(None, "Agenda:"),
    ]


@pytest.mark.parametrize(
    "raw_input",
    [
        [],
        ["", "   ", "WEBVTT - Zoom", "42"],
        ["-->", ":", "::::", "\t"],
        [None, 7, "Speaker: text"],  # type: ignore[list-item]
    ],
)
def test_parse_vtt_lines_never_raises_on_malformed_input(raw_input: list[object]) -> None:
    result = parse_vtt_lines(raw_input)  # type: ignore[arg-type]

    assert isinstance(result, list)
    assert all(isinstance(line, TranscriptLine) for line in result)


def test_normalize_vtt_handles_empty_content() -> None:
    assert normalize_vtt("") == ""
    assert normalize_vtt(None) == ""


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [(0, "00:00"), (5.9, "00:05"), (75, "01:15"), (3600, "60:00"), (-3, "00:00")],
)
def test_format_timestamp(seconds: float, expected: str) -> None:
    assert format_timestamp(seconds) == expected


def test_transcribe_formats_segments_and_sends_speaker_prompt() -> None:
    transcriptions = _FakeTranscriptions(
        response=SimpleNamespace(
            text="full text",
            segments=[
                SimpleNamespace(start=0.0, text=" Hello everyone. "),
                SimpleNamespace(start=65.4, text="Let's review the roadmap."),
                SimpleNamespace(start=70.0, text="  "),
            ],
        ),
    )
    transcriber = AudioTranscriber(api_key="sk-test", client=_fake_client(transcriptions))

    transcript = transcriber.transcribe(b"audio", [_participant("John Smith"), _participant("Sarah Johnson")])

    assert transcript == "[00:00] Hello everyone.\n[01:05] Let's review the roadmap."
    request_options = transcriptions.calls[0]
    assert request_options["model"] == "whisper-1"
    assert request_options["language"] == "en"
    assert request_options["response_format"] == "verbose_json"
    assert request_options["timestamp_granularities"] == ["segment"]
    assert request_options["file"] == ("meeting-audio.m4a", b"audio")
    assert "John Smith, Sarah Johnson" in str(request_options["prompt"])


def test_transcribe_falls_back_to_plain_text_without_segments() -> None:
    transcriptions = _FakeTranscriptions(response={"text": " plain transcript ", "segments": []})
    transcriber = AudioTranscriber(api_key="sk-test", client=_fake_client(transcriptions))

    assert transcriber.transcribe(b"audio") == "plain transcript"
    assert "prompt" not in transcriptions.calls[0]


def test_transcribe_rejects_oversized_audio_without_calling_service() -> None:
    transcriptions = _FakeTranscriptions(response={"text": "unused"})
    transcriber = AudioTranscriber(
        api_key="sk-test",
        max_audio_bytes=10,
        client=_fake_client(transcriptions),
    )

    with pytest.raises(AudioTooLargeError, match="11 bytes"):
        transcriber.transcribe(b"x" * 11)
    assert transcriptions.calls == []


def test_transcribe_wraps_service_errors() -> None:
    failure = APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1/audio/transcriptions"))
    transcriber = AudioTranscriber(
        api_key="sk-test",
        client=_fake_client(_FakeTranscriptions(failure=failure)),
    )

    with pytest.raises(AudioTranscriptionError, match="Speech-to-text request failed"):
        transcriber.transcribe(b"audio")


def test_transcribe_requires_api_key() -> None:
    with pytest.raises(TranscriptionConfigurationError):
        AudioTranscriber(api_key="").transcribe(b"audio")
