import json
from datetime import UTC, datetime
from types import SimpleNamespace

import httpx
import pytest
from openai import APIConnectionError

from app.schemas.feedback import FeedbackKind
from app.schemas.zoom import MeetingParticipant
from app.services.feedback_generator import (
    FeedbackGenerationError,
    FeedbackGenerator,
    build_user_prompt,
    parse_feedback_content,
)

REQUIRED_FIELDS = {
    "kind",
    "summary",
    "communication_insights",
    "hidden_dynamics",
    "collaboration_score",
    "action_items",
    "individual_feedback",
}


class _FakeCompletions:
    def __init__(self, content: str | None = None, failure: Exception | None = None) -> None:
        self.content = content
        self.failure = failure
        self.calls: list[dict[str, object]] = []

    def create(self, **kwargs: object) -> SimpleNamespace:
        self.calls.append(kwargs)
        if self.failure:
            raise self.failure
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=self.content))])


def _generator(completions: _FakeCompletions) -> FeedbackGenerator:
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return FeedbackGenerator(api_key="sk-test", client=client)


def _participants() -> list[MeetingParticipant]:
    return [
        MeetingParticipant(id="1", name="John Smith", email="john@example.com", join_time=datetime.now(UTC)),
        MeetingParticipant(id="2", name="Sarah Johnson", join_time=datetime.now(UTC)),
    ]


def test_generate_feedback_parses_json_response() -> None:
    completions = _FakeCompletions(
        content=(
            '{"summary": "Productive sprint planning.", '
            '"communicationInsights": ["Clear agenda"], '
            '"hiddenDynamics": ["Some hesitation about the deadline"], '
            '"collaborationScore": 8, '
            '"actionItems": ["Share user stories"], '
            '"individualFeedback": {"John Smith": "Invite quieter voices."}}'
        ),
    )

    feedback = _generator(completions).generate_feedback("John Smith: Hi", _participants())

    assert feedback.kind == FeedbackKind.generated
    assert feedback.summary == "Productive sprint planning."
    assert feedback.collaboration_score == 8
    assert feedback.individual_feedback == {"John Smith": "Invite quieter voices."}
    request_options = completions.calls[0]
    assert request_options["model"] == "gpt-4"
    assert request_options["temperature"] == 0.7
    assert request_options["max_tokens"] == 2000
    messages = request_options["messages"]
    assert messages[0]["role"] == "system"
    assert "communicationInsights" in messages[0]["content"]
    assert "John Smith, Sarah Johnson" in messages[1]["content"]


def test_generate_feedback_extracts_json_from_code_fence() -> None:
    completions = _FakeCompletions(
        content='Here you go:\n```json\n{"summary": "Fenced", "collaborationScore": "7"}\n```\nThanks!',
    )

    feedback = _generator(completions).generate_feedback("transcript", _participants())

    assert feedback.kind == FeedbackKind.generated
    assert feedback.summary == "Fenced"
    assert feedback.collaboration_score == 7
    assert feedback.action_items == []


def test_unparsable_response_returns_structured_fallback() -> None:
    completions = _FakeCompletions(content="I am sorry, I cannot produce JSON today. " * 10)

    feedback = _generator(completions).generate_feedback("transcript", _participants())

    assert feedback.kind == FeedbackKind.fallback
    assert set(feedback.model_dump()) == REQUIRED_FIELDS
    assert feedback.summary.endswith("...")
    assert len(feedback.summary) == 203
    assert feedback.communication_insights == ["The AI response was not in the expected JSON format."]


def test_empty_response_returns_structured_fallback() -> None:
    feedback = _generator(_FakeCompletions(content=None)).generate_feedback("transcript", [])

    assert feedback.kind == FeedbackKind.fallback
    assert feedback.summary == "The feedback response was empty."


def test_missing_api_key_returns_simulated_result_without_network() -> None:
    feedback = FeedbackGenerator(api_key="").generate_feedback("transcript", _participants())

    assert feedback.kind == FeedbackKind.simulated
    assert set(feedback.model_dump()) == REQUIRED_FIELDS
    assert "not configured" in feedback.summary


def test_api_failure_raises_generation_error() -> None:
    failure = APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))

    with pytest.raises(FeedbackGenerationError, match="Chat completion request failed"):
        _generator(_FakeCompletions(failure=failure)).generate_feedback("transcript", _participants())


def test_user_prompt_marks_unknown_participants() -> None:
    prompt = build_user_prompt("Speaker: hello", [])

    assert "participants: Unknown participants" in prompt
    assert "Transcript:\nSpeaker: hello" in prompt


@pytest.mark.parametrize(
    ("raw_score", "expected"),
    [(11, 10), (-2, 0), (6.6, 7), ("nine", 0), (True, 0)],
)
def test_collaboration_score_is_clamped(raw_score: object, expected: int) -> None:
    feedback = parse_feedback_content(json.dumps({"summary": "s", "collaborationScore": raw_score}))

    assert feedback.collaboration_score == expected
