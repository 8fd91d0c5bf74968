import json
import logging
import re
from collections.abc import Mapping, Sequence
from typing import Any

from openai import OpenAI, OpenAIError

from app.schemas.feedback import FeedbackKind, FeedbackResult
from app.schemas.zoom import MeetingParticipant

logger = logging.getLogger(__name__)

_FENCED_JSON_PATTERN = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)
FALLBACK_SUMMARY_LENGTH = 200

SYSTEM_PROMPT = """You are an expert meeting analyst specializing in "Spaces": the gaps between what people say and what they really mean in professional meetings. Your role is to give actionable feedback that helps participants improve how they communicate and collaborate.

Analyze the meeting transcript and cover these areas:

1. Communication patterns: unclear messaging or assumptions, interruptions, participation balance, jargon that excludes others.
2. Hidden dynamics: unspoken concerns or hesitations, power dynamics, emotional undertones, what was probably thought but not said.
3. Collaboration effectiveness: clarity of decisions, how ideas were built upon, handling of disagreement, inclusivity and psychological safety.
4. Actionable improvements: concrete techniques, process changes for future meetings, individual feedback for key participants.

Respond with a single JSON object and nothing else, using exactly these fields:
{
  "summary": "string, brief overview of the meeting's effectiveness",
  "communicationInsights": ["string"],
  "hiddenDynamics": ["string"],
  "collaborationScore": "integer from 1 to 10",
  "actionItems": ["string"],
  "individualFeedback": {"<participant name>": "string"}
}

Keep insights constructive and specific."""


class FeedbackGenerationError(Exception):
    pass


class FeedbackGenerator:
    def __init__(
        self,
        *,
        api_key: str,
        model: str = "gpt-4",
        temperature: float = 0.7,
        max_tokens: int = 2000,
        timeout_seconds: float = 60.0,
        client: Any | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout_seconds = timeout_seconds
        self._client = client

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key) or self._client is not None

    def generate_feedback(
        self,
        transcript: str,
        participants: Sequence[MeetingParticipant],
    ) -> FeedbackResult:
        if not self.is_configured:
            logger.warning("OpenAI API key not configured; returning simulated feedback")
            return build_simulated_feedback()

        logger.info(
            "Requesting meeting feedback model=%s transcript_chars=%s participants=%s",
            self.model,
            len(transcript),
            len(participants),
        )
        try:
            response = self._get_client().chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_user_prompt(transcript, participants)},
                ],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except OpenAIError as exc:
            raise FeedbackGenerationError(f"Chat completion request failed: {exc}") from exc

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as exc:
            raise FeedbackGenerationError("Chat completion response did not include a message.") from exc

        return parse_feedback_content(content or "")

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = OpenAI(api_key=self.api_key, timeout=self.timeout_seconds)
        return self._client


def build_user_prompt(transcript: str, participants: Sequence[MeetingParticipant]) -> str:
    names = [participant.name for participant in participants if participant.name]
    roster = ", ".join(names) if names else "Unknown participants"
    return (
        f"Please analyze this meeting transcript involving participants: {roster}\n\n"
        f"Transcript:\n{transcript}\n\n"
        'Provide your analysis in the requested JSON format, focusing on the "spaces" '
        "between what was said and what was meant."
    )


def parse_feedback_content(content: str) -> FeedbackResult:
    parsed = _extract_json_object(content)
    if parsed is None:
        logger.warning("Feedback response was not valid JSON; using structured fallback")
        return build_fallback_feedback(content)
    return _feedback_from_mapping(parsed)


def build_simulated_feedback() -> FeedbackResult:
    return FeedbackResult(
        kind=FeedbackKind.simulated,
        summary="Simulated feedback: the OpenAI API key is not configured.",
        communication_insights=["Set OPENAI_API_KEY to enable real feedback generation."],
        hidden_dynamics=[],
        collaboration_score=0,
        action_items=["Configure OPENAI_API_KEY", "Redeploy the application"],
        individual_feedback={},
    )


def build_fallback_feedback(content: str) -> FeedbackResult:
    excerpt = content.strip()
    if len(excerpt) > FALLBACK_SUMMARY_LENGTH:
        excerpt = f"{excerpt[:FALLBACK_SUMMARY_LENGTH]}..."
    return FeedbackResult(
        kind=FeedbackKind.fallback,
        summary=excerpt or "The feedback response was empty.",
        communication_insights=["The AI response was not in the expected JSON format."],
        hidden_dynamics=["Meeting dynamics could not be extracted from the response."],
        collaboration_score=0,
        action_items=["Review the feedback generation prompt and model output."],
        individual_feedback={},
    )


def _extract_json_object(content: str) -> dict[str, Any] | None:
    direct = _loads_json_if_possible(content)
    if direct is not None:
        return direct

    fenced_match = _FENCED_JSON_PATTERN.search(content)
    if fenced_match:
        fenced = _loads_json_if_possible(fenced_match.group(1))
        if fenced is not None:
            return fenced

    start = content.find("{")
    end = content.rfind("}")
    if start == -1 or end <= start:
        return None
    return _loads_json_if_possible(content[start : end + 1])


def _loads_json_if_possible(value: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed


def _feedback_from_mapping(payload: Mapping[str, Any]) -> FeedbackResult:
    summary = _first_value(payload, "summary")
    return FeedbackResult(
        kind=FeedbackKind.generated,
        summary=summary.strip() if isinstance(summary, str) else "",
        communication_insights=_to_text_list(
            _first_value(payload, "communicationInsights", "communication_insights"),
        ),
        hidden_dynamics=_to_text_list(_first_value(payload, "hiddenDynamics", "hidden_dynamics")),
        collaboration_score=_to_score(
            _first_value(payload, "collaborationScore", "collaboration_score"),
        ),
        action_items=_to_text_list(_first_value(payload, "actionItems", "action_items")),
        individual_feedback=_to_text_mapping(
            _first_value(payload, "individualFeedback", "individual_feedback"),
        ),
    )


def _first_value(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload:
            return payload[key]
    return None


def _to_text_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if not isinstance(value, list):
        return []
    items: list[str] = []
    for item in value:
        text = _to_text(item)
        if text:
            items.append(text)
    return items


def _to_text_mapping(value: Any) -> dict[str, str]:
    if not isinstance(value, Mapping):
        return {}
    feedback: dict[str, str] = {}
    for raw_name, raw_feedback in value.items():
        text = _to_text(raw_feedback)
        if text:
            feedback[str(raw_name)] = text
    return feedback


def _to_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, Mapping | list):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def _to_score(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return 0
    if not isinstance(value, int | float):
        return 0
    return min(max(int(round(value)), 0), 10)
