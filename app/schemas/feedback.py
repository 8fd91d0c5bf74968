from enum import StrEnum

from pydantic import BaseModel, Field


class FeedbackKind(StrEnum):
    generated = "generated"
    simulated = "simulated"
    fallback = "fallback"


class FeedbackResult(BaseModel):
    kind: FeedbackKind = FeedbackKind.generated
    summary: str = ""
    communication_insights: list[str] = Field(default_factory=list)
    hidden_dynamics: list[str] = Field(default_factory=list)
    collaboration_score: int = 0
    action_items: list[str] = Field(default_factory=list)
    individual_feedback: dict[str, str] = Field(default_factory=dict)
