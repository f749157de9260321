from typing import Literal

from pydantic import BaseModel, Field, field_validator

AXES = (
    "reasoning",
    "learning_efficiency",
    "long_term_memory",
    "planning",
    "tool_use",
    "social_cognition",
    "multimodal_perception",
    "robustness",
    "alignment_safety",
)

Axis = Literal[
    "reasoning",
    "learning_efficiency",
    "long_term_memory",
    "planning",
    "tool_use",
    "social_cognition",
    "multimodal_perception",
    "robustness",
    "alignment_safety",
]
Direction = Literal["up", "down", "neutral"]
Classification = Literal[
    "benchmark_result",
    "policy_update",
    "research_finding",
    "opinion",
    "announcement",
    "other",
]


class AxisImpact(BaseModel):
    axis: Axis
    direction: Direction
    magnitude: float = Field(ge=0, le=1)
    uncertainty: float = Field(default=0.5, ge=0, le=1)


class BenchmarkMetric(BaseModel):
    name: str
    value: float
    unit: str | None = None


class CitationModel(BaseModel):
    text: str
    url: str | None = None

    @field_validator("url")
    @classmethod
    def blank_url_is_none(cls, value: str | None) -> str | None:
        return value or None


class ExtractedClaim(BaseModel):
    claim_summary: str = Field(min_length=1)
    classification: Classification = "other"
    axes_impacted: list[AxisImpact] = Field(default_factory=list)
    benchmark: BenchmarkMetric | None = None
    confidence: float = Field(ge=0, le=1)
    citations: list[CitationModel] = Field(default_factory=list)


class SignalExtraction(BaseModel):
    claims: list[ExtractedClaim] = Field(default_factory=list)


class SourceContext(BaseModel):
    name: str
    tier: str
    trust_weight: float = 1.0
    url: str | None = None
    published_at: str | None = None
