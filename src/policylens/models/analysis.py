from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

PLACEHOLDER_KEY_POINT = "Unable to analyze this section"


class CamelModel(BaseModel):
    """Base for models that cross the HTTP boundary (camelCase JSON keys)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DocumentType(StrEnum):
    PRIVACY = "privacy"
    TERMS = "terms"


class RiskLevel(StrEnum):
    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {RiskLevel.GREEN: 0, RiskLevel.YELLOW: 1, RiskLevel.RED: 2}


class AnalysisRequest(BaseModel):
    """An accepted analyze call. Immutable once validated."""

    model_config = ConfigDict(frozen=True)

    url: str
    document_type: DocumentType = DocumentType.PRIVACY
    options: dict[str, Any] = Field(default_factory=dict)


class ExtractedDocument(BaseModel):
    raw_length: int
    plain_text: str


class ContentChunk(BaseModel):
    text: str
    ordinal: int


class ChunkFinding(CamelModel):
    """Structured extraction result for one chunk."""

    key_points: list[str] = Field(default_factory=list)
    red_flags: list[str] = Field(default_factory=list)
    compliance_tags: dict[str, str] = Field(default_factory=dict)
    mentioned_rights: list[str] = Field(default_factory=list)

    @classmethod
    def placeholder(cls) -> ChunkFinding:
        return cls(
            key_points=[PLACEHOLDER_KEY_POINT],
            compliance_tags={"gdpr": "unknown", "ccpa": "unknown"},
        )


class Parsed(CamelModel):
    kind: Literal["parsed"] = "parsed"
    ordinal: int
    finding: ChunkFinding


class Degraded(CamelModel):
    """Placeholder standing in for a chunk the model could not analyze."""

    kind: Literal["degraded"] = "degraded"
    ordinal: int
    reason: str
    finding: ChunkFinding = Field(default_factory=ChunkFinding.placeholder)


FindingResult = Annotated[Parsed | Degraded, Field(discriminator="kind")]


class AggregatedAnalysis(CamelModel):
    executive_summary: str = ""
    key_points: list[str] = Field(default_factory=list)
    red_flags: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    compliance_tags: dict[str, str] = Field(default_factory=dict)
    per_chunk_findings: list[FindingResult] = Field(default_factory=list)
    summary_degraded: bool = False

    @property
    def degraded_chunks(self) -> int:
        return sum(1 for result in self.per_chunk_findings if result.kind == "degraded")


class RiskAssessment(CamelModel):
    overall: RiskLevel
    regulatory: RiskLevel
    transparency: RiskLevel
    user_rights: RiskLevel

    @model_validator(mode="after")
    def _check_overall(self) -> RiskAssessment:
        expected = _highest(self.regulatory, self.transparency, self.user_rights)
        if self.overall != expected:
            raise ValueError(f"overall must be {expected}, got {self.overall}")
        return self

    @classmethod
    def from_axes(
        cls, regulatory: RiskLevel, transparency: RiskLevel, user_rights: RiskLevel
    ) -> RiskAssessment:
        return cls(
            overall=_highest(regulatory, transparency, user_rights),
            regulatory=regulatory,
            transparency=transparency,
            user_rights=user_rights,
        )


def _highest(*levels: RiskLevel) -> RiskLevel:
    return max(levels, key=lambda level: level.severity)


class AnalysisResult(CamelModel):
    """The value stored in the cache and returned by the analyze endpoint."""

    id: str
    url: str
    document_type: DocumentType = Field(alias="type")
    content_length: int
    processed_length: int
    chunks_analyzed: int
    analysis: AggregatedAnalysis
    risk_scores: RiskAssessment
    timestamp: int  # epoch milliseconds
    version: str
