"""Chunk-level analysis orchestration.

Drives one inference call per sampled chunk, merges the findings, then asks
the model for an executive summary. Inference is sequential on purpose: the
merged lists keep chunk order without any reordering step.

Model failures never fail a request. A chunk whose call fails or whose output
does not parse becomes a ``Degraded`` result carrying a placeholder finding;
a failed summary call falls back to a static summary.
"""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator

from policylens import prompts
from policylens.errors import InferenceError
from policylens.inference import InferenceRequest
from policylens.models.analysis import (
    AggregatedAnalysis,
    ChunkFinding,
    ContentChunk,
    Degraded,
    DocumentType,
    FindingResult,
    Parsed,
)

if TYPE_CHECKING:
    from policylens.config import AnalysisSettings, InferenceSettings
    from policylens.protocols import InferenceClientProtocol

log = structlog.get_logger()

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class _ChunkPayload(BaseModel):
    """Wire shape the chunk prompt asks the model for."""

    keyPoints: list[str] = Field(default_factory=list)  # noqa: N815
    redFlags: list[str] = Field(default_factory=list)  # noqa: N815
    compliance: dict[str, str] = Field(default_factory=dict)
    userRights: list[str] = Field(default_factory=list)  # noqa: N815

    @field_validator("keyPoints", "redFlags", "userRights", mode="before")
    @classmethod
    def _coerce_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value] if value.strip() else []
        return value

    @field_validator("compliance", mode="before")
    @classmethod
    def _stringify_values(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, dict):
            return {str(k).lower(): "" if v is None else str(v) for k, v in value.items()}
        return value


class _SummaryPayload(BaseModel):
    executiveSummary: str = Field(min_length=1)  # noqa: N815
    recommendations: list[str] = Field(default_factory=list)


def parse_json_object(text: str) -> dict[str, Any]:
    """Decode the first JSON object in model output.

    Accepts markdown fences and prose around the object. Raises ValueError
    when no object can be decoded.
    """
    cleaned = _FENCE_RE.sub("", text.strip())
    try:
        decoded = json.loads(cleaned)
    except json.JSONDecodeError:
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            raise ValueError("no JSON object in model output") from None
        decoded = json.loads(cleaned[start : end + 1])
    if not isinstance(decoded, dict):
        raise ValueError(f"expected a JSON object, got {type(decoded).__name__}")
    return decoded


def parse_chunk_finding(text: str, ordinal: int) -> FindingResult:
    """Turn raw model text into ``Parsed`` or ``Degraded``."""
    try:
        payload = _ChunkPayload.model_validate(parse_json_object(text))
    except (ValueError, ValidationError) as exc:
        return Degraded(ordinal=ordinal, reason=f"unparsable model output: {exc}")
    finding = ChunkFinding(
        key_points=payload.keyPoints,
        red_flags=payload.redFlags,
        compliance_tags=payload.compliance,
        mentioned_rights=payload.userRights,
    )
    return Parsed(ordinal=ordinal, finding=finding)


class PolicyAnalyzer:
    def __init__(
        self,
        inference: InferenceClientProtocol,
        settings: AnalysisSettings,
        inference_settings: InferenceSettings,
    ) -> None:
        self._inference = inference
        self._settings = settings
        self._max_tokens = inference_settings.max_tokens
        self._summary_max_tokens = inference_settings.summary_max_tokens
        self._temperature = inference_settings.temperature

    async def analyze(
        self, chunks: list[ContentChunk], document_type: DocumentType
    ) -> AggregatedAnalysis:
        sampled = chunks[: self._settings.max_sampled_chunks]
        analysis = AggregatedAnalysis()

        for chunk in sampled:
            result = await self.analyze_chunk(chunk, document_type)
            analysis.per_chunk_findings.append(result)
            analysis.key_points.extend(result.finding.key_points)
            analysis.red_flags.extend(result.finding.red_flags)
            # Placeholder compliance tags stay out of the merged map
            if result.kind == "parsed":
                analysis.compliance_tags.update(result.finding.compliance_tags)

        summary, recommendations, degraded = await self.summarize(analysis, document_type)
        analysis.executive_summary = summary
        analysis.recommendations = recommendations
        analysis.summary_degraded = degraded

        # Caps keep first-seen order, not importance order
        analysis.key_points = analysis.key_points[: self._settings.key_points_cap]
        analysis.red_flags = analysis.red_flags[: self._settings.red_flags_cap]
        analysis.recommendations = analysis.recommendations[: self._settings.recommendations_cap]

        log.info(
            "analysis_complete",
            document_type=document_type,
            chunks_total=len(chunks),
            chunks_sampled=len(sampled),
            chunks_degraded=analysis.degraded_chunks,
            summary_degraded=degraded,
        )
        return analysis

    async def analyze_chunk(self, chunk: ContentChunk, document_type: DocumentType) -> FindingResult:
        request = InferenceRequest(
            system_prompt=prompts.CHUNK_SYSTEM.format(document_type=document_type),
            user_prompt=prompts.CHUNK_USER.format(document_type=document_type, chunk=chunk.text),
            max_tokens=self._max_tokens,
            temperature=self._temperature,
        )
        try:
            text = await self._inference.run(request)
        except InferenceError as exc:
            log.warning("chunk_analysis_degraded", ordinal=chunk.ordinal, reason=str(exc))
            return Degraded(ordinal=chunk.ordinal, reason=str(exc))

        result = parse_chunk_finding(text, chunk.ordinal)
        if result.kind == "degraded":
            log.warning("chunk_analysis_degraded", ordinal=chunk.ordinal, reason=result.reason)
        return result

    async def summarize(
        self, analysis: AggregatedAnalysis, document_type: DocumentType
    ) -> tuple[str, list[str], bool]:
        """Return ``(summary, recommendations, degraded)``."""
        request = InferenceRequest(
            system_prompt=prompts.SUMMARY_SYSTEM,
            user_prompt=prompts.SUMMARY_USER.format(
                document_type=document_type,
                key_points=", ".join(analysis.key_points),
                red_flags=", ".join(analysis.red_flags),
                compliance=json.dumps(analysis.compliance_tags),
            ),
            max_tokens=self._summary_max_tokens,
            temperature=self._temperature,
        )
        try:
            text = await self._inference.run(request)
            payload = _SummaryPayload.model_validate(parse_json_object(text))
        except (InferenceError, ValueError, ValidationError) as exc:
            log.warning("summary_degraded", reason=str(exc))
            return prompts.FALLBACK_SUMMARY, list(prompts.FALLBACK_RECOMMENDATIONS), True
        return payload.executiveSummary, payload.recommendations, False
