"""Rule-based risk scoring.

Each rule sets a lower bound on one axis and bounds combine with ``max``, so
overlapping rules resolve to the same label whatever order they are checked
in, and ties always land on the higher severity:

1. Any GDPR/CCPA tag "non-compliant" -> regulatory >= red;
   any "partially" -> regulatory >= yellow.
2. Any red flag -> regulatory >= red and transparency >= yellow.
3. No chunk mentions a user right -> user_rights = yellow, else green.
4. overall = max(regulatory, transparency, user_rights).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from policylens.models.analysis import RiskAssessment, RiskLevel

if TYPE_CHECKING:
    from collections.abc import Iterable

    from policylens.models.analysis import AggregatedAnalysis

REGULATED_FRAMEWORKS = ("gdpr", "ccpa")


def max_level(*levels: RiskLevel) -> RiskLevel:
    return max(levels, key=lambda level: level.severity)


def _normalize_tag(value: str) -> str:
    return value.strip().lower().replace("_", "-").replace(" ", "-")


def compliance_level(tags: dict[str, str]) -> RiskLevel:
    """Regulatory bound implied by one compliance map."""
    level = RiskLevel.GREEN
    for framework in REGULATED_FRAMEWORKS:
        value = next((v for k, v in tags.items() if k.strip().lower() == framework), None)
        if value is None:
            continue
        normalized = _normalize_tag(value)
        if normalized in ("non-compliant", "noncompliant"):
            return RiskLevel.RED
        if normalized.startswith("partial"):
            level = RiskLevel.YELLOW
    return level


def _compliance_maps(analysis: AggregatedAnalysis) -> Iterable[dict[str, str]]:
    yield analysis.compliance_tags
    for result in analysis.per_chunk_findings:
        if result.kind == "parsed":
            yield result.finding.compliance_tags


def score(analysis: AggregatedAnalysis) -> RiskAssessment:
    regulatory = max_level(
        RiskLevel.GREEN, *(compliance_level(tags) for tags in _compliance_maps(analysis))
    )
    transparency = RiskLevel.GREEN

    if analysis.red_flags:
        regulatory = max_level(regulatory, RiskLevel.RED)
        transparency = max_level(transparency, RiskLevel.YELLOW)

    has_rights = any(result.finding.mentioned_rights for result in analysis.per_chunk_findings)
    user_rights = RiskLevel.GREEN if has_rights else RiskLevel.YELLOW

    return RiskAssessment.from_axes(regulatory, transparency, user_rights)
