from __future__ import annotations

from policylens.models.analysis import (
    AggregatedAnalysis,
    AnalysisRequest,
    AnalysisResult,
    ChunkFinding,
    ContentChunk,
    Degraded,
    DocumentType,
    ExtractedDocument,
    FindingResult,
    Parsed,
    RiskAssessment,
    RiskLevel,
)
from policylens.models.api import AnalyzeBody, DetectBody
from policylens.models.cache import CacheEntry

__all__ = [
    # analysis
    "DocumentType",
    "AnalysisRequest",
    "ExtractedDocument",
    "ContentChunk",
    "ChunkFinding",
    "Parsed",
    "Degraded",
    "FindingResult",
    "AggregatedAnalysis",
    "RiskLevel",
    "RiskAssessment",
    "AnalysisResult",
    # cache
    "CacheEntry",
    # api
    "AnalyzeBody",
    "DetectBody",
]
