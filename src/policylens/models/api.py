from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AnalyzeBody(BaseModel):
    """Raw POST /api/analyze body. Field contents are checked by the validator."""

    model_config = ConfigDict(extra="ignore")

    url: Any = None
    type: Any = "privacy"
    options: dict[str, Any] = Field(default_factory=dict)


class DetectBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: Any = None
