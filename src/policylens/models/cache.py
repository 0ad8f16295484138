from __future__ import annotations

from typing import Any

from pydantic import BaseModel, model_validator


class CacheEntry(BaseModel):
    """One live analysis result held by a cache partition."""

    key: str  # Normalized source URL
    value: dict[str, Any]  # AnalysisResult dumped in JSON mode
    created_at: float  # Epoch seconds
    expires_at: float  # Epoch seconds

    @model_validator(mode="after")
    def _check_expiry(self) -> CacheEntry:
        if self.expires_at <= self.created_at:
            raise ValueError("expires_at must be later than created_at")
        return self

    def is_live(self, now: float) -> bool:
        return now < self.expires_at

    @property
    def created_at_ms(self) -> int:
        return int(self.created_at * 1000)

    @property
    def expires_at_ms(self) -> int:
        return int(self.expires_at * 1000)
