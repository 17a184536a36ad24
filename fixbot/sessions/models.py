"""Data models for pending fix sessions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List

from pydantic import BaseModel, ConfigDict, Field

from fixbot.models.findings import Finding


class Session(BaseModel):
    """Findings a user chose to fix, held until the authorization callback."""

    model_config = ConfigDict(frozen=True)

    owner: str
    repo: str
    findings: List[Finding] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"
