"""Shared data structures for scan findings and fixes."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List


class FindingKind(str, Enum):
    FORMAT = "format"
    ADVISORY = "advisory"
    VET = "vet"
    SYNTAX = "syntax"


@dataclass(frozen=True, slots=True)
class TreeEntry:
    path: str
    content_id: str
    size: int


@dataclass(frozen=True, slots=True)
class Finding:
    """One problem detected in one file.

    ``line`` starts at 1; 0 means the finding applies to the whole file.
    ``blob_id`` is always set when ``fixable`` is true so the exact original
    bytes can be fetched again at fix time.
    """

    kind: FindingKind
    file_path: str
    line: int
    message: str
    blob_id: str | None = None
    fixable: bool = False

    @property
    def sort_key(self) -> tuple[str, int, str, str]:
        return (self.file_path, self.line, self.message, self.kind.value)

    @property
    def location(self) -> str:
        if self.line > 0:
            return f"{self.file_path}:{self.line}"
        return self.file_path

    def __str__(self) -> str:
        return f"{self.location}: {self.message}"


def sort_findings(findings: List[Finding]) -> List[Finding]:
    """Return findings ordered by path, line and message, ties broken by kind."""

    return sorted(findings, key=lambda finding: finding.sort_key)


@dataclass(frozen=True, slots=True)
class Fix:
    original: bytes
    replacement: bytes

    @property
    def changed(self) -> bool:
        return self.original != self.replacement


@dataclass(slots=True)
class ScanReport:
    owner: str
    repo: str
    revision: str
    commit_id: str
    files_checked: int = 0
    findings: List[Finding] = field(default_factory=list)

    @property
    def fixable(self) -> List[Finding]:
        return [finding for finding in self.findings if finding.fixable]
