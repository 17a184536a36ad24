"""Compute repaired file contents for fixable findings."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict

from fixbot.analyzers import BlackFormatter, Formatter, SourceSyntaxError
from fixbot.errors import NotFixableError, UnsupportedKindError
from fixbot.fetcher import ContentFetcher
from fixbot.models.findings import Finding, FindingKind, Fix

Repair = Callable[[Finding], Awaitable[Fix]]


class FixPlanner:
    """Turns a fixable finding into a :class:`Fix`.

    The original bytes are always fetched again by blob id rather than taken
    from a scan-time copy. Whether the file changed upstream since the scan
    is only detected when the fix is committed.
    """

    def __init__(self, fetcher: ContentFetcher, *, formatter: Formatter | None = None) -> None:
        self._fetcher = fetcher
        self._formatter = formatter or BlackFormatter()
        # The one place to register a repair for a new fixable kind.
        self._repairs: Dict[FindingKind, Repair] = {
            FindingKind.FORMAT: self._reformat,
        }

    async def plan(self, finding: Finding) -> Fix:
        if not finding.fixable:
            raise NotFixableError(f"problem {finding.message!r} in {finding.file_path} is not fixable")
        repair = self._repairs.get(finding.kind)
        if repair is None:
            raise UnsupportedKindError(
                f"do not know how to fix {finding.kind.value} problem {finding.message!r}"
            )
        if not finding.blob_id:
            raise NotFixableError(f"problem in {finding.file_path} does not record its blob id")
        return await repair(finding)

    async def _reformat(self, finding: Finding) -> Fix:
        original = await self._fetcher.read_blob(finding.blob_id)
        try:
            replacement = await asyncio.to_thread(self._formatter.format, original)
        except SourceSyntaxError as exc:
            raise NotFixableError(f"{finding.file_path} no longer parses: {exc}") from exc
        return Fix(original=original, replacement=replacement)
