"""Concurrent scan of a repository snapshot."""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass
from typing import Iterable, List

from fixbot.analyzers import (
    BlackFormatter,
    Diagnostic,
    Formatter,
    Linter,
    PyflakesLinter,
    SourceSyntaxError,
    VetChecker,
)
from fixbot.errors import FixbotError
from fixbot.fetcher import ContentFetcher
from fixbot.logger import get_logger, log_failure, log_success, log_timing, log_with_context
from fixbot.models.findings import Finding, FindingKind, ScanReport, TreeEntry, sort_findings

logger = get_logger()

FORMAT_MESSAGE = "This file needs formatting with black."


@dataclass(frozen=True, slots=True)
class ScanOptions:
    source_suffix: str = ".py"
    generated_suffixes: tuple[str, ...] = ("_pb2.py", "_pb2_grpc.py")
    size_limit: int = 1 << 20  # 1 MiB
    confidence_threshold: float = 0.8
    parallelism: int = 10
    scratch_dir: str | None = None


class ProblemAggregator:
    """Thread-safe collection of findings with a deterministic final order."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._findings: List[Finding] = []

    def add(self, finding: Finding) -> None:
        with self._lock:
            self._findings.append(finding)

    def extend(self, findings: Iterable[Finding]) -> None:
        batch = list(findings)
        with self._lock:
            self._findings.extend(batch)

    def __len__(self) -> int:
        with self._lock:
            return len(self._findings)

    def finalize(self) -> List[Finding]:
        with self._lock:
            snapshot = list(self._findings)
        return sort_findings(snapshot)


class Scanner:
    """Runs every analyzer over every eligible file of a revision."""

    def __init__(
        self,
        fetcher: ContentFetcher,
        *,
        formatter: Formatter | None = None,
        linter: Linter | None = None,
        vet_binary: str | None = None,
        options: ScanOptions | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._formatter = formatter or BlackFormatter()
        self._linter = linter or PyflakesLinter()
        self._vet_binary = vet_binary
        self._options = options or ScanOptions()

    @property
    def options(self) -> ScanOptions:
        return self._options

    def is_eligible(self, entry: TreeEntry) -> bool:
        path = entry.path
        if not path.endswith(self._options.source_suffix):
            return False
        if any(path.endswith(suffix) for suffix in self._options.generated_suffixes):
            return False
        if entry.size > self._options.size_limit:
            logger.debug(
                f"Skipping {path} because it is too big: {entry.size} > {self._options.size_limit}"
            )
            return False
        return True

    def _locate_vet(self) -> VetChecker | None:
        binary = VetChecker.locate(self._vet_binary)
        if binary is None:
            logger.debug("Vet checker not found; skipping vet for this scan")
            return None
        return VetChecker(binary, scratch_dir=self._options.scratch_dir)

    async def check(self, revision: str) -> ScanReport:
        """Scan ``revision`` and return its findings in sorted order."""

        fetcher = self._fetcher
        ctx_logger = log_with_context(logger, repository=fetcher.full_name, revision=revision)

        try:
            commit_id = await fetcher.resolve(revision)
        except FixbotError as exc:
            log_failure(logger, f"Resolving {revision!r}", exc, repository=fetcher.full_name)
            raise
        ctx_logger.info(f"{fetcher.full_name}: rev {revision!r} is {commit_id}")

        try:
            with log_timing(ctx_logger, "list_tree"):
                entries = await fetcher.list_tree(commit_id)
        except FixbotError as exc:
            log_failure(
                logger, f"Fetching tree {revision!r} ({commit_id})", exc, repository=fetcher.full_name
            )
            raise
        ctx_logger.info(f"Found {len(entries)} tree entries")

        eligible = [entry for entry in entries if self.is_eligible(entry)]
        vet = self._locate_vet()
        aggregator = ProblemAggregator()
        gate = asyncio.Semaphore(self._options.parallelism)

        tasks = [
            asyncio.create_task(self._check_file(entry, gate, aggregator, vet))
            for entry in eligible
        ]
        await asyncio.gather(*tasks)

        findings = aggregator.finalize()
        log_success(
            logger,
            f"{len(findings)} problems in {len(eligible)} source files",
            repository=fetcher.full_name,
            revision=revision,
        )
        return ScanReport(
            owner=fetcher.owner,
            repo=fetcher.repo,
            revision=revision,
            commit_id=commit_id,
            files_checked=len(eligible),
            findings=findings,
        )

    async def _check_file(
        self,
        entry: TreeEntry,
        gate: asyncio.Semaphore,
        aggregator: ProblemAggregator,
        vet: VetChecker | None,
    ) -> None:
        async with gate:
            try:
                source = await self._fetcher.read_blob(entry.content_id)
            except FixbotError as exc:
                logger.debug(f"Getting blob for {entry.path}: {exc}")
                return

            try:
                await self._analyze(entry, source, aggregator, vet)
            except Exception as exc:
                log_failure(logger, f"Analyzing {entry.path}", exc, repository=self._fetcher.full_name)

    async def _analyze(
        self,
        entry: TreeEntry,
        source: bytes,
        aggregator: ProblemAggregator,
        vet: VetChecker | None,
    ) -> None:
        path = entry.path
        try:
            formatted = await asyncio.to_thread(self._formatter.format, source)
        except SourceSyntaxError as exc:
            aggregator.extend(_findings(FindingKind.SYNTAX, path, exc.diagnostics))
            return  # no more to do if we have syntax errors

        if formatted != source:
            aggregator.add(
                Finding(
                    kind=FindingKind.FORMAT,
                    file_path=path,
                    line=0,
                    message=FORMAT_MESSAGE,
                    blob_id=entry.content_id,
                    fixable=True,
                )
            )

        advisories = await asyncio.to_thread(self._linter.lint, path, source)
        threshold = self._options.confidence_threshold
        aggregator.extend(
            _findings(
                FindingKind.ADVISORY,
                path,
                (d for d in advisories if d.confidence >= threshold),
            )
        )

        if vet is not None:
            aggregator.extend(_findings(FindingKind.VET, path, await vet.check(path, source)))


def _findings(kind: FindingKind, path: str, diagnostics: Iterable[Diagnostic]) -> List[Finding]:
    return [
        Finding(kind=kind, file_path=path, line=max(d.line, 0), message=d.message)
        for d in diagnostics
    ]
