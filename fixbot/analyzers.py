"""Per-file analyzers: formatter, advisory linter and vet-style checker.

Each analyzer works on the raw bytes of one file and reports
:class:`Diagnostic` values; the scanner turns those into findings.
"""

from __future__ import annotations

import ast
import asyncio
import os
import re
import shutil
import tempfile
from dataclasses import dataclass
from typing import Dict, List, NamedTuple, Protocol, Sequence

import black
from black.parsing import InvalidInput
from pyflakes import api as pyflakes_api

from fixbot.logger import get_logger

logger = get_logger()


@dataclass(frozen=True, slots=True)
class Diagnostic:
    line: int
    message: str
    confidence: float = 1.0


class SourceSyntaxError(Exception):
    """Raised by a formatter when the source cannot be parsed.

    Carries one diagnostic per reported syntax error location.
    """

    def __init__(self, diagnostics: Sequence[Diagnostic]):
        self.diagnostics = list(diagnostics)
        super().__init__("; ".join(f"{d.line}: {d.message}" for d in self.diagnostics))


class Formatter(Protocol):
    def format(self, source: bytes) -> bytes: ...


class Linter(Protocol):
    def lint(self, path: str, source: bytes) -> List[Diagnostic]: ...


_BLACK_POSITION = re.compile(r"(\d+):(\d+):\s*(.*)$")


class DecodedSource(NamedTuple):
    text: str
    encoding: str
    newline: str


def decode_source(source: bytes) -> DecodedSource:
    """Decode ``source`` honouring a BOM or a PEP 263 coding cookie.

    ``text`` always uses ``\\n``; ``newline`` is what the file used.
    """

    try:
        text, encoding, newline = black.decode_bytes(source)
    except (SyntaxError, LookupError, UnicodeDecodeError) as exc:
        raise SourceSyntaxError([Diagnostic(0, f"cannot decode source: {exc}")]) from exc
    return DecodedSource(text, encoding, newline)


class BlackFormatter:
    """Canonical formatting with black.

    The output keeps the input's encoding (including a BOM) and line endings.
    """

    def __init__(self, mode: black.Mode | None = None) -> None:
        self._mode = mode or black.Mode()

    def format(self, source: bytes) -> bytes:
        decoded = decode_source(source)
        try:
            ast.parse(source)
        except SyntaxError as exc:
            raise SourceSyntaxError([Diagnostic(exc.lineno or 0, exc.msg)]) from exc
        except ValueError as exc:  # null bytes on older interpreters
            raise SourceSyntaxError([Diagnostic(0, str(exc))]) from exc

        try:
            formatted = black.format_str(decoded.text, mode=self._mode)
        except InvalidInput as exc:
            # "Cannot parse for target version ...: 3:4: <source line>"
            match = _BLACK_POSITION.search(str(exc))
            line = int(match.group(1)) if match else 0
            raise SourceSyntaxError([Diagnostic(line, str(exc))]) from exc
        if decoded.newline != "\n":
            formatted = formatted.replace("\n", decoded.newline)
        return formatted.encode(decoded.encoding)


# pyflakes has no notion of confidence; these reflect how often each message
# points at a real defect.
PYFLAKES_CONFIDENCE: Dict[str, float] = {
    "UndefinedName": 1.0,
    "UndefinedLocal": 1.0,
    "UndefinedExport": 1.0,
    "DuplicateArgument": 1.0,
    "ReturnOutsideFunction": 1.0,
    "YieldOutsideFunction": 1.0,
    "ContinueOutsideLoop": 1.0,
    "BreakOutsideLoop": 1.0,
    "DefaultExceptNotLast": 1.0,
    "TwoStarredExpressions": 1.0,
    "IsLiteral": 0.95,
    "AssertTuple": 0.95,
    "IfTuple": 0.95,
    "RaiseNotImplemented": 0.9,
    "FStringMissingPlaceholders": 0.9,
    "MultiValueRepeatedKeyLiteral": 0.9,
    "UnusedImport": 0.9,
    "RedefinedWhileUnused": 0.9,
    "UnusedVariable": 0.85,
    "UnusedAnnotation": 0.7,
    "ImportShadowedByLoopVar": 0.7,
    "ImportStarUsed": 0.6,
    "ImportStarUsage": 0.6,
    "MultiValueRepeatedKeyVariable": 0.6,
}
DEFAULT_CONFIDENCE = 0.8


class _CollectingReporter:
    def __init__(self) -> None:
        self.diagnostics: List[Diagnostic] = []

    def unexpectedError(self, filename, msg) -> None:
        self.diagnostics.append(Diagnostic(0, str(msg), confidence=0.0))

    def syntaxError(self, filename, msg, lineno, offset, text) -> None:
        self.diagnostics.append(Diagnostic(lineno or 0, str(msg), confidence=0.0))

    def flake(self, message) -> None:
        confidence = PYFLAKES_CONFIDENCE.get(type(message).__name__, DEFAULT_CONFIDENCE)
        text = message.message % message.message_args
        self.diagnostics.append(Diagnostic(message.lineno, text, confidence=confidence))


class PyflakesLinter:
    """Advisory lint with pyflakes."""

    def lint(self, path: str, source: bytes) -> List[Diagnostic]:
        try:
            text = decode_source(source).text
        except SourceSyntaxError:
            return []
        reporter = _CollectingReporter()
        pyflakes_api.check(text, path, reporter=reporter)
        return reporter.diagnostics


DEFAULT_VET_BINARY = "mypy"
DEFAULT_VET_ARGS: tuple[str, ...] = (
    "--ignore-missing-imports",
    "--follow-imports=skip",
    "--no-error-summary",
    "--no-color-output",
    "--no-incremental",
)


def parse_vet_output(output: str, scratch_path: str) -> List[Diagnostic]:
    """Parse ``<scratch_path>:<line>: <text>`` lines, ignoring everything else."""

    diagnostics: List[Diagnostic] = []
    prefix = scratch_path + ":"
    for raw_line in output.splitlines():
        if not raw_line.startswith(prefix):
            continue
        parts = raw_line[len(prefix):].split(":", 1)
        if len(parts) != 2:
            continue
        try:
            line_number = int(parts[0])
        except ValueError:
            continue  # probably not a line number
        diagnostics.append(Diagnostic(line_number, parts[1].strip()))
    return diagnostics


class VetChecker:
    """Runs an external checker binary over a scratch copy of one file."""

    def __init__(
        self,
        binary: str,
        *,
        args: Sequence[str] = DEFAULT_VET_ARGS,
        scratch_dir: str | None = None,
    ) -> None:
        self.binary = binary
        self._args = tuple(args)
        self._scratch_dir = scratch_dir

    @staticmethod
    def locate(binary: str | None = None) -> str | None:
        """Return the absolute path of the checker, or None if unavailable."""

        return shutil.which(binary or DEFAULT_VET_BINARY)

    async def check(self, path: str, source: bytes) -> List[Diagnostic]:
        # The checker does not read standard input, so the source goes to a
        # private scratch file and results are mapped back to ``path``.
        with tempfile.TemporaryDirectory(dir=self._scratch_dir, prefix="fixbot-vet") as scratch:
            scratch_path = os.path.join(scratch, "x.py")
            with open(scratch_path, "wb") as handle:
                handle.write(source)

            try:
                process = await asyncio.create_subprocess_exec(
                    self.binary,
                    *self._args,
                    scratch_path,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.STDOUT,
                )
            except OSError as exc:
                logger.debug(f"Unable to run {self.binary} on {path}: {exc}")
                return []
            output, _ = await process.communicate()

        # A nonzero exit with output just means problems were found.
        if not output and process.returncode not in (0, None):
            logger.debug(f"{self.binary} exited with {process.returncode} and no output for {path}")
            return []
        return parse_vet_output(output.decode("utf-8", errors="replace"), scratch_path)
