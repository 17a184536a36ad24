"""Command line scan of one GitHub repository."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import List, Sequence

from fixbot.config import DEFAULT_TOKEN_FILE, SettingsError, get_settings, load_access_token
from fixbot.errors import FixbotError
from fixbot.fetcher import ContentFetcher
from fixbot.github_client import GitHubClient
from fixbot.logger import get_logger
from fixbot.models.findings import ScanReport
from fixbot.services.scanner import ScanOptions, Scanner

logger = get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fixbot",
        description="Check the Python source files of a GitHub repository.",
    )
    parser.add_argument("repository", help="repository to check, as owner/repo")
    parser.add_argument("--rev", default=None, help="revision of the repo to check (default: DEFAULT_REVISION or master)")
    parser.add_argument(
        "--token-file",
        default=None,
        help=f"file to load a GitHub personal access token from (default: {DEFAULT_TOKEN_FILE})",
    )
    parser.add_argument("--parallelism", type=int, default=None, help="max files to fetch and check at once")
    parser.add_argument("--json", action="store_true", help="print findings as JSON lines")
    return parser


def _split_repository(value: str) -> tuple[str, str]:
    parts = value.split("/")
    if len(parts) != 2 or not all(parts):
        raise ValueError(f"not an owner/repo: {value!r}")
    return parts[0], parts[1]


async def run_check(
    owner: str,
    repo: str,
    *,
    revision: str,
    token: str | None,
    api_base_url: str,
    options: ScanOptions,
    vet_binary: str | None,
) -> ScanReport:
    client = GitHubClient(base_url=api_base_url, token=token)
    try:
        scanner = Scanner(ContentFetcher(client, owner, repo), vet_binary=vet_binary, options=options)
        return await scanner.check(revision)
    finally:
        await client.aclose()


def _print_report(report: ScanReport, as_json: bool) -> None:
    for finding in report.findings:
        if as_json:
            print(
                json.dumps(
                    {
                        "kind": finding.kind.value,
                        "path": finding.file_path,
                        "line": finding.line,
                        "message": finding.message,
                        "fixable": finding.fixable,
                    }
                )
            )
        else:
            print(finding)


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        owner, repo = _split_repository(args.repository)
    except ValueError as exc:
        parser.error(str(exc))

    try:
        settings = get_settings()
        token = settings.github_access_token
        if args.token_file:
            token = load_access_token(args.token_file)
    except SettingsError as exc:
        logger.error(str(exc))
        return 2

    options = ScanOptions(
        parallelism=args.parallelism or settings.fetch_parallelism,
        scratch_dir=settings.scratch_dir,
    )
    try:
        report = asyncio.run(
            run_check(
                owner,
                repo,
                revision=args.rev or settings.default_revision,
                token=token,
                api_base_url=settings.normalized_github_api_base_url,
                options=options,
                vet_binary=settings.vet_binary,
            )
        )
    except FixbotError as exc:
        logger.error(f"{owner}/{repo}: {exc}")
        return 1

    _print_report(report, args.json)
    logger.info(
        f"There were {len(report.findings)} problems in {report.files_checked} Python source files"
    )
    return 0


def entrypoint(argv: List[str] | None = None) -> None:
    sys.exit(main(argv))
