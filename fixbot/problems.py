"""Scan results views and fix selection."""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Tuple
from urllib.parse import quote, urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from fixbot.config import Settings
from fixbot.dependencies import (
    oauth_client_dependency,
    scan_client_dependency,
    session_store_dependency,
    settings_dependency,
)
from fixbot.errors import FixbotError, IncompleteTreeError, NotFoundError
from fixbot.fetcher import ContentFetcher
from fixbot.github_client import GitHubClient, GitHubOAuthClient
from fixbot.logger import get_logger, log_failure
from fixbot.models.findings import Finding, FindingKind, ScanReport
from fixbot.services.scanner import FORMAT_MESSAGE, ScanOptions, Scanner
from fixbot.sessions import SessionStore
from fixbot.sessions.models import Session
from fixbot.utils.paths import TEMPLATES_DIR

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

router = APIRouter()

logger = get_logger()

ScannerFactory = Callable[[str, str], Scanner]


def scanner_factory_dependency(
    settings: Settings = Depends(settings_dependency),
    client: GitHubClient = Depends(scan_client_dependency),
) -> ScannerFactory:
    """Provide a factory building a scanner for one repository."""

    options = ScanOptions(parallelism=settings.fetch_parallelism, scratch_dir=settings.scratch_dir)

    def _factory(owner: str, repo: str) -> Scanner:
        return Scanner(ContentFetcher(client, owner, repo), vet_binary=settings.vet_binary, options=options)

    return _factory


def _split_repo(repo_spec: str, default_revision: str) -> Tuple[str, str]:
    repo, sep, revision = repo_spec.partition("@")
    if not repo or (sep and not revision):
        raise HTTPException(status_code=400, detail=f"not a valid github repo: {repo_spec!r}")
    return repo, revision or default_revision


async def _scan(factory: ScannerFactory, owner: str, repo: str, revision: str) -> ScanReport:
    try:
        return await factory(owner, repo).check(revision)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"{owner}/{repo}@{revision}: {exc}") from exc
    except IncompleteTreeError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except FixbotError as exc:
        log_failure(logger, "Scan failed", exc, repository=f"{owner}/{repo}", revision=revision)
        raise HTTPException(status_code=502, detail=f"checking: {exc}") from exc


def problem_link(settings: Settings, report: ScanReport, finding: Finding) -> str:
    url = (
        f"{settings.normalized_github_web_base_url}/{report.owner}/{report.repo}"
        f"/blob/{report.commit_id}/{quote(finding.file_path)}"
    )
    if finding.line > 0:
        url += f"#L{finding.line}"
    return url


def fix_link(report: ScanReport, findings: List[Finding]) -> str:
    params: List[Tuple[str, str]] = [("owner", report.owner), ("repo", report.repo)]
    for finding in findings:
        if finding.fixable and finding.blob_id:
            params.append(("path", finding.file_path))
            params.append(("blob", finding.blob_id))
    return "/fix?" + urlencode(params)


def _finding_payload(finding: Finding) -> Dict[str, Any]:
    return {
        "kind": finding.kind.value,
        "path": finding.file_path,
        "line": finding.line,
        "message": finding.message,
        "blob": finding.blob_id,
        "fixable": finding.fixable,
    }


@router.get("/", response_class=HTMLResponse, summary="Repository form")
async def index(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(request, "problems.html", {"path": "", "report": None})


@router.get(
    "/github.com/{owner}/{repo_spec}",
    response_class=HTMLResponse,
    summary="Check a repository and list its problems",
)
async def problem_list(
    request: Request,
    owner: str,
    repo_spec: str,
    settings: Settings = Depends(settings_dependency),
    scanner_factory: ScannerFactory = Depends(scanner_factory_dependency),
) -> HTMLResponse:
    repo, revision = _split_repo(repo_spec, settings.default_revision)
    report = await _scan(scanner_factory, owner, repo, revision)

    rows = [
        {
            "finding": finding,
            "link": problem_link(settings, report, finding),
            "fix_link": fix_link(report, [finding]) if finding.fixable else None,
        }
        for finding in report.findings
    ]
    fixable = report.fixable
    context = {
        "path": f"github.com/{owner}/{repo_spec}",
        "report": report,
        "rows": rows,
        "fix_all_link": fix_link(report, fixable) if len(fixable) > 1 else None,
    }
    return templates.TemplateResponse(request, "problems.html", context)


@router.get("/api/github.com/{owner}/{repo_spec}", summary="Check a repository, as JSON")
async def problem_list_json(
    owner: str,
    repo_spec: str,
    settings: Settings = Depends(settings_dependency),
    scanner_factory: ScannerFactory = Depends(scanner_factory_dependency),
) -> Dict[str, Any]:
    repo, revision = _split_repo(repo_spec, settings.default_revision)
    report = await _scan(scanner_factory, owner, repo, revision)
    return {
        "repository": f"{report.owner}/{report.repo}",
        "revision": report.revision,
        "commit": report.commit_id,
        "files_checked": report.files_checked,
        "findings": [_finding_payload(finding) for finding in report.findings],
    }


@router.get("/fix", summary="Select fixes and start authorization")
async def select_fixes(
    request: Request,
    owner: str = Query(..., min_length=1),
    repo: str = Query(..., min_length=1),
    path: List[str] = Query(...),
    blob: List[str] = Query(...),
    settings: Settings = Depends(settings_dependency),
    store: SessionStore = Depends(session_store_dependency),
    oauth_client: GitHubOAuthClient = Depends(oauth_client_dependency),
) -> RedirectResponse:
    """Record the selected fixes in a session and hand over to authorization."""

    if len(path) != len(blob):
        raise HTTPException(status_code=400, detail="every path needs exactly one blob")

    findings = [
        Finding(
            kind=FindingKind.FORMAT,
            file_path=file_path,
            line=0,
            message=FORMAT_MESSAGE,
            blob_id=blob_id,
            fixable=True,
        )
        for file_path, blob_id in zip(path, blob)
    ]
    key = store.put(Session(owner=owner, repo=repo, findings=findings))

    if request.cookies.get("skipconfirm") == "true":
        target = oauth_client.authorize_url(key, redirect_uri=settings.oauth_redirect_url)
    else:
        target = f"/confirm?state={key}"
    return RedirectResponse(target, status_code=303)
