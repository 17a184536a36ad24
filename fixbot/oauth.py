"""Authorization confirmation and callback that applies the selected fixes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates

from fixbot.config import Settings
from fixbot.dependencies import (
    UserClientFactory,
    oauth_client_dependency,
    session_store_dependency,
    settings_dependency,
    user_client_factory_dependency,
)
from fixbot.errors import AuthRequiredError, FixbotError, NoWriteAccessError
from fixbot.github_client import GitHubOAuthClient
from fixbot.logger import get_logger, log_failure, log_timing, log_with_context
from fixbot.services.fix_workflow import CommitAuthor, CommitBatchError, FixWorkflow
from fixbot.sessions import SessionNotFoundError, SessionStore
from fixbot.utils.paths import TEMPLATES_DIR

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

router = APIRouter()

logger = get_logger()


@router.get("/confirm", response_class=HTMLResponse, summary="Confirm before authorizing")
async def confirm(
    request: Request,
    state: str = Query(..., min_length=1),
    settings: Settings = Depends(settings_dependency),
    store: SessionStore = Depends(session_store_dependency),
    oauth_client: GitHubOAuthClient = Depends(oauth_client_dependency),
) -> HTMLResponse:
    try:
        session = store.get(state)
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    context = {
        "authorize_url": oauth_client.authorize_url(state, redirect_uri=settings.oauth_redirect_url),
        "session": session,
    }
    return templates.TemplateResponse(request, "confirm.html", context)


def _status_for(exc: FixbotError) -> int:
    if isinstance(exc, SessionNotFoundError):
        return 400
    if isinstance(exc, AuthRequiredError):
        return 401
    if isinstance(exc, NoWriteAccessError):
        return 403
    return 502


@router.get("/oauthback", summary="Authorization callback that commits the fixes")
async def apply_fixes(
    request: Request,
    code: str = Query(..., min_length=1),
    state: str = Query(..., min_length=1),
    settings: Settings = Depends(settings_dependency),
    store: SessionStore = Depends(session_store_dependency),
    oauth_client: GitHubOAuthClient = Depends(oauth_client_dependency),
    user_client_factory: UserClientFactory = Depends(user_client_factory_dependency),
) -> Response:
    """Exchange the code for a user token and run the fix workflow for ``state``."""

    ctx_logger = log_with_context(logger, session=state)
    try:
        with log_timing(ctx_logger, "exchange_code"):
            token = await oauth_client.exchange_code(code)
    except FixbotError as exc:
        log_failure(logger, "OAuth code exchange failed", exc, session=state)
        raise HTTPException(status_code=502, detail=f"authorization: {exc}") from exc
    finally:
        await oauth_client.aclose()

    github = user_client_factory(token)
    workflow = FixWorkflow(
        github,
        store,
        web_base_url=settings.normalized_github_web_base_url,
        author=CommitAuthor(name=settings.commit_author_name, email=settings.commit_author_email),
    )
    try:
        with log_timing(ctx_logger, "fix_workflow"):
            outcome = await workflow.run(state)
    except CommitBatchError as exc:
        context = {"compare_urls": exc.compare_urls, "error": str(exc)}
        return templates.TemplateResponse(request, "fix.html", context, status_code=502)
    except FixbotError as exc:
        raise HTTPException(status_code=_status_for(exc), detail=str(exc)) from exc
    finally:
        await github.aclose()

    if len(outcome.compare_urls) == 1:
        return RedirectResponse(outcome.compare_urls[0], status_code=303)
    context = {"compare_urls": outcome.compare_urls, "error": None}
    return templates.TemplateResponse(request, "fix.html", context)
