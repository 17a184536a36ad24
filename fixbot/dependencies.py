"""FastAPI dependency factories."""

from __future__ import annotations

from functools import lru_cache
from typing import Callable, List

from fastapi import HTTPException, Request

from fixbot.config import Settings, SettingsError, get_settings
from fixbot.github_client import GitHubClient, GitHubOAuthClient
from fixbot.logger import get_logger
from fixbot.sessions import SessionStore

logger = get_logger()

UserClientFactory = Callable[[str], GitHubClient]

# Every client the cache has handed out, including ones since evicted.
_open_scan_clients: List[GitHubClient] = []


def settings_dependency() -> Settings:
    """Resolve application settings, surfacing configuration errors via HTTPException."""

    try:
        return get_settings()
    except SettingsError as exc:
        logger.error(f"Failed to load settings: {exc}")
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@lru_cache(maxsize=1)
def _scan_client_factory(base_url: str, token: str | None) -> GitHubClient:
    client = GitHubClient(base_url=base_url, token=token)
    _open_scan_clients.append(client)
    return client


def scan_client_dependency() -> GitHubClient:
    """Provide the cached GitHub client that scans with the service credential."""

    settings = settings_dependency()
    return _scan_client_factory(settings.normalized_github_api_base_url, settings.github_access_token)


def oauth_client_dependency() -> GitHubOAuthClient:
    """Provide a GitHub OAuth helper for the configured application."""

    settings = settings_dependency()
    try:
        credentials = settings.require_oauth_credentials()
    except SettingsError as exc:
        logger.error(f"OAuth is not configured: {exc}")
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return GitHubOAuthClient(
        web_base_url=settings.normalized_github_web_base_url,
        client_id=credentials.client_id,
        client_secret=credentials.client_secret,
    )


def user_client_factory_dependency() -> UserClientFactory:
    """Provide a factory building GitHub clients that act as a given user."""

    settings = settings_dependency()

    def _factory(token: str) -> GitHubClient:
        return GitHubClient(base_url=settings.normalized_github_api_base_url, token=token)

    return _factory


def session_store_dependency(request: Request) -> SessionStore:
    """Return the session store owned by the running application."""

    store = getattr(request.app.state, "session_store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Session store is not running.")
    return store


def reset_scan_client_cache() -> None:
    """Clear the cached scan client (primarily for tests)."""

    _scan_client_factory.cache_clear()


async def close_scan_clients() -> None:
    """Close every scan client created so far and clear the cache."""

    reset_scan_client_cache()
    while _open_scan_clients:
        await _open_scan_clients.pop().aclose()
