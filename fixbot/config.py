"""Application configuration helpers."""

from __future__ import annotations

import os
import stat
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Final

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, BaseModel, Field, ValidationError

# Load environment variables from .env file
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DEFAULT_TOKEN_FILE: Final[Path] = Path.home() / ".fixbot-token"


class SettingsError(RuntimeError):
    """Raised when application configuration is invalid or incomplete."""


@dataclass(frozen=True)
class OAuthCredentials:
    client_id: str
    client_secret: str


class Settings(BaseModel):
    """Runtime settings loaded from environment variables."""

    service_base_url: AnyHttpUrl = "http://localhost:8000"
    github_api_base_url: AnyHttpUrl = "https://api.github.com"
    github_web_base_url: AnyHttpUrl = "https://github.com"
    github_access_token: str | None = None
    oauth_client_id: str | None = None
    oauth_client_secret: str | None = None
    default_revision: str = "master"
    fetch_parallelism: int = Field(default=10, ge=1)
    scratch_dir: str | None = None
    vet_binary: str | None = None
    commit_author_name: str = "fixbot"
    commit_author_email: str = "fixbot@users.noreply.github.com"

    @property
    def normalized_base_url(self) -> str:
        """Return the base service URL without a trailing slash."""
        return str(self.service_base_url).rstrip("/")

    @property
    def normalized_github_api_base_url(self) -> str:
        """Return the GitHub API base URL without a trailing slash."""
        return str(self.github_api_base_url).rstrip("/")

    @property
    def normalized_github_web_base_url(self) -> str:
        """Return the GitHub web base URL without a trailing slash."""
        return str(self.github_web_base_url).rstrip("/")

    @property
    def oauth_redirect_url(self) -> str:
        return f"{self.normalized_base_url}/oauthback"

    def require_oauth_credentials(self) -> OAuthCredentials:
        """Ensure the OAuth application is configured and return its credentials."""

        missing = []
        if not self.oauth_client_id:
            missing.append("GITHUB_OAUTH_CLIENT_ID")
        if not self.oauth_client_secret:
            missing.append("GITHUB_OAUTH_CLIENT_SECRET")

        if missing:
            missing_vars = ", ".join(missing)
            raise SettingsError(
                "Fixing is not configured. Missing environment variables: "
                f"{missing_vars}."
            )

        return OAuthCredentials(
            client_id=self.oauth_client_id,
            client_secret=self.oauth_client_secret,
        )


def load_access_token(path: str | Path) -> str | None:
    """Read a personal access token from ``path``.

    Returns None when the file does not exist. The file must not be readable
    by group or others.
    """

    token_path = Path(path).expanduser()
    try:
        raw = token_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise SettingsError(f"Unable to read access token file {token_path}: {exc}") from exc

    mode = token_path.stat().st_mode
    if mode & (stat.S_IRWXG | stat.S_IRWXO):
        raise SettingsError(
            f"{token_path} is too accessible; run `chmod go= {token_path}` to fix"
        )
    return raw.strip() or None


def _optional_env(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _build_settings() -> Settings:
    access_token = _optional_env("GITHUB_ACCESS_TOKEN")
    if access_token is None:
        token_file = _optional_env("GITHUB_ACCESS_TOKEN_FILE") or DEFAULT_TOKEN_FILE
        access_token = load_access_token(token_file)

    values: dict[str, object] = {
        "github_access_token": access_token,
        "oauth_client_id": _optional_env("GITHUB_OAUTH_CLIENT_ID"),
        "oauth_client_secret": _optional_env("GITHUB_OAUTH_CLIENT_SECRET"),
        "scratch_dir": _optional_env("SCRATCH_DIR"),
        "vet_binary": _optional_env("VET_BINARY"),
    }
    optional_overrides = {
        "service_base_url": "SERVICE_BASE_URL",
        "github_api_base_url": "GITHUB_API_BASE_URL",
        "github_web_base_url": "GITHUB_WEB_BASE_URL",
        "default_revision": "DEFAULT_REVISION",
        "commit_author_name": "COMMIT_AUTHOR_NAME",
        "commit_author_email": "COMMIT_AUTHOR_EMAIL",
    }
    for field_name, env_name in optional_overrides.items():
        value = _optional_env(env_name)
        if value is not None:
            values[field_name] = value

    parallelism = _optional_env("FETCH_PARALLELISM")
    try:
        if parallelism is not None:
            values["fetch_parallelism"] = int(parallelism)
        return Settings(**values)
    except ValueError as exc:
        if isinstance(exc, ValidationError):
            raise SettingsError(f"Invalid application configuration: {exc}") from exc
        raise SettingsError("Invalid value for FETCH_PARALLELISM. It must be an integer.") from exc


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return _build_settings()


def get_settings() -> Settings:
    """Retrieve cached application settings."""
    return _cached_settings()


def reset_settings_cache() -> None:
    """Clear the cached settings (primarily for tests)."""
    _cached_settings.cache_clear()
