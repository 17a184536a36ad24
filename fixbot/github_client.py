"""GitHub API client helpers."""

from __future__ import annotations

import base64
from datetime import datetime, timezone
from typing import Any, Dict
from urllib.parse import quote, urlencode

import httpx

from fixbot.errors import NotFoundError, TransportError


class GitHubAPIError(TransportError):
    """Raised when a GitHub API request fails."""

    def __init__(self, message: str, status_code: int, response_body: Any | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class GitHubNotFoundError(GitHubAPIError, NotFoundError):
    """Raised when GitHub answers 404 for a resource."""


DEFAULT_ACCEPT_HEADER = "application/vnd.github+json"
DEFAULT_API_VERSION = "2022-11-28"


def _response_detail(response: httpx.Response) -> Any | None:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class GitHubOAuthClient:
    """Helper for the GitHub OAuth web flow."""

    def __init__(
        self,
        *,
        web_base_url: str,
        client_id: str,
        client_secret: str,
        timeout: float = 10.0,
        user_agent: str = "fixbot/1.0",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._web_base_url = web_base_url.rstrip("/")
        self._client_id = client_id
        self._client_secret = client_secret
        self._timeout = timeout
        self._user_agent = user_agent
        self._client: httpx.AsyncClient | None = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._web_base_url,
                timeout=self._timeout,
                headers={"User-Agent": self._user_agent, "Accept": "application/json"},
            )
        return self._client

    def authorize_url(self, state: str, *, redirect_uri: str, scope: str = "public_repo") -> str:
        """Return the URL that starts the authorization flow for ``state``."""

        query = urlencode(
            {
                "client_id": self._client_id,
                "redirect_uri": redirect_uri,
                "scope": scope,
                "state": state,
            }
        )
        return f"{self._web_base_url}/login/oauth/authorize?{query}"

    async def exchange_code(self, code: str) -> str:
        """Exchange an authorization code for a user access token."""

        client = self._get_client()
        try:
            response = await client.post(
                "/login/oauth/access_token",
                data={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "code": code,
                },
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise TransportError(f"OAuth code exchange failed: {exc}") from exc

        if response.status_code >= 400:
            raise GitHubAPIError(
                f"GitHub responded with status {response.status_code} during code exchange.",
                response.status_code,
                _response_detail(response),
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise GitHubAPIError(
                "GitHub returned invalid JSON during code exchange.",
                response.status_code,
                response.text,
            ) from exc

        token = data.get("access_token")
        if not token:
            # GitHub reports bad or reused codes with 200 and an error field.
            raise GitHubAPIError(
                f"GitHub did not return an access token: {data.get('error_description') or data.get('error')}",
                response.status_code,
                data,
            )
        return token

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance owns it."""

        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


class GitHubClient:
    """GitHub REST helper for the repository operations fixbot needs.

    ``token`` may be None, in which case requests are unauthenticated and
    subject to the anonymous rate limit.
    """

    def __init__(
        self,
        *,
        base_url: str,
        token: str | None = None,
        timeout: float = 10.0,
        user_agent: str = "fixbot/1.0",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._user_agent = user_agent
        self._token = token
        self._client = client or httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers={
                "User-Agent": self._user_agent,
                "Accept": DEFAULT_ACCEPT_HEADER,
                "X-GitHub-Api-Version": DEFAULT_API_VERSION,
            },
        )
        self._owns_client = client is None

    @property
    def has_credential(self) -> bool:
        return bool(self._token)

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": DEFAULT_ACCEPT_HEADER,
            "X-GitHub-Api-Version": DEFAULT_API_VERSION,
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: Dict[str, Any] | None = None,
        json: Any | None = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(
                method, url, headers=self._headers(), params=params, json=json
            )
        except httpx.HTTPError as exc:
            raise TransportError(f"GitHub API request to {url} failed: {exc}") from exc

        if response.status_code >= 400:
            error_cls = GitHubNotFoundError if response.status_code == 404 else GitHubAPIError
            raise error_cls(
                f"GitHub API request to {url} failed with status {response.status_code}.",
                response.status_code,
                _response_detail(response),
            )
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            raise GitHubAPIError(
                f"GitHub API returned invalid JSON for {response.request.url}.",
                response.status_code,
                response.text,
            ) from exc
        if not isinstance(data, dict):
            raise GitHubAPIError(
                f"Unexpected response body for {response.request.url}.",
                response.status_code,
                data,
            )
        return data

    @staticmethod
    def _repo_path(owner: str, repo: str) -> str:
        return f"/repos/{quote(owner, safe='')}/{quote(repo, safe='')}"

    async def get_commit(self, owner: str, repo: str, ref: str) -> Dict[str, Any]:
        response = await self._request(
            "GET", f"{self._repo_path(owner, repo)}/commits/{quote(ref, safe='/')}"
        )
        return self._json(response)

    async def get_tree(
        self, owner: str, repo: str, sha: str, *, recursive: bool = True
    ) -> Dict[str, Any]:
        params = {"recursive": "1"} if recursive else None
        response = await self._request(
            "GET", f"{self._repo_path(owner, repo)}/git/trees/{sha}", params=params
        )
        return self._json(response)

    async def get_blob(self, owner: str, repo: str, sha: str) -> Dict[str, Any]:
        response = await self._request("GET", f"{self._repo_path(owner, repo)}/git/blobs/{sha}")
        return self._json(response)

    async def get_authenticated_user(self) -> Dict[str, Any]:
        response = await self._request("GET", "/user")
        return self._json(response)

    async def get_repository(self, owner: str, repo: str) -> Dict[str, Any]:
        response = await self._request("GET", self._repo_path(owner, repo))
        return self._json(response)

    async def is_collaborator(self, owner: str, repo: str, user: str) -> bool:
        """True when ``user`` is listed as a collaborator of ``owner/repo``.

        GitHub answers 403 instead of 404 when the caller lacks push access.
        """

        try:
            await self._request(
                "GET", f"{self._repo_path(owner, repo)}/collaborators/{quote(user, safe='')}"
            )
        except GitHubNotFoundError:
            return False
        except GitHubAPIError as exc:
            if exc.status_code == 403:
                return False
            raise
        return True

    async def create_fork(self, owner: str, repo: str) -> Dict[str, Any]:
        response = await self._request("POST", f"{self._repo_path(owner, repo)}/forks")
        return self._json(response)

    async def get_ref(self, owner: str, repo: str, ref: str) -> Dict[str, Any]:
        """Fetch a reference such as ``heads/main``."""

        response = await self._request(
            "GET", f"{self._repo_path(owner, repo)}/git/ref/{quote(ref, safe='/')}"
        )
        return self._json(response)

    async def create_ref(self, owner: str, repo: str, ref: str, sha: str) -> Dict[str, Any]:
        """Create ``refs/<ref>`` pointing at ``sha``."""

        response = await self._request(
            "POST",
            f"{self._repo_path(owner, repo)}/git/refs",
            json={"ref": f"refs/{ref}", "sha": sha},
        )
        return self._json(response)

    async def update_file(
        self,
        owner: str,
        repo: str,
        path: str,
        *,
        content: bytes,
        message: str,
        sha: str,
        branch: str,
        author_name: str,
        author_email: str,
    ) -> Dict[str, Any]:
        """Commit new ``content`` for ``path`` on ``branch``.

        ``sha`` is the blob the file is expected to have before the update;
        GitHub rejects the write when the file has changed since.
        """

        payload: Dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content).decode("ascii"),
            "sha": sha,
            "branch": branch,
            "author": {
                "name": author_name,
                "email": author_email,
                "date": datetime.now(timezone.utc).isoformat(timespec="seconds"),
            },
        }
        response = await self._request(
            "PUT",
            f"{self._repo_path(owner, repo)}/contents/{quote(path, safe='/')}",
            json=payload,
        )
        return self._json(response)

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
