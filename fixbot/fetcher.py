"""Read-only access to a repository snapshot."""

from __future__ import annotations

import base64
import binascii
from typing import Any, Dict, List

from fixbot.errors import EncodingError, IncompleteTreeError, NotFoundError, TransportError
from fixbot.github_client import GitHubAPIError, GitHubClient
from fixbot.logger import get_logger, log_with_context
from fixbot.models.findings import TreeEntry

logger = get_logger()


def _tree_entry(raw: Dict[str, Any]) -> TreeEntry | None:
    if raw.get("type", "blob") != "blob":
        return None
    path, sha, size = raw.get("path"), raw.get("sha"), raw.get("size")
    if not path or not sha or size is None:
        return None
    try:
        return TreeEntry(path=path, content_id=sha, size=int(size))
    except (TypeError, ValueError):
        return None


class ContentFetcher:
    """Resolves revisions, lists trees and reads blobs of one repository."""

    def __init__(self, client: GitHubClient, owner: str, repo: str) -> None:
        self._client = client
        self.owner = owner
        self.repo = repo

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    async def resolve(self, revision: str) -> str:
        """Resolve a branch, tag or commit name to its commit SHA."""

        try:
            commit = await self._client.get_commit(self.owner, self.repo, revision)
        except GitHubAPIError as exc:
            # GitHub answers 422 for names that match no commit.
            if exc.status_code == 422:
                raise NotFoundError(f"{self.full_name}: no commit found for {revision!r}") from exc
            raise
        sha = commit.get("sha")
        if not sha:
            raise TransportError(f"{self.full_name}: commit for {revision!r} has no sha")
        return sha

    async def list_tree(self, commit_id: str) -> List[TreeEntry]:
        """Return every file in the tree of ``commit_id``, recursively."""

        ctx_logger = log_with_context(logger, repository=self.full_name)
        tree = await self._client.get_tree(self.owner, self.repo, commit_id, recursive=True)
        if tree.get("truncated"):
            raise IncompleteTreeError(
                f"{self.full_name}: tree {commit_id} is too large to list recursively"
            )

        raw_entries = tree.get("tree") or []
        entries: List[TreeEntry] = []
        dropped = 0
        for raw in raw_entries:
            entry = _tree_entry(raw) if isinstance(raw, dict) else None
            if entry is None:
                dropped += 1
                continue
            entries.append(entry)
        if dropped:
            ctx_logger.debug(f"Dropped {dropped} non-file or malformed tree entries")
        return entries

    async def read_blob(self, blob_id: str) -> bytes:
        """Fetch and decode the content of blob ``blob_id``."""

        blob = await self._client.get_blob(self.owner, self.repo, blob_id)
        encoding = blob.get("encoding")
        content = blob.get("content") or ""
        if encoding != "base64":
            raise EncodingError(f"unknown blob encoding {encoding!r} for blob {blob_id}")
        try:
            return base64.b64decode(content)
        except (binascii.Error, ValueError) as exc:
            raise EncodingError(f"blob {blob_id} is not valid base64: {exc}") from exc
