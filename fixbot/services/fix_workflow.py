"""Branch, fork and commit workflow for a pending fix session."""

from __future__ import annotations

import asyncio
import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List

from fixbot.errors import AuthRequiredError, FixbotError, NoWriteAccessError, NotFoundError
from fixbot.fetcher import ContentFetcher
from fixbot.github_client import GitHubAPIError, GitHubClient
from fixbot.logger import get_logger, log_failure, log_success, log_with_context
from fixbot.models.findings import Finding
from fixbot.services.fix_planner import FixPlanner
from fixbot.sessions import SessionStore
from fixbot.sessions.models import Session

logger = get_logger()

BRANCH_PREFIX = "fixbranch-"
FALLBACK_BASE_BRANCH = "master"
FORK_POLL_INITIAL_SECONDS = 0.05
FORK_POLL_LIMIT_SECONDS = 5.0


class WorkflowState(str, Enum):
    UNINITIALIZED = "uninitialized"
    USER_RESOLVED = "user_resolved"
    TARGET_RESOLVED = "target_resolved"
    BRANCH_ENSURED = "branch_ensured"
    COMMITTING = "committing"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class CommitAuthor:
    name: str = "fixbot"
    email: str = "fixbot@users.noreply.github.com"


@dataclass(frozen=True, slots=True)
class WorkingTarget:
    owner: str
    repo: str
    branch: str
    base_branch: str = FALLBACK_BASE_BRANCH
    is_fork: bool = False


@dataclass(slots=True)
class FixOutcome:
    target: WorkingTarget
    compare_urls: List[str] = field(default_factory=list)


class CommitBatchError(FixbotError):
    """Raised when a fix in a batch fails; earlier commits are kept."""

    def __init__(self, message: str, *, compare_urls: List[str], finding: Finding):
        super().__init__(message)
        self.compare_urls = list(compare_urls)
        self.finding = finding


def branch_name(user: str) -> str:
    return f"{BRANCH_PREFIX}{user}"


def _check_write_access(exc: GitHubAPIError, action: str) -> None:
    if exc.status_code == 403:
        raise NoWriteAccessError(f"{action}: permission denied ({exc})") from exc


class FixWorkflow:
    """Applies the findings of one session to a branch the user can write to.

    ``run`` walks UNINITIALIZED -> USER_RESOLVED -> TARGET_RESOLVED ->
    BRANCH_ENSURED -> COMMITTING -> DONE; any error moves to FAILED and is
    re-raised.
    """

    def __init__(
        self,
        github: GitHubClient,
        store: SessionStore,
        *,
        web_base_url: str = "https://github.com",
        author: CommitAuthor | None = None,
        planner_factory: Callable[[ContentFetcher], FixPlanner] = FixPlanner,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        fork_poll_initial: float = FORK_POLL_INITIAL_SECONDS,
        fork_poll_limit: float = FORK_POLL_LIMIT_SECONDS,
    ) -> None:
        self._github = github
        self._store = store
        self._web_base_url = web_base_url.rstrip("/")
        self._author = author or CommitAuthor()
        self._planner_factory = planner_factory
        self._sleep = sleep
        self._fork_poll_initial = fork_poll_initial
        self._fork_poll_limit = fork_poll_limit

        self.state = WorkflowState.UNINITIALIZED
        self.failure_reason: str | None = None
        self.user: str | None = None
        self.target: WorkingTarget | None = None

    def _transition(self, state: WorkflowState) -> None:
        logger.debug(f"Fix workflow {self.state.value} -> {state.value}")
        self.state = state

    async def run(self, key: str) -> FixOutcome:
        ctx_logger = log_with_context(logger, session=key)
        try:
            session = self._store.get(key)
            ctx_logger = log_with_context(ctx_logger, repository=session.full_name)
            ctx_logger.info(f"Applying {len(session.findings)} fix(es)")

            self.user = await self._resolve_user()
            self._transition(WorkflowState.USER_RESOLVED)

            self.target = await self._resolve_target(session, self.user)
            self._transition(WorkflowState.TARGET_RESOLVED)

            self.target = await self._ensure_branch(self.target)
            self._transition(WorkflowState.BRANCH_ENSURED)

            self._transition(WorkflowState.COMMITTING)
            compare_urls = await self._commit_all(session, self.target)
        except Exception as exc:
            self.failure_reason = str(exc)
            self._transition(WorkflowState.FAILED)
            log_failure(logger, "Fix workflow failed", exc, session=key)
            raise

        self._store.remove(key)
        self._transition(WorkflowState.DONE)
        log_success(
            logger,
            f"Committed {len(compare_urls)} fix(es) to {self.target.owner}/{self.target.repo}@{self.target.branch}",
            session=key,
            repository=session.full_name,
        )
        return FixOutcome(target=self.target, compare_urls=compare_urls)

    async def _resolve_user(self) -> str:
        if not self._github.has_credential:
            raise AuthRequiredError("no authenticated user")
        try:
            user = await self._github.get_authenticated_user()
        except GitHubAPIError as exc:
            if exc.status_code == 401:
                raise AuthRequiredError(f"credential rejected: {exc}") from exc
            raise
        login = user.get("login")
        if not login:
            raise AuthRequiredError("no github login info")
        return login

    async def _resolve_target(self, session: Session, user: str) -> WorkingTarget:
        branch = branch_name(user)
        # Owners and collaborators work on branches in the original repository.
        if user == session.owner or await self._github.is_collaborator(session.owner, session.repo, user):
            return WorkingTarget(owner=session.owner, repo=session.repo, branch=branch)

        # No permission, fork for the authenticated user.
        try:
            fork = await self._github.create_fork(session.owner, session.repo)
        except GitHubAPIError as exc:
            _check_write_access(exc, f"forking {session.full_name}")
            raise
        fork_name = fork.get("name")
        if not fork_name:
            raise GitHubAPIError(f"fork of {session.full_name} returned no name", 0, fork)
        fork_owner = (fork.get("owner") or {}).get("login") or user

        await self._wait_for_repository(fork_owner, fork_name)
        return WorkingTarget(owner=fork_owner, repo=fork_name, branch=branch, is_fork=True)

    async def _wait_for_repository(self, owner: str, repo: str) -> bool:
        # Forks are created asynchronously, so spin for a while until it appears.
        wait = self._fork_poll_initial
        waited = 0.0
        while waited < self._fork_poll_limit:
            wait = min(wait, self._fork_poll_limit - waited)
            await self._sleep(wait)
            waited += wait
            try:
                await self._github.get_repository(owner, repo)
                return True
            except FixbotError as exc:
                logger.debug(f"Fork {owner}/{repo} not visible yet: {exc}")
            wait *= 2
        logger.warning(f"Fork {owner}/{repo} still not visible; continuing anyway")
        return False

    async def _ensure_branch(self, target: WorkingTarget) -> WorkingTarget:
        repository = await self._github.get_repository(target.owner, target.repo)
        base_branch = repository.get("default_branch") or FALLBACK_BASE_BRANCH
        target = WorkingTarget(
            owner=target.owner,
            repo=target.repo,
            branch=target.branch,
            base_branch=base_branch,
            is_fork=target.is_fork,
        )

        ref = f"heads/{target.branch}"
        try:
            await self._github.get_ref(target.owner, target.repo, ref)
            logger.debug(f"Reusing branch {target.branch} in {target.owner}/{target.repo}")
            return target
        except NotFoundError:
            pass

        base = await self._github.get_ref(target.owner, target.repo, f"heads/{base_branch}")
        base_sha = (base.get("object") or {}).get("sha")
        if not base_sha:
            raise GitHubAPIError(f"branch {base_branch} of {target.owner}/{target.repo} has no sha", 0, base)
        logger.info(f"Creating branch {target.branch} in {target.owner}/{target.repo} from {base_branch}")
        try:
            await self._github.create_ref(target.owner, target.repo, ref, base_sha)
        except GitHubAPIError as exc:
            _check_write_access(exc, f"creating branch {target.branch}")
            raise
        return target

    async def _commit_all(self, session: Session, target: WorkingTarget) -> List[str]:
        planner = self._planner_factory(ContentFetcher(self._github, session.owner, session.repo))
        compare_urls: List[str] = []
        for finding in session.findings:
            try:
                fix = await planner.plan(finding)
                if not fix.changed:
                    logger.debug(f"{finding.file_path} is already fixed upstream; nothing to commit")
                    continue
                try:
                    await self._github.update_file(
                        target.owner,
                        target.repo,
                        finding.file_path,
                        content=fix.replacement,
                        message=f"fixbot: {finding.kind.value}",
                        sha=finding.blob_id,
                        branch=target.branch,
                        author_name=self._author.name,
                        author_email=self._author.email,
                    )
                except GitHubAPIError as exc:
                    _check_write_access(exc, f"committing {finding.file_path}")
                    raise
            except FixbotError as exc:
                raise CommitBatchError(
                    f"fixing {finding.file_path} failed after {len(compare_urls)} commit(s): {exc}",
                    compare_urls=compare_urls,
                    finding=finding,
                ) from exc
            compare_urls.append(self.compare_url(session, target, finding.file_path))
        return compare_urls

    def compare_url(self, session: Session, target: WorkingTarget, path: str) -> str:
        """Return the page comparing ``target.branch`` with the base branch."""

        anchor = "diff-" + hashlib.sha256(path.encode("utf-8")).hexdigest()
        if not target.is_fork:
            return (
                f"{self._web_base_url}/{target.owner}/{target.repo}/compare/"
                f"{target.branch}?expand=1#{anchor}"
            )
        return (
            f"{self._web_base_url}/{target.owner}/{target.repo}/compare/"
            f"{session.owner}:{target.base_branch}...{target.owner}:{target.branch}?expand=1#{anchor}"
        )
