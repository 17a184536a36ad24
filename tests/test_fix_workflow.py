import asyncio
import hashlib

import pytest

from fixbot.errors import AuthRequiredError, NotFoundError, NotFixableError
from fixbot.models.findings import Finding, FindingKind
from fixbot.services.fix_workflow import (
    CommitAuthor,
    CommitBatchError,
    FixWorkflow,
    WorkflowState,
    branch_name,
)
from fixbot.sessions import SessionNotFoundError, SessionStore
from fixbot.sessions.models import Session
from tests.fakes import BROKEN, FORMATTED, NEEDS_FORMAT, WEB_BASE, FakeGitHub, blob_sha, make_client

OTHER = b"y=2\n"


class RecordingSleep:
    def __init__(self) -> None:
        self.calls = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _format_finding(path, content):
    return Finding(
        kind=FindingKind.FORMAT,
        file_path=path,
        line=0,
        message="This file needs formatting with black.",
        blob_id=blob_sha(content),
        fixable=True,
    )


def _anchor(path):
    return "#diff-" + hashlib.sha256(path.encode()).hexdigest()


def _setup(owner="faker", collaborators=None, fork_hidden_polls=0, token="user-token"):
    fake = FakeGitHub(fork_hidden_polls=fork_hidden_polls)
    fake.add_repo(owner, "proj", {"a.py": NEEDS_FORMAT, "b.py": OTHER}, collaborators=collaborators)
    store = SessionStore()
    key = store.put(
        Session(
            owner=owner,
            repo="proj",
            findings=[_format_finding("a.py", NEEDS_FORMAT), _format_finding("b.py", OTHER)],
        )
    )
    sleep = RecordingSleep()
    workflow = FixWorkflow(
        make_client(fake, token=token),
        store,
        web_base_url=WEB_BASE,
        author=CommitAuthor(name="fixbot", email="fixbot@example.test"),
        sleep=sleep,
    )
    return fake, store, key, workflow, sleep


def test_branch_name():
    assert branch_name("alice") == "fixbranch-alice"


def test_owner_commits_to_branch_in_original_repository():
    fake, store, key, workflow, sleep = _setup(owner="alice")

    outcome = asyncio.run(workflow.run(key))

    assert workflow.state is WorkflowState.DONE
    assert outcome.target.owner == "alice"
    assert not outcome.target.is_fork
    assert outcome.compare_urls == [
        f"{WEB_BASE}/alice/proj/compare/fixbranch-alice?expand=1{_anchor('a.py')}",
        f"{WEB_BASE}/alice/proj/compare/fixbranch-alice?expand=1{_anchor('b.py')}",
    ]
    assert [(c.owner, c.path, c.branch) for c in fake.commits] == [
        ("alice", "a.py", "fixbranch-alice"),
        ("alice", "b.py", "fixbranch-alice"),
    ]
    assert fake.commits[0].content == FORMATTED
    assert fake.commits[1].content == b"y = 2\n"
    assert fake.commits[0].message == "fixbot: format"
    assert fake.commits[0].author["email"] == "fixbot@example.test"
    assert fake.calls("POST", r"/forks$") == []
    assert sleep.calls == []


def test_session_is_consumed_on_success():
    fake, store, key, workflow, sleep = _setup(owner="alice")

    asyncio.run(workflow.run(key))

    assert store.pending() == 0
    with pytest.raises(SessionNotFoundError):
        store.get(key)


def test_collaborator_commits_to_original_repository():
    fake, store, key, workflow, sleep = _setup(collaborators={"alice"})

    outcome = asyncio.run(workflow.run(key))

    assert outcome.target.owner == "faker"
    assert outcome.compare_urls[0] == f"{WEB_BASE}/faker/proj/compare/fixbranch-alice?expand=1{_anchor('a.py')}"
    assert {c.owner for c in fake.commits} == {"faker"}


def test_outsider_commits_to_fork():
    fake, store, key, workflow, sleep = _setup(fork_hidden_polls=2)

    outcome = asyncio.run(workflow.run(key))

    assert outcome.target.is_fork
    assert (outcome.target.owner, outcome.target.repo) == ("alice", "proj")
    assert sleep.calls == [0.05, 0.1, 0.2]
    assert outcome.compare_urls == [
        f"{WEB_BASE}/alice/proj/compare/faker:master...alice:fixbranch-alice?expand=1{_anchor('a.py')}",
        f"{WEB_BASE}/alice/proj/compare/faker:master...alice:fixbranch-alice?expand=1{_anchor('b.py')}",
    ]
    assert {(c.owner, c.branch) for c in fake.commits} == {("alice", "fixbranch-alice")}


def test_fork_polling_gives_up_after_limit():
    fake, store, key, workflow, sleep = _setup(fork_hidden_polls=1000)

    with pytest.raises(NotFoundError):
        asyncio.run(workflow.run(key))

    assert sum(sleep.calls) == pytest.approx(5.0)
    assert sleep.calls[:3] == [0.05, 0.1, 0.2]
    assert workflow.state is WorkflowState.FAILED
    assert fake.commits == []


def test_existing_branch_is_reused():
    fake, store, key, workflow, sleep = _setup(owner="alice")
    repo = fake.repos[("alice", "proj")]
    repo.refs["heads/fixbranch-alice"] = repo.commit
    repo.branch_files["fixbranch-alice"] = dict(repo.files)

    outcome = asyncio.run(workflow.run(key))

    assert len(outcome.compare_urls) == 2
    assert fake.calls("POST", r"/git/refs$") == []


def test_missing_credential_requires_auth():
    fake, store, key, workflow, sleep = _setup(token=None)

    with pytest.raises(AuthRequiredError):
        asyncio.run(workflow.run(key))

    assert workflow.state is WorkflowState.FAILED
    assert store.pending() == 1


def test_rejected_credential_requires_auth():
    fake, store, key, workflow, sleep = _setup(token="revoked")

    with pytest.raises(AuthRequiredError):
        asyncio.run(workflow.run(key))


def test_unknown_session_fails():
    fake, store, key, workflow, sleep = _setup()

    with pytest.raises(SessionNotFoundError):
        asyncio.run(workflow.run("feedfacefeedface"))

    assert workflow.state is WorkflowState.FAILED


def test_stale_upstream_fails_batch_and_keeps_earlier_commits():
    fake, store, key, workflow, sleep = _setup(owner="alice")
    repo = fake.repos[("alice", "proj")]
    # b.py changes upstream after the scan, before the branch is created.
    repo.files["b.py"] = fake.add_blob(b"y = 3\n")

    with pytest.raises(CommitBatchError) as excinfo:
        asyncio.run(workflow.run(key))

    error = excinfo.value
    assert error.finding.file_path == "b.py"
    assert error.compare_urls == [f"{WEB_BASE}/alice/proj/compare/fixbranch-alice?expand=1{_anchor('a.py')}"]
    assert [c.path for c in fake.commits] == ["a.py"]
    assert workflow.state is WorkflowState.FAILED
    assert store.pending() == 1


def test_non_fixable_finding_fails_batch():
    fake = FakeGitHub()
    fake.add_repo("alice", "proj", {"a.py": NEEDS_FORMAT})
    store = SessionStore()
    finding = Finding(kind=FindingKind.ADVISORY, file_path="a.py", line=1, message="unused import")
    key = store.put(Session(owner="alice", repo="proj", findings=[finding]))
    workflow = FixWorkflow(make_client(fake, token="user-token"), store, web_base_url=WEB_BASE)

    with pytest.raises(CommitBatchError) as excinfo:
        asyncio.run(workflow.run(key))

    assert isinstance(excinfo.value.__cause__, NotFixableError)
    assert excinfo.value.compare_urls == []
    assert fake.commits == []


def test_outsider_is_not_reported_as_collaborator():
    fake, store, key, workflow, sleep = _setup()
    client = make_client(fake, token="user-token")

    assert asyncio.run(client.is_collaborator("faker", "proj", "alice")) is False
    assert fake.calls("GET", r"/collaborators/alice$")


def test_unparsable_file_fails_batch_after_earlier_commits():
    fake = FakeGitHub()
    fake.add_repo("alice", "proj", {"a.py": NEEDS_FORMAT, "c.py": BROKEN})
    store = SessionStore()
    key = store.put(
        Session(
            owner="alice",
            repo="proj",
            findings=[_format_finding("a.py", NEEDS_FORMAT), _format_finding("c.py", BROKEN)],
        )
    )
    workflow = FixWorkflow(make_client(fake, token="user-token"), store, web_base_url=WEB_BASE)

    with pytest.raises(CommitBatchError) as excinfo:
        asyncio.run(workflow.run(key))

    error = excinfo.value
    assert error.finding.file_path == "c.py"
    assert isinstance(error.__cause__, NotFixableError)
    assert error.compare_urls == [f"{WEB_BASE}/alice/proj/compare/fixbranch-alice?expand=1{_anchor('a.py')}"]
    assert [c.path for c in fake.commits] == ["a.py"]


def test_already_formatted_file_is_not_committed():
    fake = FakeGitHub()
    fake.add_repo("alice", "proj", {"a.py": NEEDS_FORMAT, "b.py": FORMATTED})
    store = SessionStore()
    key = store.put(
        Session(
            owner="alice",
            repo="proj",
            findings=[_format_finding("a.py", NEEDS_FORMAT), _format_finding("b.py", FORMATTED)],
        )
    )
    workflow = FixWorkflow(make_client(fake, token="user-token"), store, web_base_url=WEB_BASE)

    outcome = asyncio.run(workflow.run(key))

    assert outcome.compare_urls == [f"{WEB_BASE}/alice/proj/compare/fixbranch-alice?expand=1{_anchor('a.py')}"]
    assert [c.path for c in fake.commits] == ["a.py"]
