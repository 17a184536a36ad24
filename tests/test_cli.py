import json

import pytest

from fixbot import cli
from fixbot.config import reset_settings_cache
from fixbot.errors import NotFoundError
from fixbot.models.findings import Finding, FindingKind, ScanReport


@pytest.fixture
def settings_env(monkeypatch, tmp_path):
    monkeypatch.setenv("GITHUB_ACCESS_TOKEN", "env-token")
    monkeypatch.delenv("FETCH_PARALLELISM", raising=False)
    reset_settings_cache()
    yield monkeypatch
    reset_settings_cache()


def _report():
    return ScanReport(
        owner="faker",
        repo="proj",
        revision="master",
        commit_id="c0ffee",
        files_checked=2,
        findings=[
            Finding(FindingKind.FORMAT, "a.py", 0, "This file needs formatting with black.", "b1", True),
            Finding(FindingKind.ADVISORY, "b.py", 3, "'os' imported but unused"),
        ],
    )


def test_split_repository():
    assert cli._split_repository("faker/proj") == ("faker", "proj")
    for bad in ("faker", "faker/", "a/b/c"):
        with pytest.raises(ValueError):
            cli._split_repository(bad)


def test_main_prints_findings(settings_env, capsys):
    calls = {}

    async def fake_run_check(owner, repo, **kwargs):
        calls.update(owner=owner, repo=repo, **kwargs)
        return _report()

    settings_env.setattr(cli, "run_check", fake_run_check)

    assert cli.main(["faker/proj", "--rev", "v1", "--parallelism", "3"]) == 0

    out = capsys.readouterr().out.splitlines()
    assert out == ["a.py: This file needs formatting with black.", "b.py:3: 'os' imported but unused"]
    assert calls["revision"] == "v1"
    assert calls["token"] == "env-token"
    assert calls["options"].parallelism == 3


def test_main_json_output(settings_env, capsys):
    async def fake_run_check(owner, repo, **kwargs):
        return _report()

    settings_env.setattr(cli, "run_check", fake_run_check)

    assert cli.main(["faker/proj", "--json"]) == 0

    lines = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
    assert lines[1] == {
        "kind": "advisory",
        "path": "b.py",
        "line": 3,
        "message": "'os' imported but unused",
        "fixable": False,
    }


def test_main_reports_scan_failure(settings_env):
    async def fake_run_check(owner, repo, **kwargs):
        raise NotFoundError("no such revision")

    settings_env.setattr(cli, "run_check", fake_run_check)

    assert cli.main(["faker/proj"]) == 1


def test_main_rejects_bad_repository(settings_env):
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["not-a-repo"])

    assert excinfo.value.code == 2
