import os
import tempfile

import pytest

# Keep log files out of the package tree; must happen before fixbot is imported.
os.environ.setdefault("APP_LOG_DIR", tempfile.mkdtemp(prefix="fixbot-test-logs"))
os.environ.setdefault("APP_LOG_LEVEL", "WARNING")


@pytest.fixture
def fake_github():
    from tests.fakes import FakeGitHub

    return FakeGitHub()


@pytest.fixture
def sample_repo(fake_github):
    from tests.fakes import BROKEN, CLEAN, NEEDS_FORMAT

    return fake_github.add_repo(
        "faker",
        "proj",
        {
            "a.py": NEEDS_FORMAT,
            "b.py": CLEAN,
            "c.py": BROKEN,
            "README.md": b"# proj\n",
        },
    )
