import os
import sys

import pytest


# Allow running pytest from either the repo root or from within `posagent/`.
# Tests import `posagent.*`, which requires the repo root on sys.path.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from posagent.app.connectivity import ConnectivityMonitor  # noqa: E402
from posagent.app.db import LocalStore  # noqa: E402
from posagent.app.outbox import Outbox  # noqa: E402
from posagent.tests.fakes import FakeApi  # noqa: E402


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "pos.sqlite")


@pytest.fixture
def store(db_path):
    s = LocalStore(db_path)
    s.init()
    yield s
    s.close()


@pytest.fixture
def outbox(store):
    return Outbox(store)


@pytest.fixture
def api():
    return FakeApi()


@pytest.fixture
def monitor(api):
    return ConnectivityMonitor(api, initially_online=True)
