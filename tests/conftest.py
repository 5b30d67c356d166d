"""Root pytest configuration for all tests.

Provides workspace fixtures shared by unit and integration tests.
"""

import logging

import pytest

from content_sync.local_state.index_store import IndexStore
from tests.helpers.fake_remote import FakeContentAPI, FakeMediaAPI, RemoteClock, create_mock_authenticator
from tests.helpers.workspace import init_workspace

# Keep watchdog's observer threads quiet in test output
logging.getLogger("watchdog").setLevel(logging.WARNING)


@pytest.fixture(autouse=True)
def isolated_credentials(monkeypatch, tmp_path):
    """Keep real CONTENT_SYNC_* variables and .env files out of tests."""
    monkeypatch.delenv("CONTENT_SYNC_URL", raising=False)
    monkeypatch.delenv("CONTENT_SYNC_TOKEN", raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def workspace(tmp_path):
    """Initialized workspace root with empty content and media folders."""
    root = tmp_path / "site"
    root.mkdir()
    return init_workspace(root)


@pytest.fixture
def store(workspace):
    """IndexStore of the workspace."""
    return IndexStore(workspace)


@pytest.fixture
def authenticator():
    return create_mock_authenticator()


@pytest.fixture
def remote_clock():
    return RemoteClock()


@pytest.fixture
def content_api(authenticator, remote_clock):
    return FakeContentAPI(authenticator, remote_clock)


@pytest.fixture
def media_api(authenticator):
    return FakeMediaAPI(authenticator)
