"""Shared test fixtures for backend tests.

Provides a mocked TrackerClient and fresh StateStore and Broadcaster
instances so that tests never spawn the real tracker executable. Record
factories live in ``factories.py``.
"""

import sys
from unittest.mock import AsyncMock, MagicMock

import pytest

# Ensure the backend package root and this directory are on sys.path so that imports
# like ``from tracker.gateway import ...`` resolve correctly when running
# pytest from the repository root.
_tests_root = __import__("pathlib").Path(__file__).resolve().parent
for _root in (str(_tests_root.parent), str(_tests_root)):
    if _root not in sys.path:
        sys.path.insert(0, _root)

from events.broadcaster import Broadcaster  # noqa: E402
from factories import make_node  # noqa: E402
from state_store import StateStore  # noqa: E402

# ---------------------------------------------------------------------------
# Mock Tracker Client
# ---------------------------------------------------------------------------


def _make_mock_client() -> MagicMock:
    """Create a mock TrackerClient.

    All tracker operations are AsyncMock. Callers override return values
    per-test.
    """
    client = MagicMock()
    client.show = AsyncMock(side_effect=lambda issue_id: make_node(issue_id))
    client.show_many = AsyncMock(return_value={})
    client.fetch_details = AsyncMock(return_value={})
    client.list_issues = AsyncMock(return_value=[])
    client.fetch_tree_output = AsyncMock(return_value="[]")
    client.tree_records = AsyncMock(return_value=[])
    client.create_issue = AsyncMock(return_value=make_node("proj-new"))
    client.update_status = AsyncMock()
    client.close_issue = AsyncMock()
    client.add_dependency = AsyncMock()
    client.remove_dependency = AsyncMock()
    return client


@pytest.fixture()
def mock_client() -> MagicMock:
    """Return a fresh mock TrackerClient."""
    return _make_mock_client()


# ---------------------------------------------------------------------------
# Store / Broadcaster
# ---------------------------------------------------------------------------


@pytest.fixture()
def store() -> StateStore:
    return StateStore()


@pytest.fixture()
def broadcaster(store: StateStore) -> Broadcaster:
    """Return a Broadcaster that greets new subscribers from ``store``."""
    return Broadcaster(snapshot_reader=store.get)
