from pathlib import Path

import pytest

from reminderlink import helpers
from reminderlink.reminders.store import COMPANION_KEY, PRIMARY_KEY, SQLiteStore
from reminderlink.sync.endpoint import COMPANION, PRIMARY, SyncEndpoint
from reminderlink.transport.loopback import LoopbackLink


@pytest.fixture
def data_dir(tmp_path, monkeypatch) -> Path:
    monkeypatch.setattr(helpers, 'DATA_LOCATION', tmp_path)
    return tmp_path


@pytest.fixture
def link(tmp_path):
    link = LoopbackLink(db_path=tmp_path / 'link.db')
    yield link
    link.close()


@pytest.fixture
def pair(tmp_path, link):
    """
    A primary and a companion joined by ``link``, neither of them activated yet.
    """
    db_path = tmp_path / 'link.db'
    primary = SyncEndpoint(SQLiteStore(PRIMARY_KEY, db_path), link.end(PRIMARY), PRIMARY, request_timeout=2.0)
    companion = SyncEndpoint(SQLiteStore(COMPANION_KEY, db_path), link.end(COMPANION), COMPANION,
                             request_timeout=2.0)
    yield primary, companion
    primary.close()
    companion.close()
