from datetime import datetime

import pytest

import eventsync.db as db_module
from eventsync.models import NormalisedEvent, Venue


class RecordingNotifier:
    """Notifier that remembers what it was asked to send."""

    def __init__(self):
        self.new_events = []
        self.changes = []

    def notify_new_event(self, record):
        self.new_events.append(record)
        return 1

    def notify_record_changed(self, record, changes):
        self.changes.append((record, changes))
        return 1


@pytest.fixture
def conn():
    connection = db_module.connect(":memory:")
    yield connection
    connection.close()


@pytest.fixture
def store(conn):
    return db_module.EventStore(conn)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_event():
    def _make(
        title="Jazz Night",
        venue="The Forum",
        start=datetime(2025, 3, 1, 20, 0),
        source="ticketmaster",
        source_id="tm-1",
        **kwargs,
    ) -> NormalisedEvent:
        kwargs.setdefault("description", "An evening of jazz standards.")
        kwargs.setdefault("category", "music")
        kwargs.setdefault("booking_url", f"https://example.com/{source}/{source_id}")
        return NormalisedEvent(
            title=title,
            venue=Venue(venue),
            start_date=start,
            source=source,
            source_id=source_id,
            **kwargs,
        )
    return _make


@pytest.fixture
def clean_env(monkeypatch):
    """Remove eventsync's environment variables for the test and restore them after."""
    for name in ("TICKETMASTER_API_KEY", "EVENTSYNC_WEBHOOK_URL"):
        # setenv first so teardown also removes anything the test itself sets
        monkeypatch.setenv(name, "unset")
        monkeypatch.delenv(name)
    return monkeypatch
