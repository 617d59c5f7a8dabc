from dataclasses import replace
from datetime import datetime, timedelta

from eventsync.changes import detect_changes, diff_fields
from eventsync.models import CanonicalEventRecord

NOW = datetime(2025, 1, 1)


def _pair(make_event, **changes):
    event = make_event()
    stored = CanonicalEventRecord.from_event(event, NOW)
    return stored, replace(stored, **changes), event


def test_no_differences(make_event):
    stored, proposed, event = _pair(make_event)
    changes = detect_changes(stored, proposed, event)
    assert not changes.has_changes
    assert not changes.should_notify


def test_start_within_an_hour_is_unchanged(make_event):
    stored, proposed, _ = _pair(make_event)
    proposed.start_date = stored.start_date + timedelta(minutes=45)
    assert diff_fields(stored, proposed) == ([], [])

    proposed.start_date = stored.start_date + timedelta(hours=2)
    assert diff_fields(stored, proposed) == (["start_date"], [])


def test_list_order_is_ignored(make_event):
    stored, proposed, _ = _pair(make_event, subcategories=["A", "B"])
    stored.subcategories = ["B", "A"]
    assert diff_fields(stored, proposed) == ([], [])


def test_technical_change_is_not_content(make_event):
    stored, proposed, event = _pair(make_event, booking_url="https://example.com/new")
    changes = detect_changes(stored, proposed, event)
    assert changes.has_changes
    assert not changes.has_content_changes
    assert changes.changed_fields == ["booking_url"]


def test_price_drop(make_event):
    stored, proposed, event = _pair(make_event, price_min=42.5)
    stored.price_min = 50.0
    changes = detect_changes(stored, proposed, event)
    assert changes.price_dropped
    assert changes.price_drop == 7.5
    assert changes.should_notify


def test_small_price_change_is_not_significant(make_event):
    stored, proposed, event = _pair(make_event, price_min=47.0)
    stored.price_min = 50.0
    changes = detect_changes(stored, proposed, event)
    assert changes.has_content_changes
    assert not changes.price_dropped
    assert not changes.should_notify


def test_price_increase_and_first_price(make_event):
    stored, proposed, event = _pair(make_event, price_min=60.0)
    stored.price_min = 50.0
    assert detect_changes(stored, proposed, event).significant_update == "Price increased by $10.00"

    stored.price_min = None
    assert detect_changes(stored, proposed, event).significant_update == "Price now available: $60.00"


def test_status_keyword_in_new_description(make_event):
    stored, proposed, _ = _pair(make_event)
    incoming = make_event(description="This performance has been CANCELLED.")
    proposed.description = incoming.description
    changes = detect_changes(stored, proposed, incoming)
    assert changes.significant_update == "Event status: cancelled"


def test_status_keyword_already_present_is_not_news(make_event):
    stored, proposed, _ = _pair(make_event)
    stored.description = "Sold out! Extra dates coming."
    incoming = make_event(description="Sold out! Extra dates announced soon.")
    assert detect_changes(stored, proposed, incoming).significant_update is None
