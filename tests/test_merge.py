from datetime import datetime

import eventsync.db as db_module
from eventsync.dedup import DedupPool
from eventsync.merge import Action, MergeEngine, merge_fields, update_fields
from eventsync.models import CanonicalEventRecord, Venue

NOW = datetime(2025, 1, 1, 12, 0)


def _engine(store, notifier):
    """A fresh engine over the store's current contents, as at the start of a run."""
    return MergeEngine(store, notifier, DedupPool(store.find_all()), clock=lambda: NOW)


def test_jazz_night_scenario(store, notifier, make_event):
    tm = make_event(source="ticketmaster", source_id="tm-1")
    wo = make_event(source="whatson", source_id="wo-7")

    first = _engine(store, notifier).process(tm)
    assert first.action is Action.INSERTED
    assert first.record.sources == ["ticketmaster"]
    assert notifier.new_events == [first.record]

    again = _engine(store, notifier).process(make_event(source="ticketmaster", source_id="tm-1"))
    assert again.action is Action.SKIPPED

    merged = _engine(store, notifier).process(wo)
    assert merged.action is Action.MERGED
    assert merged.record.id == first.record.id
    assert merged.record.sources == ["ticketmaster", "whatson"]
    assert "whatson:wo-7" in merged.record.merged_from
    assert merged.record.source_ids == {"ticketmaster": "tm-1", "whatson": "wo-7"}

    stored = store.find_by_id(first.record.id)
    assert stored.sources == ["ticketmaster", "whatson"]
    assert store.count_by_filter() == 1


def test_second_run_never_inserts_same_source_id(store, notifier, make_event):
    _engine(store, notifier).process(make_event())
    outcome = _engine(store, notifier).process(make_event(description="A longer evening of jazz standards."))
    assert outcome.action is Action.UPDATED
    assert store.count_by_filter() == 1


def test_within_run_duplicate_is_merged(store, notifier, make_event):
    engine = _engine(store, notifier)
    engine.process(make_event())
    outcome = engine.process(make_event(title="The Jazz Night", venue="Forum Melbourne",
                                        source="feverup", source_id="123"))
    assert outcome.action is Action.MERGED
    assert store.count_by_filter() == 1


def test_merge_converges_regardless_of_order(notifier, make_event):
    def final_sources(order):
        store = db_module.EventStore(db_module.connect(":memory:"))
        for event in order:
            _engine(store, notifier).process(event)
        [record] = store.find_all()
        return set(record.sources)

    tm = make_event(source="ticketmaster", source_id="tm-1")
    wo = make_event(source="whatson", source_id="wo-7", start=datetime(2025, 3, 3, 19, 30))
    assert final_sources([tm, wo]) == final_sources([wo, tm]) == {"ticketmaster", "whatson"}


def test_replaying_a_batch_is_idempotent(store, notifier, make_event):
    batch = [
        make_event(source="ticketmaster", source_id="tm-1", price_min=40.0),
        make_event(source="whatson", source_id="wo-7", description="Jazz standards all night long, with guests."),
        make_event(title="Opera Gala", venue="Hamer Hall", source="whatson", source_id="opera-gala",
                   category="theatre", start=datetime(2025, 4, 2, 19, 0)),
    ]
    first = _engine(store, notifier)
    assert [first.process(e).action for e in batch] == [Action.INSERTED, Action.MERGED, Action.INSERTED]

    second = _engine(store, notifier)
    assert [second.process(e).action for e in batch] == [Action.SKIPPED] * 3


def test_price_drop_notifies_with_exact_delta(store, notifier, make_event):
    _engine(store, notifier).process(make_event(price_min=50.0, price_max=80.0))
    outcome = _engine(store, notifier).process(make_event(price_min=42.5, price_max=80.0))

    assert outcome.action is Action.UPDATED
    assert outcome.changes.price_dropped
    assert outcome.changes.price_drop == 7.5
    assert outcome.notifications == 1
    [(record, changes)] = notifier.changes
    assert record.price_min == 42.5
    assert changes is outcome.changes


def test_technical_update_keeps_content_timestamp(store, notifier, make_event):
    inserted = _engine(store, notifier).process(make_event())
    later = datetime(2025, 2, 1)
    engine = MergeEngine(store, notifier, DedupPool(store.find_all()), clock=lambda: later)

    outcome = engine.process(make_event(booking_url="https://example.com/new-link"))

    assert outcome.action is Action.UPDATED
    assert outcome.record.last_updated == later
    assert outcome.record.last_content_change == inserted.record.last_content_change
    assert outcome.notifications == 0


def test_store_conflict_is_skipped(store, notifier, make_event):
    stale = MergeEngine(store, notifier, DedupPool(), clock=lambda: NOW)
    _engine(store, notifier).process(make_event())
    # The stale pool has not seen the record, so this becomes an insert the store rejects
    outcome = stale.process(make_event(source="feverup", source_id="123"))
    assert outcome.action is Action.SKIPPED
    assert outcome.reason == "duplicate key"


def test_merge_fields_keeps_richer_values(make_event):
    record = CanonicalEventRecord.from_event(
        make_event(description="No description available", price_min=40.0, price_max=60.0), NOW,
    )
    incoming = make_event(
        source="whatson", source_id="wo-7",
        description="Three sets of standards.", category="theatre",
        price_min=30.0, price_max=55.0, price_details="Adult $30",
        start=datetime(2025, 2, 28, 20, 0), end_date=datetime(2025, 3, 4, 22, 0),
    )
    incoming.venue = Venue("The Forum Theatre", "154 Flinders St", "Melbourne")

    merged = merge_fields(record, incoming)

    assert merged.description == "Three sets of standards."
    assert merged.category == "music"
    assert "theatre" in merged.subcategories
    assert (merged.price_min, merged.price_max) == (30.0, 60.0)
    assert merged.start_date == datetime(2025, 2, 28, 20, 0)
    assert merged.end_date == datetime(2025, 3, 4, 22, 0)
    assert merged.venue == Venue("The Forum Theatre", "154 Flinders St", "Melbourne")
    assert merged.price_details == "Adult $30"
    # The stored record is untouched
    assert record.price_min == 40.0
    assert record.sources == ["ticketmaster"]


def test_update_fields_on_single_source_takes_incoming(make_event):
    record = CanonicalEventRecord.from_event(make_event(price_min=40.0, subcategory="Jazz & Blues"), NOW)
    updated = update_fields(record, make_event(price_min=None, description="Short."))
    assert updated.price_min is None
    assert updated.description == "Short."
    assert updated.subcategories == ["Jazz & Blues"]


def test_reissued_ticketmaster_id_updates_the_record(store, notifier, make_event):
    inserted = _engine(store, notifier).process(make_event(source_id="tm-1", price_min=50.0))

    outcome = _engine(store, notifier).process(make_event(source_id="tm-NEW", price_min=30.0))

    assert outcome.action is Action.UPDATED
    assert outcome.record.id == inserted.record.id
    assert outcome.changes.price_drop == 20.0
    stored = store.find_by_id(inserted.record.id)
    assert stored.price_min == 30.0
    assert stored.source_ids == {"ticketmaster": "tm-NEW"}
    assert store.find_by_key("ticketmaster", "tm-NEW").id == inserted.record.id
    assert store.count_by_filter() == 1

    # The new id is now the exact key
    again = _engine(store, notifier).process(make_event(source_id="tm-NEW", price_min=30.0))
    assert again.action is Action.SKIPPED


def test_reissued_ids_only_apply_to_ticketmaster(store, notifier, make_event):
    _engine(store, notifier).process(make_event(source="whatson", source_id="jazz-night"))
    outcome = _engine(store, notifier).process(make_event(source="whatson", source_id="jazz-night-2"))
    assert outcome.action is Action.SKIPPED
    assert outcome.reason == "duplicate key"
