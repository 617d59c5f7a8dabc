"""
Merge & update engine.

Each candidate goes through one decision:

  exact (source, source_id) hit    -> Update, or Skip when nothing differs
  same listing, re-issued id       -> Update that moves the record to the new id
                                      (re-issuing sources only)
  fuzzy match on another source    -> Merge, or Skip when the source is already
                                      on the record and nothing differs
  no match                         -> Insert

Candidates must be fed one at a time from a single thread: every decision
mutates the shared DedupPool, which is what keeps a run from inserting the
same real-world event twice.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from eventsync.changes import detect_changes
from eventsync.db import RecordStore
from eventsync.dedup import DedupPool
from eventsync.errors import DuplicateKeyError
from eventsync.models import (
    CanonicalEventRecord,
    ChangeDescriptor,
    DuplicateMatch,
    NormalisedEvent,
    Venue,
)
from eventsync.normalise import DESCRIPTION_PLACEHOLDER
from eventsync.notify import Notifier

logger = logging.getLogger(__name__)


class Action(Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    MERGED = "merged"
    SKIPPED = "skipped"


@dataclass
class Outcome:
    action: Action
    record: Optional[CanonicalEventRecord] = None
    notifications: int = 0
    reason: Optional[str] = None
    changes: Optional[ChangeDescriptor] = None


# --- Field policies ---

def _union(*lists) -> list:
    out: list = []
    for values in lists:
        for v in values or ():
            if v and v not in out:
                out.append(v)
    return out


def _earliest(a: datetime, b: datetime) -> datetime:
    return a if a <= b else b


def _latest_end(a: Optional[datetime], b: Optional[datetime]) -> Optional[datetime]:
    if a and b:
        return a if a >= b else b
    return a or b


def _richer_description(current: str, incoming: str) -> str:
    current, incoming = current or "", incoming or ""
    if DESCRIPTION_PLACEHOLDER in current:
        return incoming or current
    if DESCRIPTION_PLACEHOLDER in incoming:
        return current or incoming
    return incoming if len(incoming) > len(current) else current


def _join_details(current: Optional[str], incoming: Optional[str]) -> Optional[str]:
    parts = _union((current or "").split(" | "), [incoming])
    return " | ".join(parts) or None


def _widest_range(*prices: Optional[float]) -> tuple[Optional[float], Optional[float]]:
    known = [p for p in prices if p is not None]
    if not known:
        return None, None
    return min(known), max(known)


def _merged_venue(current: Venue, incoming: Venue) -> Venue:
    return Venue(
        name=incoming.name if len(incoming.name) > len(current.name) else current.name,
        address=incoming.address if "TBA" in (current.address or "TBA") else current.address,
        suburb=current.suburb or incoming.suburb or "Melbourne",
    )


def merge_fields(record: CanonicalEventRecord, event: NormalisedEvent) -> CanonicalEventRecord:
    """Combine a record with data from another source, keeping the richer value per field."""
    category = record.category or event.category or "other"
    subcategories = _union(record.subcategories, event.all_subcategories())
    if event.category and event.category not in (category, "other") and event.category not in subcategories:
        subcategories.append(event.category)
    price_min, price_max = _widest_range(record.price_min, record.price_max, event.price_min, event.price_max)
    return replace(
        record,
        category=category,
        subcategories=subcategories,
        description=_richer_description(record.description, event.description),
        start_date=_earliest(record.start_date, event.start_date),
        end_date=_latest_end(record.end_date, event.end_date),
        venue=_merged_venue(record.venue, event.venue),
        price_min=price_min,
        price_max=price_max,
        price_details=_join_details(record.price_details, event.price_details),
        is_free=record.is_free or event.is_free,
        booking_url=record.booking_url or event.booking_url,
        image_url=record.image_url or event.image_url,
        video_url=record.video_url or event.video_url,
        accessibility=_union(record.accessibility, event.accessibility),
        age_restriction=record.age_restriction or event.age_restriction,
        duration=record.duration or event.duration,
        sources=list(record.sources),
        source_ids=dict(record.source_ids),
        booking_urls=dict(record.booking_urls),
        merged_from=list(record.merged_from),
    )


def update_fields(record: CanonicalEventRecord, event: NormalisedEvent) -> CanonicalEventRecord:
    """
    Apply a same-source re-scrape to its record.

    A record fed by one source takes the incoming values. A record that
    aggregates several sources goes through merge_fields() instead, so each
    source's re-scrape does not undo what the others contributed.
    """
    if len(set(record.sources)) > 1:
        proposed = merge_fields(record, event)
    else:
        proposed = replace(
            record,
            title=event.title,
            description=event.description,
            category=event.category,
            venue=Venue(event.venue.name, event.venue.address, event.venue.suburb),
            price_min=event.price_min,
            price_max=event.price_max,
            price_details=event.price_details,
            is_free=event.is_free,
            booking_url=event.booking_url,
            image_url=event.image_url,
            video_url=event.video_url,
            accessibility=_union(event.accessibility),
            age_restriction=event.age_restriction,
            duration=event.duration,
            sources=list(record.sources),
            source_ids=dict(record.source_ids),
            booking_urls=dict(record.booking_urls),
            merged_from=list(record.merged_from),
        )
        proposed.subcategories = _union(record.subcategories, event.all_subcategories())
        proposed.start_date = _earliest(record.start_date, event.start_date)
        proposed.end_date = _latest_end(record.end_date, event.end_date)
    proposed.booking_urls[event.source] = event.booking_url
    return proposed


def register_source(proposed: CanonicalEventRecord, event: NormalisedEvent) -> None:
    if event.source not in proposed.sources:
        proposed.sources.append(event.source)
    proposed.source_ids[event.source] = event.source_id
    proposed.booking_urls[event.source] = event.booking_url
    if event.source_key not in proposed.merged_from:
        proposed.merged_from.append(event.source_key)


class MergeEngine:
    def __init__(
        self,
        store: RecordStore,
        notifier: Notifier,
        pool: DedupPool,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.notifier = notifier
        self.pool = pool
        self.clock = clock

    def process(self, event: NormalisedEvent) -> Outcome:
        try:
            existing = self.pool.lookup(event.source, event.source_id)
            if existing is not None:
                return self._update(existing, event)

            existing = self.pool.lookup_listing(event.source, event.title, event.venue.name)
            if existing is not None:
                return self._update(existing, event, reissued=True)

            match = self.pool.find_best_match(event)
            if match is not None:
                target = self.pool.get(match.matched_id)
                if target is not None:
                    return self._merge(target, event, match)

            return self._insert(event)
        except DuplicateKeyError as exc:
            logger.info("Duplicate key for %s, skipping: %s", event.source_key, exc)
            return Outcome(Action.SKIPPED, reason="duplicate key")

    def _insert(self, event: NormalisedEvent) -> Outcome:
        record = CanonicalEventRecord.from_event(event, self.clock())
        record.id = self.store.insert(record)
        self.pool.add(record)
        notifications = self.notifier.notify_new_event(record)
        return Outcome(Action.INSERTED, record, notifications)

    def _update(self, record: CanonicalEventRecord, event: NormalisedEvent, reissued: bool = False) -> Outcome:
        proposed = update_fields(record, event)
        if reissued:
            logger.info(
                "Moving %r to %s id %s (was %s)",
                record.title, event.source, event.source_id, record.source_ids.get(event.source),
            )
            proposed.source_ids[event.source] = event.source_id
        changes = detect_changes(record, proposed, event)
        if not changes.has_changes:
            return Outcome(Action.SKIPPED, record, reason="unchanged")
        return self._write(Action.UPDATED, record, proposed, changes, reason=", ".join(changes.changed_fields))

    def _merge(self, record: CanonicalEventRecord, event: NormalisedEvent, match: DuplicateMatch) -> Outcome:
        is_new_source = event.source not in record.sources
        proposed = merge_fields(record, event)
        register_source(proposed, event)
        changes = detect_changes(record, proposed, event)
        if not changes.has_changes and not is_new_source:
            return Outcome(Action.SKIPPED, record, reason="unchanged")
        return self._write(Action.MERGED, record, proposed, changes, reason=match.reason)

    def _write(
        self,
        action: Action,
        record: CanonicalEventRecord,
        proposed: CanonicalEventRecord,
        changes: ChangeDescriptor,
        reason: str,
    ) -> Outcome:
        now = self.clock()
        proposed.last_updated = now
        if changes.has_content_changes:
            proposed.last_content_change = now

        if not self.store.update_by_id(record.id, proposed):
            logger.error("%s failed: event %s not found in store", action.value.title(), record.id)
            return Outcome(Action.SKIPPED, record, reason="missing from store")
        self.pool.replace(proposed)

        notifications = 0
        if changes.should_notify:
            notifications = self.notifier.notify_record_changed(proposed, changes)
        return Outcome(action, proposed, notifications, reason, changes)
