"""
Fuzzy duplicate detection.

A candidate event is scored against every record in the run's pool with three
signals (title, start/end dates, venue) combined into one confidence value:

    confidence = 0.50 * title + 0.30 * date + 0.20 * venue

Matches at or above MATCH_THRESHOLD are returned; the highest confidence wins
and ties keep pool order. Exact (source, source_id) hits never come through
here, the merge engine resolves those with DedupPool.lookup() first.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from difflib import SequenceMatcher
from typing import Iterable, Iterator, Optional, Union

from eventsync.models import CanonicalEventRecord, DuplicateMatch, NormalisedEvent
from eventsync.normalise import listing_key, normalise_title, normalise_venue

logger = logging.getLogger(__name__)

TITLE_WEIGHT = 0.50
DATE_WEIGHT = 0.30
VENUE_WEIGHT = 0.20

MATCH_THRESHOLD = 0.78
DATE_WINDOW = timedelta(days=14)
QUICK_REJECT_THRESHOLD = 0.3

# A signal counts towards the reason string at or above these scores
TITLE_SIGNAL = 0.75
VENUE_SIGNAL = 0.80
DATE_SIGNAL = 0.85

# Sources that re-issue ids for the same listing; their records are also
# indexed by listing key so a new id still finds its record
REISSUING_SOURCES = {"ticketmaster"}

Dated = Union[NormalisedEvent, CanonicalEventRecord]


@dataclass
class MatchScore:
    title: float
    date: float
    venue: float

    @property
    def confidence(self) -> float:
        return self.title * TITLE_WEIGHT + self.date * DATE_WEIGHT + self.venue * VENUE_WEIGHT

    @property
    def signals(self) -> list[str]:
        found = []
        if self.title >= TITLE_SIGNAL:
            found.append("title")
        if self.venue >= VENUE_SIGNAL:
            found.append("venue")
        if self.date >= DATE_SIGNAL:
            found.append("date")
        return found

    def reason(self) -> str:
        label = "+".join(self.signals) or "weak"
        return (
            f"{label} match {self.confidence * 100:.0f}% "
            f"(t:{self.title * 100:.0f} d:{self.date * 100:.0f} v:{self.venue * 100:.0f})"
        )


def _similarity(a: str, b: str) -> float:
    # Nothing left after normalisation carries no evidence either way
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    if a in b or b in a:
        return 0.95
    return SequenceMatcher(None, a, b).ratio()


def title_similarity(t1: str, t2: str) -> float:
    return _similarity(normalise_title(t1), normalise_title(t2))


def venue_similarity(v1: str, v2: str) -> float:
    return _similarity(normalise_venue(v1), normalise_venue(v2))


def quick_reject(t1: str, t2: str) -> bool:
    """True when two titles share too few characters to be worth scoring."""
    n1, n2 = normalise_title(t1), normalise_title(t2)
    if not n1 or not n2:
        return True
    if n1 == n2 or n1 in n2 or n2 in n1:
        return False
    chars1, chars2 = set(n1), set(n2)
    return len(chars1 & chars2) / len(chars1 | chars2) < QUICK_REJECT_THRESHOLD


def date_overlap(e1: Dated, e2: Dated) -> float:
    """
    1.0 when the [start, end] ranges overlap, 0.85 when the nearest endpoints
    are within DATE_WINDOW, 0.5 within twice that, otherwise 0.
    """
    s1, end1 = e1.start_date, e1.end_date or e1.start_date
    s2, end2 = e2.start_date, e2.end_date or e2.start_date
    if s1 <= end2 and s2 <= end1:
        return 1.0
    gap = min(abs(s1 - s2), abs(end1 - end2), abs(s1 - end2), abs(s2 - end1))
    if gap <= DATE_WINDOW:
        return 0.85
    if gap <= DATE_WINDOW * 2:
        return 0.5
    return 0.0


def match_score(e1: Dated, e2: Dated) -> MatchScore:
    return MatchScore(
        title=title_similarity(e1.title, e2.title),
        date=date_overlap(e1, e2),
        venue=venue_similarity(e1.venue.name, e2.venue.name),
    )


def find_best_match(
    candidate: NormalisedEvent,
    pool: Iterable[CanonicalEventRecord],
) -> Optional[DuplicateMatch]:
    """
    Return the best pool record the candidate duplicates, or None.

    Records that already hold an id for the candidate's source are skipped:
    same-source identity is decided by the exact (source, source_id) lookup,
    never by fuzzy matching. Archived records are skipped as well.
    """
    if not (candidate.title and candidate.venue.name and candidate.start_date):
        return None

    matches: list[DuplicateMatch] = []
    for record in pool:
        if record.is_archived or candidate.source in record.source_ids:
            continue
        if quick_reject(candidate.title, record.title):
            continue
        score = match_score(candidate, record)
        if score.confidence >= MATCH_THRESHOLD:
            matches.append(DuplicateMatch(
                candidate_id=candidate.source_key,
                matched_id=record.id,
                confidence=round(score.confidence, 4),
                reason=score.reason(),
            ))

    if not matches:
        return None
    matches.sort(key=lambda m: m.confidence, reverse=True)
    return matches[0]


class DedupPool:
    """
    The records one run deduplicates against.

    Append-only arena of canonical records (loaded once from the store, plus
    every record inserted during the run) with an index by id and one by
    (source, source_id) covering every id in each record's source_ids. Records
    whose primary source re-issues ids are also indexed by listing key.
    Only the merge loop touches it, so it carries no locking.
    """

    def __init__(self, records: Iterable[CanonicalEventRecord] = ()):
        self._records: list[CanonicalEventRecord] = []
        self._by_id: dict[int, int] = {}
        self._by_source_key: dict[tuple[str, str], int] = {}
        self._by_listing: dict[tuple[str, str], int] = {}
        for record in records:
            self.add(record)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[CanonicalEventRecord]:
        return iter(self._records)

    def add(self, record: CanonicalEventRecord) -> None:
        if record.id is None:
            raise ValueError("pool records must have a store id")
        slot = len(self._records)
        self._records.append(record)
        self._by_id[record.id] = slot
        self._index(record, slot)

    def replace(self, record: CanonicalEventRecord) -> None:
        slot = self._by_id[record.id]
        self._records[slot] = record
        self._index(record, slot)

    def get(self, record_id: int) -> Optional[CanonicalEventRecord]:
        slot = self._by_id.get(record_id)
        return None if slot is None else self._records[slot]

    def lookup(self, source: str, source_id: str) -> Optional[CanonicalEventRecord]:
        slot = self._by_source_key.get((source, source_id))
        return None if slot is None else self._records[slot]

    def lookup_listing(self, source: str, title: str, venue_name: str) -> Optional[CanonicalEventRecord]:
        """The record a re-issuing source listed under this title and venue, if any."""
        if source not in REISSUING_SOURCES:
            return None
        slot = self._by_listing.get((source, listing_key(title, venue_name)))
        return None if slot is None else self._records[slot]

    def find_best_match(self, candidate: NormalisedEvent) -> Optional[DuplicateMatch]:
        return find_best_match(candidate, self._records)

    def _index(self, record: CanonicalEventRecord, slot: int) -> None:
        if record.primary_source in REISSUING_SOURCES:
            key = (record.primary_source, listing_key(record.title, record.venue.name))
            self._by_listing.setdefault(key, slot)
        for source, source_id in record.source_ids.items():
            key = (source, source_id)
            existing = self._by_source_key.get(key)
            if existing is None or existing == slot:
                self._by_source_key[key] = slot
                continue
            other = self._records[existing]
            logger.warning(
                "Source key %s:%s claimed by records %s and %s",
                source, source_id, other.id, record.id,
            )
            # Keep the earliest-starting record
            if record.start_date < other.start_date:
                self._by_source_key[key] = slot
