import logging
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterable, Iterator, Optional, TypeVar

import requests
from bs4 import BeautifulSoup

from eventsync.config import get_source_options
from eventsync.errors import EventSyncError, NetworkError
from eventsync.models import FetchOptions, FetchResult, FetchStats, NormalisedEvent
from eventsync.normalise import listing_key, validate_event

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 eventsync/0.1"

T = TypeVar("T")


class BaseScraper(ABC):
    # Subclasses must set these class attributes
    source: str = ""
    source_name: str = ""

    def __init__(self, source_cfg: dict, session: Optional[requests.Session] = None):
        """
        Args:
            source_cfg: The [sources.<key>] section from config.toml as a dict,
                        with secrets already merged in by eventsync.config.
            session:    Shared requests session; tests pass one to mock HTTP.
        """
        self.source_cfg = source_cfg
        if session is None:
            session = requests.Session()
            session.headers.update({"User-Agent": USER_AGENT})
        self.session = session

    def default_options(self) -> FetchOptions:
        """FetchOptions seeded from this source's config section."""
        return get_source_options(self.source_cfg)

    @abstractmethod
    def fetch_all(self, options: FetchOptions) -> FetchResult:
        """Fetch, normalise and de-duplicate every listing this source has."""
        ...


# --- Helpers shared by the adapters ---

def get_page(
    session: requests.Session,
    url: str,
    options: FetchOptions,
    **kwargs,
) -> requests.Response:
    try:
        r = session.get(url, timeout=options.timeout, **kwargs)
        r.raise_for_status()
    except requests.RequestException as exc:
        raise NetworkError(f"GET {url} failed: {exc}") from exc
    return r


def get_soup(session: requests.Session, url: str, options: FetchOptions) -> BeautifulSoup:
    return BeautifulSoup(get_page(session, url, options).text, "lxml")


def polite_wait(options: FetchOptions) -> None:
    """Pause between two requests to the same source."""
    if options.request_delay_ms > 0:
        time.sleep(options.request_delay_ms / 1000)


@contextmanager
def timed(stats: FetchStats) -> Iterator[FetchStats]:
    start = time.monotonic()
    try:
        yield stats
    finally:
        stats.duration = time.monotonic() - start


def wall_time(value: Optional[datetime]) -> Optional[datetime]:
    """Drop the UTC offset, keeping local wall-clock time, so all dates compare."""
    if value is None or value.tzinfo is None:
        return value
    return value.replace(tzinfo=None)


def normalise_items(
    items: Iterable[T],
    normalise: Callable[[T], Optional[NormalisedEvent]],
    stats: FetchStats,
    label: Callable[[T], str] = str,
) -> list[NormalisedEvent]:
    """
    Run normalise() over raw items, dropping the ones that fail.

    A None result means the item was deliberately filtered (gift cards, past
    events) and is not an error. Anything raised counts one error.
    """
    events: list[NormalisedEvent] = []
    for item in items:
        try:
            event = normalise(item)
            if event is None:
                continue
            event = validate_event(event)
            event.start_date = wall_time(event.start_date)
            event.end_date = wall_time(event.end_date)
            events.append(event)
        except (EventSyncError, ValueError, TypeError, KeyError, AttributeError) as exc:
            logger.warning("[%s] dropped %s: %s", stats.source, label(item), exc)
            stats.record_failure(str(exc))
    return events


def collapse_listings(events: Iterable[NormalisedEvent]) -> list[NormalisedEvent]:
    """
    Merge listings that appear twice in one result set (several ticket types or
    performances of one show) into a single event spanning all their dates.
    """
    by_key: dict[str, NormalisedEvent] = {}
    for event in events:
        key = listing_key(event.title, event.venue.name)
        existing = by_key.get(key)
        if existing is None:
            by_key[key] = event
            continue
        first, other = (event, existing) if event.start_date < existing.start_date else (existing, event)
        ends = [d for d in (first.end_date, other.end_date, other.start_date) if d]
        latest = max(ends) if ends else None
        first.end_date = latest if latest and latest > first.start_date else first.end_date
        by_key[key] = first
    return list(by_key.values())


def finish(events: list[NormalisedEvent], stats: FetchStats) -> FetchResult:
    events = collapse_listings(events)
    events.sort(key=lambda e: e.start_date)
    stats.normalised = len(events)
    return FetchResult(events, stats)


def absolute_url(base: str, href: str) -> str:
    if href.startswith("http"):
        return href
    return f"{base.rstrip('/')}/{href.lstrip('/')}"
