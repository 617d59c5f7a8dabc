"""
Ticketmaster Discovery API scraper.

Endpoint: https://app.ticketmaster.com/discovery/v2/events.json
  - Geo-filtered to a 50 km radius around Melbourne, sorted by date
  - Paged with ?page=N&size=S (size is capped at 200 by the API)
  - Events live under _embedded.events; an empty page means we are done

The same show is listed once per performance, so pages are collapsed on
(title, venue) into one event spanning every performance date.

Requires TICKETMASTER_API_KEY, from the environment or the secrets file.
"""

import logging
import os
from datetime import datetime, time
from typing import Optional

from dateutil import parser as dateparser

from eventsync.categories import map_ticketmaster
from eventsync.errors import ConfigurationError, NetworkError
from eventsync.models import FetchOptions, FetchResult, FetchStats, NormalisedEvent, Venue
from eventsync.normalise import DESCRIPTION_PLACEHOLDER, clean_text
from eventsync.scrapers.base import BaseScraper, finish, get_page, normalise_items, polite_wait, timed

logger = logging.getLogger(__name__)

_API_URL = "https://app.ticketmaster.com/discovery/v2/events.json"
_MELBOURNE_LATLONG = "-37.8136,144.9631"
_RADIUS_KM = "50"
_MAX_PAGE_SIZE = 200


def _parse_datetime(local_date: Optional[str], local_time: Optional[str] = None) -> Optional[datetime]:
    """Combine the API's localDate/localTime; a missing time means noon."""
    if not local_date:
        return None
    try:
        day = dateparser.parse(local_date).date()
        at = dateparser.parse(local_time).time() if local_time else time(12, 0)
    except (ValueError, OverflowError):
        logger.warning("[ticketmaster] invalid date: %s %s", local_date, local_time)
        return None
    return datetime.combine(day, at)


def _price_info(raw: dict) -> tuple[Optional[float], Optional[float], bool]:
    """Whole-dollar price range; a zero minimum marks the event as free."""
    ranges = raw.get("priceRanges") or []
    mins = [r["min"] for r in ranges if isinstance(r.get("min"), (int, float))]
    maxs = [r["max"] for r in ranges if isinstance(r.get("max"), (int, float))]
    low = round(min(mins)) if mins else None
    high = round(max(maxs)) if maxs else None
    return (
        low if low else None,
        high if high else None,
        low == 0,
    )


def _widest_image(raw: dict) -> Optional[str]:
    images = raw.get("images") or []
    if not images:
        return None
    return max(images, key=lambda img: img.get("width") or 0).get("url")


def normalise_event(raw: dict) -> NormalisedEvent:
    classification = (raw.get("classifications") or [{}])[0]
    category, subcategory = map_ticketmaster(
        (classification.get("segment") or {}).get("name"),
        (classification.get("genre") or {}).get("name"),
        (classification.get("subGenre") or {}).get("name"),
        raw.get("name") or "",
    )

    dates = raw.get("dates") or {}
    start = dates.get("start") or {}
    end = dates.get("end") or {}

    venues = (raw.get("_embedded") or {}).get("venues") or [{}]
    venue = venues[0]
    price_min, price_max, is_free = _price_info(raw)

    return NormalisedEvent(
        title=(raw.get("name") or "").strip(),
        description=clean_text(raw.get("description") or raw.get("info") or "") or DESCRIPTION_PLACEHOLDER,
        category=category,
        subcategory=subcategory,
        start_date=_parse_datetime(start.get("localDate"), start.get("localTime")),
        end_date=_parse_datetime(end.get("localDate"), end.get("localTime")),
        venue=Venue(
            name=venue.get("name") or "Venue TBA",
            address=(venue.get("address") or {}).get("line1") or "TBA",
            suburb=(venue.get("city") or {}).get("name") or "Melbourne",
        ),
        price_min=price_min,
        price_max=price_max,
        is_free=is_free,
        booking_url=raw.get("url") or f"https://www.ticketmaster.com.au/event/{raw['id']}",
        image_url=_widest_image(raw),
        source="ticketmaster",
        source_id=str(raw["id"]),
    )


class TicketmasterScraper(BaseScraper):
    source = "ticketmaster"
    source_name = "Ticketmaster"

    def _api_key(self) -> str:
        key = self.source_cfg.get("api_key") or os.environ.get("TICKETMASTER_API_KEY")
        if not key:
            raise ConfigurationError("TICKETMASTER_API_KEY not found in environment or secrets")
        return key

    def fetch_page(self, api_key: str, page: int, options: FetchOptions) -> list[dict]:
        params = {
            "apikey": api_key,
            "latlong": self.source_cfg.get("latlong", _MELBOURNE_LATLONG),
            "radius": self.source_cfg.get("radius", _RADIUS_KM),
            "unit": "km",
            "size": min(options.page_size, _MAX_PAGE_SIZE),
            "page": page,
            "sort": "date,asc",
        }
        r = get_page(self.session, _API_URL, options, params=params, headers={"Accept": "application/json"})
        return (r.json().get("_embedded") or {}).get("events") or []

    def fetch_all(self, options: FetchOptions) -> FetchResult:
        stats = FetchStats(self.source)
        raw_events: list[dict] = []

        with timed(stats):
            try:
                api_key = self._api_key()
            except ConfigurationError as exc:
                logger.error("[ticketmaster] %s", exc)
                stats.record_failure(str(exc))
                return FetchResult([], stats)

            for page in range(options.max_pages):
                try:
                    items = self.fetch_page(api_key, page, options)
                except (NetworkError, ValueError) as exc:
                    # A broken page ends pagination; what we have so far is kept
                    logger.error("[ticketmaster] failed page %d: %s", page, exc)
                    stats.record_failure(f"page {page}: {exc}")
                    break
                if not items:
                    logger.info("[ticketmaster] no more events after page %d", page)
                    break

                raw_events.extend(items)
                logger.info("[ticketmaster] page %d: %d events", page + 1, len(items))
                if options.max_items and len(raw_events) >= options.max_items:
                    raw_events = raw_events[:options.max_items]
                    break
                polite_wait(options)

            stats.fetched = len(raw_events)
            events = normalise_items(raw_events, normalise_event, stats, label=lambda r: str(r.get("id")))
            return finish(events, stats)
