"""
What's On Melbourne scraper.

Listing pages: https://whatson.melbourne.vic.gov.au/tags/<category>[/page-N]
  - Each result is a .page-preview; only those whose data-listing-type
    contains "event" are events (the rest are businesses and articles)
  - Title: h2.title, link: a.main-link (must point at /things-to-do/)
  - Dates: time[datetime] elements, earliest is the start, latest the end
  - Tags: .tag-list a; a "free" tag marks a free event
  - Pagination: .pagination a[rel=next]

Detail pages (optional, fetch_details) add the meta description, the venue
and address from .location.details-widget, prices from .price-and-bookings
and .price-table, and accessibility features.

The site has no stable ids, so the source id is the title slug.
"""

import logging
import re
from typing import Optional

from bs4 import BeautifulSoup
from dateutil import parser as dateparser

from eventsync.categories import map_whatson
from eventsync.errors import NetworkError
from eventsync.models import FetchOptions, FetchResult, FetchStats, NormalisedEvent, Venue
from eventsync.normalise import DESCRIPTION_PLACEHOLDER, normalise_price_range, slugify
from eventsync.scrapers.base import (
    BaseScraper,
    absolute_url,
    finish,
    get_soup,
    normalise_items,
    polite_wait,
    timed,
)

logger = logging.getLogger(__name__)

_BASE = "https://whatson.melbourne.vic.gov.au"
_DEFAULT_CATEGORIES = ["theatre", "music"]
_MAX_EMPTY_PAGES = 2
_SUBURBS = (
    "Carlton", "Fitzroy", "Collingwood", "Richmond", "Southbank",
    "St Kilda", "South Yarra", "Docklands", "Melbourne",
)


# --- Listing pages ---

def _listing_dates(item) -> tuple:
    dates = []
    for el in item.select("time[datetime]"):
        try:
            dates.append(dateparser.isoparse(el["datetime"]))
        except ValueError:
            continue
    if not dates:
        return None, None
    dates.sort()
    return dates[0], dates[-1] if len(dates) > 1 else None


def parse_listing_item(item) -> Optional[dict]:
    """Extract what the listing card shows; None for anything that is not an event."""
    if "event" not in (item.get("data-listing-type") or ""):
        return None
    link = item.select_one("a.main-link")
    href = link.get("href", "") if link else ""
    if "/things-to-do/" not in href:
        return None
    title_el = item.select_one("h2.title")
    title = title_el.get_text(strip=True) if title_el else ""
    if not title:
        return None

    start, end = _listing_dates(item)
    img = item.select_one(".page_image")
    tags = [a.get_text(strip=True).lower() for a in item.select(".tag-list a")]
    tags = [t for t in tags if t]
    summary = item.select_one("p.summary")

    return {
        "url": absolute_url(_BASE, href),
        "title": title,
        "summary": summary.get_text(strip=True) if summary else "",
        "start_date": start,
        "end_date": end,
        "image_url": absolute_url(_BASE, img["src"]) if img and img.get("src") else None,
        "is_free": "free" in tags,
        "tags": tags,
    }


def parse_listing_page(soup: BeautifulSoup) -> tuple[list[dict], bool]:
    """Return (listings on the page, whether a next page exists)."""
    listings = [l for l in map(parse_listing_item, soup.select(".page-preview")) if l]
    has_next = bool(soup.select(".pagination a[rel=next], .pagination .next a"))
    return listings, has_next


# --- Detail pages ---

def _description(soup: BeautifulSoup) -> Optional[str]:
    for selector in ('meta[name="description"]', 'meta[property="og:description"]'):
        meta = soup.select_one(selector)
        if meta and (meta.get("content") or "").strip():
            return meta["content"].strip()
    contents = soup.select_one(".listing-description .contents")
    if contents:
        return contents.get_text(" ", strip=True)[:500] or None
    return None


def _location_lines(soup: BeautifulSoup) -> list[str]:
    widget = soup.select(".location.details-widget p")
    text = "\n".join(p.get_text("\n") for p in widget)
    return [line.strip() for line in text.split("\n") if line.strip()]


def _prices(soup: BeautifulSoup) -> dict:
    widget_el = soup.select_one(".price-and-bookings")
    widget = widget_el.get_text(" ", strip=True) if widget_el else ""
    if re.search(r"\bfree\b", widget, re.I):
        return {"price_min": 0.0, "price_max": 0.0, "is_free": True}

    cells = [td.get_text(strip=True) for td in soup.select(".price-table tr td")]
    details = "; ".join(c for c in cells if c) or None

    m = re.search(r"From\s*\$(\d+(?:\.\d+)?)\s*to\s*\$(\d+(?:\.\d+)?)", widget, re.I)
    if m:
        low, high = normalise_price_range(m.group(1), m.group(2))
        return {"price_min": low, "price_max": high, "price_details": details}

    amounts = [float(p) for p in re.findall(r"\$(\d+(?:\.\d+)?)", widget) if float(p) > 0]
    if amounts:
        return {
            "price_min": min(amounts),
            "price_max": max(amounts) if len(amounts) > 1 else None,
            "price_details": details,
        }
    return {}


def parse_detail_page(soup: BeautifulSoup) -> dict:
    lines = _location_lines(soup)
    detail = {
        "description": _description(soup),
        "venue": lines[0] if lines else None,
        "address": ", ".join(lines[1:]) or None,
        "accessibility": [
            a.get_text(strip=True) for a in soup.select(".accessibility-feature__link") if a.get_text(strip=True)
        ],
    }
    detail.update(_prices(soup))
    return {k: v for k, v in detail.items() if v not in (None, [])}


def _suburb(address: str) -> str:
    for suburb in _SUBURBS:
        if suburb in address:
            return suburb
    return "Melbourne"


def normalise_listing(listing: dict, category_tag: str) -> NormalisedEvent:
    category, subcategory = map_whatson(category_tag, listing["title"])
    address = listing.get("address") or "Melbourne VIC"
    return NormalisedEvent(
        title=listing["title"],
        description=listing.get("description") or listing.get("summary") or DESCRIPTION_PLACEHOLDER,
        category=category,
        subcategory=subcategory,
        start_date=listing.get("start_date"),
        end_date=listing.get("end_date"),
        venue=Venue(
            name=listing.get("venue") or "Venue TBA",
            address=address,
            suburb=_suburb(address),
        ),
        price_min=listing.get("price_min"),
        price_max=listing.get("price_max"),
        price_details=listing.get("price_details"),
        is_free=bool(listing.get("is_free")),
        booking_url=listing["url"],
        image_url=listing.get("image_url"),
        accessibility=listing.get("accessibility", []),
        source="whatson",
        source_id=slugify(listing["title"]),
    )


class WhatsOnScraper(BaseScraper):
    source = "whatson"
    source_name = "What's On Melbourne"

    def collect_listings(self, category: str, options: FetchOptions, stats: FetchStats) -> list[dict]:
        listings: list[dict] = []
        seen_urls: set[str] = set()
        empty_pages = 0

        for page in range(1, options.max_pages + 1):
            url = f"{_BASE}/tags/{category}" + (f"/page-{page}" if page > 1 else "")
            try:
                soup = get_soup(self.session, url, options)
            except NetworkError as exc:
                logger.warning("[whatson] %s page %d: %s", category, page, exc)
                stats.record_failure(str(exc))
                break
            finally:
                polite_wait(options)

            found, has_next = parse_listing_page(soup)
            new = [l for l in found if l["url"] not in seen_urls]
            seen_urls.update(l["url"] for l in new)
            listings.extend(new)
            logger.info("[whatson] %s page %d: +%d events (%d total)", category, page, len(new), len(listings))

            empty_pages = 0 if new else empty_pages + 1
            if empty_pages >= _MAX_EMPTY_PAGES:
                break
            if not has_next and page > 1:
                break

        return listings

    def _with_details(self, listing: dict, options: FetchOptions) -> dict:
        soup = get_soup(self.session, listing["url"], options)
        polite_wait(options)
        return {**listing, **parse_detail_page(soup)}

    def fetch_all(self, options: FetchOptions) -> FetchResult:
        stats = FetchStats(self.source)
        events: list[NormalisedEvent] = []
        seen_titles: set[str] = set()

        with timed(stats):
            for category in options.categories or _DEFAULT_CATEGORIES:
                listings = self.collect_listings(category, options, stats)
                stats.fetched += len(listings)

                # Titles already emitted under an earlier tag belong to that tag
                fresh = []
                for listing in listings:
                    key = listing["title"].lower().strip()
                    if key not in seen_titles:
                        seen_titles.add(key)
                        fresh.append(listing)
                if options.max_items:
                    fresh = fresh[:options.max_items]

                def normalise(listing: dict, tag: str = category) -> NormalisedEvent:
                    if options.fetch_details:
                        listing = self._with_details(listing, options)
                    return normalise_listing(listing, tag)

                events.extend(normalise_items(fresh, normalise, stats, label=lambda l: l["url"]))

            return finish(events, stats)
