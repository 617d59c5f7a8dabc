"""
Marriner Group scraper (Princess, Regent, Comedy and Forum theatres).

Listing page: https://marrinergroup.com.au/shows
  - Lazy-loaded: show cards only appear as the page is scrolled, so we use
    Playwright and scroll until four scrolls in a row add no /shows/ link
    (or twenty scrolls are done)
  - One show can have several URLs (one per season or date); links are
    collapsed on the show slug with trailing ids and dates removed

Detail pages are plain HTML and are fetched with requests:
  - Title: first h1; dates: .dates text ("22 & 23 Nov 2025",
    "12 Nov - 3 Dec 2025", "14 Feb 2026")
  - Venue: first h2 ("at the Princess Theatre, Melbourne")
  - Description: .description p; video: .videos iframe; image: og:image
"""

import logging
import re
from datetime import date, datetime
from typing import Optional
from urllib.parse import urlparse

from bs4 import BeautifulSoup
from dateutil import parser as dateparser

from eventsync.categories import map_marriner
from eventsync.errors import ValidationError
from eventsync.models import FetchOptions, FetchResult, FetchStats, NormalisedEvent, Venue
from eventsync.normalise import slugify
from eventsync.scrapers.base import (
    USER_AGENT,
    BaseScraper,
    absolute_url,
    finish,
    get_soup,
    normalise_items,
    polite_wait,
    timed,
)

logger = logging.getLogger(__name__)

_BASE = "https://marrinergroup.com.au"
_MAX_SCROLLS = 20
_MAX_IDLE_SCROLLS = 4
_SCROLL_PAUSE_MS = 2000

VENUE_ADDRESSES = {
    "Princess Theatre": "163 Spring St, Melbourne VIC 3000",
    "Regent Theatre": "191 Collins St, Melbourne VIC 3000",
    "Comedy Theatre": "240 Exhibition St, Melbourne VIC 3000",
    "Forum Melbourne": "154 Flinders St, Melbourne VIC 3000",
}


def show_slug(url: str) -> str:
    """Show identifier from a /shows/ URL with trailing ids and dates removed."""
    last = urlparse(url).path.rstrip("/").split("/")[-1]
    last = re.sub(r"-\d{2,4}$", "", last)
    last = re.sub(r"-on-\d+.*$", "", last)
    last = re.sub(r"-\d{1,2}-(?:jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec).*$", "", last, flags=re.I)
    return last


def unique_shows(urls: list[str]) -> list[str]:
    by_slug: dict[str, str] = {}
    for url in urls:
        slug = show_slug(url)
        if slug and slug not in by_slug:
            by_slug[slug] = url
    return list(by_slug.values())


# --- Date text ---

def _parse_day(text: str, today: date, year_hint: Optional[int] = None) -> Optional[datetime]:
    text = text.strip()
    if not text:
        return None
    has_year = bool(re.search(r"\d{4}", text))
    default = datetime(year_hint or today.year, 1, 1)
    try:
        parsed = dateparser.parse(text, default=default, fuzzy=True)
    except (ValueError, OverflowError):
        return None
    # Yearless dates already past belong to next year
    if not has_year and year_hint is None and parsed.date() < today:
        parsed = parsed.replace(year=parsed.year + 1)
    return parsed


def parse_date_range(text: str, today: Optional[date] = None) -> tuple[Optional[datetime], Optional[datetime]]:
    """Parse Marriner's date text into (start, end)."""
    today = today or date.today()
    text = (text or "").strip()
    if not text or text.upper() == "TBA":
        return None, None

    # "22 & 23 Nov 2025"
    if "&" in text:
        first, rest = (s.strip() for s in text.split("&", 1))
        tokens = rest.split()
        if re.fullmatch(r"\d{1,2}", first) and len(tokens) >= 2:
            month_year = " ".join(tokens[1:])
            end = _parse_day(rest, today)
            start = _parse_day(f"{first} {month_year}", today, end.year if end else None)
            return start, end

    parts = [p for p in re.split(r"\s*[–—-]\s*", text) if p]
    end = _parse_day(parts[1], today) if len(parts) > 1 else None
    start = _parse_day(parts[0], today, end.year if end and not re.search(r"\d{4}", parts[0]) else None)
    if start and end and start > end:
        # "12 Nov - 3 Feb 2026": the start is in the year before the end
        start = start.replace(year=start.year - 1)
    return start, end


# --- Detail page ---

def _venue_from_text(text: str) -> Optional[str]:
    m = re.search(r"at\s+(?:the\s+)?(.+?),?\s*Melbourne", text, re.I)
    if m:
        return m.group(1).strip()
    for venue in VENUE_ADDRESSES:
        if venue.lower() in text.lower():
            return venue
    return None


def _image(soup: BeautifulSoup) -> Optional[str]:
    meta = soup.select_one('meta[property="og:image"]')
    src = meta.get("content") if meta else None
    if not src:
        for img in soup.find_all("img"):
            candidate = img.get("src") or ""
            if candidate and "logo" not in candidate and "icon" not in candidate \
                    and "logo" not in (img.get("alt") or "").lower():
                src = candidate
                break
    return absolute_url(_BASE, src) if src else None


def parse_show_page(soup: BeautifulSoup, url: str) -> dict:
    h1 = soup.find("h1")
    title = h1.get_text(strip=True) if h1 else ""
    dates_el = soup.select_one(".dates")
    date_text = dates_el.get_text(" ", strip=True) if dates_el else ""
    if not title or not date_text:
        raise ValidationError(f"no title or dates on {url}")

    h2 = soup.find("h2")
    venue = _venue_from_text(h2.get_text(" ", strip=True) if h2 else "") or _venue_from_text(title) or "Marriner Venue"

    paragraphs = [p.get_text(" ", strip=True) for p in soup.select(".description p")]
    description = "\n\n".join(p for p in paragraphs if p and not p.startswith("---"))[:1500]

    iframe = soup.select_one(".videos iframe")
    return {
        "url": url,
        "title": title,
        "date_text": date_text,
        "venue": venue,
        "description": description,
        "video_url": iframe.get("src") if iframe else None,
        "image_url": _image(soup),
    }


def normalise_show(show: dict, today: Optional[date] = None) -> NormalisedEvent:
    start, end = parse_date_range(show["date_text"], today)
    category, subcategory = map_marriner(show["title"], show["venue"])
    return NormalisedEvent(
        title=show["title"],
        description=show.get("description") or show["title"],
        category=category,
        subcategory=subcategory,
        start_date=start,
        end_date=end,
        venue=Venue(
            name=show["venue"],
            address=VENUE_ADDRESSES.get(show["venue"], "Melbourne CBD"),
            suburb="Melbourne",
        ),
        booking_url=show["url"],
        image_url=show.get("image_url"),
        video_url=show.get("video_url"),
        source="marriner",
        source_id=slugify(show["title"]),
    )


class MarrinerScraper(BaseScraper):
    source = "marriner"
    source_name = "Marriner Group"

    def collect_show_urls(self, options: FetchOptions) -> list[str]:
        from playwright.sync_api import sync_playwright

        urls: list[str] = []
        with sync_playwright() as p:
            browser = p.chromium.launch(headless=True, args=["--no-sandbox"])
            page = browser.new_page(user_agent=USER_AGENT, viewport={"width": 1920, "height": 1080})
            try:
                page.goto(f"{_BASE}/shows", wait_until="networkidle", timeout=30_000)
                page.wait_for_timeout(2000)

                idle = 0
                for scroll in range(_MAX_SCROLLS):
                    before = len(urls)
                    for a in page.query_selector_all("a[href*='/shows/']"):
                        href = absolute_url(_BASE, a.get_attribute("href") or "")
                        if href.rstrip("/") != f"{_BASE}/shows" and href not in urls:
                            urls.append(href)
                    idle = idle + 1 if len(urls) == before else 0
                    logger.info("[marriner] scroll %d: %d URLs", scroll + 1, len(urls))
                    if idle >= _MAX_IDLE_SCROLLS:
                        break
                    if options.max_items and len(urls) >= options.max_items * 2:
                        break
                    page.evaluate("window.scrollBy(0, window.innerHeight * 0.8)")
                    page.wait_for_timeout(_SCROLL_PAUSE_MS)
            finally:
                browser.close()
        return urls

    def fetch_show(self, url: str, options: FetchOptions) -> dict:
        soup = get_soup(self.session, url, options)
        polite_wait(options)
        return parse_show_page(soup, url)

    def fetch_all(self, options: FetchOptions) -> FetchResult:
        stats = FetchStats(self.source)

        with timed(stats):
            urls = unique_shows(self.collect_show_urls(options))
            if options.max_items:
                urls = urls[:options.max_items]
            stats.fetched = len(urls)
            logger.info("[marriner] %d unique shows", len(urls))

            def normalise(url: str) -> NormalisedEvent:
                return normalise_show(self.fetch_show(url, options))

            events = normalise_items(urls, normalise, stats)
            return finish(events, stats)
