"""
Fever (feverup.com) Melbourne scraper.

Listing page: https://feverup.com/en/melbourne/things-to-do
  - An ItemList JSON-LD block lists the plans; plan URLs look like /m/<id>
  - Fallback when the block is missing: every a[href*="/m/"] on the page

Detail pages carry an Event or Product JSON-LD block with name, dates,
location, offers (one per ticket type) and images. Age, duration and
accessibility notes only exist as free text in #plan-description.

robots.txt is honoured for the listing and for every detail page.
"""

import json
import logging
import re
from datetime import datetime
from typing import Optional
from urllib import robotparser
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup
from dateutil import parser as dateparser

from eventsync.categories import categorise_text
from eventsync.errors import NetworkError, ValidationError
from eventsync.models import FetchOptions, FetchResult, FetchStats, NormalisedEvent, Venue
from eventsync.normalise import DESCRIPTION_PLACEHOLDER, clean_text
from eventsync.scrapers.base import (
    USER_AGENT,
    BaseScraper,
    absolute_url,
    finish,
    get_page,
    get_soup,
    normalise_items,
    polite_wait,
    timed,
)

logger = logging.getLogger(__name__)

_BASE = "https://feverup.com"
_LISTING_URL = f"{_BASE}/en/melbourne/things-to-do"
_SUBURBS = (
    "South Melbourne", "Port Melbourne", "Carlton", "Fitzroy", "Collingwood",
    "Richmond", "Southbank", "St Kilda", "South Yarra", "Docklands", "CBD",
    "Brunswick", "Northcote", "Prahran", "Melbourne",
)

_ACCESSIBILITY = (
    (r"wheelchair accessible", "Wheelchair accessible"),
    (r"audio guide", "Audio guide available"),
    (r"hearing loop", "Hearing loop available"),
    (r"accessible parking", "Accessible parking"),
)
_AGE_PATTERNS = (
    r"age requirement:\s*([^\n👤📍⏳♿🎁📅]+)",
    r"(all ages are welcome[^\n👤📍⏳♿.]{0,100})",
    r"(minimum age[:\s]+\d+[^\n👤📍⏳♿.]{0,80})",
)
_DURATION_PATTERNS = (
    r"duration:\s*([^\n📍]+)",
    r"(\d+\s*(?:hours?|hrs?|minutes?|mins?))",
)


def _json_ld(soup: BeautifulSoup) -> list[dict]:
    blocks = []
    for script in soup.find_all("script", type="application/ld+json"):
        try:
            data = json.loads(script.string or "")
        except (json.JSONDecodeError, TypeError):
            continue
        if isinstance(data, dict):
            blocks.append(data)
        elif isinstance(data, list):
            blocks.extend(d for d in data if isinstance(d, dict))
    return blocks


def parse_listing(soup: BeautifulSoup) -> list[str]:
    urls: list[str] = []
    for block in _json_ld(soup):
        if block.get("@type") != "ItemList":
            continue
        for item in block.get("itemListElement") or []:
            url = item.get("url") if isinstance(item, dict) else None
            if url and "/m/" in url:
                urls.append(absolute_url(_BASE, url))

    if not urls:
        urls = [absolute_url(_BASE, a["href"]) for a in soup.select('a[href*="/m/"]')]
    return list(dict.fromkeys(urls))


def plan_id(url: str) -> str:
    m = re.search(r"/m/(\d+)", url)
    return m.group(1) if m else url


# --- Detail page ---

def _structured_data(soup: BeautifulSoup) -> Optional[dict]:
    for block in _json_ld(soup):
        if block.get("@type") in ("Event", "Product"):
            return block
    return None


def _image(data: dict) -> Optional[str]:
    image = data.get("image")
    if isinstance(image, dict) and image.get("contentUrl"):
        return image["contentUrl"]
    images = data.get("images")
    if isinstance(images, list) and images:
        first = images[0]
        return first if isinstance(first, str) else first.get("url")
    if isinstance(image, str):
        return image
    return None


def _pricing(data: dict) -> dict:
    offers = data.get("offers") or []
    if isinstance(offers, dict):
        offers = [offers]

    prices: list[float] = []
    tickets: list[str] = []
    zero_priced = False
    for offer in offers:
        if not isinstance(offer, dict) or offer.get("price") in (None, ""):
            continue
        try:
            price = float(offer["price"])
        except (TypeError, ValueError):
            continue
        if price <= 0:
            zero_priced = zero_priced or price == 0
            continue
        prices.append(price)
        name = offer.get("name")
        if name:
            tickets.append(f"{name.split(' - ')[-1]}: ${price:.2f}")

    return {
        "price_min": min(prices) if prices else None,
        "price_max": max(prices) if len(prices) > 1 else None,
        "price_details": "; ".join(tickets) or None,
        "is_free": zero_priced and not prices,
    }


def _suburb(address: str) -> str:
    for suburb in _SUBURBS:
        if suburb in address:
            return suburb
    return "Melbourne"


def _venue(data: dict, soup: BeautifulSoup) -> Venue:
    name, address = "Venue TBA", "Melbourne VIC"

    offers = data.get("offers")
    location = data.get("location") or (offers[0].get("areaServed") if isinstance(offers, list) and offers else None)
    if isinstance(location, dict):
        name = location.get("name") or name
        addr = location.get("address")
        if isinstance(addr, dict):
            parts = [location.get("name"), addr.get("line1"), addr.get("line2"), addr.get("addressLocality")]
            address = ", ".join(p for p in parts if p) or address

    if name == "Venue TBA" or "Secret Location" in name:
        html_name = soup.select_one('[data-testid="plan-location-name"]')
        html_address = soup.select_one('[data-testid="plan-location-address"]')
        if html_name and html_name.get_text(strip=True):
            name = html_name.get_text(strip=True)
        if html_address and html_address.get_text(strip=True):
            address = html_address.get_text(strip=True)

    return Venue(name=name, address=address, suburb=_suburb(address))


def _parse_iso(value) -> Optional[datetime]:
    if not value:
        return None
    try:
        return dateparser.isoparse(value)
    except (ValueError, TypeError):
        return None


def _plan_text(soup: BeautifulSoup) -> str:
    el = soup.select_one("#plan-description")
    return el.get_text("\n") if el else ""


def _age_restriction(text: str) -> Optional[str]:
    for pattern in _AGE_PATTERNS:
        m = re.search(pattern, text, re.I)
        if m:
            result = re.sub(r"\s+", " ", m.group(1)).strip()
            if len(result) > 100 and not result.endswith("."):
                cut = result[:120].rfind(".")
                result = result[:cut + 1] if cut > 50 else result[:100] + "..."
            return result[:150]
    return None


def _duration(text: str) -> Optional[str]:
    for pattern in _DURATION_PATTERNS:
        m = re.search(pattern, text, re.I)
        if m:
            return m.group(1).strip()
    return None


def parse_plan_page(soup: BeautifulSoup, url: str) -> Optional[NormalisedEvent]:
    """Build an event from a plan page; None for plans that are not events."""
    data = _structured_data(soup)
    if data is None:
        raise ValidationError(f"no structured data on {url}")

    title = (data.get("name") or "").strip()
    if "gift card" in title.lower():
        logger.info("[feverup] skipping gift card: %s", title)
        return None

    description = clean_text(data.get("description") or "", 500)
    pricing = _pricing(data)
    text = _plan_text(soup)

    return NormalisedEvent(
        title=title,
        description=description or DESCRIPTION_PLACEHOLDER,
        category=categorise_text(title, description),
        start_date=_parse_iso(data.get("startDate")),
        end_date=_parse_iso(data.get("endDate")),
        venue=_venue(data, soup),
        price_min=pricing["price_min"],
        price_max=pricing["price_max"],
        price_details=pricing["price_details"],
        is_free=pricing["is_free"],
        booking_url=url,
        image_url=_image(data),
        accessibility=[label for pattern, label in _ACCESSIBILITY if re.search(pattern, text, re.I)],
        age_restriction=_age_restriction(text),
        duration=_duration(text),
        source="feverup",
        source_id=plan_id(url),
    )


class FeverUpScraper(BaseScraper):
    source = "feverup"
    source_name = "Fever"

    def __init__(self, source_cfg: dict, session=None):
        super().__init__(source_cfg, session)
        self._robots: Optional[robotparser.RobotFileParser] = None

    def load_robots(self, options: FetchOptions) -> robotparser.RobotFileParser:
        robots = robotparser.RobotFileParser(urljoin(_BASE, "/robots.txt"))
        r = self.session.get(robots.url, timeout=options.timeout)
        if r.status_code in (401, 403):
            robots.disallow_all = True
        elif r.status_code >= 400:
            robots.allow_all = True
        else:
            robots.parse(r.text.splitlines())
        return robots

    def allowed(self, url: str) -> bool:
        return self._robots is None or self._robots.can_fetch(USER_AGENT, url)

    def fetch_all(self, options: FetchOptions) -> FetchResult:
        stats = FetchStats(self.source)

        with timed(stats):
            try:
                self._robots = self.load_robots(options)
            except requests.RequestException as exc:
                raise NetworkError(f"robots.txt unavailable: {exc}") from exc
            polite_wait(options)

            if not self.allowed(_LISTING_URL):
                logger.warning("[feverup] listing disallowed by robots.txt")
                return finish([], stats)

            urls = parse_listing(get_soup(self.session, _LISTING_URL, options))
            urls = [u for u in urls if self.allowed(u)]
            if options.max_items:
                urls = urls[:options.max_items]
            stats.fetched = len(urls)
            logger.info("[feverup] %d plans", len(urls))

            def normalise(url: str) -> Optional[NormalisedEvent]:
                polite_wait(options)
                r = get_page(self.session, url, options)
                return parse_plan_page(BeautifulSoup(r.text, "lxml"), url)

            events = normalise_items(urls, normalise, stats)
            return finish(events, stats)
