"""Text and value normalisation shared by the adapters and the dedup engine."""

import re
from functools import lru_cache
from typing import Optional

from eventsync.errors import ValidationError
from eventsync.models import NormalisedEvent

# Words that carry no identity in an event title
TITLE_STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "at", "to", "for", "of", "in", "on",
    "live", "presents", "featuring", "feat", "ft", "show", "tour", "melbourne",
})

# Trailing geography stripped (repeatedly) from venue names
_VENUE_SUFFIXES = re.compile(
    r"\s*\b(melbourne|vic|victoria|cbd|australia|nsw|qld|wa|sa|tas|nt|act)$"
)

DESCRIPTION_PLACEHOLDER = "No description available"


def normalise_text(text: str) -> str:
    """Lower-case, turn punctuation into spaces and collapse whitespace."""
    text = re.sub(r"[^\w\s]", " ", (text or "").lower())
    return re.sub(r"\s+", " ", text).strip()


@lru_cache(maxsize=10_000)
def normalise_title(title: str) -> str:
    base = normalise_text(title)
    words = [w for w in base.split(" ") if len(w) > 1 and w not in TITLE_STOP_WORDS]
    # A title made only of stop words ("The Show") keeps its plain form
    return " ".join(words) or base


@lru_cache(maxsize=10_000)
def normalise_venue(venue: str) -> str:
    base = normalise_text(venue)
    normalised, prev = base, None
    while normalised != prev and normalised:
        prev = normalised
        normalised = _VENUE_SUFFIXES.sub("", normalised).strip()
    # Keep the plain form when the name was nothing but geography
    if len(normalised) < 2:
        return base
    return normalised


def slugify(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", (text or "").lower()).strip("-")


def listing_key(title: str, venue_name: str) -> str:
    """Key used by adapters to spot the same listing twice in one result set."""
    name = re.sub(r"\s+", "-", re.sub(r"[^\w\s]", "", title.lower()).strip())
    venue = re.sub(r"[^\w\s]", "", (venue_name or "").lower()).strip() or "unknown"
    return f"{name}::{venue}"


def normalise_price(price) -> Optional[float]:
    """Round to cents; negative, missing or non-numeric prices become None."""
    try:
        value = float(price)
    except (TypeError, ValueError):
        return None
    if value != value or value < 0:
        return None
    return round(value, 2)


def normalise_price_range(price_min, price_max) -> tuple[Optional[float], Optional[float]]:
    low, high = normalise_price(price_min), normalise_price(price_max)
    if low is not None and high is not None and low > high:
        return high, low
    return low, high


def clean_text(text: str, max_length: int = 500) -> str:
    """Strip tags and collapse whitespace, truncating to max_length."""
    text = re.sub(r"<[^>]*>", "", text or "")
    text = text.replace("\\r\\n", " ")
    return re.sub(r"\s+", " ", text).strip()[:max_length]


def validate_event(event: NormalisedEvent) -> NormalisedEvent:
    """Raise ValidationError unless the event has a title and a start date."""
    if not (event.title or "").strip():
        raise ValidationError(f"{event.source_key}: missing title")
    if event.start_date is None:
        raise ValidationError(f"{event.source_key}: missing start date for {event.title!r}")
    return event
