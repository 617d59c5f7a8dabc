"""
Change detection between a stored record and its proposed replacement.

The diff decides whether an Update/Merge writes at all (no difference means
Skip) and whether last_content_change moves. The ChangeDescriptor it returns
also carries the price and status signals the notifier acts on.
"""

from datetime import timedelta
from typing import Optional

from eventsync.models import CanonicalEventRecord, ChangeDescriptor, NormalisedEvent

PRICE_CHANGE_THRESHOLD = 5.0
DATE_TOLERANCE = timedelta(hours=1)

STATUS_KEYWORDS = (
    "cancelled",
    "postponed",
    "rescheduled",
    "sold out",
    "new show",
    "extra show",
    "additional show",
    "new date",
    "date change",
)

# Fields a user sees on the event page
CONTENT_FIELDS = (
    "title",
    "description",
    "category",
    "subcategories",
    "start_date",
    "end_date",
    "venue",
    "price_min",
    "price_max",
    "price_details",
    "is_free",
    "image_url",
    "accessibility",
    "age_restriction",
    "duration",
)

# Bookkeeping and links that change without the event itself changing
TECHNICAL_FIELDS = (
    "booking_url",
    "video_url",
    "sources",
    "source_ids",
    "booking_urls",
    "merged_from",
)

_UNORDERED = {"subcategories", "accessibility", "sources", "merged_from"}


def _differs(name: str, old, new) -> bool:
    if name in ("start_date", "end_date"):
        if old is None or new is None:
            return old is not new
        return abs(old - new) > DATE_TOLERANCE
    if name in _UNORDERED:
        return set(old or ()) != set(new or ())
    return old != new


def diff_fields(stored: CanonicalEventRecord, proposed: CanonicalEventRecord) -> tuple[list[str], list[str]]:
    """Return (changed content fields, changed technical fields)."""
    content = [f for f in CONTENT_FIELDS if _differs(f, getattr(stored, f), getattr(proposed, f))]
    technical = [f for f in TECHNICAL_FIELDS if _differs(f, getattr(stored, f), getattr(proposed, f))]
    return content, technical


def _price_signal(old_price: Optional[float], new_price: Optional[float], changes: ChangeDescriptor) -> None:
    old, new = old_price or 0, new_price or 0
    if old == 0 and new > 0:
        changes.significant_update = f"Price now available: ${new:.2f}"
    elif old > 0 and new > 0 and abs(old - new) >= PRICE_CHANGE_THRESHOLD:
        delta = new - old
        if delta < 0:
            changes.price_dropped = True
            changes.price_drop = round(abs(delta), 2)
        else:
            changes.significant_update = f"Price increased by ${delta:.2f}"


def _status_signal(old_description: str, new_description: str) -> Optional[str]:
    if not (old_description and new_description):
        return None
    old, new = old_description.lower(), new_description.lower()
    for keyword in STATUS_KEYWORDS:
        if keyword in new and keyword not in old:
            return f"Event status: {keyword}"
    return None


def detect_changes(
    stored: CanonicalEventRecord,
    proposed: CanonicalEventRecord,
    incoming: NormalisedEvent,
) -> ChangeDescriptor:
    content, technical = diff_fields(stored, proposed)
    changes = ChangeDescriptor(
        has_changes=bool(content or technical),
        has_content_changes=bool(content),
        changed_fields=content + technical,
    )
    _price_signal(stored.price_min, proposed.price_min, changes)
    status = _status_signal(stored.description, incoming.description)
    if status:
        changes.significant_update = status
    return changes
