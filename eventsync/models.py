from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass
class Venue:
    name: str
    address: str = "TBA"
    suburb: str = "Melbourne"


@dataclass
class NormalisedEvent:
    """One listing as produced by a source adapter, before deduplication."""
    title: str
    description: str
    category: str
    start_date: Optional[datetime]
    venue: Venue
    booking_url: str
    source: str                # Registry key of the adapter that produced it
    source_id: str             # Identifier unique within that source
    subcategory: Optional[str] = None
    subcategories: list[str] = field(default_factory=list)
    end_date: Optional[datetime] = None
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    price_details: Optional[str] = None
    is_free: bool = False
    image_url: Optional[str] = None
    video_url: Optional[str] = None
    accessibility: list[str] = field(default_factory=list)
    age_restriction: Optional[str] = None
    duration: Optional[str] = None
    scraped_at: datetime = field(default_factory=datetime.now)
    last_updated: datetime = field(default_factory=datetime.now)

    @property
    def source_key(self) -> str:
        return f"{self.source}:{self.source_id}"

    def all_subcategories(self) -> list[str]:
        return _unique([*self.subcategories, self.subcategory])


@dataclass
class CanonicalEventRecord:
    """The single persisted representation of one real-world event."""
    title: str
    description: str
    category: str
    start_date: datetime
    venue: Venue
    booking_url: str
    primary_source: str
    sources: list[str] = field(default_factory=list)
    source_ids: dict[str, str] = field(default_factory=dict)
    booking_urls: dict[str, str] = field(default_factory=dict)
    merged_from: list[str] = field(default_factory=list)   # "source:sourceId" entries absorbed by Merge
    subcategories: list[str] = field(default_factory=list)
    end_date: Optional[datetime] = None
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    price_details: Optional[str] = None
    is_free: bool = False
    image_url: Optional[str] = None
    video_url: Optional[str] = None
    accessibility: list[str] = field(default_factory=list)
    age_restriction: Optional[str] = None
    duration: Optional[str] = None
    scraped_at: datetime = field(default_factory=datetime.now)
    last_updated: datetime = field(default_factory=datetime.now)
    last_content_change: datetime = field(default_factory=datetime.now)
    is_archived: bool = False  # Owned by the archival job, never written here
    # Populated by the store after insert
    id: Optional[int] = field(default=None, repr=False)

    @property
    def primary_source_id(self) -> str:
        return self.source_ids.get(self.primary_source, "")

    @classmethod
    def from_event(cls, event: NormalisedEvent, now: datetime) -> "CanonicalEventRecord":
        return cls(
            title=event.title,
            description=event.description,
            category=event.category,
            start_date=event.start_date,
            end_date=event.end_date,
            venue=Venue(event.venue.name, event.venue.address, event.venue.suburb),
            booking_url=event.booking_url,
            primary_source=event.source,
            sources=[event.source],
            source_ids={event.source: event.source_id},
            booking_urls={event.source: event.booking_url},
            subcategories=event.all_subcategories(),
            price_min=event.price_min,
            price_max=event.price_max,
            price_details=event.price_details,
            is_free=event.is_free,
            image_url=event.image_url,
            video_url=event.video_url,
            accessibility=_unique(event.accessibility),
            age_restriction=event.age_restriction,
            duration=event.duration,
            scraped_at=now,
            last_updated=now,
            last_content_change=now,
        )


@dataclass
class DuplicateMatch:
    candidate_id: str
    matched_id: int
    confidence: float
    reason: str


@dataclass
class ChangeDescriptor:
    price_dropped: bool = False
    price_drop: Optional[float] = None
    significant_update: Optional[str] = None
    has_changes: bool = False
    has_content_changes: bool = False
    changed_fields: list[str] = field(default_factory=list)

    @property
    def should_notify(self) -> bool:
        return self.price_dropped or bool(self.significant_update)


@dataclass
class FetchOptions:
    categories: list[str] = field(default_factory=list)
    max_pages: int = 10
    max_items: Optional[int] = None
    fetch_details: bool = True
    request_delay_ms: int = 800
    page_size: int = 200
    timeout: float = 15


@dataclass
class FetchStats:
    source: str
    fetched: int = 0
    normalised: int = 0
    errors: int = 0
    duration: float = 0.0                                   # Seconds
    failures: list[str] = field(default_factory=list, repr=False)

    def record_failure(self, message: str) -> None:
        self.errors += 1
        self.failures.append(message)


@dataclass
class FetchResult:
    events: list[NormalisedEvent]
    stats: FetchStats


def _unique(values) -> list:
    seen: list = []
    for v in values:
        if v and v not in seen:
            seen.append(v)
    return seen
