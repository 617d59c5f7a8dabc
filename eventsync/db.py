import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol, Union

from eventsync.errors import DuplicateKeyError, StoreUnavailableError
from eventsync.models import CanonicalEventRecord, Venue


class RecordStore(Protocol):
    def find_all(self) -> list[CanonicalEventRecord]: ...

    def find_by_key(self, source: str, source_id: str) -> Optional[CanonicalEventRecord]: ...

    def insert(self, record: CanonicalEventRecord) -> int: ...

    def update_by_id(self, record_id: int, record: CanonicalEventRecord) -> bool: ...

    def count_by_filter(self, **filters) -> int: ...


def connect(db_path: Union[Path, str]) -> sqlite3.Connection:
    try:
        if str(db_path) != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(db_path)
        conn.row_factory = sqlite3.Row
        _create_schema(conn)
    except (sqlite3.Error, OSError) as exc:
        raise StoreUnavailableError(f"cannot open event store at {db_path}: {exc}") from exc
    return conn


def _create_schema(conn: sqlite3.Connection) -> None:
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS events (
            id                  INTEGER PRIMARY KEY AUTOINCREMENT,
            title               TEXT NOT NULL,
            description         TEXT NOT NULL DEFAULT '',
            category            TEXT NOT NULL,
            subcategories       TEXT NOT NULL DEFAULT '[]',
            start_date          TEXT NOT NULL,
            end_date            TEXT,
            venue_name          TEXT NOT NULL,
            venue_address       TEXT NOT NULL DEFAULT '',
            venue_suburb        TEXT NOT NULL DEFAULT '',
            price_min           REAL,
            price_max           REAL,
            price_details       TEXT,
            is_free             INTEGER NOT NULL DEFAULT 0,
            booking_url         TEXT NOT NULL DEFAULT '',
            image_url           TEXT,
            video_url           TEXT,
            accessibility       TEXT NOT NULL DEFAULT '[]',
            age_restriction     TEXT,
            duration            TEXT,
            primary_source      TEXT NOT NULL,
            primary_source_id   TEXT NOT NULL,
            sources             TEXT NOT NULL DEFAULT '[]',
            source_ids          TEXT NOT NULL DEFAULT '{}',
            booking_urls        TEXT NOT NULL DEFAULT '{}',
            merged_from         TEXT NOT NULL DEFAULT '[]',
            scraped_at          TEXT NOT NULL,
            last_updated        TEXT NOT NULL,
            last_content_change TEXT NOT NULL,
            is_archived         INTEGER NOT NULL DEFAULT 0,
            UNIQUE(primary_source, primary_source_id),
            UNIQUE(title, venue_name, start_date)
        );

        CREATE INDEX IF NOT EXISTS idx_events_start ON events(start_date, is_archived);
    """)
    conn.commit()


_COLUMNS = (
    "title", "description", "category", "subcategories", "start_date", "end_date",
    "venue_name", "venue_address", "venue_suburb", "price_min", "price_max",
    "price_details", "is_free", "booking_url", "image_url", "video_url",
    "accessibility", "age_restriction", "duration", "primary_source",
    "primary_source_id", "sources", "source_ids", "booking_urls", "merged_from",
    "scraped_at", "last_updated", "last_content_change",
)

_FILTER_COLUMNS = {"is_archived", "primary_source", "category"}


class EventStore:
    """SQLite implementation of the record store used by the merge engine."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def find_all(self) -> list[CanonicalEventRecord]:
        try:
            rows = self.conn.execute("SELECT * FROM events ORDER BY id").fetchall()
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"cannot read events: {exc}") from exc
        return [_row_to_record(r) for r in rows]

    def find_by_id(self, record_id: int) -> Optional[CanonicalEventRecord]:
        row = self.conn.execute("SELECT * FROM events WHERE id = ?", (record_id,)).fetchone()
        return _row_to_record(row) if row else None

    def find_by_key(self, source: str, source_id: str) -> Optional[CanonicalEventRecord]:
        row = self.conn.execute(
            """
            SELECT * FROM events
            WHERE (primary_source = :source AND primary_source_id = :source_id)
               OR EXISTS (
                    SELECT 1 FROM json_each(events.source_ids)
                    WHERE json_each.key = :source AND json_each.value = :source_id
               )
            ORDER BY start_date
            LIMIT 1
            """,
            {"source": source, "source_id": source_id},
        ).fetchone()
        return _row_to_record(row) if row else None

    def insert(self, record: CanonicalEventRecord) -> int:
        params = _record_to_params(record)
        placeholders = ", ".join(f":{c}" for c in _COLUMNS)
        try:
            cursor = self.conn.execute(
                f"INSERT INTO events ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
                params,
            )
        except sqlite3.IntegrityError as exc:
            self.conn.rollback()
            raise DuplicateKeyError(f"{record.primary_source}:{record.primary_source_id} {exc}") from exc
        self.conn.commit()
        return cursor.lastrowid

    def update_by_id(self, record_id: int, record: CanonicalEventRecord) -> bool:
        params = _record_to_params(record)
        params["id"] = record_id
        assignments = ",\n                ".join(f"{c} = :{c}" for c in _COLUMNS)
        try:
            cursor = self.conn.execute(
                f"UPDATE events SET {assignments} WHERE id = :id",
                params,
            )
        except sqlite3.IntegrityError as exc:
            self.conn.rollback()
            raise DuplicateKeyError(f"event {record_id}: {exc}") from exc
        self.conn.commit()
        return cursor.rowcount > 0

    def count_by_filter(self, **filters) -> int:
        clauses, params = [], []
        for key, value in filters.items():
            if key == "source":
                clauses.append("EXISTS (SELECT 1 FROM json_each(events.sources) WHERE json_each.value = ?)")
            elif key in _FILTER_COLUMNS:
                clauses.append(f"{key} = ?")
                if isinstance(value, bool):
                    value = int(value)
            else:
                raise ValueError(f"unsupported filter: {key}")
            params.append(value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return self.conn.execute(f"SELECT COUNT(*) FROM events {where}", params).fetchone()[0]


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _record_to_params(record: CanonicalEventRecord) -> dict:
    return {
        "title":               record.title,
        "description":         record.description or "",
        "category":            record.category,
        "subcategories":       json.dumps(record.subcategories),
        "start_date":          _iso(record.start_date),
        "end_date":            _iso(record.end_date),
        "venue_name":          record.venue.name,
        "venue_address":       record.venue.address,
        "venue_suburb":        record.venue.suburb,
        "price_min":           record.price_min,
        "price_max":           record.price_max,
        "price_details":       record.price_details,
        "is_free":             1 if record.is_free else 0,
        "booking_url":         record.booking_url,
        "image_url":           record.image_url,
        "video_url":           record.video_url,
        "accessibility":       json.dumps(record.accessibility),
        "age_restriction":     record.age_restriction,
        "duration":            record.duration,
        "primary_source":      record.primary_source,
        "primary_source_id":   record.primary_source_id,
        "sources":             json.dumps(record.sources),
        "source_ids":          json.dumps(record.source_ids, sort_keys=True),
        "booking_urls":        json.dumps(record.booking_urls, sort_keys=True),
        "merged_from":         json.dumps(record.merged_from),
        "scraped_at":          _iso(record.scraped_at),
        "last_updated":        _iso(record.last_updated),
        "last_content_change": _iso(record.last_content_change),
    }


def _row_to_record(row: sqlite3.Row) -> CanonicalEventRecord:
    return CanonicalEventRecord(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        category=row["category"],
        subcategories=json.loads(row["subcategories"]),
        start_date=_parse(row["start_date"]),
        end_date=_parse(row["end_date"]),
        venue=Venue(row["venue_name"], row["venue_address"], row["venue_suburb"]),
        price_min=row["price_min"],
        price_max=row["price_max"],
        price_details=row["price_details"],
        is_free=bool(row["is_free"]),
        booking_url=row["booking_url"],
        image_url=row["image_url"],
        video_url=row["video_url"],
        accessibility=json.loads(row["accessibility"]),
        age_restriction=row["age_restriction"],
        duration=row["duration"],
        primary_source=row["primary_source"],
        sources=json.loads(row["sources"]),
        source_ids=json.loads(row["source_ids"]),
        booking_urls=json.loads(row["booking_urls"]),
        merged_from=json.loads(row["merged_from"]),
        scraped_at=_parse(row["scraped_at"]),
        last_updated=_parse(row["last_updated"]),
        last_content_change=_parse(row["last_content_change"]),
        is_archived=bool(row["is_archived"]),
    )
