"""Database layer for motorcycle listings and their photos."""

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from config import DB_PATH
from errors import InvalidTransitionError, NotFoundError, PersistenceError
from models import (
    STATUS_AVAILABLE,
    STATUS_DRAFT,
    STATUSES,
    Listing,
    ListingAttributes,
    NewListing,
    Photo,
    can_transition,
)

logger = logging.getLogger(__name__)

PATCHABLE_FIELDS = {"title", "price", "currency", "description", "status", "attributes"}


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def format_price(price) -> str:
    """Plain positional form, never exponent notation."""
    return format(Decimal(price), "f")


def get_conn(db_path: str = DB_PATH) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def init_db(db_path: str = DB_PATH):
    conn = get_conn(db_path)
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS motorcycle (
            id              TEXT PRIMARY KEY,
            title           TEXT NOT NULL,
            price           TEXT NOT NULL DEFAULT '0',
            currency        TEXT NOT NULL,
            description     TEXT,
            status          TEXT NOT NULL DEFAULT 'draft',
            source_url      TEXT NOT NULL,
            attributes      TEXT NOT NULL DEFAULT '{}',
            created_at      TEXT NOT NULL,
            updated_at      TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS motorcycle_photo (
            id              TEXT PRIMARY KEY,
            motorcycle_id   TEXT NOT NULL REFERENCES motorcycle(id) ON DELETE CASCADE,
            url             TEXT NOT NULL,
            "order"         INTEGER NOT NULL,
            created_at      TEXT NOT NULL,
            UNIQUE(motorcycle_id, "order")
        );

        CREATE INDEX IF NOT EXISTS idx_motorcycle_status ON motorcycle(status);
        CREATE INDEX IF NOT EXISTS idx_motorcycle_created_at ON motorcycle(created_at);
        CREATE INDEX IF NOT EXISTS idx_photo_motorcycle_id ON motorcycle_photo(motorcycle_id);
    """)
    conn.commit()
    conn.close()


def _row_to_listing(row: sqlite3.Row) -> Listing:
    return Listing(
        id=row["id"],
        title=row["title"],
        price=Decimal(row["price"]),
        currency=row["currency"],
        status=row["status"],
        source_url=row["source_url"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        description=row["description"],
        attributes=ListingAttributes.from_dict(json.loads(row["attributes"] or "{}")),
    )


def _row_to_photo(row: sqlite3.Row) -> Photo:
    return Photo(
        id=row["id"],
        listing_id=row["motorcycle_id"],
        url=row["url"],
        order=row["order"],
        created_at=row["created_at"],
    )


def _insert_photos(conn: sqlite3.Connection, listing_id: str, urls: list[str], start: int):
    now = now_iso()
    for i, url in enumerate(urls):
        conn.execute(
            'INSERT INTO motorcycle_photo (id, motorcycle_id, url, "order", created_at) VALUES (?, ?, ?, ?, ?)',
            (str(uuid.uuid4()), listing_id, url, start + i, now),
        )


def _max_order(conn: sqlite3.Connection, listing_id: str) -> int:
    row = conn.execute(
        'SELECT COALESCE(MAX("order"), -1) AS m FROM motorcycle_photo WHERE motorcycle_id = ?',
        (listing_id,),
    ).fetchone()
    return row["m"]


class ListingRepo:
    """SQLite-backed listing persistence.

    Every method opens its own connection, so one repo can be shared between threads.
    Multi-statement writes run inside ``BEGIN IMMEDIATE`` transactions.
    """

    def __init__(self, db_path: str = DB_PATH):
        self.db_path = db_path

    @contextmanager
    def _connect(self, write: bool = False):
        try:
            conn = get_conn(self.db_path)
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to open database: {e}") from e
        try:
            if write:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            if write:
                conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(f"Database error: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def create(self, listing: NewListing) -> str:
        """Insert a listing (and any photo URLs it carries). Returns the new id."""
        if listing.status not in STATUSES:
            raise PersistenceError(f"Unknown status: {listing.status}")
        listing_id = str(uuid.uuid4())
        now = now_iso()
        with self._connect(write=True) as conn:
            conn.execute("""
                INSERT INTO motorcycle (id, title, price, currency, description, status,
                                        source_url, attributes, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                listing_id,
                listing.title,
                format_price(listing.price),
                listing.currency,
                listing.description,
                listing.status,
                listing.source_url,
                json.dumps(listing.attributes.as_dict(), ensure_ascii=False),
                now, now,
            ))
            _insert_photos(conn, listing_id, listing.photo_urls, 0)
        logger.debug(f"Created listing {listing_id} ({listing.status})")
        return listing_id

    def patch(self, listing_id: str, fields: dict):
        """Apply a partial update in one transaction.

        ``attributes`` is merged into the stored bag; a ``status`` change is checked
        against the status machine before anything is written. Publishing a draft
        needs a positive price and an arrival date, either stored already or carried
        by the same patch.
        """
        unknown = set(fields) - PATCHABLE_FIELDS
        if unknown:
            raise PersistenceError(f"Unknown fields: {', '.join(sorted(unknown))}")

        with self._connect(write=True) as conn:
            row = conn.execute(
                "SELECT status, price, attributes FROM motorcycle WHERE id = ?", (listing_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"Listing {listing_id} not found", listing_id=listing_id)

            sets = ["updated_at = ?"]
            params = [now_iso()]

            merged = json.loads(row["attributes"] or "{}")
            if "attributes" in fields:
                merged.update(fields["attributes"].as_dict()
                              if isinstance(fields["attributes"], ListingAttributes)
                              else fields["attributes"])
                sets.append("attributes = ?")
                params.append(json.dumps(merged, ensure_ascii=False))

            price = Decimal(fields["price"]) if "price" in fields else Decimal(row["price"])
            if "price" in fields:
                sets.append("price = ?")
                params.append(format_price(price))

            if "status" in fields:
                target = fields["status"]
                if not can_transition(row["status"], target):
                    raise InvalidTransitionError(row["status"], target, listing_id=listing_id)
                if row["status"] == STATUS_DRAFT and target == STATUS_AVAILABLE:
                    if price <= 0:
                        raise InvalidTransitionError(row["status"], target, listing_id=listing_id,
                                                     reason="price is not set")
                    if not merged.get("arrival_date"):
                        raise InvalidTransitionError(row["status"], target, listing_id=listing_id,
                                                     reason="arrival date is not set")
                sets.append("status = ?")
                params.append(target)

            for key in ("title", "currency", "description"):
                if key in fields:
                    sets.append(f"{key} = ?")
                    params.append(fields[key])

            params.append(listing_id)
            conn.execute(f"UPDATE motorcycle SET {', '.join(sets)} WHERE id = ?", params)

    def filter(self, criteria: Optional[dict] = None, include_photos: bool = False) -> list[Listing]:
        criteria = criteria or {}
        where_clauses = []
        params = []

        if criteria.get("id"):
            where_clauses.append("id = ?")
            params.append(criteria["id"])

        if criteria.get("status"):
            where_clauses.append("status = ?")
            params.append(criteria["status"])

        if criteria.get("statuses"):
            where_clauses.append(f"status IN ({', '.join('?' for _ in criteria['statuses'])})")
            params.extend(criteria["statuses"])

        if criteria.get("title"):
            where_clauses.append("title LIKE ?")
            params.append(f"%{criteria['title']}%")

        if criteria.get("min_price") is not None:
            where_clauses.append("CAST(price AS REAL) >= ?")
            params.append(float(criteria["min_price"]))

        if criteria.get("max_price") is not None:
            where_clauses.append("CAST(price AS REAL) <= ?")
            params.append(float(criteria["max_price"]))

        if criteria.get("created_before"):
            where_clauses.append("created_at < ?")
            params.append(criteria["created_before"])

        where = " AND ".join(where_clauses) if where_clauses else "1=1"

        with self._connect() as conn:
            rows = conn.execute(f"""
                SELECT * FROM motorcycle WHERE {where}
                ORDER BY CASE status
                    WHEN 'available' THEN 1
                    WHEN 'reserved' THEN 2
                    WHEN 'sold' THEN 3
                    ELSE 4
                END, created_at DESC
            """, params).fetchall()
            listings = [_row_to_listing(row) for row in rows]

            if include_photos and listings:
                by_id = {listing.id: listing for listing in listings}
                placeholders = ", ".join("?" for _ in by_id)
                photo_rows = conn.execute(
                    f'SELECT * FROM motorcycle_photo WHERE motorcycle_id IN ({placeholders}) '
                    f'AND url != \'\' ORDER BY "order" ASC',
                    list(by_id),
                ).fetchall()
                for photo_row in photo_rows:
                    photo = _row_to_photo(photo_row)
                    by_id[photo.listing_id].photos.append(photo)

        return listings

    def get(self, listing_id: str, include_photos: bool = True) -> Listing:
        found = self.filter({"id": listing_id}, include_photos=include_photos)
        if not found:
            raise NotFoundError(f"Listing {listing_id} not found", listing_id=listing_id)
        return found[0]

    def add_photos(self, listing_id: str, urls: list[str]) -> list[Photo]:
        """Append photos after the current highest order index."""
        with self._connect(write=True) as conn:
            exists = conn.execute("SELECT 1 FROM motorcycle WHERE id = ?", (listing_id,)).fetchone()
            if exists is None:
                raise NotFoundError(f"Listing {listing_id} not found", listing_id=listing_id)
            start = _max_order(conn, listing_id) + 1
            _insert_photos(conn, listing_id, urls, start)
            rows = conn.execute(
                'SELECT * FROM motorcycle_photo WHERE motorcycle_id = ? AND "order" >= ? ORDER BY "order"',
                (listing_id, start),
            ).fetchall()
        return [_row_to_photo(row) for row in rows]

    def next_photo_order(self, listing_id: str) -> int:
        with self._connect() as conn:
            return _max_order(conn, listing_id) + 1

    def reserve_photos(self, listing_id: str, count: int) -> int:
        """Claim ``count`` order slots after the current last photo. Returns the first one.

        Reserved slots hold an empty URL and stay hidden from reads until
        ``fill_photos`` sets them.
        """
        with self._connect(write=True) as conn:
            exists = conn.execute("SELECT 1 FROM motorcycle WHERE id = ?", (listing_id,)).fetchone()
            if exists is None:
                raise NotFoundError(f"Listing {listing_id} not found", listing_id=listing_id)
            start = _max_order(conn, listing_id) + 1
            _insert_photos(conn, listing_id, [""] * count, start)
        return start

    def fill_photos(self, listing_id: str, start: int, urls: list[str]):
        with self._connect(write=True) as conn:
            for i, url in enumerate(urls):
                conn.execute(
                    'UPDATE motorcycle_photo SET url = ? WHERE motorcycle_id = ? AND "order" = ?',
                    (url, listing_id, start + i),
                )

    def release_photos(self, listing_id: str, start: int, count: int):
        """Drop reserved slots that were never filled."""
        with self._connect(write=True) as conn:
            conn.execute(
                'DELETE FROM motorcycle_photo WHERE motorcycle_id = ? AND url = \'\' '
                'AND "order" >= ? AND "order" < ?',
                (listing_id, start, start + count),
            )

    def delete(self, listing_id: str) -> bool:
        with self._connect(write=True) as conn:
            cursor = conn.execute("DELETE FROM motorcycle WHERE id = ?", (listing_id,))
            deleted = cursor.rowcount > 0
        return deleted
