# deal_tracker/storage/tracker_db.py

"""SQLite-backed store for tracked products and their price history.

Two access surfaces sit on top of one :class:`TrackerDB` connection:

* :class:`UserStore`: every query is scoped to a single owner.
* :class:`AdminStore`: reads and writes across all owners.  It is only
  handed out in exchange for the configured service key, so the batch
  price check holds an explicit capability instead of ambient access.
"""

import hmac
import logging
import re
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from deal_tracker.config.settings import Settings
from deal_tracker.errors import AuthError, StoreError
from deal_tracker.models.price_history import PriceHistoryEntry
from deal_tracker.models.product import TrackedProduct

logger = logging.getLogger("deal_tracker.store")

# Session / campaign params that vary per visit
_TRACKING_PARAMS: frozenset[str] = frozenset({
    "ref", "ref_", "dib", "dib_tag", "qid", "sr", "spm",
    "fbclid", "gclid", "msclkid", "yclid", "mc_cid", "mc_eid",
    "pd_rd_i", "pd_rd_r", "pd_rd_w", "pd_rd_wg",
    "pf_rd_p", "pf_rd_r", "from", "search_key",
})

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS users (
    id    TEXT PRIMARY KEY,
    email TEXT
);

CREATE TABLE IF NOT EXISTS products (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id       TEXT    NOT NULL,
    url           TEXT    NOT NULL,
    name          TEXT    NOT NULL,
    current_price TEXT    NOT NULL,
    currency      TEXT    NOT NULL DEFAULT 'BDT',
    image_url     TEXT,
    created_at    TEXT    NOT NULL,
    updated_at    TEXT    NOT NULL,
    UNIQUE (user_id, url)
);

CREATE TABLE IF NOT EXISTS price_history (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    product_id INTEGER NOT NULL
               REFERENCES products(id) ON DELETE CASCADE,
    price      TEXT    NOT NULL,
    currency   TEXT    NOT NULL DEFAULT 'BDT',
    checked_at TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_history_product_date
    ON price_history(product_id, checked_at);
"""

_PRODUCT_COLUMNS = (
    "id, user_id, url, name, current_price, currency, "
    "image_url, created_at, updated_at"
)


def normalize_url(raw_url: str) -> str:
    """Strip tracking/session query params to get a stable product URL."""
    raw_url = raw_url.strip()
    parsed = urlparse(raw_url)

    # Amazon path-based tracking (e.g. /ref=sr_1_243)
    path = re.sub(r"/ref=[^/]*", "", parsed.path)

    params = parse_qs(parsed.query, keep_blank_values=True)
    cleaned = {
        k: v for k, v in params.items()
        if k.lower() not in _TRACKING_PARAMS
        and not k.lower().startswith("utm_")
    }
    new_query = urlencode(cleaned, doseq=True) if cleaned else ""
    return urlunparse((
        parsed.scheme,
        parsed.netloc,
        path,
        parsed.params,
        new_query,
        "",  # drop fragment
    ))


def _now() -> datetime:
    return datetime.now(UTC)


def _row_to_product(row: sqlite3.Row) -> TrackedProduct:
    return TrackedProduct(
        id=row["id"],
        user_id=row["user_id"],
        url=row["url"],
        name=row["name"],
        current_price=Decimal(row["current_price"]),
        currency=row["currency"],
        image_url=row["image_url"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _row_to_entry(row: sqlite3.Row) -> PriceHistoryEntry:
    return PriceHistoryEntry(
        id=row["id"],
        product_id=row["product_id"],
        price=Decimal(row["price"]),
        currency=row["currency"],
        checked_at=datetime.fromisoformat(row["checked_at"]),
    )


class TrackerDB:
    """SQLite connection holding the products and price history tables."""

    def __init__(
        self,
        db_path: Path | None = None,
        service_key: str | None = None,
    ) -> None:
        path = db_path or Settings.DB_PATH
        path.parent.mkdir(parents=True, exist_ok=True)
        self._service_key = (
            Settings.SERVICE_ROLE_KEY
            if service_key is None
            else service_key
        )
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(
            str(path), check_same_thread=False,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.executescript(_SCHEMA)
        logger.debug("TrackerDB opened at %s", path)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """Yield a cursor under the connection lock; commit on exit.

        Any ``sqlite3.Error`` rolls back and is re-raised as
        :class:`StoreError`.
        """
        with self._lock:
            cur = self._conn.cursor()
            try:
                yield cur
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                logger.error("Store operation failed: %s", exc)
                raise StoreError(str(exc)) from exc
            except BaseException:
                self._conn.rollback()
                raise
            finally:
                cur.close()

    # ── Users ────────────────────────────────────────────

    def upsert_user(self, user_id: str, email: str | None) -> None:
        """Register or update the contact address for an owner."""
        with self.transaction() as cur:
            cur.execute(
                "INSERT INTO users (id, email) VALUES (?, ?) "
                "ON CONFLICT(id) DO UPDATE SET email=excluded.email",
                (user_id, email),
            )

    # ── Access surfaces ──────────────────────────────────

    def for_user(self, user_id: str) -> "UserStore":
        """Return a store whose every query is scoped to *user_id*."""
        return UserStore(self, user_id)

    def admin(self, service_key: str) -> "AdminStore":
        """Exchange the service key for cross-owner access.

        Raises :class:`AuthError` when no key is configured or the
        presented key does not match.
        """
        if not self._service_key or not hmac.compare_digest(
            service_key.encode(), self._service_key.encode(),
        ):
            raise AuthError("Invalid service key")
        return AdminStore(self)


class UserStore:
    """Owner-scoped product and history operations."""

    def __init__(self, db: TrackerDB, user_id: str) -> None:
        self._db = db
        self.user_id = user_id

    def list_products(self) -> list[TrackedProduct]:
        """Return the owner's products, newest first."""
        with self._db.transaction() as cur:
            rows = cur.execute(
                f"SELECT {_PRODUCT_COLUMNS} FROM products "
                "WHERE user_id = ? "
                "ORDER BY created_at DESC, id DESC",
                (self.user_id,),
            ).fetchall()
        return [_row_to_product(r) for r in rows]

    def get_product(self, product_id: int) -> TrackedProduct | None:
        """Return one of the owner's products by id."""
        with self._db.transaction() as cur:
            row = cur.execute(
                f"SELECT {_PRODUCT_COLUMNS} FROM products "
                "WHERE id = ? AND user_id = ?",
                (product_id, self.user_id),
            ).fetchone()
        return _row_to_product(row) if row else None

    def find_by_url(self, url: str) -> TrackedProduct | None:
        """Return the owner's product for *url*, if tracked."""
        with self._db.transaction() as cur:
            row = cur.execute(
                f"SELECT {_PRODUCT_COLUMNS} FROM products "
                "WHERE user_id = ? AND url = ?",
                (self.user_id, normalize_url(url)),
            ).fetchone()
        return _row_to_product(row) if row else None

    def upsert_product(
        self,
        url: str,
        name: str,
        current_price: Decimal,
        currency: str,
        image_url: str | None,
        updated_at: datetime | None = None,
    ) -> TrackedProduct:
        """Insert or overwrite the owner's row for *url*.

        Conflicts on ``(user_id, url)`` always merge with the latest
        values; ``created_at`` is kept from the first insert.
        """
        url = normalize_url(url)
        ts = (updated_at or _now()).isoformat()
        with self._db.transaction() as cur:
            cur.execute(
                "INSERT INTO products (user_id, url, name, "
                "current_price, currency, image_url, "
                "created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(user_id, url) DO UPDATE SET "
                "name=excluded.name, "
                "current_price=excluded.current_price, "
                "currency=excluded.currency, "
                "image_url=excluded.image_url, "
                "updated_at=excluded.updated_at",
                (
                    self.user_id, url, name, str(current_price),
                    currency, image_url, ts, ts,
                ),
            )
            row = cur.execute(
                f"SELECT {_PRODUCT_COLUMNS} FROM products "
                "WHERE user_id = ? AND url = ?",
                (self.user_id, url),
            ).fetchone()
        return _row_to_product(row)

    def insert_history(
        self,
        product_id: int,
        price: Decimal,
        currency: str,
        checked_at: datetime | None = None,
    ) -> PriceHistoryEntry:
        """Append a price observation to one of the owner's products."""
        if self.get_product(product_id) is None:
            raise StoreError(f"Product {product_id} not found")
        return _insert_history(
            self._db, product_id, price, currency, checked_at,
        )

    def get_price_history(
        self, product_id: int,
    ) -> list[PriceHistoryEntry]:
        """Return the observations for an owned product, oldest first."""
        with self._db.transaction() as cur:
            rows = cur.execute(
                "SELECT h.id, h.product_id, h.price, h.currency, "
                "       h.checked_at "
                "FROM price_history h "
                "JOIN products p ON p.id = h.product_id "
                "WHERE h.product_id = ? AND p.user_id = ? "
                "ORDER BY h.checked_at ASC, h.id ASC",
                (product_id, self.user_id),
            ).fetchall()
        return [_row_to_entry(r) for r in rows]

    def delete_product(self, product_id: int) -> bool:
        """Delete an owned product; history rows cascade.

        Returns ``False`` when the product does not exist or belongs
        to another owner.
        """
        with self._db.transaction() as cur:
            cur.execute(
                "DELETE FROM products WHERE id = ? AND user_id = ?",
                (product_id, self.user_id),
            )
            deleted = cur.rowcount > 0
        if deleted:
            logger.info(
                "Deleted product %s for user %s",
                product_id,
                self.user_id,
            )
        return deleted


class AdminStore:
    """Cross-owner operations used by the batch price check."""

    def __init__(self, db: TrackerDB) -> None:
        self._db = db

    def list_all_products(self) -> list[TrackedProduct]:
        """Return every tracked product across all owners."""
        with self._db.transaction() as cur:
            rows = cur.execute(
                f"SELECT {_PRODUCT_COLUMNS} FROM products "
                "ORDER BY id ASC",
            ).fetchall()
        return [_row_to_product(r) for r in rows]

    def update_product_price(
        self,
        product_id: int,
        current_price: Decimal,
        currency: str,
        image_url: str | None,
        updated_at: datetime | None = None,
    ) -> None:
        """Overwrite the latest observed values on a product row."""
        ts = (updated_at or _now()).isoformat()
        with self._db.transaction() as cur:
            cur.execute(
                "UPDATE products SET current_price = ?, "
                "currency = ?, image_url = ?, updated_at = ? "
                "WHERE id = ?",
                (str(current_price), currency, image_url, ts, product_id),
            )
            if cur.rowcount == 0:
                raise StoreError(f"Product {product_id} not found")

    def insert_history(
        self,
        product_id: int,
        price: Decimal,
        currency: str,
        checked_at: datetime | None = None,
    ) -> PriceHistoryEntry:
        """Append a price observation to any product."""
        return _insert_history(
            self._db, product_id, price, currency, checked_at,
        )

    def get_user_email(self, user_id: str) -> str | None:
        """Look up the contact address for an owner."""
        with self._db.transaction() as cur:
            row = cur.execute(
                "SELECT email FROM users WHERE id = ?",
                (user_id,),
            ).fetchone()
        if row is None or not row["email"]:
            return None
        return str(row["email"])


def _insert_history(
    db: TrackerDB,
    product_id: int,
    price: Decimal,
    currency: str,
    checked_at: datetime | None,
) -> PriceHistoryEntry:
    ts = checked_at or _now()
    with db.transaction() as cur:
        cur.execute(
            "INSERT INTO price_history "
            "(product_id, price, currency, checked_at) "
            "VALUES (?, ?, ?, ?)",
            (product_id, str(price), currency, ts.isoformat()),
        )
        entry_id = cur.lastrowid
    logger.debug(
        "Recorded price %s %s for product %s",
        price,
        currency,
        product_id,
    )
    return PriceHistoryEntry(
        id=int(entry_id or 0),
        product_id=product_id,
        price=Decimal(price),
        currency=currency,
        checked_at=ts,
    )
