"""SQLite-backed document store for user-submitted restrooms and their reviews.

Live subscriptions are notified with a fresh nearby snapshot immediately and
after every write. Distance filtering happens client-side after a bounded
scan, so ``subscribe_nearby`` and ``fetch_nearby`` only ever emit records
within the requested radius.
"""
from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from . import config
from .geo import haversine_m, is_valid_coordinate
from .models import (
    RUNTIME_FIELDS,
    STORE_MANAGED_FIELDS,
    RestroomCandidate,
    Result,
    Review,
    candidate_from_document,
    candidate_to_document,
    with_user_rating,
)

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[List[RestroomCandidate]], None]
ErrorCallback = Callable[[Exception], None]

_UPDATABLE_FIELDS = {
    name
    for name in RestroomCandidate.__dataclass_fields__
    if name not in RUNTIME_FIELDS and name not in STORE_MANAGED_FIELDS
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class StoreError(RuntimeError):
    pass


class NearbySubscription:
    def __init__(
        self,
        store: "RestroomStore",
        latitude: float,
        longitude: float,
        radius_m: float,
        on_update: UpdateCallback,
        on_error: Optional[ErrorCallback],
    ) -> None:
        self.id = uuid.uuid4().hex
        self.store = store
        self.latitude = latitude
        self.longitude = longitude
        self.radius_m = radius_m
        self.on_update = on_update
        self.on_error = on_error
        self.closed = False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.store._remove_subscription(self.id)


class RestroomStore:
    def __init__(self, db_path: str = config.STORE_DB_PATH, scan_limit: int = config.STORE_SCAN_LIMIT) -> None:
        self.db_path = db_path
        self.scan_limit = scan_limit
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        # Guards the connection and serializes subscriber notifications.
        self._lock = threading.RLock()
        self._subscriptions: Dict[str, NearbySubscription] = {}
        self._configure_conn()
        self._init_db()

    def _configure_conn(self) -> None:
        cur = self.conn.cursor()
        try:
            cur.execute("PRAGMA journal_mode=WAL")
            cur.fetchone()
        except sqlite3.DatabaseError:
            logger.debug("WAL journal mode unavailable for %s", self.db_path)

    def _init_db(self) -> None:
        cur = self.conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS restrooms (
                id TEXT PRIMARY KEY,
                doc_json TEXT NOT NULL,
                submitted_at TEXT,
                last_updated TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS reviews (
                id TEXT PRIMARY KEY,
                record_id TEXT NOT NULL,
                doc_json TEXT NOT NULL,
                created_at TEXT
            )
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS reviews_by_record ON reviews (record_id, created_at)")
        self.conn.commit()

    def close(self) -> None:
        with self._lock:
            self._subscriptions.clear()
            self.conn.close()

    # --- records ---

    def add_record(self, candidate: RestroomCandidate) -> Result[str]:
        now = utc_now_iso()
        record = with_user_rating(candidate).with_changes(submitted_at=now, last_updated=now)
        record_id = uuid.uuid4().hex
        try:
            with self._lock:
                self.conn.execute(
                    "INSERT INTO restrooms (id, doc_json, submitted_at, last_updated) VALUES (?, ?, ?, ?)",
                    (record_id, json.dumps(candidate_to_document(record)), now, now),
                )
                self.conn.commit()
                self._broadcast()
        except sqlite3.Error as exc:
            logger.error("Failed to add restroom %r: %s", candidate.name, exc)
            return Result.failure(exc)
        logger.info("Added restroom %s (%s)", record_id, record.name)
        return Result.success(record_id)

    def get_by_id(self, record_id: str) -> Result[Optional[RestroomCandidate]]:
        try:
            with self._lock:
                return Result.success(self._load(record_id))
        except sqlite3.Error as exc:
            return Result.failure(exc)

    def update(self, record_id: str, changes: Mapping[str, Any]) -> Result[None]:
        unknown = sorted(set(changes) - _UPDATABLE_FIELDS)
        if unknown:
            return Result.failure(f"Fields cannot be updated: {', '.join(unknown)}")
        try:
            with self._lock:
                current = self._load(record_id)
                if current is None:
                    raise StoreError(f"No restroom with id {record_id}")
                doc = candidate_to_document(current)
                doc.update(changes)
                doc["last_updated"] = utc_now_iso()
                updated = candidate_from_document(record_id, doc)
                self._save(updated)
                self._broadcast()
        except (sqlite3.Error, StoreError, ValueError) as exc:
            logger.error("Failed to update restroom %s: %s", record_id, exc)
            return Result.failure(exc)
        return Result.success(None)

    def delete(self, record_id: str) -> Result[None]:
        try:
            with self._lock:
                cur = self.conn.execute("DELETE FROM restrooms WHERE id = ?", (record_id,))
                if cur.rowcount == 0:
                    self.conn.rollback()
                    raise StoreError(f"No restroom with id {record_id}")
                self.conn.execute("DELETE FROM reviews WHERE record_id = ?", (record_id,))
                self.conn.commit()
                self._broadcast()
        except (sqlite3.Error, StoreError) as exc:
            logger.error("Failed to delete restroom %s: %s", record_id, exc)
            return Result.failure(exc)
        return Result.success(None)

    def fetch_nearby(self, latitude: float, longitude: float, radius_m: float) -> Result[List[RestroomCandidate]]:
        try:
            with self._lock:
                return Result.success(self._nearby(latitude, longitude, radius_m))
        except sqlite3.Error as exc:
            logger.warning("Nearby store query failed: %s", exc)
            return Result.failure(exc)

    def subscribe_nearby(
        self,
        latitude: float,
        longitude: float,
        radius_m: float,
        on_update: UpdateCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> NearbySubscription:
        subscription = NearbySubscription(self, latitude, longitude, radius_m, on_update, on_error)
        with self._lock:
            self._subscriptions[subscription.id] = subscription
            self._emit(subscription)
        return subscription

    # --- reviews ---

    def add_review(self, record_id: str, review: Review) -> Result[str]:
        review_id = uuid.uuid4().hex
        now = utc_now_iso()
        doc = {
            "user_id": review.user_id,
            "user_name": review.user_name,
            "rating": float(review.rating),
            "comment": review.comment,
            "helpful_count": review.helpful_count,
        }
        try:
            with self._lock:
                self.conn.execute(
                    "INSERT INTO reviews (id, record_id, doc_json, created_at) VALUES (?, ?, ?, ?)",
                    (review_id, record_id, json.dumps(doc), now),
                )
                self.conn.commit()
                self._recompute_rating(record_id)
        except sqlite3.Error as exc:
            logger.error("Failed to add review for %s: %s", record_id, exc)
            return Result.failure(exc)
        return Result.success(review_id)

    def list_reviews(self, record_id: str, limit: Optional[int] = config.REVIEW_LIST_LIMIT) -> Result[List[Review]]:
        try:
            with self._lock:
                return Result.success(self._reviews(record_id, limit))
        except sqlite3.Error as exc:
            return Result.failure(exc)

    def _recompute_rating(self, record_id: str) -> None:
        record = self._load(record_id)
        if record is None:
            logger.warning("Review written for unknown restroom %s", record_id)
            return
        reviews = self._reviews(record_id, None)
        if not reviews:
            return
        average = sum(r.rating for r in reviews) / len(reviews)
        self._save(
            record.with_changes(
                rating=max(0.0, min(5.0, average)),
                review_count=len(reviews),
                last_updated=utc_now_iso(),
            )
        )
        self._broadcast()

    # --- internals (callers hold the lock) ---

    def _load(self, record_id: str) -> Optional[RestroomCandidate]:
        row = self.conn.execute("SELECT id, doc_json FROM restrooms WHERE id = ?", (record_id,)).fetchone()
        if row is None:
            return None
        return candidate_from_document(row["id"], json.loads(row["doc_json"]))

    def _save(self, record: RestroomCandidate) -> None:
        self.conn.execute(
            "UPDATE restrooms SET doc_json = ?, last_updated = ? WHERE id = ?",
            (json.dumps(candidate_to_document(record)), record.last_updated, record.id),
        )
        self.conn.commit()

    def _reviews(self, record_id: str, limit: Optional[int]) -> List[Review]:
        sql = "SELECT id, record_id, doc_json, created_at FROM reviews WHERE record_id = ? ORDER BY created_at DESC, rowid DESC"
        params: tuple = (record_id,)
        if limit is not None:
            sql += " LIMIT ?"
            params = (record_id, int(limit))
        reviews: List[Review] = []
        for row in self.conn.execute(sql, params).fetchall():
            doc = json.loads(row["doc_json"])
            reviews.append(
                Review(
                    id=row["id"],
                    record_id=row["record_id"],
                    user_id=doc.get("user_id", ""),
                    user_name=doc.get("user_name", ""),
                    rating=float(doc.get("rating", 0.0)),
                    comment=doc.get("comment", ""),
                    created_at=row["created_at"],
                    helpful_count=int(doc.get("helpful_count", 0)),
                )
            )
        return reviews

    def _nearby(self, latitude: float, longitude: float, radius_m: float) -> List[RestroomCandidate]:
        rows = self.conn.execute(
            "SELECT id, doc_json FROM restrooms ORDER BY rowid LIMIT ?", (self.scan_limit,)
        ).fetchall()
        nearby: List[RestroomCandidate] = []
        for row in rows:
            record = candidate_from_document(row["id"], json.loads(row["doc_json"]))
            if not is_valid_coordinate(record.latitude, record.longitude):
                continue
            distance = haversine_m(latitude, longitude, record.latitude, record.longitude)
            if distance <= radius_m:
                nearby.append(record.with_changes(distance_from_user=distance))
        nearby.sort(key=lambda r: r.distance_from_user)
        return nearby

    def _broadcast(self) -> None:
        for subscription in list(self._subscriptions.values()):
            self._emit(subscription)

    def _emit(self, subscription: NearbySubscription) -> None:
        if subscription.closed:
            return
        try:
            snapshot = self._nearby(subscription.latitude, subscription.longitude, subscription.radius_m)
        except sqlite3.Error as exc:
            logger.error("Live subscription %s failed: %s", subscription.id, exc)
            subscription.close()
            if subscription.on_error is not None:
                subscription.on_error(exc)
            return
        try:
            subscription.on_update(snapshot)
        except Exception:
            logger.exception("Subscriber %s failed to handle an update", subscription.id)

    def _remove_subscription(self, subscription_id: str) -> None:
        with self._lock:
            self._subscriptions.pop(subscription_id, None)
