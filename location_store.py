"""
Snapshot persistence for scored locations.

A store holds at most one snapshot per normalized address.  Two
implementations share the LocationStore interface:

  - InMemoryLocationStore: per-process dict, for tests and the CLI
  - SQLiteLocationStore: raw sqlite3, no ORM, survives restarts

Stores are passed explicitly to evaluate_address(); nothing in the scoring
engine reads or writes one.
"""

import json
import logging
import os
import re
import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone, timedelta
from typing import Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)

DB_PATH = os.environ.get("GEOSCORE_DB_PATH", "geoscore.db")

# Snapshots older than this are treated as missing.  0 disables expiry.
CACHE_TTL_HOURS = float(os.environ.get("GEOSCORE_CACHE_TTL_HOURS", "24"))

_NON_ALNUM = re.compile(r"[^a-z0-9]")
_DASH_RUN = re.compile(r"-+")


def location_key_from_address(address: str) -> str:
    """Normalize an address into a cache key.

    Lowercases, replaces every character outside [a-z0-9] with "-", then
    collapses runs of "-".  "123 Main St., NYC" -> "123-main-st-nyc".
    """
    return _DASH_RUN.sub("-", _NON_ALNUM.sub("-", address.lower()))


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class LocationSnapshot:
    """The last evaluation of one address, as cached."""
    address: str
    key: str
    lat: float
    lng: float
    result: Dict                    # ScoreResult.to_dict()
    nearby_places: List[Dict] = field(default_factory=list)      # raw Places results
    transit_stations: List[Dict] = field(default_factory=list)   # raw Places results
    business_type_key: Optional[str] = None
    last_updated: str = field(default_factory=_utcnow_iso)
    is_seeded: bool = False         # demo data; never persisted

    def to_dict(self) -> Dict:
        return {
            "address": self.address,
            "key": self.key,
            "coordinates": {"lat": self.lat, "lng": self.lng},
            "result": self.result,
            "nearby_places": self.nearby_places,
            "transit_stations": self.transit_stations,
            "business_type_key": self.business_type_key,
            "last_updated": self.last_updated,
            "is_seeded": self.is_seeded,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "LocationSnapshot":
        coords = data.get("coordinates") or {}
        return cls(
            address=data["address"],
            key=data["key"],
            lat=coords["lat"],
            lng=coords["lng"],
            result=data["result"],
            nearby_places=data.get("nearby_places") or [],
            transit_stations=data.get("transit_stations") or [],
            business_type_key=data.get("business_type_key"),
            last_updated=data.get("last_updated") or _utcnow_iso(),
            is_seeded=bool(data.get("is_seeded")),
        )

    def is_fresh(self, ttl_hours: float, now: Optional[datetime] = None) -> bool:
        """True if the snapshot is younger than *ttl_hours* (0 = never expires)."""
        if ttl_hours <= 0:
            return True
        try:
            updated = datetime.fromisoformat(self.last_updated)
        except (ValueError, TypeError):
            return False
        # Handle naive timestamps by assuming UTC
        if updated.tzinfo is None:
            updated = updated.replace(tzinfo=timezone.utc)
        now = now or datetime.now(timezone.utc)
        return now - updated <= timedelta(hours=ttl_hours)


class LocationStore(Protocol):
    def get(self, key: str) -> Optional[LocationSnapshot]: ...

    def put(self, key: str, snapshot: LocationSnapshot) -> None: ...


class InMemoryLocationStore:
    """Dict-backed store.  Thread-safe; contents die with the process."""

    def __init__(self, ttl_hours: float = CACHE_TTL_HOURS):
        self.ttl_hours = ttl_hours
        self._data: Dict[str, Dict] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[LocationSnapshot]:
        with self._lock:
            raw = self._data.get(key)
        if raw is None:
            return None
        snapshot = LocationSnapshot.from_dict(raw)
        if not snapshot.is_fresh(self.ttl_hours):
            return None
        return snapshot

    def put(self, key: str, snapshot: LocationSnapshot) -> None:
        if snapshot.is_seeded:
            logger.debug("Not persisting seeded snapshot for %s", key)
            return
        # Stored as a plain dict copy so callers can't mutate the cache.
        raw = json.loads(json.dumps(snapshot.to_dict()))
        with self._lock:
            self._data[key] = raw

    def __len__(self) -> int:
        return len(self._data)


class SQLiteLocationStore:
    """One row per address key in a ``location_snapshots`` table.

    Cache read errors are logged and treated as misses so they never break an
    evaluation; write errors are logged and dropped.
    """

    def __init__(self, db_path: Optional[str] = None, ttl_hours: float = CACHE_TTL_HOURS):
        self.db_path = db_path or DB_PATH
        self.ttl_hours = ttl_hours
        self.init_db()

    def _get_db(self):
        """Get a sqlite3 connection with WAL mode for concurrent reads."""
        conn = sqlite3.connect(self.db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def init_db(self):
        """Create tables if they don't exist. Safe to call on every startup."""
        conn = self._get_db()
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS location_snapshots (
                location_key    TEXT PRIMARY KEY,
                address         TEXT NOT NULL,
                score           INTEGER,
                snapshot_json   TEXT NOT NULL,
                last_updated    TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_location_snapshots_updated
                ON location_snapshots(last_updated);
        """)
        conn.commit()
        conn.close()

    def get(self, key: str) -> Optional[LocationSnapshot]:
        try:
            conn = self._get_db()
            row = conn.execute(
                "SELECT snapshot_json FROM location_snapshots WHERE location_key = ?",
                (key,),
            ).fetchone()
            conn.close()
        except sqlite3.Error:
            logger.warning("Location snapshot lookup failed for %s", key, exc_info=True)
            return None

        if not row:
            return None

        try:
            snapshot = LocationSnapshot.from_dict(json.loads(row["snapshot_json"]))
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            logger.error("Corrupted snapshot_json for %s: %s", key, e)
            return None

        if not snapshot.is_fresh(self.ttl_hours):
            return None
        return snapshot

    def put(self, key: str, snapshot: LocationSnapshot) -> None:
        if snapshot.is_seeded:
            logger.debug("Not persisting seeded snapshot for %s", key)
            return
        try:
            conn = self._get_db()
            conn.execute(
                """INSERT OR REPLACE INTO location_snapshots
                   (location_key, address, score, snapshot_json, last_updated)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    key,
                    snapshot.address,
                    snapshot.result.get("score"),
                    json.dumps(snapshot.to_dict(), default=str),
                    snapshot.last_updated,
                ),
            )
            conn.commit()
            conn.close()
        except sqlite3.Error:
            logger.warning("Location snapshot write failed for %s", key, exc_info=True)
