from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Union

from rail_monitor import dates
from rail_monitor.errors import MalformedCacheEntry
from rail_monitor.models import Observation, RouteSnapshot, RouteTrain, classify
from rail_monitor.parser import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

STORAGE_PREFIX = "train"


SCHEMA = """
CREATE TABLE IF NOT EXISTS cache_entries (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    service_date TEXT,
    updated_ts TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_cache_entries_service_date ON cache_entries(service_date);
"""


@dataclass(frozen=True)
class ObservationKey:
    service_date: date
    train_number: int

    def storage_key(self) -> str:
        return f"{STORAGE_PREFIX}:{self.service_date.isoformat()}:{self.train_number}"


@dataclass(frozen=True)
class RouteMetadataKey:
    def storage_key(self) -> str:
        return f"{STORAGE_PREFIX}:route:metadata"


@dataclass(frozen=True)
class LastRefreshDateKey:
    def storage_key(self) -> str:
        return f"{STORAGE_PREFIX}:route:fetched"


@dataclass(frozen=True)
class SchemaVersionKey:
    def storage_key(self) -> str:
        return "app:version"


CacheKey = Union[ObservationKey, RouteMetadataKey, LastRefreshDateKey, SchemaVersionKey]


def _encode_observation(row: Observation) -> str:
    # status is deliberately left out; it is derived on every read.
    return json.dumps(
        {
            "date": row.service_date.isoformat(),
            "trainNumber": row.train_number,
            "trainType": row.train_type,
            "cancelled": row.cancelled,
            "scheduledDeparture": format_timestamp(row.scheduled_departure),
            "actualDeparture": format_timestamp(row.actual_departure) if row.actual_departure else None,
            "scheduledArrival": format_timestamp(row.scheduled_arrival),
            "actualArrival": format_timestamp(row.actual_arrival) if row.actual_arrival else None,
            "delayMinutes": row.delay_minutes,
        },
        ensure_ascii=False,
    )


def _decode_observation(key: str, raw: str) -> Observation:
    try:
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise TypeError(f"expected an object, got {type(data).__name__}")
        cancelled = data["cancelled"]
        delay_minutes = data["delayMinutes"]
        if not isinstance(cancelled, bool) or not isinstance(delay_minutes, int):
            raise TypeError("cancelled/delayMinutes have the wrong type")
        actual_departure = data.get("actualDeparture")
        actual_arrival = data.get("actualArrival")
        return Observation(
            service_date=date.fromisoformat(data["date"]),
            train_number=int(data["trainNumber"]),
            train_type=str(data.get("trainType") or ""),
            cancelled=cancelled,
            scheduled_departure=parse_timestamp(data["scheduledDeparture"]),
            actual_departure=parse_timestamp(actual_departure) if actual_departure else None,
            scheduled_arrival=parse_timestamp(data["scheduledArrival"]),
            actual_arrival=parse_timestamp(actual_arrival) if actual_arrival else None,
            delay_minutes=delay_minutes,
            status=classify(cancelled, delay_minutes),
        )
    except (ValueError, KeyError, TypeError, AttributeError) as exc:
        raise MalformedCacheEntry(key, str(exc)) from exc


def _encode_snapshot(snapshot: RouteSnapshot) -> str:
    return json.dumps(
        {
            "referenceDate": snapshot.reference_date.isoformat(),
            "trains": [
                {
                    "trainNumber": train.train_number,
                    "trainType": train.train_type,
                    "direction": train.direction,
                    "origin": train.origin,
                    "destination": train.destination,
                    "scheduledDeparture": format_timestamp(train.scheduled_departure),
                    "cancelled": train.cancelled,
                }
                for train in snapshot.trains
            ],
        },
        ensure_ascii=False,
    )


def _decode_snapshot(key: str, raw: str) -> RouteSnapshot:
    try:
        data = json.loads(raw)
        return RouteSnapshot(
            reference_date=date.fromisoformat(data["referenceDate"]),
            trains=[
                RouteTrain(
                    train_number=int(item["trainNumber"]),
                    train_type=str(item.get("trainType") or ""),
                    direction=str(item["direction"]),
                    origin=str(item["origin"]),
                    destination=str(item["destination"]),
                    scheduled_departure=parse_timestamp(item["scheduledDeparture"]),
                    cancelled=bool(item.get("cancelled", False)),
                )
                for item in data["trains"]
            ],
        )
    except (ValueError, KeyError, TypeError, AttributeError) as exc:
        raise MalformedCacheEntry(key, str(exc)) from exc


class TrainCache:
    """Persistent (date, train number) -> Observation store plus a few reserved keys.

    Today's observations are never written or read: same-day data may still
    change and is always fetched again.
    """

    def __init__(
        self,
        db_path: str,
        timezone_name: str = dates.DEFAULT_TIMEZONE,
        retention_days: int = 90,
        busy_timeout_seconds: float = 5.0,
    ) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.timezone = timezone_name
        self.retention_days = retention_days
        self.busy_timeout_seconds = busy_timeout_seconds

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path, timeout=self.busy_timeout_seconds)

    def initialize(self, app_version: str | None = None) -> bool:
        """Create the schema; with ``app_version`` also reset on a version change.

        Returns True when the cache was cleared.
        """
        with self._connect() as con:
            con.executescript(SCHEMA)
            con.commit()
        if app_version is None:
            return False
        return self._check_version(app_version)

    def _check_version(self, app_version: str) -> bool:
        try:
            stored = self._fetch_value(SchemaVersionKey())
        except sqlite3.Error as exc:
            # An unreadable marker is not a version change; keep the data.
            logger.warning("Cache version check skipped: %s", exc)
            return False
        if stored == app_version:
            return False
        logger.info("Cache version changed (%s -> %s), clearing cache", stored, app_version)
        self.clear()
        self._write(SchemaVersionKey(), app_version)
        return True

    def clear(self) -> None:
        with self._connect() as con:
            con.execute("DELETE FROM cache_entries")
            con.commit()

    def _fetch_value(self, key: CacheKey) -> str | None:
        with self._connect() as con:
            row = con.execute(
                "SELECT value FROM cache_entries WHERE key = ?",
                (key.storage_key(),),
            ).fetchone()
        return row[0] if row else None

    def _read(self, key: CacheKey) -> str | None:
        try:
            return self._fetch_value(key)
        except sqlite3.Error as exc:
            logger.warning("Cache read failed for %s: %s", key.storage_key(), exc)
            return None

    def _write(self, key: CacheKey, value: str) -> bool:
        service_date = key.service_date.isoformat() if isinstance(key, ObservationKey) else None
        try:
            with self._connect() as con:
                con.execute(
                    """
                    INSERT INTO cache_entries (key, value, service_date, updated_ts)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value=excluded.value,
                        service_date=excluded.service_date,
                        updated_ts=excluded.updated_ts
                    """,
                    (key.storage_key(), value, service_date, datetime.now(timezone.utc).isoformat()),
                )
                con.commit()
        except sqlite3.Error as exc:
            logger.warning("Cache write failed for %s: %s", key.storage_key(), exc)
            return False
        return True

    def get(self, service_date: date, train_number: int) -> Observation | None:
        if dates.is_today(service_date, self.timezone):
            return None

        key = ObservationKey(service_date, train_number)
        raw = self._read(key)
        if raw is None:
            return None
        try:
            return _decode_observation(key.storage_key(), raw)
        except MalformedCacheEntry as exc:
            logger.warning("%s", exc)
            return None

    def put(self, service_date: date, train_number: int, observation: Observation) -> None:
        if dates.is_today(service_date, self.timezone):
            return
        self._write(ObservationKey(service_date, train_number), _encode_observation(observation))

    def sweep(self) -> int:
        """Drop observations dated before today minus the retention horizon.

        Only observation entries carry a service_date, so reserved keys are never
        touched. An entry exactly ``retention_days`` old is kept.
        """
        cutoff = dates.today(self.timezone) - timedelta(days=self.retention_days)
        try:
            with self._connect() as con:
                cursor = con.execute(
                    "DELETE FROM cache_entries WHERE service_date IS NOT NULL AND service_date < ?",
                    (cutoff.isoformat(),),
                )
                con.commit()
                removed = cursor.rowcount
        except sqlite3.Error as exc:
            logger.warning("Cache sweep failed: %s", exc)
            return 0
        if removed:
            logger.info("Swept %d cached observations older than %s", removed, cutoff)
        return removed

    def get_route_metadata(self) -> RouteSnapshot | None:
        key = RouteMetadataKey()
        raw = self._read(key)
        if raw is None:
            return None
        try:
            return _decode_snapshot(key.storage_key(), raw)
        except MalformedCacheEntry as exc:
            logger.warning("%s", exc)
            return None

    def put_route_metadata(self, snapshot: RouteSnapshot) -> bool:
        return self._write(RouteMetadataKey(), _encode_snapshot(snapshot))

    def get_last_refresh_date(self) -> date | None:
        raw = self._read(LastRefreshDateKey())
        if not raw:
            return None
        try:
            return date.fromisoformat(raw)
        except ValueError:
            logger.warning("Ignoring malformed route refresh marker %r", raw)
            return None

    def set_last_refresh_date(self, day: date) -> bool:
        return self._write(LastRefreshDateKey(), day.isoformat())

    def keys(self) -> list[str]:
        with self._connect() as con:
            return [row[0] for row in con.execute("SELECT key FROM cache_entries ORDER BY key").fetchall()]