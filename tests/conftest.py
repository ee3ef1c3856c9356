"""
Shared pytest fixtures: a frozen "today", a temporary cache and a stub API client.
"""

import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime, timezone

import pytest

from rail_monitor import dates
from rail_monitor.config import Settings
from rail_monitor.models import Observation, classify
from rail_monitor.storage import TrainCache

FROZEN_TODAY = date(2026, 2, 3)  # Tuesday
OUTBOUND = 1719
RETURN = 9700


def train_payload(day, number, delay=0, cancelled=False, from_station="LPÄ", to_station="TPE"):
    iso = day.isoformat()
    return {
        "trainNumber": number,
        "departureDate": iso,
        "trainType": "HL",
        "operatorShortCode": "vr",
        "runningCurrently": False,
        "cancelled": cancelled,
        "timeTableRows": [
            {
                "stationShortCode": from_station,
                "type": "DEPARTURE",
                "scheduledTime": f"{iso}T06:20:00.000Z",
                "actualTime": f"{iso}T06:2{min(delay, 9)}:00.000Z",
                "differenceInMinutes": delay,
                "commercialStop": True,
                "cancelled": cancelled,
            },
            {
                "stationShortCode": to_station,
                "type": "ARRIVAL",
                "scheduledTime": f"{iso}T06:35:00.000Z",
                "actualTime": f"{iso}T06:3{min(delay, 9)}:00.000Z",
                "differenceInMinutes": delay,
                "commercialStop": True,
                "cancelled": cancelled,
            },
        ],
    }


def make_observation(day, number=OUTBOUND, delay=0, cancelled=False, status=None):
    scheduled = datetime(day.year, day.month, day.day, 6, 20, tzinfo=timezone.utc)
    return Observation(
        service_date=day,
        train_number=number,
        train_type="HL",
        cancelled=cancelled,
        scheduled_departure=scheduled,
        actual_departure=None if cancelled else scheduled.replace(minute=20 + min(delay, 39)),
        scheduled_arrival=scheduled.replace(minute=35),
        actual_arrival=None if cancelled else scheduled.replace(minute=35),
        delay_minutes=delay,
        status=status or classify(cancelled, delay),
    )


class StubClient:
    """Stands in for DigitrafficClient; responses are keyed by (date, train number).

    A value may be a payload dict, None (no data) or an exception to raise.
    Unknown keys produce a punctual train.
    """

    def __init__(self, responses=None, hook=None):
        self.responses = responses or {}
        self.hook = hook
        self.calls = []
        self._lock = threading.Lock()

    def get_train(self, service_date, train_number):
        with self._lock:
            self.calls.append((service_date, train_number))
        if self.hook is not None:
            self.hook(service_date, train_number)
        key = (service_date, train_number)
        if key not in self.responses:
            if train_number == RETURN:
                return train_payload(service_date, train_number, from_station="TPE", to_station="LPÄ")
            return train_payload(service_date, train_number)
        value = self.responses[key]
        if isinstance(value, BaseException):
            raise value
        return value


@pytest.fixture
def frozen_today(monkeypatch):
    monkeypatch.setattr(dates, "today", lambda timezone=dates.DEFAULT_TIMEZONE: FROZEN_TODAY)
    return FROZEN_TODAY


@pytest.fixture
def cache(tmp_path, frozen_today):
    store = TrainCache(str(tmp_path / "cache" / "trains.db"), retention_days=90)
    store.initialize()
    return store


@pytest.fixture
def settings(tmp_path):
    return Settings(
        timezone=dates.DEFAULT_TIMEZONE,
        api_endpoint="https://rata.example/api/v1",
        graphql_endpoint="https://rata.example/api/v2/graphql/graphql",
        database_path=str(tmp_path / "trains.db"),
        max_api_calls=30,
        request_timeout_seconds=5.0,
        request_retries=1,
        max_workers=4,
        retention_days=90,
        app_version="test",
    )


@contextmanager
def exclusive_lock(store):
    """Hold an exclusive SQLite lock so every other connection to ``store`` times out."""
    store.busy_timeout_seconds = 0.05
    con = sqlite3.connect(store.db_path, isolation_level=None)
    try:
        con.execute("BEGIN EXCLUSIVE")
        yield con
        con.execute("ROLLBACK")
    finally:
        con.close()
