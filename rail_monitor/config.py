from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import time

from dotenv import load_dotenv

APP_VERSION = "1.2.0"


@dataclass(frozen=True)
class TrackedTrain:
    number: int
    name: str
    origin: str
    destination: str
    scheduled_time: time
    direction: str

    @property
    def title(self) -> str:
        if "(" in self.name:
            return f"{self.name} – {self.direction}"
        return f"{self.name} {self.scheduled_time.strftime('%H:%M')} – {self.direction}"


@dataclass(frozen=True)
class TrainSelection:
    outbound: TrackedTrain
    inbound: TrackedTrain

    @property
    def numbers(self) -> tuple[int, int]:
        return self.outbound.number, self.inbound.number


@dataclass(frozen=True)
class Settings:
    timezone: str
    api_endpoint: str
    graphql_endpoint: str
    database_path: str
    max_api_calls: int
    request_timeout_seconds: float
    request_retries: int
    max_workers: int
    retention_days: int
    app_version: str


def _parse_time(raw: str) -> time:
    hh, mm = raw.split(":", maxsplit=1)
    return time(hour=int(hh), minute=int(mm))


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got '{raw}'.") from exc


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got '{raw}'.") from exc


def load_settings() -> Settings:
    load_dotenv()

    max_api_calls = _int_env("MAX_API_CALLS", 30)
    if max_api_calls < 1:
        raise ValueError("MAX_API_CALLS must be at least 1.")

    return Settings(
        timezone=os.getenv("TIMEZONE", "Europe/Helsinki"),
        api_endpoint=os.getenv("DIGITRAFFIC_API_ENDPOINT", "https://rata.digitraffic.fi/api/v1"),
        graphql_endpoint=os.getenv(
            "DIGITRAFFIC_GRAPHQL_ENDPOINT", "https://rata.digitraffic.fi/api/v2/graphql/graphql"
        ),
        database_path=os.getenv("DATABASE_PATH", "data/train_cache.db"),
        max_api_calls=max_api_calls,
        request_timeout_seconds=_float_env("REQUEST_TIMEOUT_SECONDS", 10.0),
        request_retries=_int_env("REQUEST_RETRIES", 1),
        max_workers=max(1, _int_env("FETCH_MAX_WORKERS", 8)),
        retention_days=_int_env("CACHE_RETENTION_DAYS", 90),
        app_version=os.getenv("APP_VERSION", APP_VERSION).strip() or APP_VERSION,
    )


def load_train_selection() -> TrainSelection:
    origin = os.getenv("ORIGIN_STATION", "LPÄ")
    destination = os.getenv("DESTINATION_STATION", "TPE")
    origin_name = os.getenv("ORIGIN_NAME", "Lempäälä")
    destination_name = os.getenv("DESTINATION_NAME", "Tampere")

    return TrainSelection(
        outbound=TrackedTrain(
            number=_int_env("OUTBOUND_TRAIN", 1719),
            name=os.getenv("OUTBOUND_NAME", "Morning train"),
            origin=origin,
            destination=destination,
            scheduled_time=_parse_time(os.getenv("OUTBOUND_TIME", "08:20")),
            direction=f"{origin_name} → {destination_name}",
        ),
        inbound=TrackedTrain(
            number=_int_env("RETURN_TRAIN", 9700),
            name=os.getenv("RETURN_NAME", "Evening train"),
            origin=destination,
            destination=origin,
            scheduled_time=_parse_time(os.getenv("RETURN_TIME", "16:35")),
            direction=f"{destination_name} → {origin_name}",
        ),
    )
