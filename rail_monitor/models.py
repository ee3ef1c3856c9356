from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum


class TrainStatus(str, Enum):
    ON_TIME = "ON_TIME"
    SLIGHT_DELAY = "SLIGHT_DELAY"
    DELAYED = "DELAYED"
    CANCELLED = "CANCELLED"


ON_TIME_MAX_MINUTES = 1
SLIGHT_DELAY_MAX_MINUTES = 5


def classify(cancelled: bool, delay_minutes: int) -> TrainStatus:
    if cancelled:
        return TrainStatus.CANCELLED
    if delay_minutes <= ON_TIME_MAX_MINUTES:
        return TrainStatus.ON_TIME
    if delay_minutes <= SLIGHT_DELAY_MAX_MINUTES:
        return TrainStatus.SLIGHT_DELAY
    return TrainStatus.DELAYED


@dataclass(frozen=True)
class Observation:
    service_date: date
    train_number: int
    train_type: str
    cancelled: bool
    scheduled_departure: datetime
    actual_departure: datetime | None
    scheduled_arrival: datetime
    actual_arrival: datetime | None
    delay_minutes: int
    status: TrainStatus

    @property
    def key(self) -> tuple[date, int]:
        return self.service_date, self.train_number


@dataclass(frozen=True)
class CallRequest:
    service_date: date
    train_number: int


@dataclass(frozen=True)
class RouteTrain:
    train_number: int
    train_type: str
    direction: str
    origin: str
    destination: str
    scheduled_departure: datetime
    cancelled: bool = False


@dataclass(frozen=True)
class RouteSnapshot:
    reference_date: date
    trains: list[RouteTrain] = field(default_factory=list)

    @property
    def train_numbers(self) -> list[int]:
        return [train.train_number for train in self.trains]


@dataclass(frozen=True)
class TrainSummary:
    on_time_percent: float
    slight_delay_percent: float
    delayed_percent: float
    cancelled_count: int
    average_delay: float
    total_count: int
    on_time_count: int
    slight_delay_count: int
    delayed_count: int
