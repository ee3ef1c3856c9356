from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Sequence

from rail_monitor import dates
from rail_monitor.models import CallRequest, Observation
from rail_monitor.storage import TrainCache


@dataclass(frozen=True)
class AcquisitionPlan:
    business_days: list[date]
    calls: list[CallRequest] = field(default_factory=list)
    cached: list[Observation] = field(default_factory=list)

    @property
    def needed_call_count(self) -> int:
        return len(self.calls)

    def exceeds(self, ceiling: int) -> bool:
        return self.needed_call_count > ceiling


def _unique_trains(trains: Sequence[int]) -> list[int]:
    return list(dict.fromkeys(trains))


def _needs_call(cache: TrainCache, service_date: date, train_number: int) -> bool:
    # Today is always fetched; the cache refuses to hold it anyway.
    if dates.is_today(service_date, cache.timezone):
        return True
    return cache.get(service_date, train_number) is None


def calls_needed(start: date, end: date, trains: Sequence[int], cache: TrainCache) -> list[CallRequest]:
    return [
        CallRequest(service_date=day, train_number=number)
        for day in dates.business_days_in_range(start, end, cache.timezone)
        for number in _unique_trains(trains)
        if _needs_call(cache, day, number)
    ]


def needed_call_count(start: date, end: date, trains: Sequence[int], cache: TrainCache) -> int:
    return len(calls_needed(start, end, trains, cache))


def cached_observations(start: date, end: date, trains: Sequence[int], cache: TrainCache) -> list[Observation]:
    rows: list[Observation] = []
    for day in dates.business_days_in_range(start, end, cache.timezone):
        for number in _unique_trains(trains):
            cached = cache.get(day, number)
            if cached is not None:
                rows.append(cached)
    return rows


def build_plan(start: date, end: date, trains: Sequence[int], cache: TrainCache) -> AcquisitionPlan:
    """Split the (business day x train) grid into remote calls and cache hits in one pass."""
    business_days = dates.business_days_in_range(start, end, cache.timezone)
    unique = _unique_trains(trains)
    calls: list[CallRequest] = []
    cached: list[Observation] = []
    for day in business_days:
        for number in unique:
            hit = None if dates.is_today(day, cache.timezone) else cache.get(day, number)
            if hit is None:
                calls.append(CallRequest(service_date=day, train_number=number))
            else:
                cached.append(hit)
    return AcquisitionPlan(business_days=business_days, calls=calls, cached=cached)
