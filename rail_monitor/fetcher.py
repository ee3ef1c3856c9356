from __future__ import annotations

import itertools
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Protocol, Sequence

import requests

from rail_monitor.config import Settings
from rail_monitor.errors import AggregateFailure, BudgetExceeded, RailMonitorError, TransientFetchFailure
from rail_monitor.models import CallRequest, Observation
from rail_monitor.parser import parse_train_response
from rail_monitor.planner import AcquisitionPlan, build_plan
from rail_monitor.storage import TrainCache

logger = logging.getLogger(__name__)


class TrainSource(Protocol):
    def get_train(self, service_date: date, train_number: int) -> dict | None: ...


class FetchPhase(str, Enum):
    IDLE = "idle"
    PLANNING = "planning"
    REJECTED = "rejected"
    FETCHING = "fetching"
    MERGING = "merging"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class FetchResult:
    data: list[Observation] = field(default_factory=list)
    too_many_calls: bool = False
    needed_calls: int = 0
    error: RailMonitorError | None = None
    failures: list[TransientFetchFailure] = field(default_factory=list)
    superseded: bool = False
    invocation_id: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None and not self.superseded


def merge_observations(fetched: list[Observation], cached: list[Observation]) -> list[Observation]:
    """Union by (date, train); fetched rows win. Newest date first."""
    merged: dict[tuple[date, int], Observation] = {}
    for row in cached:
        merged[row.key] = row
    for row in fetched:
        merged[row.key] = row
    return sorted(merged.values(), key=lambda x: x.service_date, reverse=True)


class FetchOrchestrator:
    """Runs one planned fetch per call of ``plan_and_fetch``.

    Every call gets a new invocation id. When a newer invocation starts while an
    older one is still waiting on the network, the older one's results are
    dropped instead of being returned.
    """

    def __init__(
        self,
        settings: Settings,
        cache: TrainCache,
        client: TrainSource,
        origin: str,
        destination: str,
    ) -> None:
        self.settings = settings
        self.cache = cache
        self.client = client
        self.origin = origin
        self.destination = destination
        self.phase = FetchPhase.IDLE
        self.has_fetched = False
        self._lock = threading.Lock()
        self._invocations = itertools.count(1)
        self._active_invocation = 0

    def _begin_invocation(self) -> int:
        with self._lock:
            self._active_invocation = next(self._invocations)
            return self._active_invocation

    def is_active(self, invocation_id: int) -> bool:
        with self._lock:
            return invocation_id == self._active_invocation

    def _set_phase(self, invocation_id: int, phase: FetchPhase) -> None:
        if self.is_active(invocation_id):
            logger.debug("Fetch %d: %s -> %s", invocation_id, self.phase.value, phase.value)
            self.phase = phase

    def needed_calls(self, start: date, end: date, trains: Sequence[int]) -> int:
        return build_plan(start, end, trains, self.cache).needed_call_count

    def plan_and_fetch(self, start: date, end: date, trains: Sequence[int]) -> FetchResult:
        invocation_id = self._begin_invocation()
        self.has_fetched = True
        self._set_phase(invocation_id, FetchPhase.PLANNING)

        plan = build_plan(start, end, trains, self.cache)
        ceiling = self.settings.max_api_calls
        logger.info(
            "Fetch %d: %d business days, %d calls needed, %d cached",
            invocation_id,
            len(plan.business_days),
            plan.needed_call_count,
            len(plan.cached),
        )

        if plan.exceeds(ceiling):
            self._set_phase(invocation_id, FetchPhase.REJECTED)
            return FetchResult(
                too_many_calls=True,
                needed_calls=plan.needed_call_count,
                error=BudgetExceeded(plan.needed_call_count, ceiling),
                invocation_id=invocation_id,
            )

        self._set_phase(invocation_id, FetchPhase.FETCHING)
        fetched, failures = self._fetch_all(plan, trains)

        if not self.is_active(invocation_id):
            logger.info("Fetch %d superseded, discarding %d results", invocation_id, len(fetched))
            return FetchResult(
                needed_calls=plan.needed_call_count,
                superseded=True,
                invocation_id=invocation_id,
            )

        self._set_phase(invocation_id, FetchPhase.MERGING)
        merged = merge_observations(fetched, plan.cached)

        if failures and len(failures) == plan.needed_call_count and not merged:
            self._set_phase(invocation_id, FetchPhase.FAILED)
            return FetchResult(
                needed_calls=plan.needed_call_count,
                error=AggregateFailure(failures),
                failures=failures,
                invocation_id=invocation_id,
            )

        if failures:
            logger.warning("Fetch %d: %d of %d calls failed", invocation_id, len(failures), plan.needed_call_count)
        self._set_phase(invocation_id, FetchPhase.SUCCEEDED)
        return FetchResult(
            data=merged,
            needed_calls=plan.needed_call_count,
            failures=failures,
            invocation_id=invocation_id,
        )

    def _stations_for(self, train_number: int, trains: Sequence[int]) -> tuple[str, str]:
        if train_number == trains[0]:
            return self.origin, self.destination
        return self.destination, self.origin

    def _fetch_one(self, call: CallRequest, trains: Sequence[int]) -> Observation | None:
        payload = self.client.get_train(call.service_date, call.train_number)
        if payload is None:
            return None

        from_station, to_station = self._stations_for(call.train_number, trains)
        observation = parse_train_response(payload, from_station, to_station)
        if observation is not None:
            self.cache.put(call.service_date, call.train_number, observation)
        return observation

    def _fetch_all(
        self, plan: AcquisitionPlan, trains: Sequence[int]
    ) -> tuple[list[Observation], list[TransientFetchFailure]]:
        if not plan.calls:
            return [], []

        outcomes: dict[CallRequest, Future] = {}
        workers = min(self.settings.max_workers, len(plan.calls))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="train-fetch") as executor:
            for call in plan.calls:
                outcomes[call] = executor.submit(self._fetch_one, call, trains)
            wait(outcomes.values())

        fetched: list[Observation] = []
        failures: list[TransientFetchFailure] = []
        for call in plan.calls:
            future = outcomes[call]
            exc = future.exception()
            if exc is None:
                row = future.result()
                if row is not None:
                    fetched.append(row)
                continue
            if not isinstance(exc, (requests.RequestException, ValueError, KeyError, TypeError)):
                raise exc
            failure = TransientFetchFailure(call.service_date, call.train_number, exc)
            logger.warning("%s", failure)
            failures.append(failure)
        return fetched, failures
