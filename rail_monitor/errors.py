from __future__ import annotations

from datetime import date

AGGREGATE_FAILURE_MESSAGE = "Failed to fetch train data. Please try again."


class RailMonitorError(Exception):
    pass


class BudgetExceeded(RailMonitorError):
    """A request would need more remote calls than a single fetch may make."""

    def __init__(self, needed: int, ceiling: int) -> None:
        super().__init__(
            f"Selected range needs {needed} API calls, the limit is {ceiling}. Narrow the date range."
        )
        self.needed = needed
        self.ceiling = ceiling


class TransientFetchFailure(RailMonitorError):
    def __init__(self, service_date: date, train_number: int, cause: BaseException) -> None:
        super().__init__(f"Fetching train {train_number} on {service_date.isoformat()} failed: {cause}")
        self.service_date = service_date
        self.train_number = train_number
        self.cause = cause


class AggregateFailure(RailMonitorError):
    def __init__(self, failures: list[TransientFetchFailure] | None = None) -> None:
        super().__init__(AGGREGATE_FAILURE_MESSAGE)
        self.failures = list(failures or [])


class MalformedCacheEntry(RailMonitorError):
    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"Malformed cache entry '{key}': {reason}")
        self.key = key


class RouteLookupError(RailMonitorError):
    pass
