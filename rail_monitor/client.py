from __future__ import annotations

import logging
from datetime import date
from typing import Any

import requests
from requests import Response
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from rail_monitor.config import Settings
from rail_monitor.errors import RouteLookupError

logger = logging.getLogger(__name__)

ROUTE_QUERY = """query RouteToday {
  trainsByDepartureDate(
    departureDate: "%(date)s",
    where: { timeTableRows: { contains: { station: { shortCode: { equals: "%(station)s" } } } } },
    orderBy: { trainNumber: ASCENDING }
  ) {
    trainNumber
    departureDate
    trainType { name }
    cancelled
    timeTableRows {
      type
      scheduledTime
      actualTime
      differenceInMinutes
      cancelled
      station { shortCode }
    }
  }
}"""


class DigitrafficClient:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.timeout = settings.request_timeout_seconds
        self.session = requests.Session()
        self.session.headers.update({"Accept-Encoding": "gzip"})
        retry = Retry(
            total=settings.request_retries,
            connect=settings.request_retries,
            read=settings.request_retries,
            backoff_factor=0.5,
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=frozenset({"GET", "POST"}),
        )
        adapter = HTTPAdapter(max_retries=retry)
        self.session.mount("https://", adapter)
        self.session.mount("http://", adapter)

    def close(self) -> None:
        self.session.close()

    @staticmethod
    def _raise_with_context(response: Response, endpoint: str) -> None:
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            body = (response.text or "").strip().replace("\n", " ")
            body = body[:500]
            raise requests.HTTPError(
                f"{exc} | endpoint={endpoint} | response_body={body}",
                response=response,
            ) from exc

    def get_train(self, service_date: date, train_number: int) -> dict[str, Any] | None:
        """Fetch one train run; None means the API has no data for it."""
        endpoint = "api/v1/trains"
        url = f"{self.settings.api_endpoint}/trains/{service_date.isoformat()}/{train_number}"
        response = self.session.get(
            url,
            headers={"Accept": "application/json"},
            timeout=self.timeout,
        )
        if response.status_code == 404:
            logger.debug("No data for train %s on %s", train_number, service_date)
            return None
        self._raise_with_context(response, endpoint)

        payload = response.json()
        if not isinstance(payload, list) or not payload:
            return None
        return payload[0]

    def get_route_trains(self, service_date: date, station: str) -> list[dict[str, Any]]:
        endpoint = "api/v2/graphql"
        query = ROUTE_QUERY % {"date": service_date.isoformat(), "station": station}
        try:
            response = self.session.post(
                self.settings.graphql_endpoint,
                json={"query": query},
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
            self._raise_with_context(response, endpoint)
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise RouteLookupError(f"Route lookup for {service_date.isoformat()} failed: {exc}") from exc

        errors = payload.get("errors") or []
        if errors:
            messages = "; ".join(str(err.get("message", err)) for err in errors)
            raise RouteLookupError(f"GraphQL error: {messages}")

        data = payload.get("data") or {}
        return data.get("trainsByDepartureDate") or []
