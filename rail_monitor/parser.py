from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

from rail_monitor.models import Observation, RouteTrain, classify


def parse_timestamp(raw: str) -> datetime:
    value = raw.strip()
    if not value:
        raise ValueError("Empty timestamp.")
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")


def _optional_timestamp(raw: str | None) -> datetime | None:
    if not raw:
        return None
    return parse_timestamp(raw)


def _find_row(rows: list[dict[str, Any]], row_type: str, station: str) -> dict[str, Any] | None:
    for row in rows:
        if row.get("type") == row_type and row.get("stationShortCode") == station:
            return row
    return None


def parse_train_response(payload: dict[str, Any], from_station: str, to_station: str) -> Observation | None:
    """Turn one train payload into an Observation for the from->to leg.

    Returns None when the train does not depart from ``from_station`` or does not
    arrive at ``to_station``.
    """
    rows = payload.get("timeTableRows") or []
    departure_row = _find_row(rows, "DEPARTURE", from_station)
    arrival_row = _find_row(rows, "ARRIVAL", to_station)
    if departure_row is None or arrival_row is None:
        return None

    cancelled = bool(payload.get("cancelled")) or bool(departure_row.get("cancelled"))
    delay_minutes = 0 if cancelled else int(departure_row.get("differenceInMinutes") or 0)

    return Observation(
        service_date=date.fromisoformat(payload["departureDate"]),
        train_number=int(payload["trainNumber"]),
        train_type=str(payload.get("trainType") or ""),
        cancelled=cancelled,
        scheduled_departure=parse_timestamp(departure_row["scheduledTime"]),
        actual_departure=None if cancelled else _optional_timestamp(departure_row.get("actualTime")),
        scheduled_arrival=parse_timestamp(arrival_row["scheduledTime"]),
        actual_arrival=None if cancelled else _optional_timestamp(arrival_row.get("actualTime")),
        delay_minutes=delay_minutes,
        status=classify(cancelled, delay_minutes),
    )


def graphql_train_to_response(node: dict[str, Any]) -> dict[str, Any]:
    """GraphQL nests station and train type as objects; flatten to the REST shape."""
    rows = []
    for row in node.get("timeTableRows") or []:
        station = row.get("station") or {}
        rows.append(
            {
                "stationShortCode": station.get("shortCode") or "",
                "type": row.get("type"),
                "scheduledTime": row.get("scheduledTime"),
                "actualTime": row.get("actualTime"),
                "differenceInMinutes": row.get("differenceInMinutes"),
                "cancelled": bool(row.get("cancelled")),
            }
        )
    train_type = node.get("trainType") or {}
    return {
        "trainNumber": node.get("trainNumber"),
        "departureDate": node.get("departureDate"),
        "trainType": train_type.get("name", "") if isinstance(train_type, dict) else str(train_type),
        "cancelled": bool(node.get("cancelled")),
        "timeTableRows": rows,
    }


def is_train_on_route(rows: list[dict[str, Any]], origin: str, destination: str) -> bool:
    stations = {row.get("stationShortCode") for row in rows}
    return origin in stations and destination in stations


def direction_of(rows: list[dict[str, Any]], origin: str, destination: str) -> tuple[str, str] | None:
    if _find_row(rows, "DEPARTURE", origin) and _find_row(rows, "ARRIVAL", destination):
        return origin, destination
    if _find_row(rows, "DEPARTURE", destination) and _find_row(rows, "ARRIVAL", origin):
        return destination, origin
    return None


def parse_route_trains(
    nodes: list[dict[str, Any]],
    origin: str,
    destination: str,
    direction_labels: dict[tuple[str, str], str],
) -> list[RouteTrain]:
    trains: list[RouteTrain] = []
    for node in nodes:
        response = graphql_train_to_response(node)
        rows = response["timeTableRows"]
        if not is_train_on_route(rows, origin, destination):
            continue

        leg = direction_of(rows, origin, destination)
        if leg is None:
            continue

        departure_row = _find_row(rows, "DEPARTURE", leg[0])
        if departure_row is None or not departure_row.get("scheduledTime"):
            continue

        trains.append(
            RouteTrain(
                train_number=int(response["trainNumber"]),
                train_type=response["trainType"],
                direction=direction_labels.get(leg, f"{leg[0]} → {leg[1]}"),
                origin=leg[0],
                destination=leg[1],
                scheduled_departure=parse_timestamp(departure_row["scheduledTime"]),
                cancelled=response["cancelled"] or bool(departure_row.get("cancelled")),
            )
        )
    return sorted(trains, key=lambda x: (x.scheduled_departure, x.train_number))
