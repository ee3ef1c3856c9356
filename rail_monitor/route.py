from __future__ import annotations

import logging

from rail_monitor import dates
from rail_monitor.client import DigitrafficClient
from rail_monitor.config import TrainSelection
from rail_monitor.errors import RouteLookupError
from rail_monitor.models import RouteSnapshot, RouteTrain
from rail_monitor.parser import parse_route_trains
from rail_monitor.storage import TrainCache

logger = logging.getLogger(__name__)


def refresh_route_once(selection: TrainSelection, cache: TrainCache, client: DigitrafficClient) -> bool:
    """Refresh today's route snapshot at most once per calendar day.

    The refresh marker is written only after the snapshot is stored, so a failed
    lookup is retried on the next call. A successful refresh also sweeps expired
    observations from the cache.
    """
    today = dates.today(cache.timezone)
    if cache.get_last_refresh_date() == today:
        return False

    origin = selection.outbound.origin
    destination = selection.outbound.destination
    labels = {
        (origin, destination): selection.outbound.direction,
        (destination, origin): selection.inbound.direction,
    }

    try:
        nodes = client.get_route_trains(today, origin)
        trains = parse_route_trains(nodes, origin, destination, labels)
    except (RouteLookupError, ValueError, KeyError, TypeError) as exc:
        logger.warning("Route refresh for %s failed: %s", today, exc)
        return False

    if not cache.put_route_metadata(RouteSnapshot(reference_date=today, trains=trains)):
        logger.warning("Route snapshot for %s not stored, refresh will be retried", today)
        return False
    if not cache.set_last_refresh_date(today):
        return False
    logger.info("Stored %d route trains for %s", len(trains), today)
    cache.sweep()
    return True


def route_candidates(snapshot: RouteSnapshot | None, direction: str) -> list[RouteTrain]:
    if snapshot is None:
        return []
    return sorted(
        (train for train in snapshot.trains if train.direction == direction),
        key=lambda x: (x.scheduled_departure, x.train_number),
    )
