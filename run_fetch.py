from __future__ import annotations

import argparse
from datetime import date

from rail_monitor import dates
from rail_monitor.client import DigitrafficClient
from rail_monitor.config import TrainSelection, load_settings, load_train_selection
from rail_monitor.fetcher import FetchOrchestrator, FetchResult
from rail_monitor.logging_config import setup_logging
from rail_monitor.route import refresh_route_once, route_candidates
from rail_monitor.stats import filter_by_train, summarize
from rail_monitor.storage import TrainCache


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Punctuality of the tracked commuter trains over a date range")
    parser.add_argument("--start-date", help="Start date YYYY-MM-DD (default: 13 days ago)")
    parser.add_argument("--end-date", help="End date YYYY-MM-DD (default: today)")
    parser.add_argument("--outbound", type=int, help="Outbound train number")
    parser.add_argument("--return", dest="inbound", type=int, help="Return train number")
    parser.add_argument("--refresh-route", action="store_true", help="Refresh today's route trains first")
    parser.add_argument("--log-level", default="WARNING")
    return parser.parse_args()


def _parse_date(value: str | None) -> date | None:
    if not value:
        return None
    return date.fromisoformat(value)


def _print_result(result: FetchResult, selection: TrainSelection, trains: tuple[int, int], timezone: str) -> None:
    if result.too_many_calls:
        print(f"Too many API calls: {result.error}")
        return
    if result.error is not None:
        print(result.error)
        return

    for tracked, number in zip((selection.outbound, selection.inbound), trains):
        rows = filter_by_train(result.data, number)
        summary = summarize(rows)
        print(f"{tracked.title} ({number}): {summary.total_count} runs")
        print(
            f"  on time {summary.on_time_percent:.0f}% | slight delay {summary.slight_delay_percent:.0f}%"
            f" | delayed {summary.delayed_percent:.0f}% | cancelled {summary.cancelled_count}"
            f" | avg delay {summary.average_delay} min"
        )
        for row in rows:
            departure = dates.format_local_time(row.scheduled_departure, timezone)
            print(f"  {dates.format_local_date(row.service_date):<10} {departure} {row.status.value:<13} {row.delay_minutes:+d}")


def main() -> None:
    args = parse_args()
    setup_logging(args.log_level)

    settings = load_settings()
    selection = load_train_selection()
    cache = TrainCache(settings.database_path, settings.timezone, settings.retention_days)
    if cache.initialize(settings.app_version):
        print(f"Cache reset for version {settings.app_version}")

    client = DigitrafficClient(settings)
    try:
        if args.refresh_route and refresh_route_once(selection, cache, client):
            snapshot = cache.get_route_metadata()
            for tracked in (selection.outbound, selection.inbound):
                options = ", ".join(
                    f"{train.train_number} {dates.format_local_time(train.scheduled_departure, settings.timezone)}"
                    for train in route_candidates(snapshot, tracked.direction)
                )
                print(f"{tracked.direction}: {options or 'no trains'}")

        default_start, default_end = dates.default_date_range(settings.timezone)
        start = _parse_date(args.start_date) or default_start
        end = _parse_date(args.end_date) or default_end
        outbound, inbound = selection.numbers
        trains = (args.outbound or outbound, args.inbound or inbound)

        orchestrator = FetchOrchestrator(
            settings,
            cache,
            client,
            origin=selection.outbound.origin,
            destination=selection.outbound.destination,
        )
        result = orchestrator.plan_and_fetch(start, end, trains)
        _print_result(result, selection, trains, settings.timezone)
    finally:
        client.close()


if __name__ == "__main__":
    main()
