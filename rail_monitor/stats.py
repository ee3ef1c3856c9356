from __future__ import annotations

import math

import pandas as pd

from rail_monitor.models import Observation, TrainStatus, TrainSummary


def observations_frame(observations: list[Observation]) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "service_date": [row.service_date for row in observations],
            "train_number": [row.train_number for row in observations],
            "status": [row.status.value for row in observations],
            "delay_minutes": [row.delay_minutes for row in observations],
        }
    )


def summarize(observations: list[Observation]) -> TrainSummary:
    """Percentages are over all records, cancelled included; the average delay skips cancellations."""
    df = observations_frame(observations)
    total = int(len(df))
    if total == 0:
        return TrainSummary(
            on_time_percent=0.0,
            slight_delay_percent=0.0,
            delayed_percent=0.0,
            cancelled_count=0,
            average_delay=0.0,
            total_count=0,
            on_time_count=0,
            slight_delay_count=0,
            delayed_count=0,
        )

    counts = df["status"].value_counts()
    on_time = int(counts.get(TrainStatus.ON_TIME.value, 0))
    slight = int(counts.get(TrainStatus.SLIGHT_DELAY.value, 0))
    delayed = int(counts.get(TrainStatus.DELAYED.value, 0))
    cancelled = int(counts.get(TrainStatus.CANCELLED.value, 0))

    running = df.loc[df["status"] != TrainStatus.CANCELLED.value, "delay_minutes"]
    # Half up to one decimal: 0.25 -> 0.3.
    average_delay = math.floor(float(running.mean()) * 10 + 0.5) / 10 if not running.empty else 0.0

    return TrainSummary(
        on_time_percent=on_time / total * 100,
        slight_delay_percent=slight / total * 100,
        delayed_percent=delayed / total * 100,
        cancelled_count=cancelled,
        average_delay=average_delay,
        total_count=total,
        on_time_count=on_time,
        slight_delay_count=slight,
        delayed_count=delayed,
    )


def filter_by_train(observations: list[Observation], train_number: int) -> list[Observation]:
    return [row for row in observations if row.train_number == train_number]


def sort_by_date(observations: list[Observation], ascending: bool = False) -> list[Observation]:
    return sorted(observations, key=lambda x: x.service_date, reverse=not ascending)
