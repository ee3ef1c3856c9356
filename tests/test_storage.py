import dataclasses
import sqlite3
from datetime import date, timedelta
from unittest.mock import patch

import pytest

from rail_monitor.models import RouteSnapshot, TrainStatus
from rail_monitor.storage import ObservationKey, TrainCache

from conftest import FROZEN_TODAY, OUTBOUND, RETURN, exclusive_lock, make_observation

PAST = date(2026, 1, 27)


def _write_raw(cache, key, value, service_date=None):
    with sqlite3.connect(cache.db_path) as con:
        con.execute(
            "INSERT OR REPLACE INTO cache_entries (key, value, service_date, updated_ts) VALUES (?, ?, ?, ?)",
            (key, value, service_date, "2026-01-01T00:00:00+00:00"),
        )
        con.commit()


class TestGetPut:
    def test_round_trip_for_past_date(self, cache):
        obs = make_observation(PAST, OUTBOUND, delay=3)
        cache.put(PAST, OUTBOUND, obs)

        assert cache.get(PAST, OUTBOUND) == obs

    def test_missing_key_is_absent(self, cache):
        assert cache.get(PAST, RETURN) is None

    def test_today_is_never_stored(self, cache):
        cache.put(FROZEN_TODAY, OUTBOUND, make_observation(FROZEN_TODAY))

        assert cache.get(FROZEN_TODAY, OUTBOUND) is None
        assert ObservationKey(FROZEN_TODAY, OUTBOUND).storage_key() not in cache.keys()

    def test_today_is_never_read_even_if_present(self, cache):
        good = make_observation(PAST)
        cache.put(PAST, OUTBOUND, good)
        with sqlite3.connect(cache.db_path) as con:
            value = con.execute("SELECT value FROM cache_entries").fetchone()[0]
        _write_raw(cache, ObservationKey(FROZEN_TODAY, OUTBOUND).storage_key(), value, FROZEN_TODAY.isoformat())

        assert cache.get(FROZEN_TODAY, OUTBOUND) is None

    def test_last_write_wins(self, cache):
        cache.put(PAST, OUTBOUND, make_observation(PAST, delay=0))
        cache.put(PAST, OUTBOUND, make_observation(PAST, delay=9))

        assert cache.get(PAST, OUTBOUND).delay_minutes == 9

    def test_status_is_recomputed_on_read(self, cache):
        stale = make_observation(PAST, delay=4, status=TrainStatus.DELAYED)
        cache.put(PAST, OUTBOUND, stale)

        loaded = cache.get(PAST, OUTBOUND)

        assert loaded.status is TrainStatus.SLIGHT_DELAY
        assert loaded == dataclasses.replace(stale, status=TrainStatus.SLIGHT_DELAY)

    def test_storage_key_layout(self):
        assert ObservationKey(PAST, OUTBOUND).storage_key() == "train:2026-01-27:1719"

    @pytest.mark.parametrize(
        "raw",
        [
            "{not json",
            "[]",
            '{"date": "2026-01-27"}',
            '{"date": "2026-01-27", "trainNumber": 1719, "cancelled": "no", "delayMinutes": 1,'
            ' "scheduledDeparture": "x", "scheduledArrival": "y"}',
        ],
    )
    def test_malformed_entry_is_a_miss(self, cache, raw):
        _write_raw(cache, ObservationKey(PAST, OUTBOUND).storage_key(), raw, PAST.isoformat())

        assert cache.get(PAST, OUTBOUND) is None


class TestSweep:
    def test_old_entries_removed_and_reserved_keys_kept(self, cache):
        old = FROZEN_TODAY - timedelta(days=95)
        cache.put(old, OUTBOUND, make_observation(old))
        cache.put(PAST, OUTBOUND, make_observation(PAST))
        cache.put_route_metadata(RouteSnapshot(reference_date=old, trains=[]))
        cache.set_last_refresh_date(old)

        removed = cache.sweep()

        assert removed == 1
        assert cache.get(old, OUTBOUND) is None
        assert cache.get(PAST, OUTBOUND) is not None
        assert cache.get_route_metadata() == RouteSnapshot(reference_date=old, trains=[])
        assert cache.get_last_refresh_date() == old

    def test_boundary_entry_is_kept(self, cache):
        boundary = FROZEN_TODAY - timedelta(days=90)
        just_over = FROZEN_TODAY - timedelta(days=91)
        cache.put(boundary, OUTBOUND, make_observation(boundary))
        cache.put(just_over, OUTBOUND, make_observation(just_over))

        cache.sweep()

        assert cache.get(boundary, OUTBOUND) is not None
        assert cache.get(just_over, OUTBOUND) is None

    def test_locked_database_is_not_swept(self, cache):
        old = FROZEN_TODAY - timedelta(days=120)
        cache.put(old, OUTBOUND, make_observation(old))

        with exclusive_lock(cache):
            assert cache.sweep() == 0

        assert cache.get(old, OUTBOUND) is not None


class TestVersionReset:
    def test_first_run_writes_marker(self, tmp_path, frozen_today):
        store = TrainCache(str(tmp_path / "trains.db"))

        assert store.initialize("1.0.0") is True
        assert "app:version" in store.keys()

    def test_same_version_keeps_data(self, tmp_path, frozen_today):
        store = TrainCache(str(tmp_path / "trains.db"))
        store.initialize("1.0.0")
        store.put(PAST, OUTBOUND, make_observation(PAST))

        assert store.initialize("1.0.0") is False
        assert store.get(PAST, OUTBOUND) is not None

    def test_version_change_clears_everything(self, tmp_path, frozen_today):
        store = TrainCache(str(tmp_path / "trains.db"))
        store.initialize("1.0.0")
        store.put(PAST, OUTBOUND, make_observation(PAST))
        store.set_last_refresh_date(PAST)

        assert store.initialize("1.1.0") is True
        assert store.get(PAST, OUTBOUND) is None
        assert store.get_last_refresh_date() is None
        assert store.keys() == ["app:version"]

    def test_unreadable_marker_keeps_data(self, tmp_path, frozen_today):
        store = TrainCache(str(tmp_path / "trains.db"))
        store.initialize("1.0.0")
        store.put(PAST, OUTBOUND, make_observation(PAST))

        with patch.object(store, "_fetch_value", side_effect=sqlite3.OperationalError("disk I/O error")):
            assert store.initialize("2.0.0") is False

        assert store.get(PAST, OUTBOUND) is not None
        assert "app:version" in store.keys()


class TestReservedKeys:
    def test_failed_write_reports_false(self, cache):
        with exclusive_lock(cache):
            assert cache.set_last_refresh_date(PAST) is False
            assert cache.put_route_metadata(RouteSnapshot(reference_date=PAST, trains=[])) is False

        assert cache.get_last_refresh_date() is None
        assert cache.set_last_refresh_date(PAST) is True

    def test_malformed_refresh_marker_is_ignored(self, cache):
        _write_raw(cache, "train:route:fetched", "yesterday")

        assert cache.get_last_refresh_date() is None

    def test_malformed_route_metadata_is_ignored(self, cache):
        _write_raw(cache, "train:route:metadata", '{"referenceDate": 5}')

        assert cache.get_route_metadata() is None
