"""
Tests for maintenance window functionality.
"""

import os
import tempfile
from datetime import date, datetime, time, timezone

import pytest
from pydantic import ValidationError

from crr.maintenance_windows import (
    ClusterMaintenanceConfig,
    MaintenanceWindow,
    MaintenanceWindowChecker,
    _is_ordinal_day,
    create_sample_config,
    parse_time_range,
)


@pytest.fixture
def sample_config_file():
    """Create a temporary config file for testing."""
    with tempfile.NamedTemporaryFile(mode='w', suffix='.toml', delete=False) as f:
        f.write('''
[test-cluster]
timezone = "UTC"
min_window_duration = 30

[[test-cluster.windows]]
time = "18:00-22:00"
weekdays = ["mon", "tue", "wed"]
description = "Evening maintenance"

[[test-cluster.windows]]
time = "02:00-04:00"
weekdays = ["sat", "sun"]
description = "Weekend maintenance"

[[test-cluster.windows]]
time = "23:00-01:00"
ordinal_days = ["last fri"]
description = "Month-end maintenance"

[minimal-cluster]
timezone = "UTC"
min_window_duration = 60

[[minimal-cluster.windows]]
time = "20:00-21:00"
weekdays = ["fri"]
description = "Friday evening"

[ordinal-cluster]
timezone = "UTC"
min_window_duration = 30

[[ordinal-cluster.windows]]
time = "15:00-17:00"
ordinal_days = ["2nd tue", "4th thu"]
description = "Ordinal maintenance"

[[ordinal-cluster.windows]]
time = "20:00-24:00"
ordinal_days = ["2nd tue"]

[HV-BERLIN]
timezone = "Europe/Berlin"
min_window_duration = 30

[[HV-BERLIN.windows]]
time = "22:00-04:00"
weekdays = ["sat"]
description = "Saturday night"

[no-windows-cluster]
timezone = "UTC"
min_window_duration = 30
''')
        temp_path = f.name

    yield temp_path

    # Cleanup
    os.unlink(temp_path)


@pytest.fixture
def checker(sample_config_file):
    return MaintenanceWindowChecker(sample_config_file)


class TestMaintenanceWindow:
    """Test MaintenanceWindow model."""

    def test_basic_window_creation(self):
        window = MaintenanceWindow(
            start_time=time(18, 0),
            end_time=time(22, 0),
            weekdays={"mon", "tue", "wed"}
        )

        assert window.weekdays == {"mon", "tue", "wed"}
        assert not window.crosses_midnight

    def test_weekday_normalization(self):
        window = MaintenanceWindow(
            start_time=time(18, 0),
            end_time=time(22, 0),
            weekdays="MON, TUE,  WED"  # Mixed case with spaces
        )

        assert window.weekdays == {"mon", "tue", "wed"}

    def test_ordinal_days_normalization(self):
        window = MaintenanceWindow(
            start_time=time(15, 0),
            end_time=time(17, 0),
            ordinal_days="2ND TUE, Last FRI"
        )

        assert window.ordinal_days == ["2nd tue", "last fri"]

    def test_unknown_weekday_rejected(self):
        with pytest.raises(ValidationError):
            MaintenanceWindow(start_time=time(1, 0), end_time=time(2, 0), weekdays=["funday"])

    def test_malformed_ordinal_day_rejected(self):
        with pytest.raises(ValidationError):
            MaintenanceWindow(start_time=time(1, 0), end_time=time(2, 0), ordinal_days=["invalid spec"])

    def test_window_crossing_midnight(self):
        window = MaintenanceWindow(start_time=time(23, 0), end_time=time(1, 0))

        assert window.crosses_midnight

    def test_label(self):
        window = MaintenanceWindow(start_time=time(1, 0), end_time=time(2, 0))

        assert window.label(1) == "window 2"
        assert window.model_copy(update={"description": "Nightly"}).label(1) == "Nightly"

    def test_unknown_timezone_rejected(self):
        with pytest.raises(ValidationError):
            ClusterMaintenanceConfig(cluster_name="c", timezone="Mars/Olympus_Mons")


class TestTimeParsing:

    def test_time_range(self):
        assert parse_time_range("18:00-22:00") == (time(18, 0), time(22, 0))
        assert parse_time_range(" 18:00 - 22:30 ") == (time(18, 0), time(22, 30))

    def test_end_of_day(self):
        """24:00 is midnight at the end of the window's day."""
        assert parse_time_range("20:00-24:00") == (time(20, 0), time(0, 0))

    @pytest.mark.parametrize("value", ["18:00", "25:00-26:00", "ab:cd-01:00"])
    def test_invalid_time_range(self, value):
        with pytest.raises(ValueError):
            parse_time_range(value)


class TestMaintenanceWindowChecker:
    """Test MaintenanceWindowChecker functionality."""

    def test_initialization(self, checker):
        config = checker.get_cluster_config("test-cluster")
        assert config is not None
        assert config.cluster_name == "test-cluster"
        assert len(config.windows) == 3
        assert len(checker.configs) == 5

    def test_missing_config_file(self):
        with pytest.raises(FileNotFoundError):
            MaintenanceWindowChecker("/nonexistent/path.toml")

    def test_cluster_lookup_is_case_insensitive(self, checker):
        assert checker.get_cluster_config("hv-berlin").cluster_name == "HV-BERLIN"
        assert checker.get_cluster_config("nonexistent-cluster") is None


class TestMaintenanceWindowLogic:
    """Test maintenance window timing logic."""

    def test_is_in_weekday_maintenance_window(self, checker):
        # Monday 19:00 - in window (18:00-22:00 on mon/tue/wed)
        in_window, reason = checker.is_in_maintenance_window("test-cluster", datetime(2024, 1, 1, 19, 0))
        assert in_window is True
        assert "Evening maintenance" in reason

        # Monday 17:00 - outside window
        in_window, _ = checker.is_in_maintenance_window("test-cluster", datetime(2024, 1, 1, 17, 0))
        assert in_window is False

        # Thursday 19:00 - outside window (not mon/tue/wed)
        in_window, reason = checker.is_in_maintenance_window("test-cluster", datetime(2024, 1, 4, 19, 0))
        assert in_window is False
        assert "Outside all maintenance windows" in reason

    def test_window_end_is_exclusive(self, checker):
        in_window, _ = checker.is_in_maintenance_window("test-cluster", datetime(2024, 1, 1, 22, 0))
        assert in_window is False

    def test_midnight_crossing_window(self, checker):
        # Last Friday of January 2024 is Jan 26th
        in_window, reason = checker.is_in_maintenance_window("test-cluster", datetime(2024, 1, 26, 23, 30))
        assert in_window is True
        assert "Month-end maintenance" in reason

        # The window started on Friday, so Saturday 00:30 is still inside it
        in_window, _ = checker.is_in_maintenance_window("test-cluster", datetime(2024, 1, 27, 0, 30))
        assert in_window is True

        # Other Fridays don't match
        in_window, _ = checker.is_in_maintenance_window("test-cluster", datetime(2024, 1, 5, 23, 30))
        assert in_window is False

    def test_window_ending_at_24_00(self, checker):
        in_window, _ = checker.is_in_maintenance_window("ordinal-cluster", datetime(2024, 1, 9, 23, 59))
        assert in_window is True

        in_window, _ = checker.is_in_maintenance_window("ordinal-cluster", datetime(2024, 1, 10, 0, 0))
        assert in_window is False

    def test_ordinal_day_matching(self, checker):
        # January 2024: 2nd Tuesday is Jan 9th, 4th Thursday is Jan 25th
        assert checker.is_in_maintenance_window("ordinal-cluster", datetime(2024, 1, 9, 16, 0))[0] is True
        assert checker.is_in_maintenance_window("ordinal-cluster", datetime(2024, 1, 25, 16, 0))[0] is True

        # 3rd Tuesday should not match
        assert checker.is_in_maintenance_window("ordinal-cluster", datetime(2024, 1, 16, 16, 0))[0] is False

    def test_local_timezone(self, checker):
        # 21:30 UTC on Saturday is 22:30 in Berlin (CET)
        in_window, reason = checker.is_in_maintenance_window(
            "HV-BERLIN", datetime(2024, 1, 6, 21, 30, tzinfo=timezone.utc)
        )
        assert in_window is True
        assert "Europe/Berlin" in reason

        # 21:30 Berlin time is still outside
        in_window, _ = checker.is_in_maintenance_window(
            "HV-BERLIN", datetime(2024, 1, 6, 20, 30, tzinfo=timezone.utc)
        )
        assert in_window is False

    def test_no_config_cluster(self, checker):
        in_window, reason = checker.is_in_maintenance_window("nonexistent-cluster")
        assert in_window is False
        assert "No maintenance configuration found" in reason

    def test_no_windows_cluster(self, checker):
        in_window, reason = checker.is_in_maintenance_window("no-windows-cluster")
        assert in_window is False
        assert "No maintenance windows configured" in reason


class TestOrdinalDays:

    def test_last_friday(self):
        assert _is_ordinal_day(date(2024, 1, 26), "last fri") is True
        assert _is_ordinal_day(date(2024, 1, 19), "last fri") is False

    def test_february_leap_year(self):
        # Last Friday in Feb 2024 is Feb 23rd
        assert _is_ordinal_day(date(2024, 2, 23), "last fri") is True
        assert _is_ordinal_day(date(2024, 2, 16), "last fri") is False

    def test_fifth_weekday_missing_in_month(self):
        # March 1st is the first Friday of March, never a spilled-over 5th one
        assert _is_ordinal_day(date(2024, 3, 1), "5th fri") is False
        assert _is_ordinal_day(date(2024, 3, 29), "5th fri") is True


class TestNextMaintenanceWindow:
    """Test finding next maintenance window."""

    def test_next_window_same_day(self, checker):
        # Monday 17:00 - next window should be 18:00 same day
        next_start, reason = checker.get_next_maintenance_window("test-cluster", datetime(2024, 1, 1, 17, 0))

        assert next_start == datetime(2024, 1, 1, 18, 0, tzinfo=timezone.utc)
        assert "Evening maintenance" in reason

    def test_next_window_different_day(self, checker):
        # Wednesday 23:00 - next window should be Saturday 02:00
        next_start, reason = checker.get_next_maintenance_window("test-cluster", datetime(2024, 1, 3, 23, 0))

        assert next_start.weekday() == 5
        assert next_start.time() == time(2, 0)
        assert "Weekend maintenance" in reason

    def test_next_window_ordinal_day(self, checker):
        next_start, _ = checker.get_next_maintenance_window("ordinal-cluster", datetime(2024, 1, 1, 12, 0))

        assert next_start == datetime(2024, 1, 9, 15, 0, tzinfo=timezone.utc)

    def test_next_window_is_reported_in_utc(self, checker):
        next_start, reason = checker.get_next_maintenance_window(
            "HV-BERLIN", datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        )

        assert next_start == datetime(2024, 1, 6, 21, 0, tzinfo=timezone.utc)
        assert "2024-01-06 21:00 UTC" in reason

    def test_no_upcoming_windows(self, checker):
        next_start, reason = checker.get_next_maintenance_window("no-windows-cluster")
        assert next_start is None
        assert "No maintenance windows configured" in reason


class TestMayStartDrain:
    """Test the decision whether a node drain may begin."""

    def test_may_start_in_window(self, checker):
        may_start, reason = checker.may_start_drain("test-cluster", datetime(2024, 1, 1, 19, 0))

        assert may_start is True
        assert "Evening maintenance" in reason
        assert "180 minutes remaining" in reason

    def test_too_little_time_left(self, checker):
        # Monday 21:45 - only 15 minutes left in the evening window
        may_start, reason = checker.may_start_drain("test-cluster", datetime(2024, 1, 1, 21, 45))

        assert may_start is False
        assert "Only 15 minutes left" in reason
        assert "at least 30 needed" in reason
        assert "2024-01-02 18:00 UTC" in reason

    def test_min_window_duration_per_cluster(self, checker):
        # minimal-cluster needs 60 minutes; its one-hour window is usable only at the start
        assert checker.may_start_drain("minimal-cluster", datetime(2024, 1, 5, 20, 0))[0] is True
        assert checker.may_start_drain("minimal-cluster", datetime(2024, 1, 5, 20, 1))[0] is False

    def test_outside_window(self, checker):
        may_start, reason = checker.may_start_drain("test-cluster", datetime(2024, 1, 4, 19, 0))

        assert may_start is False
        assert reason.startswith("Outside all maintenance windows.")
        assert "2024-01-06 02:00 UTC" in reason

    def test_no_config_is_unrestricted(self, checker):
        may_start, reason = checker.may_start_drain("nonexistent-cluster")

        assert may_start is True
        assert "no restrictions" in reason

    def test_no_windows_is_unrestricted(self, checker):
        may_start, reason = checker.may_start_drain("no-windows-cluster")

        assert may_start is True
        assert "no restrictions" in reason


class TestConfigGeneration:
    """Test configuration file generation."""

    def test_create_sample_config(self, tmp_path):
        path = tmp_path / "maintenance.toml"

        create_sample_config(path)

        checker = MaintenanceWindowChecker(path)
        hv_config = checker.get_cluster_config("hv-cluster01")
        assert hv_config is not None
        assert hv_config.timezone == "Europe/Berlin"
        assert len(hv_config.windows) == 2

        sql_config = checker.get_cluster_config("SQL-CLUSTER")
        assert sql_config.min_window_duration == 45
        assert sql_config.windows[0].ordinal_days == ["last sat"]


class TestDaylightSavingTransitions:
    """Window arithmetic must use real elapsed time across DST changes."""

    @pytest.fixture
    def berlin_checker(self, tmp_path):
        path = tmp_path / "dst.toml"
        path.write_text(
            '[HV-DST]\n'
            'timezone = "Europe/Berlin"\n'
            'min_window_duration = 150\n'
            '[[HV-DST.windows]]\n'
            'time = "01:00-04:00"\n'
        )
        return MaintenanceWindowChecker(path)

    def test_spring_forward_shortens_window(self, berlin_checker):
        # 2024-03-31: 01:00 CET is 00:00 UTC, 04:00 CEST is 02:00 UTC
        may_start, reason = berlin_checker.may_start_drain("HV-DST", datetime(2024, 3, 31, 0, 0, tzinfo=timezone.utc))

        assert may_start is False
        assert "Only 120 minutes left" in reason

    def test_spring_forward_window_end(self, berlin_checker):
        in_window, _ = berlin_checker.is_in_maintenance_window(
            "HV-DST", datetime(2024, 3, 31, 1, 59, tzinfo=timezone.utc)
        )
        assert in_window is True

        in_window, _ = berlin_checker.is_in_maintenance_window(
            "HV-DST", datetime(2024, 3, 31, 2, 0, tzinfo=timezone.utc)
        )
        assert in_window is False

    def test_fall_back_lengthens_window(self, berlin_checker):
        # 2024-10-27: 01:00 CEST is 23:00 UTC the day before, 04:00 CET is 03:00 UTC
        may_start, reason = berlin_checker.may_start_drain("HV-DST", datetime(2024, 10, 26, 23, 0, tzinfo=timezone.utc))

        assert may_start is True
        assert "240 minutes remaining" in reason

    def test_next_window_after_spring_forward(self, berlin_checker):
        next_start, _ = berlin_checker.get_next_maintenance_window(
            "HV-DST", datetime(2024, 3, 31, 2, 0, tzinfo=timezone.utc)
        )

        # 01:00 CEST on April 1st
        assert next_start == datetime(2024, 3, 31, 23, 0, tzinfo=timezone.utc)
