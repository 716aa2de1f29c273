"""
Maintenance windows for rolling restarts.

A TOML file maps failover cluster names to the windows in which a node drain
may begin. Nodes that are already mid-cycle always finish; only the start of a
new node's drain is gated.
"""

import re
import tomllib
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple, Union

from dateutil import tz
from dateutil.relativedelta import FR, MO, SA, SU, TH, TU, WE, relativedelta
from pydantic import BaseModel, Field, field_validator

WEEKDAY_MAP = {
    "monday": 0, "mon": 0,
    "tuesday": 1, "tue": 1,
    "wednesday": 2, "wed": 2,
    "thursday": 3, "thu": 3,
    "friday": 4, "fri": 4,
    "saturday": 5, "sat": 5,
    "sunday": 6, "sun": 6,
}

ORDINAL_MAP = {
    "1st": 1, "first": 1,
    "2nd": 2, "second": 2,
    "3rd": 3, "third": 3,
    "4th": 4, "fourth": 4,
    "5th": 5, "fifth": 5,
    "last": -1,
}

RELATIVE_WEEKDAYS = (MO, TU, WE, TH, FR, SA, SU)

ORDINAL_PATTERN = re.compile(r"^(\w+)\s+(\w+)$")

LOOKAHEAD_DAYS = 35


def _split_list(v):
    if isinstance(v, str):
        v = v.split(",")
    return [item.strip().lower() for item in v if item.strip()]


class MaintenanceWindow(BaseModel):
    """A single maintenance window definition."""

    start_time: time
    end_time: time  # exclusive; an end at or before the start crosses midnight
    weekdays: Optional[Set[str]] = None  # e.g. {"mon", "tue"}
    ordinal_days: Optional[List[str]] = None  # e.g. ["2nd tue", "last fri"]
    description: Optional[str] = None

    @field_validator("weekdays", mode="before")
    @classmethod
    def normalize_weekdays(cls, v):
        if v is None:
            return None
        days = set(_split_list(v))
        unknown = days - WEEKDAY_MAP.keys()
        if unknown:
            raise ValueError(f"Unknown weekday(s): {', '.join(sorted(unknown))}")
        return days

    @field_validator("ordinal_days", mode="before")
    @classmethod
    def normalize_ordinal_days(cls, v):
        if v is None:
            return None
        days = _split_list(v)
        for day in days:
            match = ORDINAL_PATTERN.match(day)
            if not match or match.group(1) not in ORDINAL_MAP or match.group(2) not in WEEKDAY_MAP:
                raise ValueError(f"Invalid ordinal day '{day}', expected e.g. '2nd tue' or 'last fri'")
        return days

    @property
    def crosses_midnight(self) -> bool:
        return self.end_time <= self.start_time

    def label(self, index: int) -> str:
        return self.description or f"window {index + 1}"


class ClusterMaintenanceConfig(BaseModel):
    """Maintenance configuration for one failover cluster."""

    cluster_name: str
    windows: List[MaintenanceWindow] = Field(default_factory=list)
    timezone: str = "UTC"
    min_window_duration: int = 30  # minutes that must remain in the window to start a drain

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        if tz.gettz(v) is None:
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @property
    def tzinfo(self) -> tzinfo:
        return tz.gettz(self.timezone)


def parse_time_range(time_range: str) -> Tuple[time, time]:
    """Parse '18:00-24:00' into (start, end); '24:00' means midnight at the end of the day."""
    if "-" not in time_range:
        raise ValueError(f"Invalid time range format: {time_range}")
    start_str, end_str = time_range.split("-", 1)
    return _parse_time(start_str), _parse_time(end_str)


def _parse_time(time_str: str) -> time:
    time_str = time_str.strip()
    if time_str == "24:00":
        return time(0, 0)
    try:
        hour, minute = map(int, time_str.split(":"))
        return time(hour, minute)
    except ValueError:
        raise ValueError(f"Invalid time format: {time_str}")


class MaintenanceWindowChecker:
    """Answers whether a node drain may start for a cluster at a given time."""

    def __init__(self, config_path: Union[str, Path]):
        self.config_path = Path(config_path)
        self._configs: Dict[str, ClusterMaintenanceConfig] = {}
        self._load_config()

    def _load_config(self) -> None:
        if not self.config_path.exists():
            raise FileNotFoundError(f"Maintenance config file not found: {self.config_path}")

        with open(self.config_path, "rb") as f:
            data = tomllib.load(f)

        self._configs = {}
        for cluster_name, cluster_data in data.items():
            windows = []
            for window_data in cluster_data.get("windows", []):
                start, end = parse_time_range(window_data.get("time", ""))
                windows.append(
                    MaintenanceWindow(
                        start_time=start,
                        end_time=end,
                        weekdays=window_data.get("weekdays"),
                        ordinal_days=window_data.get("ordinal_days"),
                        description=window_data.get("description"),
                    )
                )

            self._configs[cluster_name.lower()] = ClusterMaintenanceConfig(
                cluster_name=cluster_name,
                windows=windows,
                timezone=cluster_data.get("timezone", "UTC"),
                min_window_duration=cluster_data.get("min_window_duration", 30),
            )

    @property
    def configs(self) -> List[ClusterMaintenanceConfig]:
        return list(self._configs.values())

    def get_cluster_config(self, cluster_name: str) -> Optional[ClusterMaintenanceConfig]:
        # Failover cluster names are case-insensitive
        return self._configs.get(cluster_name.lower())

    @staticmethod
    def _day_matches(window: MaintenanceWindow, day: date) -> bool:
        if window.weekdays and not any(WEEKDAY_MAP[d] == day.weekday() for d in window.weekdays):
            return False
        if window.ordinal_days and not any(_is_ordinal_day(day, ordinal_day) for ordinal_day in window.ordinal_days):
            return False
        return True

    @staticmethod
    def _occurrence(window: MaintenanceWindow, day: date, zone: tzinfo) -> Tuple[datetime, datetime]:
        """Start and end of the window occurrence that begins on the given day."""
        start = datetime.combine(day, window.start_time, tzinfo=zone)
        end = datetime.combine(day, window.end_time, tzinfo=zone)
        if window.crosses_midnight:
            end += timedelta(days=1)
        return start, end

    def current_window(
        self, cluster_name: str, check_time: Optional[datetime] = None
    ) -> Optional[Tuple[MaintenanceWindow, datetime, datetime]]:
        """The window occurrence containing check_time, if any."""
        config = self.get_cluster_config(cluster_name)
        if not config:
            return None

        check_time = _as_aware(check_time)
        local_time = check_time.astimezone(config.tzinfo)
        for window in config.windows:
            # An occurrence that started yesterday may still be open after midnight
            for day in (local_time.date(), local_time.date() - timedelta(days=1)):
                if not self._day_matches(window, day):
                    continue
                start, end = self._occurrence(window, day, config.tzinfo)
                # Compare in UTC; same-tzinfo datetimes compare as wall-clock times across DST changes
                if start.astimezone(timezone.utc) <= check_time < end.astimezone(timezone.utc):
                    return window, start, end
        return None

    def is_in_maintenance_window(
        self, cluster_name: str, check_time: Optional[datetime] = None
    ) -> Tuple[bool, str]:
        """
        Check if a time falls within one of the cluster's maintenance windows.

        Returns:
            Tuple of (is_in_window, reason)
        """
        config = self.get_cluster_config(cluster_name)
        if not config:
            return False, f"No maintenance configuration found for cluster '{cluster_name}'"
        if not config.windows:
            return False, f"No maintenance windows configured for cluster '{cluster_name}'"

        found = self.current_window(cluster_name, check_time)
        if found:
            window, start, end = found
            index = config.windows.index(window)
            return True, (
                f"Within maintenance {window.label(index)} "
                f"({start.strftime('%H:%M')}-{end.strftime('%H:%M')} {config.timezone})"
            )
        return False, f"Outside all maintenance windows for cluster '{cluster_name}'"

    def get_next_maintenance_window(
        self, cluster_name: str, from_time: Optional[datetime] = None
    ) -> Tuple[Optional[datetime], str]:
        """
        Find the start of the next window after from_time.

        Returns:
            Tuple of (next_window_start in UTC, reason)
        """
        config = self.get_cluster_config(cluster_name)
        if not config or not config.windows:
            return None, f"No maintenance windows configured for cluster '{cluster_name}'"

        from_time = _as_aware(from_time)
        local_day = from_time.astimezone(config.tzinfo).date()

        best: Optional[Tuple[datetime, int]] = None
        for offset in range(LOOKAHEAD_DAYS + 1):
            day = local_day + timedelta(days=offset)
            for i, window in enumerate(config.windows):
                if not self._day_matches(window, day):
                    continue
                start, _ = self._occurrence(window, day, config.tzinfo)
                start = start.astimezone(timezone.utc)
                if start > from_time and (best is None or start < best[0]):
                    best = (start, i)
            if best is not None:
                break

        if best is None:
            return None, (
                f"No upcoming maintenance windows found for cluster '{cluster_name}' "
                f"in the next {LOOKAHEAD_DAYS} days"
            )

        start_utc, index = best
        return start_utc, (
            f"Next maintenance {config.windows[index].label(index)} starts at "
            f"{start_utc.strftime('%Y-%m-%d %H:%M UTC')}"
        )

    def may_start_drain(self, cluster_name: str, current_time: Optional[datetime] = None) -> Tuple[bool, str]:
        """
        Decide whether a node drain may begin now.

        Clusters without configuration or without windows are unrestricted. Inside a
        window at least min_window_duration minutes must remain.

        Returns:
            Tuple of (may_start, reason)
        """
        config = self.get_cluster_config(cluster_name)
        if not config:
            return True, f"No maintenance configuration for cluster '{cluster_name}' - no restrictions"
        if not config.windows:
            return True, f"No maintenance windows configured for cluster '{cluster_name}' - no restrictions"

        current_time = _as_aware(current_time)
        found = self.current_window(cluster_name, current_time)
        if found:
            window, _, end = found
            remaining = end.astimezone(timezone.utc) - current_time.astimezone(timezone.utc)
            if remaining >= timedelta(minutes=config.min_window_duration):
                index = config.windows.index(window)
                return True, (
                    f"Within maintenance {window.label(index)}, "
                    f"{remaining.total_seconds() / 60:.0f} minutes remaining"
                )
            reason = (
                f"Only {remaining.total_seconds() / 60:.0f} minutes left in the current window, "
                f"at least {config.min_window_duration} needed"
            )
        else:
            reason = "Outside all maintenance windows"

        _, next_reason = self.get_next_maintenance_window(cluster_name, current_time)
        return False, f"{reason}. {next_reason}"


def _as_aware(value: Optional[datetime]) -> datetime:
    """Default to now; naive datetimes are taken as UTC."""
    if value is None:
        return datetime.now(timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _is_ordinal_day(day: date, ordinal_day: str) -> bool:
    """Check whether day is e.g. the '2nd tue' or 'last fri' of its month."""
    ordinal_str, weekday_str = ORDINAL_PATTERN.match(ordinal_day).groups()
    ordinal = ORDINAL_MAP[ordinal_str]
    weekday = RELATIVE_WEEKDAYS[WEEKDAY_MAP[weekday_str]]

    if ordinal == -1:
        target = day + relativedelta(day=31, weekday=weekday(-1))
    else:
        target = day + relativedelta(day=1, weekday=weekday(+ordinal))
    # A 5th occurrence may spill into the next month
    return target.month == day.month and target == day


def create_sample_config(output_path: Union[str, Path]) -> None:
    """Write a sample maintenance windows configuration file."""
    sample_config = '''# Maintenance windows per failover cluster.
# A node drain only starts inside a window; nodes already in progress finish.

[HV-CLUSTER01]
timezone = "Europe/Berlin"
min_window_duration = 60  # minutes that must remain to start draining a node

[[HV-CLUSTER01.windows]]
time = "22:00-04:00"
weekdays = ["sat", "sun"]
description = "Weekend night"

[[HV-CLUSTER01.windows]]
time = "20:00-24:00"
ordinal_days = ["2nd tue"]
description = "Patch Tuesday evening"

[SQL-CLUSTER]
timezone = "UTC"
min_window_duration = 45

[[SQL-CLUSTER.windows]]
time = "01:00-05:00"
ordinal_days = ["last sat"]
description = "Month-end maintenance"
'''

    with open(output_path, "w") as f:
        f.write(sample_config)
