"""
Timezone-aware time utilities and calendar-field derivation.

Hourly weather timestamps arrive in UTC (OpenWeatherMap bulk export style,
e.g. "2014-01-01 05:00:00 +0000 UTC") and are converted to the city's local
timezone before the calendar date is taken. Crime dates are local calendar
dates already. Both sides end up as naive midnight Timestamps so they join
on equality.
"""

from typing import Optional, Tuple, Union

import pandas as pd
import pytz


DEFAULT_TIMEZONE = "America/New_York"

# Fixed Monday..Sunday ordering for the weekday field
WEEKDAY_ORDER = [
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
]

CALENDAR_FIELDS = ["year", "month", "day", "weekday", "week"]

_OFFSET_PATTERN = r"(?:[+-]\d{2}:?\d{2}|Z)$"


def get_timezone(name: str) -> pytz.BaseTzInfo:
    """
    Resolve a timezone name.

    Raises:
        pytz.UnknownTimeZoneError: If the name is not a valid tz database name
    """
    return pytz.timezone(name)


# =============================================================================
# Timestamp Parsing / Conversion
# =============================================================================

def parse_timestamps(
    values: pd.Series,
    source_tz: str = "UTC",
) -> pd.Series:
    """
    Parse source timestamp strings into UTC Timestamps.

    Each value is read on its own terms: strings with an explicit UTC offset
    (a trailing " UTC" label is tolerated) are taken as written, naive
    strings are localized to `source_tz`. Missing, blank and unparseable
    values become NaT.
    """
    cleaned = (
        values.astype("string")
        .str.strip()
        .str.replace(r"\s*UTC$", "", regex=True)
    )
    present = (cleaned != "").fillna(False).astype(bool)
    has_offset = present & cleaned.str.contains(_OFFSET_PATTERN, regex=True).fillna(False).astype(bool)
    naive = present & ~has_offset

    parsed = pd.Series(pd.NaT, index=values.index, dtype="datetime64[ns, UTC]")

    if has_offset.any():
        parsed.loc[has_offset] = pd.to_datetime(
            cleaned[has_offset], utc=True, errors="coerce"
        )

    if naive.any():
        local = pd.to_datetime(cleaned[naive], errors="coerce").dt.tz_localize(
            get_timezone(source_tz),
            ambiguous="NaT",
            nonexistent="NaT",
        )
        parsed.loc[naive] = local.dt.tz_convert("UTC")

    return parsed


def to_local_timezone(
    timestamps: Union[pd.Series, pd.DatetimeIndex],
    tz_name: str = DEFAULT_TIMEZONE,
    source_tz: Optional[str] = None,
) -> pd.Series:
    """
    Convert timestamps to the target local timezone.

    Args:
        timestamps: Series or DatetimeIndex of timestamps
        tz_name: Target timezone name
        source_tz: Source timezone if timestamps are naive.
                   If None and timestamps are naive, assumes UTC.

    Returns:
        Series of timezone-aware timestamps in local time
    """
    if isinstance(timestamps, pd.DatetimeIndex):
        timestamps = timestamps.to_series()

    if not pd.api.types.is_datetime64_any_dtype(timestamps):
        timestamps = pd.to_datetime(timestamps)

    if timestamps.dt.tz is None:
        timestamps = timestamps.dt.tz_localize(source_tz or "UTC")

    return timestamps.dt.tz_convert(get_timezone(tz_name))


def local_calendar_date(timestamps: pd.Series) -> pd.Series:
    """
    Calendar date of (local) timestamps as naive midnight Timestamps.

    The wall-clock date is kept; the timezone is dropped afterwards.
    """
    if getattr(timestamps.dt, "tz", None) is not None:
        timestamps = timestamps.dt.tz_localize(None)
    return as_date_key(timestamps)


def as_date_key(dates: pd.Series) -> pd.Series:
    """Naive midnight datetime64[ns]; the join key shared by every stage."""
    return pd.to_datetime(dates).dt.normalize().astype("datetime64[ns]")


# =============================================================================
# Calendar Fields
# =============================================================================

def add_calendar_fields(
    df: pd.DataFrame,
    date_column: str = "date",
) -> pd.DataFrame:
    """
    Add year, month, day-of-month, weekday and ISO week columns.

    Existing calendar columns are overwritten so the fields are always
    derived from the date itself.

    Returns:
        New DataFrame with calendar fields
    """
    df = df.copy()
    dates = pd.to_datetime(df[date_column])

    df["year"] = dates.dt.year.astype("int64")
    df["month"] = dates.dt.month.astype("int64")
    df["day"] = dates.dt.day.astype("int64")
    df["weekday"] = pd.Categorical(
        dates.dt.day_name(),
        categories=WEEKDAY_ORDER,
        ordered=True,
    )
    df["week"] = dates.dt.isocalendar().week.astype("int64").to_numpy()

    return df


# =============================================================================
# Date Ranges
# =============================================================================

def build_date_range(
    start_date: Union[str, pd.Timestamp],
    end_date: Union[str, pd.Timestamp],
) -> pd.DatetimeIndex:
    """
    Every calendar day from start_date to end_date, inclusive.

    Raises:
        ValueError: If end_date precedes start_date
    """
    start = pd.Timestamp(start_date).normalize()
    end = pd.Timestamp(end_date).normalize()

    if end < start:
        raise ValueError(f"Date range end {end.date()} precedes start {start.date()}")

    return pd.date_range(start=start, end=end, freq="D", name="date")


def filter_date_range(
    df: pd.DataFrame,
    date_column: str,
    start_date: Optional[Union[str, pd.Timestamp]] = None,
    end_date: Optional[Union[str, pd.Timestamp]] = None,
) -> pd.DataFrame:
    """Filter DataFrame to dates within [start_date, end_date] (either bound optional)."""
    dates = df[date_column]
    mask = pd.Series(True, index=df.index)

    if start_date is not None:
        mask &= dates >= pd.Timestamp(start_date)
    if end_date is not None:
        mask &= dates <= pd.Timestamp(end_date)

    return df[mask].copy()


def get_date_coverage(
    df: pd.DataFrame,
    date_column: str,
) -> Tuple[Optional[pd.Timestamp], Optional[pd.Timestamp]]:
    """First and last date present in the data (None, None if empty)."""
    dates = df[date_column].dropna()
    if dates.empty:
        return None, None
    return dates.min(), dates.max()
