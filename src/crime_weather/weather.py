"""
Hourly weather observations → one row per local calendar day.

Hourly rows carry continuous measurements plus a single free-text weather
description. The description is pivoted into one indicator column per
distinct (normalized) value, then hours are reduced to days:

    temp, pressure, humidity, clouds_all   mean
    temp_min                               min
    temp_max, wind_speed                   max
    wx_<description>                       sum (hours with that description)

Descriptions are case-folded before pivoting, so case variants such as
"Sky is Clear" / "sky is clear" land in the same indicator column.
"""

import re
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd

from crime_weather.schemas import SchemaError
from crime_weather.time_utils import (
    DEFAULT_TIMEZONE,
    local_calendar_date,
    parse_timestamps,
    to_local_timezone,
)


# Source column names in the OpenWeatherMap hourly history export
DEFAULT_TIMESTAMP_COLUMN = "dt_iso"
DEFAULT_DESCRIPTION_COLUMN = "weather_description"

CONTINUOUS_AGGREGATIONS: Dict[str, str] = {
    "temp": "mean",
    "temp_min": "min",
    "temp_max": "max",
    "pressure": "mean",
    "humidity": "mean",
    "wind_speed": "max",
    "clouds_all": "mean",
}
CONTINUOUS_COLUMNS = list(CONTINUOUS_AGGREGATIONS)

INDICATOR_PREFIX = "wx_"
DEFAULT_SEPARATOR = "_"


class WeatherVocabularyError(Exception):
    """Raised in strict mode when observed descriptions differ from the expected vocabulary."""
    pass


# =============================================================================
# Loading
# =============================================================================

def load_weather_csv(
    path,
    timestamp_column: str = DEFAULT_TIMESTAMP_COLUMN,
    description_column: str = DEFAULT_DESCRIPTION_COLUMN,
) -> pd.DataFrame:
    """
    Read hourly weather and keep timestamp, continuous fields and description.

    Raises:
        SchemaError: If any required column is missing
    """
    df = pd.read_csv(path, low_memory=False)
    return select_weather_fields(df, timestamp_column, description_column)


def select_weather_fields(
    df: pd.DataFrame,
    timestamp_column: str = DEFAULT_TIMESTAMP_COLUMN,
    description_column: str = DEFAULT_DESCRIPTION_COLUMN,
) -> pd.DataFrame:
    """Subset to the fixed field list and rename to timestamp / description."""
    required = [timestamp_column] + CONTINUOUS_COLUMNS + [description_column]
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise SchemaError(f"Weather data is missing columns {missing}")

    out = df[required].rename(
        columns={timestamp_column: "timestamp", description_column: "description"}
    )
    for col in CONTINUOUS_COLUMNS:
        out[col] = pd.to_numeric(out[col], errors="coerce").astype("float64")
    return out


# =============================================================================
# Description Normalization
# =============================================================================

def normalize_label(description: str, separator: str = DEFAULT_SEPARATOR) -> str:
    """
    Turn a free-text description into a column-safe identifier.

    "Sky is Clear" → "sky_is_clear"; "thunderstorm with light rain" →
    "thunderstorm_with_light_rain".
    """
    text = str(description).strip().lower()
    return re.sub(r"[^a-z0-9]+", separator, text).strip(separator)


def indicator_column(description: str, separator: str = DEFAULT_SEPARATOR) -> str:
    """Indicator column name for a description."""
    return f"{INDICATOR_PREFIX}{normalize_label(description, separator)}"


def indicator_columns(df: pd.DataFrame) -> List[str]:
    """Indicator columns present in a weather table."""
    return [c for c in df.columns if c.startswith(INDICATOR_PREFIX)]


def find_case_variants(
    descriptions: pd.Series,
    separator: str = DEFAULT_SEPARATOR,
) -> Dict[str, List[str]]:
    """
    Raw descriptions that collapse onto the same indicator column.

    Returns:
        {indicator column: sorted raw variants} for columns with 2+ variants
    """
    raw = pd.Series(descriptions.dropna().astype(str).str.strip().unique())
    if raw.empty:
        return {}

    keys = raw.map(lambda d: indicator_column(d, separator))
    variants = {}
    for key, group in raw.groupby(keys):
        if len(group) > 1:
            variants[key] = sorted(group.tolist())
    return variants


# =============================================================================
# Hourly Processing
# =============================================================================

def localize_hourly(
    hourly: pd.DataFrame,
    tz_name: str = DEFAULT_TIMEZONE,
    source_tz: str = "UTC",
) -> Tuple[pd.DataFrame, Dict]:
    """
    Convert timestamps to local time, de-duplicate hours and derive the date.

    Rows whose timestamp cannot be parsed are dropped. For a timestamp that
    appears more than once after conversion only the first row is kept.

    Returns:
        (localized hourly frame with "timestamp" and "date", stats)
    """
    df = hourly.copy()
    parsed = parse_timestamps(df["timestamp"], source_tz=source_tz)
    valid = parsed.notna()

    df = df[valid].copy()
    df["timestamp"] = to_local_timezone(parsed[valid], tz_name)

    n_before = len(df)
    df = df.drop_duplicates(subset="timestamp", keep="first")

    df["date"] = local_calendar_date(df["timestamp"])

    stats = {
        "unparseable_timestamps": int((~valid).sum()),
        "duplicate_timestamps": n_before - len(df),
    }
    return df.reset_index(drop=True), stats


def pivot_descriptions(
    hourly: pd.DataFrame,
    separator: str = DEFAULT_SEPARATOR,
) -> pd.DataFrame:
    """
    One-hot encode the description: one 0/1 column per normalized value.

    Hours with no description get 0 in every indicator column.
    """
    df = hourly.copy()
    keys = df["description"].map(
        lambda d: indicator_column(d, separator) if pd.notna(d) and str(d).strip() else None
    )

    dummies = pd.get_dummies(keys, dtype="int64")
    dummies = dummies.reindex(sorted(dummies.columns), axis=1)

    return pd.concat([df.drop(columns=["description"]), dummies], axis=1)


# =============================================================================
# Daily Aggregation
# =============================================================================

def aggregate_weather_daily(hourly: pd.DataFrame) -> pd.DataFrame:
    """
    Reduce hourly (or already-daily) rows to one row per date.

    Continuous fields use CONTINUOUS_AGGREGATIONS; indicator columns are
    summed. Re-aggregating a daily table returns it unchanged.
    """
    agg = {c: f for c, f in CONTINUOUS_AGGREGATIONS.items() if c in hourly.columns}
    agg.update({c: "sum" for c in indicator_columns(hourly)})

    daily = hourly.groupby("date", sort=True).agg(agg).reset_index()

    for col in indicator_columns(daily):
        daily[col] = daily[col].astype("int64")

    return daily


def reshape_weather(
    raw: pd.DataFrame,
    tz_name: str = DEFAULT_TIMEZONE,
    source_tz: str = "UTC",
    separator: str = DEFAULT_SEPARATOR,
) -> Tuple[pd.DataFrame, Dict]:
    """
    Full weather chain: localize → pivot → aggregate daily.

    Returns:
        (daily weather table, anomaly counts)
    """
    variants = find_case_variants(raw["description"], separator)

    hourly, stats = localize_hourly(raw, tz_name, source_tz)
    stats["raw_rows"] = len(raw)
    stats["missing_descriptions"] = int(hourly["description"].isna().sum())
    stats["merged_case_variant_columns"] = len(variants)
    stats["case_variants"] = variants

    hourly = pivot_descriptions(hourly, separator)
    daily = aggregate_weather_daily(hourly)

    stats["hourly_rows"] = len(hourly)
    stats["daily_rows"] = len(daily)
    stats["indicator_columns"] = len(indicator_columns(daily))
    return daily, stats


# =============================================================================
# Vocabulary Validation
# =============================================================================

def check_vocabulary(
    daily: pd.DataFrame,
    expected_descriptions: Optional[Iterable[str]],
    separator: str = DEFAULT_SEPARATOR,
    strict: bool = False,
) -> Dict:
    """
    Compare observed indicator columns with the expected description vocabulary.

    Args:
        daily: Daily weather table
        expected_descriptions: Raw description strings expected in the source
        separator: Separator used when normalizing descriptions
        strict: Raise instead of reporting when the vocabularies differ

    Returns:
        Dict with "unexpected" (observed, not expected) and "never_observed"
        (expected, not observed) indicator columns

    Raises:
        WeatherVocabularyError: In strict mode when "unexpected" is non-empty
    """
    observed = set(indicator_columns(daily))

    if not expected_descriptions:
        return {"checked": False, "unexpected": [], "never_observed": []}

    expected = {indicator_column(d, separator) for d in expected_descriptions}
    report = {
        "checked": True,
        "unexpected": sorted(observed - expected),
        "never_observed": sorted(expected - observed),
    }

    if strict and report["unexpected"]:
        raise WeatherVocabularyError(
            f"Unexpected weather descriptions: {report['unexpected']}"
        )
    return report
