"""
Feature table assembly.

dense crime grid
  ⟕ daily weather on date          (rows without weather coverage dropped)
  ⟕ neighborhood clusters           (rows without a cluster dropped or imputed)
  → month/day/cluster as non-ordinal categoricals
  → crime_count binarized to crime_occurred ∈ {No, Yes}

Exactly one row per (date, neighborhood, category) survives.
"""

from typing import Dict, List, Tuple

import numpy as np
import pandas as pd

from crime_weather.categories import LABEL_LEVELS, LABEL_NO, LABEL_YES
from crime_weather.schemas import validate_merge
from crime_weather.time_utils import as_date_key
from crime_weather.weather import CONTINUOUS_COLUMNS, indicator_columns


LABEL_COLUMN = "crime_occurred"
CLUSTER_COLUMN = "cluster"
UNASSIGNED_CLUSTER = "unassigned"

CATEGORICAL_FEATURES = ["month", "day", "weekday", CLUSTER_COLUMN]
CALENDAR_NUMERIC_FEATURES = ["week"]

MISSING_CLUSTER_POLICIES = ("drop", "impute")


# =============================================================================
# Label
# =============================================================================

def binarize_counts(counts: pd.Series) -> pd.Series:
    """
    crime_count == 0 → "No", crime_count > 0 → "Yes".

    Raises:
        ValueError: On null or negative counts (no third level is possible)
    """
    if counts.isna().any():
        raise ValueError(f"{int(counts.isna().sum())} null crime counts cannot be labelled")
    if (counts < 0).any():
        raise ValueError(f"{int((counts < 0).sum())} negative crime counts cannot be labelled")

    labels = np.where(counts.to_numpy() > 0, LABEL_YES, LABEL_NO)
    return pd.Series(
        pd.Categorical(labels, categories=LABEL_LEVELS),
        index=counts.index,
        name=LABEL_COLUMN,
    )


# =============================================================================
# Joins
# =============================================================================

def join_weather(
    grid: pd.DataFrame,
    weather_daily: pd.DataFrame,
) -> Tuple[pd.DataFrame, Dict]:
    """
    Attach daily weather by date and drop rows without weather coverage.

    Returns:
        (joined rows with weather, stats on rows/dates dropped)
    """
    left = grid.copy()
    left["date"] = as_date_key(left["date"])
    right = weather_daily.copy()
    right["date"] = as_date_key(right["date"])

    joined = validate_merge(
        left,
        right,
        on="date",
        how="left",
        validate="many_to_one",
        context="weather onto grid",
        indicator=True,
    )

    missing = joined["_merge"] == "left_only"
    missing_dates = joined.loc[missing, "date"].drop_duplicates().sort_values()

    stats = {
        "missing_weather_rows": int(missing.sum()),
        "missing_weather_dates": int(len(missing_dates)),
        "missing_weather_first_date": missing_dates.min() if len(missing_dates) else None,
        "missing_weather_last_date": missing_dates.max() if len(missing_dates) else None,
    }

    joined = joined[~missing].drop(columns=["_merge"]).reset_index(drop=True)
    return joined, stats


def join_clusters(
    df: pd.DataFrame,
    clusters: pd.DataFrame,
    policy: str = "drop",
) -> Tuple[pd.DataFrame, Dict]:
    """
    Attach each row's neighborhood cluster as a categorical "cluster" column.

    Args:
        df: Rows with a neighborhood column
        clusters: One row per neighborhood with cluster_id
        policy: "drop" removes rows without a cluster; "impute" labels them
                UNASSIGNED_CLUSTER

    Returns:
        (rows with cluster, stats)
    """
    if policy not in MISSING_CLUSTER_POLICIES:
        raise ValueError(f"Unknown missing-cluster policy '{policy}'. Use one of {MISSING_CLUSTER_POLICIES}")

    lookup = clusters[["neighborhood", "cluster_id"]]
    joined = validate_merge(
        df,
        lookup,
        on="neighborhood",
        how="left",
        validate="many_to_one",
        context="clusters onto grid",
    )

    missing = joined["cluster_id"].isna()
    stats = {
        "missing_cluster_rows": int(missing.sum()),
        "missing_cluster_neighborhoods": sorted(joined.loc[missing, "neighborhood"].unique().tolist()),
        "missing_cluster_policy": policy,
    }

    if policy == "drop":
        joined = joined[~missing].copy()

    levels = sorted(int(c) for c in clusters["cluster_id"].dropna().unique())
    cluster_labels = [str(c) for c in levels]
    values = joined["cluster_id"].map(lambda c: str(int(c)) if pd.notna(c) else UNASSIGNED_CLUSTER)

    if policy == "impute":
        cluster_labels.append(UNASSIGNED_CLUSTER)

    joined[CLUSTER_COLUMN] = pd.Categorical(values, categories=cluster_labels)
    joined = joined.drop(columns=["cluster_id"]).reset_index(drop=True)

    return joined, stats


# =============================================================================
# Encoding
# =============================================================================

def encode_calendar(df: pd.DataFrame) -> pd.DataFrame:
    """Month and day-of-month as unordered categoricals with fixed levels."""
    df = df.copy()
    df["month"] = pd.Categorical(df["month"].astype("int64"), categories=list(range(1, 13)))
    df["day"] = pd.Categorical(df["day"].astype("int64"), categories=list(range(1, 32)))
    return df


def weather_feature_columns(df: pd.DataFrame) -> List[str]:
    """Continuous weather columns followed by indicator columns present in df."""
    return [c for c in CONTINUOUS_COLUMNS if c in df.columns] + indicator_columns(df)


def model_feature_columns(df: pd.DataFrame) -> Tuple[List[str], List[str]]:
    """
    Split the model inputs into categorical and numeric column lists.

    Returns:
        (categorical columns, numeric columns)
    """
    categorical = [c for c in CATEGORICAL_FEATURES if c in df.columns]
    numeric = [c for c in CALENDAR_NUMERIC_FEATURES if c in df.columns]
    numeric += weather_feature_columns(df)
    return categorical, numeric


# =============================================================================
# Assembly
# =============================================================================

def build_feature_table(
    grid: pd.DataFrame,
    weather_daily: pd.DataFrame,
    clusters: pd.DataFrame,
    missing_cluster_policy: str = "drop",
) -> Tuple[pd.DataFrame, Dict]:
    """
    Join, filter, encode and label the dense grid.

    Returns:
        (feature table sorted by date/neighborhood/category, anomaly counts)
    """
    stats: Dict = {"grid_rows": len(grid)}

    df, weather_stats = join_weather(grid, weather_daily)
    stats.update(weather_stats)

    df, cluster_stats = join_clusters(df, clusters, missing_cluster_policy)
    stats.update(cluster_stats)

    df = encode_calendar(df)
    df[LABEL_COLUMN] = binarize_counts(df["crime_count"])

    df = df.sort_values(["date", "neighborhood", "category"]).reset_index(drop=True)

    stats["feature_rows"] = len(df)
    stats["positive_rows"] = int((df[LABEL_COLUMN] == LABEL_YES).sum())
    stats["positive_share"] = stats["positive_rows"] / len(df) if len(df) else None
    return df, stats


def expected_feature_rows(stats: Dict) -> int:
    """Grid rows left after the weather filter and, under "drop", the cluster filter."""
    expected = stats["grid_rows"] - stats["missing_weather_rows"]
    if stats["missing_cluster_policy"] == "drop":
        expected -= stats["missing_cluster_rows"]
    return expected


def feature_anomalies(stats: Dict) -> Dict:
    """Rows lost to the weather and cluster joins, as reported in the anomaly report."""
    def iso(date):
        return None if date is None else pd.Timestamp(date).strftime("%Y-%m-%d")

    return {
        "missing_weather_rows": stats["missing_weather_rows"],
        "missing_weather_dates": stats["missing_weather_dates"],
        "missing_weather_first_date": iso(stats["missing_weather_first_date"]),
        "missing_weather_last_date": iso(stats["missing_weather_last_date"]),
        "missing_cluster_rows": stats["missing_cluster_rows"],
        "missing_cluster_neighborhoods": stats["missing_cluster_neighborhoods"],
    }
