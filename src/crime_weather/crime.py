"""
Crime incidents: loading, categorization, daily aggregation and the dense
(date x neighborhood x category) grid.

Every function takes a DataFrame and returns a new one; nothing is mutated
in place. Row-dropping steps also return a stats dict so the caller can log
how many records each data-quality policy removed.
"""

from typing import Dict, Iterable, Mapping, Optional, Tuple, Union

import pandas as pd

from crime_weather.categories import (
    CATEGORY_VALUES,
    UNMAPPED,
    CategoryMappingError,
    CrimeCategory,
    categorize_descriptions,
)
from crime_weather.schemas import SchemaError, validate_merge
from crime_weather.time_utils import add_calendar_fields, as_date_key, build_date_range


KEY_COLUMNS = ["date", "neighborhood", "category"]

# Source column names in the Baltimore Part 1 crime export
DEFAULT_COLUMN_MAP = {
    "date": "CrimeDate",
    "neighborhood": "Neighborhood",
    "description": "Description",
}

UNMAPPED_POLICIES = ("exclude", "raise")


# =============================================================================
# Loading
# =============================================================================

def load_crime_csv(
    path,
    column_map: Optional[Mapping[str, str]] = None,
) -> pd.DataFrame:
    """
    Read raw incident records and rename the date / neighborhood /
    description columns to their canonical names.

    Other columns are carried through untouched; they take part in the
    exact-duplicate check.

    Raises:
        SchemaError: If a mapped source column is missing
    """
    column_map = dict(column_map or DEFAULT_COLUMN_MAP)

    df = pd.read_csv(path, dtype=str, keep_default_na=True, low_memory=False)

    missing = [src for src in column_map.values() if src not in df.columns]
    if missing:
        raise SchemaError(
            f"Crime file {path} is missing columns {missing}. "
            f"Found: {list(df.columns)}"
        )

    return df.rename(columns={src: dst for dst, src in column_map.items()})


# =============================================================================
# Cleaning
# =============================================================================

def drop_duplicate_incidents(df: pd.DataFrame) -> Tuple[pd.DataFrame, int]:
    """Remove exact duplicate rows; returns (deduplicated, n_dropped)."""
    deduped = df.drop_duplicates(keep="first").reset_index(drop=True)
    return deduped, len(df) - len(deduped)


def parse_incident_dates(
    df: pd.DataFrame,
    date_format: Optional[str] = None,
) -> Tuple[pd.DataFrame, int]:
    """
    Parse the date column to a naive calendar date.

    Unparseable dates are dropped; returns (parsed, n_dropped).
    """
    df = df.copy()
    parsed = pd.to_datetime(df["date"], format=date_format, errors="coerce")
    valid = parsed.notna()

    df = df[valid].copy()
    df["date"] = as_date_key(parsed[valid])

    return df.reset_index(drop=True), int((~valid).sum())


def clean_neighborhoods(df: pd.DataFrame) -> Tuple[pd.DataFrame, int]:
    """
    Normalize neighborhood names and drop incidents without one.

    Missing neighborhoods are dropped at load time so that neither the
    grid nor the clustering ever sees an unknown location.

    Returns:
        (cleaned, n_dropped)
    """
    df = df.copy()
    names = df["neighborhood"].astype("string").str.strip()
    names = names.mask(names.fillna("") == "")

    valid = names.notna()
    df = df[valid].copy()
    df["neighborhood"] = names[valid].astype(str)

    return df.reset_index(drop=True), int((~valid).sum())


# =============================================================================
# Categorization
# =============================================================================

def assign_categories(
    df: pd.DataFrame,
    category_map: Mapping[str, CrimeCategory],
) -> pd.DataFrame:
    """Attach a category column; unknown descriptions get UNMAPPED."""
    df = df.copy()
    df["category"] = categorize_descriptions(df["description"], category_map)
    return df


def apply_unmapped_policy(
    df: pd.DataFrame,
    policy: str = "exclude",
) -> Tuple[pd.DataFrame, Dict]:
    """
    Handle UNMAPPED rows explicitly.

    Args:
        df: Categorized incidents
        policy: "exclude" drops UNMAPPED rows, "raise" fails naming the values

    Returns:
        (filtered incidents, stats with unmapped_rows and unmapped_descriptions)

    Raises:
        CategoryMappingError: Under policy "raise" when any row is UNMAPPED
        ValueError: On an unknown policy
    """
    if policy not in UNMAPPED_POLICIES:
        raise ValueError(f"Unknown unmapped policy '{policy}'. Use one of {UNMAPPED_POLICIES}")

    unmapped = df["category"] == UNMAPPED
    descriptions = sorted(df.loc[unmapped, "description"].dropna().astype(str).unique())
    stats = {
        "unmapped_rows": int(unmapped.sum()),
        "unmapped_descriptions": descriptions,
    }

    if unmapped.any() and policy == "raise":
        raise CategoryMappingError(
            f"{stats['unmapped_rows']} incidents have descriptions missing from the "
            f"category map: {descriptions}"
        )

    return df[~unmapped].reset_index(drop=True), stats


def prepare_incidents(
    raw: pd.DataFrame,
    category_map: Mapping[str, CrimeCategory],
    date_format: Optional[str] = None,
    unmapped_policy: str = "exclude",
) -> Tuple[pd.DataFrame, Dict]:
    """
    Run the full incident cleaning chain.

    dedupe → parse dates → drop missing neighborhood → categorize → unmapped policy

    Returns:
        (categorized incidents, anomaly counts)
    """
    anomalies: Dict[str, Union[int, list]] = {"raw_rows": len(raw)}

    df, anomalies["duplicate_rows"] = drop_duplicate_incidents(raw)
    df, anomalies["unparseable_dates"] = parse_incident_dates(df, date_format)
    df, anomalies["missing_neighborhood_rows"] = clean_neighborhoods(df)

    df = assign_categories(df, category_map)
    df, unmapped_stats = apply_unmapped_policy(df, unmapped_policy)
    anomalies.update(unmapped_stats)

    anomalies["categorized_rows"] = len(df)
    return df, anomalies


# =============================================================================
# Daily Aggregation
# =============================================================================

def aggregate_daily_counts(incidents: pd.DataFrame) -> pd.DataFrame:
    """
    Count incidents per (date, neighborhood, category).

    Only combinations observed in the data appear; calendar fields are
    derived from the date.
    """
    daily = (
        incidents.groupby(KEY_COLUMNS, observed=True)
        .size()
        .reset_index(name="crime_count")
    )
    daily["crime_count"] = daily["crime_count"].astype("int64")
    daily = daily.sort_values(KEY_COLUMNS).reset_index(drop=True)

    return add_calendar_fields(daily, "date")


# =============================================================================
# Grid Densification
# =============================================================================

def densify_daily_grid(
    daily: pd.DataFrame,
    start_date=None,
    end_date=None,
    neighborhoods: Optional[Iterable[str]] = None,
    categories: Optional[Iterable[str]] = None,
) -> pd.DataFrame:
    """
    Expand sparse daily counts to every (date, neighborhood, category).

    An absent combination means zero incidents, so unmatched rows get
    crime_count = 0. Calendar fields are recomputed for every row.

    Args:
        daily: Output of aggregate_daily_counts
        start_date, end_date: Target range; default to the data's first/last date
        neighborhoods: Neighborhoods to cover; default every non-null one in `daily`
        categories: Categories to cover; default all six

    Returns:
        Dense grid with len == |dates| x |neighborhoods| x |categories|
    """
    if start_date is None:
        start_date = daily["date"].min()
    if end_date is None:
        end_date = daily["date"].max()

    dates = build_date_range(start_date, end_date)

    if neighborhoods is None:
        neighborhoods = daily["neighborhood"].dropna().unique()
    neighborhoods = sorted(set(neighborhoods))

    if categories is None:
        categories = CATEGORY_VALUES
    categories = [c.value if isinstance(c, CrimeCategory) else str(c) for c in categories]
    categories = list(dict.fromkeys(categories))

    grid = pd.MultiIndex.from_product(
        [dates, neighborhoods, categories],
        names=KEY_COLUMNS,
    ).to_frame(index=False)
    grid["date"] = as_date_key(grid["date"])

    counts = daily[KEY_COLUMNS + ["crime_count"]].copy()
    counts["date"] = as_date_key(counts["date"])

    grid = validate_merge(
        grid,
        counts,
        on=KEY_COLUMNS,
        how="left",
        validate="one_to_one",
        context="daily counts onto grid",
    )
    grid["crime_count"] = grid["crime_count"].fillna(0).astype("int64")

    return add_calendar_fields(grid, "date")


def summarize_grid(grid: pd.DataFrame) -> Dict:
    """Row counts and sparsity of a dense grid."""
    n_rows = len(grid)
    n_zero = int((grid["crime_count"] == 0).sum())
    return {
        "grid_rows": n_rows,
        "n_dates": int(grid["date"].nunique()),
        "n_neighborhoods": int(grid["neighborhood"].nunique()),
        "n_categories": int(grid["category"].nunique()),
        "zero_count_rows": n_zero,
        "zero_share": n_zero / n_rows if n_rows else None,
    }
