"""
Column-level contracts for every table a stage writes.

Stages validate before writing, so a drifted column or a duplicated key stops
the run instead of propagating downstream. Shared keys:
- date is a naive datetime64 at midnight
- neighborhood is a non-null string
- category is one of the six crime categories
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Union

import pandas as pd

from crime_weather.categories import CATEGORY_VALUES, LABEL_LEVELS


# =============================================================================
# Schema Definition
# =============================================================================

@dataclass
class ColumnSpec:
    """Rules for a single column."""
    name: str
    dtype: Optional[str] = None  # "datetime", "int", "float", "string", "category"
    nullable: bool = True
    allowed_values: Optional[Set[Any]] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None


@dataclass
class Schema:
    """Column rules, keys and size bounds for one table."""
    name: str
    columns: List[ColumnSpec]
    key_columns: List[str] = field(default_factory=list)
    required_columns: List[str] = field(default_factory=list)
    row_count: Optional[int] = None  # Exact expected row count
    min_rows: int = 0

    def __post_init__(self):
        if not self.required_columns:
            self.required_columns = [c.name for c in self.columns if not c.nullable]


class SchemaError(Exception):
    """A table broke its schema."""


# =============================================================================
# Predefined Schemas
# =============================================================================

# Dense (date x neighborhood x category) daily grid
CRIME_GRID_SCHEMA = Schema(
    name="crime_grid",
    columns=[
        ColumnSpec("date", dtype="datetime", nullable=False),
        ColumnSpec("neighborhood", dtype="string", nullable=False),
        ColumnSpec("category", nullable=False, allowed_values=set(CATEGORY_VALUES)),
        ColumnSpec("crime_count", dtype="int", nullable=False, min_value=0),
        ColumnSpec("month", dtype="int", nullable=False, min_value=1, max_value=12),
        ColumnSpec("day", dtype="int", nullable=False, min_value=1, max_value=31),
        ColumnSpec("week", dtype="int", nullable=False, min_value=1, max_value=53),
        ColumnSpec("weekday", nullable=False),
    ],
    key_columns=["date", "neighborhood", "category"],
    min_rows=1,
)

# One row per local calendar day
WEATHER_DAILY_SCHEMA = Schema(
    name="weather_daily",
    columns=[
        ColumnSpec("date", dtype="datetime", nullable=False),
        ColumnSpec("humidity", dtype="float", min_value=0, max_value=100),
        ColumnSpec("clouds_all", dtype="float", min_value=0, max_value=100),
        ColumnSpec("wind_speed", dtype="float", min_value=0),
    ],
    key_columns=["date"],
    min_rows=1,
)

# One row per neighborhood
CLUSTER_SCHEMA = Schema(
    name="neighborhood_clusters",
    columns=[
        ColumnSpec("neighborhood", dtype="string", nullable=False),
        ColumnSpec("cluster_id", dtype="int", nullable=False, min_value=0),
    ],
    key_columns=["neighborhood"],
    min_rows=1,
)

# Model-ready feature table
FEATURE_TABLE_SCHEMA = Schema(
    name="feature_table",
    columns=[
        ColumnSpec("date", dtype="datetime", nullable=False),
        ColumnSpec("neighborhood", dtype="string", nullable=False),
        ColumnSpec("category", nullable=False, allowed_values=set(CATEGORY_VALUES)),
        ColumnSpec("crime_count", dtype="int", nullable=False, min_value=0),
        ColumnSpec("crime_occurred", nullable=False, allowed_values=set(LABEL_LEVELS)),
        ColumnSpec("cluster", nullable=False),
        ColumnSpec("month", nullable=False),
        ColumnSpec("day", nullable=False),
        ColumnSpec("weekday", nullable=False),
    ],
    key_columns=["date", "neighborhood", "category"],
    min_rows=1,
)


# =============================================================================
# Validation Functions
# =============================================================================

def _dtype_matches(col: pd.Series, dtype: str) -> bool:
    if dtype == "datetime":
        return pd.api.types.is_datetime64_any_dtype(col)
    if dtype == "int":
        return pd.api.types.is_integer_dtype(col)
    if dtype == "float":
        return pd.api.types.is_numeric_dtype(col)
    if dtype == "string":
        return pd.api.types.is_string_dtype(col) or pd.api.types.is_object_dtype(col)
    if dtype == "category":
        return isinstance(col.dtype, pd.CategoricalDtype)
    raise ValueError(f"Unknown dtype in ColumnSpec: {dtype}")


def validate_column(df: pd.DataFrame, spec: ColumnSpec) -> List[str]:
    """Problems found in one column (empty list when it conforms)."""
    name = spec.name
    if name not in df.columns:
        return [] if spec.nullable else [f"Missing column: {name}"]

    col = df[name]
    present = col.notna()
    problems = []

    if spec.dtype is not None and not _dtype_matches(col, spec.dtype):
        problems.append(f"expected {spec.dtype}, got {col.dtype}")

    if not spec.nullable and not present.all():
        problems.append(f"{int((~present).sum())} NA values not allowed")

    if spec.allowed_values is not None:
        outside = present & ~col.astype(object).isin(spec.allowed_values)
        if outside.any():
            problems.append(f"invalid values {list(col[outside].unique()[:5])}")

    if spec.min_value is not None and (present & (col < spec.min_value)).any():
        problems.append(f"values below min {spec.min_value}")

    if spec.max_value is not None and (present & (col > spec.max_value)).any():
        problems.append(f"values above max {spec.max_value}")

    return [f"Column {name}: {p}" for p in problems]


def validate_schema(
    df: pd.DataFrame,
    schema: Schema,
    context: str = "",
    raise_on_error: bool = True,
    row_count: Optional[int] = None,
) -> List[str]:
    """
    Check row counts, required columns, per-column rules and key uniqueness.

    `row_count` pins the exact size for this call (a dense grid knows its
    size only at run time). All problems are collected before raising
    SchemaError, unless `raise_on_error` is False, in which case they are
    returned.
    """
    errors = []
    ctx = f" ({context})" if context else ""

    expected_rows = row_count if row_count is not None else schema.row_count
    if expected_rows is not None and len(df) != expected_rows:
        errors.append(f"Expected {expected_rows} rows, got {len(df)}{ctx}")

    if len(df) < schema.min_rows:
        errors.append(f"Expected at least {schema.min_rows} rows, got {len(df)}{ctx}")

    missing = set(schema.required_columns) - set(df.columns)
    if missing:
        errors.append(f"Missing required columns: {sorted(missing)}{ctx}")

    for col_spec in schema.columns:
        errors.extend(validate_column(df, col_spec))

    if schema.key_columns and not missing:
        dup_count = int(df.duplicated(subset=schema.key_columns).sum())
        if dup_count:
            errors.append(
                f"{dup_count} duplicate keys on {schema.key_columns}{ctx}"
            )

    if errors and raise_on_error:
        raise SchemaError(f"Schema validation failed for '{schema.name}':\n" + "\n".join(errors))

    return errors


# =============================================================================
# Merge Validation
# =============================================================================

def validate_merge(
    left: pd.DataFrame,
    right: pd.DataFrame,
    on: Union[str, List[str]],
    how: str = "left",
    validate: str = "many_to_one",
    context: str = "",
    indicator: bool = False,
) -> pd.DataFrame:
    """pd.merge with a cardinality check; a duplicated lookup key raises ValueError."""
    try:
        return pd.merge(left, right, on=on, how=how, validate=validate, indicator=indicator)
    except pd.errors.MergeError as e:
        raise ValueError(f"Merge validation failed ({context}): {e}") from e


# =============================================================================
# Schema Registry
# =============================================================================

SCHEMAS: Dict[str, Schema] = {
    "crime_grid": CRIME_GRID_SCHEMA,
    "weather_daily": WEATHER_DAILY_SCHEMA,
    "neighborhood_clusters": CLUSTER_SCHEMA,
    "feature_table": FEATURE_TABLE_SCHEMA,
}


def get_schema(name: str) -> Schema:
    """Get a registered schema by name."""
    if name not in SCHEMAS:
        raise KeyError(f"Unknown schema: {name}. Available: {list(SCHEMAS.keys())}")
    return SCHEMAS[name]
