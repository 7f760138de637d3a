"""
Tests for schema and merge validation.
"""

import pandas as pd
import pytest

from crime_weather.crime import aggregate_daily_counts, densify_daily_grid
from crime_weather.schemas import (
    CLUSTER_SCHEMA,
    CRIME_GRID_SCHEMA,
    FEATURE_TABLE_SCHEMA,
    ColumnSpec,
    Schema,
    SchemaError,
    get_schema,
    validate_merge,
    validate_schema,
)


@pytest.fixture
def grid():
    incidents = pd.DataFrame({
        "date": pd.to_datetime(["2014-01-01", "2014-01-02"]),
        "neighborhood": ["A", "B"],
        "category": ["PROPERTY", "RAPE"],
    })
    return densify_daily_grid(aggregate_daily_counts(incidents))


class TestValidateSchema:

    def test_valid_grid_passes(self, grid):
        errors = validate_schema(grid, CRIME_GRID_SCHEMA, row_count=2 * 2 * 6)
        assert errors == []

    def test_wrong_row_count(self, grid):
        with pytest.raises(SchemaError, match="Expected 5 rows"):
            validate_schema(grid, CRIME_GRID_SCHEMA, row_count=5)

    def test_duplicate_keys(self, grid):
        doubled = pd.concat([grid, grid.iloc[:1]], ignore_index=True)
        errors = validate_schema(doubled, CRIME_GRID_SCHEMA, raise_on_error=False)
        assert any("duplicate keys" in e for e in errors)

    def test_unknown_category(self, grid):
        bad = grid.copy()
        bad.loc[0, "category"] = "UNMAPPED"
        errors = validate_schema(bad, CRIME_GRID_SCHEMA, raise_on_error=False)
        assert any("invalid values" in e for e in errors)

    def test_negative_count(self, grid):
        bad = grid.copy()
        bad.loc[0, "crime_count"] = -1
        errors = validate_schema(bad, CRIME_GRID_SCHEMA, raise_on_error=False)
        assert any("below min" in e for e in errors)

    def test_null_key(self):
        df = pd.DataFrame({"neighborhood": ["A", None], "cluster_id": [0, 1]})
        errors = validate_schema(df, CLUSTER_SCHEMA, raise_on_error=False)
        assert any("NA values" in e for e in errors)

    def test_missing_required_column(self):
        df = pd.DataFrame({"neighborhood": ["A"]})
        with pytest.raises(SchemaError, match="cluster_id"):
            validate_schema(df, CLUSTER_SCHEMA)

    def test_label_levels_enforced(self):
        schema = Schema(
            name="labels",
            columns=[ColumnSpec("crime_occurred", nullable=False, allowed_values={"No", "Yes"})],
        )
        errors = validate_schema(pd.DataFrame({"crime_occurred": ["Yes", "Maybe"]}), schema, raise_on_error=False)
        assert errors


class TestValidateMerge:

    def test_many_to_one_passes(self):
        left = pd.DataFrame({"k": [1, 1, 2]})
        right = pd.DataFrame({"k": [1, 2], "v": ["a", "b"]})
        merged = validate_merge(left, right, on="k")
        assert merged["v"].tolist() == ["a", "a", "b"]

    def test_duplicate_lookup_raises(self):
        left = pd.DataFrame({"k": [1]})
        right = pd.DataFrame({"k": [1, 1], "v": ["a", "b"]})
        with pytest.raises(ValueError, match="lookup"):
            validate_merge(left, right, on="k", context="lookup")


def test_schema_registry():
    assert get_schema("feature_table") is FEATURE_TABLE_SCHEMA
    with pytest.raises(KeyError):
        get_schema("nope")
