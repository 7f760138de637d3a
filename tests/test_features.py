"""
Tests for feature table assembly.

Key invariants:
- Exactly one row per (date, neighborhood, category) survives
- crime_occurred is "Yes" iff crime_count > 0, with levels {No, Yes} only
- Grid rows without weather for their date are dropped and counted
- Missing clusters are dropped or imputed per policy
"""

import pandas as pd
import pytest

from crime_weather.categories import LABEL_LEVELS
from crime_weather.crime import aggregate_daily_counts, densify_daily_grid
from crime_weather.features import (
    LABEL_COLUMN,
    UNASSIGNED_CLUSTER,
    binarize_counts,
    build_feature_table,
    encode_calendar,
    expected_feature_rows,
    feature_anomalies,
    join_clusters,
    join_weather,
    model_feature_columns,
)
from crime_weather.qa import build_anomaly_report


@pytest.fixture
def grid():
    """2 dates x 2 neighborhoods x 1 category; one PROPERTY incident in A on day 1."""
    incidents = pd.DataFrame({
        "date": pd.to_datetime(["2014-01-01"]),
        "neighborhood": ["A"],
        "category": ["PROPERTY"],
    })
    daily = aggregate_daily_counts(incidents)
    return densify_daily_grid(
        daily,
        start_date="2014-01-01",
        end_date="2014-01-02",
        neighborhoods=["A", "B"],
        categories=["PROPERTY"],
    )


@pytest.fixture
def weather_daily():
    return pd.DataFrame({
        "date": pd.to_datetime(["2014-01-01", "2014-01-02"]),
        "temp": [1.0, 3.0],
        "humidity": [50.0, 70.0],
        "wx_light_rain": [2, 0],
    })


@pytest.fixture
def clusters():
    return pd.DataFrame({"neighborhood": ["A", "B"], "cluster_id": [0, 1]})


class TestBinarizeCounts:

    def test_levels(self):
        labels = binarize_counts(pd.Series([0, 1, 5]))
        assert labels.tolist() == ["No", "Yes", "Yes"]
        assert list(labels.cat.categories) == LABEL_LEVELS

    def test_negative_raises(self):
        with pytest.raises(ValueError):
            binarize_counts(pd.Series([0, -1]))

    def test_null_raises(self):
        with pytest.raises(ValueError):
            binarize_counts(pd.Series([0.0, None]))


class TestBuildFeatureTable:

    def test_end_to_end(self, grid, weather_daily, clusters):
        df, stats = build_feature_table(grid, weather_daily, clusters)

        assert len(df) == 4
        assert not df.duplicated(subset=["date", "neighborhood", "category"]).any()

        yes = df[df[LABEL_COLUMN] == "Yes"]
        assert len(yes) == 1
        assert yes.iloc[0]["neighborhood"] == "A"
        assert yes.iloc[0]["date"] == pd.Timestamp("2014-01-01")

        assert stats["missing_weather_rows"] == 0
        assert stats["positive_rows"] == 1

    def test_label_matches_count(self, grid, weather_daily, clusters):
        df, _ = build_feature_table(grid, weather_daily, clusters)
        assert ((df["crime_count"] > 0) == (df[LABEL_COLUMN] == "Yes")).all()
        assert set(df[LABEL_COLUMN].astype(str)) <= set(LABEL_LEVELS)

    def test_weather_attached(self, grid, weather_daily, clusters):
        df, _ = build_feature_table(grid, weather_daily, clusters)
        day1 = df[df["date"] == pd.Timestamp("2014-01-01")]
        assert (day1["wx_light_rain"] == 2).all()
        assert (day1["temp"] == 1.0).all()

    def test_missing_weather_rows_dropped(self, grid, weather_daily, clusters):
        partial = weather_daily[weather_daily["date"] == pd.Timestamp("2014-01-01")]
        df, stats = build_feature_table(grid, partial, clusters)

        assert len(df) == 2
        assert stats["missing_weather_rows"] == 2
        assert stats["missing_weather_dates"] == 1
        assert stats["missing_weather_first_date"] == pd.Timestamp("2014-01-02")

    def test_anomalies_carry_missing_weather_dates(self, grid, weather_daily, clusters):
        partial = weather_daily[weather_daily["date"] == pd.Timestamp("2014-01-01")]
        _, stats = build_feature_table(grid, partial, clusters)

        anomalies = feature_anomalies(stats)
        assert anomalies["missing_weather_first_date"] == "2014-01-02"
        assert anomalies["missing_weather_last_date"] == "2014-01-02"

        report = build_anomaly_report({"features": anomalies}).set_index("anomaly")
        assert report.loc["missing_weather_first_date", "detail"] == "2014-01-02"
        assert report.loc["missing_weather_rows", "count"] == 2

    def test_no_missing_weather_dates_are_none(self, grid, weather_daily, clusters):
        _, stats = build_feature_table(grid, weather_daily, clusters)
        anomalies = feature_anomalies(stats)
        assert anomalies["missing_weather_first_date"] is None
        assert anomalies["missing_weather_last_date"] is None

    @pytest.mark.parametrize("policy, expected", [("drop", 2), ("impute", 4)])
    def test_expected_rows_follow_cluster_policy(self, grid, weather_daily, policy, expected):
        only_a = pd.DataFrame({"neighborhood": ["A"], "cluster_id": [0]})
        df, stats = build_feature_table(grid, weather_daily, only_a, policy)

        assert expected_feature_rows(stats) == expected
        assert len(df) == expected

    def test_month_day_cluster_are_categorical(self, grid, weather_daily, clusters):
        df, _ = build_feature_table(grid, weather_daily, clusters)
        for col in ["month", "day", "cluster"]:
            assert isinstance(df[col].dtype, pd.CategoricalDtype), col
            assert not df[col].cat.ordered

    def test_feature_columns(self, grid, weather_daily, clusters):
        df, _ = build_feature_table(grid, weather_daily, clusters)
        categorical, numeric = model_feature_columns(df)
        assert categorical == ["month", "day", "weekday", "cluster"]
        assert "temp" in numeric and "wx_light_rain" in numeric
        assert LABEL_COLUMN not in numeric and "crime_count" not in numeric


class TestJoinClusters:

    def test_drop_policy(self, grid):
        clusters = pd.DataFrame({"neighborhood": ["A"], "cluster_id": [0]})
        df, stats = join_clusters(grid, clusters, policy="drop")
        assert set(df["neighborhood"]) == {"A"}
        assert stats["missing_cluster_rows"] == 2
        assert stats["missing_cluster_neighborhoods"] == ["B"]

    def test_impute_policy(self, grid):
        clusters = pd.DataFrame({"neighborhood": ["A"], "cluster_id": [0]})
        df, stats = join_clusters(grid, clusters, policy="impute")
        assert len(df) == len(grid)
        assert (df.loc[df["neighborhood"] == "B", "cluster"] == UNASSIGNED_CLUSTER).all()
        assert UNASSIGNED_CLUSTER in df["cluster"].cat.categories

    def test_unknown_policy_raises(self, grid, clusters):
        with pytest.raises(ValueError):
            join_clusters(grid, clusters, policy="guess")

    def test_duplicate_cluster_rows_rejected(self, grid):
        clusters = pd.DataFrame({"neighborhood": ["A", "A"], "cluster_id": [0, 1]})
        with pytest.raises(ValueError, match="Merge validation failed"):
            join_clusters(grid, clusters)


class TestJoinWeather:

    def test_duplicate_weather_dates_rejected(self, grid, weather_daily):
        doubled = pd.concat([weather_daily, weather_daily], ignore_index=True)
        with pytest.raises(ValueError, match="Merge validation failed"):
            join_weather(grid, doubled)


def test_encode_calendar_fixed_levels():
    df = encode_calendar(pd.DataFrame({"month": [3], "day": [15]}))
    assert list(df["month"].cat.categories) == list(range(1, 13))
    assert list(df["day"].cat.categories) == list(range(1, 32))
