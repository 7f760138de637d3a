"""
Tests for pipeline outputs (Scripts 01-05).

Skipped until the pipeline has been run against the raw data.
"""

import pandas as pd
import pytest

from crime_weather.categories import CATEGORY_VALUES, LABEL_LEVELS
from crime_weather.io_utils import read_yaml
from crime_weather.paths import (
    CLUSTERS_DIR,
    CRIME_DIR,
    FEATURES_DIR,
    MODELS_DIR,
    PARAMS_FILE,
    WEATHER_DIR,
)

GRID_PARQUET = CRIME_DIR / "crime_daily_grid.parquet"
WEATHER_PARQUET = WEATHER_DIR / "weather_daily.parquet"
CLUSTERS_PARQUET = CLUSTERS_DIR / "neighborhood_clusters.parquet"
ELBOW_CSV = CLUSTERS_DIR / "elbow_scores.csv"
FEATURES_PARQUET = FEATURES_DIR / "feature_table.parquet"
ANOMALY_CSV = FEATURES_DIR / "anomaly_report.csv"
SCORES_CSV = MODELS_DIR / "model_scores.csv"


def load_or_skip(path):
    if not path.exists():
        pytest.skip(f"Missing: {path}")
    if path.suffix == ".parquet":
        return pd.read_parquet(path)
    return pd.read_csv(path)


@pytest.fixture
def config():
    return read_yaml(PARAMS_FILE)


class TestCrimeGrid:

    def test_full_product(self):
        grid = load_or_skip(GRID_PARQUET)
        expected = grid["date"].nunique() * grid["neighborhood"].nunique() * grid["category"].nunique()
        assert len(grid) == expected

    def test_categories_and_counts(self):
        grid = load_or_skip(GRID_PARQUET)
        assert set(grid["category"]) == set(CATEGORY_VALUES)
        assert (grid["crime_count"] >= 0).all()
        assert grid["neighborhood"].notna().all()


class TestWeatherDaily:

    def test_one_row_per_date(self):
        weather = load_or_skip(WEATHER_PARQUET)
        assert weather["date"].is_unique


class TestClusters:

    def test_every_neighborhood_assigned(self, config):
        clusters = load_or_skip(CLUSTERS_PARQUET)
        k = config.get("clustering", {}).get("n_clusters", 10)
        assert clusters["neighborhood"].is_unique
        assert clusters["cluster_id"].between(0, k - 1).all()

    def test_grid_neighborhoods_clustered(self):
        clusters = load_or_skip(CLUSTERS_PARQUET)
        grid = load_or_skip(GRID_PARQUET)
        assert set(grid["neighborhood"]) <= set(clusters["neighborhood"])

    def test_elbow_k_range(self, config):
        elbow = load_or_skip(ELBOW_CSV)
        k_range = config.get("clustering", {}).get("k_range", list(range(1, 21)))
        assert elbow["k"].tolist() == sorted(k_range)[: len(elbow)]


class TestFeatureTable:

    def test_unique_keys(self):
        features = load_or_skip(FEATURES_PARQUET)
        assert not features.duplicated(subset=["date", "neighborhood", "category"]).any()

    def test_label(self):
        features = load_or_skip(FEATURES_PARQUET)
        assert set(features["crime_occurred"].astype(str)) <= set(LABEL_LEVELS)
        assert ((features["crime_count"] > 0) == (features["crime_occurred"] == "Yes")).all()

    def test_anomaly_report_columns(self):
        report = load_or_skip(ANOMALY_CSV)
        assert {"stage", "anomaly", "count"} <= set(report.columns)


@pytest.mark.smoke
def test_model_scores_in_unit_interval():
    scores = load_or_skip(SCORES_CSV)
    assert scores["cv_auc_mean"].between(0, 1).all()
