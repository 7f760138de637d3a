"""
Tests for neighborhood clustering by crime-type profile.

Key invariants:
- Every neighborhood in the profile gets exactly one cluster_id in [0, K)
- Same seed and n_init reproduce the same assignment
- Elbow sweep covers every feasible K in the configured range
- K larger than the number of neighborhoods is an error
"""

import numpy as np
import pandas as pd
import pytest

from crime_weather.categories import CATEGORY_VALUES
from crime_weather.clustering import (
    ClusteringError,
    assign_clusters,
    build_category_profile,
    cluster_sizes,
    compute_cluster_summary,
    evaluate_elbow,
    fit_final_clustering,
    standardize_profile,
    verify_reproducibility,
)
from crime_weather.qa import validate_cluster_assignment


@pytest.fixture
def incidents():
    """12 neighborhoods in three clearly separated crime mixes."""
    rows = []
    mixes = {
        "PROPERTY": {"PROPERTY": 40, "ASSAULT": 5},
        "ASSAULT": {"ASSAULT": 40, "ROBBERY": 5},
        "SHOOTING": {"SHOOTING": 20, "HOMICIDE": 10},
    }
    for group, mix in mixes.items():
        for i in range(4):
            for category, count in mix.items():
                rows.extend([{
                    "date": pd.Timestamp("2014-01-01"),
                    "neighborhood": f"{group}_{i}",
                    "category": category,
                }] * (count + i))
    return pd.DataFrame(rows)


@pytest.fixture
def profile(incidents):
    return build_category_profile(incidents)


class TestBuildCategoryProfile:

    def test_one_row_per_neighborhood(self, profile, incidents):
        assert len(profile) == incidents["neighborhood"].nunique()
        assert profile.index.is_unique

    def test_all_categories_present(self, profile):
        assert list(profile.columns) == CATEGORY_VALUES
        assert (profile["RAPE"] == 0).all()

    def test_totals_match_incidents(self, profile, incidents):
        assert profile.to_numpy().sum() == len(incidents)

    def test_missing_neighborhood_ignored(self, incidents):
        extra = pd.DataFrame([{"date": pd.Timestamp("2014-01-01"), "neighborhood": None, "category": "RAPE"}])
        profile = build_category_profile(pd.concat([incidents, extra], ignore_index=True))
        assert profile["RAPE"].sum() == 0


class TestStandardizeProfile:

    def test_zero_mean_columns(self, profile):
        scaled, _ = standardize_profile(profile)
        assert np.allclose(scaled.mean().to_numpy(), 0.0)

    def test_constant_column_becomes_zero(self, profile):
        scaled, _ = standardize_profile(profile)
        assert (scaled["RAPE"] == 0).all()

    def test_empty_profile_raises(self):
        with pytest.raises(ClusteringError):
            standardize_profile(pd.DataFrame(columns=CATEGORY_VALUES))


class TestEvaluateElbow:

    def test_covers_k_range(self, profile):
        scaled, _ = standardize_profile(profile)
        scores = evaluate_elbow(scaled.values, range(1, 6), n_init=5)
        assert scores["k"].tolist() == [1, 2, 3, 4, 5]

    def test_skips_k_above_sample_count(self, profile):
        scaled, _ = standardize_profile(profile)
        scores = evaluate_elbow(scaled.values, range(1, 21), n_init=2)
        assert scores["k"].max() == len(profile)

    def test_within_ss_non_increasing(self, profile):
        scaled, _ = standardize_profile(profile)
        scores = evaluate_elbow(scaled.values, range(1, 4), n_init=10)
        diffs = np.diff(scores["within_ss"].to_numpy())
        assert (diffs <= 1e-8).all()


class TestAssignClusters:

    def test_total_function_into_k(self, profile):
        k = 3
        assignments, _ = assign_clusters(profile, k=k, n_init=10)

        qa = validate_cluster_assignment(assignments, k, neighborhoods=profile.index)
        assert qa["passed"], qa
        assert set(assignments["neighborhood"]) == set(profile.index)
        assert assignments["cluster_id"].between(0, k - 1).all()

    def test_separated_groups_recovered(self, profile):
        assignments, _ = assign_clusters(profile, k=3, n_init=10)
        groups = assignments["neighborhood"].str.split("_").str[0]
        # each original group maps to exactly one cluster
        assert assignments.groupby(groups)["cluster_id"].nunique().eq(1).all()
        assert assignments["cluster_id"].nunique() == 3

    def test_deterministic_with_seed(self, profile):
        a, _ = assign_clusters(profile, k=3, random_seed=7, n_init=10)
        b, _ = assign_clusters(profile, k=3, random_seed=7, n_init=10)
        pd.testing.assert_frame_equal(a, b)

    def test_verify_reproducibility(self, profile):
        scaled, _ = standardize_profile(profile)
        labels, _ = fit_final_clustering(scaled.values, k=3, random_seed=1, n_init=10)
        assert verify_reproducibility(scaled.values, 3, 1, labels, n_init=10)

    def test_k_above_neighborhood_count_raises(self, profile):
        with pytest.raises(ClusteringError):
            assign_clusters(profile, k=len(profile) + 1)

    def test_summary_and_sizes(self, profile):
        assignments, _ = assign_clusters(profile, k=3, n_init=10)
        summary = compute_cluster_summary(assignments, CATEGORY_VALUES)
        sizes = cluster_sizes(assignments)

        assert summary["n_neighborhoods"].sum() == len(profile)
        assert sum(sizes.values()) == len(profile)
        assert "PROPERTY_mean" in summary.columns
