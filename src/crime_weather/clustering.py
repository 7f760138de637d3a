"""
Neighborhood clustering by crime-type profile.

- Build a neighborhood x category matrix of total historical incident counts
- Standardize each category column (z-score across neighborhoods)
- Sweep K-Means over K = 1..20 and record total within-cluster sum of squares
  (elbow diagnostic; K is not auto-selected)
- Fit the final model with the configured K and assign each neighborhood
  the label of its nearest centroid

K-Means is seeded and multi-start (n_init restarts, best inertia kept), so a
fixed seed and n_init reproduce the same assignment.
"""

from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd
from sklearn.cluster import KMeans
from sklearn.preprocessing import StandardScaler

from crime_weather.categories import CATEGORY_VALUES


DEFAULT_K_RANGE = list(range(1, 21))
DEFAULT_N_CLUSTERS = 10
DEFAULT_N_INIT = 25
DEFAULT_MAX_ITER = 300


class ClusteringError(Exception):
    """Raised when clustering cannot be performed on the given profile."""
    pass


# =============================================================================
# Feature Preparation
# =============================================================================

def build_category_profile(
    incidents: pd.DataFrame,
    categories: Optional[Iterable[str]] = None,
) -> pd.DataFrame:
    """
    Total incident count per neighborhood and category.

    Rows with a missing neighborhood are dropped. Every category gets a
    column, zero-filled if a neighborhood never recorded it.

    Returns:
        DataFrame indexed by neighborhood, one column per category
    """
    if categories is None:
        categories = CATEGORY_VALUES
    categories = list(categories)

    located = incidents[incidents["neighborhood"].notna()]
    located = located[located["category"].isin(categories)]

    profile = pd.crosstab(located["neighborhood"], located["category"])
    profile = profile.reindex(columns=categories, fill_value=0).astype("int64")
    profile.index.name = "neighborhood"
    profile.columns.name = None

    return profile.sort_index()


def standardize_profile(profile: pd.DataFrame) -> Tuple[pd.DataFrame, StandardScaler]:
    """
    Z-score each column across neighborhoods.

    Constant columns (e.g. a category no neighborhood recorded) become 0.

    Returns:
        (scaled profile with the same index/columns, fitted scaler)
    """
    if profile.empty:
        raise ClusteringError("Category profile is empty; nothing to cluster")

    scaler = StandardScaler()
    scaled_values = scaler.fit_transform(profile.astype("float64"))
    scaled = pd.DataFrame(scaled_values, index=profile.index, columns=profile.columns)

    return scaled, scaler


# =============================================================================
# Clustering
# =============================================================================

def _make_kmeans(k: int, random_seed: int, n_init: int, max_iter: int) -> KMeans:
    return KMeans(
        n_clusters=k,
        random_state=random_seed,
        n_init=n_init,
        max_iter=max_iter,
    )


def evaluate_elbow(
    X: np.ndarray,
    k_range: Iterable[int] = DEFAULT_K_RANGE,
    random_seed: int = 12345,
    n_init: int = DEFAULT_N_INIT,
    max_iter: int = DEFAULT_MAX_ITER,
) -> pd.DataFrame:
    """
    Total within-cluster sum of squares for each K.

    K values larger than the number of samples are skipped.

    Returns:
        DataFrame with k, within_ss, within_ss_drop (decrease from the previous K)
    """
    n_samples = len(X)
    results = []

    for k in k_range:
        k = int(k)
        if k < 1 or k > n_samples:
            continue

        kmeans = _make_kmeans(k, random_seed, n_init, max_iter)
        kmeans.fit(X)
        results.append({"k": k, "within_ss": float(kmeans.inertia_)})

    df_scores = pd.DataFrame(results, columns=["k", "within_ss"])
    df_scores["within_ss_drop"] = -df_scores["within_ss"].diff()

    return df_scores


def fit_final_clustering(
    X: np.ndarray,
    k: int = DEFAULT_N_CLUSTERS,
    random_seed: int = 12345,
    n_init: int = DEFAULT_N_INIT,
    max_iter: int = DEFAULT_MAX_ITER,
) -> Tuple[np.ndarray, KMeans]:
    """
    Fit the final K-Means model.

    Raises:
        ClusteringError: If k is outside [1, n_samples]
    """
    n_samples = len(X)
    if k < 1 or k > n_samples:
        raise ClusteringError(
            f"Cannot form {k} clusters from {n_samples} neighborhoods"
        )

    kmeans = _make_kmeans(k, random_seed, n_init, max_iter)
    labels = kmeans.fit_predict(X)

    return labels, kmeans


def verify_reproducibility(
    X: np.ndarray,
    k: int,
    random_seed: int,
    original_labels: np.ndarray,
    n_init: int = DEFAULT_N_INIT,
    max_iter: int = DEFAULT_MAX_ITER,
) -> bool:
    """Re-fit with the same seed and check the assignment is identical."""
    kmeans2 = _make_kmeans(k, random_seed, n_init, max_iter)
    labels2 = kmeans2.fit_predict(X)
    return bool(np.array_equal(original_labels, labels2))


def assign_clusters(
    profile: pd.DataFrame,
    k: int = DEFAULT_N_CLUSTERS,
    random_seed: int = 12345,
    n_init: int = DEFAULT_N_INIT,
    max_iter: int = DEFAULT_MAX_ITER,
) -> Tuple[pd.DataFrame, KMeans]:
    """
    Scale the profile, fit the final model and label every neighborhood.

    Returns:
        (DataFrame with neighborhood, cluster_id, raw category counts; fitted model)
    """
    scaled, _ = standardize_profile(profile)
    labels, kmeans = fit_final_clustering(scaled.values, k, random_seed, n_init, max_iter)

    assignments = profile.reset_index()
    assignments.insert(1, "cluster_id", labels.astype("int64"))

    return assignments, kmeans


# =============================================================================
# Cluster Summary
# =============================================================================

def compute_cluster_summary(
    assignments: pd.DataFrame,
    feature_cols: List[str],
) -> pd.DataFrame:
    """Neighborhood count and mean category counts per cluster."""
    grouped = assignments.groupby("cluster_id")

    summary = grouped[feature_cols].mean().add_suffix("_mean")
    summary.insert(0, "n_neighborhoods", grouped.size())

    return summary.reset_index().sort_values("cluster_id").reset_index(drop=True)


def cluster_sizes(assignments: pd.DataFrame) -> Dict[int, int]:
    """Cluster id → number of neighborhoods (plain ints for JSON)."""
    sizes = assignments["cluster_id"].value_counts().sort_index()
    return {int(k): int(v) for k, v in sizes.items()}
