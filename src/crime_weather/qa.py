"""
Quality assurance utilities.

- Grid completeness: exactly one row per (date, neighborhood, category)
- Cluster assignment: every neighborhood gets exactly one label in [0, K)
- Anomaly report: per-stage data-quality counts collected into one table
"""

import json
from typing import Any, Dict, Iterable, Mapping, Optional

import pandas as pd


class QAError(Exception):
    """Raised when a QA gate fails."""
    pass


# =============================================================================
# Grid Checks
# =============================================================================

def check_grid_completeness(
    grid: pd.DataFrame,
    key_columns: Iterable[str] = ("date", "neighborhood", "category"),
) -> Dict[str, Any]:
    """
    Verify the grid is the full Cartesian product of its key values.

    Returns:
        Dict with expected_rows, actual_rows, duplicate_keys, passed
    """
    key_columns = list(key_columns)
    expected = 1
    for col in key_columns:
        expected *= int(grid[col].nunique())

    duplicates = int(grid.duplicated(subset=key_columns).sum())
    return {
        "expected_rows": expected,
        "actual_rows": len(grid),
        "duplicate_keys": duplicates,
        "passed": len(grid) == expected and duplicates == 0,
    }


def assert_grid_complete(grid: pd.DataFrame, context: str = "grid") -> None:
    """
    Raises:
        QAError: If the grid is not a complete Cartesian product
    """
    stats = check_grid_completeness(grid)
    if not stats["passed"]:
        raise QAError(
            f"{context}: expected {stats['expected_rows']:,} rows, got "
            f"{stats['actual_rows']:,} ({stats['duplicate_keys']} duplicate keys)"
        )


# =============================================================================
# Cluster Checks
# =============================================================================

def validate_cluster_assignment(
    assignments: pd.DataFrame,
    k: int,
    neighborhoods: Optional[Iterable[str]] = None,
    min_cluster_size: int = 1,
) -> Dict[str, Any]:
    """
    Check that clustering is a total function neighborhood → [0, K).

    Returns:
        QA stats dict with a "passed" flag
    """
    qa_stats: Dict[str, Any] = {}
    passed = True

    qa_stats["row_count"] = len(assignments)

    dup = int(assignments["neighborhood"].duplicated().sum())
    qa_stats["duplicate_neighborhoods"] = dup
    if dup:
        passed = False

    null_clusters = int(assignments["cluster_id"].isna().sum())
    qa_stats["null_cluster_ids"] = null_clusters
    if null_clusters:
        passed = False

    in_range = bool(assignments["cluster_id"].dropna().between(0, k - 1).all())
    qa_stats["cluster_ids_in_valid_range"] = in_range
    if not in_range:
        passed = False

    sizes = assignments["cluster_id"].value_counts()
    qa_stats["n_clusters_used"] = int(len(sizes))
    qa_stats["min_cluster_size"] = int(sizes.min()) if len(sizes) else 0
    qa_stats["small_clusters"] = int((sizes < min_cluster_size).sum())

    if neighborhoods is not None:
        expected = set(neighborhoods)
        assigned = set(assignments["neighborhood"])
        qa_stats["unassigned_neighborhoods"] = sorted(expected - assigned)
        if expected - assigned:
            passed = False

    qa_stats["passed"] = passed
    return qa_stats


# =============================================================================
# Anomaly Report
# =============================================================================

def _summarize_value(value: Any) -> Dict[str, Any]:
    if isinstance(value, bool):
        return {"count": int(value), "detail": None}
    if isinstance(value, (int, float)):
        return {"count": value, "detail": None}
    if isinstance(value, (list, tuple, set)):
        items = sorted(str(v) for v in value)
        return {"count": len(items), "detail": "; ".join(items) if items else None}
    if isinstance(value, Mapping):
        return {"count": len(value), "detail": json.dumps(value, default=str, sort_keys=True) if value else None}
    return {"count": None, "detail": None if value is None else str(value)}


def build_anomaly_report(stage_anomalies: Mapping[str, Mapping[str, Any]]) -> pd.DataFrame:
    """
    Flatten per-stage anomaly dicts into one table.

    Args:
        stage_anomalies: {stage: {anomaly name: count | list | dict | scalar}}

    Returns:
        DataFrame with stage, anomaly, count, detail
    """
    rows = []
    for stage, anomalies in stage_anomalies.items():
        for name, value in (anomalies or {}).items():
            rows.append({"stage": stage, "anomaly": name, **_summarize_value(value)})

    return pd.DataFrame(rows, columns=["stage", "anomaly", "count", "detail"])


def compute_na_rates(df: pd.DataFrame) -> dict[str, float]:
    """NA rate (0-1) per column."""
    if len(df) == 0:
        return {c: 0.0 for c in df.columns}
    return (df.isna().sum() / len(df)).to_dict()
