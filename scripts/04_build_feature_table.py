#!/usr/bin/env python3
"""
04_build_feature_table.py

Assemble the model-ready feature table.

- Join daily weather onto the dense crime grid by date; grid rows with no
  weather for their date are dropped (and counted)
- Join each neighborhood's cluster; rows without one are dropped or given an
  "unassigned" level per modeling.missing_cluster_policy
- Encode month, day-of-month and cluster as non-ordinal categoricals
- Binarize crime_count into crime_occurred (No / Yes)
- Collect every stage's anomaly counts into one report

Outputs:
- data/processed/features/feature_table.parquet
- data/processed/features/anomaly_report.csv (stage, anomaly, count, detail)
- data/processed/metadata/feature_table_metadata.json
"""

import argparse
from typing import Dict

import pandas as pd

from crime_weather.categories import LABEL_YES
from crime_weather.features import (
    LABEL_COLUMN,
    build_feature_table,
    expected_feature_rows,
    feature_anomalies,
    model_feature_columns,
)
from crime_weather.hashing import (
    get_cache_status,
    hash_dict,
    read_metadata_sidecar,
    write_metadata_sidecar,
)
from crime_weather.io_utils import atomic_write_df, read_yaml, require_file
from crime_weather.logging_utils import get_logger
from crime_weather.paths import (
    CLUSTERS_DIR,
    CRIME_DIR,
    FEATURES_DIR,
    PARAMS_FILE,
    WEATHER_DIR,
)
from crime_weather.qa import build_anomaly_report
from crime_weather.schemas import FEATURE_TABLE_SCHEMA, validate_schema


# =============================================================================
# Constants
# =============================================================================

INPUT_GRID = CRIME_DIR / "crime_daily_grid.parquet"
INPUT_WEATHER = WEATHER_DIR / "weather_daily.parquet"
INPUT_CLUSTERS = CLUSTERS_DIR / "neighborhood_clusters.parquet"

# Upstream outputs whose sidecars carry stage anomalies
UPSTREAM_STAGES = {
    "crime": INPUT_GRID,
    "weather": INPUT_WEATHER,
    "clustering": INPUT_CLUSTERS,
}

OUTPUT_FEATURES = FEATURES_DIR / "feature_table.parquet"
OUTPUT_ANOMALIES = FEATURES_DIR / "anomaly_report.csv"


def stage_config(config: dict) -> dict:
    """Config sections that determine this stage's outputs."""
    return {
        "missing_cluster_policy": config.get("modeling", {}).get("missing_cluster_policy", "drop"),
    }


# =============================================================================
# Data Loading
# =============================================================================

def load_inputs(logger):
    """Load the grid (01), daily weather (02) and cluster assignment (03)."""
    require_file(INPUT_GRID, "01_build_crime_daily.py")
    require_file(INPUT_WEATHER, "02_build_weather_daily.py")
    require_file(INPUT_CLUSTERS, "03_build_neighborhood_clusters.py")

    grid = pd.read_parquet(INPUT_GRID)
    weather = pd.read_parquet(INPUT_WEATHER)
    clusters = pd.read_parquet(INPUT_CLUSTERS)

    logger.info(f"Loaded grid: {len(grid):,} rows")
    logger.info(f"Loaded daily weather: {len(weather):,} days")
    logger.info(f"Loaded clusters: {len(clusters)} neighborhoods")

    return grid, weather, clusters


def collect_upstream_anomalies(logger) -> Dict[str, Dict]:
    """Anomaly dicts recorded in the upstream metadata sidecars."""
    collected = {}
    for stage, output_path in UPSTREAM_STAGES.items():
        metadata = read_metadata_sidecar(output_path)
        if metadata is None:
            logger.warning(f"No metadata sidecar for {output_path.name}; {stage} anomalies omitted")
            continue
        collected[stage] = metadata.get("extra", {}).get("anomalies", {})
    return collected


# =============================================================================
# Main
# =============================================================================

def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Build the model-ready feature table")
    parser.add_argument("--force", action="store_true", help="Rebuild even if the cache is valid")
    args = parser.parse_args()

    with get_logger("04_build_feature_table") as logger:
        logger.info("Starting 04_build_feature_table.py")

        config = read_yaml(PARAMS_FILE)
        cfg = stage_config(config)
        logger.log_config(cfg, hash_dict(cfg))

        policy = cfg["missing_cluster_policy"]
        logger.info(f"Missing-cluster policy: {policy}")

        inputs = {
            "crime_daily_grid": str(INPUT_GRID),
            "weather_daily": str(INPUT_WEATHER),
            "neighborhood_clusters": str(INPUT_CLUSTERS),
        }
        logger.log_inputs(inputs)

        try:
            grid, weather, clusters = load_inputs(logger)

            cache = get_cache_status(OUTPUT_FEATURES, inputs, cfg)
            if cache["valid"] and not args.force:
                logger.info(f"Cache valid ({cache['reason']}); skipping. Use --force to rebuild.")
                return
            logger.info(f"Cache status: {cache['reason']}")

            features, stats = build_feature_table(grid, weather, clusters, policy)

            if stats["missing_weather_rows"]:
                logger.warning(
                    f"Dropped {stats['missing_weather_rows']:,} grid rows on "
                    f"{stats['missing_weather_dates']} dates without weather "
                    f"({stats['missing_weather_first_date']} to {stats['missing_weather_last_date']})"
                )
            if stats["missing_cluster_neighborhoods"]:
                logger.warning(
                    f"Neighborhoods without a cluster ({policy}): "
                    f"{stats['missing_cluster_neighborhoods']}"
                )

            anomalies = feature_anomalies(stats)
            logger.log_anomalies("features", anomalies)

            validate_schema(
                features,
                FEATURE_TABLE_SCHEMA,
                "04_build_feature_table",
                row_count=expected_feature_rows(stats),
            )

            categorical, numeric = model_feature_columns(features)
            logger.info(f"Categorical features: {categorical}")
            logger.info(f"Numeric features: {len(numeric)}")

            positive_by_category = (
                features.groupby("category", observed=True)[LABEL_COLUMN]
                .apply(lambda s: float((s == LABEL_YES).mean()))
                .to_dict()
            )
            for category, share in sorted(positive_by_category.items()):
                logger.info(f"  {category}: {share:.2%} of rows have crime_occurred = Yes")

            # Anomaly report across all stages
            stage_anomalies = collect_upstream_anomalies(logger)
            stage_anomalies["features"] = anomalies
            report = build_anomaly_report(stage_anomalies)

            # Write outputs
            atomic_write_df(features, OUTPUT_FEATURES)
            logger.info(f"Wrote: {OUTPUT_FEATURES}")

            atomic_write_df(report, OUTPUT_ANOMALIES)
            logger.info(f"Wrote: {OUTPUT_ANOMALIES}")

            logger.log_outputs({
                "feature_table": str(OUTPUT_FEATURES),
                "anomaly_report": str(OUTPUT_ANOMALIES),
            })
            logger.log_metrics({
                **stats,
                "categorical_features": categorical,
                "numeric_features": numeric,
                "positive_share_by_category": positive_by_category,
            })

            write_metadata_sidecar(
                output_path=OUTPUT_FEATURES,
                inputs=inputs,
                config=cfg,
                run_id=logger.run_id,
                extra={
                    "anomalies": anomalies,
                    "feature_rows": stats["feature_rows"],
                    "positive_share": stats["positive_share"],
                    "categorical_features": categorical,
                    "numeric_features": numeric,
                },
            )

            logger.info("SUCCESS: Built feature table")

        except Exception as e:
            logger.error(f"FAILED: {e}")
            raise


if __name__ == "__main__":
    main()
