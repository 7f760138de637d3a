#!/usr/bin/env python3
"""
03_build_neighborhood_clusters.py

Group neighborhoods by their historical crime-type mix.

- Build the neighborhood x category matrix of total incident counts
  (from Script 01's cleaned incidents)
- Standardize each category column (z-score)
- Sweep K-Means over the configured K range and log within-cluster SS
  (elbow diagnostic; K is configured, not auto-selected)
- Fit the final K-Means with the configured K, seed and n_init
- Re-fit once to verify the assignment is reproducible

Outputs:
- data/processed/clusters/neighborhood_clusters.parquet (neighborhood, cluster_id, category counts)
- data/processed/clusters/neighborhood_clusters.csv
- data/processed/clusters/cluster_summary.csv (size and mean counts per cluster)
- data/processed/clusters/elbow_scores.csv (k, within_ss, within_ss_drop)
- data/processed/clusters/profile_standardized.csv
- data/processed/metadata/neighborhood_clusters_metadata.json
"""

import argparse

import pandas as pd

from crime_weather.categories import CATEGORY_VALUES
from crime_weather.clustering import (
    DEFAULT_K_RANGE,
    DEFAULT_MAX_ITER,
    DEFAULT_N_CLUSTERS,
    DEFAULT_N_INIT,
    assign_clusters,
    build_category_profile,
    cluster_sizes,
    compute_cluster_summary,
    evaluate_elbow,
    standardize_profile,
    verify_reproducibility,
)
from crime_weather.hashing import get_cache_status, hash_dict, write_metadata_sidecar
from crime_weather.io_utils import atomic_write_df, read_yaml, require_file
from crime_weather.logging_utils import get_logger
from crime_weather.paths import CLUSTERS_DIR, CRIME_DIR, PARAMS_FILE
from crime_weather.qa import validate_cluster_assignment
from crime_weather.schemas import CLUSTER_SCHEMA, validate_schema


# =============================================================================
# Constants
# =============================================================================

INPUT_INCIDENTS = CRIME_DIR / "crime_incidents.parquet"

OUTPUT_CLUSTERS = CLUSTERS_DIR / "neighborhood_clusters.parquet"
OUTPUT_CLUSTERS_CSV = CLUSTERS_DIR / "neighborhood_clusters.csv"
OUTPUT_SUMMARY = CLUSTERS_DIR / "cluster_summary.csv"
OUTPUT_ELBOW = CLUSTERS_DIR / "elbow_scores.csv"
OUTPUT_PROFILE = CLUSTERS_DIR / "profile_standardized.csv"


def stage_config(config: dict) -> dict:
    """Config sections that determine this stage's outputs."""
    return {
        "clustering": config.get("clustering", {}),
        "seed": config.get("random_seeds", {}).get("clustering", 12345),
    }


# =============================================================================
# Data Loading
# =============================================================================

def load_incidents(logger) -> pd.DataFrame:
    """Load the cleaned, categorized incidents from Script 01."""
    require_file(INPUT_INCIDENTS, "01_build_crime_daily.py")

    df = pd.read_parquet(INPUT_INCIDENTS)
    logger.info(
        f"Loaded {len(df):,} incidents across {df['neighborhood'].nunique()} neighborhoods"
    )
    return df


# =============================================================================
# Main
# =============================================================================

def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Cluster neighborhoods by crime-type profile")
    parser.add_argument("--force", action="store_true", help="Rebuild even if the cache is valid")
    args = parser.parse_args()

    with get_logger("03_build_neighborhood_clusters") as logger:
        logger.info("Starting 03_build_neighborhood_clusters.py")

        config = read_yaml(PARAMS_FILE)
        cfg = stage_config(config)
        logger.log_config(cfg, hash_dict(cfg))

        cluster_config = cfg["clustering"]
        k_range = cluster_config.get("k_range", DEFAULT_K_RANGE)
        n_clusters = int(cluster_config.get("n_clusters", DEFAULT_N_CLUSTERS))
        n_init = int(cluster_config.get("n_init", DEFAULT_N_INIT))
        max_iter = int(cluster_config.get("max_iter", DEFAULT_MAX_ITER))
        min_cluster_size = int(cluster_config.get("min_cluster_size", 1))
        random_seed = int(cfg["seed"])

        logger.info(f"K range: {k_range}")
        logger.info(f"Final K: {n_clusters}, n_init: {n_init}, seed: {random_seed}")

        inputs = {"crime_incidents": str(INPUT_INCIDENTS)}
        logger.log_inputs(inputs)

        try:
            incidents = load_incidents(logger)

            cache = get_cache_status(OUTPUT_CLUSTERS, inputs, cfg)
            if cache["valid"] and not args.force:
                logger.info(f"Cache valid ({cache['reason']}); skipping. Use --force to rebuild.")
                return
            logger.info(f"Cache status: {cache['reason']}")

            # Profile
            profile = build_category_profile(incidents, CATEGORY_VALUES)
            scaled, _ = standardize_profile(profile)
            logger.info(f"Profile matrix: {profile.shape[0]} neighborhoods x {profile.shape[1]} categories")

            # Elbow sweep
            df_elbow = evaluate_elbow(scaled.values, k_range, random_seed, n_init, max_iter)
            for row in df_elbow.itertuples(index=False):
                logger.info(f"  K={row.k}: within_ss={row.within_ss:.2f}")
            skipped_k = sorted(set(int(k) for k in k_range) - set(df_elbow["k"]))
            if skipped_k:
                logger.warning(f"Skipped K values larger than the neighborhood count: {skipped_k}")

            # Final model
            assignments, kmeans = assign_clusters(profile, n_clusters, random_seed, n_init, max_iter)
            sizes = cluster_sizes(assignments)
            logger.info(f"Final cluster sizes: {sizes}")

            repro_ok = verify_reproducibility(
                scaled.values,
                n_clusters,
                random_seed,
                assignments["cluster_id"].to_numpy(),
                n_init,
                max_iter,
            )
            if repro_ok:
                logger.info("Reproducibility check PASSED: identical cluster assignments")
            else:
                logger.error("Reproducibility check FAILED: different cluster assignments")

            # QA
            qa_stats = validate_cluster_assignment(
                assignments,
                n_clusters,
                neighborhoods=profile.index,
                min_cluster_size=min_cluster_size,
            )
            if qa_stats["small_clusters"]:
                logger.warning(
                    f"{qa_stats['small_clusters']} clusters below {min_cluster_size} neighborhoods"
                )
            logger.info(f"QA validation {'PASSED' if qa_stats['passed'] else 'FAILED'}")
            validate_schema(
                assignments,
                CLUSTER_SCHEMA,
                "03_build_neighborhood_clusters",
                row_count=len(profile),
            )

            df_summary = compute_cluster_summary(assignments, list(profile.columns))

            df_scaled = scaled.reset_index()

            # Write outputs
            atomic_write_df(assignments, OUTPUT_CLUSTERS)
            logger.info(f"Wrote: {OUTPUT_CLUSTERS}")

            atomic_write_df(assignments, OUTPUT_CLUSTERS_CSV)
            logger.info(f"Wrote: {OUTPUT_CLUSTERS_CSV}")

            atomic_write_df(df_summary, OUTPUT_SUMMARY)
            logger.info(f"Wrote: {OUTPUT_SUMMARY}")

            atomic_write_df(df_elbow, OUTPUT_ELBOW)
            logger.info(f"Wrote: {OUTPUT_ELBOW}")

            atomic_write_df(df_scaled, OUTPUT_PROFILE)
            logger.info(f"Wrote: {OUTPUT_PROFILE}")

            logger.log_outputs({
                "neighborhood_clusters_parquet": str(OUTPUT_CLUSTERS),
                "neighborhood_clusters_csv": str(OUTPUT_CLUSTERS_CSV),
                "cluster_summary": str(OUTPUT_SUMMARY),
                "elbow_scores": str(OUTPUT_ELBOW),
                "profile_standardized": str(OUTPUT_PROFILE),
            })

            anomalies = {
                "skipped_k_values": skipped_k,
                "small_clusters": qa_stats["small_clusters"],
                "reproducibility_failures": int(not repro_ok),
            }
            logger.log_anomalies("clustering", anomalies)
            logger.log_metrics({
                "n_neighborhoods": len(profile),
                "n_clusters": n_clusters,
                "final_within_ss": float(kmeans.inertia_),
                "cluster_sizes": sizes,
                "reproducibility_verified": repro_ok,
                "qa_stats": qa_stats,
            })

            write_metadata_sidecar(
                output_path=OUTPUT_CLUSTERS,
                inputs=inputs,
                config=cfg,
                run_id=logger.run_id,
                extra={
                    "anomalies": anomalies,
                    "n_clusters": n_clusters,
                    "random_seed": random_seed,
                    "n_init": n_init,
                    "max_iter": max_iter,
                    "reproducibility_verified": repro_ok,
                    "elbow_scores": df_elbow.to_dict(orient="records"),
                    "cluster_sizes": {str(k): v for k, v in sizes.items()},
                    "qa_stats": qa_stats,
                },
            )

            logger.info("=" * 70)
            logger.info("Neighborhood Cluster Summary:")
            for row in df_summary.itertuples(index=False):
                logger.info(f"  Cluster {row.cluster_id}: {row.n_neighborhoods} neighborhoods")
            logger.info("=" * 70)
            logger.info("SUCCESS: Built neighborhood clusters")

        except Exception as e:
            logger.error(f"FAILED: {e}")
            raise


if __name__ == "__main__":
    main()
