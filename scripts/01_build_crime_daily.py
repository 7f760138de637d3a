#!/usr/bin/env python3
"""
01_build_crime_daily.py

Build the dense daily crime grid for Baltimore neighborhoods.

- Load the Part 1 crime export (date / neighborhood / description)
- Drop exact duplicate incidents, unparseable dates and missing neighborhoods
- Map the 15 offense descriptions to 6 categories (unmapped rows excluded or fatal)
- Count incidents per (date, neighborhood, category)
- Densify to every date in the configured range x every neighborhood x every
  category; absent combinations get crime_count = 0

Outputs:
- data/processed/crime/crime_incidents.parquet (cleaned, categorized incidents)
- data/processed/crime/crime_daily_grid.parquet (dense grid with calendar fields)
- data/processed/crime/category_counts.csv (incidents per category)
- data/processed/metadata/crime_daily_grid_metadata.json (provenance + anomaly counts)
"""

import argparse

import pandas as pd

from crime_weather.categories import load_category_map
from crime_weather.crime import (
    DEFAULT_COLUMN_MAP,
    aggregate_daily_counts,
    densify_daily_grid,
    load_crime_csv,
    prepare_incidents,
    summarize_grid,
)
from crime_weather.hashing import get_cache_status, hash_dict, write_metadata_sidecar
from crime_weather.io_utils import atomic_write_df, read_yaml
from crime_weather.logging_utils import get_logger
from crime_weather.paths import CRIME_DIR, PARAMS_FILE, resolve_input
from crime_weather.qa import assert_grid_complete
from crime_weather.schemas import CRIME_GRID_SCHEMA, validate_schema
from crime_weather.time_utils import filter_date_range, get_date_coverage


# =============================================================================
# Constants
# =============================================================================

DEFAULT_CRIME_CSV = "data/raw/crime/BPD_Part_1_Victim_Based_Crime_Data.csv"

OUTPUT_INCIDENTS = CRIME_DIR / "crime_incidents.parquet"
OUTPUT_GRID = CRIME_DIR / "crime_daily_grid.parquet"
OUTPUT_CATEGORY_COUNTS = CRIME_DIR / "category_counts.csv"


def stage_config(config: dict) -> dict:
    """Config sections that determine this stage's outputs."""
    return {
        "crime": config.get("crime", {}),
        "grid": config.get("grid", {}),
    }


# =============================================================================
# Main
# =============================================================================

def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Build the dense daily crime grid")
    parser.add_argument("--force", action="store_true", help="Rebuild even if the cache is valid")
    args = parser.parse_args()

    with get_logger("01_build_crime_daily") as logger:
        logger.info("Starting 01_build_crime_daily.py")

        config = read_yaml(PARAMS_FILE)
        cfg = stage_config(config)
        logger.log_config(cfg, hash_dict(cfg))

        crime_config = cfg["crime"]
        grid_config = cfg["grid"]
        column_map = crime_config.get("columns", DEFAULT_COLUMN_MAP)
        date_format = crime_config.get("date_format")
        unmapped_policy = crime_config.get("unmapped_policy", "exclude")

        crime_csv = resolve_input(config.get("inputs", {}).get("crime_csv", DEFAULT_CRIME_CSV))
        inputs = {"crime_csv": str(crime_csv)}
        logger.log_inputs(inputs)

        try:
            if not crime_csv.exists():
                raise FileNotFoundError(
                    f"Crime data not found: {crime_csv}. Set inputs.crime_csv in {PARAMS_FILE.name}."
                )

            cache = get_cache_status(OUTPUT_GRID, inputs, cfg)
            if cache["valid"] and not args.force:
                logger.info(f"Cache valid ({cache['reason']}); skipping. Use --force to rebuild.")
                return
            logger.info(f"Cache status: {cache['reason']}")

            category_map = load_category_map(crime_config.get("category_map"))
            logger.info(f"Category map: {len(category_map)} descriptions")

            # Load + clean
            raw = load_crime_csv(crime_csv, column_map)
            logger.info(f"Loaded {len(raw):,} raw incident records")

            incidents, anomalies = prepare_incidents(
                raw,
                category_map,
                date_format=date_format,
                unmapped_policy=unmapped_policy,
            )
            logger.log_anomalies("crime", anomalies)
            if anomalies["unmapped_descriptions"]:
                logger.warning(
                    f"Unmapped descriptions ({unmapped_policy}): {anomalies['unmapped_descriptions']}"
                )

            first, last = get_date_coverage(incidents, "date")
            logger.info(f"Incident coverage: {first} to {last}")

            # Daily counts
            daily = aggregate_daily_counts(incidents)
            logger.info(f"Observed (date, neighborhood, category) combinations: {len(daily):,}")

            start_date = grid_config.get("start_date") or first
            end_date = grid_config.get("end_date") or last
            in_range = filter_date_range(daily, "date", start_date, end_date)
            anomalies["out_of_range_incidents"] = int(
                daily["crime_count"].sum() - in_range["crime_count"].sum()
            )

            # Densify
            neighborhoods = sorted(incidents["neighborhood"].unique())
            grid = densify_daily_grid(
                in_range,
                start_date=start_date,
                end_date=end_date,
                neighborhoods=neighborhoods,
            )
            grid_stats = summarize_grid(grid)
            logger.info(
                f"Dense grid: {grid_stats['n_dates']:,} dates x "
                f"{grid_stats['n_neighborhoods']} neighborhoods x "
                f"{grid_stats['n_categories']} categories = {grid_stats['grid_rows']:,} rows"
            )
            logger.info(f"Zero-count share: {grid_stats['zero_share']:.1%}")

            # QA
            expected_rows = grid_stats["n_dates"] * grid_stats["n_neighborhoods"] * grid_stats["n_categories"]
            validate_schema(grid, CRIME_GRID_SCHEMA, "01_build_crime_daily", row_count=expected_rows)
            assert_grid_complete(grid, "crime_daily_grid")

            category_counts = (
                incidents["category"].value_counts()
                .rename_axis("category")
                .reset_index(name="incidents")
            )

            # Write outputs
            atomic_write_df(incidents, OUTPUT_INCIDENTS)
            logger.info(f"Wrote: {OUTPUT_INCIDENTS}")

            atomic_write_df(grid, OUTPUT_GRID)
            logger.info(f"Wrote: {OUTPUT_GRID}")

            atomic_write_df(category_counts, OUTPUT_CATEGORY_COUNTS)
            logger.info(f"Wrote: {OUTPUT_CATEGORY_COUNTS}")

            logger.log_outputs({
                "crime_incidents": str(OUTPUT_INCIDENTS),
                "crime_daily_grid": str(OUTPUT_GRID),
                "category_counts": str(OUTPUT_CATEGORY_COUNTS),
            })
            logger.log_metrics({
                **grid_stats,
                "incidents": len(incidents),
                "category_counts": category_counts.set_index("category")["incidents"].to_dict(),
            })

            write_metadata_sidecar(
                output_path=OUTPUT_GRID,
                inputs=inputs,
                config=cfg,
                run_id=logger.run_id,
                extra={
                    "anomalies": anomalies,
                    "grid": grid_stats,
                    "start_date": str(pd.Timestamp(start_date).date()),
                    "end_date": str(pd.Timestamp(end_date).date()),
                    "unmapped_policy": unmapped_policy,
                },
            )

            logger.info("SUCCESS: Built dense daily crime grid")

        except Exception as e:
            logger.error(f"FAILED: {e}")
            raise


if __name__ == "__main__":
    main()
