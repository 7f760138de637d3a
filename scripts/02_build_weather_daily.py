#!/usr/bin/env python3
"""
02_build_weather_daily.py

Reduce hourly weather observations to one row per local calendar day.

- Load the hourly export (dt_iso, continuous measurements, weather_description)
- Convert UTC timestamps to America/New_York and drop duplicate hours
- Pivot the free-text description into wx_<description> indicator columns
  (case variants merged)
- Aggregate to daily: mean / min / max for continuous fields, sum (hours)
  for indicators
- Compare observed descriptions with the expected vocabulary

Outputs:
- data/processed/weather/weather_daily.parquet
- data/processed/weather/weather_daily.csv
- data/processed/metadata/weather_daily_metadata.json (provenance + anomaly counts)
"""

import argparse

from crime_weather.hashing import get_cache_status, hash_dict, write_metadata_sidecar
from crime_weather.io_utils import atomic_write_df, read_yaml
from crime_weather.logging_utils import get_logger
from crime_weather.paths import PARAMS_FILE, WEATHER_DIR, resolve_input
from crime_weather.qa import compute_na_rates
from crime_weather.schemas import WEATHER_DAILY_SCHEMA, validate_schema
from crime_weather.time_utils import DEFAULT_TIMEZONE, get_date_coverage
from crime_weather.weather import (
    DEFAULT_DESCRIPTION_COLUMN,
    DEFAULT_SEPARATOR,
    DEFAULT_TIMESTAMP_COLUMN,
    check_vocabulary,
    indicator_columns,
    load_weather_csv,
    reshape_weather,
)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_WEATHER_CSV = "data/raw/weather/baltimore_weather_hourly.csv"

OUTPUT_WEATHER = WEATHER_DIR / "weather_daily.parquet"
OUTPUT_WEATHER_CSV = WEATHER_DIR / "weather_daily.csv"


def stage_config(config: dict) -> dict:
    """Config sections that determine this stage's outputs."""
    return {
        "timezone": config.get("project", {}).get("timezone", DEFAULT_TIMEZONE),
        "weather": config.get("weather", {}),
    }


# =============================================================================
# Main
# =============================================================================

def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Build the daily weather table")
    parser.add_argument("--force", action="store_true", help="Rebuild even if the cache is valid")
    args = parser.parse_args()

    with get_logger("02_build_weather_daily") as logger:
        logger.info("Starting 02_build_weather_daily.py")

        config = read_yaml(PARAMS_FILE)
        cfg = stage_config(config)
        logger.log_config(cfg, hash_dict(cfg))

        weather_config = cfg["weather"]
        tz_name = cfg["timezone"]
        source_tz = weather_config.get("source_timezone", "UTC")
        separator = weather_config.get("separator", DEFAULT_SEPARATOR)
        strict = bool(weather_config.get("strict_vocabulary", False))

        weather_csv = resolve_input(config.get("inputs", {}).get("weather_csv", DEFAULT_WEATHER_CSV))
        inputs = {"weather_csv": str(weather_csv)}
        logger.log_inputs(inputs)

        try:
            if not weather_csv.exists():
                raise FileNotFoundError(
                    f"Weather data not found: {weather_csv}. Set inputs.weather_csv in {PARAMS_FILE.name}."
                )

            cache = get_cache_status(OUTPUT_WEATHER, inputs, cfg)
            if cache["valid"] and not args.force:
                logger.info(f"Cache valid ({cache['reason']}); skipping. Use --force to rebuild.")
                return
            logger.info(f"Cache status: {cache['reason']}")

            raw = load_weather_csv(
                weather_csv,
                timestamp_column=weather_config.get("timestamp_column", DEFAULT_TIMESTAMP_COLUMN),
                description_column=weather_config.get("description_column", DEFAULT_DESCRIPTION_COLUMN),
            )
            logger.info(f"Loaded {len(raw):,} hourly observations")
            logger.info(f"Converting {source_tz} timestamps to {tz_name}")

            daily, stats = reshape_weather(raw, tz_name, source_tz, separator)

            for column, variants in stats["case_variants"].items():
                logger.info(f"Merged case variants into {column}: {variants}")

            vocabulary = check_vocabulary(
                daily,
                weather_config.get("expected_descriptions"),
                separator=separator,
                strict=strict,
            )
            if vocabulary["checked"]:
                if vocabulary["unexpected"]:
                    logger.warning(f"Unexpected weather descriptions: {vocabulary['unexpected']}")
                if vocabulary["never_observed"]:
                    logger.info(f"Expected but never observed: {vocabulary['never_observed']}")
            else:
                logger.info("No expected vocabulary configured; skipping vocabulary check")

            anomalies = {
                "unparseable_timestamps": stats["unparseable_timestamps"],
                "duplicate_timestamps": stats["duplicate_timestamps"],
                "missing_descriptions": stats["missing_descriptions"],
                "merged_case_variant_columns": stats["merged_case_variant_columns"],
                "case_variants": stats["case_variants"],
                "unexpected_descriptions": vocabulary["unexpected"],
                "never_observed_descriptions": vocabulary["never_observed"],
            }
            logger.log_anomalies("weather", anomalies)

            first, last = get_date_coverage(daily, "date")
            logger.info(
                f"Daily weather: {len(daily):,} days ({first} to {last}), "
                f"{len(indicator_columns(daily))} indicator columns"
            )

            validate_schema(daily, WEATHER_DAILY_SCHEMA, "02_build_weather_daily")

            # Write outputs
            atomic_write_df(daily, OUTPUT_WEATHER)
            logger.info(f"Wrote: {OUTPUT_WEATHER}")

            atomic_write_df(daily, OUTPUT_WEATHER_CSV)
            logger.info(f"Wrote: {OUTPUT_WEATHER_CSV}")

            logger.log_outputs({
                "weather_daily_parquet": str(OUTPUT_WEATHER),
                "weather_daily_csv": str(OUTPUT_WEATHER_CSV),
            })
            logger.log_metrics({
                "hourly_rows": stats["hourly_rows"],
                "daily_rows": stats["daily_rows"],
                "indicator_columns": stats["indicator_columns"],
                "na_rates": compute_na_rates(daily),
            })

            write_metadata_sidecar(
                output_path=OUTPUT_WEATHER,
                inputs=inputs,
                config=cfg,
                run_id=logger.run_id,
                extra={
                    "anomalies": anomalies,
                    "timezone": tz_name,
                    "source_timezone": source_tz,
                    "first_date": str(first.date()) if first is not None else None,
                    "last_date": str(last.date()) if last is not None else None,
                    "indicator_columns": indicator_columns(daily),
                },
            )

            logger.info("SUCCESS: Built daily weather table")

        except Exception as e:
            logger.error(f"FAILED: {e}")
            raise


if __name__ == "__main__":
    main()
