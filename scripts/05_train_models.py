#!/usr/bin/env python3
"""
05_train_models.py

Compare classifiers for "did a crime of this category occur in this
neighborhood on this day", one comparison per crime category.

- Train period: rows before modeling.holdout_start; held-out period: on/after
- Models: L1 logistic regression, LDA, regularized QDA, random forest,
  gradient boosting, all behind one preprocessing pipeline
- Stratified K-fold ROC AUC on the train period; AUC / precision / recall
  on the held-out period, with "Yes" as the positive class
- Categories whose training labels are too imbalanced for K-fold CV are
  skipped and reported

Outputs:
- data/processed/models/model_scores.csv
- data/processed/models/best_models.csv
- data/processed/metadata/model_scores_metadata.json

Usage:
    python scripts/05_train_models.py
    python scripts/05_train_models.py --categories HOMICIDE SHOOTING --models lda qda
"""

import argparse

import pandas as pd

from crime_weather.categories import CATEGORY_VALUES
from crime_weather.hashing import get_cache_status, hash_dict, write_metadata_sidecar
from crime_weather.io_utils import atomic_write_df, read_yaml, require_file
from crime_weather.logging_utils import get_logger
from crime_weather.modeling import MODEL_NAMES, compare_models, select_best_models
from crime_weather.paths import FEATURES_DIR, MODELS_DIR, PARAMS_FILE


# =============================================================================
# Constants
# =============================================================================

INPUT_FEATURES = FEATURES_DIR / "feature_table.parquet"

OUTPUT_SCORES = MODELS_DIR / "model_scores.csv"
OUTPUT_BEST = MODELS_DIR / "best_models.csv"


def stage_config(config: dict, categories, models) -> dict:
    """Config sections (plus CLI filters) that determine this stage's outputs."""
    return {
        "modeling": config.get("modeling", {}),
        "seed": config.get("random_seeds", {}).get("modeling", 12345),
        "categories": list(categories),
        "models": list(models),
    }


def parse_args():
    parser = argparse.ArgumentParser(description="Compare per-category crime classifiers")
    parser.add_argument(
        "--categories",
        nargs="+",
        choices=CATEGORY_VALUES,
        help="Crime categories to evaluate (default: all)",
    )
    parser.add_argument(
        "--models",
        nargs="+",
        choices=MODEL_NAMES,
        help="Models to compare (default: modeling.models in params.yml)",
    )
    parser.add_argument("--force", action="store_true", help="Rebuild even if the cache is valid")
    return parser.parse_args()


# =============================================================================
# Main
# =============================================================================

def main():
    """Main entry point."""
    args = parse_args()

    with get_logger("05_train_models") as logger:
        logger.info("Starting 05_train_models.py")

        config = read_yaml(PARAMS_FILE)
        modeling_config = config.get("modeling", {})

        categories = args.categories or CATEGORY_VALUES
        model_names = args.models or modeling_config.get("models", list(MODEL_NAMES))

        cfg = stage_config(config, categories, model_names)
        logger.log_config(cfg, hash_dict(cfg))

        cv_folds = int(modeling_config.get("cv_folds", 5))
        holdout_start = modeling_config.get("holdout_start", "2017-01-01")
        max_train_rows = modeling_config.get("max_train_rows")
        model_params = modeling_config.get("model_params", {})
        random_seed = int(cfg["seed"])

        logger.info(f"Categories: {categories}")
        logger.info(f"Models: {model_names}")
        logger.info(f"Hold-out start: {holdout_start}, CV folds: {cv_folds}, seed: {random_seed}")

        inputs = {"feature_table": str(INPUT_FEATURES)}
        logger.log_inputs(inputs)

        try:
            require_file(INPUT_FEATURES, "04_build_feature_table.py")

            cache = get_cache_status(OUTPUT_SCORES, inputs, cfg)
            if cache["valid"] and not args.force:
                logger.info(f"Cache valid ({cache['reason']}); skipping. Use --force to rebuild.")
                return
            logger.info(f"Cache status: {cache['reason']}")

            features = pd.read_parquet(INPUT_FEATURES)
            logger.info(f"Loaded feature table: {len(features):,} rows")

            scores, skipped = compare_models(
                features,
                categories=categories,
                model_names=model_names,
                holdout_start=holdout_start,
                cv_folds=cv_folds,
                random_seed=random_seed,
                model_params=model_params,
                max_train_rows=max_train_rows,
                logger=logger,
            )
            best = select_best_models(scores)

            anomalies = {"skipped_categories": skipped}
            logger.log_anomalies("modeling", anomalies)

            # Write outputs
            atomic_write_df(scores, OUTPUT_SCORES)
            logger.info(f"Wrote: {OUTPUT_SCORES}")

            atomic_write_df(best, OUTPUT_BEST)
            logger.info(f"Wrote: {OUTPUT_BEST}")

            logger.log_outputs({
                "model_scores": str(OUTPUT_SCORES),
                "best_models": str(OUTPUT_BEST),
            })
            logger.log_metrics({
                "n_scores": len(scores),
                "skipped_categories": skipped,
                "best_models": best[["category", "model", "cv_auc_mean", "holdout_auc"]].to_dict(orient="records"),
            })

            write_metadata_sidecar(
                output_path=OUTPUT_SCORES,
                inputs=inputs,
                config=cfg,
                run_id=logger.run_id,
                extra={
                    "anomalies": anomalies,
                    "holdout_start": str(holdout_start),
                    "cv_folds": cv_folds,
                    "random_seed": random_seed,
                },
            )

            logger.info("=" * 70)
            logger.info("Best model per category (by CV AUC):")
            for row in best.itertuples(index=False):
                logger.info(
                    f"  {row.category}: {row.model} cv_auc={row.cv_auc_mean:.4f} "
                    f"holdout_auc={row.holdout_auc:.4f}"
                )
            logger.info("=" * 70)
            logger.info("SUCCESS: Trained and compared models")

        except Exception as e:
            logger.error(f"FAILED: {e}")
            raise


if __name__ == "__main__":
    main()
