"""
Per-category classifier comparison.

For each crime category the feature table is split by date: rows before
`holdout_start` train, rows on/after it are the held-out period. Every model
shares one preprocessing step (one-hot categorical calendar/cluster fields,
median-imputed and standardized numeric weather fields) and is scored by
stratified K-fold ROC AUC on the training period, then by AUC / precision /
recall on the held-out period.

The target is encoded "Yes" → 1, "No" → 0, and every score uses the
probability of class 1, so "Yes" is always the positive class.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd
import sklearn
from sklearn.compose import ColumnTransformer
from sklearn.discriminant_analysis import (
    LinearDiscriminantAnalysis,
    QuadraticDiscriminantAnalysis,
)
from sklearn.ensemble import GradientBoostingClassifier, RandomForestClassifier
from sklearn.impute import SimpleImputer
from sklearn.linear_model import LogisticRegression
from sklearn.metrics import precision_score, recall_score, roc_auc_score
from sklearn.model_selection import StratifiedKFold, cross_val_score
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import OneHotEncoder, StandardScaler

from crime_weather.categories import POSITIVE_LABEL
from crime_weather.features import LABEL_COLUMN, model_feature_columns


MODEL_NAMES = (
    "logistic_l1",
    "lda",
    "qda",
    "random_forest",
    "gradient_boosting",
)

DEFAULT_MODEL_PARAMS: Dict[str, Dict[str, Any]] = {
    "logistic_l1": {"C": 1.0, "max_iter": 1000},
    "lda": {},
    "qda": {"reg_param": 0.1},
    "random_forest": {"n_estimators": 200, "min_samples_leaf": 5, "n_jobs": -1},
    "gradient_boosting": {"n_estimators": 100, "max_depth": 3, "learning_rate": 0.1},
}

# scikit-learn 1.8 deprecates `penalty`; an l1_ratio of 1 selects the pure L1 penalty
SKLEARN_VERSION = tuple(int(p) for p in sklearn.__version__.split(".")[:2])
L1_PENALTY = {"l1_ratio": 1.0} if SKLEARN_VERSION >= (1, 8) else {"penalty": "l1"}

SCORE_COLUMNS = [
    "category",
    "model",
    "cv_auc_mean",
    "cv_auc_std",
    "holdout_auc",
    "holdout_precision",
    "holdout_recall",
    "n_train",
    "n_test",
    "positive_rate",
]


# =============================================================================
# Model Construction
# =============================================================================

def build_estimator(
    name: str,
    random_seed: int = 12345,
    params: Optional[Mapping[str, Any]] = None,
):
    """
    Instantiate one of MODEL_NAMES with default params overridden by `params`.

    Raises:
        KeyError: On an unknown model name
    """
    if name not in MODEL_NAMES:
        raise KeyError(f"Unknown model: {name}. Available: {list(MODEL_NAMES)}")

    kwargs = dict(DEFAULT_MODEL_PARAMS[name])
    kwargs.update(params or {})

    if name == "logistic_l1":
        return LogisticRegression(
            solver="liblinear", random_state=random_seed, **L1_PENALTY, **kwargs
        )
    if name == "lda":
        return LinearDiscriminantAnalysis(**kwargs)
    if name == "qda":
        return QuadraticDiscriminantAnalysis(**kwargs)
    if name == "random_forest":
        return RandomForestClassifier(random_state=random_seed, **kwargs)
    return GradientBoostingClassifier(random_state=random_seed, **kwargs)


def build_pipeline(
    name: str,
    categorical: List[str],
    numeric: List[str],
    random_seed: int = 12345,
    params: Optional[Mapping[str, Any]] = None,
) -> Pipeline:
    """Preprocessing + estimator pipeline."""
    numeric_steps = Pipeline([
        ("impute", SimpleImputer(strategy="median")),
        ("scale", StandardScaler()),
    ])
    preprocess = ColumnTransformer(
        [
            ("categorical", OneHotEncoder(handle_unknown="ignore", sparse_output=False), categorical),
            ("numeric", numeric_steps, numeric),
        ],
        remainder="drop",
    )
    return Pipeline([
        ("preprocess", preprocess),
        ("model", build_estimator(name, random_seed, params)),
    ])


# =============================================================================
# Data Preparation
# =============================================================================

def encode_target(labels: pd.Series) -> np.ndarray:
    """Encode labels as "Yes" → 1, anything else → 0."""
    return (labels.astype(str) == POSITIVE_LABEL).astype("int64").to_numpy()


def split_holdout(
    df: pd.DataFrame,
    holdout_start,
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Rows strictly before holdout_start vs. rows on or after it."""
    cutoff = pd.Timestamp(holdout_start)
    is_test = df["date"] >= cutoff
    return df[~is_test].copy(), df[is_test].copy()


def sample_rows(
    df: pd.DataFrame,
    max_rows: Optional[int],
    random_seed: int = 12345,
) -> pd.DataFrame:
    """Seeded random subsample when df exceeds max_rows."""
    if max_rows is None or len(df) <= max_rows:
        return df
    return df.sample(n=max_rows, random_state=random_seed).sort_index()


# =============================================================================
# Scoring
# =============================================================================

def positive_class_scores(model, X: pd.DataFrame) -> np.ndarray:
    """Probability of class 1 ("Yes") from a fitted classifier."""
    classes = list(model.classes_)
    return model.predict_proba(X)[:, classes.index(1)]


def cross_validated_auc(
    pipeline: Pipeline,
    X: pd.DataFrame,
    y: np.ndarray,
    cv_folds: int = 5,
    random_seed: int = 12345,
) -> Tuple[float, float]:
    """Mean and std of stratified K-fold ROC AUC."""
    cv = StratifiedKFold(n_splits=cv_folds, shuffle=True, random_state=random_seed)
    scores = cross_val_score(pipeline, X, y, cv=cv, scoring="roc_auc")
    return float(np.mean(scores)), float(np.std(scores))


def holdout_scores(
    pipeline: Pipeline,
    X_train: pd.DataFrame,
    y_train: np.ndarray,
    X_test: pd.DataFrame,
    y_test: np.ndarray,
    threshold: float = 0.5,
) -> Dict[str, float]:
    """
    Fit on the training period and score the held-out period.

    AUC is NaN when the held-out period contains a single class.
    """
    pipeline.fit(X_train, y_train)

    if len(y_test) == 0:
        return {"holdout_auc": np.nan, "holdout_precision": np.nan, "holdout_recall": np.nan}

    proba = positive_class_scores(pipeline, X_test)
    predicted = (proba >= threshold).astype("int64")

    auc = roc_auc_score(y_test, proba) if len(np.unique(y_test)) == 2 else np.nan
    return {
        "holdout_auc": float(auc),
        "holdout_precision": float(precision_score(y_test, predicted, pos_label=1, zero_division=0)),
        "holdout_recall": float(recall_score(y_test, predicted, pos_label=1, zero_division=0)),
    }


def evaluate_category(
    df: pd.DataFrame,
    model_names: Iterable[str],
    holdout_start,
    cv_folds: int = 5,
    random_seed: int = 12345,
    model_params: Optional[Mapping[str, Mapping[str, Any]]] = None,
    max_train_rows: Optional[int] = None,
) -> Tuple[List[Dict], Optional[str]]:
    """
    Score every model on one category's rows.

    Returns:
        (one score dict per model, skip reason or None)
    """
    model_params = model_params or {}
    categorical, numeric = model_feature_columns(df)

    train, test = split_holdout(df, holdout_start)
    train = sample_rows(train, max_train_rows, random_seed)

    y_train = encode_target(train[LABEL_COLUMN])
    y_test = encode_target(test[LABEL_COLUMN])

    if len(train) == 0:
        return [], "no training rows before holdout start"

    class_counts = np.bincount(y_train, minlength=2)
    if class_counts.min() < cv_folds:
        return [], (
            f"training labels too imbalanced for {cv_folds}-fold CV "
            f"(No={class_counts[0]}, Yes={class_counts[1]})"
        )

    X_train = train[categorical + numeric]
    X_test = test[categorical + numeric]

    rows = []
    for name in model_names:
        pipeline = build_pipeline(name, categorical, numeric, random_seed, model_params.get(name))
        cv_mean, cv_std = cross_validated_auc(pipeline, X_train, y_train, cv_folds, random_seed)
        scores = holdout_scores(pipeline, X_train, y_train, X_test, y_test)

        rows.append({
            "model": name,
            "cv_auc_mean": cv_mean,
            "cv_auc_std": cv_std,
            **scores,
            "n_train": len(train),
            "n_test": len(test),
            "positive_rate": float(y_train.mean()),
        })

    return rows, None


def compare_models(
    features: pd.DataFrame,
    categories: Optional[Iterable[str]] = None,
    model_names: Iterable[str] = MODEL_NAMES,
    holdout_start="2017-01-01",
    cv_folds: int = 5,
    random_seed: int = 12345,
    model_params: Optional[Mapping[str, Mapping[str, Any]]] = None,
    max_train_rows: Optional[int] = None,
    logger=None,
) -> Tuple[pd.DataFrame, Dict[str, str]]:
    """
    Run evaluate_category for each crime category.

    Returns:
        (score table with SCORE_COLUMNS, {skipped category: reason})
    """
    model_names = list(model_names)
    if categories is None:
        categories = sorted(features["category"].unique())

    results = []
    skipped = {}

    for category in categories:
        subset = features[features["category"] == category]
        if logger:
            logger.info(f"Evaluating {category}: {len(subset):,} rows, models {model_names}")

        rows, reason = evaluate_category(
            subset,
            model_names,
            holdout_start,
            cv_folds=cv_folds,
            random_seed=random_seed,
            model_params=model_params,
            max_train_rows=max_train_rows,
        )
        if reason:
            skipped[category] = reason
            if logger:
                logger.warning(f"Skipped {category}: {reason}")
            continue

        for row in rows:
            results.append({"category": category, **row})
            if logger:
                logger.info(
                    f"  {category} / {row['model']}: cv_auc={row['cv_auc_mean']:.4f} "
                    f"holdout_auc={row['holdout_auc']:.4f}"
                )

    return pd.DataFrame(results, columns=SCORE_COLUMNS), skipped


def select_best_models(scores: pd.DataFrame) -> pd.DataFrame:
    """Highest mean CV AUC per category."""
    if scores.empty:
        return scores.copy()
    best_idx = scores.groupby("category")["cv_auc_mean"].idxmax()
    return scores.loc[best_idx].sort_values("category").reset_index(drop=True)
