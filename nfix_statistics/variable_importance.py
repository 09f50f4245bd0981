"""
Random-forest importance of OTU / soil predictors for nifH abundance.

A 1000-tree forest with a fixed seed is fitted on every non-target column;
predictors are ranked by permutation importance (increase in MSE when the
column is shuffled).
"""

import logging

import pandas as pd
import numpy as np
from sklearn.ensemble import RandomForestRegressor
from sklearn.inspection import permutation_importance
from sklearn.metrics import mean_squared_error

from . import config

logger = logging.getLogger(__name__)


def load_predictor_table(path=config.MYDATA_CSV) -> pd.DataFrame:
    """First CSV column holds row labels."""
    return pd.read_csv(path, index_col=0)


def split_target(df: pd.DataFrame, target: str = config.RF_TARGET):
    if target not in df.columns:
        raise ValueError(f"Target column '{target}' not found in predictor table")
    return df.drop(columns=[target]), df[target]


def fit_forest(X: pd.DataFrame, y: pd.Series,
               n_estimators: int = config.RF_N_ESTIMATORS,
               seed: int = config.SEED) -> RandomForestRegressor:
    """Fit the regression forest. Non-numeric or missing values raise in sklearn."""
    model = RandomForestRegressor(
        n_estimators=n_estimators,
        random_state=seed,
        n_jobs=1,
    )
    model.fit(X, y)
    return model


def rank_importance(model: RandomForestRegressor, X: pd.DataFrame, y: pd.Series,
                    n_repeats: int = config.RF_N_REPEATS,
                    seed: int = config.SEED) -> pd.DataFrame:
    """Permutation importance table, most important predictor first.

    IncMSE       mean increase in MSE when the predictor is permuted
    IncMSE_std   spread of that increase over repeats
    PctIncMSE    IncMSE as % of the unpermuted MSE
    IncNodePurity  impurity-based importance of the fitted forest
    """
    perm = permutation_importance(
        model, X, y,
        scoring="neg_mean_squared_error",
        n_repeats=n_repeats,
        random_state=seed,
        n_jobs=1,
    )
    baseline_mse = mean_squared_error(y, model.predict(X))
    pct = perm.importances_mean / baseline_mse * 100 if baseline_mse > 0 else np.full(X.shape[1], np.nan)

    table = pd.DataFrame({
        "feature": list(X.columns),
        "IncMSE": perm.importances_mean,
        "IncMSE_std": perm.importances_std,
        "PctIncMSE": pct,
        "IncNodePurity": model.feature_importances_,
    })
    # feature name breaks ties -> deterministic total order
    table = table.sort_values(["IncMSE", "feature"], ascending=[False, True], kind="mergesort")
    return table.set_index("feature")


def run(df: pd.DataFrame, target: str = config.RF_TARGET) -> dict:
    """Fit the forest, rank predictors, print the ranked table."""
    X, y = split_target(df, target)
    logger.info("Random forest: %d samples, %d predictors, target=%s",
                len(X), X.shape[1], target)
    model = fit_forest(X, y)
    importance = rank_importance(model, X, y)

    print(f"\nVariable importance for {target} (sorted by IncMSE):")
    print(importance.to_string(float_format=lambda v: f"{v:.4f}"))

    config.OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    with pd.ExcelWriter(config.OUTPUT_DIR / "variable_importance.xlsx") as writer:
        importance.to_excel(writer, sheet_name="importance")

    return {
        "model": model,
        "importance": importance,
    }
