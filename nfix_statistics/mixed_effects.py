"""
Random-intercept regression of nitrogen fixation on carbon (NF ~ C | SiteID).

One pooled fit for all data. The significance of the fit is a single flag
taken from the smallest non-intercept p-value, and the faceted figure draws
that same pooled line in every ecosystem panel (no per-facet refit).
"""

import logging

import pandas as pd
import numpy as np
import statsmodels.formula.api as smf

from . import config, plots

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ["SiteID", "C", "NF", "groupID", "Type"]
INTERCEPT = "Intercept"


def validate_groups(df: pd.DataFrame, group_col: str = config.MIXED_GROUP_COL):
    """Random-effect grouping column must be present and complete."""
    if group_col not in df.columns:
        raise ValueError(f"Grouping column '{group_col}' not found")
    n_missing = int(df[group_col].isna().sum())
    if n_missing:
        raise ValueError(f"Grouping column '{group_col}' has {n_missing} missing values")


def load_paired_measurements(path=config.SAND_CSV) -> pd.DataFrame:
    """Load per-site C / NF measurements."""
    df = pd.read_csv(path)
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"{path}: missing required columns {missing}")
    validate_groups(df)
    return df


def fit_mixed_model(df: pd.DataFrame, formula: str = config.MIXED_FORMULA,
                    group_col: str = config.MIXED_GROUP_COL,
                    method: str = config.MIXED_OPTIMIZER):
    """Linear mixed model with a random intercept per group (REML)."""
    validate_groups(df, group_col)
    model = smf.mixedlm(formula, df, groups=df[group_col])
    result = model.fit(method=method, reml=True)
    logger.info("Mixed model %s fitted on %d rows, %d groups (converged=%s)",
                formula, len(df), df[group_col].nunique(), result.converged)
    return result


def coefficient_table(result) -> pd.DataFrame:
    """Fixed-effect rows of the fit: estimate, SE, z, p.

    Works with any object exposing ``fe_params``, ``bse``, ``tvalues`` and
    ``pvalues`` as name-indexed Series.
    """
    terms = list(result.fe_params.index)
    return pd.DataFrame({
        "term": terms,
        "estimate": [float(result.fe_params[t]) for t in terms],
        "std_err": [float(result.bse[t]) for t in terms],
        "z": [float(result.tvalues[t]) for t in terms],
        "p_value": [float(result.pvalues[t]) for t in terms],
    })


def significance_flag(p_value: float, alpha: float = config.ALPHA) -> str:
    return "significant" if p_value < alpha else "not significant"


def summarize_fit(coefs: pd.DataFrame, alpha: float = config.ALPHA) -> pd.DataFrame:
    """Pivot the coefficient table into a single summary row.

    Columns: Intercept, one column per slope term, p_value (minimum over the
    slope terms) and significance (one flag for the whole fit).
    """
    slope_terms = [t for t in coefs["term"] if t != INTERCEPT]
    p_min = coefs.loc[coefs["term"] != INTERCEPT, "p_value"].min()
    flag = significance_flag(p_min, alpha)

    tagged = coefs.assign(p_value=p_min, significance=flag)
    summary = tagged.pivot(index=["p_value", "significance"],
                           columns="term", values="estimate").reset_index()
    summary.columns.name = None
    return summary[[INTERCEPT, *slope_terms, "p_value", "significance"]]


def fitted_line(summary: pd.DataFrame, x, slope_term: str = "C") -> np.ndarray:
    """Pooled regression line evaluated at ``x``."""
    row = summary.iloc[0]
    return row[INTERCEPT] + row[slope_term] * np.asarray(x, dtype=float)


def run(df: pd.DataFrame,
        shapes: dict = config.ECOSYSTEM_SHAPES,
        colors: dict = config.ECOSYSTEM_COLORS) -> dict:
    """Fit, summarise and plot the pooled random-intercept model."""
    result = fit_mixed_model(df)
    coefs = coefficient_table(result)
    summary = summarize_fit(coefs)

    fig = plots.plot_regression_facets(df, summary, shapes, colors)
    path = plots._save(fig, config.REGRESSION_PDF)
    logger.info("Regression figure written to %s", path)

    results = {
        "model": result,
        "coefficients": coefs,
        "summary": summary,
        "figure": fig,
        "figure_path": path,
    }

    with pd.ExcelWriter(config.OUTPUT_DIR / "mixed_effects.xlsx") as writer:
        coefs.to_excel(writer, sheet_name="coefficients", index=False)
        summary.to_excel(writer, sheet_name="summary", index=False)

    return results
