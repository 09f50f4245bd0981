"""
Nitrogen-fixation distribution by ecosystem group.

Per-group descriptive statistics, a Kruskal-Wallis test across groups, and
the half-violin / jitter / boxplot figure (box_new.pdf).
"""

import logging

import pandas as pd
import numpy as np
from scipy import stats

from . import config, plots

logger = logging.getLogger(__name__)


def load_observations(path=config.BOXPLOT_CSV) -> pd.DataFrame:
    """Load grouped NF observations (groupID, NF)."""
    df = pd.read_csv(path)
    missing = [c for c in ("groupID", "NF") if c not in df.columns]
    if missing:
        raise ValueError(f"{path}: missing required columns {missing}")
    return df


def summarize_groups(df: pd.DataFrame, group_col: str = "groupID",
                     value_col: str = "NF") -> pd.DataFrame:
    """Descriptive statistics of NF per group, in ecosystem style order."""
    rows = []
    for level in plots.ordered_levels(df[group_col], config.ECOSYSTEM_SHAPES):
        s = df.loc[df[group_col] == level, value_col].dropna()
        rows.append({
            "Group": level,
            "n": len(s),
            "Mean": round(s.mean(), 3),
            "Median": round(s.median(), 3),
            "SD": round(s.std(), 3),
            "Min": round(s.min(), 3),
            "Max": round(s.max(), 3),
        })
    return pd.DataFrame(rows)


def kruskal_wallis_groups(df: pd.DataFrame, group_col: str = "groupID",
                          value_col: str = "NF") -> pd.DataFrame:
    """Kruskal-Wallis H-test: does NF differ between groups?"""
    samples = [g[value_col].dropna() for _, g in df.groupby(group_col)]
    samples = [s for s in samples if len(s) > 0]

    if len(samples) < 2:
        return pd.DataFrame([{
            "n_groups": len(samples),
            "H_statistic": np.nan,
            "p_value": np.nan,
            "Significant_at_005": False,
        }])

    h_stat, p = stats.kruskal(*samples)
    return pd.DataFrame([{
        "n_groups": len(samples),
        "H_statistic": round(h_stat, 3),
        "p_value": p,
        "Significant_at_005": p < config.ALPHA,
    }])


def run(df: pd.DataFrame,
        shapes: dict = config.ECOSYSTEM_SHAPES,
        colors: dict = config.ECOSYSTEM_COLORS) -> dict:
    """Summaries + distribution figure."""
    results = {
        "group_summary": summarize_groups(df),
        "kruskal_wallis": kruskal_wallis_groups(df),
    }

    fig = plots.plot_distribution(df, shapes, colors)
    results["figure"] = fig
    results["figure_path"] = plots._save(fig, config.BOX_PDF)
    logger.info("Distribution plot written to %s", results["figure_path"])

    with pd.ExcelWriter(config.OUTPUT_DIR / "distribution.xlsx") as writer:
        results["group_summary"].to_excel(writer, sheet_name="group_summary", index=False)
        results["kruskal_wallis"].to_excel(writer, sheet_name="kruskal_wallis", index=False)

    return results
