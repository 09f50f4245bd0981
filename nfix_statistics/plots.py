"""
Visualization module: every figure produced by the pipeline.

Generates:
1. Site map over world polygons            (map_clean.pdf)
2. Half-violin / jitter / boxplot of NF    (box_new.pdf)
3. Faceted C-NF scatter with pooled line   (Sand3.pdf)
4. Variance partitioning bars              (vp_covariates.pdf, vp_groups.pdf)

Style mappings (shapes, colors) are always passed in by the caller.
"""

from pathlib import Path

import numpy as np
import pandas as pd
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import seaborn as sns

from . import config

# Global plot style
plt.rcParams.update({
    "figure.dpi": 150,
    "savefig.dpi": config.PDF_DPI,
    "savefig.bbox": "tight",
    "pdf.fonttype": 42,
    "font.size": 9,
    "axes.titlesize": 10,
    "axes.labelsize": 10,
})

_DEFAULT_MARKER = "o"
_DEFAULT_COLOR = "#7F7F7F"


def _save(fig, filename: str) -> Path:
    """Save figure to the output directory and release it."""
    config.OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    path = config.OUTPUT_DIR / filename
    fig.savefig(path)
    plt.close(fig)
    return path


def ordered_levels(values, mapping: dict) -> list:
    """Levels present in ``values``: mapping order first, unknown labels sorted after."""
    present = set(pd.Series(values).dropna().unique())
    known = [level for level in mapping if level in present]
    unknown = sorted((v for v in present if v not in mapping), key=str)
    return known + unknown


# ──────────────────────────────────────────────────────────────────
# 1. Site map
# ──────────────────────────────────────────────────────────────────
def plot_site_map(world, sites, shapes: dict, colors: dict,
                  type_col: str = "Type", figsize=config.MAP_FIGSIZE):
    """Sampling sites on filled world polygons, one marker layer per ecosystem type."""
    fig, ax = plt.subplots(figsize=figsize)

    if world is not None and not world.empty:
        world.plot(ax=ax, color="#D9D9D9", edgecolor="white", linewidth=0.2)

    for eco in ordered_levels(sites[type_col], shapes):
        sub = sites[sites[type_col] == eco]
        ax.scatter(
            sub.geometry.x, sub.geometry.y,
            marker=shapes.get(eco, _DEFAULT_MARKER),
            color=colors.get(eco, _DEFAULT_COLOR),
            s=22, edgecolors="none", alpha=0.9, label=eco, zorder=3,
        )

    ax.set_aspect("equal")
    ax.set_xticks([])
    ax.set_yticks([])
    ax.set_xlabel("")
    ax.set_ylabel("")
    for spine in ax.spines.values():
        spine.set_visible(False)
    ax.legend(loc="lower left", frameon=False, fontsize=8, markerscale=1.2)
    fig.tight_layout()
    return fig


# ──────────────────────────────────────────────────────────────────
# 2. Raincloud-style distribution plot
# ──────────────────────────────────────────────────────────────────
def plot_distribution(df: pd.DataFrame, shapes: dict, colors: dict,
                      group_col: str = "groupID", value_col: str = "NF",
                      figsize=config.BOX_FIGSIZE, seed: int = config.SEED):
    """Half-violin nudged off each category, jittered points below, narrow boxplot.

    Categories sit on the vertical axis. No legend.
    """
    rng = np.random.default_rng(seed)
    levels = ordered_levels(df[group_col], shapes)

    fig, ax = plt.subplots(figsize=figsize)

    for pos, level in enumerate(levels, start=1):
        values = df.loc[df[group_col] == level, value_col].dropna().to_numpy(dtype=float)
        if values.size == 0:
            continue
        color = colors.get(level, _DEFAULT_COLOR)

        # Half violin: keep only the side above the nudged baseline
        if values.size > 1 and np.ptp(values) > 0:
            base = pos + 0.2
            parts = ax.violinplot(values, positions=[base], orientation="horizontal",
                                  widths=0.7, showextrema=False)
            for body in parts["bodies"]:
                verts = body.get_paths()[0].vertices
                verts[:, 1] = np.clip(verts[:, 1], base, np.inf)
                body.set_facecolor(color)
                body.set_edgecolor("none")
                body.set_alpha(0.6)

        jitter = rng.uniform(-0.06, 0.06, values.size)
        ax.scatter(values, pos - 0.15 + jitter,
                   marker=shapes.get(level, _DEFAULT_MARKER), color=color,
                   s=10, alpha=0.8, edgecolors="none", zorder=2)

        ax.boxplot(values, positions=[pos], orientation="horizontal", widths=0.1,
                   showfliers=False, patch_artist=True,
                   boxprops={"facecolor": "white", "edgecolor": color},
                   medianprops={"color": color},
                   whiskerprops={"color": color},
                   capprops={"color": color})

    ax.set_yticks(range(1, len(levels) + 1))
    ax.set_yticklabels(levels)
    ax.set_ylim(0.5, len(levels) + 0.9)
    ax.set_xlabel(value_col)
    ax.set_ylabel("")
    ax.grid(True, alpha=0.3, axis="x")
    fig.tight_layout()
    return fig


# ──────────────────────────────────────────────────────────────────
# 3. Faceted regression plot
# ──────────────────────────────────────────────────────────────────
def plot_regression_facets(df: pd.DataFrame, summary: pd.DataFrame,
                           shapes: dict, colors: dict,
                           x_col: str = "C", y_col: str = "NF",
                           group_col: str = "groupID", facet_col: str = "Type",
                           figsize=config.REGRESSION_FIGSIZE):
    """One panel per ecosystem type; every panel shows the same pooled fit line.

    The line is dashed when the fit is not significant.
    """
    row = summary.iloc[0]
    intercept, slope = row["Intercept"], row[x_col]
    linestyle = "-" if row["significance"] == "significant" else "--"

    facets = ordered_levels(df[facet_col], shapes)
    fig, axes = plt.subplots(1, max(len(facets), 1), figsize=figsize,
                             sharey=True, squeeze=False)
    axes = axes.ravel()

    x_line = np.linspace(df[x_col].min(), df[x_col].max(), 100)
    y_line = intercept + slope * x_line

    for ax, facet in zip(axes, facets):
        sub = df[df[facet_col] == facet]
        for group in ordered_levels(sub[group_col], shapes):
            pts = sub[sub[group_col] == group]
            ax.scatter(pts[x_col], pts[y_col],
                       marker=shapes.get(group, _DEFAULT_MARKER),
                       color=colors.get(group, _DEFAULT_COLOR),
                       s=16, alpha=0.8, edgecolors="none")
        ax.plot(x_line, y_line, color="black", lw=1.2, ls=linestyle)
        ax.set_title(facet)
        ax.set_xlabel(x_col)
        ax.grid(True, alpha=0.3)

    axes[0].set_ylabel(y_col)
    axes[0].text(0.03, 0.97, f"p = {row['p_value']:.3g}",
                 transform=axes[0].transAxes, va="top", ha="left", fontsize=8)
    fig.tight_layout()
    return fig


# ──────────────────────────────────────────────────────────────────
# 4. Variance partitioning
# ──────────────────────────────────────────────────────────────────
def plot_variance_partitioning(vp: pd.DataFrame, title: str = "Variance partitioning",
                               figsize=(5.5, 5.0)):
    """Stacked bar per response; legend lists the mean percentage of each component."""
    fig, ax = plt.subplots(figsize=figsize)
    palette = sns.color_palette("tab20", n_colors=len(vp.index))

    x = np.arange(len(vp.columns))
    pos_bottom = np.zeros(len(vp.columns))
    neg_bottom = np.zeros(len(vp.columns))
    for color, (name, fractions) in zip(palette, vp.iterrows()):
        values = fractions.to_numpy(dtype=float)
        bottom = np.where(values >= 0, pos_bottom, neg_bottom)
        ax.bar(x, values, bottom=bottom, color=color, width=0.6,
               label=f"{name} (mean = {fractions.mean() * 100:.1f})")
        pos_bottom += np.clip(values, 0, None)
        neg_bottom += np.clip(values, None, 0)

    ax.set_xticks(x)
    ax.set_xticklabels(vp.columns)
    ax.set_ylabel("Variance proportion")
    ax.set_title(title)
    ax.axhline(0, color="black", lw=0.8)
    ax.legend(bbox_to_anchor=(1.02, 1), loc="upper left", fontsize=7)
    fig.tight_layout()
    return fig
