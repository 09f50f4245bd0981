"""
Orchestrator: run every analysis stage and write a text report.

Usage:
    python -m nfix_statistics.run_all
"""

import logging
import sys
import time
from pathlib import Path

import pandas as pd

# Ensure project root is on path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from nfix_statistics import config
from nfix_statistics import (
    site_map,
    distribution,
    mixed_effects,
    variable_importance,
    joint_model,
)


def _loaded(name: str, table: pd.DataFrame) -> pd.DataFrame:
    print(f"  {name}: {table.shape[0]} rows x {table.shape[1]} columns")
    return table


def generate_text_report(all_results: dict) -> str:
    """Human-readable summary of every stage."""
    lines = [
        "=" * 80,
        "SOIL NITROGEN-FIXATION ANALYSIS REPORT",
        "=" * 80,
        "",
    ]

    # 1. Site map
    lines.append("1. SAMPLING SITES")
    lines.append("-" * 60)
    sm = all_results.get("site_map", {})
    if "site_counts" in sm:
        lines.append(sm["site_counts"].to_string(index=False))
        lines.append(f"Figure: {sm['figure_path']}")
    lines.append("")

    # 2. Distribution
    lines.append("2. NF DISTRIBUTION BY GROUP")
    lines.append("-" * 60)
    dist = all_results.get("distribution", {})
    if "group_summary" in dist:
        lines.append(dist["group_summary"].to_string(index=False))
    if "kruskal_wallis" in dist:
        lines.append("Kruskal-Wallis across groups:")
        lines.append(dist["kruskal_wallis"].to_string(index=False))
    lines.append("")

    # 3. Mixed model
    lines.append("3. MIXED-EFFECTS REGRESSION (NF ~ C, random intercept: SiteID)")
    lines.append("-" * 60)
    me = all_results.get("mixed_effects", {})
    if "coefficients" in me:
        lines.append(me["coefficients"].to_string(index=False))
    if "summary" in me:
        lines.append("Pooled fit:")
        lines.append(me["summary"].to_string(index=False))
    lines.append("")

    # 4. Random forest
    lines.append("4. RANDOM FOREST VARIABLE IMPORTANCE")
    lines.append("-" * 60)
    vi = all_results.get("variable_importance", {})
    if "importance" in vi:
        lines.append(vi["importance"].to_string())
    lines.append("")

    # 5. Joint model
    lines.append("5. JOINT MODEL: FIT AND VARIANCE PARTITIONING")
    lines.append("-" * 60)
    jm = all_results.get("joint_model", {})
    if "fit" in jm:
        lines.append("  ".join(f"{k}={v:.4f}" if isinstance(v, float) else f"{k}={v}"
                               for k, v in jm["fit"].items()))
    if "ess" in jm:
        lines.append("ESS (beta):")
        lines.append(joint_model.ess_summary(jm["ess"]).to_string())
    if "coefficients" in jm:
        lines.append("Posterior mean coefficients:")
        lines.append(jm["coefficients"].to_string())
    if "variance_groups" in jm:
        lines.append("Grouped variance partitioning:")
        lines.append(jm["variance_groups"].to_string())
    lines.append("")

    return "\n".join(lines)


def main():
    logging.basicConfig(level=logging.INFO,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    t0 = time.time()
    config.OUTPUT_DIR.mkdir(parents=True, exist_ok=True)

    # Each stage reads its own input; a failure leaves earlier outputs in place.
    print("\n--- Rendering site map ---")
    sites = _loaded("sites", site_map.load_sites(config.MAP_CSV))
    world = _loaded("world", site_map.load_world_polygons(config.WORLD_CSV))
    map_results = site_map.run(sites, world,
                               config.ECOSYSTEM_SHAPES, config.ECOSYSTEM_COLORS)

    print("--- Rendering NF distribution plot ---")
    observations = _loaded("observations", distribution.load_observations(config.BOXPLOT_CSV))
    dist_results = distribution.run(observations,
                                    config.ECOSYSTEM_SHAPES, config.ECOSYSTEM_COLORS)

    print("--- Fitting mixed-effects regression ---")
    paired = _loaded("paired", mixed_effects.load_paired_measurements(config.SAND_CSV))
    me_results = mixed_effects.run(paired,
                                   config.ECOSYSTEM_SHAPES, config.ECOSYSTEM_COLORS)

    print("--- Ranking variable importance ---")
    predictors = _loaded("predictors",
                         variable_importance.load_predictor_table(config.MYDATA_CSV))
    vi_results = variable_importance.run(predictors)

    print("--- Fitting joint model ---")
    forest = _loaded("forest", joint_model.load_forest_table(config.FOREST_CSV))
    jm_results = joint_model.run(forest)

    all_results = {
        "site_map": map_results,
        "distribution": dist_results,
        "mixed_effects": me_results,
        "variable_importance": vi_results,
        "joint_model": jm_results,
    }

    print("--- Generating report ---")
    report = generate_text_report(all_results)
    report_path = config.OUTPUT_DIR / config.REPORT_TXT
    report_path.write_text(report, encoding="utf-8")
    print(f"\nReport saved to: {report_path}")

    elapsed = time.time() - t0
    print(f"\nAll analyses completed in {elapsed:.1f}s")
    print(f"Output directory: {config.OUTPUT_DIR}")

    # Print report to console (handle Windows encoding)
    try:
        print("\n" + report)
    except UnicodeEncodeError:
        print("\n" + report.encode("ascii", errors="replace").decode("ascii"))


if __name__ == "__main__":
    main()
