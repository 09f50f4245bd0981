"""Pytest configuration and shared fixtures."""
import pytest
import sys
from pathlib import Path

import numpy as np
import pandas as pd
import arviz as az

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from nfix_statistics import config


@pytest.fixture(autouse=True)
def output_dir(tmp_path, monkeypatch):
    """Send every figure / workbook to a per-test directory."""
    out = tmp_path / "output"
    monkeypatch.setattr(config, "OUTPUT_DIR", out)
    return out


@pytest.fixture
def paired_df():
    """Synthetic Sand.csv-like table: 12 sites across 3 ecosystem types."""
    rng = np.random.default_rng(42)
    types = ["Cropland", "Grassland", "Wetland"]
    rows = []
    for site in range(12):
        eco = types[site % 3]
        site_shift = rng.normal(0, 0.5)
        for _ in range(6):
            c = rng.uniform(5, 40)
            rows.append({
                "SiteID": f"S{site:02d}",
                "C": c,
                "NF": 1.0 + 0.08 * c + site_shift + rng.normal(0, 0.3),
                "groupID": eco,
                "Type": eco,
            })
    return pd.DataFrame(rows)


@pytest.fixture
def observations_df():
    """Synthetic boxplot.csv-like table."""
    rng = np.random.default_rng(42)
    return pd.DataFrame({
        "groupID": np.repeat(config.ECOSYSTEM_TYPES, 15),
        "NF": np.concatenate([
            rng.lognormal(1.0, 0.4, 15),
            rng.lognormal(1.3, 0.4, 15),
            rng.lognormal(0.8, 0.4, 15),
            rng.lognormal(1.6, 0.4, 15),
        ]),
    })


@pytest.fixture
def forest_df():
    """Synthetic forest.csv: plot + 18 covariates, response in column 20."""
    rng = np.random.default_rng(42)
    n_plots, per_plot = 8, 5
    n = n_plots * per_plot
    data = {"plot": np.repeat([f"P{i}" for i in range(n_plots)], per_plot)}
    for name in config.JSDM_COVARIATES:
        data[name] = rng.normal(0, 1, n)
    df = pd.DataFrame(data)
    plot_effect = np.repeat(rng.normal(0, 0.5, n_plots), per_plot)
    df["NF"] = 2.0 + 0.8 * df["MAT"] - 0.5 * df["pH"] + plot_effect + rng.normal(0, 0.3, n)
    return df


@pytest.fixture
def stub_idata():
    """Factory for a posterior built from random arrays, shaped like a joint-model fit."""
    def make(design, chains=2, draws=50, seed=0):
        rng = np.random.default_rng(seed)
        n_coef = 1 + len(design["covariates"])
        n_plot = len(design["plot_levels"])
        return az.from_dict(
            posterior={
                "beta": rng.normal(0, 0.3, (chains, draws, n_coef)),
                "plot_effect": rng.normal(0, 0.4, (chains, draws, n_plot)),
            },
            coords={"coef": ["Intercept", *design["covariates"]],
                    "plot": design["plot_levels"]},
            dims={"beta": ["coef"], "plot_effect": ["plot"]},
        )
    return make
