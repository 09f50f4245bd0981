"""
Hierarchical Bayesian model of the forest-plot response (HMSC-style).

Steps, each needing the output of the previous one:
1. configure  – response vector, plot-level random level, 18-covariate
                design from an explicit additive formula, Gaussian likelihood
2. fit        – NUTS MCMC (PyMC), 4 chains in parallel
3. partition  – share of explained variance per covariate and per covariate
                group, plus the plot-level random effect
4. diagnose   – ESS / R-hat, posterior mean coefficients, posterior mean
                predictions and fit metrics

Covariates and response are standardised before fitting (as HMSC does by
default); coefficients and predictions are reported back on original units.
"""

import logging

import numpy as np
import pandas as pd
import patsy
import pymc as pm
import arviz as az
from sklearn.metrics import mean_squared_error, mean_absolute_error, r2_score

from . import config, plots

logger = logging.getLogger(__name__)

INTERCEPT = "Intercept"


# ──────────────────────────────────────────────────────────────────
# 1. Configure
# ──────────────────────────────────────────────────────────────────
def load_forest_table(path=config.FOREST_CSV) -> pd.DataFrame:
    return pd.read_csv(path)


def additive_formula(covariates: list) -> str:
    return "~ " + " + ".join(covariates)


def _standardise(values: pd.DataFrame):
    mean = values.mean()
    sd = values.std(ddof=1).replace(0, 1.0).fillna(1.0)
    return (values - mean) / sd, mean, sd


def build_design(df: pd.DataFrame,
                 covariates: list = config.JSDM_COVARIATES,
                 plot_col: str = config.JSDM_PLOT_COL,
                 response_index: int = config.JSDM_RESPONSE_INDEX) -> dict:
    """Response, random-level codes and covariate design for the joint model."""
    missing = [c for c in [plot_col, *covariates] if c not in df.columns]
    if missing:
        raise ValueError(f"Missing columns for joint model: {missing}")
    if not 0 <= response_index < df.shape[1]:
        raise ValueError(
            f"Response column index {response_index} outside table with {df.shape[1]} columns")
    response = df.columns[response_index]

    n_missing = int(df[plot_col].isna().sum())
    if n_missing:
        raise ValueError(f"Random-level column '{plot_col}' has {n_missing} missing values")

    formula = additive_formula(covariates)
    X = patsy.dmatrix(formula, df, return_type="dataframe", NA_action="raise")
    covariate_block, x_mean, x_sd = _standardise(X[covariates])
    X_scaled = np.column_stack([np.ones(len(df)), covariate_block.to_numpy(dtype=float)])

    y = df[response].to_numpy(dtype=float)
    y_mean = float(y.mean())
    y_sd = float(y.std(ddof=1)) if len(y) > 1 and y.std(ddof=1) > 0 else 1.0

    plot_codes, plot_levels = pd.factorize(df[plot_col], sort=True)

    return {
        "response": response,
        "formula": formula,
        "covariates": list(covariates),
        "X": X,
        "X_scaled": X_scaled,
        "x_mean": x_mean,
        "x_sd": x_sd,
        "y": y,
        "y_scaled": (y - y_mean) / y_sd,
        "y_mean": y_mean,
        "y_sd": y_sd,
        "plot_codes": plot_codes,
        "plot_levels": [str(level) for level in plot_levels],
    }


def validate_sampler_settings(samples: int = config.MCMC_SAMPLES,
                              thin: int = config.MCMC_THIN,
                              transient: int = config.MCMC_TRANSIENT,
                              adapt_nf: int = config.MCMC_ADAPT_NF,
                              chains: int = config.MCMC_CHAINS,
                              cores: int = config.MCMC_CORES):
    """Reject sampler settings that cannot produce a usable chain."""
    for name, value in [("samples", samples), ("thin", thin),
                        ("chains", chains), ("cores", cores)]:
        if int(value) < 1:
            raise ValueError(f"MCMC {name} must be >= 1, got {value}")
    if transient < 0 or adapt_nf < 0:
        raise ValueError("MCMC transient and adaptation lengths must be non-negative")
    # Adaptation happens inside the transient phase
    if adapt_nf > transient:
        raise ValueError(
            f"Adaptation window ({adapt_nf}) longer than transient phase ({transient})")


def build_model(design: dict) -> pm.Model:
    """Gaussian linear model with a non-centred random intercept per plot."""
    coords = {
        "coef": [INTERCEPT, *design["covariates"]],
        "plot": design["plot_levels"],
        "obs": np.arange(len(design["y"])),
    }
    with pm.Model(coords=coords) as model:
        beta = pm.Normal("beta", mu=0, sigma=1, dims="coef")

        sigma_plot = pm.HalfNormal("sigma_plot", sigma=1)
        plot_offset = pm.Normal("plot_offset", mu=0, sigma=1, dims="plot")
        plot_effect = pm.Deterministic("plot_effect", sigma_plot * plot_offset, dims="plot")

        sigma = pm.HalfNormal("sigma", sigma=1)
        mu = pm.math.dot(design["X_scaled"], beta) + plot_effect[design["plot_codes"]]
        pm.Normal("y_obs", mu=mu, sigma=sigma, observed=design["y_scaled"], dims="obs")
    return model


# ──────────────────────────────────────────────────────────────────
# 2. Fit
# ──────────────────────────────────────────────────────────────────
def sample_posterior(model: pm.Model,
                     samples: int = config.MCMC_SAMPLES,
                     thin: int = config.MCMC_THIN,
                     transient: int = config.MCMC_TRANSIENT,
                     chains: int = config.MCMC_CHAINS,
                     cores: int = config.MCMC_CORES,
                     seed: int = config.SEED):
    """Run NUTS and return thinned InferenceData (``samples`` draws per chain)."""
    logger.info("Sampling: %d chains x %d draws (thin=%d, tune=%d, cores=%d)",
                chains, samples, thin, transient, cores)
    with model:
        idata = pm.sample(
            draws=samples * thin,
            tune=transient,
            chains=chains,
            cores=cores,
            random_seed=seed,
            progressbar=False,
            return_inferencedata=True,
        )
    if thin > 1:
        idata = idata.sel(draw=slice(None, None, thin))
    return idata


def posterior_arrays(idata):
    """Flatten chains: beta (S, n_coef) and plot_effect (S, n_plot)."""
    post = idata.posterior
    beta = post["beta"].stack(sample=("chain", "draw")).transpose("sample", "coef").values
    plot_effect = (post["plot_effect"].stack(sample=("chain", "draw"))
                   .transpose("sample", "plot").values)
    return beta, plot_effect


# ──────────────────────────────────────────────────────────────────
# 3. Variance partitioning
# ──────────────────────────────────────────────────────────────────
def variance_partitioning(beta: np.ndarray, X: np.ndarray, random_effect: np.ndarray,
                          covariates: list, response: str = "y",
                          random_label: str = config.JSDM_RANDOM_LABEL) -> pd.DataFrame:
    """Posterior-mean share of explained variance per covariate and random level.

    beta:          (S, p) covariate coefficients, intercept excluded
    X:             (n, p) covariate design on the scale beta refers to
    random_effect: (S, n) random-level contribution per observation

    For each draw the fixed predictor f = X beta is split additively:
    covariate j gets beta_j * cov(x_j, f), which sums to var(f) over j.
    Fixed and random parts are weighted by var(f) and var(random effect),
    so every draw (and hence the mean) sums to 1.
    """
    beta = np.atleast_2d(np.asarray(beta, dtype=float))
    X = np.asarray(X, dtype=float)
    random_effect = np.atleast_2d(np.asarray(random_effect, dtype=float))
    n = X.shape[0]

    f = X @ beta.T                                   # (n, S)
    f_centred = f - f.mean(axis=0)
    X_centred = X - X.mean(axis=0)
    cov_xf = X_centred.T @ f_centred / (n - 1)       # (p, S)
    contrib = beta.T * cov_xf                        # (p, S)

    var_f = f.var(axis=0, ddof=1)
    var_r = random_effect.var(axis=1, ddof=1)
    total = var_f + var_r

    fixed_share = np.divide(var_f, total, out=np.zeros_like(total), where=total > 0)
    random_share = np.divide(var_r, total, out=np.zeros_like(total), where=total > 0)
    within_fixed = np.divide(contrib, var_f, out=np.zeros_like(contrib), where=var_f > 0)

    fractions = np.vstack([within_fixed * fixed_share, random_share])
    return pd.DataFrame({response: fractions.mean(axis=1)},
                        index=[*covariates, random_label])


def group_variance_partitioning(vp: pd.DataFrame,
                                assignment: list = config.JSDM_GROUP_ASSIGNMENT,
                                group_names: list = config.JSDM_GROUP_NAMES,
                                random_label: str = config.JSDM_RANDOM_LABEL) -> pd.DataFrame:
    """Sum covariate fractions into groups (1-based ``assignment`` per covariate)."""
    covariate_rows = vp.drop(index=random_label)
    if len(assignment) != len(covariate_rows):
        raise ValueError(
            f"Group assignment has {len(assignment)} entries for {len(covariate_rows)} covariates")
    if min(assignment) < 1 or max(assignment) > len(group_names):
        raise ValueError(f"Group indices must lie in 1..{len(group_names)}")

    labels = [group_names[g - 1] for g in assignment]
    grouped = covariate_rows.groupby(labels, sort=False).sum().reindex(group_names, fill_value=0.0)
    return pd.concat([grouped, vp.loc[[random_label]]])


# ──────────────────────────────────────────────────────────────────
# 4. Diagnostics
# ──────────────────────────────────────────────────────────────────
def effective_sample_size(idata, var_name: str = "beta") -> pd.DataFrame:
    """Per-coefficient bulk ESS and R-hat."""
    ess = az.ess(idata, var_names=[var_name])[var_name].to_series()
    rhat = az.rhat(idata, var_names=[var_name])[var_name].to_series()
    table = pd.DataFrame({"ess_bulk": ess, "r_hat": rhat})
    table.index.name = "coef"
    return table


def ess_summary(ess: pd.DataFrame) -> pd.Series:
    return ess["ess_bulk"].describe()[["min", "25%", "50%", "mean", "75%", "max"]]


def _original_scale_coefficients(beta_scaled: np.ndarray, design: dict) -> np.ndarray:
    """Back-transform (S, 1 + p) standardised coefficients to original units."""
    x_mean = design["x_mean"][design["covariates"]].to_numpy(dtype=float)
    x_sd = design["x_sd"][design["covariates"]].to_numpy(dtype=float)
    slopes = beta_scaled[:, 1:] * design["y_sd"] / x_sd
    intercept = design["y_mean"] + design["y_sd"] * (
        beta_scaled[:, 0] - (beta_scaled[:, 1:] * x_mean / x_sd).sum(axis=1))
    return np.column_stack([intercept, slopes])


def posterior_mean_coefficients(idata, design: dict, hdi_prob: float = 0.95) -> pd.DataFrame:
    """Posterior mean, SD, HDI and sign support of each coefficient (original units)."""
    beta_scaled, _ = posterior_arrays(idata)
    beta = _original_scale_coefficients(beta_scaled, design)

    rows = []
    for j, name in enumerate([INTERCEPT, *design["covariates"]]):
        draws = beta[:, j]
        low, high = az.hdi(draws, hdi_prob=hdi_prob)
        rows.append({
            "coef": name,
            "mean": draws.mean(),
            "sd": draws.std(ddof=1) if draws.size > 1 else 0.0,
            "hdi_low": low,
            "hdi_high": high,
            "support_positive": (draws > 0).mean(),
            "mean_standardised": beta_scaled[:, j].mean(),
        })
    return pd.DataFrame(rows).set_index("coef")


def predict_posterior_mean(idata, design: dict) -> np.ndarray:
    """Posterior mean of the linear predictor incl. plot effect, original units."""
    beta, plot_effect = posterior_arrays(idata)
    mu = design["X_scaled"] @ beta.T + plot_effect[:, design["plot_codes"]].T
    return design["y_mean"] + design["y_sd"] * mu.mean(axis=1)


def evaluate_fit(y_true, y_pred) -> dict:
    return {
        "RMSE": float(np.sqrt(mean_squared_error(y_true, y_pred))),
        "R2": float(r2_score(y_true, y_pred)),
        "MAE": float(mean_absolute_error(y_true, y_pred)),
        "n": int(len(y_true)),
    }


# ──────────────────────────────────────────────────────────────────
# Orchestration
# ──────────────────────────────────────────────────────────────────
def run(df: pd.DataFrame) -> dict:
    """Configure -> fit -> partition -> diagnose. Any failure aborts the chain."""
    design = build_design(df)
    validate_sampler_settings()
    logger.info("Joint model: response=%s, %d covariates, %d plots, %d rows",
                design["response"], len(design["covariates"]),
                len(design["plot_levels"]), len(design["y"]))

    model = build_model(design)
    idata = sample_posterior(model)

    beta, plot_effect = posterior_arrays(idata)
    vp = variance_partitioning(
        beta[:, 1:], design["X_scaled"][:, 1:],
        plot_effect[:, design["plot_codes"]],
        design["covariates"], design["response"],
    )
    vp_grouped = group_variance_partitioning(vp)

    fig_vp = plots.plot_variance_partitioning(vp, "Variance partitioning: covariates")
    fig_groups = plots.plot_variance_partitioning(vp_grouped, "Variance partitioning: groups")
    vp_paths = [plots._save(fig_vp, config.VP_COVARIATES_PDF),
                plots._save(fig_groups, config.VP_GROUPS_PDF)]

    ess = effective_sample_size(idata)
    coefs = posterior_mean_coefficients(idata, design)
    y_pred = predict_posterior_mean(idata, design)
    fit = evaluate_fit(design["y"], y_pred)

    print("\nEffective sample size (beta):")
    print(ess_summary(ess).to_string(float_format=lambda v: f"{v:.1f}"))
    print("\nModel fit (posterior mean prediction vs observed):")
    for metric, value in fit.items():
        print(f"  {metric}: {value:.4f}" if isinstance(value, float) else f"  {metric}: {value}")
    print("\nGrouped variance partitioning:")
    print(vp_grouped.to_string(float_format=lambda v: f"{v:.4f}"))

    predictions = pd.DataFrame({
        config.JSDM_PLOT_COL: df[config.JSDM_PLOT_COL].to_numpy(),
        "observed": design["y"],
        "predicted": y_pred,
    })

    config.OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    with pd.ExcelWriter(config.OUTPUT_DIR / "joint_model.xlsx") as writer:
        vp.to_excel(writer, sheet_name="variance_partitioning")
        vp_grouped.to_excel(writer, sheet_name="variance_groups")
        ess.to_excel(writer, sheet_name="ess")
        coefs.to_excel(writer, sheet_name="coefficients")
        predictions.to_excel(writer, sheet_name="predictions", index=False)
        pd.DataFrame([fit]).to_excel(writer, sheet_name="fit", index=False)

    return {
        "design": design,
        "idata": idata,
        "variance_partitioning": vp,
        "variance_groups": vp_grouped,
        "vp_figure_paths": vp_paths,
        "ess": ess,
        "coefficients": coefs,
        "predictions": predictions,
        "fit": fit,
    }
