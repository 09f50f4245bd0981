"""Tests for joint_model.py: design, variance partitioning, diagnostics.

Most tests use a stubbed posterior (ArviZ InferenceData built from arrays);
only the ``slow`` test runs the PyMC sampler.
"""
import pytest
import numpy as np
import pandas as pd

from nfix_statistics import config, joint_model


@pytest.fixture
def design(forest_df):
    return joint_model.build_design(forest_df)


# ─── Configure ───────────────────────────────────────────────────

class TestDesign:
    def test_response_taken_from_column_20(self, design):
        assert design["response"] == "NF"

    def test_formula_is_additive_over_all_covariates(self, design):
        assert design["formula"] == "~ " + " + ".join(config.JSDM_COVARIATES)
        assert list(design["X"].columns) == ["Intercept", *config.JSDM_COVARIATES]

    def test_covariates_standardised(self, design):
        X = design["X_scaled"]
        assert X.shape == (40, 19)
        np.testing.assert_allclose(X[:, 0], 1.0)
        np.testing.assert_allclose(X[:, 1:].mean(axis=0), 0.0, atol=1e-10)
        np.testing.assert_allclose(X[:, 1:].std(axis=0, ddof=1), 1.0)

    def test_one_random_level_per_plot(self, design):
        assert len(design["plot_levels"]) == 8
        assert design["plot_codes"].max() == 7

    def test_missing_plot_rejected(self, forest_df):
        forest_df.loc[3, "plot"] = np.nan
        with pytest.raises(ValueError, match="missing"):
            joint_model.build_design(forest_df)

    def test_missing_covariate_rejected(self, forest_df):
        with pytest.raises(ValueError, match="C_N"):
            joint_model.build_design(forest_df.drop(columns=["C_N"]))

    def test_missing_covariate_reported_at_full_width(self, forest_df):
        renamed = forest_df.rename(columns={"C_N": "CN_ratio"})
        assert renamed.shape[1] == 20
        with pytest.raises(ValueError, match="C_N"):
            joint_model.build_design(renamed)

    def test_response_index_out_of_range(self, forest_df):
        with pytest.raises(ValueError, match="outside"):
            joint_model.build_design(forest_df, response_index=25)


class TestSamplerSettings:
    def test_defaults_valid(self):
        joint_model.validate_sampler_settings()

    def test_adaptation_longer_than_transient(self):
        with pytest.raises(ValueError, match="Adaptation"):
            joint_model.validate_sampler_settings(transient=10, adapt_nf=20)

    def test_zero_samples(self):
        with pytest.raises(ValueError, match="samples"):
            joint_model.validate_sampler_settings(samples=0)


# ─── Variance partitioning ───────────────────────────────────────

class TestVariancePartitioning:
    def _inputs(self, n=40, p=18, S=30, seed=1):
        rng = np.random.default_rng(seed)
        X = rng.normal(0, 1, (n, p))
        beta = rng.normal(0, 1, (S, p))
        random_effect = rng.normal(0, 0.5, (S, n))
        return beta, X, random_effect

    def test_fractions_sum_to_one(self):
        beta, X, re = self._inputs()
        vp = joint_model.variance_partitioning(beta, X, re, config.JSDM_COVARIATES, "NF")
        assert list(vp.index) == [*config.JSDM_COVARIATES, config.JSDM_RANDOM_LABEL]
        assert vp["NF"].sum() == pytest.approx(1.0)

    def test_grouped_equals_sum_of_members(self):
        beta, X, re = self._inputs()
        vp = joint_model.variance_partitioning(beta, X, re, config.JSDM_COVARIATES, "NF")
        grouped = joint_model.group_variance_partitioning(vp)

        assert list(grouped.index) == [*config.JSDM_GROUP_NAMES, config.JSDM_RANDOM_LABEL]
        members = pd.Series(config.JSDM_GROUP_ASSIGNMENT, index=config.JSDM_COVARIATES)
        for k, name in enumerate(config.JSDM_GROUP_NAMES, start=1):
            expected = vp.loc[members[members == k].index, "NF"].sum()
            assert grouped.loc[name, "NF"] == pytest.approx(expected)
        assert grouped["NF"].sum() == pytest.approx(1.0)

    def test_no_random_variance(self):
        beta, X, _ = self._inputs()
        re = np.zeros((beta.shape[0], X.shape[0]))
        vp = joint_model.variance_partitioning(beta, X, re, config.JSDM_COVARIATES)
        assert vp.loc[config.JSDM_RANDOM_LABEL, "y"] == 0.0
        assert vp["y"].sum() == pytest.approx(1.0)

    def test_single_covariate_share(self):
        x = np.linspace(-1, 1, 21)[:, None]
        beta = np.array([[2.0]])
        re = np.tile(np.where(np.arange(21) % 2, 1.0, -1.0), (1, 1))
        vp = joint_model.variance_partitioning(beta, x, re, ["x"])
        var_f = np.var(2 * x[:, 0], ddof=1)
        var_r = np.var(re[0], ddof=1)
        assert vp.loc["x", "y"] == pytest.approx(var_f / (var_f + var_r))

    def test_assignment_length_mismatch(self):
        beta, X, re = self._inputs(p=3)
        vp = joint_model.variance_partitioning(beta, X, re, ["a", "b", "c"])
        with pytest.raises(ValueError, match="3 covariates"):
            joint_model.group_variance_partitioning(vp)

    def test_plot_has_one_bar_per_response(self):
        beta, X, re = self._inputs()
        vp = joint_model.variance_partitioning(beta, X, re, config.JSDM_COVARIATES, "NF")
        from nfix_statistics import plots
        fig = plots.plot_variance_partitioning(vp)
        ax = fig.axes[0]
        assert [t.get_text() for t in ax.get_xticklabels()] == ["NF"]
        assert len(ax.get_legend().get_texts()) == len(vp)


# ─── Diagnostics (stubbed posterior) ─────────────────────────────

class TestDiagnostics:
    def test_posterior_arrays_flatten_chains(self, design, stub_idata):
        idata = stub_idata(design, chains=2, draws=50)
        beta, plot_effect = joint_model.posterior_arrays(idata)
        assert beta.shape == (100, 19)
        assert plot_effect.shape == (100, 8)

    def test_ess_per_coefficient(self, design, stub_idata):
        ess = joint_model.effective_sample_size(stub_idata(design))
        assert list(ess.index) == ["Intercept", *config.JSDM_COVARIATES]
        assert list(ess.columns) == ["ess_bulk", "r_hat"]
        assert (ess["ess_bulk"] > 0).all()
        summary = joint_model.ess_summary(ess)
        assert summary["min"] <= summary["50%"] <= summary["max"]

    def test_coefficients_back_transformed(self, design, stub_idata):
        """Original-scale coefficients reproduce the standardised predictor."""
        idata = stub_idata(design)
        beta_scaled, _ = joint_model.posterior_arrays(idata)
        beta_orig = joint_model._original_scale_coefficients(beta_scaled, design)

        X_orig = design["X"].to_numpy(dtype=float)
        lhs = X_orig @ beta_orig.T
        rhs = design["y_mean"] + design["y_sd"] * (design["X_scaled"] @ beta_scaled.T)
        np.testing.assert_allclose(lhs, rhs, rtol=1e-8, atol=1e-8)

    def test_coefficient_table(self, design, stub_idata):
        coefs = joint_model.posterior_mean_coefficients(stub_idata(design), design)
        assert list(coefs.index) == ["Intercept", *config.JSDM_COVARIATES]
        assert (coefs["hdi_low"] <= coefs["mean"]).all()
        assert (coefs["mean"] <= coefs["hdi_high"]).all()
        assert coefs["support_positive"].between(0, 1).all()

    def test_zero_posterior_predicts_response_mean(self, design, stub_idata):
        idata = stub_idata(design)
        idata.posterior["beta"].values[:] = 0.0
        idata.posterior["plot_effect"].values[:] = 0.0
        y_pred = joint_model.predict_posterior_mean(idata, design)
        np.testing.assert_allclose(y_pred, design["y_mean"])

    def test_evaluate_fit(self):
        y = np.array([1.0, 2.0, 3.0, 4.0])
        perfect = joint_model.evaluate_fit(y, y)
        assert perfect["RMSE"] == pytest.approx(0.0)
        assert perfect["R2"] == pytest.approx(1.0)
        off = joint_model.evaluate_fit(y, y + 1)
        assert off["MAE"] == pytest.approx(1.0)
        assert off["n"] == 4


# ─── Orchestration ───────────────────────────────────────────────

def test_run_with_stubbed_sampler(forest_df, output_dir, monkeypatch, capsys, stub_idata):
    def fake_sample(model, **kwargs):
        return stub_idata(joint_model.build_design(forest_df), chains=4, draws=40)

    monkeypatch.setattr(joint_model, "sample_posterior", fake_sample)
    result = joint_model.run(forest_df)

    out = capsys.readouterr().out
    assert "Model fit" in out
    assert "Grouped variance partitioning" in out
    assert result["variance_partitioning"]["NF"].sum() == pytest.approx(1.0)
    assert len(result["predictions"]) == len(forest_df)
    assert (output_dir / "joint_model.xlsx").exists()
    assert (output_dir / config.VP_COVARIATES_PDF).exists()
    assert (output_dir / config.VP_GROUPS_PDF).exists()


@pytest.mark.slow
def test_sampler_recovers_structure(forest_df):
    design = joint_model.build_design(forest_df)
    model = joint_model.build_model(design)
    idata = joint_model.sample_posterior(model, samples=100, thin=1, transient=200,
                                         chains=2, cores=1, seed=config.SEED)

    assert idata.posterior.sizes["chain"] == 2
    assert idata.posterior.sizes["draw"] == 100

    coefs = joint_model.posterior_mean_coefficients(idata, design)
    assert coefs.loc["MAT", "mean"] > 0
    assert coefs.loc["pH", "mean"] < 0

    fit = joint_model.evaluate_fit(design["y"], joint_model.predict_posterior_mean(idata, design))
    assert fit["R2"] > 0.5
