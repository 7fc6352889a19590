"""
Tests for the BKMR kernel, posterior summaries and MCMC fit.

The summary tests use hand-built posteriors (arviz.from_dict) so they run
without sampling; only TestKernelMachineModel runs PyMC.

Run with: pytest tests/test_bkmr.py -v
"""
import warnings

import arviz as az
import numpy as np
import pytest

from exposure_ml.bkmr import (
    BKMRFit,
    convergence_diagnostics,
    overall_risk_summaries,
    posterior_h,
    predict_h,
    predictor_response_univariate,
    single_variable_risks,
)
from exposure_ml.data_loader import prepare_dataset
from exposure_ml.errors import ConvergenceWarning
from exposure_ml.models import KernelMachineModel
from exposure_ml.optimization import fast_weighted_sqdist, gaussian_kernel


def fake_posterior(n_chains=1, n_draws=40, M=3, P=2, seed=0, spread=0.05, chain_offset=0.0, diverging=0):
    rng = np.random.RandomState(seed)
    offsets = (np.arange(n_chains) * chain_offset)[:, None]
    beta = rng.normal(0.0, spread, size=(n_chains, n_draws, P)) + np.array([1.0, 0.5])[:P]
    r = np.abs(rng.normal(0.5, spread, size=(n_chains, n_draws, M))) + offsets[..., None]
    sigsq = np.abs(rng.normal(1.0, spread, size=(n_chains, n_draws)))
    lam = np.abs(rng.normal(5.0, spread, size=(n_chains, n_draws))) + offsets
    div = np.zeros((n_chains, n_draws), dtype=bool)
    div.flat[:diverging] = True
    return az.from_dict(
        posterior={"beta": beta, "r": r, "sigsq": sigsq, "lambda": lam},
        sample_stats={"diverging": div},
    )


@pytest.fixture
def fake_fit():
    rng = np.random.RandomState(1)
    n, M = 30, 3
    Z = rng.normal(size=(n, M))
    X = np.column_stack([np.ones(n), rng.normal(size=n)])
    y = X @ np.array([1.0, 0.5]) + np.sin(Z[:, 0]) + rng.normal(0, 0.3, size=n)
    return BKMRFit(
        idata=fake_posterior(),
        y=y,
        X=X,
        Z=Z,
        exposures=("a", "b", "c"),
        fixed_effects=("intercept", "age"),
        z_center=np.array([10.0, 20.0, 30.0]),
        z_scale=np.array([2.0, 2.0, 2.0]),
    )


class TestKernel:
    """Tests for the compiled Gaussian kernel."""

    def test_matches_numpy(self):
        rng = np.random.RandomState(0)
        Z1, Z2, r = rng.normal(size=(5, 3)), rng.normal(size=(4, 3)), np.array([0.5, 1.0, 2.0])
        expected = np.exp(-(((Z1[:, None, :] - Z2[None, :, :]) ** 2) * r).sum(axis=2))
        assert np.allclose(gaussian_kernel(Z1, Z2, r), expected)

    def test_symmetric_unit_diagonal(self):
        Z = np.random.RandomState(1).normal(size=(6, 2))
        K = gaussian_kernel(Z, Z, np.array([1.0, 1.0]))
        assert np.allclose(np.diag(K), 1.0)
        assert np.allclose(K, K.T)

    def test_zero_weights_ignore_exposures(self):
        Z = np.random.RandomState(2).normal(size=(4, 2))
        assert np.allclose(gaussian_kernel(Z, Z, np.zeros(2)), 1.0)
        assert np.allclose(fast_weighted_sqdist(Z, Z, np.zeros(2)), 0.0)


class TestPosteriorSummaries:
    """Tests for h(z) summaries given a fixed posterior."""

    def test_approx_matches_closed_form(self, fake_fit):
        means = fake_fit.posterior_means()
        Znew = fake_fit.Z[:4]
        mean, cov = posterior_h(fake_fit, Znew, method="approx")

        K = gaussian_kernel(fake_fit.Z, fake_fit.Z, means["r"])
        Kn = gaussian_kernel(Znew, fake_fit.Z, means["r"])
        V = np.eye(len(fake_fit.y)) + means["lambda"] * K
        expected = means["lambda"] * Kn @ np.linalg.solve(V, fake_fit.y - fake_fit.X @ means["beta"])

        assert np.allclose(mean, expected)
        assert np.allclose(predict_h(fake_fit, Znew), expected)
        assert cov.shape == (4, 4)
        assert np.all(np.diag(cov) >= -1e-10)

    def test_exact_close_to_approx(self, fake_fit):
        Znew = fake_fit.Z[:3]
        m_approx, _ = posterior_h(fake_fit, Znew, method="approx")
        m_exact, c_exact = posterior_h(fake_fit, Znew, method="exact", n_samples=10)
        assert np.allclose(m_approx, m_exact, atol=0.1)
        assert c_exact.shape == (3, 3)

    def test_unknown_method(self, fake_fit):
        with pytest.raises(ValueError):
            posterior_h(fake_fit, fake_fit.Z[:2], method="mcmc")

    def test_univariate_curves(self, fake_fit):
        curves = predictor_response_univariate(fake_fit, ngrid=10)
        assert len(curves) == 30
        assert list(dict.fromkeys(curves["variable"])) == ["a", "b", "c"]
        assert (curves["lower"] <= curves["est"]).all()
        assert (curves["est"] <= curves["upper"]).all()
        a = curves[curves["variable"] == "a"]
        assert np.allclose(a["value"], a["z"] * 2.0 + 10.0)
        assert a["z"].min() == pytest.approx(fake_fit.Z[:, 0].min())

    def test_overall_risk_zero_at_reference(self, fake_fit):
        overall = overall_risk_summaries(fake_fit, qs=[0.25, 0.5, 0.75], q_fixed=0.5)
        assert list(overall["quantile"]) == [0.25, 0.5, 0.75]
        ref = overall[overall["quantile"] == 0.5].iloc[0]
        assert ref["est"] == pytest.approx(0.0, abs=1e-10)
        assert ref["sd"] == pytest.approx(0.0, abs=1e-5)

    def test_single_variable_risks(self, fake_fit):
        risks = single_variable_risks(fake_fit, qs_fixed=[0.25, 0.75])
        assert len(risks) == 6
        assert set(risks["q_fixed"]) == {0.25, 0.75}
        assert (risks["sd"] >= 0).all()


class TestConvergenceDiagnostics:
    """Tests for divergence and R-hat warnings."""

    def test_single_chain_skips_rhat(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error", ConvergenceWarning)
            diag = convergence_diagnostics(fake_posterior(n_chains=1))
        assert diag["chains"] == 1
        assert np.isnan(diag["max_rhat"])

    def test_divergences_warn(self):
        with pytest.warns(ConvergenceWarning, match="divergent"):
            diag = convergence_diagnostics(fake_posterior(diverging=3))
        assert diag["divergences"] == 3

    def test_disagreeing_chains_warn(self):
        idata = fake_posterior(n_chains=2, n_draws=100, chain_offset=5.0)
        with pytest.warns(ConvergenceWarning, match="R-hat"):
            diag = convergence_diagnostics(idata)
        assert diag["max_rhat"] > 1.05

    def test_agreeing_chains_pass(self):
        idata = fake_posterior(n_chains=2, n_draws=200)
        diag = convergence_diagnostics(idata)
        assert diag["max_rhat"] < 1.05


@pytest.mark.slow
@pytest.mark.filterwarnings("ignore")
class TestKernelMachineModel:
    """Short MCMC run through the FittedModel interface."""

    @pytest.fixture(scope="class")
    def fitted(self):
        from conftest import make_table
        from exposure_ml.data_loader import infer_schema

        table = make_table(n=40, n_exposures=3, covariates=("age", "sex"), seed=4)
        schema = infer_schema(table, n_covariates=2)
        data, _ = prepare_dataset(table, schema)
        km = KernelMachineModel(schema, draws=100, tune=100, chains=2, cores=1, random_state=1).fit(data)
        return km, data

    def test_posterior_shapes(self, fitted):
        km, _ = fitted
        draws = km.fit_.draws()
        assert draws["beta"].shape == (200, 3)  # intercept, age, sex dummy
        assert draws["r"].shape == (200, 3)
        assert km.fit_.fixed_effects[0] == "intercept"
        assert km.diagnostics_["chains"] == 2
        assert np.isfinite(km.diagnostics_["max_rhat"])

    def test_interface(self, fitted):
        km, data = fitted
        assert km.predict(data).shape == (len(data),)
        imp = km.importance()
        assert list(sorted(imp.index)) == ["exp_1", "exp_2", "exp_3"]
        assert (imp >= 0).all()

        explanation = km.explain(data.head(3), nsamples=20, background_size=5)
        assert explanation.values.shape == (3, 3)

    def test_summaries(self, fitted):
        km, _ = fitted
        assert len(predictor_response_univariate(km.fit_, ngrid=5)) == 15
        assert len(overall_risk_summaries(km.fit_)) == 11
        assert len(single_variable_risks(km.fit_)) == 9
