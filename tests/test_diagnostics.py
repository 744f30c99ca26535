import numpy as np
import pandas as pd
import pytest
import statsmodels.api as sm
from statsmodels.stats.outliers_influence import variance_inflation_factor

from plus_analysis import diagnostics
from plus_analysis.diagnostics import (
    DiagnosticSkipped,
    HeteroscedasticityTest,
    NormalityTest,
    breusch_pagan,
    qq_points,
    run_diagnostics,
    save_qq_plot,
    shapiro_subsample,
    subsample_residuals,
    variance_inflation,
)
from plus_analysis.fixed_effects import ModelSpec, fit_fixed_effects


@pytest.fixture
def toy_result(toy_panel):
    return fit_fixed_effects(toy_panel, ModelSpec("booking_rate", "with_controls", ("post", "treated_post", "x")))


def test_vif_exact_linear_combination_is_infinite():
    rng = np.random.default_rng(3)
    design = pd.DataFrame({"a": rng.normal(size=200), "b": rng.normal(size=200)})
    design["c"] = design["a"] + design["b"]
    vif = variance_inflation(design).set_index("predictor")
    assert np.isinf(vif.loc["c", "vif"])
    assert vif["collinear"].all()


def test_vif_independent_predictors():
    rng = np.random.default_rng(4)
    design = pd.DataFrame(rng.normal(size=(500, 3)), columns=["a", "b", "c"])
    vif = variance_inflation(design)
    assert (vif["vif"] < 1.5).all()
    assert not vif["collinear"].any()


def test_vif_threshold_and_constant_predictor():
    rng = np.random.default_rng(5)
    a = rng.normal(size=300)
    design = pd.DataFrame({"a": a, "b": a + rng.normal(scale=0.1, size=300), "k": 1.0})
    vif = variance_inflation(design).set_index("predictor")
    assert vif.loc["a", "vif"] >= 5
    assert vif.loc["a", "collinear"]
    assert np.isnan(vif.loc["k", "vif"])
    assert vif.loc["k", "collinear"]


def test_vif_matches_statsmodels_reference():
    rng = np.random.default_rng(9)
    a = rng.normal(size=400)
    design = pd.DataFrame({"a": a, "b": 0.6 * a + rng.normal(size=400), "c": rng.normal(size=400)})
    exog = sm.add_constant(design, has_constant="add").to_numpy()
    vif = variance_inflation(design)
    expected = [variance_inflation_factor(exog, i) for i in range(1, 4)]
    np.testing.assert_allclose(vif["vif"].to_numpy(), expected)
    assert np.isfinite(vif["vif"]).all()


def test_breusch_pagan_reports_statistic_and_df(toy_result):
    bp = breusch_pagan(toy_result)
    assert isinstance(bp, HeteroscedasticityTest)
    assert bp.df == 3
    assert 0.0 <= bp.pvalue <= 1.0


def test_breusch_pagan_detects_variance_growing_with_predictor():
    rng = np.random.default_rng(6)
    n_per = 100
    rows = []
    for city in range(10):
        for i in range(n_per):
            x = rng.uniform(0, 3)
            rows.append(
                {
                    "city_number": city,
                    "city_name": f"c{city}",
                    "time": "After" if i % 2 else "Before",
                    "x": x,
                    "y": 1.0 + 0.5 * x + rng.normal(scale=0.1 + x),
                }
            )
    panel = pd.DataFrame(rows)
    result = fit_fixed_effects(panel, ModelSpec("y", "het", ("x",)))
    bp = breusch_pagan(result)
    assert bp.heteroscedastic
    assert bp.pvalue < 0.05


def test_normality_subsample_is_reproducible():
    resid = np.random.default_rng(8).normal(size=8000)
    first = shapiro_subsample(resid, size=5000, seed=42)
    second = shapiro_subsample(resid, size=5000, seed=42)
    assert isinstance(first, NormalityTest)
    assert first == second
    assert first.n_sampled == 5000
    assert first.n_total == 8000
    np.testing.assert_array_equal(subsample_residuals(resid, 5000, 42), subsample_residuals(resid, 5000, 42))
    assert not np.array_equal(subsample_residuals(resid, 5000, 42), subsample_residuals(resid, 5000, 43))


def test_short_residual_vector_uses_everything():
    resid = np.arange(10.0)
    np.testing.assert_array_equal(subsample_residuals(resid, 5000, 1), resid)


def test_normality_needs_three_residuals():
    with pytest.raises(ValueError, match="at least 3"):
        shapiro_subsample([0.1, -0.1])


def test_qq_points_and_plot(tmp_path, toy_result):
    points = qq_points(toy_result.resid)
    assert len(points) == toy_result.nobs
    assert points["theoretical"].is_monotonic_increasing
    assert points["sample"].is_monotonic_increasing

    path = tmp_path / "qq.png"
    save_qq_plot(toy_result.resid, path, "toy")
    assert path.stat().st_size > 0


def test_run_diagnostics(toy_result):
    diag = run_diagnostics(toy_result)
    assert list(diag.vif["predictor"]) == ["post", "treated_post", "x"]
    assert isinstance(diag.heteroscedasticity, HeteroscedasticityTest)
    assert isinstance(diag.normality, NormalityTest)


def test_failed_diagnostic_is_skipped_not_fatal(toy_result, monkeypatch):
    def broken(result):
        raise ValueError("singular auxiliary regression")

    monkeypatch.setattr(diagnostics, "breusch_pagan", broken)
    diag = run_diagnostics(toy_result)
    assert diag.heteroscedasticity == DiagnosticSkipped("heteroscedasticity", "singular auxiliary regression")
    assert isinstance(diag.normality, NormalityTest)
