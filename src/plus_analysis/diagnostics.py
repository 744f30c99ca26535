from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import scipy.stats as st
import statsmodels.api as sm
from statsmodels.stats.diagnostic import het_breuschpagan
from statsmodels.stats.outliers_influence import variance_inflation_factor

from config.config import RANDOM_SEED

from .common import (
    ALPHA,
    LOG_FORMAT,
    NORMALITY_SAMPLE_SIZE,
    OUT,
    VIF_RSQUARED_TOL,
    VIF_THRESHOLD,
    ensure_outdir,
    load_clean,
    write_json,
)
from .did_models import run_did_models
from .fixed_effects import FixedEffectsResult

logger = logging.getLogger(__name__)

# Shapiro-Wilk needs at least this many observations
NORMALITY_MIN_OBS = 3


@dataclass
class DiagnosticSkipped:
    name: str
    reason: str


@dataclass
class HeteroscedasticityTest:
    statistic: float
    df: int
    pvalue: float
    fstatistic: float
    f_pvalue: float
    heteroscedastic: bool


@dataclass
class NormalityTest:
    statistic: float
    pvalue: float
    n_sampled: int
    n_total: int
    seed: int
    normal: bool


@dataclass
class ModelDiagnostics:
    vif: pd.DataFrame | DiagnosticSkipped
    heteroscedasticity: HeteroscedasticityTest | DiagnosticSkipped
    normality: NormalityTest | DiagnosticSkipped


def variance_inflation(design: pd.DataFrame, threshold: float = VIF_THRESHOLD) -> pd.DataFrame:
    """VIF per predictor from the auxiliary regression on all other predictors.

    An exact linear combination of the others is reported as ``inf``; a
    predictor without variance has no defined VIF and is reported as NaN.
    Both are flagged as collinear.
    """
    if design.shape[1] == 0:
        raise ValueError("Design matrix has no predictors")

    exog = sm.add_constant(design.astype(float), has_constant="add").to_numpy()
    rows = []
    for i, name in enumerate(design.columns, start=1):
        if np.ptp(exog[:, i]) == 0:
            rows.append({"predictor": name, "vif": np.nan, "collinear": True})
            continue
        with np.errstate(divide="ignore"):
            vif = float(variance_inflation_factor(exog, i))
        if vif < 0 or vif > 1.0 / VIF_RSQUARED_TOL:
            vif = np.inf
        rows.append({"predictor": name, "vif": vif, "collinear": bool(vif != vif or vif >= threshold)})
    return pd.DataFrame(rows)


def breusch_pagan(result: FixedEffectsResult, alpha: float = ALPHA) -> HeteroscedasticityTest:
    """Studentized (Koenker) Breusch-Pagan test of the squared residuals on the predictors."""
    exog_het = sm.add_constant(result.exog, has_constant="add")
    lm, lm_pvalue, fvalue, f_pvalue = het_breuschpagan(result.resid, exog_het, robust=True)
    return HeteroscedasticityTest(
        statistic=float(lm),
        df=int(exog_het.shape[1] - 1),
        pvalue=float(lm_pvalue),
        fstatistic=float(fvalue),
        f_pvalue=float(f_pvalue),
        heteroscedastic=bool(lm_pvalue < alpha),
    )


def subsample_residuals(resid, size: int = NORMALITY_SAMPLE_SIZE, seed: int = RANDOM_SEED) -> np.ndarray:
    values = np.asarray(resid, dtype=float)
    if len(values) <= size:
        return values
    rng = np.random.default_rng(seed)
    return values[rng.choice(len(values), size=size, replace=False)]


def shapiro_subsample(
    resid, size: int = NORMALITY_SAMPLE_SIZE, seed: int = RANDOM_SEED, alpha: float = ALPHA
) -> NormalityTest:
    """Shapiro-Wilk on a seeded uniform subsample of at most ``size`` residuals."""
    sample = subsample_residuals(resid, size=size, seed=seed)
    if len(sample) < NORMALITY_MIN_OBS:
        raise ValueError(f"Shapiro-Wilk needs at least {NORMALITY_MIN_OBS} residuals, got {len(sample)}")
    stat, pvalue = st.shapiro(sample)
    return NormalityTest(
        statistic=float(stat),
        pvalue=float(pvalue),
        n_sampled=int(len(sample)),
        n_total=int(len(np.asarray(resid))),
        seed=int(seed),
        normal=bool(pvalue >= alpha),
    )


def qq_points(resid) -> pd.DataFrame:
    (theoretical, ordered), _ = st.probplot(np.asarray(resid, dtype=float), dist="norm")
    return pd.DataFrame({"theoretical": theoretical, "sample": ordered})


def save_qq_plot(resid, path: Path, title: str) -> None:
    fig, ax = plt.subplots(figsize=(5, 5))
    sm.ProbPlot(np.asarray(resid, dtype=float)).qqplot(line="45", ax=ax)
    ax.set_title(title)
    fig.tight_layout()
    fig.savefig(path, dpi=160)
    plt.close(fig)


def run_diagnostics(result: FixedEffectsResult, seed: int = RANDOM_SEED) -> ModelDiagnostics:
    checks = {
        "vif": lambda: variance_inflation(result.exog),
        "heteroscedasticity": lambda: breusch_pagan(result),
        "normality": lambda: shapiro_subsample(result.resid, seed=seed),
    }
    out = {}
    for name, check in checks.items():
        try:
            out[name] = check()
        except (ValueError, np.linalg.LinAlgError) as exc:
            logger.warning("Skipping %s diagnostic for %s: %s", name, result.spec.name, exc)
            out[name] = DiagnosticSkipped(name, str(exc))
    return ModelDiagnostics(**out)


def _as_row(value) -> dict:
    if isinstance(value, DiagnosticSkipped):
        return {"skipped": value.reason}
    return asdict(value)


def run_model_diagnostics(results: dict[str, FixedEffectsResult]) -> pd.DataFrame:
    rows = []
    for name, result in results.items():
        diag = run_diagnostics(result)

        if isinstance(diag.vif, pd.DataFrame):
            diag.vif.to_csv(OUT / f"vif_{name}.csv", index=False)
            vif_row = {
                "max_vif": float(diag.vif["vif"].max()),
                "collinear": ", ".join(diag.vif.loc[diag.vif["collinear"], "predictor"]),
            }
        else:
            vif_row = {"vif_skipped": diag.vif.reason}

        het = _as_row(diag.heteroscedasticity)
        norm = _as_row(diag.normality)
        write_json(OUT / f"diagnostics_{name}.json", {"heteroscedasticity": het, "normality": norm, "vif": vif_row})

        save_qq_plot(result.resid, OUT / f"qq_{name}.png", f"Q-Q plot of residuals ({name})")

        rows.append(
            {
                "model": name,
                **vif_row,
                **{f"bp_{k}": v for k, v in het.items()},
                **{f"sw_{k}": v for k, v in norm.items()},
            }
        )
    return pd.DataFrame(rows)


def main() -> None:
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    ensure_outdir()
    panel = load_clean()
    results, _ = run_did_models(panel)
    run_model_diagnostics(results).to_csv(OUT / "diagnostics_summary.csv", index=False)
    print("Diagnostics outputs saved to", OUT)


if __name__ == "__main__":
    main()
