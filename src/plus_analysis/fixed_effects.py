"""Entity fixed-effects (within) estimator for the DiD specifications.

Each target and predictor is demeaned within its entity, which removes any
entity-constant unobserved factor, and OLS is fit on the demeaned data. The
residual degrees of freedom account for the absorbed entity means.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

import numpy as np
import pandas as pd
import statsmodels.api as sm

from config.config import PANEL_ENTITY, PANEL_TIME

from .common import CONTROLS, TARGETS, TREATMENT_TERMS, DataError, FixedEffectsError, check_balanced

logger = logging.getLogger(__name__)

# Demeaned column counts as constant when its largest value is this small relative to the raw scale
ABSORBED_TOL = 1e-10
# Residual sum of squares at or below this share of the within variation counts as an exact fit
PERFECT_FIT_TOL = 1e-12


@dataclass(frozen=True)
class ModelSpec:
    target: str
    kind: str
    predictors: tuple

    @property
    def name(self) -> str:
        return f"{self.target}__{self.kind}"


def build_specs(targets: Iterable[str] = TARGETS) -> list[ModelSpec]:
    specs = []
    for target in targets:
        specs.append(ModelSpec(target, "no_controls", tuple(TREATMENT_TERMS)))
        specs.append(ModelSpec(target, "with_controls", tuple(TREATMENT_TERMS) + tuple(CONTROLS[target])))
    return specs


def within_transform(data: pd.DataFrame, groups: pd.Series) -> pd.DataFrame:
    """Subtract the group mean from every column of ``data``."""
    data = data.astype(float)
    return data - data.groupby(groups, observed=True).transform("mean")


@dataclass
class FixedEffectsResult:
    spec: ModelSpec
    params: pd.DataFrame
    resid: pd.Series
    fitted: pd.Series
    exog: pd.DataFrame
    endog: pd.Series
    nobs: int
    n_entities: int
    df_resid: int
    rsquared_within: float
    cov_type: str
    perfect_fit: bool
    results: sm.regression.linear_model.RegressionResultsWrapper

    def coefficients(self) -> dict[str, tuple[float, float, float]]:
        return {
            name: (float(row["coef"]), float(row["se"]), float(row["p"]))
            for name, row in self.params.iterrows()
        }

    def summary(self):
        return self.results.summary(yname=self.spec.target, xname=list(self.spec.predictors))


def _absorbed_predictors(raw: pd.DataFrame, demeaned: pd.DataFrame) -> list[str]:
    absorbed = []
    for col in demeaned.columns:
        scale = max(1.0, float(raw[col].abs().max()))
        if float(demeaned[col].abs().max()) <= ABSORBED_TOL * scale:
            absorbed.append(col)
    return absorbed


def fit_fixed_effects(
    panel: pd.DataFrame,
    spec: ModelSpec,
    entity: str = PANEL_ENTITY,
    time: str = PANEL_TIME,
    cov_type: str = "nonrobust",
) -> FixedEffectsResult:
    check_balanced(panel, entity, time)

    cols = [spec.target, *spec.predictors]
    missing = [c for c in cols if c not in panel.columns]
    if missing:
        raise DataError(f"{spec.name}: panel is missing columns {missing}")

    data = panel[cols].astype(float)
    n_missing = data.isna().sum()
    if n_missing.any():
        raise DataError(f"{spec.name}: missing values in {n_missing[n_missing > 0].to_dict()}")

    groups = panel[entity]
    demeaned = within_transform(data, groups)
    y = demeaned[spec.target]
    X = demeaned[list(spec.predictors)]

    absorbed = _absorbed_predictors(data, X)
    if absorbed:
        raise FixedEffectsError(
            f"{spec.name}: {absorbed} have no variation within {entity}; "
            "their coefficients are not identified under the within transformation"
        )
    rank = int(np.linalg.matrix_rank(X.to_numpy()))
    if rank < X.shape[1]:
        raise FixedEffectsError(f"{spec.name}: demeaned predictors are collinear (rank {rank} < {X.shape[1]})")

    nobs = int(len(y))
    n_entities = int(groups.nunique())
    df_resid = nobs - X.shape[1] - n_entities
    if df_resid <= 0:
        raise FixedEffectsError(
            f"{spec.name}: {nobs} observations leave no residual degrees of freedom "
            f"for {X.shape[1]} predictors and {n_entities} entity effects"
        )

    model = sm.OLS(y, X)
    model.df_resid = df_resid
    if cov_type == "nonrobust":
        res = model.fit()
    elif cov_type == "cluster":
        res = model.fit(cov_type="cluster", cov_kwds={"groups": pd.factorize(groups)[0]})
    else:
        raise ValueError(f"Unsupported cov_type: {cov_type}")

    params = pd.DataFrame({"coef": res.params, "se": res.bse, "t": res.tvalues, "p": res.pvalues})
    logger.info("Fitted %s on %d rows across %d %s values", spec.name, nobs, n_entities, entity)
    within_ss = float((y**2).sum())
    perfect_fit = bool(res.ssr <= PERFECT_FIT_TOL * within_ss)
    if perfect_fit:
        logger.warning(
            "%s: residuals are zero up to rounding; standard errors and p-values are not meaningful",
            spec.name,
        )

    return FixedEffectsResult(
        spec=spec,
        params=params,
        resid=res.resid,
        fitted=data[spec.target] - res.resid,
        exog=X,
        endog=data[spec.target],
        nobs=nobs,
        n_entities=n_entities,
        df_resid=df_resid,
        rsquared_within=float(res.rsquared),
        cov_type=cov_type,
        perfect_fit=perfect_fit,
        results=res,
    )
