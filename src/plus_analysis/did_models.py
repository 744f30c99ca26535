from __future__ import annotations

import logging

import numpy as np
import pandas as pd

from .common import (
    ALPHA,
    DID_TERM,
    LOG_FORMAT,
    OUT,
    FixedEffectsError,
    ensure_outdir,
    load_clean,
    save_summary,
    significance_stars,
)
from .fixed_effects import FixedEffectsResult, ModelSpec, build_specs, fit_fixed_effects

logger = logging.getLogger(__name__)


def interpret(coef: float, p: float, alpha: float = ALPHA) -> str:
    if p != p:
        return "not estimated"
    if p >= alpha:
        return f"fail to reject H0 at {alpha:.0%}"
    direction = "positive" if coef > 0 else "negative"
    return f"reject H0 at {alpha:.0%}: significantly {direction}"


def run_did_models(
    panel: pd.DataFrame,
    specs: list[ModelSpec] | None = None,
    cov_type: str = "nonrobust",
) -> tuple[dict[str, FixedEffectsResult], pd.DataFrame]:
    """Fit every spec; a spec that cannot be identified is recorded with its error."""
    specs = build_specs() if specs is None else specs

    results: dict[str, FixedEffectsResult] = {}
    rows = []
    for spec in specs:
        try:
            m = fit_fixed_effects(panel, spec, cov_type=cov_type)
        except FixedEffectsError as e:
            logger.warning("Could not fit %s: %s", spec.name, e)
            rows.append(
                {
                    "model": spec.name,
                    "target": spec.target,
                    "spec": spec.kind,
                    "term": DID_TERM,
                    "coef": np.nan,
                    "se": np.nan,
                    "t": np.nan,
                    "p": np.nan,
                    "n": 0,
                    "r2_within": np.nan,
                    "error": str(e),
                }
            )
            continue

        results[spec.name] = m
        for term, row in m.params.iterrows():
            rows.append(
                {
                    "model": spec.name,
                    "target": spec.target,
                    "spec": spec.kind,
                    "term": term,
                    "coef": float(row["coef"]),
                    "se": float(row["se"]),
                    "t": float(row["t"]),
                    "p": float(row["p"]),
                    "n": m.nobs,
                    "r2_within": m.rsquared_within,
                    "error": "",
                }
            )
    return results, pd.DataFrame(rows)


def comparison_table(summary: pd.DataFrame, term: str = DID_TERM) -> pd.DataFrame:
    """Side-by-side ``coef (se)`` of one term for the no-controls and with-controls specs."""
    d = summary[summary["term"] == term].copy()
    d["cell"] = [
        "n/a" if c != c else f"{c:.4f}{significance_stars(p)} ({s:.4f})"
        for c, s, p in zip(d["coef"], d["se"], d["p"])
    ]
    table = d.pivot(index="target", columns="spec", values="cell")
    conclusions = {r.target: interpret(r.coef, r.p) for r in d[d["spec"] == "with_controls"].itertuples()}
    table["conclusion"] = table.index.map(conclusions)
    table.columns.name = None
    return table.reset_index()


def main() -> None:
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    ensure_outdir()
    panel = load_clean()

    results, summary = run_did_models(panel)
    for name, m in results.items():
        save_summary(m, f"did_{name}.txt")

    summary.to_csv(OUT / "did_models_summary.csv", index=False)
    comparison_table(summary).to_csv(OUT / "did_comparison.csv", index=False)
    print("DiD model outputs saved to", OUT)


if __name__ == "__main__":
    main()
