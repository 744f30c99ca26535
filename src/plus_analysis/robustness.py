from __future__ import annotations

import logging

import pandas as pd

from config.config import PLACEBO_PERIOD, POLICY_PERIOD

from .cleaning import assign_time
from .common import DID_TERM, LOG_FORMAT, OUT, PanelBalanceError, ensure_outdir, load_clean, write_json
from .did_models import run_did_models

logger = logging.getLogger(__name__)


def placebo_panel(panel: pd.DataFrame, placebo_period: int = PLACEBO_PERIOD) -> pd.DataFrame:
    """Pre-policy rows relabelled as if the program had started at ``placebo_period``."""
    pre = panel[panel["timeperiod"] < POLICY_PERIOD]
    return assign_time(pre, placebo_period)


def run_robustness_checks(panel: pd.DataFrame) -> pd.DataFrame:
    frames = []

    _, clustered = run_did_models(panel, cov_type="cluster")
    frames.append(clustered.assign(variant="clustered_se"))

    try:
        _, placebo = run_did_models(placebo_panel(panel))
        frames.append(placebo.assign(variant=f"placebo_period_{PLACEBO_PERIOD}"))
    except PanelBalanceError as e:
        logger.warning("Placebo sample is not balanced: %s", e)
        frames.append(pd.DataFrame([{"variant": f"placebo_period_{PLACEBO_PERIOD}", "error": str(e)}]))

    out = pd.concat(frames, ignore_index=True)
    return out[out["term"].isna() | (out["term"] == DID_TERM)].reset_index(drop=True)


def main() -> None:
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    ensure_outdir()
    panel = load_clean()
    table = run_robustness_checks(panel)
    table.to_csv(OUT / "robustness_did.csv", index=False)
    write_json(OUT / "robustness_variants.json", {"variants": sorted(table["variant"].unique())})
    print("Robustness outputs saved to", OUT)


if __name__ == "__main__":
    main()
