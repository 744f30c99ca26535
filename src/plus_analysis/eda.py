from __future__ import annotations

from pathlib import Path

import matplotlib.pyplot as plt
import pandas as pd

from config.config import POLICY_PERIOD

from .cleaning import period_to_month
from .common import OUT, TARGETS, ensure_outdir, load_clean, write_json


STATS_VARS = [
    "booking_rate",
    "listing_avg_review",
    "employment_rate",
    "log_price_mean",
    "year_built_to_now",
    "policy_entry",
]


def did_cell_means(panel: pd.DataFrame, target: str) -> tuple[pd.DataFrame, float]:
    """Group × time means of ``target`` and the unadjusted difference-in-differences."""
    cells = panel.pivot_table(index="group", columns="time", values=target, aggfunc="mean")
    cells = cells.reindex(index=["Control", "Treated"], columns=["Before", "After"])
    cells["Change"] = cells["After"] - cells["Before"]
    did = float(cells.loc["Treated", "Change"] - cells.loc["Control", "Change"])
    return cells, did


def plot_group_trends(panel: pd.DataFrame, target: str, path: Path) -> None:
    trends = panel.groupby(["date", "group"])[target].mean().unstack("group")
    plt.figure(figsize=(10, 4))
    for group in trends.columns:
        plt.plot(trends.index, trends[group], marker="o", label=group)
    plt.axvline(period_to_month(POLICY_PERIOD), linestyle="--", linewidth=1, color="grey")
    plt.title(f"Mean {target} by group")
    plt.xlabel("Month")
    plt.ylabel(target)
    plt.legend()
    plt.tight_layout()
    plt.savefig(path, dpi=160)
    plt.close()


def run_eda(panel: pd.DataFrame) -> None:
    stats_vars = [c for c in STATS_VARS if c in panel.columns]
    panel[stats_vars].describe(percentiles=[0.05, 0.5, 0.95]).T.to_csv(OUT / "eda_summary_stats.csv")

    raw_did = {}
    for target in TARGETS:
        cells, did = did_cell_means(panel, target)
        cells.to_csv(OUT / f"eda_cell_means_{target}.csv")
        raw_did[target] = did
        plot_group_trends(panel, target, OUT / f"eda_trends_{target}.png")
    write_json(OUT / "eda_raw_did.json", raw_did)

    plt.figure(figsize=(6, 4))
    plt.hist(panel["log_price_mean"], bins=40)
    plt.title("log(mean listing price)")
    plt.xlabel("log_price_mean")
    plt.ylabel("Observations")
    plt.tight_layout()
    plt.savefig(OUT / "eda_log_price_hist.png", dpi=160)
    plt.close()


def main() -> None:
    ensure_outdir()
    panel = load_clean()
    run_eda(panel)
    print("EDA outputs saved to", OUT)


if __name__ == "__main__":
    main()
