#!/usr/bin/env python3
"""Orchestrate the cleaning and analysis phases for the Airbnb Plus DiD study."""

from __future__ import annotations

import json
import logging
import os
import subprocess
import sys
from pathlib import Path

SRC_PATH = Path(__file__).resolve().parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

import pandas as pd

from plus_analysis.common import LOG_FORMAT, OUT, ensure_outdir, load_clean, validate, write_json


PHASES = [
    ("Data cleaning", "plus_analysis.cleaning"),
    ("Exploratory data analysis", "plus_analysis.eda"),
    ("Fixed-effects DiD models", "plus_analysis.did_models"),
    ("Model diagnostics", "plus_analysis.diagnostics"),
    ("Robustness checks", "plus_analysis.robustness"),
]

REPORT_TABLES = [
    ("Sample construction", "sample_construction_table.csv"),
    ("DiD estimates (treated x after)", "did_comparison.csv"),
    ("DiD models: all terms", "did_models_summary.csv"),
    ("Diagnostics", "diagnostics_summary.csv"),
    ("Robustness", "robustness_did.csv"),
]


def run_phase(description: str, module: str) -> None:
    logging.info("Starting phase: %s", description)
    cmd = [sys.executable, "-m", module]
    env = os.environ.copy()
    env["PYTHONPATH"] = os.pathsep.join(
        [str(SRC_PATH), str(SRC_PATH.parent), env.get("PYTHONPATH", "")]
    ).strip(os.pathsep)
    subprocess.run(cmd, check=True, env=env)
    logging.info("Completed phase: %s", description)


def write_report(validation: dict) -> None:
    lines = []
    lines.append("# Analysis report\n\n")
    lines.append("## Data validation\n")
    lines.append("```json\n" + json.dumps(validation, indent=2) + "\n```\n\n")

    for title, filename in REPORT_TABLES:
        path = OUT / filename
        if path.exists():
            lines.append(f"## {title}\n\n")
            lines.append(pd.read_csv(path).to_markdown(index=False))
            lines.append("\n\n")

    raw_did = OUT / "eda_raw_did.json"
    if raw_did.exists():
        lines.append("## Unadjusted group/time differences\n\n")
        lines.append("```json\n" + raw_did.read_text(encoding="utf-8") + "\n```\n\n")

    (OUT / "analysis_report.md").write_text("".join(lines), encoding="utf-8")


def main() -> None:
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    ensure_outdir()

    for description, module in PHASES:
        run_phase(description, module)

    validation = validate(load_clean())
    write_json(OUT / "data_validation.json", validation)
    write_report(validation)
    logging.info("Analysis phases completed. Outputs in: %s", OUT)


if __name__ == "__main__":
    main()
