from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pandas as pd

from config.config import (
    CLEAN_PANEL_PATH,
    PANEL_ENTITY,
    PANEL_TIME,
    RAW_PANEL_PATH,
    REQUIRED_COLUMNS,
)


PROJECT_ROOT = Path(__file__).resolve().parents[2]
OUT = PROJECT_ROOT / "outputs"

LOG_FORMAT = "[%(asctime)s] %(levelname)s:%(name)s:%(message)s"

ALPHA = 0.05
VIF_THRESHOLD = 5.0
# 1 - R^2 of the auxiliary regression below this counts as an exact linear combination
VIF_RSQUARED_TOL = 1e-10
NORMALITY_SAMPLE_SIZE = 5000

TARGETS = ["booking_rate", "listing_avg_review"]
TREATMENT_TERMS = ["post", "treated_post"]
DID_TERM = "treated_post"

CONTROLS = {
    "booking_rate": ["listing_avg_review", "employment_rate", "log_price_mean", "year_built_to_now"],
    "listing_avg_review": ["employment_rate", "log_price_mean", "year_built_to_now"],
}

NUMERIC_COLUMNS = [
    "timeperiod",
    "booking_rate",
    "listing_avg_review",
    "employment_rate",
    "price_mean",
    "year_built_to_now",
    "policy_entry",
]


class DataError(ValueError):
    """Input data cannot be used: missing columns, empty input, bad periods."""


class PanelBalanceError(RuntimeError):
    """The cleaned panel does not cover the same time values for every entity."""


class FixedEffectsError(RuntimeError):
    """A model spec cannot be identified under the within transformation."""


def ensure_outdir() -> None:
    OUT.mkdir(parents=True, exist_ok=True)


def write_json(path: Path, obj: dict) -> None:
    path.write_text(json.dumps(obj, indent=2, default=str), encoding="utf-8")


def check_raw(df: pd.DataFrame) -> pd.DataFrame:
    """Validate a raw extract and coerce its column types.

    Raises ``DataError`` for an empty frame, a missing required column or a
    ``timeperiod`` that is not an integer month index.
    """
    if df.empty:
        raise DataError("Raw input has no rows")

    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise DataError(f"Raw input is missing required columns: {missing}")

    out = df.copy()
    periods = pd.to_numeric(out["timeperiod"], errors="coerce")
    bad = periods.isna() | (periods != np.floor(periods))
    if bad.any():
        examples = out.loc[bad, "timeperiod"].head(3).tolist()
        raise DataError(f"Unparseable timeperiod values in {int(bad.sum())} rows, e.g. {examples}")

    for col in NUMERIC_COLUMNS:
        out[col] = pd.to_numeric(out[col], errors="coerce")
    out["timeperiod"] = out["timeperiod"].astype(int)
    out["city_number"] = pd.to_numeric(out["city_number"], errors="coerce").astype("Int64")
    return out


def load_raw(path: Path | None = None) -> pd.DataFrame:
    path = Path(path) if path is not None else RAW_PANEL_PATH
    if not path.exists():
        raise DataError(f"Missing required input: {path}")
    return check_raw(pd.read_csv(path))


def load_clean(path: Path | None = None) -> pd.DataFrame:
    path = Path(path) if path is not None else CLEAN_PANEL_PATH
    if not path.exists():
        raise DataError(f"Missing cleaned panel: {path}; run the cleaning phase first")
    df = pd.read_csv(path, parse_dates=["date"])
    check_balanced(df)
    return df


def check_balanced(df: pd.DataFrame, entity: str = PANEL_ENTITY, time: str = PANEL_TIME) -> None:
    """Raise ``PanelBalanceError`` unless every entity has the same set of time values."""
    missing = [c for c in (entity, time) if c not in df.columns]
    if missing:
        raise DataError(f"Panel is missing index columns: {missing}")
    if df.empty:
        raise DataError("Panel has no rows")
    if df[[entity, time]].isna().any().any():
        raise PanelBalanceError(f"Panel has rows without {entity} or {time}")

    expected = frozenset(df[time])
    periods = {key: frozenset(values) for key, values in df.groupby(entity, observed=True)[time]}
    incomplete = sorted(str(k) for k, v in periods.items() if v != expected)
    if incomplete:
        raise PanelBalanceError(
            f"Unbalanced panel: {len(incomplete)} of {len(periods)} {entity} values "
            f"do not cover every {time} value {sorted(map(str, expected))}, e.g. {incomplete[:5]}"
        )


def is_balanced(df: pd.DataFrame, entity: str = PANEL_ENTITY, time: str = PANEL_TIME) -> bool:
    try:
        check_balanced(df, entity, time)
    except PanelBalanceError:
        return False
    return True


def validate(df: pd.DataFrame) -> dict:
    return {
        "rows_total": int(len(df)),
        "entities": int(df[PANEL_ENTITY].nunique()),
        "zipcodes": int(df["zipcode"].nunique()) if "zipcode" in df else None,
        "date_min": str(pd.Timestamp(df["date"].min()).date()),
        "date_max": str(pd.Timestamp(df["date"].max()).date()),
        "balanced": is_balanced(df),
        "rows_by_group_time": {
            f"{g}/{t}": int(n) for (g, t), n in df.groupby(["group", "time"]).size().items()
        },
        "missing_by_col": {k: int(v) for k, v in df.isna().sum().to_dict().items()},
    }


def save_summary(model, filename: str) -> None:
    (OUT / filename).write_text(model.summary().as_text(), encoding="utf-8")


def significance_stars(p: float) -> str:
    if p != p:
        return ""
    if p < 0.01:
        return "***"
    if p < 0.05:
        return "**"
    if p < 0.1:
        return "*"
    return ""
