"""Turn the raw zip-code × month extract into a balanced city/time panel.

Every step takes a frame and returns a new one; ``clean_panel`` chains them
and records how many rows each step dropped and how many values it replaced.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

import numpy as np
import pandas as pd

from config.config import (
    CITY_NAMES,
    CLEAN_PANEL_PATH,
    ENTITY_ID,
    EPOCH_MONTH,
    EPOCH_PERIOD,
    IMPUTE_COLUMNS,
    LOG_COLUMNS,
    OTHER_CITY,
    OUTLIER_RULES,
    PANEL_ENTITY,
    PANEL_TIME,
    PILOT_CITY,
    POLICY_PERIOD,
    PRICE_SENTINEL,
    REVIEW_SENTINEL,
    TRUNCATE_COLUMNS,
    TRUNCATE_QUANTILES,
)

from .common import LOG_FORMAT, OUT, DataError, check_balanced, check_raw, ensure_outdir, load_raw

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutlierRule:
    column: str
    below: float
    entities: tuple

    @classmethod
    def from_config(cls, entry: dict) -> "OutlierRule":
        return cls(column=entry["column"], below=float(entry["below"]), entities=tuple(entry["entities"]))


def period_to_month(period: int) -> pd.Timestamp:
    return (pd.Period(EPOCH_MONTH, freq="M") + (int(period) - EPOCH_PERIOD)).to_timestamp()


def derive_labels(df: pd.DataFrame) -> pd.DataFrame:
    out = df.copy()
    out["city_name"] = out["city_number"].map(CITY_NAMES).fillna(OTHER_CITY).astype(str)
    out["date"] = pd.to_datetime([period_to_month(p) for p in out["timeperiod"]])
    return out


def exclude_pilot(df: pd.DataFrame, pilot: str = PILOT_CITY) -> pd.DataFrame:
    return df.loc[df["city_name"] != pilot].copy()


def drop_sentinel(df: pd.DataFrame, column: str, sentinel: float) -> pd.DataFrame:
    # NaN compares unequal, so genuinely missing values stay for imputation
    return df.loc[df[column] != sentinel].copy()


def drop_missing_entity(df: pd.DataFrame, entity: str = ENTITY_ID) -> pd.DataFrame:
    return df.loc[df[entity].notna()].copy()


def impute_entity_mean(df: pd.DataFrame, column: str, entity: str = ENTITY_ID) -> pd.DataFrame:
    """Fill missing ``column`` values with the mean of the same entity."""
    out = df.copy()
    means = out.groupby(entity)[column].transform("mean")
    out[column] = out[column].fillna(means)
    return out


def apply_outlier_rule(df: pd.DataFrame, rule: OutlierRule, entity: str = ENTITY_ID) -> pd.DataFrame:
    """Replace values below ``rule.below`` in ``rule.entities`` by the entity mean of the other values."""
    out = df.copy()
    outlier = out[entity].isin(rule.entities) & (out[rule.column] < rule.below)
    if not outlier.any():
        return out

    clean_means = out.loc[~outlier].groupby(entity)[rule.column].mean()
    replacement = out.loc[outlier, entity].map(clean_means)
    if replacement.isna().any():
        lost = sorted(out.loc[replacement.index[replacement.isna()], entity].unique())
        raise DataError(f"No values of {rule.column} at or above {rule.below} to average for {entity} {lost}")
    out.loc[outlier, rule.column] = replacement.astype(float)
    return out


def truncate_quantiles(
    df: pd.DataFrame,
    column: str,
    lower: float = TRUNCATE_QUANTILES[0],
    upper: float = TRUNCATE_QUANTILES[1],
) -> pd.DataFrame:
    """Drop rows whose ``column`` lies outside its empirical [lower, upper] quantile range."""
    lo, hi = df[column].quantile([lower, upper])
    return df.loc[df[column].between(lo, hi)].copy()


def log_transform(df: pd.DataFrame, column: str, new_column: str) -> pd.DataFrame:
    nonpositive = df[column] <= 0
    if nonpositive.any():
        raise DataError(f"{int(nonpositive.sum())} non-positive {column} values cannot be log-transformed")
    out = df.copy()
    out[new_column] = np.log(out[column])
    return out.drop(columns=[column])


def assign_group(df: pd.DataFrame, entity: str = ENTITY_ID) -> pd.DataFrame:
    out = df.copy()
    ever_treated = (out["policy_entry"].fillna(0) > 0).groupby(out[entity]).transform("any")
    out["group"] = np.where(ever_treated, "Treated", "Control")
    out["treated"] = ever_treated.astype(int)
    return out


def assign_time(df: pd.DataFrame, policy_period: int = POLICY_PERIOD) -> pd.DataFrame:
    out = df.copy()
    after = out["timeperiod"] >= policy_period
    out["time"] = np.where(after, "After", "Before")
    out["post"] = after.astype(int)
    out["treated_post"] = out["treated"] * out["post"]
    return out


def clean_panel(
    raw: pd.DataFrame,
    outlier_rules: Iterable[OutlierRule] | None = None,
    truncate_columns: Iterable[str] = TRUNCATE_COLUMNS,
    impute_columns: Iterable[str] = IMPUTE_COLUMNS,
    pilot: str = PILOT_CITY,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Run the cleaning steps in order and return the panel and the step table."""
    if outlier_rules is None:
        outlier_rules = [OutlierRule.from_config(entry) for entry in OUTLIER_RULES]
    impute_columns = list(impute_columns)

    steps: list[dict[str, int | str]] = []
    df = derive_labels(check_raw(raw))

    def record(step: str, replaced: int = 0) -> None:
        steps.append({"step": step, "remaining_obs": int(len(df)), "values_replaced": int(replaced)})
        logger.info("%s: %d rows remaining, %d values replaced", step, len(df), replaced)

    record("Raw observations")

    df = exclude_pilot(df, pilot)
    record(f"Exclude pilot city ({pilot})")

    df = drop_sentinel(df, "listing_avg_review", REVIEW_SENTINEL)
    record("Drop listings without reviews")

    df = drop_sentinel(df, "price_mean", PRICE_SENTINEL)
    record("Drop zip codes without priced listings")

    df = drop_missing_entity(df)
    record(f"Drop rows without {ENTITY_ID}")

    for col in impute_columns:
        n_missing = int(df[col].isna().sum())
        df = impute_entity_mean(df, col)
        record(f"Impute {col} with {ENTITY_ID} mean", n_missing - int(df[col].isna().sum()))

    still_missing = df[impute_columns].isna().any(axis=1)
    if still_missing.any():
        logger.warning("%d rows have no %s mean to impute from", int(still_missing.sum()), ENTITY_ID)
    df = df.loc[~still_missing].copy()
    record("Drop rows with nothing to impute from")

    for rule in outlier_rules:
        before = df[rule.column].copy()
        df = apply_outlier_rule(df, rule)
        record(
            f"Replace {rule.column} < {rule.below:g} in {ENTITY_ID} {list(rule.entities)}",
            int((before != df[rule.column]).sum()),
        )

    for col in truncate_columns:
        df = truncate_quantiles(df, col)
        record(f"Truncate {col} to [{TRUNCATE_QUANTILES[0]:.0%}, {TRUNCATE_QUANTILES[1]:.0%}] quantiles")

    for col, new_col in LOG_COLUMNS.items():
        df = log_transform(df, col, new_col)

    df = assign_time(assign_group(df))
    df = df.sort_values([PANEL_ENTITY, "zipcode", "timeperiod"]).reset_index(drop=True)
    record("Assign group and time labels")

    check_balanced(df, PANEL_ENTITY, PANEL_TIME)

    table = pd.DataFrame(steps)
    table["dropped_this_step"] = table["remaining_obs"].shift(1, fill_value=len(raw)) - table["remaining_obs"]
    return df, table


def main() -> None:
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    ensure_outdir()
    panel, step_table = clean_panel(load_raw())

    CLEAN_PANEL_PATH.parent.mkdir(parents=True, exist_ok=True)
    panel.to_csv(CLEAN_PANEL_PATH, index=False)
    step_table.to_csv(OUT / "sample_construction_table.csv", index=False)

    print(f"Saved cleaned panel with {len(panel):,} rows to {CLEAN_PANEL_PATH}")
    print("Saved sample construction table to", OUT / "sample_construction_table.csv")


if __name__ == "__main__":
    main()
