import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from config.config import POLICY_PERIOD

PERIODS = range(8, 36)


@pytest.fixture
def raw_observations() -> pd.DataFrame:
    """Zip-month extract for five cities plus the pilot, with the known data defects."""
    rng = np.random.default_rng(0)
    treated_cities = {1, 3}
    rows = []
    for city in [1, 2, 3, 4, 5, 99]:
        for z in range(4):
            zipcode = f"{city:02d}{z:03d}"
            built = rng.uniform(20, 60)
            for period in PERIODS:
                rows.append(
                    {
                        "zipcode": zipcode,
                        "timeperiod": period,
                        "city_number": city,
                        "booking_rate": rng.uniform(0.1, 0.6),
                        "listing_avg_review": rng.uniform(80, 100),
                        "employment_rate": rng.uniform(0.9, 0.97),
                        "price_mean": rng.uniform(80, 300),
                        "year_built_to_now": built,
                        "policy_entry": int(city in treated_cities and period >= POLICY_PERIOD),
                    }
                )
    df = pd.DataFrame(rows)

    df.loc[[3, 40, 200], "listing_avg_review"] = -1
    df.loc[[5, 77], "price_mean"] = 0
    df.loc[[10, 150, 300], "booking_rate"] = np.nan
    df.loc[[11, 400], "employment_rate"] = np.nan
    df.loc[(df["city_number"] == 4) & (df["timeperiod"] == 12), "employment_rate"] = 0.3
    df.loc[(df["city_number"] == 2) & (df["timeperiod"] == 30), "listing_avg_review"] = 50.0
    df.loc[20, "city_number"] = np.nan
    return df


@pytest.fixture
def toy_panel() -> pd.DataFrame:
    """City A gains 0.05 in booking rate after the policy, city B stays at 0.2."""
    rng = np.random.default_rng(1)
    rows = []
    for code, city, treated in [(1, "A", 1), (2, "B", 0)]:
        for i, period in enumerate(PERIODS):
            post = int(period >= POLICY_PERIOD)
            rate = 0.2
            if treated and post:
                rate = 0.24 if i % 2 == 0 else 0.26
            rows.append(
                {
                    "city_number": code,
                    "city_name": city,
                    "timeperiod": period,
                    "time": "After" if post else "Before",
                    "group": "Treated" if treated else "Control",
                    "treated": treated,
                    "post": post,
                    "treated_post": treated * post,
                    "booking_rate": rate,
                    "x": rng.normal(),
                }
            )
    return pd.DataFrame(rows)
