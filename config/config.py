"""Project-wide configuration for the Airbnb Plus DiD pipeline.

Update these values to point at a different extract or to audit the
dataset-specific cleaning rules.
"""

import os
from pathlib import Path

# Base directory for all data artifacts (raw extract and cleaned panel)
DATA_DIR = Path(os.getenv("PLUS_DATA_DIR", "data"))

# Convenience paths derived from DATA_DIR
RAW_DIR = DATA_DIR / "raw"
CLEAN_DIR = DATA_DIR / "clean"

RAW_PANEL_PATH = Path(os.getenv("PLUS_RAW_PANEL", RAW_DIR / "airbnb_zip_month.csv"))
CLEAN_PANEL_PATH = CLEAN_DIR / "plus_panel.csv"

REQUIRED_COLUMNS = [
    "zipcode",
    "timeperiod",
    "city_number",
    "booking_rate",
    "listing_avg_review",
    "employment_rate",
    "price_mean",
    "year_built_to_now",
    "policy_entry",
]

# city_number -> city label; anything not listed is reported as "Others"
CITY_NAMES = {
    1: "Austin",
    2: "Chicago",
    3: "Los Angeles",
    4: "San Diego",
    5: "San Francisco",
    6: "New York",
    7: "Boston",
    8: "Seattle",
    9: "Washington",
    10: "Denver",
}
OTHER_CITY = "Others"

# Plus was piloted here before the official launch; keep it out of both groups
PILOT_CITY = "San Francisco"

# timeperiod 8 corresponds to August 2017
EPOCH_PERIOD = 8
EPOCH_MONTH = "2017-08"

# First month with the program live (2018-10)
POLICY_PERIOD = 22

# Pre-period month used for the placebo policy date in robustness checks
PLACEBO_PERIOD = 15

# Structural missing markers; rows carrying them are dropped, never imputed
REVIEW_SENTINEL = -1
PRICE_SENTINEL = 0

ENTITY_ID = "city_number"

IMPUTE_COLUMNS = [
    "booking_rate",
    "employment_rate",
    "price_mean",
    "listing_avg_review",
    "year_built_to_now",
]

# Values below ``below`` in the listed cities are data-entry errors found by
# inspecting this extract. They are replaced by the city mean of the
# remaining values.
OUTLIER_RULES = [
    {"column": "employment_rate", "below": 0.6, "entities": [4]},
    {"column": "listing_avg_review", "below": 70, "entities": [2, 6, 9]},
]

# Rows outside the empirical [lower, upper] quantile range are dropped
TRUNCATE_COLUMNS = ["booking_rate", "listing_avg_review"]
TRUNCATE_QUANTILES = (0.05, 0.95)

LOG_COLUMNS = {"price_mean": "log_price_mean"}

# Panel index used for the within transformation and the balance check.
# city_name is a display label only: every unmapped code shares "Others".
PANEL_ENTITY = ENTITY_ID
PANEL_TIME = "time"

RANDOM_SEED = 42
