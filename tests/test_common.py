import pytest

from plus_analysis.common import (
    DataError,
    PanelBalanceError,
    check_balanced,
    check_raw,
    is_balanced,
    load_raw,
    significance_stars,
)


def test_check_raw_rejects_empty_input(raw_observations):
    with pytest.raises(DataError, match="no rows"):
        check_raw(raw_observations.iloc[0:0])


def test_check_raw_rejects_missing_column(raw_observations):
    with pytest.raises(DataError, match="price_mean"):
        check_raw(raw_observations.drop(columns=["price_mean"]))


@pytest.mark.parametrize("bad", ["2018-13", "abc", 8.5])
def test_check_raw_rejects_unparseable_period(raw_observations, bad):
    raw = raw_observations.astype({"timeperiod": object})
    raw.loc[0, "timeperiod"] = bad
    with pytest.raises(DataError, match="timeperiod"):
        check_raw(raw)


def test_check_raw_coerces_types(raw_observations):
    out = check_raw(raw_observations)
    assert str(out["city_number"].dtype) == "Int64"
    assert out["city_number"].isna().sum() == 1
    assert out["timeperiod"].dtype.kind == "i"
    # input left untouched
    assert raw_observations["city_number"].dtype.kind == "f"


def test_load_raw_missing_file(tmp_path):
    with pytest.raises(DataError, match="Missing required input"):
        load_raw(tmp_path / "nope.csv")


def test_load_raw_reads_csv(tmp_path, raw_observations):
    path = tmp_path / "raw.csv"
    raw_observations.to_csv(path, index=False)
    assert len(load_raw(path)) == len(raw_observations)


def test_check_balanced(toy_panel):
    check_balanced(toy_panel)
    assert is_balanced(toy_panel)

    unbalanced = toy_panel[~((toy_panel["city_name"] == "B") & (toy_panel["time"] == "After"))]
    with pytest.raises(PanelBalanceError, match="Unbalanced"):
        check_balanced(unbalanced)
    assert not is_balanced(unbalanced)


def test_check_balanced_missing_index_column(toy_panel):
    with pytest.raises(DataError):
        check_balanced(toy_panel.drop(columns=["time"]))


def test_significance_stars():
    assert significance_stars(0.001) == "***"
    assert significance_stars(0.03) == "**"
    assert significance_stars(0.07) == "*"
    assert significance_stars(0.5) == ""
    assert significance_stars(float("nan")) == ""
