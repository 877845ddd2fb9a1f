from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from reportmaps.errors import ReshapeError
from reportmaps.reshape import drop_absent, filter_entities, filter_periods, melt_wide, parse_period


def _wide() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "code": ["A", "B"],
            "name": ["Alpha", "Beta"],
            "y2020": [1.0, 2.0],
            "y2021": [3.0, np.nan],
        }
    )


def test_missing_cell_yields_single_long_row() -> None:
    long = melt_wide(_wide(), first="y2020", last="y2021")

    assert len(long) == 3
    beta = long.loc[long["code"] == "B"]
    assert beta["period"].tolist() == ["y2020"]
    assert beta["value"].tolist() == [2.0]
    assert list(long.columns) == ["code", "name", "period", "value"]


def test_row_count_is_cells_minus_absent() -> None:
    frame = pd.DataFrame(
        {
            "code": ["A", "B", "C"],
            "y1": [1, None, 3],
            "y2": [None, None, 6],
            "y3": [7, 8, 9],
        }
    )
    long = melt_wide(frame, first="y1", last="y3")

    absent = int(frame[["y1", "y2", "y3"]].isna().sum().sum())
    assert len(long) == len(frame) * 3 - absent
    assert not long.duplicated(subset=["code", "period"]).any()


def test_no_range_returns_input_unchanged() -> None:
    frame = _wide()
    assert melt_wide(frame, first=None, last=None) is frame


def test_reshaping_long_output_again_is_a_no_op() -> None:
    long = melt_wide(_wide(), first="y2020", last="y2021")
    again = melt_wide(long, first=None, last=None)
    pd.testing.assert_frame_equal(long, again)


def test_duplicate_observations_raise() -> None:
    frame = pd.DataFrame({"code": ["A", "A"], "y2020": [1, 2]})
    with pytest.raises(ReshapeError, match="duplicate"):
        melt_wide(frame, first="y2020", last="y2020")


def test_output_name_collision_raises() -> None:
    frame = pd.DataFrame({"period": ["A"], "y2020": [1]})
    with pytest.raises(ReshapeError, match="collides"):
        melt_wide(frame, first="y2020", last="y2020")


@pytest.mark.parametrize(("first", "last"), [("y2021", "y2020"), ("y1999", "y2021")])
def test_bad_column_range_raises(first: str, last: str) -> None:
    with pytest.raises(ReshapeError):
        melt_wide(_wide(), first=first, last=last)


def test_custom_output_names() -> None:
    long = melt_wide(_wide(), first="y2020", last="y2021", var_name="year", value_name="riders")
    assert {"year", "riders"} <= set(long.columns)


def test_integer_year_headers_melt_as_text() -> None:
    frame = pd.DataFrame({"code": ["A", "B"], 2020: [1.0, np.nan], 2021: [2.0, 3.0]})

    long = melt_wide(frame, first="2020", last="2021")

    assert len(long) == 3
    assert set(long["period"]) == {"2020", "2021"}


def test_drop_absent_on_long_table() -> None:
    frame = pd.DataFrame({"code": ["A", "B", "C"], "gdp": [1.0, np.nan, 3.0]})

    kept = drop_absent(frame, "gdp")

    assert kept["code"].tolist() == ["A", "C"]
    with pytest.raises(ReshapeError, match="gdp_2020"):
        drop_absent(frame, "gdp_2020")


def test_parse_period() -> None:
    assert parse_period("y2020") == 2020
    assert parse_period("2019", prefix="y") == 2019
    assert parse_period("FY2018-19") == 2018
    assert parse_period("total") is None
    assert parse_period(None) is None


def test_filter_entities_keeps_allow_list_order() -> None:
    frame = pd.DataFrame({"code": ["A", "B", "C"], "v": [1, 2, 3]})
    kept = filter_entities(frame, "code", ["C", "A", "Z"])
    assert kept["code"].tolist() == ["C", "A"]


def test_filter_entities_empty_allow_list_keeps_all() -> None:
    frame = pd.DataFrame({"code": ["A", "B"]})
    assert filter_entities(frame, "code", ()) is frame


def test_filter_periods_inclusive_range() -> None:
    long = melt_wide(
        pd.DataFrame({"code": ["A"], "y2019": [1], "y2020": [2], "y2021": [3]}),
        first="y2019",
        last="y2021",
    )
    kept = filter_periods(long, "period", start=2020, end=2021, prefix="y")
    assert kept["period"].tolist() == ["y2020", "y2021"]
