from __future__ import annotations

import math

import pandas as pd
import pytest

from reportmaps.errors import DegenerateAggregateError
from reportmaps.metrics import share_of_total


def test_shares_of_complete_column() -> None:
    out = share_of_total(pd.DataFrame({"v": [10, 20, 70]}), "v")
    assert out["share_pct"].tolist() == pytest.approx([10.0, 20.0, 70.0])


def test_null_value_gets_null_share_and_rest_sum_to_100() -> None:
    out = share_of_total(pd.DataFrame({"v": [5.0, None, 15.0, 0.5]}), "v", out_column="pct")

    shares = out["pct"]
    assert math.isnan(shares.iloc[1])
    assert shares.dropna().sum() == pytest.approx(100.0)


def test_input_frame_is_not_modified() -> None:
    frame = pd.DataFrame({"v": [1.0, 3.0]})
    share_of_total(frame, "v")
    assert list(frame.columns) == ["v"]


@pytest.mark.parametrize("values", [[None, None], [0.0, 0.0]])
def test_degenerate_total_raises(values: list[float | None]) -> None:
    with pytest.raises(DegenerateAggregateError) as excinfo:
        share_of_total(pd.DataFrame({"v": values}), "v")
    assert excinfo.value.stage == "metric"


def test_missing_column_raises() -> None:
    with pytest.raises(DegenerateAggregateError):
        share_of_total(pd.DataFrame({"v": [1]}), "w")
