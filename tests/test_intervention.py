### --- Module Imports --- ###
# Third Party
import pandas as pd
import pytest

# Ceasefire
from ceasefire.events import BoxCar
from ceasefire.interface import CeasefireModel
from ceasefire.protocols.intervention import (
    CeasefireWeekends,
    ceasefire_start_dates,
)
from ceasefire.protocols.protocol_base import Protocol


### --- Class and Function Definitions --- ###
def indicator(m: CeasefireModel, name: str) -> pd.Series:
    column = next(c for c in m.X.columns if c.endswith(name))
    return pd.Series(
        m.X[column].to_numpy(), index=m.history["ds"], name=name
    )


### --- Tests --- ###
def test_start_dates_snap_to_friday():
    starts = ceasefire_start_dates(
        ["2017-08-06", "2017-08-04", "2017-11-03", "2017-08-05"]
    )
    assert starts == [pd.Timestamp("2017-08-04"), pd.Timestamp("2017-11-03")]


def test_start_dates_without_snapping():
    starts = ceasefire_start_dates(
        pd.Series(["2018-05-12 14:00", "2018-02-03"]), snap_to_weekday=None
    )
    assert starts == [pd.Timestamp("2018-02-03"), pd.Timestamp("2018-05-12")]


def test_start_dates_reject_missing():
    with pytest.raises(ValueError):
        ceasefire_start_dates(["2018-02-02", None])


def test_ceasefire_windows(daily_counts, ceasefire_dates):
    m = CeasefireModel()
    m.add_protocol(CeasefireWeekends(dates=ceasefire_dates, pre_window="2D"))
    m.preprocess(daily_counts)

    assert {"ceasefire", "post_ceasefire", "pre_ceasefire"} <= set(m.events)
    ceasefire = indicator(m, "__delim__ceasefire")
    post = indicator(m, "post_ceasefire")
    pre = indicator(m, "pre_ceasefire")

    for values in (ceasefire, post, pre):
        assert set(values.unique()) <= {0.0, 1.0}
    # Nine Friday to Sunday weekends
    assert ceasefire.sum() == 27
    assert ceasefire["2017-08-04":"2017-08-06"].tolist() == [1, 1, 1]
    assert ceasefire["2017-08-07"] == 0
    assert post["2017-08-07":"2017-08-09"].tolist() == [1, 1, 1]
    assert post["2017-08-10"] == 0
    assert pre["2017-08-02":"2017-08-03"].tolist() == [1, 1]
    # Windows never overlap the ceasefire itself
    assert (ceasefire * post).sum() == 0
    assert (ceasefire * pre).sum() == 0


def test_ceasefire_window_precedence(short_counts):
    # The post window of the first ceasefire reaches into the second one
    m = CeasefireModel()
    m.add_protocol(
        CeasefireWeekends(
            dates=["2019-02-01", "2019-02-08"], post_window="7D"
        )
    )
    m.preprocess(short_counts)
    ceasefire = indicator(m, "__delim__ceasefire")
    post = indicator(m, "post_ceasefire")

    assert post["2019-02-04":"2019-02-07"].tolist() == [1, 1, 1, 1]
    assert post["2019-02-08":"2019-02-10"].tolist() == [0, 0, 0]
    assert ceasefire["2019-02-08":"2019-02-10"].tolist() == [1, 1, 1]
    assert post["2019-02-11":"2019-02-17"].tolist() == [1] * 7


def test_disabled_post_window(short_counts):
    m = CeasefireModel()
    m.add_protocol(CeasefireWeekends(dates=["2019-02-01"], post_window=None))
    m.preprocess(short_counts)
    assert "ceasefire" in m.events
    assert "post_ceasefire" not in m.events
    assert "pre_ceasefire" not in m.events


def test_manual_event_takes_precedence(short_counts):
    m = CeasefireModel()
    m.add_event(
        "ceasefire",
        regressor_type="SingleEvent",
        event=BoxCar(width="1D"),
        t_start="2019-02-02",
    )
    m.add_protocol(CeasefireWeekends(dates=["2019-02-01"]))
    m.preprocess(short_counts)

    assert m.events["ceasefire"]["regressor"].t_start == pd.Timestamp(
        "2019-02-02"
    )
    assert indicator(m, "__delim__ceasefire").sum() == 1


def test_prior_scale_of_indicators(short_counts):
    m = CeasefireModel(event_prior_scale=2.0)
    m.add_protocol(CeasefireWeekends(dates=["2019-02-01"]))
    m.preprocess(short_counts)
    assert m.events["ceasefire"]["regressor"].prior_scale == 2.0

    m = CeasefireModel()
    m.add_protocol(CeasefireWeekends(dates=["2019-02-01"], prior_scale=0.5))
    m.preprocess(short_counts)
    assert m.events["post_ceasefire"]["regressor"].prior_scale == 0.5


def test_protocol_validation():
    with pytest.raises(ValueError):
        CeasefireWeekends(dates=[])
    with pytest.raises(ValueError):
        CeasefireWeekends(dates=["2019-02-01"], duration="-1D")
    with pytest.raises(ValueError):
        CeasefireWeekends(dates=["2019-02-01"], snap_to_weekday="Funday")


def test_protocol_to_dict(ceasefire_dates):
    protocol = CeasefireWeekends(dates=ceasefire_dates)
    protocol_dict = protocol.to_dict()

    assert protocol_dict["protocol_type"] == "CeasefireWeekends"
    assert protocol_dict["dates"][0] == "2017-08-04"
    assert protocol_dict["pre_window"] is None

    restored = Protocol.from_dict(protocol_dict)
    assert isinstance(restored, CeasefireWeekends)
    assert restored.start_dates == protocol.start_dates
    assert restored.post_window == pd.Timedelta("3D")
    # The input dictionary is left untouched
    assert protocol_dict["protocol_type"] == "CeasefireWeekends"


def test_protocol_from_dict_errors():
    with pytest.raises(KeyError, match="dates"):
        Protocol.from_dict({"protocol_type": "CeasefireWeekends"})
    with pytest.raises(KeyError):
        Protocol.from_dict({"dates": ["2019-02-01"]})
    with pytest.raises(NotImplementedError):
        Protocol.from_dict({"protocol_type": "Curfew"})
    restored = Protocol.from_dict(
        {"type": "CeasefireWeekends", "dates": ["2019-02-01"]},
        type_key="type",
    )
    assert restored.start_dates == [pd.Timestamp("2019-02-01")]
