### --- Module Imports --- ###
# Third Party
import numpy as np
import pandas as pd
import pytest

# Ceasefire
from ceasefire.events import BoxCar, Event
from ceasefire.regressors import (
    DayOfWeek,
    MonthOfYear,
    Regressor,
    Seasonality,
    SingleEvent,
    SmoothTrend,
    WindowIndicator,
)
from ceasefire.utilities.constants import _DELIM


### --- Tests --- ###
def test_seasonality_fourier_terms():
    season = Seasonality(
        name="weekly", period=7, fourier_order=2, prior_scale=1
    )
    t = pd.Series(np.arange(14))
    X, prior_scales = season.make_feature(t)

    assert X.shape == (14, 4)
    assert X.columns[0] == _DELIM.join(["Seasonality", "weekly", "odd", "1"])
    assert X.columns[3] == _DELIM.join(["Seasonality", "weekly", "even", "2"])
    np.testing.assert_allclose(X.iloc[:, 0], np.sin(2 * np.pi * t / 7))
    np.testing.assert_allclose(X.iloc[:, 3], np.cos(4 * np.pi * t / 7))
    # Cyclic: one period later the features repeat
    np.testing.assert_allclose(
        X.iloc[:7].values, X.iloc[7:].values, atol=1e-12
    )
    assert set(prior_scales.values()) == {1}


def test_day_of_week_dummies():
    t = pd.Series(pd.date_range("2019-01-07", periods=7, freq="D"))
    X, _ = DayOfWeek(name="day_of_week", prior_scale=1).make_feature(t)

    assert X.shape == (7, 6)
    assert not any(c.endswith("Monday") for c in X.columns)
    # 2019-01-07 is a Monday, i.e. the reference day
    assert X.iloc[0].sum() == 0
    assert (X.iloc[1:].sum(axis=1) == 1).all()
    assert X[f"DayOfWeek{_DELIM}day_of_week{_DELIM}Saturday"].iloc[5] == 1


def test_categorical_reference():
    t = pd.Series(pd.date_range("2019-01-01", "2019-12-31", freq="D"))
    X, _ = MonthOfYear(
        name="month", prior_scale=1, reference="July"
    ).make_feature(t)
    assert X.shape == (365, 11)
    assert X.loc[t.dt.month == 7].to_numpy().sum() == 0

    with pytest.raises(ValueError):
        DayOfWeek(name="day_of_week", prior_scale=1, reference="Caturday")


def test_single_event_boxcar():
    t = pd.Series(pd.date_range("2019-01-01", periods=10, freq="D"))
    event = SingleEvent(
        name="storm",
        prior_scale=1,
        event=BoxCar(width="2D"),
        t_start="2019-01-04",
    )
    X, _ = event.make_feature(t)
    assert X.iloc[:, 0].to_list() == [0, 0, 0, 1, 1, 0, 0, 0, 0, 0]
    assert event.get_impact(t) == 1.0


def test_window_indicator_masks_and_stays_binary():
    t = pd.Series(pd.date_range("2019-01-01", periods=12, freq="D"))
    window = WindowIndicator(
        name="pre_ceasefire",
        prior_scale=1,
        event={"event_type": "BoxCar", "width": "3D"},
        # Overlapping windows
        t_list=["2019-01-02", "2019-01-03"],
        mask_list=["2019-01-05"],
        mask_width="3D",
    )
    X, _ = window.make_feature(t)
    values = X.iloc[:, 0].to_list()

    assert set(values) <= {0, 1}
    assert values == [0, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0]

    window.mask_list = [pd.Timestamp("2019-01-03")]
    X, _ = window.make_feature(t)
    assert X.iloc[:, 0].to_list() == [0, 1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0]


def test_regressor_from_dict_dispatch():
    window = WindowIndicator(
        name="ceasefire",
        prior_scale=0.5,
        event=BoxCar(width="3D"),
        t_list=["2019-02-01"],
    )
    restored = Regressor.from_dict(window.to_dict())

    assert isinstance(restored, WindowIndicator)
    assert isinstance(restored.event, Event)
    assert restored.t_list == [pd.Timestamp("2019-02-01")]
    assert restored.event.width == pd.Timedelta("3D")

    with pytest.raises(NotImplementedError):
        Regressor.from_dict({"regressor_type": "Spline", "name": "x"})
    with pytest.raises(KeyError):
        Regressor.from_dict({"name": "x", "prior_scale": 1})
    with pytest.raises(KeyError):
        Regressor.from_dict({"regressor_type": "SingleEvent", "name": "x"})


def test_smooth_trend_basis():
    t = pd.Series(np.arange(100))
    trend = SmoothTrend(n_knots=4, degree=3, prior_scale=1)
    Z = trend.fit_basis(t)

    assert Z.shape == (100, trend.n_basis)
    assert trend.n_basis == 7
    # Columns are centered on the training data
    np.testing.assert_allclose(Z.mean(axis=0), 0, atol=1e-12)
    np.testing.assert_allclose(trend.make_basis(t), Z)

    # The basis is held constant outside of the training range
    outside = trend.make_basis(pd.Series([-10, 99, 150]))
    np.testing.assert_allclose(outside[0], Z[0])
    np.testing.assert_allclose(outside[1], Z[-1])
    np.testing.assert_allclose(outside[2], Z[-1])


def test_smooth_trend_requires_fit():
    trend = SmoothTrend(n_knots=2, prior_scale=1)
    with pytest.raises(ValueError):
        trend.make_basis(pd.Series([0, 1]))
    with pytest.raises(ValueError):
        trend.fit_basis(pd.Series([3, 3]))
