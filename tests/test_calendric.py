### --- Module Imports --- ###
# Third Party
import pandas as pd
import pytest

# Ceasefire
from ceasefire.interface import CeasefireModel
from ceasefire.protocols.calendric import (
    CalendricData,
    Holiday,
    get_holidays,
    get_observances,
    make_holiday_dataframe,
)
from ceasefire.utilities.constants import _HOLIDAY

### --- Global Constants Definitions --- ###
TIMESTAMPS_2019 = pd.Series(pd.date_range("2019-01-01", "2019-12-31"))


### --- Class and Function Definitions --- ###
def holiday_date(holiday_df: pd.DataFrame, name: str) -> pd.Timestamp:
    """
    Date of the single holiday whose name contains the given string
    """
    matches = holiday_df.loc[holiday_df[_HOLIDAY].str.contains(name)]
    assert len(matches) == 1, f"Expected exactly one '{name}'"
    return matches["ds"].iloc[0]


### --- Tests --- ###
def test_floating_and_moving_holidays():
    holiday_df = make_holiday_dataframe(TIMESTAMPS_2019, country="US")

    assert holiday_date(holiday_df, "Thanksgiving") == pd.Timestamp(
        "2019-11-28"
    )
    assert holiday_date(holiday_df, "Memorial") == pd.Timestamp("2019-05-27")
    assert holiday_date(holiday_df, "Easter") == pd.Timestamp("2019-04-21")
    assert holiday_date(holiday_df, "Mother") == pd.Timestamp("2019-05-12")
    assert holiday_date(holiday_df, "Father") == pd.Timestamp("2019-06-16")
    assert holiday_df["ds"].is_monotonic_increasing


def test_observances_can_be_disabled():
    holiday_df = make_holiday_dataframe(
        TIMESTAMPS_2019, country="US", observances=False
    )
    assert not holiday_df[_HOLIDAY].str.contains("Easter").any()
    assert holiday_df[_HOLIDAY].str.contains("Independence").any()


def test_get_observances_restricted_to_years():
    observances = get_observances([2018])
    assert (observances["date"].dt.year == 2018).all()
    assert len(observances) == 6
    assert get_observances([]).empty


def test_holidays_restricted_to_data_range():
    timestamps = pd.Series(pd.date_range("2019-06-01", "2019-08-31"))
    holiday_df = make_holiday_dataframe(timestamps, country="US")
    assert holiday_df["ds"].min() >= pd.Timestamp("2019-06-01")
    assert holiday_df["ds"].max() <= pd.Timestamp("2019-08-31")


def test_unsupported_country():
    with pytest.raises(AttributeError):
        get_holidays("XX", timestamps=TIMESTAMPS_2019)


def test_holiday_regressor_indicator():
    _, names = get_holidays("US", timestamps=TIMESTAMPS_2019)
    thanksgiving = next(n for n in names if "Thanksgiving" in n)
    regressor = Holiday(
        name=thanksgiving,
        prior_scale=1,
        event={"event_type": "BoxCar", "width": "1D"},
        country="US",
    )
    X, _ = regressor.make_feature(TIMESTAMPS_2019)

    assert X.iloc[:, 0].sum() == 1
    assert TIMESTAMPS_2019[X.iloc[:, 0] == 1].iloc[0] == pd.Timestamp(
        "2019-11-28"
    )
    assert "t_list" not in regressor.to_dict()


def test_calendric_protocol_sets_up_model(daily_counts):
    m = CeasefireModel()
    m.add_protocol(CalendricData(country="US"))
    m.preprocess(daily_counts)

    # Three years of data enable the yearly season and disable quarterly
    assert "yearly" in m.seasonalities
    assert "quarterly" not in m.seasonalities
    assert "monthly" not in m.seasonalities
    assert "day_of_week" in m.categoricals
    assert any("Thanksgiving" in name for name in m.events)
    assert any("Mother" in name for name in m.events)


def test_calendric_protocol_respects_existing_regressors(daily_counts):
    m = CeasefireModel()
    m.add_seasonality("yearly", period="365.25D", fourier_order=1)
    m.add_protocol(
        CalendricData(
            country="US",
            holiday_names=["Independence Day"],
            month_of_year=True,
            yearly_seasonality=True,
        )
    )
    m.preprocess(daily_counts)

    assert m.seasonalities["yearly"].fourier_order == 1
    assert "month_of_year" in m.categoricals
    assert list(m.events) == ["Independence Day"]


def test_calendric_protocol_without_country(short_counts):
    m = CeasefireModel()
    m.add_protocol(CalendricData(country=None))
    m.preprocess(short_counts)
    assert m.events == {}
    # A quarter of data is too short for any automatic season
    assert m.seasonalities == {}


def test_calendric_protocol_validation():
    with pytest.raises(ValueError):
        CalendricData(yearly_seasonality=0)
    with pytest.raises(ValueError):
        CalendricData(yearly_seasonality="sometimes")
    protocol = CalendricData(
        holiday_event={"event_type": "BoxCar", "width": "2D"}
    )
    assert protocol.holiday_event.width == pd.Timedelta("2D")
