"""
Definition of the protocol for handling calendric data: holidays including
moving observances, cyclic seasonalities and calendar categories.
"""

### --- Module Imports --- ###
# Standard Library
from typing import TYPE_CHECKING, Any, Optional, Type, Union, cast

# Third Party
import holidays
import numpy as np
import pandas as pd
from dateutil.relativedelta import SU
from pandas.tseries.holiday import Holiday as HolidayRule
from pandas.tseries.offsets import DateOffset, Easter
from pydantic import Field, field_validator
from typing_extensions import Self

if TYPE_CHECKING:
    from ceasefire.interface import CeasefireModel

# Ceasefire
from ceasefire.events import BoxCar, Event
from ceasefire.protocols.protocol_base import Protocol
from ceasefire.regressors import IntermittentEvent
from ceasefire.utilities.constants import _HOLIDAY
from ceasefire.utilities.logging import get_logger
from ceasefire.utilities.misc import infer_sampling_period

### --- Global Constants Definitions --- ###

DEFAULT_SEASONALITIES = {
    "yearly": {"period": pd.Timedelta("365.25D"), "default_order": 3},
    "quarterly": {"period": pd.Timedelta("365.25D") / 4, "default_order": 2},
    "monthly": {"period": pd.Timedelta("365.25D") / 12, "default_order": 2},
}

# Days with known shifts in street activity that are not public holidays and
# therefore missing from the holidays package.
OBSERVANCE_RULES = [
    HolidayRule("Easter Sunday", month=1, day=1, offset=[Easter()]),
    HolidayRule(
        "Mother's Day", month=5, day=1, offset=DateOffset(weekday=SU(2))
    ),
    HolidayRule(
        "Father's Day", month=6, day=1, offset=DateOffset(weekday=SU(3))
    ),
    HolidayRule("Halloween", month=10, day=31),
    HolidayRule("Christmas Eve", month=12, day=24),
    HolidayRule("New Year's Eve", month=12, day=31),
]


### --- Class and Function Definitions --- ###


def get_observances(years: Union[list[int], np.ndarray]) -> pd.DataFrame:
    """
    Evaluates the observance rules for the given years.

    Parameters
    ----------
    years : Union[list[int], np.ndarray]
        The years of interest

    Returns
    -------
    pd.DataFrame
        DataFrame with columns 'date' and 'holiday'
    """
    years = sorted(int(y) for y in years)
    if not years:
        return pd.DataFrame({"date": pd.to_datetime([]), _HOLIDAY: []})
    start = pd.Timestamp(year=years[0], month=1, day=1)
    end = pd.Timestamp(year=years[-1], month=12, day=31)
    frames = [
        pd.DataFrame(
            {"date": rule.dates(start, end), _HOLIDAY: rule.name}
        )
        for rule in OBSERVANCE_RULES
    ]
    observances = pd.concat(frames, ignore_index=True)
    # Rules are evaluated on the full span, but only requested years are kept
    return observances.loc[
        observances["date"].dt.year.isin(years)
    ].reset_index(drop=True)


def get_holidays(
    country: str,
    subdiv: Optional[str] = None,
    timestamps: Optional[pd.Series] = None,
    observances: bool = True,
) -> tuple[holidays.HolidayBase, set[str]]:
    """
    Returns all holidays for the specified country within the timerange of
    interest as HolidayBase object.

    Fixed-date and floating holidays such as Memorial Day or Thanksgiving are
    taken from the holidays package. If observances is True, the moving and
    fixed observances defined in OBSERVANCE_RULES (Easter Sunday, Mother's
    Day, Father's Day, Halloween, Christmas Eve, New Year's Eve) are added.

    Parameters
    ----------
    country : str
        Must be a valid ISO 3166-1 alpha-2 country code
    subdiv : str, optional
        The subdivision (e.g. state or province) as a ISO 3166-2 code or its
        alias
    timestamps : pd.Series, optional
        A pandas series of timestamps representing the range for which holidays
        should be returned. If None (default), all holidays registered with the
        holidays package are returned.
    observances : bool, optional
        Whether to add the observances. The default is True.

    Raises
    ------
    AttributeError
        In case there is no holiday calendar for the given input country

    Returns
    -------
    all_holidays : holidays.HolidayBase
        A dictionary-like class containing all holidays of the input country
    all_holiday_names : set[str]
        A set of all holiday names in the desired range
    """
    if timestamps is None:
        # Third Party
        from holidays.constants import DEFAULT_END_YEAR, DEFAULT_START_YEAR

        years = np.array(range(DEFAULT_START_YEAR, DEFAULT_END_YEAR + 1))
    else:
        years = timestamps.dt.year.unique()

    try:
        # Substitute days are dropped. Street activity follows the actual
        # date, not the day off.
        all_holidays = holidays.country_holidays(
            country,
            subdiv=subdiv,
            years=years,
            observed=False,
            language="en_US",
        )
    except NotImplementedError as e:
        raise AttributeError(
            f"Holidays in {country} are not currently supported!"
        ) from e

    if observances:
        observance_df = get_observances(years)
        for date, name in zip(
            observance_df["date"].dt.date, observance_df[_HOLIDAY]
        ):
            # HolidayBase joins names of holidays sharing a date with "; "
            all_holidays[date] = name

    # The split-and-join is a safety measure for the cases that two holidays
    # share the same date in which case they are separated by a semi-colon.
    all_holiday_names = set("; ".join(all_holidays.values()).split("; "))
    all_holiday_names.discard("")

    return all_holidays, all_holiday_names


def make_holiday_dataframe(
    timestamps: pd.Series,
    country: str,
    subdiv: Optional[str] = None,
    observances: bool = True,
    timestamp_name: str = "ds",
) -> pd.DataFrame:
    """
    Returns all holidays for the specified country within the timerange of
    interest as pandas DataFrame.

    Parameters
    ----------
    timestamps : pd.Series
        A pandas series of timestamps representing the range for which holidays
        should be returned.
    country : str
        Must be a valid ISO 3166-1 alpha-2 country code
    subdiv : str, optional
        The subdivision (e.g. state or province) as a ISO 3166-2 code or its
        alias
    observances : bool, optional
        Whether to include observances, see get_holidays(). Default is True.
    timestamp_name : str, optional
        Desired name for the timestamp column. The default is 'ds'.

    Returns
    -------
    holiday_df : pd.DataFrame
        Pandas DataFrame with timestamp column and holiday name column, one
        row per holiday occurrence.
    """
    all_holidays, _ = get_holidays(
        country=country,
        subdiv=subdiv,
        timestamps=timestamps,
        observances=observances,
    )

    rows = [
        (date, name)
        for date, names in all_holidays.items()
        for name in names.split("; ")
    ]
    holiday_df = pd.DataFrame(rows, columns=[timestamp_name, _HOLIDAY])
    holiday_df[timestamp_name] = pd.to_datetime(holiday_df[timestamp_name])

    # HolidayBase works on full years, hence restrict to the data range
    holiday_df = (
        holiday_df.loc[
            (holiday_df[timestamp_name] >= timestamps.min().normalize())
            & (holiday_df[timestamp_name] <= timestamps.max())
        ]
        .drop_duplicates()
        .sort_values(by=[timestamp_name, _HOLIDAY])
        .reset_index(drop=True)
    )
    return holiday_df


class Holiday(IntermittentEvent):
    """
    An EventRegressor that produces recurring events coinciding with a holiday.

    Note that the name-field of the regressor must equal the desired holiday.
    """

    # Country the holiday stems from
    country: str
    # Desired Subdivison if any
    subdiv: Optional[str] = None
    # Whether the holiday may be one of the observances
    observances: bool = True

    def to_dict(self: Self) -> dict[str, Any]:
        regressor_dict = super().to_dict()
        # t_list is reevaluated for every make_feature execution
        regressor_dict.pop("t_list")
        regressor_dict["country"] = self.country
        regressor_dict["subdiv"] = self.subdiv
        regressor_dict["observances"] = self.observances
        return regressor_dict

    def set_t_list(self: Self, t: pd.Series) -> list[pd.Timestamp]:
        """
        Look up all dates of the holiday within the range of t and store them
        as t_list.
        """
        t_name = "dummy"
        holiday_df = make_holiday_dataframe(
            timestamps=t,
            country=self.country,
            subdiv=self.subdiv,
            observances=self.observances,
            timestamp_name=t_name,
        )
        self.t_list = (
            holiday_df[t_name].loc[holiday_df[_HOLIDAY] == self.name].to_list()
        )
        return self.t_list

    def get_impact(self: Self, t: pd.Series) -> float:
        self.set_t_list(t)
        return super().get_impact(t)

    def make_feature(
        self: Self, t: pd.Series, regressor: Optional[pd.Series] = None
    ) -> tuple[pd.DataFrame, dict]:
        self.set_t_list(t)
        # Once we have the list, IntermittentEvent.make_feature() takes care of
        # the rest.
        return super().make_feature(t)


class CalendricData(Protocol):
    """
    Protocol to add features to the model that follow calendric patterns.

    Holidays:
        All holidays for a given country and (optional) subdivision, plus
        observances (if enabled), each as its own indicator regressor.
    Seasonalities:
        Yearly, quarterly and monthly cyclic seasonalities.
    Categories:
        Day-of-week dummies and, optionally, month-of-year dummies.

    Details are described in set_seasonalities() and set_events()
    """

    country: Optional[str] = "US"
    subdiv: Optional[str] = None
    observances: bool = True
    holiday_names: Optional[list[str]] = None
    holiday_prior_scale: Optional[float] = Field(gt=0, default=None)
    holiday_event: Event = BoxCar(width=pd.Timedelta("1D"))
    seasonality_prior_scale: Optional[float] = Field(gt=0, default=None)
    yearly_seasonality: Union[bool, str, int] = "auto"
    quarterly_seasonality: Union[bool, str, int] = False
    monthly_seasonality: Union[bool, str, int] = False
    day_of_week: bool = True
    month_of_year: bool = False
    categorical_prior_scale: Optional[float] = Field(gt=0, default=None)

    @field_validator("holiday_event", mode="before")
    @classmethod
    def validate_holiday_event(
        cls: Type[Self], holiday_event: Union[Event, dict[str, Any]]
    ) -> Event:
        """
        In case the input event was given as a dictionary this before-validator
        attempts to convert it to an Event.
        """
        try:
            if isinstance(holiday_event, dict):
                return Event.from_dict(holiday_event)
        except Exception as e:
            raise ValueError("Creating event from dictionary failed.") from e
        return holiday_event

    @field_validator(
        *(s + "_seasonality" for s in DEFAULT_SEASONALITIES.keys())
    )
    @classmethod
    def validate_seasonality_arg(
        cls: Type[Self], arg: Union[bool, str, int]
    ) -> Union[bool, str, int]:
        """
        Validates the xy_seasonality arguments, which must be 'auto', boolean,
        or an integer >=1.
        """
        if isinstance(arg, str) and arg == "auto":
            return arg
        if isinstance(arg, bool):
            return arg
        if isinstance(arg, int) and arg >= 1:
            return arg
        raise ValueError("Must be 'auto', a boolean, or an integer >= 1.")

    def set_events(
        self: Self, model: "CeasefireModel", timestamps: pd.Series
    ) -> "CeasefireModel":
        """
        Adds all holidays for specified country and subdivision to the model.

        The method first checks which of the country-holidays can be found in
        the time period specified by timestamps and adds only those. If
        holiday_names is set, only these holidays are added.

        Parameters
        ----------
        model : CeasefireModel
            The model to be updated
        timestamps : pd.Series
            A pandas series of timestamps.

        Returns
        -------
        CeasefireModel
            The updated model.

        """
        ps = self.holiday_prior_scale
        ps = model.event_prior_scale if ps is None else ps

        if self.country is None:
            return model

        holiday_df = make_holiday_dataframe(
            timestamps=timestamps,
            country=self.country,
            subdiv=self.subdiv,
            observances=self.observances,
        )
        holiday_names = set(holiday_df[_HOLIDAY].unique())

        if self.holiday_names is not None:
            unknown = set(self.holiday_names) - holiday_names
            if unknown:
                unknown_str = ", ".join([f"'{n}'" for n in sorted(unknown)])
                get_logger().warning(
                    f"Holiday(s) {unknown_str} not found in the data range "
                    f"of country '{self.country}'. Skipping them."
                )
            holiday_names &= set(self.holiday_names)

        for holiday in sorted(holiday_names):
            if model.has_regressor(holiday):
                get_logger().info(
                    f"Regressor '{holiday}' already exists. Protocol "
                    "CalendricData won't overwrite it."
                )
                continue
            model.add_event(
                name=holiday,
                prior_scale=ps,
                regressor_type="Holiday",
                event=self.holiday_event,
                country=self.country,
                subdiv=self.subdiv,
                observances=self.observances,
            )

        return model

    def set_seasonalities(
        self: Self, model: "CeasefireModel", timestamps: pd.Series
    ) -> "CeasefireModel":
        """
        Adds yearly, quarterly and monthly seasonalities as well as
        day-of-week and month-of-year dummies to the model.

        The seasonalities have the following fundamental periods and default
        maximum orders:

        Name       Period   Default Order
        ---------------------------------
        yearly     365.25d        3
        quarterly  91.31d         2
        monthly    30.44d         2

        Whether and how the seasonalities are added depends on the mode
        specified in the <name>_seasonality field:
            - True: The seasonality is added using the default maximum order
            - False: the seasonality won't be added
            - 'auto': The seasonality will be added according to the rule set
              described below
            - integer >= 1: the seasonality will be added with the integer used
              as maximum order

        In 'auto' mode the logic is as follows
            1. Each seasonality is only added, if the data span at least two
               full cycles of the fundamental period.
            2. The maximum order is determined by the default maximum order or
               the highest order that satisfies the Nyquist sampling theorem,
               whichever is smaller.

        Quarterly is a full subset of yearly. Therefore it will only be added
        if yearly won't be added to the model.

        Parameters
        ----------
        model : CeasefireModel
            The model to be updated
        timestamps : pd.Series
            A pandas series of timestamps.

        Returns
        -------
        CeasefireModel
            The updated model.

        """
        ps = self.seasonality_prior_scale
        ps = model.seasonality_prior_scale if ps is None else ps

        # The q'th fraction of the data has a sampling period below or equal
        # to the inferred period
        inferred_sampling_period = infer_sampling_period(timestamps, q=0.3)
        timespan = (
            timestamps.max() - timestamps.min() + inferred_sampling_period
        )

        skip_quarterly = (
            (self.yearly_seasonality is True)
            or (
                self.yearly_seasonality == "auto"
                and timespan / DEFAULT_SEASONALITIES["yearly"]["period"] >= 2
            )
            # A maximum yearly order interferes with quarterly if it is
            # larger than 3
            or (
                not isinstance(self.yearly_seasonality, bool)
                and isinstance(self.yearly_seasonality, int)
                and self.yearly_seasonality > 3
            )
        )

        for season, prop in DEFAULT_SEASONALITIES.items():
            period_loc = cast(pd.Timedelta, prop["period"])
            default_order_loc = cast(int, prop["default_order"])
            if (season == "quarterly") and skip_quarterly:
                get_logger().info(
                    "Quarterly seasonality will not be added to the model "
                    "due to interference with yearly seasonality."
                )
                continue

            add_mode = self.__dict__[season + "_seasonality"]

            if add_mode is True:
                fourier_order = default_order_loc
            elif add_mode is False:
                continue
            elif add_mode == "auto":
                if timespan / period_loc < 2:
                    get_logger().info(
                        f"Disabling {season} season. Configure "
                        f"protocol with {season}_seasonality = "
                        "True to overwrite this."
                    )
                    continue
                max_order = int(
                    np.floor(period_loc / (2 * inferred_sampling_period))
                )
                fourier_order = min(default_order_loc, max_order)
                if fourier_order == 0:
                    get_logger().info(
                        f"Disabling {season} season. Configure "
                        f"protocol with {season}_seasonality = "
                        "True to overwrite this."
                    )
                    continue
            else:
                fourier_order = add_mode

            if model.has_regressor(season):
                get_logger().info(
                    f"Regressor '{season}' already exists. Protocol "
                    "CalendricData won't overwrite it."
                )
                continue
            model.add_seasonality(
                name=season,
                period=str(period_loc),
                fourier_order=fourier_order,
                prior_scale=ps,
            )

        cps = self.categorical_prior_scale
        cps = model.seasonality_prior_scale if cps is None else cps
        categoricals = {
            "day_of_week": ("DayOfWeek", self.day_of_week),
            "month_of_year": ("MonthOfYear", self.month_of_year),
        }
        for name, (categorical_type, add) in categoricals.items():
            if not add:
                continue
            if model.has_regressor(name):
                get_logger().info(
                    f"Regressor '{name}' already exists. Protocol "
                    "CalendricData won't overwrite it."
                )
                continue
            model.add_categorical(
                name=name,
                categorical_type=categorical_type,
                prior_scale=cps,
            )

        if self.month_of_year and "yearly" in model.seasonalities:
            get_logger().warning(
                "Month-of-year dummies and yearly seasonality both describe "
                "the annual cycle. Their coefficients will be hard to "
                "interpret individually."
            )

        return model

    def to_dict(self: Self) -> dict[str, Any]:
        """
        Converts the CalendricData protocol to a serializable dictionary.
        """
        return {
            **super().to_dict(),
            **self.model_dump(),
            "holiday_event": self.holiday_event.to_dict(),
        }
