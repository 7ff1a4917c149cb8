"""
Protocol that adds the recurring ceasefire weekends and the adjacent windows
as 0/1 indicator regressors.
"""

### --- Module Imports --- ###
# Standard Library
from typing import TYPE_CHECKING, Any, Optional, Type, Union

# Third Party
import pandas as pd
from pydantic import Field, field_validator
from typing_extensions import Self

if TYPE_CHECKING:
    from ceasefire.interface import CeasefireModel

# Ceasefire
from ceasefire.events import BoxCar
from ceasefire.protocols.protocol_base import Protocol
from ceasefire.regressors import DayOfWeek
from ceasefire.utilities.logging import get_logger
from ceasefire.utilities.types import Include, Timedelta, Timestamp, Weekday

### --- Global Constants Definitions --- ###
CEASEFIRE = "ceasefire"
POST_CEASEFIRE = "post_ceasefire"
PRE_CEASEFIRE = "pre_ceasefire"


### --- Class and Function Definitions --- ###


def ceasefire_start_dates(
    dates: Union[list[Any], pd.Series],
    snap_to_weekday: Optional[Weekday] = "Friday",
) -> list[pd.Timestamp]:
    """
    Normalizes announced ceasefire dates to the first day of each ceasefire.

    Each date is moved back to the closest preceding weekday given by
    snap_to_weekday, or kept if it already falls on it. A Sunday announced as
    ceasefire date hence maps to the Friday the weekend started.

    Parameters
    ----------
    dates : Union[list[Any], pd.Series]
        Anything pd.to_datetime understands as a list of dates
    snap_to_weekday : Optional[Weekday], optional
        Anchor weekday. If None, dates are only normalized to midnight. The
        default is 'Friday'.

    Returns
    -------
    list[pd.Timestamp]
        Sorted list of unique start dates
    """
    starts = pd.Series(pd.to_datetime(pd.Series(dates))).dt.normalize()
    if starts.isnull().any():
        msg = "Ceasefire dates contain missing values."
        get_logger().error(msg)
        raise ValueError(msg)

    if snap_to_weekday is not None:
        anchor = DayOfWeek.levels.index(snap_to_weekday)
        shift = (starts.dt.dayofweek - anchor) % 7
        starts = starts - pd.to_timedelta(shift, unit="D")

    return starts.drop_duplicates().sort_values().to_list()


class CeasefireWeekends(Protocol):
    """
    Protocol adding the ceasefire intervention to the model.

    Three WindowIndicator regressors are created:

    ceasefire       [start, start + duration)
    post_ceasefire  [start + duration, start + duration + post_window)
    pre_ceasefire   [start - pre_window, start)

    The ceasefire window takes precedence, i.e. days of the pre- and
    post-windows covered by any ceasefire window are set to zero. The
    exponentiated coefficient of each indicator is the incidence rate ratio
    of the respective window.

    Parameters
    ----------
    dates : list[pd.Timestamp]
        Announced ceasefire dates
    duration : pd.Timedelta
        Length of each ceasefire. The default is 3 days, Friday to Sunday.
    snap_to_weekday : Optional[Weekday]
        Weekday each ceasefire starts on, see ceasefire_start_dates()
    post_window : Optional[pd.Timedelta]
        Length of the window following each ceasefire. None disables it.
    pre_window : Optional[pd.Timedelta]
        Length of the window preceding each ceasefire. None disables it.
    prior_scale : Optional[float]
        Prior scale of all indicators. If None, the event prior scale of the
        model is used.
    include : Include
        Include flag handed to CeasefireModel.add_event()
    """

    dates: list[Timestamp]
    duration: Timedelta = pd.Timedelta("3D")
    snap_to_weekday: Optional[Weekday] = "Friday"
    post_window: Optional[Timedelta] = pd.Timedelta("3D")
    pre_window: Optional[Timedelta] = None
    prior_scale: Optional[float] = Field(gt=0, default=None)
    include: Include = True

    @field_validator("dates")
    @classmethod
    def validate_dates(
        cls: Type[Self], dates: list[pd.Timestamp]
    ) -> list[pd.Timestamp]:
        if len(dates) == 0:
            raise ValueError("At least one ceasefire date is required.")
        return dates

    @field_validator("duration", "post_window", "pre_window")
    @classmethod
    def validate_windows(
        cls: Type[Self], window: Optional[pd.Timedelta]
    ) -> Optional[pd.Timedelta]:
        if window is not None and window <= pd.Timedelta(0):
            raise ValueError("Window lengths must be positive.")
        return window

    @property
    def start_dates(self: Self) -> list[pd.Timestamp]:
        return ceasefire_start_dates(self.dates, self.snap_to_weekday)

    def set_events(
        self: Self, model: "CeasefireModel", timestamps: pd.Series
    ) -> "CeasefireModel":
        """
        Adds the ceasefire, post_ceasefire and pre_ceasefire indicators to the
        model.

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
        ps = self.prior_scale
        ps = model.event_prior_scale if ps is None else ps
        starts = self.start_dates

        n_inside = sum(
            timestamps.min() <= s <= timestamps.max() for s in starts
        )
        get_logger().info(
            f"{n_inside} of {len(starts)} ceasefires fall into the data range."
        )

        windows = {CEASEFIRE: (starts, self.duration)}
        if self.post_window is not None:
            windows[POST_CEASEFIRE] = (
                [s + self.duration for s in starts],
                self.post_window,
            )
        if self.pre_window is not None:
            windows[PRE_CEASEFIRE] = (
                [s - self.pre_window for s in starts],
                self.pre_window,
            )

        for name, (t_list, width) in windows.items():
            if model.has_regressor(name):
                get_logger().info(
                    f"Regressor '{name}' already exists. Protocol "
                    "CeasefireWeekends won't overwrite it."
                )
                continue
            # Only the adjacent windows are masked by the ceasefire
            mask_list = [] if name == CEASEFIRE else starts
            model.add_event(
                name=name,
                regressor_type="WindowIndicator",
                event=BoxCar(width=width),
                prior_scale=ps,
                include=self.include,
                t_list=t_list,
                mask_list=mask_list,
                mask_width=self.duration,
            )
        return model

    def set_seasonalities(
        self: Self, model: "CeasefireModel", timestamps: pd.Series
    ) -> "CeasefireModel":
        # The intervention has no seasonal component
        return model

    def to_dict(self: Self) -> dict[str, Any]:
        """
        Converts the CeasefireWeekends protocol to a serializable dictionary.
        """

        def as_str(td: Optional[pd.Timedelta]) -> Optional[str]:
            return None if td is None else str(td)

        return {
            **super().to_dict(),
            "dates": [str(d.date()) for d in self.dates],
            "duration": str(self.duration),
            "snap_to_weekday": self.snap_to_weekday,
            "post_window": as_str(self.post_window),
            "pre_window": as_str(self.pre_window),
            "prior_scale": self.prior_scale,
            "include": self.include,
        }
