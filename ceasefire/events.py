"""
Definition of the Event base class and the boxcar window used for holidays
and ceasefire indicators
"""

### --- Module Imports --- ###
# Standard Library
from abc import ABC, abstractmethod
from typing import Any, Type

# Third Party
import pandas as pd
from pydantic import BaseModel, ConfigDict, field_validator
from typing_extensions import Self

# Ceasefire
from ceasefire.utilities.types import Timedelta


### --- Class and Function Definitions --- ###
class Event(BaseModel, ABC):
    """
    Abstract base class for all events
    """

    model_config = ConfigDict(
        # All events will use some sort of pd.Timestamp or pd.Timedelta
        arbitrary_types_allowed=True,
    )

    @property
    def _event_type(self: Self) -> str:
        """
        Returns name of the event class.
        """
        return type(self).__name__

    @abstractmethod
    def generate(
        self: Self, timestamps: pd.Series, t_start: pd.Timestamp
    ) -> pd.Series:
        """
        Generate a time series with a single instance of the event.

        Parameters
        ----------
        timestamps : pd.Series
            The input timestamps as independent variable
        t_start : pd.Timestamp
            Location of the event

        Returns
        -------
        pd.Series
            The output time series including the event.
        """
        pass

    def to_dict(self: Self) -> dict[str, Any]:
        """
        Converts the event to a serializable dictionary.

        Returns
        -------
        dict[str, Any]
            Dictionary containing the event type. All other event fields will
            be added by event child classes.
        """
        return {"event_type": self._event_type}

    @classmethod
    @abstractmethod
    def from_dict(cls: Type[Self], event_dict: dict[str, Any]) -> Self:
        """
        Forward declaration of class method for static type checking.
        See details in event_from_dict().
        """
        pass

    @classmethod
    def check_for_missing_keys(
        cls: Type[Self], event_dict: dict[str, Any]
    ) -> None:
        """
        Confirms that all required fields for the requested event type are
        found in the event dictionary.

        Parameters
        ----------
        event_dict : dict[str, Any]
            Dictionary containing all event fields

        Raises
        ------
        KeyError
            Raised if any keys are missing
        """
        required_fields = {
            name
            for name, info in cls.model_fields.items()
            if info.is_required()
        }
        missing_keys = required_fields - set(event_dict.keys())
        if missing_keys:
            missing_keys_str = ", ".join(
                [f"'{key}'" for key in sorted(missing_keys)]
            )
            raise KeyError(
                f"Key(s) {missing_keys_str} required for event of type "
                f"'{cls.__name__}' but not found in event dictionary."
            )


class BoxCar(Event):
    """
    A BoxCar shaped event.

    For a given time t the event is 1 for t_start <= t < t_start + width and 0
    otherwise. With a width of one day the boxcar marks a single calendar day,
    with a width of three days starting on a Friday it marks a weekend.

    Parameters
    ----------
    width : pd.Timedelta | str
        Temporal width of the boxcar function given as pd.Timedelta or string
        representing such.
    """

    width: Timedelta

    @field_validator("width")
    @classmethod
    def validate_width(cls: Type[Self], width: pd.Timedelta) -> pd.Timedelta:
        if width <= pd.Timedelta(0):
            raise ValueError("BoxCar width must be positive.")
        return width

    def generate(
        self: Self, timestamps: pd.Series, t_start: pd.Timestamp
    ) -> pd.Series:
        """
        Generate a time series with a single boxcar event.

        Parameters
        ----------
        timestamps : pd.Series
            The input timestamps at which the boxcar event is to be evaluated.
        t_start : pd.Timestamp
            Location of the boxcar's rising edge

        Returns
        -------
        pd.Series
            The output time series including the boxcar event with amplitude 1.
        """
        mask = (timestamps >= t_start) & (timestamps < t_start + self.width)
        return mask * 1

    def to_dict(self: Self) -> dict[str, Any]:
        event_dict = super().to_dict()
        event_dict["width"] = str(self.width)
        return event_dict

    @classmethod
    def from_dict(cls: Type[Self], event_dict: dict[str, Any]) -> Self:
        """
        Creates a BoxCar object from a dictionary whose key-value pairs
        correspond to the constructor arguments of the event.
        """
        event_dict = dict(event_dict)
        event_dict["width"] = pd.Timedelta(event_dict["width"])
        return cls(**event_dict)


# A map of Event class names to actual classes
EVENT_MAP: dict[str, Type[Event]] = {
    "BoxCar": BoxCar,
}


def event_from_dict(cls: Type[Event], event_dict: dict[str, Any]) -> Event:
    """
    Identifies the appropriate event type and calls its from_dict() method.

    Parameters
    ----------
    event_dict : dict[str, Any]
        Dictionary containing all event fields including event type.

    Raises
    ------
    NotImplementedError
        Is raised in case the event type stored in event_dict does not
        correspond to any event class.

    Returns
    -------
    Event
        The appropriate event constructed from the event_dict fields.
    """
    event_dict = event_dict.copy()
    if "event_type" not in event_dict:
        raise KeyError("The input dictionary must have the key 'event_type'.")
    event_type = event_dict.pop("event_type")
    try:
        event_class = EVENT_MAP[event_type]
    except KeyError as e:
        raise NotImplementedError(
            f"Event Type '{event_type}' does not exist."
        ) from e
    event_class.check_for_missing_keys(event_dict)
    return event_class.from_dict(event_dict)


# Add event_from_dict() as class method to the Event base class, so it can
# always be called as Event.from_dict(event_dict) with any dictionary as long
# as it contains the event_type field.
Event.from_dict = classmethod(event_from_dict)  # type: ignore
