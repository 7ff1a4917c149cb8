"""
Definition of the regressor classes from which the ceasefire model assembles
its design matrix
"""

### --- Module Imports --- ###
# Standard Library
from abc import ABC, abstractmethod
from itertools import product
from typing import Any, ClassVar, Optional, Type, Union

# Third Party
import numpy as np
import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, field_validator
from scipy.interpolate import BSpline
from typing_extensions import Self

# Ceasefire
from ceasefire.events import Event
from ceasefire.utilities.constants import _DELIM
from ceasefire.utilities.types import Timedelta, Timestamp


### --- Class and Function Definitions --- ###
class Regressor(BaseModel, ABC):
    """
    Base class for adding regressors to the ceasefire model and creating the
    respective feature matrix
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    # class attributes that all regressors have in common
    name: str
    prior_scale: float = Field(gt=0)

    @property
    def _regressor_type(self: Self) -> str:
        """
        Returns name of the regressor class.
        """
        return type(self).__name__

    def to_dict(self: Self) -> dict[str, Any]:
        """
        Converts the Regressor to a serializable dictionary.

        Returns
        -------
        dict[str, Any]
            Dictionary containing all regressor fields including regressor type
        """
        regressor_dict = {
            k: self.__dict__[k] for k in Regressor.model_fields.keys()
        }
        regressor_dict["regressor_type"] = self._regressor_type
        return regressor_dict

    @classmethod
    def from_dict(cls: Type[Self], regressor_dict: dict[str, Any]) -> Self:
        """
        Forward declaration of class method for static type checking.
        See details in regressor_from_dict().
        """
        pass

    @classmethod
    def check_for_missing_keys(
        cls: Type[Self], regressor_dict: dict[str, Any]
    ) -> None:
        """
        Confirms that all required fields for the requested regressor type are
        found in the regressor dictionary.

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
        missing_keys = required_fields - set(regressor_dict.keys())
        if missing_keys:
            missing_keys_str = ", ".join(
                [f"'{key}'" for key in sorted(missing_keys)]
            )
            raise KeyError(
                f"Key(s) {missing_keys_str} required for regressors of type "
                f"{cls.__name__} but not found in regressor dictionary."
            )

    @abstractmethod
    def make_feature(
        self: Self, t: pd.Series, regressor: Optional[pd.Series] = None
    ) -> tuple[pd.DataFrame, dict]:
        """
        Create the feature matrix along with prior scales for a given time
        vector

        Parameters
        ----------
        t : pd.Series
            A pandas series of timestamps (or integer times for seasonalities)
            at which the regressor has to be evaluated
        regressor: pd.Series
            Contains the values for the regressor that will be added to the
            feature matrix unchanged. Only has effect for ExternalRegressor

        Returns
        -------
        pd.DataFrame
            Contains the feature matrix
        dict
            A map for 'feature matrix column name' -> 'prior_scale'
        """
        pass


class ExternalRegressor(Regressor):
    """
    Used to add external regressors to the ceasefire model and create its
    feature matrix
    """

    def make_feature(
        self: Self, t: pd.Series, regressor: Optional[pd.Series] = None
    ) -> tuple[pd.DataFrame, dict]:
        if not isinstance(regressor, pd.Series):
            raise TypeError("External Regressor must be pandas Series.")

        # the provided regressor must have a value for each timestamp
        if t.shape[0] != regressor.shape[0]:
            raise ValueError(
                f"Provided data for extra Regressor {self.name}"
                " do not have same length as timestamp column."
            )
        column = f"{self._regressor_type}{_DELIM}{self.name}"
        X = pd.DataFrame({column: regressor.values})
        prior_scales = {column: self.prior_scale}
        return X, prior_scales


class Seasonality(Regressor):
    """
    Cyclic encoding of a seasonal pattern by pairs of sine and cosine terms.

    Important: Period is unitless. That is, when called from the model, it
    will make seasonality features with a period in units of the sampling
    period.
    """

    # Fundamental period in units of the sampling period
    period: float = Field(gt=0)
    # Order up to which fourier components will be added to the feature matrix
    fourier_order: int = Field(ge=1)

    def to_dict(self: Self) -> dict[str, Any]:
        regressor_dict = super().to_dict()
        regressor_dict["period"] = self.period
        regressor_dict["fourier_order"] = self.fourier_order
        return regressor_dict

    def make_feature(
        self: Self, t: pd.Series, regressor: Optional[pd.Series] = None
    ) -> tuple[pd.DataFrame, dict]:
        """
        Create the feature matrix along with prior scales for a given integer
        time vector

        Parameters
        ----------
        t : pd.Series
            Integer times at which the regressor has to be evaluated.
        regressor : pd.Series
            Unused.

        Returns
        -------
        X : pd.DataFrame
            Contains the feature matrix
        prior_scales : dict
            A map for 'feature matrix column name' -> 'prior_scale'
        """
        # Note that 'odd' and 'even' must follow the same order as they are
        # returned by self.fourier_series()
        orders_str = map(str, range(1, self.fourier_order + 1))
        columns = [
            _DELIM.join(x)
            for x in product(
                [self._regressor_type],
                [self.name],
                ["odd", "even"],
                orders_str,
            )
        ]
        X = pd.DataFrame(
            data=self.fourier_series(
                np.asarray(t, dtype=float), self.period, self.fourier_order
            ),
            columns=columns,
        )
        prior_scales = {col: self.prior_scale for col in columns}
        return X, prior_scales

    @staticmethod
    def fourier_series(
        t: np.ndarray, period: float, max_fourier_order: int
    ) -> np.ndarray:
        """
        Create a (2 X max_fourier_order) column array that contains the sine
        terms followed by the cosine terms of all orders up to the maximum
        order

        Parameters
        ----------
        t : np.ndarray
            Integer array at which the fourier components are to be evaluated
        period : float
            Period duration in units of the integer array
        max_fourier_order : int
            Maximum order up to which Fourier components will be created

        Returns
        -------
        np.ndarray
            The array containing the Fourier components

        """
        w0 = 2 * np.pi / period
        odd = np.sin(
            w0 * t.reshape(-1, 1) * np.arange(1, max_fourier_order + 1)
        )
        even = np.cos(
            w0 * t.reshape(-1, 1) * np.arange(1, max_fourier_order + 1)
        )
        return np.hstack([odd, even])


class CategoricalRegressor(Regressor):
    """
    Base class for calendar categories that enter the model as 0/1 dummy
    columns, one per level except the reference level.
    """

    # All levels in their natural order. Set by each child class.
    levels: ClassVar[tuple[str, ...]] = ()

    reference: str

    @field_validator("reference")
    @classmethod
    def validate_reference(cls: Type[Self], reference: str) -> str:
        if reference not in cls.levels:
            level_list = ", ".join([f"'{s}'" for s in cls.levels])
            raise ValueError(
                f"Reference level '{reference}' must be any of {level_list}."
            )
        return reference

    @abstractmethod
    def extract(self: Self, t: pd.Series) -> pd.Series:
        """
        Map timestamps onto level names.
        """
        pass

    def to_dict(self: Self) -> dict[str, Any]:
        regressor_dict = super().to_dict()
        regressor_dict["reference"] = self.reference
        return regressor_dict

    def make_feature(
        self: Self, t: pd.Series, regressor: Optional[pd.Series] = None
    ) -> tuple[pd.DataFrame, dict]:
        labels = self.extract(t.reset_index(drop=True))
        columns = {
            f"{self._regressor_type}{_DELIM}{self.name}{_DELIM}{level}": (
                labels == level
            ).astype(int)
            for level in self.levels
            if level != self.reference
        }
        X = pd.DataFrame(columns)
        prior_scales = {col: self.prior_scale for col in X.columns}
        return X, prior_scales


class DayOfWeek(CategoricalRegressor):
    """
    Day-of-week dummies with Monday as default reference day
    """

    levels: ClassVar[tuple[str, ...]] = (
        "Monday",
        "Tuesday",
        "Wednesday",
        "Thursday",
        "Friday",
        "Saturday",
        "Sunday",
    )

    reference: str = "Monday"

    def extract(self: Self, t: pd.Series) -> pd.Series:
        return t.dt.dayofweek.map(dict(enumerate(self.levels)))


class MonthOfYear(CategoricalRegressor):
    """
    Month dummies with January as default reference month
    """

    levels: ClassVar[tuple[str, ...]] = (
        "January",
        "February",
        "March",
        "April",
        "May",
        "June",
        "July",
        "August",
        "September",
        "October",
        "November",
        "December",
    )

    reference: str = "January"

    def extract(self: Self, t: pd.Series) -> pd.Series:
        return t.dt.month.map(dict(enumerate(self.levels, start=1)))


class EventRegressor(Regressor):
    """
    A base class used to create a regressor based on an event
    """

    # Each EventRegressor must be associated with exactly one event
    event: Event

    @field_validator("event", mode="before")
    @classmethod
    def validate_event(
        cls: Type[Self], event: Union[Event, dict[str, Any]]
    ) -> Event:
        if isinstance(event, dict):
            return Event.from_dict(event)
        return event

    def to_dict(self: Self) -> dict[str, Any]:
        regressor_dict = super().to_dict()
        regressor_dict["event"] = self.event.to_dict()
        return regressor_dict

    @abstractmethod
    def get_impact(self: Self, t: pd.Series) -> float:
        """
        Calculates the fraction of overall events within the timestamp range
        """
        pass

    def _column(self: Self) -> str:
        return (
            f"{self._regressor_type}{_DELIM}{self.event._event_type}"
            f"{_DELIM}{self.name}"
        )


class SingleEvent(EventRegressor):
    """
    An EventRegressor that produces the event exactly once at a given time.
    """

    # Single timestamp at which the event occurs
    t_start: Timestamp

    def to_dict(self: Self) -> dict[str, Any]:
        regressor_dict = super().to_dict()
        regressor_dict["t_start"] = str(self.t_start)
        return regressor_dict

    def get_impact(self: Self, t: pd.Series) -> float:
        return float(t.min() <= self.t_start <= t.max())

    def make_feature(
        self: Self, t: pd.Series, regressor: Optional[pd.Series] = None
    ) -> tuple[pd.DataFrame, dict]:
        t = t.reset_index(drop=True)
        column = self._column()
        X = pd.DataFrame({column: self.event.generate(t, self.t_start)})
        prior_scales = {column: self.prior_scale}
        return X, prior_scales


class IntermittentEvent(EventRegressor):
    """
    An EventRegressor that produces the event at times given through a list.
    """

    # A list of timestamps at which the base events occur.
    t_list: list[Timestamp] = []

    def to_dict(self: Self) -> dict[str, Any]:
        regressor_dict = super().to_dict()
        regressor_dict["t_list"] = [str(t) for t in self.t_list]
        return regressor_dict

    def get_impact(self: Self, t: pd.Series) -> float:
        """
        Calculates the fraction of overall events within the timestamp range.

        Parameters
        ----------
        t : pd.Series
            A pandas series of timestamps at which the regressor has to be
            evaluated

        Returns
        -------
        impact : float
            Fraction of overall events within the timestamp range

        """
        # In case no event is in the list, return zero to signal that no event
        # will be fitted
        if len(self.t_list) == 0:
            return 0.0
        impact = sum(float(t.min() <= t0 <= t.max()) for t0 in self.t_list)
        impact /= len(self.t_list)
        return impact

    def make_feature(
        self: Self, t: pd.Series, regressor: Optional[pd.Series] = None
    ) -> tuple[pd.DataFrame, dict]:
        # Drop index to ensure t aligns with all_events
        t = t.reset_index(drop=True)
        column = self._column()

        all_events = pd.Series(0, index=range(t.shape[0]))
        for t_start in self.t_list:
            all_events += self.event.generate(t, t_start)

        X = pd.DataFrame({column: all_events})
        prior_scales = {column: self.prior_scale}
        return X, prior_scales


class WindowIndicator(IntermittentEvent):
    """
    A 0/1 indicator of the union of event windows starting at the times in
    t_list. Days covered by a mask window, i.e. a window of width mask_width
    starting at any time in mask_list, are set to zero.

    Overlapping windows do not add up, so the coefficient of the indicator
    is a log incidence rate ratio of being inside any window.
    """

    mask_list: list[Timestamp] = []
    mask_width: Timedelta = pd.Timedelta("1D")

    def to_dict(self: Self) -> dict[str, Any]:
        regressor_dict = super().to_dict()
        regressor_dict["mask_list"] = [str(t) for t in self.mask_list]
        regressor_dict["mask_width"] = str(self.mask_width)
        return regressor_dict

    def make_feature(
        self: Self, t: pd.Series, regressor: Optional[pd.Series] = None
    ) -> tuple[pd.DataFrame, dict]:
        X, prior_scales = super().make_feature(t)
        t = t.reset_index(drop=True)
        column = self._column()

        masked = pd.Series(False, index=range(t.shape[0]))
        for t_mask in self.mask_list:
            masked |= (t >= t_mask) & (t < t_mask + self.mask_width)

        X[column] = ((X[column] > 0) & ~masked).astype(int)
        return X, prior_scales


class SmoothTrend(BaseModel):
    """
    Smooth function of time represented by a B-spline basis.

    The knots are placed equidistantly over the integer time range of the
    training data. The basis columns are centered on the training data and the
    first column is dropped so that the intercept stays identifiable. In the
    Stan model the spline coefficients follow a first-order random walk whose
    step size has a half student-t prior with scale prior_scale, which makes
    this a Bayesian P-spline.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str = "trend"
    # Number of interior knots
    n_knots: int = Field(ge=0)
    degree: int = Field(ge=1, le=5, default=3)
    prior_scale: float = Field(gt=0)

    # Set by fit_basis()
    knots: np.ndarray = np.array([])
    column_means: np.ndarray = np.array([])

    @property
    def n_basis(self: Self) -> int:
        """
        Number of basis columns handed to the Stan model.
        """
        return self.n_knots + self.degree

    @property
    def is_set(self: Self) -> bool:
        return self.knots.size > 0

    def to_dict(self: Self) -> dict[str, Any]:
        return {
            "name": self.name,
            "n_knots": self.n_knots,
            "degree": self.degree,
            "prior_scale": self.prior_scale,
        }

    def fit_basis(self: Self, t: pd.Series) -> np.ndarray:
        """
        Place the knots on the range of the integer training times and return
        the centered basis evaluated at these times.

        Parameters
        ----------
        t : pd.Series
            Integer times of the training data

        Returns
        -------
        np.ndarray
            Basis matrix of shape (len(t), n_basis)
        """
        t_arr = np.asarray(t, dtype=float)
        t_min, t_max = t_arr.min(), t_arr.max()
        if t_min == t_max:
            raise ValueError(
                "Cannot place spline knots on a single point in time."
            )
        interior = np.linspace(t_min, t_max, self.n_knots + 2)[1:-1]
        self.knots = np.concatenate(
            [
                np.repeat(t_min, self.degree + 1),
                interior,
                np.repeat(t_max, self.degree + 1),
            ]
        )
        raw = self.raw_basis(t_arr)
        self.column_means = raw.mean(axis=0)
        return (raw - self.column_means)[:, 1:]

    def make_basis(self: Self, t: pd.Series) -> np.ndarray:
        """
        Evaluate the centered basis at arbitrary integer times. Times outside
        the training range are clamped to its boundaries, i.e. the trend is
        held constant beyond the data.
        """
        if not self.is_set:
            raise ValueError("Knots are not set. Call fit_basis() first.")
        raw = self.raw_basis(np.asarray(t, dtype=float))
        return (raw - self.column_means)[:, 1:]

    def raw_basis(self: Self, t: np.ndarray) -> np.ndarray:
        t_clamped = np.clip(
            t, self.knots[self.degree], self.knots[-self.degree - 1]
        )
        basis = BSpline.design_matrix(t_clamped, self.knots, self.degree)
        return basis.toarray()


# A map of Regressor class names to actual classes
def get_regressor_map() -> dict[str, Type[Regressor]]:
    """
    Returns a dictionary mapping regressor names as strings to actual classes.
    Creating of this map is encapsulated as function to avoid circular imports
    of the protocol modules.

    Returns
    -------
    regressor_map : dict[str, Regressor]
        A map 'regressor name' -> 'regressor class'

    """
    # Ceasefire
    from ceasefire.protocols.calendric import Holiday

    regressor_map: dict[str, Type[Regressor]] = {
        "Holiday": Holiday,
        "ExternalRegressor": ExternalRegressor,
        "Seasonality": Seasonality,
        "DayOfWeek": DayOfWeek,
        "MonthOfYear": MonthOfYear,
        "SingleEvent": SingleEvent,
        "IntermittentEvent": IntermittentEvent,
        "WindowIndicator": WindowIndicator,
    }
    return regressor_map


def get_event_regressors() -> list[str]:
    """
    Names of all regressor classes that are EventRegressors
    """
    return [
        k
        for k, v in get_regressor_map().items()
        if issubclass(v, EventRegressor) and v is not EventRegressor
    ]


def regressor_from_dict(
    cls: Type[Regressor], regressor_dict: dict[str, Any]
) -> Regressor:
    """
    Identifies the appropriate regressor type and calls its from_dict() method

    Parameters
    ----------
    regressor_dict : dict[str, Any]
        Dictionary containing all regressor fields including regressor type

    Raises
    ------
    NotImplementedError
        Is raised in case the regressor type stored in regressor_dict does not
        correspond to any regressor class

    Returns
    -------
    Regressor
        The appropriate regressor constructed from the regressor_dict fields.
    """
    regressor_dict = regressor_dict.copy()
    if "regressor_type" not in regressor_dict:
        raise KeyError(
            "The input dictionary must have the key 'regressor_type'."
        )
    regressor_type = regressor_dict.pop("regressor_type")
    try:
        regressor_class = get_regressor_map()[regressor_type]
    except KeyError as e:
        raise NotImplementedError(
            f"Regressor Type '{regressor_type}' does not exist."
        ) from e
    regressor_class.check_for_missing_keys(regressor_dict)
    return regressor_class(**regressor_dict)


# Add regressor_from_dict() as class method to the Regressor base class, so
# it can always be called as Regressor.from_dict(regressor_dict) with any
# dictionary as long as it contains the regressor_type field.
Regressor.from_dict = classmethod(regressor_from_dict)  # type: ignore


CATEGORICAL_MAP: dict[str, Type[CategoricalRegressor]] = {
    "DayOfWeek": DayOfWeek,
    "MonthOfYear": MonthOfYear,
}
