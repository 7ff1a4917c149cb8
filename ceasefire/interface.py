"""
Definition of the CeasefireModel class, a Bayesian generalized additive count
regression of daily incident counts on calendar covariates, a smooth trend and
intervention indicators.
"""

### --- Module Imports --- ###
# Standard Library
from pathlib import Path
from typing import Any, Collection, Optional, Type, Union

# Third Party
import numpy as np
import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator
from typing_extensions import Self

# Ceasefire
from ceasefire.events import Event
from ceasefire.models import MODEL_MAP, ModelInputData, get_model_backend
from ceasefire.protocols.protocol_base import Protocol
from ceasefire.regressors import (
    CATEGORICAL_MAP,
    CategoricalRegressor,
    EventRegressor,
    ExternalRegressor,
    Regressor,
    Seasonality,
    SmoothTrend,
)
from ceasefire.utilities.constants import (
    _DELIM,
    _FIT_DEFAULTS,
    _INTERCEPT_SCALE,
    _MIN_EVENT_IMPACT,
    _MODEL_DEFAULTS,
    _T_INT,
)
from ceasefire.utilities.errors import FittedError, NotFittedError
from ceasefire.utilities.logging import get_logger
from ceasefire.utilities.misc import calculate_dispersion, time_to_integer
from ceasefire.utilities.types import Distribution, Include, Sampler, Timedelta


### --- Class and Function Definitions --- ###
class CeasefireModel(BaseModel):
    """
    Bayesian generalized additive model for daily counts.

    The expected count mu of each day is modeled as

        log(mu) = alpha + X beta + Z gamma

    where X holds seasonalities, calendar categories, events (holidays and
    intervention windows) and external regressors, and Z is a B-spline basis
    of time whose coefficients gamma follow a random walk. Exponentiated
    coefficients of 0/1 regressors are incidence rate ratios.

    Parameters
    ----------
    model : Distribution
        The count distribution. Can be 'poisson' or 'negative binomial'
        (default).
    sampling_period : Union[pd.Timedelta, str]
        Spacing between two adjacent samples either as pandas Timedelta or an
        equivalent string. The default is '1D'.
    timestamp_name : str, optional
        The name of the timestamp column as expected in the input data frame
        for the fit-method. The default is 'ds'.
    metric_name : str, optional
        The name of the count column of the input data frame for the
        fit-method. The default is 'y'.
    smooth_trend : bool, optional
        Whether to include the smooth trend. The default is True.
    trend_knot_spacing : Union[pd.Timedelta, str]
        Approximate distance between two spline knots. Smaller values allow
        faster changes of the trend. The default is '90D'.
    trend_degree : int
        Degree of the B-spline basis. The default is 3, i.e. cubic splines.
    trend_prior_scale : float, optional
        Scale of the random walk step size prior. Larger values allow a more
        wiggly trend. Must be larger than 0. Default is 1.0
    seasonality_prior_scale : float, optional
        Parameter modulating the strength of the seasonality model. Can be
        specified for individual seasonalities using add_seasonality.
    event_prior_scale : float, optional
        Parameter modulating the strength of event regressors. Can be
        specified for individual events using add_event.
    interval_width : float, optional
        Width of the uncertainty intervals provided for the prediction. Must be
        in range (0,1). Default is 0.95.
    """

    model_config = ConfigDict(
        # Allows setting extra attributes during initialization
        extra="allow",
        # So the model accepts pandas object as values
        arbitrary_types_allowed=True,
        # Use validation also when fields of an existing model are assigned
        validate_assignment=True,
    )

    # fit and predict tables of a TOML configuration
    _config: dict[str, dict[str, Any]] = PrivateAttr(default_factory=dict)

    model: Distribution = _MODEL_DEFAULTS["model"]
    sampling_period: Timedelta = _MODEL_DEFAULTS["sampling_period"]
    timestamp_name: str = _MODEL_DEFAULTS["timestamp_name"]
    metric_name: str = _MODEL_DEFAULTS["metric_name"]
    smooth_trend: bool = _MODEL_DEFAULTS["smooth_trend"]
    trend_knot_spacing: Timedelta = _MODEL_DEFAULTS["trend_knot_spacing"]
    trend_degree: int = Field(
        ge=1, le=5, default=_MODEL_DEFAULTS["trend_degree"]
    )
    trend_prior_scale: float = Field(
        gt=0, default=_MODEL_DEFAULTS["trend_prior_scale"]
    )
    seasonality_prior_scale: float = Field(
        gt=0, default=_MODEL_DEFAULTS["seasonality_prior_scale"]
    )
    event_prior_scale: float = Field(
        gt=0, default=_MODEL_DEFAULTS["event_prior_scale"]
    )
    interval_width: float = Field(
        gt=0, lt=1, default=_MODEL_DEFAULTS["interval_width"]
    )

    @field_validator("sampling_period", "trend_knot_spacing")
    @classmethod
    def validate_positive_timedelta(
        cls: Type[Self], timedelta: pd.Timedelta
    ) -> pd.Timedelta:
        if timedelta <= pd.Timedelta(0):
            msg = "Sampling period and knot spacing must be positive."
            get_logger().error(msg)
            raise ValueError(msg)
        return timedelta

    def __init__(
        self: Self, *args: tuple[Any, ...], **kwargs: dict[str, Any]
    ) -> None:
        """
        Initializes the ceasefire model.

        Parameters
        ----------
        *args : tuple[Any, ...]
            Positional arguments passed through to Pydantic Model __init__()
        **kwargs : dict[str, Any]
            Keyword arguments passed through to Pydantic Model __init__()
        """
        super().__init__(*args, **kwargs)

        # Instantiate the model backend that manages communication with the
        # Stan model and turns posterior draws into predictions
        self.model_backend = get_model_backend(model=self.model)

        # The following attributes will be set during fitting or by other
        # methods
        # 1. All Regressors
        self.external_regressors: dict[str, ExternalRegressor] = dict()
        self.seasonalities: dict[str, Seasonality] = dict()
        self.categoricals: dict[str, CategoricalRegressor] = dict()
        self.events: dict[str, dict[str, Any]] = dict()
        self.trend: Optional[SmoothTrend] = None
        # 2. Prior scales assigned to the regressors
        self.prior_scales: dict[str, float] = dict()
        # 3. A list of all protocols applied to the model
        self.protocols: list[Protocol] = []
        # 4. Input data to be fitted
        self.history: pd.DataFrame = pd.DataFrame()
        self.first_timestamp: pd.Timestamp = pd.Timestamp(0)
        self.last_timestamp: pd.Timestamp = pd.Timestamp(0)
        # 5. Design matrices of the training data
        self.X: pd.DataFrame = pd.DataFrame()
        self.Z: np.ndarray = np.zeros((0, 0))

    @property
    def is_fitted(self: Self) -> bool:
        """
        Determines whether the model is fitted.
        """
        return self.model_backend.fit_params != dict()

    def has_regressor(self: Self, name: str) -> bool:
        """
        Whether a regressor of any kind with the given name was added.
        """
        return (
            name in self.external_regressors
            or name in self.seasonalities
            or name in self.categoricals
            or name in self.events
        )

    def validate_column_name(
        self: Self,
        name: str,
        check_seasonalities: bool = True,
        check_categoricals: bool = True,
        check_events: bool = True,
        check_external_regressors: bool = True,
    ) -> None:
        """
        Validates the name of a seasonality, a category, an event or an
        external regressor.

        The check_XY flags allow for overwriting, i.e. when adding a
        seasonality, check_seasonalities is False, hence an existing
        seasonality of the same name will be replaced.

        Raises
        ------
        TypeError
            If the passed name is not a string
        ValueError
            Raised in case the name is not valid for any reason.
        """
        if not isinstance(name, str):
            raise TypeError("Name must be a string")
        # The _DELIM constant is used for constructing intermediate column
        # names, hence it's not allowed to be used within given names
        if _DELIM in name:
            raise ValueError(f"Name cannot contain '{_DELIM}'")

        # Column names generated by the prediction method and input columns
        reserved_names = ["yhat", "observed", "trend"]
        reserved_names.extend([n + "_lower" for n in reserved_names[:3]])
        reserved_names.extend([n + "_upper" for n in reserved_names[:3]])
        reserved_names.extend([self.timestamp_name, self.metric_name, _T_INT])
        if name in reserved_names:
            raise ValueError(f"Name {name} is reserved.")

        if check_seasonalities and name in self.seasonalities:
            raise ValueError(f"Name {name} already used for a seasonality.")
        if check_categoricals and name in self.categoricals:
            raise ValueError(f"Name {name} already used for a category.")
        if check_events and name in self.events:
            raise ValueError(f"Name {name} already used for an event.")
        if check_external_regressors and name in self.external_regressors:
            raise ValueError(f"Name {name} already used for a regressor.")

    def validate_prior_scale(
        self: Self, prior_scale: Optional[float], default: float
    ) -> float:
        if prior_scale is None:
            prior_scale = default
        prior_scale = float(prior_scale)
        if prior_scale <= 0:
            raise ValueError("Prior scale must be > 0")
        return prior_scale

    def add_seasonality(
        self: Self,
        name: str,
        period: str,
        fourier_order: int,
        prior_scale: Optional[float] = None,
    ) -> Self:
        """
        Add a cyclic seasonality to be used for fitting and predicting.

        Parameters
        ----------
        name : str
            Name of the seasonality.
        period : str
            Fundamental period of the seasonality component. Should be a string
            that can be parsed by pd.to_timedelta (eg. '365.25D')
        fourier_order : int
            All Fourier terms from fundamental up to fourier_order will be used
        prior_scale : float, optional
            Scale of the coefficient priors. If None is given
            self.seasonality_prior_scale will be used (default).

        Raises
        ------
        FittedError
            Raised when method is called after fitting.
        ValueError
            Raised when prior scale, or period are not allowed values.

        Returns
        -------
        CeasefireModel
            Updated model
        """
        if self.is_fitted:
            raise FittedError(
                "Seasonalities must be added prior to model fitting."
            )
        self.validate_column_name(name, check_seasonalities=False)
        if name in self.seasonalities:
            get_logger().info(
                f"'{name}' is an existing seasonality. Overwriting with new"
                " configuration."
            )
        prior_scale = self.validate_prior_scale(
            prior_scale, self.seasonality_prior_scale
        )
        if (not isinstance(fourier_order, int)) or (fourier_order <= 0):
            raise ValueError("Fourier Order must be an integer > 0")

        self.seasonalities[name] = Seasonality(
            name=name,
            period=pd.to_timedelta(period) / self.sampling_period,
            fourier_order=fourier_order,
            prior_scale=prior_scale,
        )
        return self

    def add_categorical(
        self: Self,
        name: str,
        categorical_type: str,
        reference: Optional[str] = None,
        prior_scale: Optional[float] = None,
    ) -> Self:
        """
        Add calendar category dummies, e.g. day of week.

        Parameters
        ----------
        name : str
            Name of the category
        categorical_type : str
            'DayOfWeek' or 'MonthOfYear'
        reference : Optional[str], optional
            Level without own dummy column. Its effect is absorbed by the
            intercept. If None, the default of the category type is used.
        prior_scale : Optional[float], optional
            Scale of the coefficient priors. If None is given
            self.seasonality_prior_scale will be used (default).

        Raises
        ------
        NotImplementedError
            Raised for unknown category types

        Returns
        -------
        CeasefireModel
            Updated model
        """
        if self.is_fitted:
            raise FittedError(
                "Categories must be added prior to model fitting."
            )
        self.validate_column_name(name, check_categoricals=False)
        if name in self.categoricals:
            get_logger().info(
                f"'{name}' is an existing category. Overwriting with new"
                " configuration."
            )
        if categorical_type not in CATEGORICAL_MAP:
            msg = f"Categorical type '{categorical_type}' does not exist."
            get_logger().error(msg)
            raise NotImplementedError(msg)
        prior_scale = self.validate_prior_scale(
            prior_scale, self.seasonality_prior_scale
        )
        regressor_args: dict[str, Any] = dict(
            name=name, prior_scale=prior_scale
        )
        if reference is not None:
            regressor_args["reference"] = reference
        self.categoricals[name] = CATEGORICAL_MAP[categorical_type](
            **regressor_args
        )
        return self

    def add_event(
        self: Self,
        name: str,
        regressor_type: str,
        event: Union[Event, dict[str, Any]],
        prior_scale: Optional[float] = None,
        include: Include = "auto",
        **regressor_kwargs: Any,
    ) -> Self:
        """
        Add an event to be used for fitting and predicting.

        Parameters
        ----------
        name : str
            name of the event.
        regressor_type : str
            Type of the underlying event regressor, e.g. 'SingleEvent',
            'IntermittentEvent', 'WindowIndicator' or 'Holiday'.
        event : Union[Event, dict[str, Any]]
            The base event used by the event regressor.
        prior_scale : float, optional
            Scale of the coefficient prior. If None is given
            self.event_prior_scale will be used (default).
        include : Include, optional
            If True, the event is always fitted. If False it is never fitted.
            If 'auto' (default) it is dropped when less than 10% of its
            occurrences fall into the range of the data.
        **regressor_kwargs : Any
            Additional keyword arguments necessary to create the event
            regressor.

        Raises
        ------
        FittedError
            Raised in case the method is called on a fitted model.
        ValueError
            Raised in case of invalid prior scales.

        Returns
        -------
        CeasefireModel
            The model updated with the new event
        """
        if self.is_fitted:
            raise FittedError("Event must be added prior to model fitting.")
        self.validate_column_name(name, check_events=False)
        if name in self.events:
            get_logger().info(
                f"'{name}' is an existing event. Overwriting with new"
                " configuration."
            )
        prior_scale = self.validate_prior_scale(
            prior_scale, self.event_prior_scale
        )
        if not (isinstance(include, bool) or include == "auto"):
            raise ValueError("include must be True, False, or 'auto'.")

        # As the event regressor is built from a dictionary, convert the event
        # to a dictionary in case it was an Event instance.
        if isinstance(event, Event):
            event = event.to_dict()

        regressor_dict = {
            "name": name,
            "prior_scale": prior_scale,
            "regressor_type": regressor_type,
            "event": event,
            **regressor_kwargs,
        }
        new_regressor = Regressor.from_dict(regressor_dict)
        if not isinstance(new_regressor, EventRegressor):
            raise TypeError(
                "The created regressor must be an EventRegressor"
                f" but is {type(new_regressor)}."
            )
        self.events[name] = {"regressor": new_regressor, "include": include}
        return self

    def add_external_regressor(
        self: Self,
        name: str,
        prior_scale: float,
    ) -> Self:
        """
        Add an external regressor to be used for fitting and predicting.

        Parameters
        ----------
        name : str
            Name of the regressor. The dataframe passed to 'fit' and 'predict'
            must have a column with the specified name.
        prior_scale : float
            Scale of the coefficient prior. Must be greater than 0.

        Returns
        -------
        CeasefireModel
            Updated model
        """
        if self.is_fitted:
            raise FittedError(
                "Regressors must be added prior to model fitting."
            )
        self.validate_column_name(name, check_external_regressors=False)
        if name in self.external_regressors:
            get_logger().info(
                f"'{name}' is an existing external regressor. Overwriting with"
                " new configuration."
            )
        prior_scale = self.validate_prior_scale(
            prior_scale, self.event_prior_scale
        )
        self.external_regressors[name] = ExternalRegressor(
            name=name, prior_scale=prior_scale
        )
        return self

    def add_protocol(self: Self, protocol: Protocol) -> Self:
        """
        Add a protocol that adds regressors once the data are known.

        Regressors added manually take precedence over regressors of the same
        name the protocol would add.

        Raises
        ------
        FittedError
            Raised when method is called after fitting.
        TypeError
            Raised when the provided protocol is not a valid Protocol object

        Returns
        -------
        CeasefireModel
            the updated model.
        """
        if self.is_fitted:
            raise FittedError(
                "Protocols must be added prior to model fitting."
            )
        if not isinstance(protocol, Protocol):
            raise TypeError(
                "The protocol must be of type 'Protocol'"
                f", but is {type(protocol)}."
            )
        p_type = protocol._protocol_type
        existing_types = set(p._protocol_type for p in self.protocols)
        if p_type in existing_types:
            get_logger().warning(
                f"The model already has a protocol of type {p_type}. Adding "
                "another one may lead to unexpected interference between these"
                " protocols."
            )
        self.protocols.append(protocol)
        return self

    def validate_metric_column(self: Self, df: pd.DataFrame) -> None:
        """
        Validate that the metric column exists and contains non-negative
        integer counts.

        Raises
        ------
        KeyError
            Raised if the metric column doesn't exist in the DataFrame
        TypeError
            Raised if the metric columns dtype does not fit to the model
        ValueError
            Raised if there are any NaNs or negative values
        """
        name = self.metric_name
        if name not in df:
            raise KeyError(
                f"Metric column '{name}' is missing from DataFrame."
            )
        if df[name].isnull().any():
            raise ValueError(f"Found NaN in metric column '{name}'.")
        m_dtype_kind = df[name].dtype.kind
        allowed_types = list(MODEL_MAP[self.model].kind)
        if m_dtype_kind not in allowed_types:
            type_list = ", ".join([f"'{s}'" for s in allowed_types])
            raise TypeError(
                f"Metric column '{name}' type is '{m_dtype_kind}', but "
                f"must be any of {type_list} for model '{self.model}'."
            )
        if (df[name] < 0).any():
            raise ValueError(
                f"Metric column '{name}' contains negative counts."
            )

    def validate_timestamps(self: Self, df: pd.DataFrame) -> pd.Series:
        """
        Validates the timestamp column of an input data frame.
        """
        if self.timestamp_name not in df:
            raise KeyError(
                f"Timestamp column '{self.timestamp_name}' is missing from"
                " DataFrame."
            )
        time = df[self.timestamp_name]
        if time.dtype.kind != "M":
            raise TypeError(
                f"Timestamp column '{self.timestamp_name}' is not of type "
                "datetime."
            )
        if time.isnull().any():
            raise ValueError(
                f"Found NaN in timestamp column '{self.timestamp_name}'."
            )
        if time.dt.tz is not None:
            raise NotImplementedError(
                f"Timestamp column '{self.timestamp_name}' has timezone "
                "specified, which is not supported. Remove timezone."
            )
        return time

    def validate_dataframe(self: Self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Validates that the input data frame of the fitting-method adheres to
        all requirements.

        Parameters
        ----------
        df : pd.DataFrame
            DataFrame that contains at the very least a timestamp column with
            name self.timestamp_name and a count column with name
            self.metric_name. If external regressors were added to the model,
            the respective columns must be present as well.

        Returns
        -------
        pd.DataFrame
            Validated DataFrame that is reduced to timestamp, metric and
            external regressor columns.
        """
        if df.shape[0] < 2:
            raise ValueError("Dataframe has less than 2 non-NaN rows.")
        if df.index.name == self.timestamp_name:
            raise KeyError(
                f"Timestamp '{self.timestamp_name}' is set as index but"
                " expected to be a column"
            )
        time = self.validate_timestamps(df)
        if not time.is_monotonic_increasing:
            raise ValueError(
                f"Timestamp column '{self.timestamp_name}' is not sorted."
            )
        # Check that timestamps lie on the expected grid.
        sample_multiples = (time - time.min()) / self.sampling_period
        if not sample_multiples.apply(float.is_integer).all():
            raise ValueError(
                f"Timestamp column '{self.timestamp_name}' is not sampled with"
                f" expected sampling period '{self.sampling_period}'"
            )
        # A missing day would be indistinguishable from a day without counts
        if (sample_multiples.diff().dropna() != 1).any():
            raise ValueError(
                f"Timestamp column '{self.timestamp_name}' has gaps or "
                "duplicates. Use aggregate_daily_counts() to obtain a "
                "complete grid."
            )

        self.validate_metric_column(df)

        for name in self.external_regressors:
            if name not in df:
                raise KeyError(
                    f"Regressor column '{name}' is missing from DataFrame."
                )
            if df[name].dtype.kind not in "biuf":
                raise TypeError(f"Regressor column '{name}' is non-numeric.")
            if df[name].isnull().any():
                raise ValueError(f"Regressor column '{name}' contains NaN.")

        history = df.loc[
            :,
            [
                self.timestamp_name,
                self.metric_name,
                *self.external_regressors.keys(),
            ],
        ].copy()
        return history.reset_index(drop=True)

    def time_to_integer(self: Self, history: pd.DataFrame) -> pd.DataFrame:
        """
        Create a new column from timestamp column of input data frame that
        contains corresponding integer values with respect to sampling_period.
        """
        time = history[self.timestamp_name]
        self.first_timestamp = time.min()
        self.last_timestamp = time.max()
        history[_T_INT] = time_to_integer(
            time, self.first_timestamp, self.sampling_period
        )
        return history

    def make_all_features(
        self: Self, data: Optional[pd.DataFrame] = None
    ) -> tuple[pd.DataFrame, dict[str, float]]:
        """
        Creates the feature matrix X containing all regressors used in the fit
        and for prediction. Also returns prior scales for all features.

        Parameters
        ----------
        data : Optional[pd.DataFrame], optional
            Input dataframe. It must contain at least the timestamp column,
            a column with integer timestamps (for column name cf. to _T_INT
            constant) as well as the external regressor columns. Default of
            data is None, in which case the model history will be used and
            events occurring too rarely in the history are dropped.

        Returns
        -------
        X : pd.DataFrame
            Feature matrix with columns for the different features and rows
            corresponding to the timestamps
        prior_scales : dict[str,float]
            A dictionary mapping feature -> prior scale
        """
        # Whether or not to include an event only needs to be evaluated on
        # the training data
        evaluate_include = data is None
        if data is None:
            data = self.history
        data = data.reset_index(drop=True)
        timestamps = data[self.timestamp_name]

        # 1. Seasonalities
        make_features = [
            lambda s=s: s.make_feature(data[_T_INT])
            for s in self.seasonalities.values()
        ]
        # 2. Calendar categories
        make_features.extend(
            [
                lambda c=c: c.make_feature(timestamps)
                for c in self.categoricals.values()
            ]
        )
        # 3. External Regressors
        make_features.extend(
            [
                lambda er=er: er.make_feature(data[_T_INT], data[er.name])
                for er in self.external_regressors.values()
            ]
        )
        # 4. Event Regressors
        for name in list(self.events.keys()):
            regressor = self.events[name]["regressor"]
            include = self.events[name]["include"]
            if include is False:
                continue
            if evaluate_include:
                # The impact quantifies how many events of the regressor lie
                # within the date range of the data.
                impact = regressor.get_impact(timestamps)
                if impact < _MIN_EVENT_IMPACT and include is True:
                    get_logger().warning(
                        f"Event '{regressor.name}' hardly occurs during "
                        "timerange of interest, which may lead to unreliable "
                        "or failing fits. Consider setting include='auto'."
                    )
                elif impact < _MIN_EVENT_IMPACT:
                    get_logger().warning(
                        f"Event '{regressor.name}' hardly occurs during "
                        "timerange of interest. Removing it from model. Set "
                        "include=True to overwrite this."
                    )
                    del self.events[name]
                    continue

            make_features.append(
                lambda reg=regressor: reg.make_feature(timestamps)
            )

        X_lst = []
        prior_scales: dict[str, float] = dict()
        for make_feature in make_features:
            X_loc, prior_scales_loc = make_feature()
            X_lst.append(X_loc)
            prior_scales = {**prior_scales, **prior_scales_loc}

        if X_lst:
            X = pd.concat(X_lst, axis=1).astype(float)
        else:
            X = pd.DataFrame(index=range(data.shape[0]))

        return X, prior_scales

    def set_trend(self: Self) -> np.ndarray:
        """
        Places the spline knots on the training data and returns the trend
        basis of the history.
        """
        T = self.history.shape[0]
        if not self.smooth_trend:
            self.trend = None
            return np.zeros((T, 0))

        timespan = self.last_timestamp - self.first_timestamp
        n_segments = max(1, int(round(timespan / self.trend_knot_spacing)))
        self.trend = SmoothTrend(
            n_knots=n_segments - 1,
            degree=self.trend_degree,
            prior_scale=self.trend_prior_scale,
        )
        get_logger().info(
            f"Placing {self.trend.n_knots} interior spline knots for the "
            "smooth trend."
        )
        return self.trend.fit_basis(self.history[_T_INT])

    def preprocess(self: Self, data: pd.DataFrame) -> ModelInputData:
        """
        Validates input data and prepares the model with respect to the data.

        Parameters
        ----------
        data : pd.DataFrame
            DataFrame that contains at the very least a timestamp column with
            name self.timestamp_name and a count column with name
            self.metric_name. If external regressors were added to the model,
            the respective columns must be present as well.

        Returns
        -------
        ModelInputData
            Data as used by the Stan models
        """
        self.history = self.validate_dataframe(data)
        self.history = self.time_to_integer(self.history)

        # Execute protocols to further set up the model
        for protocol in self.protocols:
            protocol.set_events(
                model=self, timestamps=self.history[self.timestamp_name]
            )
            protocol.set_seasonalities(
                model=self, timestamps=self.history[self.timestamp_name]
            )

        self.X, self.prior_scales = self.make_all_features()
        self.Z = self.set_trend()

        y = np.asarray(self.history[self.metric_name], dtype=np.int64)
        get_logger().info(
            f"Design matrix has {self.X.shape[1]} regressor columns and "
            f"{self.Z.shape[1]} trend basis columns."
        )
        return ModelInputData(
            T=self.history.shape[0],
            K=self.X.shape[1],
            B=self.Z.shape[1],
            y=y,
            t=np.asarray(self.history[_T_INT]),
            X=self.X.to_numpy(dtype=float),
            sigmas=np.array(
                [self.prior_scales[col] for col in self.X.columns],
                dtype=float,
            ),
            Z=self.Z,
            alpha_loc=float(np.log(max(y.mean(), 1e-2))),
            alpha_scale=_INTERCEPT_SCALE,
            tau_scale=self.trend_prior_scale,
        )

    def fit(
        self: Self,
        data: pd.DataFrame,
        sampler: Sampler = _FIT_DEFAULTS["sampler"],
        chains: int = _FIT_DEFAULTS["chains"],
        iter_warmup: int = _FIT_DEFAULTS["iter_warmup"],
        iter_sampling: int = _FIT_DEFAULTS["iter_sampling"],
        adapt_delta: float = _FIT_DEFAULTS["adapt_delta"],
        seed: Optional[int] = _FIT_DEFAULTS["seed"],
    ) -> Self:
        """
        Fits the model by drawing from its posterior.

        Parameters
        ----------
        data : pd.DataFrame
            DataFrame that contains at the very least a timestamp column with
            name self.timestamp_name and a count column with name
            self.metric_name on a complete daily grid.
        sampler : Sampler, optional
            'nuts' (default) or 'laplace', see ModelBackendBase.fit()
        chains, iter_warmup, iter_sampling, adapt_delta, seed
            Passed through to the sampler

        Raises
        ------
        FittedError
            Raised when the model is attempted to be fit more than once

        Returns
        -------
        CeasefireModel
            Updated model
        """
        if self.is_fitted:
            raise FittedError(
                "Model can only be fit once. Instantiate a new object."
            )

        get_logger().debug("Starting to preprocess input data.")
        input_data = self.preprocess(data)

        # Dispersion around the plain mean gives a first hint whether the
        # Poisson model is appropriate
        y = input_data.y
        if y.mean() > 0:
            dispersion, _ = calculate_dispersion(
                y, np.full(y.shape, y.mean()), dof=1
            )
            get_logger().info(
                f"Pearson dispersion of the counts around their mean is "
                f"{dispersion:.2f}."
            )
            if self.model == "poisson" and dispersion > 1.5:
                get_logger().warning(
                    "Counts appear overdispersed. Consider the "
                    "'negative binomial' model."
                )

        get_logger().debug("Handing over preprocessed data to model backend.")
        self.model_backend.fit(
            input_data,
            sampler=sampler,
            chains=chains,
            iter_warmup=iter_warmup,
            iter_sampling=iter_sampling,
            adapt_delta=adapt_delta,
            seed=seed,
        )
        return self

    def make_design(
        self: Self, data: Optional[pd.DataFrame] = None
    ) -> tuple[pd.DataFrame, np.ndarray]:
        """
        Builds regressor matrix and trend basis for arbitrary timestamps with
        exactly the columns of the training design.

        Parameters
        ----------
        data : Optional[pd.DataFrame], optional
            Input dataframe with a timestamp column and all external regressor
            columns. If None (default), the training design is returned.

        Raises
        ------
        NotFittedError
            If the model was not preprocessed with training data
        KeyError
            If external regressor columns are missing

        Returns
        -------
        X : pd.DataFrame
            Regressor matrix
        Z : np.ndarray
            Trend basis
        """
        if self.history.empty:
            raise NotFittedError(
                "The design can only be built after the model saw the "
                "training data."
            )
        if data is None:
            return self.X, self.Z

        self.validate_timestamps(data)
        missing_regressors = [
            f"'{name}'"
            for name in self.external_regressors
            if name not in data
        ]
        if missing_regressors:
            missing_regressors_str = ", ".join(missing_regressors)
            raise KeyError(
                "Prediction input data miss the external regressor column(s) "
                f"{missing_regressors_str}."
            )

        # Integer times with respect to first timestamp and sampling_period of
        # the training data
        data = data.reset_index(drop=True).copy()
        data[_T_INT] = time_to_integer(
            data[self.timestamp_name],
            self.first_timestamp,
            self.sampling_period,
        )
        X, _ = self.make_all_features(data)
        missing_columns = [c for c in self.X.columns if c not in X.columns]
        if missing_columns:
            raise KeyError(
                f"Could not rebuild design columns {missing_columns}."
            )
        X = X.loc[:, list(self.X.columns)]
        return X, self.make_trend_basis(data)

    def make_trend_basis(
        self: Self, data: Optional[pd.DataFrame] = None
    ) -> np.ndarray:
        """
        Builds the smooth trend basis for arbitrary timestamps. Unlike
        make_design() it only needs the timestamp column.

        Parameters
        ----------
        data : Optional[pd.DataFrame], optional
            Input dataframe with a timestamp column. If None (default), the
            training basis is returned.

        Returns
        -------
        np.ndarray
            Trend basis of shape (N, B)
        """
        if self.history.empty:
            raise NotFittedError(
                "The trend basis can only be built after the model saw the "
                "training data."
            )
        if data is None:
            return self.Z
        if _T_INT in data:
            t = data[_T_INT]
        else:
            self.validate_timestamps(data)
            t = time_to_integer(
                data[self.timestamp_name],
                self.first_timestamp,
                self.sampling_period,
            )
        if self.trend is None:
            return np.zeros((data.shape[0], 0))
        return self.trend.make_basis(t)

    def predict(
        self: Self,
        data: Optional[pd.DataFrame] = None,
        seed: Optional[int] = None,
    ) -> pd.DataFrame:
        """
        Predict using the fitted model.

        Parameters
        ----------
        data : Optional[pd.DataFrame], optional
            Input dataframe. It must contain at least a timestamp column named
            according to the models timestamp_name as well as the external
            regressor columns associated with the model. If None, the history
            is used.
        seed : Optional[int], optional
            Seed of the posterior predictive draws

        Returns
        -------
        prediction : pd.DataFrame
            A dataframe containing timestamps, posterior mean of the expected
            count with its interval, the posterior predictive interval of the
            observed count as well as the trend.
        """
        if not self.is_fitted:
            raise NotFittedError("Can only predict using a fitted model.")
        X, Z = self.make_design(data)
        timestamps = (
            self.history[self.timestamp_name]
            if data is None
            else data[self.timestamp_name]
        )
        prediction = self.model_backend.predict(
            X=X.to_numpy(dtype=float),
            Z=Z,
            interval_width=self.interval_width,
            seed=seed,
        )
        prediction.insert(0, self.timestamp_name, np.asarray(timestamps))
        return prediction

    def make_future_dataframe(
        self: Self, periods: int = 1, include_history: bool = True
    ) -> pd.DataFrame:
        """
        Convenience function to create a DataFrame of timestamps to be used by
        the predict method.

        Parameters
        ----------
        periods : int
            Number of periods to extend forward.
        include_history : bool, optional
            Boolean to include the historical dates in the data frame for
            predictions. The default is True.

        Raises
        ------
        NotFittedError
            Can only be used after fitting

        Returns
        -------
        pd.DataFrame
            Timestamps that extend forward from the end of self.history for
            the requested number of periods.
        """
        if not self.is_fitted:
            raise NotFittedError()

        new_timestamps = pd.Series(
            pd.date_range(
                start=self.last_timestamp + self.sampling_period,
                periods=periods,
                freq=self.sampling_period,
            )
        )
        if include_history:
            new_timestamps = pd.concat(
                [self.history[self.timestamp_name], new_timestamps]
            )
        return pd.DataFrame({self.timestamp_name: new_timestamps}).reset_index(
            drop=True
        )

    def to_dict(self: Self) -> dict[str, Any]:
        """
        Converts the model configuration including all regressors and
        protocols to a dictionary of JSON serializable types.
        """
        model_dict: dict[str, Any] = {
            k: (str(v) if isinstance(v, pd.Timedelta) else v)
            for k, v in (
                (k, getattr(self, k)) for k in type(self).model_fields
            )
        }
        model_dict["external_regressors"] = [
            r.to_dict() for r in self.external_regressors.values()
        ]
        model_dict["seasonalities"] = [
            r.to_dict() for r in self.seasonalities.values()
        ]
        model_dict["categoricals"] = [
            r.to_dict() for r in self.categoricals.values()
        ]
        model_dict["events"] = [
            {"regressor": e["regressor"].to_dict(), "include": e["include"]}
            for e in self.events.values()
        ]
        model_dict["protocols"] = [p.to_dict() for p in self.protocols]
        model_dict["trend"] = (
            None if self.trend is None else self.trend.to_dict()
        )
        model_dict["is_fitted"] = self.is_fitted
        return model_dict

    @staticmethod
    def from_dict(model_dict: dict[str, Any]) -> "CeasefireModel":
        """
        Restores an unfitted model from a dictionary as returned by to_dict().
        Posterior draws are not part of the dictionary.
        """
        model_dict = dict(model_dict)
        fields = {
            k: v
            for k, v in model_dict.items()
            if k in CeasefireModel.model_fields
        }
        m = CeasefireModel(**fields)
        for name in ("external_regressors", "seasonalities", "categoricals"):
            target = getattr(m, name)
            for regressor_dict in model_dict.get(name, []):
                regressor = Regressor.from_dict(regressor_dict)
                target[regressor.name] = regressor
        for event_dict in model_dict.get("events", []):
            regressor = Regressor.from_dict(event_dict["regressor"])
            m.events[regressor.name] = {
                "regressor": regressor,
                "include": event_dict["include"],
            }
        for protocol_dict in model_dict.get("protocols", []):
            m.add_protocol(Protocol.from_dict(protocol_dict))
        return m

    @staticmethod
    def from_toml(
        toml_path: Union[str, Path],
        ignore: Union[Collection[str], str] = set(),
        **kwargs: Any,
    ) -> "CeasefireModel":
        """
        Instantiate a model from a TOML configuration file. See
        ceasefire.utilities.configuration.model_from_toml() for details.
        """
        # Ceasefire
        from ceasefire.utilities.configuration import model_from_toml

        return model_from_toml(toml_path, ignore, **kwargs)
