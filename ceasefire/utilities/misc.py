"""
A collection of helper functions used througout the ceasefire code
"""

### --- Module Imports --- ###
# Standard Library
from typing import Union, cast

# Third Party
import numpy as np
import pandas as pd


### --- Class and Function Definitions --- ###
def time_to_integer(
    time: Union[pd.Series, pd.Timestamp],
    t0: pd.Timestamp,
    sampling_delta: pd.Timedelta,
) -> Union[pd.Series, int]:
    """
    Converts a timestamp or series of timestamps to integers with respect to
    a given reference date.

    Note: If the input timestamp does not lie on the grid specified by input
    parameters t0 and sampling_delta, the output integer times correspond to
    different dates and hence are not convertible.

    Parameters
    ----------
    time : Union[pd.Series, pd.Timestamp]
        Input Timestamp or series of timestamps to be converted
    t0 : pd.Timestamp
        The reference timestamp
    sampling_delta : pd.Timedelta
        The timedelta that is used for the conversion, i.e. the integer time
        will be expressed in multiples of sampling_delta

    Returns
    -------
    time_as_int : Union[pd.Series, int]
        The timestamps converted to integer values

    """
    if not isinstance(time, (pd.Series, pd.Timestamp)):
        raise TypeError("Input time is neither a series nor a timestamp.")

    time_as_float = (time - t0) / sampling_delta

    # !! NOTE !! If time_as_float contains real fractional values, ie. the
    # input time does not lie on the grid specified by t0 and sampling_delta,
    # the cast operation will lead to information loss and not be invertible
    if isinstance(time, pd.Series):
        time_as_float = cast(pd.Series, time_as_float)
        return time_as_float.round().astype(np.int64)
    else:
        time_as_float = cast(float, time_as_float)
        return int(round(time_as_float))


def infer_sampling_period(timestamps: pd.Series, q=0.5) -> pd.Timedelta:
    """
    Tries to infer a sampling period of given timestamps.

    The function evaluates the q-quantile of differences between subsequent
    timestamps. Hence, it does not necessarily return the most frequent
    timestamp. Instead it confirms that the q'th fraction of data has periods
    below or equal to the inferred one, which is sufficient for its main
    purpose: checking whether the Nyquist sampling condition is fulfilled.

    Parameters
    ----------
    timestamps : pd.Series
        Input pandas series of timestamps
    q : float, optional
        The level of the quantile The default is 0.5.

    Returns
    -------
    pd.Timedelta
        The inferred sampling period

    """
    return timestamps.diff().quantile(q)


def calculate_dispersion(
    y_obs: Union[np.ndarray, pd.Series],
    y_model: Union[np.ndarray, pd.Series],
    dof: int,
) -> tuple[float, float]:
    """
    Calculates the dispersion factor with respect to poisson distributed
    data given observations, modeled data, and degrees of freedom.

    It can be used to pick an appropriate model:

    alpha approx. 1 => Poisson
    alpha > 1       => negative Binomial

    Parameters
    ----------
    y_obs : Union[np.ndarray, pd.Series]
        Observed data
    y_model : Union[np.ndarray, pd.Series]
        Modeled data
    dof : int
        Degrees of freedom of the model

    Returns
    -------
    alpha : float
        Dispersion factor with respect to Poisson model
    phi: float
        Dispersion factor for Stan's negative Binomial model (Note: negative
        for underdispersed data)
    """
    y_obs = np.asarray(y_obs, dtype=float)
    y_model = np.asarray(y_model, dtype=float)
    n = len(y_obs)
    if n <= dof:
        raise ValueError(
            f"Need more observations (={n}) than degrees of freedom "
            f"(={dof}) to estimate the dispersion."
        )
    # Pearson chi square per degree of freedom
    alpha = float(((y_obs - y_model) ** 2 / y_model).sum() / (n - dof))
    phi = float((y_model / (alpha - 1)).mean()) if alpha != 1 else np.inf
    return alpha, phi


def convert_to_timedelta(timedelta: Union[pd.Timedelta, str]) -> pd.Timedelta:
    """
    Takes Timedelta or Timedelta like string and converts it to a Timedelta.
    If any errors occur, they will be logged and raised as ValueError so the
    function can be used as field validator for pydantic models.

    Parameters
    ----------
    timedelta : Union[pd.Timedelta, str]
        The input timedelta

    Raises
    ------
    ValueError
        Raised if the input was a string that could not be converted to a
        Timedelta.

    Returns
    -------
    pd.Timedelta
        Converted Timedelta

    """
    # Third Party
    from pandas._libs.tslibs.parsing import DateParseError

    # Ceasefire
    from ceasefire.utilities.logging import get_logger

    try:
        return pd.Timedelta(timedelta)
    except (DateParseError, ValueError) as e:
        msg = f"Could not parse input timedelta: {e}"
        get_logger().error(msg)
        raise ValueError(msg) from e
