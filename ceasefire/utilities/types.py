"""
Package-wide used type aliases
"""

# Standard Library
from typing import Annotated, Literal, Union

# Third Party
import pandas as pd
from pydantic import BeforeValidator
from typing_extensions import TypeAlias

# Ceasefire
from ceasefire.utilities.misc import convert_to_timedelta

# The strings representing implemented backend models
Distribution: TypeAlias = Literal["poisson", "negative binomial"]

# Posterior approximation used by the backend
Sampler: TypeAlias = Literal["nuts", "laplace"]

# All log levels
LogLevel: TypeAlias = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

# Whether an event is included in the fit
Include: TypeAlias = Union[bool, Literal["auto"]]

Weekday: TypeAlias = Literal[
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
]

Timedelta = Annotated[pd.Timedelta, BeforeValidator(convert_to_timedelta)]

Timestamp = Annotated[pd.Timestamp, BeforeValidator(pd.Timestamp)]
