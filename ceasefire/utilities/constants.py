"""
Constant definitions used throughout the ceasefire code
"""

# Standard Library
from pathlib import Path
from typing import Literal, TypedDict

# Third Party
import pandas as pd

# Local path of the ceasefire package
_CEASEFIRE_PATH = Path(__file__).parent.parent.parent

# The timestamp this module was loaded. Serves as unique ID for a single
# python main-script run.
_RUN_TIMESTAMP = pd.Timestamp.now().strftime("%Y%m%d%H%M%S")

### --- Model Default Settings --- ###
_MODEL_DEFAULTS = dict(
    model="negative binomial",
    sampling_period=pd.Timedelta("1D"),
    timestamp_name="ds",
    metric_name="y",
    smooth_trend=True,
    trend_knot_spacing=pd.Timedelta("90D"),
    trend_degree=3,
    trend_prior_scale=1.0,
    seasonality_prior_scale=1.0,
    event_prior_scale=1.0,
    interval_width=0.95,
)


class FitDefaults(TypedDict):
    sampler: Literal["nuts", "laplace"]
    chains: int
    iter_warmup: int
    iter_sampling: int
    adapt_delta: float
    seed: int


_FIT_DEFAULTS: FitDefaults = {
    "sampler": "nuts",
    "chains": 4,
    "iter_warmup": 1000,
    "iter_sampling": 1000,
    "adapt_delta": 0.95,
    "seed": 20170804,
}

# Scale of the intercept prior on the log scale
_INTERCEPT_SCALE = 2.5

# Events hitting less than this fraction of their occurrences inside the data
# range are considered unsafe to fit
_MIN_EVENT_IMPACT = 0.1

### --- Column Name Construction --- ##

# The delimiter is mainly used to construct feature matrix column names
_DELIM = "__delim__"
# Column name for the timestamp column converted to integer values
_T_INT = "ds_int"

# Column name for holidays within the self generated holiday dataframes
_HOLIDAY = "holiday"


### --- Miscellaneous --- ###

# Cmdstan Version to use for the model backend
_CMDSTAN_VERSION = "2.36.0"

### --- Logger settings --- ###
# The logging levels for stream and file logs
_STREAM_LEVEL = "INFO"
_FILE_LEVEL = "DEBUG"
