"""
Define public API by import all functions and classes exposed to the end-user
"""

# Ceasefire
# Data ingestion
from ceasefire.data import (
    aggregate_daily_counts,
    filter_incidents,
    load_incidents,
    restrict_period,
)

# Events
from ceasefire.events import BoxCar

# Analysis model
from ceasefire.interface import CeasefireModel

# Posterior summaries
from ceasefire.posterior import (
    compare_models,
    counterfactual_impact,
    incidence_rate_ratios,
    marginal_trend,
    predictive_coverage,
    predictive_intervals,
    sampler_diagnostics,
    seasonal_profile,
    summarize_draws,
    waic,
)

# Protocols: Calendric Data
from ceasefire.protocols.calendric import (
    CalendricData,
    Holiday,
    get_holidays,
    make_holiday_dataframe,
)

# Protocols: Intervention
from ceasefire.protocols.intervention import (
    CeasefireWeekends,
    ceasefire_start_dates,
)

# Regressors
from ceasefire.regressors import (
    DayOfWeek,
    ExternalRegressor,
    IntermittentEvent,
    MonthOfYear,
    Seasonality,
    SingleEvent,
    WindowIndicator,
)

# Configuration
from ceasefire.utilities.configuration import (
    DataConfig,
    OutputConfig,
    RunConfig,
    assemble_config,
    model_from_toml,
)

# Utilities
from ceasefire.utilities.logging import log_config
from ceasefire.utilities.misc import (
    infer_sampling_period,
    time_to_integer,
)

__all__ = [
    "CeasefireModel",
    "load_incidents",
    "filter_incidents",
    "aggregate_daily_counts",
    "restrict_period",
    "BoxCar",
    "ExternalRegressor",
    "Seasonality",
    "DayOfWeek",
    "MonthOfYear",
    "SingleEvent",
    "IntermittentEvent",
    "WindowIndicator",
    "get_holidays",
    "make_holiday_dataframe",
    "Holiday",
    "CalendricData",
    "CeasefireWeekends",
    "ceasefire_start_dates",
    "summarize_draws",
    "incidence_rate_ratios",
    "marginal_trend",
    "seasonal_profile",
    "predictive_intervals",
    "predictive_coverage",
    "counterfactual_impact",
    "waic",
    "compare_models",
    "sampler_diagnostics",
    "RunConfig",
    "DataConfig",
    "OutputConfig",
    "model_from_toml",
    "assemble_config",
    "time_to_integer",
    "infer_sampling_period",
    "log_config",
]
