# Standard Library
from importlib.metadata import PackageNotFoundError, version

# Ceasefire
from ceasefire.api import (
    BoxCar,
    CalendricData,
    CeasefireModel,
    CeasefireWeekends,
    DataConfig,
    DayOfWeek,
    ExternalRegressor,
    Holiday,
    IntermittentEvent,
    MonthOfYear,
    OutputConfig,
    RunConfig,
    Seasonality,
    SingleEvent,
    WindowIndicator,
    aggregate_daily_counts,
    assemble_config,
    ceasefire_start_dates,
    compare_models,
    counterfactual_impact,
    filter_incidents,
    get_holidays,
    incidence_rate_ratios,
    infer_sampling_period,
    load_incidents,
    log_config,
    make_holiday_dataframe,
    marginal_trend,
    model_from_toml,
    predictive_coverage,
    predictive_intervals,
    restrict_period,
    sampler_diagnostics,
    seasonal_profile,
    summarize_draws,
    time_to_integer,
    waic,
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

# Read the version dynamically from the installed distribution
try:
    __version__ = version("ceasefire-impact")
except PackageNotFoundError:
    __version__ = "unknown"
