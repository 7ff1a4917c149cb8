"""
Posterior summaries of a fitted CeasefireModel used for reporting: incidence
rate ratios, marginal trend, seasonal profiles, predictive intervals,
counterfactual impact of the intervention and information criteria.

None of the functions modify the model they are given.
"""

### --- Module Imports --- ###
# Standard Library
from typing import TYPE_CHECKING, Any, Optional, Sequence, Union

# Third Party
import arviz as az
import numpy as np
import pandas as pd

if TYPE_CHECKING:
    from ceasefire.interface import CeasefireModel

# Ceasefire
from ceasefire.regressors import get_event_regressors
from ceasefire.utilities.constants import _DELIM
from ceasefire.utilities.errors import NotFittedError
from ceasefire.utilities.logging import get_logger


### --- Class and Function Definitions --- ###
def _check_fitted(m: "CeasefireModel") -> None:
    if not m.is_fitted:
        raise NotFittedError("Posterior summaries require a fitted model.")


def summarize_draws(
    draws: np.ndarray, interval_width: float = 0.95
) -> pd.DataFrame:
    """
    Mean, median and equal-tailed interval of posterior draws.

    Parameters
    ----------
    draws : np.ndarray
        Array of shape (S,) or (S, N) with the draws along the first axis
    interval_width : float, optional
        Width of the interval. The default is 0.95.

    Returns
    -------
    pd.DataFrame
        One row per quantity with columns mean, median, lower, upper
    """
    if not 0 < interval_width < 1:
        raise ValueError("interval_width must be in range (0, 1).")
    draws = np.asarray(draws, dtype=float)
    if draws.ndim == 1:
        draws = draws[:, None]
    if draws.ndim != 2 or draws.shape[0] == 0:
        raise ValueError("Draws must be a non-empty 1d- or 2d-array.")
    lower_level = (1 - interval_width) / 2
    bounds = np.quantile(draws, [lower_level, 1 - lower_level], axis=0)
    return pd.DataFrame(
        {
            "mean": draws.mean(axis=0),
            "median": np.median(draws, axis=0),
            "lower": bounds[0],
            "upper": bounds[1],
        }
    )


def feature_table(m: "CeasefireModel") -> pd.DataFrame:
    """
    Splits the design matrix column names into regressor type, regressor name
    and level.

    Returns
    -------
    pd.DataFrame
        Columns feature, regressor_type, name, level (None except for
        categories)
    """
    event_types = set(get_event_regressors())
    rows = []
    for column in m.X.columns:
        parts = column.split(_DELIM)
        regressor_type = parts[0]
        level = None
        if regressor_type in event_types:
            # <type>__delim__<event type>__delim__<name>
            name = parts[2]
        elif regressor_type == "Seasonality":
            # <type>__delim__<name>__delim__<odd/even>__delim__<order>
            name = parts[1]
            level = f"{parts[2]}_{parts[3]}"
        else:
            name = parts[1]
            level = parts[2] if len(parts) > 2 else None
        rows.append((column, regressor_type, name, level))
    return pd.DataFrame(
        rows, columns=["feature", "regressor_type", "name", "level"]
    )


def incidence_rate_ratios(
    m: "CeasefireModel",
    names: Optional[Sequence[str]] = None,
    interval_width: Optional[float] = None,
) -> pd.DataFrame:
    """
    Incidence rate ratios exp(beta) of all non-seasonal features.

    For 0/1 features like events and categories the IRR is the multiplicative
    change of the expected count on days the feature is active, keeping all
    other covariates fixed. For external regressors it is the change per unit.

    Parameters
    ----------
    m : CeasefireModel
        The fitted model
    names : Optional[Sequence[str]], optional
        Restrict the table to these regressor names. By default all
        non-seasonal regressors are returned.
    interval_width : Optional[float], optional
        Width of the credible interval. Defaults to the model's
        interval_width.

    Returns
    -------
    pd.DataFrame
        One row per feature with columns feature, regressor_type, name, level,
        irr_mean, irr_median, irr_lower, irr_upper, percent_change and
        prob_decrease, i.e. the posterior probability of IRR < 1.
    """
    _check_fitted(m)
    interval_width = (
        m.interval_width if interval_width is None else interval_width
    )
    features = feature_table(m)
    features["index"] = np.arange(features.shape[0])
    features = features.loc[features["regressor_type"] != "Seasonality"]
    if names is not None:
        unknown = set(names) - set(features["name"])
        if unknown:
            msg = f"No non-seasonal features found for {sorted(unknown)}."
            get_logger().error(msg)
            raise KeyError(msg)
        features = features.loc[features["name"].isin(names)]

    irr = np.exp(
        m.model_backend.fit_params["beta"][:, features["index"].to_numpy()]
    )
    summary = summarize_draws(irr, interval_width).add_prefix("irr_")

    result = features.drop(columns="index").reset_index(drop=True)
    result = pd.concat([result, summary], axis=1)
    result["percent_change"] = 100 * (result["irr_median"] - 1)
    result["prob_decrease"] = (irr < 1).mean(axis=0)
    return result


def marginal_trend(
    m: "CeasefireModel", data: Optional[pd.DataFrame] = None
) -> pd.DataFrame:
    """
    Expected daily count from intercept and smooth trend only, i.e. with all
    other covariates at their reference or zero value.

    Parameters
    ----------
    m : CeasefireModel
        The fitted model
    data : Optional[pd.DataFrame], optional
        Timestamps to evaluate the trend at. By default the history is used.

    Returns
    -------
    pd.DataFrame
        Timestamp column plus mean, median, lower, upper
    """
    _check_fitted(m)
    # Regressors do not enter, so external regressor columns are not needed
    Z = m.make_trend_basis(data)
    X = np.zeros((Z.shape[0], 0))
    draws = m.model_backend.expected_draws(
        X, Z, components=("intercept", "trend")
    )
    timestamps = (
        m.history[m.timestamp_name] if data is None else data[m.timestamp_name]
    )
    summary = summarize_draws(draws, m.interval_width)
    summary.insert(0, m.timestamp_name, np.asarray(timestamps))
    return summary


def seasonal_profile(m: "CeasefireModel", name: str) -> pd.DataFrame:
    """
    Expected count over one full period of a seasonality at the average trend
    level of the history.

    Integer time is counted from the first timestamp of the history, hence the
    profile starts at the phase of the first training day.

    Parameters
    ----------
    m : CeasefireModel
        The fitted model
    name : str
        Name of the seasonality

    Returns
    -------
    pd.DataFrame
        Columns step (sampling periods since the first timestamp), the
        timestamp of that step in the first cycle, and mean, median, lower,
        upper of the expected count
    """
    _check_fitted(m)
    if name not in m.seasonalities:
        msg = f"Model has no seasonality '{name}'."
        get_logger().error(msg)
        raise KeyError(msg)
    seasonality = m.seasonalities[name]
    steps = np.arange(int(np.ceil(seasonality.period)))
    X_season, _ = seasonality.make_feature(pd.Series(steps))
    columns = [m.X.columns.get_loc(c) for c in X_season.columns]

    fit_params = m.model_backend.fit_params
    # Average of the trend over the history for each draw
    level = fit_params["alpha"]
    if m.Z.shape[1] > 0:
        level = level + (fit_params["gamma"] @ m.Z.T).mean(axis=1)
    eta = level[:, None] + fit_params["beta"][:, columns] @ X_season.T.values

    summary = summarize_draws(np.exp(eta), m.interval_width)
    summary.insert(0, "step", steps)
    summary.insert(
        1,
        m.timestamp_name,
        pd.date_range(
            start=m.first_timestamp,
            periods=len(steps),
            freq=m.sampling_period,
        ),
    )
    return summary


def predictive_intervals(
    m: "CeasefireModel",
    data: Optional[pd.DataFrame] = None,
    seed: Optional[int] = None,
) -> pd.DataFrame:
    """
    Prediction joined with the observed counts.

    Parameters
    ----------
    m : CeasefireModel
        The fitted model
    data : Optional[pd.DataFrame], optional
        Data to predict. If it holds the metric column, it is joined to the
        prediction. By default the history is used.
    seed : Optional[int], optional
        Seed of the posterior predictive draws

    Returns
    -------
    pd.DataFrame
        Output of CeasefireModel.predict() plus the metric column and a
        boolean column 'outside' that flags observations outside the
        posterior predictive interval
    """
    _check_fitted(m)
    prediction = m.predict(data, seed=seed)
    source = m.history if data is None else data
    if m.metric_name in source:
        observed = np.asarray(source[m.metric_name], dtype=float)
    else:
        observed = np.full(prediction.shape[0], np.nan)
    prediction.insert(1, m.metric_name, observed)
    prediction["outside"] = (
        (prediction[m.metric_name] < prediction["observed_lower"])
        | (prediction[m.metric_name] > prediction["observed_upper"])
    ) & prediction[m.metric_name].notna()
    return prediction


def predictive_coverage(
    m: "CeasefireModel",
    data: Optional[pd.DataFrame] = None,
    seed: Optional[int] = None,
) -> float:
    """
    Fraction of observed counts inside the posterior predictive interval. For
    a well calibrated model it is close to the model's interval_width.
    """
    intervals = predictive_intervals(m, data, seed=seed)
    observed = intervals[m.metric_name].notna()
    if not observed.any():
        raise ValueError("Coverage requires observed counts.")
    return float(1 - intervals.loc[observed, "outside"].mean())


def counterfactual_impact(
    m: "CeasefireModel",
    data: Optional[pd.DataFrame] = None,
    names: Sequence[str] = ("ceasefire",),
    interval_width: Optional[float] = None,
) -> dict[str, Any]:
    """
    Counts averted by the named indicators.

    For every posterior draw the expected count with the named indicators
    switched off (counterfactual) is compared to the expected count with the
    indicators as they are (factual). Both are summed over all days on which
    any of the indicators is active.

    Parameters
    ----------
    m : CeasefireModel
        The fitted model
    data : Optional[pd.DataFrame], optional
        Timestamps to evaluate. By default the history is used.
    names : Sequence[str], optional
        Names of event regressors to switch off. The default is
        ('ceasefire',).
    interval_width : Optional[float], optional
        Width of the credible intervals. Defaults to the model's
        interval_width.

    Returns
    -------
    dict[str, Any]
        n_active_days, expected factual and counterfactual totals, averted
        counts (counterfactual minus factual) and relative change (factual
        over counterfactual minus one), the latter two each summarized by
        mean, median, lower and upper.
    """
    _check_fitted(m)
    interval_width = (
        m.interval_width if interval_width is None else interval_width
    )
    features = feature_table(m)
    columns = features.loc[features["name"].isin(names), "feature"].to_list()
    if not columns:
        msg = f"No features found for {list(names)}."
        get_logger().error(msg)
        raise KeyError(msg)

    X, Z = m.make_design(data)
    active = (X[columns] != 0).any(axis=1).to_numpy()
    if not active.any():
        raise ValueError(
            f"Indicators {list(names)} are not active on any requested day."
        )
    X_counterfactual = X.copy()
    X_counterfactual[columns] = 0

    backend = m.model_backend
    factual = backend.expected_draws(X.to_numpy(dtype=float), Z)[:, active]
    counterfactual = backend.expected_draws(
        X_counterfactual.to_numpy(dtype=float), Z
    )[:, active]

    factual_total = factual.sum(axis=1)
    counterfactual_total = counterfactual.sum(axis=1)
    averted = counterfactual_total - factual_total
    relative_change = factual_total / counterfactual_total - 1

    result: dict[str, Any] = {
        "names": list(names),
        "n_active_days": int(active.sum()),
        "factual_mean": float(factual_total.mean()),
        "counterfactual_mean": float(counterfactual_total.mean()),
    }
    for label, draws in (
        ("averted", averted),
        ("relative_change", relative_change),
    ):
        summary = summarize_draws(draws, interval_width).iloc[0]
        result.update({f"{label}_{k}": float(v) for k, v in summary.items()})
    result["prob_averted"] = float((averted > 0).mean())
    return result


def pointwise_log_likelihood(m: "CeasefireModel") -> np.ndarray:
    """
    Log-likelihood draws of each training observation, shape (S, T)
    """
    _check_fitted(m)
    mu = m.model_backend.expected_draws(m.X.to_numpy(dtype=float), m.Z)
    y = np.asarray(m.history[m.metric_name])
    return m.model_backend.log_likelihood(y, mu)


def to_inference_data(m: "CeasefireModel") -> az.InferenceData:
    """
    Wraps the pointwise log-likelihood of a fitted model for ArviZ. All draws
    are treated as a single chain.
    """
    log_lik = pointwise_log_likelihood(m)
    return az.from_dict(log_likelihood={m.metric_name: log_lik[None, :, :]})


def waic(m: "CeasefireModel") -> dict[str, float]:
    """
    Widely applicable information criterion of the fitted model.

    Returns
    -------
    dict[str, float]
        elpd_waic, p_waic, waic (= -2 elpd_waic) and the standard error of
        waic
    """
    result = az.waic(to_inference_data(m), scale="log")
    if result.warning:
        get_logger().warning(
            "Posterior variance of the log-likelihood exceeds 0.4 for some "
            "observations. WAIC may be unreliable."
        )
    return {
        "elpd_waic": float(result.elpd_waic),
        "p_waic": float(result.p_waic),
        "waic": float(-2 * result.elpd_waic),
        "waic_se": float(2 * result.se),
    }


def check_same_observations(models: dict[str, "CeasefireModel"]) -> None:
    """
    Raises a ValueError unless all models were fitted to identical timestamps
    and counts.
    """
    labels = list(models)
    reference = models[labels[0]]
    ref_ds = reference.history[reference.timestamp_name].to_numpy()
    ref_y = reference.history[reference.metric_name].to_numpy()
    for label in labels[1:]:
        m = models[label]
        ds = m.history[m.timestamp_name].to_numpy()
        y = m.history[m.metric_name].to_numpy()
        if not (np.array_equal(ds, ref_ds) and np.array_equal(y, ref_y)):
            msg = (
                f"Models '{labels[0]}' and '{label}' were not fitted to the "
                "same observations."
            )
            get_logger().error(msg)
            raise ValueError(msg)


def compare_models(
    models: Union[dict[str, "CeasefireModel"], Sequence["CeasefireModel"]],
) -> pd.DataFrame:
    """
    Ranks models fitted to the same data by WAIC.

    Parameters
    ----------
    models : Union[dict[str, CeasefireModel], Sequence[CeasefireModel]]
        Fitted models, either labelled by dictionary keys or in a sequence in
        which case the distribution names serve as labels.

    Returns
    -------
    pd.DataFrame
        One row per model sorted by waic with columns waic, waic_se, p_waic,
        delta_waic, the standard error of the difference to the best model
        and the stacking weight
    """
    if not isinstance(models, dict):
        labels = [m.model for m in models]
        if len(set(labels)) != len(labels):
            labels = [f"{label}_{i}" for i, label in enumerate(labels)]
        models = dict(zip(labels, models))
    if len(models) < 2:
        raise ValueError("At least two models are needed for a comparison.")
    for m in models.values():
        _check_fitted(m)
    check_same_observations(models)

    comparison = az.compare(
        {label: to_inference_data(m) for label, m in models.items()},
        ic="waic",
        scale="log",
    )
    # ArviZ reports on the log scale, waic is on the deviance scale
    return pd.DataFrame(
        {
            "model": comparison.index.to_numpy(),
            "waic": -2 * comparison["elpd_waic"].to_numpy(),
            "waic_se": 2 * comparison["se"].to_numpy(),
            "p_waic": comparison["p_waic"].to_numpy(),
            "delta_waic": 2 * comparison["elpd_diff"].to_numpy(),
            "delta_se": 2 * comparison["dse"].to_numpy(),
            "weight": comparison["weight"].to_numpy(),
        }
    )


def sampler_diagnostics(m: "CeasefireModel") -> dict[str, Any]:
    """
    Convergence diagnostics of the sampler, see
    ModelBackendBase.diagnostics().
    """
    _check_fitted(m)
    return m.model_backend.diagnostics()
