### --- Module Imports --- ###
# Third Party
import numpy as np
import pandas as pd
import pytest
from conftest import inject_draws, make_daily_counts

# Ceasefire
from ceasefire.interface import CeasefireModel
from ceasefire.posterior import (
    compare_models,
    counterfactual_impact,
    feature_table,
    incidence_rate_ratios,
    marginal_trend,
    predictive_coverage,
    predictive_intervals,
    sampler_diagnostics,
    seasonal_profile,
    summarize_draws,
    waic,
)
from ceasefire.protocols.intervention import CeasefireWeekends
from ceasefire.utilities.errors import NotFittedError


### --- Fixtures --- ###
@pytest.fixture
def fitted_model(daily_counts, ceasefire_dates) -> CeasefireModel:
    m = CeasefireModel()
    m.add_seasonality("yearly", period="365.25D", fourier_order=2)
    m.add_categorical("day_of_week", categorical_type="DayOfWeek")
    m.add_protocol(CeasefireWeekends(dates=ceasefire_dates))
    return inject_draws(
        m,
        daily_counts,
        alpha=np.log(2),
        betas={"ceasefire": np.log(0.5), "post_ceasefire": np.log(1.25)},
    )


### --- Tests --- ###
def test_summarize_draws():
    draws = np.column_stack([np.arange(101), np.full(101, 3.0)])
    summary = summarize_draws(draws, interval_width=0.9)

    assert summary.columns.to_list() == ["mean", "median", "lower", "upper"]
    assert summary.loc[0, "mean"] == pytest.approx(50)
    assert summary.loc[0, "lower"] == pytest.approx(5)
    assert summary.loc[0, "upper"] == pytest.approx(95)
    assert summary.loc[1].tolist() == [3, 3, 3, 3]
    assert len(summarize_draws(np.arange(10))) == 1

    with pytest.raises(ValueError):
        summarize_draws(draws, interval_width=1)
    with pytest.raises(ValueError):
        summarize_draws(np.zeros((0, 2)))


def test_feature_table(fitted_model):
    features = feature_table(fitted_model)
    assert len(features) == fitted_model.X.shape[1]
    assert set(features["regressor_type"]) == {
        "Seasonality",
        "DayOfWeek",
        "WindowIndicator",
    }
    saturday = features.loc[features["level"] == "Saturday"].iloc[0]
    assert saturday["name"] == "day_of_week"
    assert "ceasefire" in features["name"].to_list()


def test_incidence_rate_ratios(fitted_model):
    irr = incidence_rate_ratios(fitted_model)

    assert "Seasonality" not in irr["regressor_type"].to_list()
    # Six weekday dummies and two windows
    assert len(irr) == 8
    ceasefire = irr.loc[irr["name"] == "ceasefire"].iloc[0]
    assert ceasefire["irr_mean"] == pytest.approx(0.5)
    assert ceasefire["irr_lower"] == pytest.approx(0.5)
    assert ceasefire["percent_change"] == pytest.approx(-50)
    assert ceasefire["prob_decrease"] == 1.0
    post = irr.loc[irr["name"] == "post_ceasefire"].iloc[0]
    assert post["prob_decrease"] == 0.0

    only = incidence_rate_ratios(fitted_model, names=["ceasefire"])
    assert only["name"].to_list() == ["ceasefire"]
    with pytest.raises(KeyError):
        incidence_rate_ratios(fitted_model, names=["yearly"])


def test_marginal_trend(fitted_model):
    trend = marginal_trend(fitted_model)
    assert trend.columns.to_list() == [
        "ds",
        "mean",
        "median",
        "lower",
        "upper",
    ]
    assert len(trend) == len(fitted_model.history)
    # All covariates except intercept and trend are left out
    np.testing.assert_allclose(trend["mean"], 2)

    future = pd.DataFrame(
        {"ds": pd.date_range("2020-01-01", periods=10, freq="D")}
    )
    assert len(marginal_trend(fitted_model, future)) == 10


def test_marginal_trend_ignores_external_regressors(short_counts):
    m = CeasefireModel(trend_knot_spacing="30D")
    m.add_external_regressor("temperature", prior_scale=0.5)
    df = short_counts.assign(
        temperature=np.linspace(0, 1, len(short_counts))
    )
    inject_draws(m, df, alpha=np.log(3), betas={"temperature": 1.0})

    future = m.make_future_dataframe(periods=10, include_history=False)
    trend = marginal_trend(m, future)
    assert len(trend) == 10
    assert trend["ds"].iloc[0] == pd.Timestamp("2019-04-01")
    np.testing.assert_allclose(trend["mean"], 3)
    # The design still requires the regressor column
    with pytest.raises(KeyError):
        m.make_design(future)


def test_seasonal_profile(fitted_model):
    profile = seasonal_profile(fitted_model, "yearly")
    assert len(profile) == 366
    assert profile["step"].iloc[0] == 0
    assert profile["ds"].iloc[0] == fitted_model.first_timestamp
    # Seasonal coefficients are zero
    np.testing.assert_allclose(profile["mean"], 2)
    with pytest.raises(KeyError):
        seasonal_profile(fitted_model, "weekly")


def test_predictive_intervals(fitted_model):
    intervals = predictive_intervals(fitted_model, seed=11)

    assert "y" in intervals
    assert intervals["outside"].dtype == bool
    outside = (intervals["y"] < intervals["observed_lower"]) | (
        intervals["y"] > intervals["observed_upper"]
    )
    assert (intervals["outside"] == outside).all()
    # On ceasefire weekends the expected count is halved
    on_ceasefire = fitted_model.X.filter(like="__delim__ceasefire").iloc[:, 0]
    np.testing.assert_allclose(intervals.loc[on_ceasefire == 1, "yhat"], 1)

    coverage = predictive_coverage(fitted_model, seed=11)
    assert 0 <= coverage <= 1
    assert coverage == pytest.approx(1 - intervals["outside"].mean())


def test_predictive_intervals_without_observations(fitted_model):
    future = fitted_model.make_future_dataframe(
        periods=5, include_history=False
    )
    intervals = predictive_intervals(fitted_model, future)
    assert intervals["y"].isna().all()
    assert not intervals["outside"].any()
    with pytest.raises(ValueError):
        predictive_coverage(fitted_model, future)


def test_counterfactual_impact(fitted_model):
    X_before = fitted_model.X.copy()
    impact = counterfactual_impact(fitted_model)

    # Nine weekends of three days at an expected count of two per day
    assert impact["n_active_days"] == 27
    assert impact["counterfactual_mean"] == pytest.approx(54)
    assert impact["factual_mean"] == pytest.approx(27)
    assert impact["averted_mean"] == pytest.approx(27)
    assert impact["averted_lower"] == pytest.approx(27)
    assert impact["relative_change_median"] == pytest.approx(-0.5)
    assert impact["prob_averted"] == 1.0
    # Summaries never modify the model
    pd.testing.assert_frame_equal(fitted_model.X, X_before)


def test_counterfactual_impact_of_several_windows(fitted_model):
    impact = counterfactual_impact(
        fitted_model, names=["ceasefire", "post_ceasefire"]
    )
    assert impact["n_active_days"] == 54
    # 27 x (2 - 1) averted during and 27 x (2 - 2.5) added after
    assert impact["averted_mean"] == pytest.approx(27 - 13.5)

    with pytest.raises(KeyError):
        counterfactual_impact(fitted_model, names=["truce"])


def test_waic_and_model_comparison(daily_counts, ceasefire_dates):
    models = {}
    for model in ("poisson", "negative binomial"):
        m = CeasefireModel(model=model)
        models[model] = inject_draws(
            m, daily_counts, alpha=np.log(daily_counts["y"].mean())
        )

    result = waic(models["poisson"])
    assert set(result) == {"elpd_waic", "p_waic", "waic", "waic_se"}
    assert result["waic"] == pytest.approx(-2 * result["elpd_waic"])
    # Constant draws have no posterior variance
    assert result["p_waic"] == pytest.approx(0)

    comparison = compare_models(models)
    assert comparison["delta_waic"].iloc[0] == 0
    assert (comparison["delta_waic"] >= 0).all()
    assert set(comparison["model"]) == set(models)

    ranked = compare_models(list(models.values()))
    assert set(ranked["model"]) == set(models)

    with pytest.raises(ValueError):
        compare_models([models["poisson"]])

    other = inject_draws(
        CeasefireModel(model="poisson"),
        make_daily_counts(start="2019-01-01", end="2019-06-30"),
    )
    with pytest.raises(ValueError):
        compare_models({"a": models["poisson"], "b": other})


def test_compare_models_requires_identical_observations(daily_counts):
    poisson = inject_draws(CeasefireModel(model="poisson"), daily_counts)
    same_days = inject_draws(
        CeasefireModel(model="negative binomial"),
        make_daily_counts(seed=5),
    )
    assert len(same_days.history) == len(poisson.history)
    with pytest.raises(ValueError):
        compare_models([poisson, same_days])

    shifted = inject_draws(
        CeasefireModel(model="negative binomial"),
        make_daily_counts(start="2017-01-02", end="2020-01-01"),
    )
    with pytest.raises(ValueError):
        compare_models([poisson, shifted])

    matching = inject_draws(
        CeasefireModel(model="negative binomial"), daily_counts.copy()
    )
    comparison = compare_models([poisson, matching])
    assert comparison["weight"].sum() == pytest.approx(1)
    assert comparison["delta_se"].iloc[0] == pytest.approx(0)


def test_sampler_diagnostics(fitted_model):
    diagnostics = sampler_diagnostics(fitted_model)
    assert diagnostics == {"sampler": "laplace", "n_draws": 200}


def test_unfitted_model_raises(daily_counts):
    m = CeasefireModel()
    m.preprocess(daily_counts)
    for summary in (
        incidence_rate_ratios,
        marginal_trend,
        predictive_intervals,
        counterfactual_impact,
        waic,
        sampler_diagnostics,
    ):
        with pytest.raises(NotFittedError):
            summary(m)
