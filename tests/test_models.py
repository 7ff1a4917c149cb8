### --- Module Imports --- ###
# Third Party
import numpy as np
import pytest
from scipy.special import gammaln

# Ceasefire
from ceasefire.models import (
    ModelInputData,
    NegativeBinomial,
    Poisson,
    get_model_backend,
)
from ceasefire.utilities.errors import NotFittedError


### --- Class and Function Definitions --- ###
def neg_binomial_2_lpmf(y, mu, phi):
    """
    Stan's neg_binomial_2 log-pmf with mean mu and shape phi
    """
    return (
        gammaln(y + phi)
        - gammaln(y + 1)
        - gammaln(phi)
        + phi * np.log(phi / (mu + phi))
        + y * np.log(mu / (mu + phi))
    )


def backend_with_draws(model, n_draws, **fit_params):
    backend = get_model_backend(model)
    backend.fit_params = {
        "alpha": np.zeros(n_draws),
        **{k: np.asarray(v, dtype=float) for k, v in fit_params.items()},
    }
    return backend


### --- Tests --- ###
def test_get_model_backend():
    assert isinstance(get_model_backend("poisson"), Poisson)
    assert isinstance(get_model_backend("negative binomial"), NegativeBinomial)
    with pytest.raises(NotImplementedError):
        get_model_backend("zero-inflated poisson")


def test_poisson_log_likelihood():
    backend = backend_with_draws("poisson", 2)
    y = np.array([0, 3, 7])
    mu = np.array([[0.5, 2.0, 7.0], [1.0, 3.0, 5.0]])
    log_lik = backend.log_likelihood(y, mu)

    assert log_lik.shape == (2, 3)
    expected = y * np.log(mu) - mu - gammaln(y + 1)
    np.testing.assert_allclose(log_lik, expected)


def test_negative_binomial_log_likelihood():
    phi = np.array([0.5, 4.0, 200.0])
    backend = backend_with_draws("negative binomial", 3, phi=phi)
    y = np.array([0, 1, 5, 20])
    mu = np.tile([0.2, 1.5, 4.0, 12.0], (3, 1))
    log_lik = backend.log_likelihood(y, mu)

    assert log_lik.shape == (3, 4)
    expected = neg_binomial_2_lpmf(y[None, :], mu, phi[:, None])
    np.testing.assert_allclose(log_lik, expected)
    # Large phi approaches the Poisson distribution
    poisson_lik = backend_with_draws("poisson", 3).log_likelihood(y, mu)
    np.testing.assert_allclose(log_lik[2], poisson_lik[2], rtol=0.05)


def test_negative_binomial_predictive_moments():
    n_draws = 200_000
    backend = backend_with_draws(
        "negative binomial", n_draws, phi=np.full(n_draws, 2.0)
    )
    mu = np.full((n_draws, 1), 4.0)
    y_rep = backend.predictive_draws(mu, np.random.default_rng(0))

    assert y_rep.shape == (n_draws, 1)
    assert y_rep.min() >= 0
    # Mean mu and variance mu + mu^2 / phi
    assert y_rep.mean() == pytest.approx(4.0, rel=0.02)
    assert y_rep.var() == pytest.approx(4.0 + 16.0 / 2.0, rel=0.05)


def test_poisson_predictive_moments():
    n_draws = 200_000
    backend = backend_with_draws("poisson", n_draws)
    mu = np.full((n_draws, 1), 3.0)
    y_rep = backend.predictive_draws(mu, np.random.default_rng(1))
    assert y_rep.mean() == pytest.approx(3.0, rel=0.02)
    assert y_rep.var() == pytest.approx(3.0, rel=0.05)


def test_extract_draws_shapes():
    backend = get_model_backend("negative binomial")
    backend.stan_data = ModelInputData(
        T=2,
        K=1,
        B=3,
        y=np.array([1, 2]),
        t=np.array([0, 1]),
        X=np.zeros((2, 1)),
        sigmas=np.ones(1),
        Z=np.zeros((2, 3)),
    )
    S = 5
    fit_params = backend.extract_draws(
        {
            "alpha": np.arange(S),
            # A single regressor may come back without its own axis
            "beta": np.ones(S),
            "gamma": np.ones((S, 3)),
            "tau": np.ones((S, 1)),
            "phi": np.full(S, 2.0),
        }
    )
    assert fit_params["alpha"].shape == (S,)
    assert fit_params["beta"].shape == (S, 1)
    assert fit_params["gamma"].shape == (S, 3)
    assert fit_params["tau"].shape == (S,)
    assert fit_params["phi"].shape == (S,)
    assert fit_params["alpha"].dtype == float


def test_extract_draws_without_regressors_and_trend():
    backend = get_model_backend("poisson")
    backend.stan_data = ModelInputData(
        T=2, y=np.array([1, 2]), t=np.array([0, 1]), X=np.zeros((2, 0))
    )
    fit_params = backend.extract_draws(
        {
            "alpha": np.zeros(4),
            "beta": np.zeros((4, 0)),
            "gamma": np.zeros((4, 0)),
            "tau": np.ones(4),
        }
    )
    assert fit_params["beta"].shape == (4, 0)
    assert fit_params["gamma"].shape == (4, 0)
    assert "phi" not in fit_params


def test_initial_dispersion():
    backend = NegativeBinomial("negative binomial")
    # Mean 20/3 and Pearson dispersion 16 give phi = (20/3) / 15
    phi = backend.initial_dispersion(np.array([0, 0, 0, 0, 20, 20]))["phi"]
    assert phi == pytest.approx(4 / 9)

    # Extreme overdispersion is clipped from below
    spiky = np.zeros(1000)
    spiky[-1] = 1000
    assert backend.initial_dispersion(spiky)["phi"] == 1e-2
    # Underdispersed data start close to Poisson
    assert backend.initial_dispersion(np.full(10, 3))["phi"] == 1e3
    # Too little information
    assert backend.initial_dispersion(np.zeros(10))["phi"] == 10.0
    assert backend.initial_dispersion(np.array([4]))["phi"] == 10.0

    assert Poisson("poisson").initial_dispersion(np.arange(10)) == {}


def test_stan_inits():
    stan_data = ModelInputData(
        T=6,
        K=2,
        B=1,
        y=np.array([0, 0, 0, 0, 20, 20]),
        t=np.arange(6),
        X=np.zeros((6, 2)),
        sigmas=np.ones(2),
        Z=np.zeros((6, 1)),
        alpha_loc=1.5,
    )
    inits = NegativeBinomial("negative binomial").stan_inits(stan_data)
    assert inits["alpha"] == 1.5
    assert inits["beta"].tolist() == [0, 0]
    assert inits["phi"] == pytest.approx(4 / 9)
    assert "phi" not in Poisson("poisson").stan_inits(stan_data)


def test_linear_predictor_components():
    backend = backend_with_draws(
        "poisson",
        2,
        beta=[[1.0, 0.0], [2.0, 0.0]],
        gamma=[[0.5], [0.5]],
    )
    backend.fit_params["alpha"] = np.array([1.0, 1.0])
    X = np.array([[1.0, 5.0], [0.0, 5.0]])
    Z = np.array([[2.0], [0.0]])

    eta = backend.linear_predictor(X, Z)
    np.testing.assert_allclose(eta, [[3.0, 1.0], [4.0, 1.0]])
    trend = backend.linear_predictor(X, Z, components=("intercept", "trend"))
    np.testing.assert_allclose(trend, [[2.0, 1.0], [2.0, 1.0]])
    np.testing.assert_allclose(
        backend.expected_draws(X, Z), np.exp([[3.0, 1.0], [4.0, 1.0]])
    )
    with pytest.raises(ValueError):
        backend.linear_predictor(X, Z, components=("seasonality",))
    with pytest.raises(NotFittedError):
        get_model_backend("poisson").linear_predictor(X, Z)


def test_model_input_data_validation():
    with pytest.raises(ValueError):
        ModelInputData(T=2, y=np.array([1, -1]))
    with pytest.raises(ValueError):
        ModelInputData(T=3, y=np.array([1, 2]))
