"""
This Module defines the Backend classes for the count distributions that can be
used to fit the ceasefire model.
"""

### --- Module Imports --- ###
# Standard Library
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional, Sequence, Type, Union, cast

# Third Party
import numpy as np
import pandas as pd
from cmdstanpy import (
    CmdStanLaplace,
    CmdStanMCMC,
    CmdStanModel,
    install_cmdstan,
    set_cmdstan_path,
)
from pydantic import BaseModel, ConfigDict, Field, field_validator
from scipy.stats import nbinom, poisson
from typing_extensions import Self, TypeAlias

# Ceasefire
from ceasefire.utilities.constants import (
    _CMDSTAN_VERSION,
    _FIT_DEFAULTS,
    _INTERCEPT_SCALE,
)
from ceasefire.utilities.errors import NotFittedError
from ceasefire.utilities.logging import get_logger
from ceasefire.utilities.misc import calculate_dispersion
from ceasefire.utilities.types import Distribution, Sampler

### --- Global Constants Definitions --- ###
BASEPATH = Path(__file__).parent

# Names of the linear predictor components
COMPONENTS = ("intercept", "regressors", "trend")


### --- Class and Function Definitions --- ###
class ModelInputData(BaseModel):
    """
    A container for the input data of the Stan models
    """

    model_config = ConfigDict(
        # So the model accepts numpy arrays as values
        arbitrary_types_allowed=True,
    )

    T: int = Field(ge=0, default=0)  # Number of time periods
    K: int = Field(ge=0, default=0)  # Number of regressors
    B: int = Field(ge=0, default=0)  # Number of spline basis columns
    y: np.ndarray = np.array([], dtype=int)  # Daily counts
    t: np.ndarray = np.array([], dtype=int)  # Time as integer vector
    X: np.ndarray = np.zeros((0, 0))  # Regressors
    sigmas: np.ndarray = np.array([])  # Scale on regressor priors
    Z: np.ndarray = np.zeros((0, 0))  # Spline basis
    alpha_loc: float = 0  # Location of intercept prior
    alpha_scale: float = Field(gt=0, default=_INTERCEPT_SCALE)
    tau_scale: float = Field(gt=0, default=1)  # Scale on random walk steps

    @field_validator("y")
    @classmethod
    def validate_y_shape(cls, y: np.ndarray, info) -> np.ndarray:
        if len(y.shape) != 1:
            raise ValueError("Data array must be 1d-ndarray.")
        if info.data["T"] != len(y):
            raise ValueError("Length of y does not equal specified T")
        if (y < 0).any():
            raise ValueError("Counts must be non-negative.")
        return y

    @field_validator("t")
    @classmethod
    def validate_t_shape(cls, t: np.ndarray, info) -> np.ndarray:
        if len(t.shape) != 1:
            raise ValueError("Timestamp array must be 1d-ndarray.")
        if info.data["T"] != len(t):
            raise ValueError("Length of t does not equal specified T")
        return t

    @field_validator("X")
    @classmethod
    def validate_X_shape(cls, X: np.ndarray, info) -> np.ndarray:
        if len(X.shape) != 2:
            raise ValueError("Regressor matrix X must be 2d-ndarray.")
        if info.data["T"] != X.shape[0]:
            raise ValueError(
                "Regressor matrix X must have same number of rows"
                " as timestamp."
            )
        if info.data["K"] != X.shape[1]:
            raise ValueError(
                "Regressor matrix X must have same number of"
                " columns as specified K."
            )
        return X

    @field_validator("sigmas")
    @classmethod
    def validate_sigmas(cls, sigmas: np.ndarray, info) -> np.ndarray:
        if len(sigmas.shape) != 1:
            raise ValueError("Sigmas array must be 1d-ndarray.")
        if info.data["K"] != len(sigmas):
            raise ValueError("Length of sigmas does not equal specified K.")
        if not np.all(sigmas > 0):
            raise ValueError("All elements in sigmas must be greater than 0.")
        return sigmas

    @field_validator("Z")
    @classmethod
    def validate_Z_shape(cls, Z: np.ndarray, info) -> np.ndarray:
        if len(Z.shape) != 2:
            raise ValueError("Spline basis Z must be 2d-ndarray.")
        if info.data["T"] != Z.shape[0]:
            raise ValueError(
                "Spline basis Z must have same number of rows as timestamp."
            )
        if info.data["B"] != Z.shape[1]:
            raise ValueError(
                "Spline basis Z must have same number of columns as "
                "specified B."
            )
        return Z


class ModelBackendBase(ABC):
    """
    Abstract base clase for the model backend.

    The model backend is in charge of passing data to the Stan code, running
    the sampler and turning the posterior draws into draws of the expected
    and observable counts. All draw arrays have the draws along the first
    axis.
    """

    # These class attributes must be defined by each model backend
    # Location of the stan file
    stan_file = Path()
    # Kind of data (integer, float, ...). Is used for data validation
    kind = ""  # must be any combination of "biuf"
    # Parameters of the Stan model in addition to the linear predictor
    extra_params: tuple[str, ...] = ()

    def __init__(self: Self, model_name: str) -> None:
        """
        Initialize the model backend. CmdStan is installed and the Stan model
        compiled on the first call of fit().

        Parameters
        ----------
        model_name : str
            Name of the model. Must match any of the keys in MODEL_MAP.
        """
        self.model_name = model_name
        self.model: Optional[CmdStanModel] = None
        # The following attributes are set during fitting
        self.stan_data = ModelInputData()
        self.stan_fit: Union[CmdStanMCMC, CmdStanLaplace, None] = None
        self.sampler: Optional[Sampler] = None
        self.fit_params: dict[str, np.ndarray] = dict()

    def compile(self: Self) -> CmdStanModel:
        """
        Installs CmdStan if necessary and compiles the Stan model.
        """
        if self.model is not None:
            return self.model
        # Set explicit local CmdStan path to avoid conflicts with other CmdStan
        # installations
        models_path = BASEPATH / "stan_models"
        cmdstan_path = models_path / f"cmdstan-{_CMDSTAN_VERSION}"
        if not cmdstan_path.is_dir():
            get_logger().info(
                f"Cannot find cmdstan version {_CMDSTAN_VERSION}"
                ". Installing now."
            )
            install_cmdstan(
                version=_CMDSTAN_VERSION, dir=str(models_path), compiler=True
            )
        set_cmdstan_path(str(cmdstan_path))
        self.model = CmdStanModel(stan_file=self.stan_file)
        return self.model

    def stan_inits(self: Self, stan_data: ModelInputData) -> dict[str, Any]:
        """
        Initial values for all chains. The trend starts flat and all
        regressors at zero, so the chains start at the log-mean of the data.
        """
        return {
            "alpha": stan_data.alpha_loc,
            "beta": np.zeros(stan_data.K),
            "z": np.zeros(stan_data.B),
            "tau": 0.1 * stan_data.tau_scale,
        }

    def fit(
        self: Self,
        stan_data: ModelInputData,
        sampler: Sampler = _FIT_DEFAULTS["sampler"],
        chains: int = _FIT_DEFAULTS["chains"],
        iter_warmup: int = _FIT_DEFAULTS["iter_warmup"],
        iter_sampling: int = _FIT_DEFAULTS["iter_sampling"],
        adapt_delta: float = _FIT_DEFAULTS["adapt_delta"],
        seed: Optional[int] = _FIT_DEFAULTS["seed"],
    ) -> Union[CmdStanMCMC, CmdStanLaplace]:
        """
        Draws from the posterior of the model given the input data.

        Parameters
        ----------
        stan_data : ModelInputData
            An object that holds the input data required by the data-block of
            the stan model.
        sampler : Sampler, optional
            'nuts' (default) runs Stan's adaptive Hamiltonian Monte Carlo.
            'laplace' finds the posterior mode and draws from the Laplace
            approximation around it, which is much faster but ignores
            skewness of the posterior.
        chains : int, optional
            Number of Markov chains. Ignored by 'laplace'.
        iter_warmup : int, optional
            Warmup iterations per chain. Ignored by 'laplace'.
        iter_sampling : int, optional
            Draws per chain. 'laplace' draws chains * iter_sampling samples.
        adapt_delta : float, optional
            Target acceptance rate of NUTS. Ignored by 'laplace'.
        seed : Optional[int], optional
            Random seed of the sampler.

        Returns
        -------
        Union[CmdStanMCMC, CmdStanLaplace]
            The cmdstanpy fit object
        """
        model = self.compile()
        self.stan_data = stan_data
        data = stan_data.model_dump()
        inits = self.stan_inits(stan_data)

        if sampler == "nuts":
            get_logger().info(
                f"Running NUTS with {chains} chains, {iter_warmup} warmup and "
                f"{iter_sampling} sampling iterations."
            )
            self.stan_fit = model.sample(
                data=data,
                inits=inits,
                chains=chains,
                iter_warmup=iter_warmup,
                iter_sampling=iter_sampling,
                adapt_delta=adapt_delta,
                seed=seed,
                show_progress=False,
            )
        elif sampler == "laplace":
            optimize_args = dict(
                data=data,
                inits=inits,
                algorithm="BFGS",
                iter=int(1e4),
                jacobian=True,
                seed=seed,
            )
            try:
                optimized_model = model.optimize(**optimize_args)
            except RuntimeError:
                # Fall back on Newton
                get_logger().warning(
                    "Optimization terminated abnormally. Falling back to "
                    "Newton."
                )
                optimize_args["algorithm"] = "Newton"
                optimized_model = model.optimize(**optimize_args)
            get_logger().info("Starting Laplace sampling.")
            self.stan_fit = model.laplace_sample(
                data=data,
                mode=optimized_model,
                draws=chains * iter_sampling,
                jacobian=True,
                seed=seed,
            )
        else:
            msg = f"Sampler '{sampler}' is not supported."
            get_logger().error(msg)
            raise NotImplementedError(msg)

        self.sampler = sampler
        self.fit_params = self.extract_draws(self.stan_fit.stan_variables())
        get_logger().info(
            f"Drew {self.n_draws} posterior samples using {sampler}."
        )
        return self.stan_fit

    def extract_draws(
        self: Self, stan_variables: dict[str, np.ndarray]
    ) -> dict[str, np.ndarray]:
        """
        Brings the posterior draws into fixed shapes: (S,) for scalar
        parameters, (S, K) for beta and (S, B) for gamma.
        """
        alpha = np.asarray(stan_variables["alpha"], dtype=float).reshape(-1)
        S = alpha.shape[0]
        fit_params = {
            "alpha": alpha,
            "beta": np.asarray(stan_variables["beta"], dtype=float).reshape(
                S, self.stan_data.K
            ),
            "gamma": np.asarray(stan_variables["gamma"], dtype=float).reshape(
                S, self.stan_data.B
            ),
            "tau": np.asarray(stan_variables["tau"], dtype=float).reshape(S),
        }
        for param in self.extra_params:
            fit_params[param] = np.asarray(
                stan_variables[param], dtype=float
            ).reshape(S)
        return fit_params

    @property
    def n_draws(self: Self) -> int:
        if not self.fit_params:
            return 0
        return self.fit_params["alpha"].shape[0]

    def linear_predictor(
        self: Self,
        X: np.ndarray,
        Z: np.ndarray,
        components: Sequence[str] = COMPONENTS,
    ) -> np.ndarray:
        """
        Draws of the log expected count, i.e. alpha + X beta + Z gamma.

        Parameters
        ----------
        X : np.ndarray
            Regressor matrix of shape (N, K)
        Z : np.ndarray
            Spline basis of shape (N, B)
        components : Sequence[str], optional
            The subset of 'intercept', 'regressors', 'trend' to be summed up.
            By default all components are used.

        Returns
        -------
        np.ndarray
            Array of shape (S, N)
        """
        if not self.fit_params:
            raise NotFittedError()
        unknown = set(components) - set(COMPONENTS)
        if unknown:
            raise ValueError(
                f"Unknown components {sorted(unknown)}. Valid components are "
                f"{list(COMPONENTS)}."
            )
        N = X.shape[0]
        eta = np.zeros((self.n_draws, N))
        if "intercept" in components:
            eta += self.fit_params["alpha"][:, None]
        if "regressors" in components and X.shape[1] > 0:
            eta += self.fit_params["beta"] @ X.T
        if "trend" in components and Z.shape[1] > 0:
            eta += self.fit_params["gamma"] @ Z.T
        return eta

    def expected_draws(
        self: Self,
        X: np.ndarray,
        Z: np.ndarray,
        components: Sequence[str] = COMPONENTS,
    ) -> np.ndarray:
        """
        Draws of the expected count mu = exp(linear predictor), shape (S, N)
        """
        return np.exp(self.linear_predictor(X, Z, components))

    @abstractmethod
    def predictive_draws(
        self: Self, mu: np.ndarray, rng: np.random.Generator
    ) -> np.ndarray:
        """
        Draws from the observation distribution given draws of the expected
        count. Each posterior draw gets exactly one predictive draw.
        """
        pass

    @abstractmethod
    def log_likelihood(
        self: Self, y: np.ndarray, mu: np.ndarray
    ) -> np.ndarray:
        """
        Pointwise log-likelihood of observations y given draws of mu, shape
        (S, N).
        """
        pass

    @abstractmethod
    def initial_dispersion(self: Self, y: np.ndarray) -> dict[str, float]:
        """
        Initial values of the dispersion parameters of the distribution.
        """
        pass

    def predict(
        self: Self,
        X: np.ndarray,
        Z: np.ndarray,
        interval_width: float,
        seed: Optional[int] = None,
    ) -> pd.DataFrame:
        """
        Based on the posterior draws predicts expected values, observation
        intervals and trend for given feature matrices.

        Parameters
        ----------
        X : np.ndarray
            Regressor matrix of shape (N, K)
        Z : np.ndarray
            Spline basis of shape (N, B)
        interval_width : float
            Width of the equal-tailed intervals
        seed : Optional[int], optional
            Seed for the posterior predictive draws

        Returns
        -------
        pd.DataFrame
            Columns yhat, yhat_lower, yhat_upper, observed_lower,
            observed_upper, trend, trend_lower, trend_upper
        """
        lower_level = (1 - interval_width) / 2
        upper_level = 1 - lower_level
        levels = [lower_level, upper_level]

        mu = self.expected_draws(X, Z)
        y_rep = self.predictive_draws(mu, np.random.default_rng(seed))
        trend = self.expected_draws(X, Z, components=("intercept", "trend"))

        yhat_bounds = np.quantile(mu, levels, axis=0)
        observed_bounds = np.quantile(y_rep, levels, axis=0)
        trend_bounds = np.quantile(trend, levels, axis=0)

        return pd.DataFrame(
            {
                "yhat": mu.mean(axis=0),
                "yhat_lower": yhat_bounds[0],
                "yhat_upper": yhat_bounds[1],
                "observed_lower": observed_bounds[0],
                "observed_upper": observed_bounds[1],
                "trend": trend.mean(axis=0),
                "trend_lower": trend_bounds[0],
                "trend_upper": trend_bounds[1],
            }
        )

    def diagnostics(self: Self) -> dict[str, Any]:
        """
        Convergence diagnostics of the sampler.

        For NUTS these are maximum R-hat, minimum bulk and tail effective
        sample sizes over all model parameters as well as the number of
        divergent transitions. The Laplace approximation has no such
        diagnostics and only reports the number of draws.
        """
        if self.stan_fit is None:
            raise NotFittedError()
        diagnostics: dict[str, Any] = {
            "sampler": self.sampler,
            "n_draws": self.n_draws,
        }
        if self.sampler != "nuts":
            return diagnostics

        fit = cast(CmdStanMCMC, self.stan_fit)
        summary = fit.summary()
        # Only parameters, not the log density or the raw random walk steps
        params = ("alpha", "beta", "gamma", "tau", *self.extra_params)
        mask = [idx.split("[")[0] in params for idx in summary.index]
        summary = summary.loc[mask]
        diagnostics.update(
            {
                "max_rhat": float(summary["R_hat"].max()),
                "min_ess_bulk": float(summary["ESS_bulk"].min()),
                "min_ess_tail": float(summary["ESS_tail"].min()),
                "n_divergences": int(np.sum(fit.divergences)),
                "n_max_treedepth": int(np.sum(fit.max_treedepths)),
            }
        )
        if diagnostics["max_rhat"] > 1.01:
            get_logger().warning(
                f"Max R-hat is {diagnostics['max_rhat']:.3f}. Chains have "
                "likely not converged."
            )
        if diagnostics["n_divergences"] > 0:
            get_logger().warning(
                f"{diagnostics['n_divergences']} divergent transitions. "
                "Consider increasing adapt_delta."
            )
        return diagnostics


class Poisson(ModelBackendBase):
    """
    Implementation of model backend for poisson distribution
    """

    stan_file = BASEPATH / "stan_models/poisson_gam.stan"
    kind = "biu"

    def predictive_draws(
        self: Self, mu: np.ndarray, rng: np.random.Generator
    ) -> np.ndarray:
        return rng.poisson(mu)

    def log_likelihood(
        self: Self, y: np.ndarray, mu: np.ndarray
    ) -> np.ndarray:
        return poisson.logpmf(np.asarray(y)[None, :], mu)

    def initial_dispersion(self: Self, y: np.ndarray) -> dict[str, float]:
        return {}


class NegativeBinomial(ModelBackendBase):
    """
    Implementation of model backend for negative binomial distribution in the
    mean/shape parametrization, var = mu + mu^2 / phi.
    """

    stan_file = BASEPATH / "stan_models/negative_binomial_gam.stan"
    kind = "biu"
    extra_params = ("phi",)

    def stan_inits(self: Self, stan_data: ModelInputData) -> dict[str, Any]:
        inits = super().stan_inits(stan_data)
        inits.update(self.initial_dispersion(stan_data.y))
        return inits

    def predictive_draws(
        self: Self, mu: np.ndarray, rng: np.random.Generator
    ) -> np.ndarray:
        phi = self.fit_params["phi"][:, None]
        # Note that phi has the meaning of number of successes
        return rng.negative_binomial(phi, phi / (phi + mu))

    def log_likelihood(
        self: Self, y: np.ndarray, mu: np.ndarray
    ) -> np.ndarray:
        phi = self.fit_params["phi"][:, None]
        return nbinom.logpmf(np.asarray(y)[None, :], n=phi, p=phi / (phi + mu))

    def initial_dispersion(self: Self, y: np.ndarray) -> dict[str, float]:
        """
        Moment estimate of phi with respect to the mean of the data. Data that
        do not look overdispersed start at a large phi, i.e. close to Poisson.
        """
        y = np.asarray(y, dtype=float)
        if y.size < 2 or y.mean() == 0:
            return {"phi": 10.0}
        _, phi = calculate_dispersion(y, np.full_like(y, y.mean()), dof=1)
        if not np.isfinite(phi) or phi <= 0:
            phi = 1e3
        return {"phi": float(np.clip(phi, 1e-2, 1e3))}


ModelBackend: TypeAlias = Union[Poisson, NegativeBinomial]

# A map of the distribution names to the model backend classes
MODEL_MAP: dict[str, Type[ModelBackendBase]] = {
    "poisson": Poisson,
    "negative binomial": NegativeBinomial,
}


def get_model_backend(model: Distribution) -> ModelBackend:
    """
    Creates a Model Backend Instance for the desired distribution type

    Parameters
    ----------
    model : Distribution
        The string representation of the desired distribution type

    Raises
    ------
    NotImplementedError
        Raised if the requested model doesn't exist.

    Returns
    -------
    ModelBackend
        The instantiated model backend object

    """
    if model not in MODEL_MAP:
        raise NotImplementedError(f"Model {model} is not supported.")
    return cast(ModelBackend, MODEL_MAP[model](model))
