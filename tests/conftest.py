### --- Module Imports --- ###
# Standard Library
from types import SimpleNamespace
from typing import Optional

# Third Party
import numpy as np
import pandas as pd
import pytest

# Ceasefire
from ceasefire.interface import CeasefireModel
from ceasefire.posterior import feature_table

### --- Global Constants Definitions --- ###
CEASEFIRE_DATES = [
    "2017-08-04",
    "2017-11-03",
    "2018-02-02",
    "2018-05-11",
    "2018-08-03",
    "2018-11-02",
    "2019-02-01",
    "2019-05-10",
    "2019-08-02",
]


### --- Class and Function Definitions --- ###
def make_daily_counts(
    start: str = "2017-01-01",
    end: str = "2019-12-31",
    base_rate: float = 1.0,
    seed: int = 0,
) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    ds = pd.date_range(start, end, freq="D")
    # Higher counts in summer and on weekends
    doy = ds.dayofyear.to_numpy()
    weekend = (ds.dayofweek >= 5).astype(float)
    rate = base_rate * np.exp(
        0.3 * np.sin(2 * np.pi * (doy - 100) / 365.25) + 0.3 * weekend
    )
    return pd.DataFrame({"ds": ds, "y": rng.poisson(rate).astype("int64")})


def inject_draws(
    m: CeasefireModel,
    df: pd.DataFrame,
    n_draws: int = 200,
    alpha: Optional[float] = None,
    betas: Optional[dict[str, float]] = None,
    phi: float = 20.0,
    seed: int = 1,
) -> CeasefireModel:
    """
    Preprocesses the data and sets constant posterior draws instead of
    sampling. Regressor coefficients are zero unless given by name in betas.
    """
    input_data = m.preprocess(df)
    backend = m.model_backend
    backend.stan_data = input_data
    rng = np.random.default_rng(seed)

    if alpha is None:
        alpha = input_data.alpha_loc
    features = feature_table(m)
    beta = np.zeros((n_draws, input_data.K))
    for name, value in (betas or dict()).items():
        columns = features.index[features["name"] == name].to_numpy()
        beta[:, columns] = value

    fit_params = {
        "alpha": np.full(n_draws, alpha),
        "beta": beta,
        "gamma": np.zeros((n_draws, input_data.B)),
        "tau": np.abs(rng.normal(0, 0.1, n_draws)),
    }
    if m.model == "negative binomial":
        fit_params["phi"] = np.full(n_draws, phi)
    backend.fit_params = fit_params
    backend.sampler = "laplace"
    backend.stan_fit = SimpleNamespace()
    return m


@pytest.fixture
def daily_counts() -> pd.DataFrame:
    return make_daily_counts()


@pytest.fixture
def short_counts() -> pd.DataFrame:
    return make_daily_counts(start="2019-01-01", end="2019-03-31")


@pytest.fixture
def ceasefire_dates() -> list[str]:
    return list(CEASEFIRE_DATES)


@pytest.fixture
def incidents() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "CCNumber": ["a1", "a2", "a2", "b1", "c1", "d1"],
            "CrimeDateTime": pd.to_datetime(
                [
                    "2019-01-01 01:30",
                    "2019-01-01 23:10",
                    "2019-01-01 23:10",
                    "2019-01-03 12:00",
                    "2019-01-03 18:45",
                    "2019-01-05 00:05",
                ]
            ),
            "Description": [
                "SHOOTING",
                "shooting ",
                "shooting ",
                "HOMICIDE",
                "Shooting",
                "ROBBERY",
            ],
        }
    )
