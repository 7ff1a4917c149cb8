"""
This module contains classes to manage ceasefire configurations as well as
their deserialization from TOML files
"""

### --- Module Imports --- ###
# Standard Library
import inspect
import json
from pathlib import Path
from typing import TYPE_CHECKING, Any, Collection, Optional, Type, Union

# Third Party
import pandas as pd
import tomli
from pydantic import BaseModel, Field, field_validator
from typing_extensions import Self

# Conditional import of CeasefireModel for static type checking. Otherwise it
# is forward-declared as 'CeasefireModel' to avoid circular imports
if TYPE_CHECKING:
    from ceasefire.interface import CeasefireModel

# Ceasefire
from ceasefire.protocols.protocol_base import Protocol
from ceasefire.utilities.logging import get_logger

### --- Global Constants Definitions --- ###
OPTIONAL_SECTIONS = {
    "external_regressors",
    "seasonalities",
    "categoricals",
    "events",
    "protocols",
}


### --- Class and Function Definitions --- ###
def model_from_toml(
    toml_path: Union[str, Path],
    ignore: Union[Collection[str], str] = set(),
    **kwargs: Any,
) -> "CeasefireModel":
    """
    Instantiate a CeasefireModel from a TOML configuration file and augment it
    with optional external regressors, seasonalities, categories, events, and
    protocols.

    The TOML file is expected to have the following top-level tables /
    arrays-of-tables (all are optional):

    * [model] - keyword arguments passed directly to the constructor.
    * [[external_regressors]] - one table per regressor; each is forwarded to
      CeasefireModel.add_external_regressor().
    * [[seasonalities]] - one table per seasonality; each is forwarded to
      CeasefireModel.add_seasonality().
    * [[categoricals]] - one table per calendar category; each is forwarded
      to CeasefireModel.add_categorical().
    * [[events]] - one table per event; each is forwarded to
      CeasefireModel.add_event().
    * [[protocols]] - one table per protocol. Each table **must** contain a
      ``type`` key that maps to a protocol class name; the remaining keys are
      passed to that class before calling CeasefireModel.add_protocol().
    * [fit], [predict] - stored on the model and used as baseline by
      assemble_config().

    Parameters
    ----------
    toml_path : Union[str, Path]
        Path to the TOML file containing the model specification.
    ignore : Union[Collection[str],str], optional
        Which top-level sections of the file to skip. Valid values are the
        names of the optional arrays-of-tables. The special value "all"
        suppresses every optional section.
    **kwargs : Any
        Keyword arguments that override or extend the [model] table. Only keys
        that are valid fields of CeasefireModel are retained.

    Raises
    ------
    KeyError
        If a protocol table has no ``type`` key or misses required fields
    NotImplementedError
        If the ``type`` of a protocol table is unknown

    Returns
    -------
    CeasefireModel
        A fully initialised model instance.

    Notes
    -----
    Precedence order for constructor arguments is:

    1. Values supplied via **kwargs
    2. Values found in the TOML [model] table
    3. The model's own defaults
    """
    if isinstance(ignore, str):
        ignore = {ignore}
    else:
        ignore = set(ignore)
    if "all" in ignore:
        ignore = ignore | OPTIONAL_SECTIONS

    with open(toml_path, mode="rb") as file:
        config = tomli.load(file)

    # Ceasefire
    from ceasefire.interface import CeasefireModel

    kwargs = {
        k: v for k, v in kwargs.items() if k in CeasefireModel.model_fields
    }
    if "model" not in config:
        get_logger().info("Model table missing from TOML configuration file.")

    model_config = {
        k: v
        for k, v in config.get("model", dict()).items()
        if k in CeasefireModel.model_fields
    }
    # Give precedence to individual settings in kwargs
    m = CeasefireModel(**(model_config | kwargs))

    if "external_regressors" not in ignore:
        for er in config.get("external_regressors", []):
            m.add_external_regressor(**er)

    if "seasonalities" not in ignore:
        for season in config.get("seasonalities", []):
            m.add_seasonality(**season)

    if "categoricals" not in ignore:
        for category in config.get("categoricals", []):
            m.add_categorical(**category)

    if "events" not in ignore:
        for event in config.get("events", []):
            m.add_event(**event)

    if "protocols" not in ignore:
        for protocol in config.get("protocols", []):
            m.add_protocol(Protocol.from_dict(protocol, type_key="type"))

    # Save fit and predict tables for later use
    m._config = {
        k: filter_config_parameter(k, v)
        for k, v in config.items()
        if k in ("fit", "predict")
    }
    return m


def filter_config_parameter(
    method: str, config: dict[str, Any]
) -> dict[str, Any]:
    """
    Extract the subset of configuration options that are valid for
    ``CeasefireModel.fit`` or ``CeasefireModel.predict``.

    Parameters
    ----------
    method : str
        Name of the method whose accepted parameters should be included.
    config : dict[str, Any]
        Arbitrary keyword arguments. Keys that do not appear in the target
        method's signature are silently discarded.

    Raises
    ------
    ValueError
        If *method* is not exactly ``'fit'`` or ``'predict'``.

    Returns
    -------
    dict[str, Any]
        A filtered copy of *config*

    Examples
    --------
    >>> cfg = {'chains': 2, 'sampler': 'laplace', 'the_answer': 42}
    >>> filter_config_parameter('fit', cfg)
    {'chains': 2, 'sampler': 'laplace'}
    """
    if method not in ("fit", "predict"):
        raise ValueError(
            "Parameter 'method' must be either 'fit' or 'predict'."
        )

    # Ceasefire
    from ceasefire.interface import CeasefireModel

    accepted_pars = [
        par
        for par in inspect.signature(
            getattr(CeasefireModel, method)
        ).parameters.keys()
        if par not in ("self", "data")
    ]
    return {k: v for k, v in config.items() if k in accepted_pars}


def assemble_config(
    method: str,
    model: "CeasefireModel",
    toml_path: Optional[Union[str, Path]] = None,
    **kwargs: Any,
) -> dict[str, Any]:
    """
    Build the effective configuration dictionary for ``CeasefireModel.fit``
    or ``CeasefireModel.predict``.

    The final configuration is composed in three layers, each one overriding
    the previous:

    1. **Model defaults** - the baseline stored in ``model._config[method]``.
    2. **TOML file** - if *toml_path* is given, the *method* table of the
       file is merged into the baseline.
    3. **Keyword overrides** - additional arguments supplied via *kwargs*.

    Returns
    -------
    dict[str, Any]
        The fully assembled configuration dictionary that can be passed
        directly to the desired method.
    """
    config = dict(model._config.get(method, dict()))

    if toml_path is not None:
        with open(toml_path, mode="rb") as file:
            toml_config = tomli.load(file)
        config = config | toml_config.get(method, dict())

    config = config | kwargs
    return filter_config_parameter(method, config)


class DataConfig(BaseModel):
    """
    Configuration of the incident data and their aggregation to daily counts
    """

    data_source: str
    timestamp_column: str
    filter_column: Optional[str] = None
    filter_values: list[str] = Field(default_factory=list)
    id_column: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None

    @field_validator("start", "end")
    @classmethod
    def validate_date(cls: Type[Self], date: Optional[str]) -> Optional[str]:
        if date is None:
            return date
        try:
            pd.Timestamp(date)
        except ValueError as e:
            msg = f"Could not parse date '{date}'."
            get_logger().error(msg)
            raise ValueError(msg) from e
        return date


class OutputConfig(BaseModel):
    """
    Configuration of the analysis outputs
    """

    output_dir: str = "output"
    counterfactual_names: list[str] = Field(
        default_factory=lambda: ["ceasefire"]
    )
    compare_distributions: bool = False


class RunConfig(BaseModel):
    """
    Overall configuration of an analysis run
    """

    data_config: DataConfig
    output_config: OutputConfig = Field(default_factory=OutputConfig)

    @classmethod
    def from_toml(cls: Type[Self], path: Union[str, Path]) -> Self:
        with open(path, mode="rb") as file:
            config = tomli.load(file)
        if "data" not in config:
            msg = f"Run configuration '{path}' has no [data] table."
            get_logger().error(msg)
            raise KeyError(msg)
        return cls(
            data_config=DataConfig(**config["data"]),
            output_config=OutputConfig(**config.get("output", dict())),
        )

    def to_json(self: Self, path: Union[str, Path]) -> None:
        with open(path, "w") as file:
            json.dump(self.model_dump(), file, indent=4)
