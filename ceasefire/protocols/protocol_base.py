"""
Definition of the Protocol base class. Protocols bundle regressors that are
added to the model together once the training timestamps are known.
"""

### --- Module Imports --- ###
# Standard Library
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Type

# Third Party
import pandas as pd
from pydantic import BaseModel, ConfigDict
from typing_extensions import Self

# Ceasefire
from ceasefire.utilities.logging import get_logger

if TYPE_CHECKING:
    from ceasefire.interface import CeasefireModel


### --- Class and Function Definitions --- ###
class Protocol(BaseModel, ABC):
    """
    Protocols can be added to the ceasefire model in order to configure it
    based on the type of data that are to be modeled.
    """

    model_config = ConfigDict(
        # Protocols use pd.Timestamp, pd.Timedelta and Event fields
        arbitrary_types_allowed=True,
    )

    @property
    def _protocol_type(self: Self) -> str:
        """
        Returns name of the protocol class.
        """
        return type(self).__name__

    @abstractmethod
    def set_events(
        self: Self, model: "CeasefireModel", timestamps: pd.Series
    ) -> "CeasefireModel":
        """
        Add event regressors to the model
        """
        pass

    @abstractmethod
    def set_seasonalities(
        self: Self, model: "CeasefireModel", timestamps: pd.Series
    ) -> "CeasefireModel":
        """
        Add seasonal and calendar regressors to the model
        """
        pass

    def to_dict(self: Self) -> dict[str, Any]:
        """
        Converts the protocol to a serializable dictionary. Child classes add
        their own fields.
        """
        return {"protocol_type": self._protocol_type}

    @classmethod
    def check_for_missing_keys(
        cls: Type[Self], protocol_dict: dict[str, Any]
    ) -> None:
        """
        Confirms that all required fields for the requested protocol type are
        found in the protocol dictionary.

        Raises
        ------
        KeyError
            Raised if any keys are missing
        """
        required_fields = {
            name
            for name, info in cls.model_fields.items()
            if info.is_required()
        }
        missing_keys = required_fields - set(protocol_dict.keys())
        if missing_keys:
            missing_keys_str = ", ".join(
                [f"'{key}'" for key in sorted(missing_keys)]
            )
            raise KeyError(
                f"Key(s) {missing_keys_str} required for protocols of type "
                f"{cls.__name__} but not found in protocol dictionary."
            )


def get_protocol_map() -> dict[str, Type[Protocol]]:
    """
    Returns a dictionary mapping protocol names as strings to actual classes.
    Creating of this map is encapsulated as function to avoid circular
    imports.

    Returns
    -------
    dict[str, Type[Protocol]]
        A map 'protocol name' -> 'protocol class'
    """
    # Ceasefire
    from ceasefire.protocols.calendric import CalendricData
    from ceasefire.protocols.intervention import CeasefireWeekends

    return {
        "CalendricData": CalendricData,
        "CeasefireWeekends": CeasefireWeekends,
    }


def protocol_from_dict(
    cls: Type[Protocol],
    protocol_dict: dict[str, Any],
    type_key: str = "protocol_type",
) -> Protocol:
    """
    Identifies the appropriate protocol type and builds it from the remaining
    fields of the dictionary.

    Parameters
    ----------
    protocol_dict : dict[str, Any]
        Dictionary containing all protocol fields including the protocol type
    type_key : str, optional
        Key holding the protocol type. The default is 'protocol_type' as
        written by Protocol.to_dict(). TOML configurations use 'type'.

    Raises
    ------
    KeyError
        If the type key or required protocol fields are missing
    NotImplementedError
        If the protocol type does not correspond to any protocol class

    Returns
    -------
    Protocol
        The protocol constructed from the dictionary fields
    """
    protocol_dict = dict(protocol_dict)
    if type_key not in protocol_dict:
        msg = f"The protocol dictionary must have the key '{type_key}'."
        get_logger().error(msg)
        raise KeyError(msg)
    protocol_type = protocol_dict.pop(type_key)
    try:
        protocol_class = get_protocol_map()[protocol_type]
    except KeyError as e:
        msg = f"Protocol type '{protocol_type}' does not exist."
        get_logger().error(msg)
        raise NotImplementedError(msg) from e
    protocol_class.check_for_missing_keys(protocol_dict)
    return protocol_class(**protocol_dict)


# Protocol.from_dict(protocol_dict) works for any protocol dictionary
Protocol.from_dict = classmethod(protocol_from_dict)  # type: ignore
