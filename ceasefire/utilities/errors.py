"""
Custom exceptions raised by the ceasefire model
"""


class FittedError(Exception):
    """
    Raised when an operation requires an unfitted model, e.g. a second fit.
    """

    def __init__(self, message: str = "Model is already fitted.") -> None:
        super().__init__(message)


class NotFittedError(Exception):
    """
    Raised when posterior quantities are requested from an unfitted model.
    """

    def __init__(
        self, message: str = "Model has not been fitted yet."
    ) -> None:
        super().__init__(message)
