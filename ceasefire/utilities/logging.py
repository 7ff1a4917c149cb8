"""
Logging setup shared by all ceasefire modules
"""

### --- Module Imports --- ###
# Standard Library
import functools
import logging
import traceback
from pathlib import Path
from typing import Any, Callable, Optional, Union

# Ceasefire
from ceasefire.utilities.constants import (
    _CEASEFIRE_PATH,
    _FILE_LEVEL,
    _RUN_TIMESTAMP,
    _STREAM_LEVEL,
)
from ceasefire.utilities.types import LogLevel

# CmdStan reports every chain transition on INFO level
logging.getLogger("cmdstanpy").setLevel(logging.ERROR)


### --- Class and Function Definitions --- ###
def error_with_traceback(func: Callable[[str], Any]) -> Callable[[str], Any]:
    """
    A decorator for the logger.error function, adding a traceback from the
    invocation point to the latest call.

    Parameters
    ----------
    func : Callable[str, Any]
        The logging.error function to be decorated

    Returns
    -------
    Callable[str, Any]
        The decorated error function

    """

    def wrapper(
        msg: str, *args: tuple[Any, ...], **kwargs: dict[Any, Any]
    ) -> None:
        # Third Party
        import __main__

        stack = traceback.format_stack()[:-1]

        # Interactive sessions have no main script. In that case the full
        # stack is kept.
        main_file = getattr(__main__, "__file__", None)
        start = 0
        if main_file is not None:
            main_script = str(Path(main_file)).lower()
            traceback_files = [
                frame.f_code.co_filename.lower()
                for frame, _ in traceback.walk_stack(None)
            ][::-1]
            matches = [
                idx
                for idx, file in enumerate(traceback_files)
                if file == main_script
            ]
            if matches:
                start = min(matches)

        msg = f"{msg}\n" + "".join(stack[start:])
        return func(msg, *args, **kwargs)

    return wrapper


@functools.lru_cache(maxsize=None)
def get_logger(
    log_path: Path = _CEASEFIRE_PATH / "logfiles",
    timestamp: str = _RUN_TIMESTAMP,
) -> logging.Logger:
    """
    Set up the ceasefire logger for sending log entries both to the stream
    and a log file.

    The logger has a static name except for a timestamp when the main script
    was executed. Hence, the logger will be unique for a single session across
    all ceasefire modules.

    Parameters
    ----------
    log_path : Path, optional
        The path the log file will be saved to.
        The default is _CEASEFIRE_PATH / 'logfiles'.
    timestamp : str, optional
        A timestamp to integrate into the logger name. The default is
        _RUN_TIMESTAMP, which is the time the main script was executed.

    Returns
    -------
    logging.Logger
        The configured Logger

    """

    def stream_filter(record):
        """
        Keep only logs of level WARNING or below
        """
        return record.levelno <= logging.WARNING

    logger = logging.getLogger(f"ceasefire_{timestamp}")
    logger.setLevel("DEBUG")

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(_STREAM_LEVEL)
    # Errors are raised anyway, python will show them
    stream_handler.addFilter(stream_filter)

    Path(log_path).mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(
        Path(log_path) / f"{timestamp}.log", mode="a", encoding="utf-8"
    )
    file_handler.setLevel(_FILE_LEVEL)

    formatter = logging.Formatter(
        "{asctime} - ceasefire - {levelname} - {message}",
        style="{",
        datefmt="%H:%M:%S",
    )
    stream_handler.setFormatter(formatter)
    file_handler.setFormatter(formatter)

    logger.addHandler(stream_handler)
    logger.addHandler(file_handler)

    # Note ruff doesn't like the setattr, hence the noqa. With direct
    # assignment mypy complains.
    setattr(logger, "error", error_with_traceback(logger.error))  # noqa: B010
    return logger


def log_config(
    log_path: Optional[Union[str, Path]] = None,
    stream_level: Optional[LogLevel] = None,
    file_level: Optional[LogLevel] = None,
) -> logging.Logger:
    """
    Reconfigure the package logger.

    Parameters
    ----------
    log_path : Optional[Union[str, Path]], optional
        New directory for the log file. The file handler is replaced by one
        writing to this directory. Default None keeps the current location.
    stream_level : Optional[LogLevel], optional
        New level of the stream handler.
    file_level : Optional[LogLevel], optional
        New level of the file handler.

    Returns
    -------
    logging.Logger
        The reconfigured logger
    """
    logger = get_logger()

    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler):
            if log_path is not None:
                Path(log_path).mkdir(parents=True, exist_ok=True)
                new_handler = logging.FileHandler(
                    Path(log_path) / f"{_RUN_TIMESTAMP}.log",
                    mode="a",
                    encoding="utf-8",
                )
                new_handler.setLevel(handler.level)
                new_handler.setFormatter(handler.formatter)
                logger.removeHandler(handler)
                handler.close()
                logger.addHandler(new_handler)
                handler = new_handler
            if file_level is not None:
                handler.setLevel(file_level)
        elif stream_level is not None:
            handler.setLevel(stream_level)

    return logger
