"""
Functions to turn raw incident records into the daily count series the
CeasefireModel is fit on.
"""

### --- Module Imports --- ###
# Standard Library
from pathlib import Path
from typing import Any, Collection, Optional, Union

# Third Party
import pandas as pd

# Ceasefire
from ceasefire.utilities.logging import get_logger


### --- Class and Function Definitions --- ###
def load_incidents(
    path: Union[str, Path], timestamp_column: str, **read_kwargs: Any
) -> pd.DataFrame:
    """
    Reads an incident table from csv and parses its timestamp column.

    Rows whose timestamp cannot be parsed are dropped. Timezone-aware
    timestamps are converted to naive timestamps keeping the local wall-clock
    time, so that each incident is attributed to the calendar day it occurred
    on locally.

    Parameters
    ----------
    path : Union[str, Path]
        Path to the csv-file
    timestamp_column : str
        Name of the column holding the incident timestamps
    **read_kwargs : Any
        Further keyword arguments handed to pd.read_csv()

    Raises
    ------
    KeyError
        If the timestamp column does not exist

    Returns
    -------
    pd.DataFrame
        The incident table with a datetime64 timestamp column
    """
    incidents = pd.read_csv(path, **read_kwargs)
    get_logger().debug(f"Read {len(incidents)} incidents from '{path}'.")
    return parse_timestamps(incidents, timestamp_column)


def parse_timestamps(
    incidents: pd.DataFrame, timestamp_column: str
) -> pd.DataFrame:
    if timestamp_column not in incidents:
        msg = f"Timestamp column '{timestamp_column}' is missing from data."
        get_logger().error(msg)
        raise KeyError(msg)

    incidents = incidents.copy()
    raw = incidents[timestamp_column]
    if isinstance(raw.dtype, pd.DatetimeTZDtype):
        timestamps = raw.dt.tz_localize(None)
    elif pd.api.types.is_datetime64_any_dtype(raw):
        timestamps = raw
    else:
        # Parse each entry on its own so that mixed offsets keep their local
        # wall-clock time
        timestamps = pd.Series(
            [_to_naive_timestamp(x) for x in raw],
            index=raw.index,
            dtype="datetime64[ns]",
        )

    n_bad = int(timestamps.isnull().sum())
    if n_bad > 0:
        get_logger().info(
            f"Dropping {n_bad} incidents with unparseable timestamps."
        )
    incidents[timestamp_column] = timestamps
    return incidents.loc[timestamps.notnull()].reset_index(drop=True)


def _to_naive_timestamp(value: Any) -> pd.Timestamp:
    try:
        ts = pd.Timestamp(value)
    except (ValueError, TypeError):
        return pd.NaT
    if ts is pd.NaT:
        return ts
    return ts.tz_localize(None) if ts.tzinfo is not None else ts


def filter_incidents(
    incidents: pd.DataFrame, column: str, values: Union[Collection[str], str]
) -> pd.DataFrame:
    """
    Keeps the incidents whose column value matches any of the given values.

    Matching is case-insensitive and ignores leading and trailing whitespace,
    e.g. 'Shooting ' matches 'SHOOTING'.

    Parameters
    ----------
    incidents : pd.DataFrame
        The incident table
    column : str
        Column to filter on, e.g. a crime description
    values : Union[Collection[str], str]
        Accepted value(s)

    Raises
    ------
    KeyError
        If the column does not exist
    ValueError
        If no incident is left after filtering

    Returns
    -------
    pd.DataFrame
        The filtered incident table
    """
    if column not in incidents:
        msg = f"Filter column '{column}' is missing from data."
        get_logger().error(msg)
        raise KeyError(msg)
    if isinstance(values, str):
        values = [values]

    accepted = {str(v).strip().lower() for v in values}
    normalized = incidents[column].astype("string").str.strip().str.lower()
    filtered = incidents.loc[normalized.isin(accepted).fillna(False)]

    if filtered.empty:
        msg = (
            f"No incidents left after filtering '{column}' for "
            f"{sorted(accepted)}."
        )
        get_logger().error(msg)
        raise ValueError(msg)

    get_logger().info(
        f"Kept {len(filtered)} of {len(incidents)} incidents with '{column}'"
        f" in {sorted(accepted)}."
    )
    return filtered.reset_index(drop=True)


def aggregate_daily_counts(
    incidents: pd.DataFrame,
    timestamp_column: str,
    timestamp_name: str = "ds",
    metric_name: str = "y",
    start: Optional[Any] = None,
    end: Optional[Any] = None,
    id_column: Optional[str] = None,
) -> pd.DataFrame:
    """
    Counts incidents per calendar day on a complete daily grid.

    Parameters
    ----------
    incidents : pd.DataFrame
        Incident table with a datetime timestamp column, see load_incidents()
    timestamp_column : str
        Name of the incident timestamp column
    timestamp_name : str, optional
        Name of the timestamp column of the output. The default is 'ds'.
    metric_name : str, optional
        Name of the count column of the output. The default is 'y'.
    start : Optional[Any], optional
        First day of the grid. Defaults to the day of the first incident.
    end : Optional[Any], optional
        Last day of the grid. Defaults to the day of the last incident.
    id_column : Optional[str], optional
        If given, incidents sharing the same id are only counted once, e.g.
        multiple victims of the same shooting. The default is None.

    Raises
    ------
    KeyError
        If timestamp or id column are missing
    ValueError
        If start lies after end or there are no incidents to infer the grid
        bounds from

    Returns
    -------
    pd.DataFrame
        Data frame with a midnight-normalized, sorted timestamp column and an
        int64 count column
    """
    for col in (timestamp_column, id_column):
        if col is not None and col not in incidents:
            msg = f"Column '{col}' is missing from data."
            get_logger().error(msg)
            raise KeyError(msg)

    if id_column is not None:
        # Rows without id are distinct incidents and never de-duplicated
        missing_id = incidents[id_column].isna()
        if missing_id.any():
            get_logger().info(
                f"{int(missing_id.sum())} incidents have no '{id_column}' "
                "and are counted individually."
            )
        n_before = len(incidents)
        incidents = incidents.loc[
            missing_id | ~incidents.duplicated(subset=id_column)
        ]
        get_logger().debug(
            f"Removed {n_before - len(incidents)} duplicate incident ids."
        )

    days = pd.to_datetime(incidents[timestamp_column]).dt.normalize()
    days = days.dropna()

    if (start is None or end is None) and days.empty:
        msg = "Cannot infer the date range from an empty incident table."
        get_logger().error(msg)
        raise ValueError(msg)

    start = days.min() if start is None else pd.Timestamp(start).normalize()
    end = days.max() if end is None else pd.Timestamp(end).normalize()
    if start > end:
        msg = f"Start date {start.date()} lies after end date {end.date()}."
        get_logger().error(msg)
        raise ValueError(msg)

    in_range = days.between(start, end)
    n_outside = int((~in_range).sum())
    if n_outside > 0:
        get_logger().info(
            f"Dropping {n_outside} incidents outside of "
            f"{start.date()} - {end.date()}."
        )

    grid = pd.date_range(start, end, freq="D", name=timestamp_name)
    counts = (
        days[in_range]
        .value_counts()
        .reindex(grid, fill_value=0)
        .astype("int64")
    )

    return pd.DataFrame(
        {timestamp_name: grid, metric_name: counts.to_numpy()}
    )


def restrict_period(
    df: pd.DataFrame,
    start: Optional[Any] = None,
    end: Optional[Any] = None,
    timestamp_name: str = "ds",
) -> pd.DataFrame:
    """
    Restricts a data frame to the inclusive window [start, end]. Missing
    bounds leave the respective side open.
    """
    start = None if start is None else pd.Timestamp(start)
    end = None if end is None else pd.Timestamp(end)
    if start is not None and end is not None and start > end:
        msg = f"Start date {start.date()} lies after end date {end.date()}."
        get_logger().error(msg)
        raise ValueError(msg)

    mask = pd.Series(True, index=df.index)
    if start is not None:
        mask &= df[timestamp_name] >= start
    if end is not None:
        mask &= df[timestamp_name] <= end
    return df.loc[mask].reset_index(drop=True)
