"""
Functions which check and normalize the arguments of generate_forecasts before
any work is scheduled. Every failure raises ValidationError.
"""

import os

import numpy as np
import pandas as pd

from forecastpool.backtest import BacktestSpec
from forecastpool.errors import ValidationError
from forecastpool.transform import largest_contiguous
from forecastpool.utilities import _ensure_is_list, _find_scoped_collisions


def _is_positive_int(value):
    return (
        isinstance(value, (int, np.integer))
        and not isinstance(value, (bool, np.bool_))
        and value > 0
    )


def _name_columns(df: pd.DataFrame, default_colname: str):
    """Replace missing column names with "<default_colname>_<k>" and check uniqueness"""
    if isinstance(df.columns, pd.RangeIndex):
        names = [None] * df.shape[1]
    else:
        names = list(df.columns)

    names = [
        f"{default_colname}_{position}" if name is None or str(name) == "" else str(name)
        for position, name in enumerate(names, start=1)
    ]

    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise ValidationError(f"Column names should be unique, found duplicates: {duplicates}")

    df.columns = names

    return df


def _as_frame(data, default_colname: str, argument: str):
    """Coerce a series, dataframe or array into a float dataframe with named columns"""
    if isinstance(data, pd.Series):
        df = data.to_frame(name=data.name if data.name is not None else f"{default_colname}_1")
    elif isinstance(data, pd.DataFrame):
        df = data.copy(deep=True)
    elif isinstance(data, np.ndarray):
        if data.ndim not in (1, 2):
            raise ValidationError(f"{argument} should be a 1-D or 2-D array, got {data.ndim}-D")
        df = pd.DataFrame(data.reshape(len(data), -1))
    else:
        raise ValidationError(
            f"{argument} should be a pd.Series, pd.DataFrame or np.ndarray, not "
            f"{type(data).__name__}"
        )

    if df.shape[0] == 0 or df.shape[1] == 0:
        raise ValidationError(f"{argument} is empty")

    non_numerics = [
        column
        for column, dtype in df.dtypes.items()
        if not pd.api.types.is_numeric_dtype(dtype)
    ]
    if non_numerics:
        raise ValidationError(f"{argument} has non-numeric columns: {non_numerics}")

    df = _name_columns(df, default_colname)

    if not df.index.is_unique or not df.index.is_monotonic_increasing:
        raise ValidationError(f"{argument} should have a unique, increasing index")

    return df.astype(float)


def check_data(data, default_colname: str = "time_series"):
    """Return the series to forecast as a dataframe with one named column per series"""
    if data is None:
        raise ValidationError("data is required")

    return _as_frame(data, default_colname=default_colname, argument="data")


def check_regressors(regressors, data: pd.DataFrame, default_colname: str = "feature"):
    """
    Return the regressors as a dataframe positionally aligned with data. Rows past
    the end of data are kept as future values.
    """
    if regressors is None:
        return None

    regressors = _as_frame(regressors, default_colname=default_colname, argument="regressors")

    if len(regressors) < len(data):
        raise ValidationError(
            f"regressors have {len(regressors)} rows but data has {len(data)}"
        )

    datetime_like = (pd.DatetimeIndex, pd.PeriodIndex)
    if isinstance(data.index, datetime_like) and isinstance(regressors.index, datetime_like):
        if not regressors.index[: len(data)].equals(data.index):
            raise ValidationError("regressors and data should start on the same dates")

    for series_name in data.columns:
        collisions = _find_scoped_collisions(regressors.columns, series_name)
        if collisions:
            raise ValidationError(
                f"Shared and {series_name}-specific regressors share the names {collisions}"
            )

    return regressors


def check_horizon(horizon):
    if not _is_positive_int(horizon):
        raise ValidationError(f"horizon should be a positive integer, not {horizon!r}")

    return int(horizon)


def check_model_names(model_names, default_model_names):
    """Return a de-duplicated list of model names, using the defaults when None"""
    if model_names is None:
        model_names = default_model_names

    model_names = _ensure_is_list(model_names)

    if not model_names:
        raise ValidationError("model_names should list at least one model")

    not_strings = [name for name in model_names if not isinstance(name, str)]
    if not_strings:
        raise ValidationError(f"model_names should be strings: {not_strings}")

    return list(dict.fromkeys(model_names))


def check_models_args(models_args, model_names: list):
    """Return a dict of model name -> keyword arguments for every requested model"""
    if models_args is None:
        models_args = {}

    if not isinstance(models_args, dict):
        raise ValidationError(
            f"models_args should be a dict keyed by model name, not {type(models_args).__name__}"
        )

    unrequested_models = [name for name in models_args if name not in model_names]
    if unrequested_models:
        raise ValidationError(
            f"models_args has arguments for models that weren't requested: {unrequested_models}"
        )

    output = {}
    for name in model_names:
        args = models_args.get(name) or {}
        if not isinstance(args, dict):
            raise ValidationError(f"Arguments for {name} should be a dict")
        output[name] = dict(args)

    return output


def check_backtest(backtest):
    """Return a BacktestSpec from None, a dict of options, or a BacktestSpec"""
    if backtest is None:
        return BacktestSpec()

    if isinstance(backtest, BacktestSpec):
        return backtest

    if isinstance(backtest, dict):
        return BacktestSpec.from_dict(backtest)

    raise ValidationError(
        f"backtest should be a BacktestSpec or a dict, not {type(backtest).__name__}"
    )


def check_preprocess_fct(prepro_fct):
    if prepro_fct is None:
        return largest_contiguous

    if not callable(prepro_fct):
        raise ValidationError("prepro_fct should be a function taking and returning a pd.Series")

    return prepro_fct


def check_worker_count(worker_count):
    if not _is_positive_int(worker_count):
        raise ValidationError(
            f"worker_count should be a positive integer, not {worker_count!r}"
        )

    return int(worker_count)


def check_data_dir(data_dir):
    """Create the directory results are saved to, if one was given"""
    if data_dir is None:
        return None

    try:
        os.makedirs(data_dir, exist_ok=True)
    except (OSError, TypeError) as e:
        raise ValidationError(f"Can't use {data_dir!r} as data_dir: {e}") from e

    return os.fspath(data_dir)


def check_time_id(time_id):
    if time_id is None:
        return pd.Timestamp.now()

    try:
        return pd.Timestamp(time_id)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"time_id should be a timestamp, not {time_id!r}") from e
