import multiprocessing
import os

import numpy as np
import pandas as pd
import pytest

from forecastpool.model import _format_forecast, register_model


@pytest.mark.skip(reason="shortcut for default pandas behavior")
def get_test_series(n_series=1, length=144, freq="MS", start="2000-01-01"):
    """
    Return a made-up dataframe of linear, monthly series that can be used for
    testing purposes. Series k equals k * [1, 2, ..., length].
    """
    index = pd.date_range(start=start, periods=length, freq=freq)
    base = np.arange(1, length + 1, dtype=float)

    return pd.DataFrame(
        {f"series_{k}": k * base for k in range(1, n_series + 1)}, index=index
    )


@pytest.mark.skip(reason="shortcut for default pandas behavior")
def get_test_regressors(series_names, length=144, future_periods=0, shared=("price",)):
    """
    Return made-up regressors with one column per shared feature and one
    "<series_name>__promo" column per series.
    """
    rows = length + future_periods
    rng = np.random.default_rng(7)

    columns = {feature: rng.normal(size=rows) for feature in shared}
    for series_name in series_names:
        columns[f"{series_name}__promo"] = rng.integers(0, 2, size=rows).astype(float)

    return pd.DataFrame(columns)


@register_model("test_mean")
def _fc_test_mean(y_train, test_index, X_train=None, X_test=None, seasonal_periods=1, n_threads=1):
    """Forecast the training mean, used to test scheduling without heavy models"""
    return _format_forecast(test_index, np.full(len(test_index), float(np.mean(y_train))))


@register_model("test_last")
def _fc_test_last(y_train, test_index, X_train=None, X_test=None, seasonal_periods=1, n_threads=1):
    """Forecast the last training value, and record where the training data started"""
    output = _format_forecast(test_index, np.full(len(test_index), float(y_train.iloc[-1])))
    output["train_start"] = y_train.index[0]
    output["train_size"] = len(y_train)

    return output


@register_model("test_regressors", uses_regressors=True)
def _fc_test_regressors(
    y_train, test_index, X_train=None, X_test=None, seasonal_periods=1, n_threads=1
):
    """Forecast the sum of the test regressors, recording the columns it was given"""
    if X_test is None:
        return _format_forecast(test_index, np.zeros(len(test_index)))

    output = _format_forecast(test_index, X_test.sum(axis=1).values)
    output["regressors"] = ",".join(sorted(X_test.columns))

    return output


@register_model("test_failing")
def _fc_test_failing(
    y_train, test_index, X_train=None, X_test=None, seasonal_periods=1, n_threads=1
):
    """Always fails, used to test failure isolation"""
    raise RuntimeError("test_failing always fails")


@register_model("test_crashing")
def _fc_test_crashing(
    y_train,
    test_index,
    X_train=None,
    X_test=None,
    seasonal_periods=1,
    n_threads=1,
    crash_on=None,
):
    """
    Kills the worker process it runs in, used to test pool recovery. With crash_on,
    only the series of that name is fatal and the others get the training mean.
    """
    if crash_on is not None and y_train.name != crash_on:
        return _format_forecast(test_index, np.full(len(test_index), float(np.mean(y_train))))

    if multiprocessing.parent_process() is None:
        raise RuntimeError("test_crashing only kills worker processes")

    os._exit(1)


@register_model("test_self_parallel", self_parallelizing=True)
def _fc_test_self_parallel(
    y_train, test_index, X_train=None, X_test=None, seasonal_periods=1, n_threads=1
):
    """A self-parallelizing model recording the threads it was handed"""
    output = _format_forecast(test_index, np.full(len(test_index), float(np.mean(y_train))))
    output["n_threads"] = n_threads

    return output


def _get_difference_threshold():
    """
    Return desired threshold, measured as np.sum(np.abs((returned - answered)))
    in most cases.
    """
    return 1e-6
