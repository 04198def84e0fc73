"""
Preprocessing functions which handle missing values in a series before it is
split into backtesting windows.

A preprocessing function takes a pd.Series and returns a pd.Series without
missing values whose last observation corresponds to the last period of the
input. Regressors are re-aligned to the end of the returned series.
"""

import numpy as np
import pandas as pd


def _find_longest_run(mask: np.ndarray):
    """Return the [start, end) positions of the longest run of True values in a mask"""
    best_start, best_end = 0, 0
    run_start = None

    for position, flag in enumerate(np.append(mask, False)):
        if flag and run_start is None:
            run_start = position
        elif not flag and run_start is not None:
            # ties go to the most recent run
            if position - run_start >= best_end - best_start:
                best_start, best_end = run_start, position
            run_start = None

    return best_start, best_end


def largest_contiguous(series: pd.Series):
    """
    Keep the largest interval of non-missing values and attribute the most recent
    dates to those values. This is the default preprocessing function.

    Parameters
    ----------
    series : pd.Series
        The series you want to preprocess.
    """
    mask = series.notna().values

    if mask.all():
        return series

    start, end = _find_longest_run(mask)

    if start == end:
        raise ValueError(f"Series {series.name} only holds missing values")

    values = series.iloc[start:end].values

    return pd.Series(values, index=series.index[len(series) - len(values) :], name=series.name)


def fill_missings(series: pd.Series, method: str = "linear"):
    """
    Interpolate missing values, carry the last observation forward, and drop any
    leading missing values that can't be filled.

    Parameters
    ----------
    series : pd.Series
        The series you want to preprocess.
    method : str, default "linear"
        The interpolation method passed to pd.Series.interpolate.
    """
    output = series.interpolate(method=method, limit_area="inside").ffill()

    first_valid = output.first_valid_index()
    if first_valid is None:
        raise ValueError(f"Series {series.name} only holds missing values")

    return output.loc[first_valid:]
