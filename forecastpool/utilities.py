import numpy as np
import pandas as pd

from forecastpool.errors import IndexOutOfRange, ValidationError

REGRESSOR_SEPARATOR = "__"


def _ensure_is_list(obj):
    """
    Return an object in a list if not already wrapped. Useful when you
    want to treat an object as a collection, even when the user passes a string
    """
    if obj is None:
        return []
    if isinstance(obj, (list, tuple)):
        return list(obj)
    return [obj]


def _is_series_specific(column):
    return REGRESSOR_SEPARATOR in str(column)


def _split_regressor_name(column):
    """Split "<series_name>__<feature_name>" into its two halves"""
    series_name, feature_name = str(column).split(REGRESSOR_SEPARATOR, 1)
    return series_name, feature_name


def _get_scoped_names(columns, series_name: str):
    """Map every regressor column visible to series_name to its scoped name"""
    renames = {}
    for column in columns:
        if not _is_series_specific(column):
            renames[column] = column
            continue

        prefix, feature_name = _split_regressor_name(column)
        if prefix == series_name:
            renames[column] = feature_name

    return renames


def _find_scoped_collisions(columns, series_name: str):
    """Return the scoped names shared by more than one regressor column"""
    scoped_names = list(_get_scoped_names(columns, series_name).values())
    return sorted({name for name in scoped_names if scoped_names.count(name) > 1})


def scope_regressors(regressors: pd.DataFrame, series_name: str):
    """
    Return the regressors visible to a single series.

    Shared columns (no "__" in their name) are visible to every series, while
    series-specific columns ("<series_name>__<feature_name>") are only visible
    to the matching series and lose their prefix.

    Parameters
    ----------
    regressors : pd.DataFrame or None
        Every regressor column passed by the user.
    series_name : str
        The name of the series you want regressors for.

    Returns
    -------
    pd.DataFrame, or None when no regressor applies to the series
    """
    if regressors is None:
        return None

    renames = _get_scoped_names(regressors.columns, series_name)

    if not renames:
        return None

    collisions = _find_scoped_collisions(regressors.columns, series_name)
    if collisions:
        raise ValidationError(
            f"Regressor names collide once scoped to {series_name}: {collisions}"
        )

    return regressors[list(renames)].rename(columns=renames).copy(deep=True)


def split_series(data: pd.DataFrame, regressors: pd.DataFrame, index: int):
    """
    Extract one univariate series and its regressors for isolated processing.

    Parameters
    ----------
    data : pd.DataFrame
        The validated multi-series container.
    regressors : pd.DataFrame or None
        The validated regressors container.
    index : int
        The 1-based ordinal of the series to extract.

    Returns
    -------
    (series_name, series, scoped_regressors)
    """
    n_series = data.shape[1]

    if isinstance(index, bool) or not isinstance(index, (int, np.integer)):
        raise IndexOutOfRange(f"Series ordinal should be an integer, not {index!r}")

    if not 1 <= index <= n_series:
        raise IndexOutOfRange(
            f"Series ordinal {index} is outside of 1..{n_series}"
        )

    series = data.iloc[:, index - 1].copy(deep=True)
    series_name = str(series.name)

    return series_name, series, scope_regressors(regressors, series_name)


def summarize_regressors(regressors: pd.DataFrame):
    """Return the number of total, shared and series-specific regressors"""
    specific_flags = [_is_series_specific(column) for column in regressors.columns]

    return {
        "total": len(specific_flags),
        "shared": specific_flags.count(False),
        "series_specific": specific_flags.count(True),
    }


def print_regressor_summary(regressors: pd.DataFrame):
    """Print the regressor counts once per call to generate_forecasts"""
    counts = summarize_regressors(regressors)

    print(
        "Info about specified regressors:\n"
        f"  Number of total features: {counts['total']}\n"
        f"  Number of shared features (colnames w/o '__'): {counts['shared']}\n"
        "  Number of ts specific features (ts_name + '__' + feature_name): "
        f"{counts['series_specific']}"
    )


def _get_freqstr(index):
    """Return the frequency string of a datetime-like index, or None"""
    if isinstance(index, pd.PeriodIndex):
        return index.freqstr

    if isinstance(index, pd.DatetimeIndex):
        if index.freq is not None:
            return index.freqstr
        if len(index) >= 3:
            return pd.infer_freq(index)

    return None


def _infer_seasonal_period(index):
    """
    Guess the number of periods in a season from an index's frequency. Returns 1
    (no seasonality) when the frequency is unknown.
    """
    freqstr = _get_freqstr(index)

    if not freqstr:
        return 1

    base = freqstr.lstrip("-0123456789").upper()

    # business-anchored offsets like "BMS" or "BQ" behave like their calendar twin
    if base.startswith("B") and len(base) > 1:
        base = base[1:]

    if base.startswith("MIN") or base.startswith("T"):
        return 60

    period_lookup = {"Q": 4, "M": 12, "W": 52, "D": 7, "B": 5, "H": 24}

    return period_lookup.get(base[:1], 1)


def _make_future_index(index, periods: int):
    """
    Return the labels of the [periods] periods following the end of an index.
    Falls back to integer positions when the frequency can't be determined.
    """
    if periods <= 0:
        return index[:0]

    if isinstance(index, pd.PeriodIndex):
        return pd.period_range(start=index[-1] + 1, periods=periods, freq=index.freq)

    if isinstance(index, pd.DatetimeIndex):
        freqstr = _get_freqstr(index)
        if freqstr:
            last_date = index[-1]
            dates = pd.date_range(
                start=last_date,
                periods=periods + 1,  # An extra in case we include start
                freq=freqstr,
            )
            dates = dates[dates > last_date]

            return dates[:periods]

    if pd.api.types.is_integer_dtype(index) and len(index) >= 1:
        step = index[-1] - index[-2] if len(index) >= 2 else 1
        start = index[-1] + step
        return pd.RangeIndex(start=start, stop=start + step * periods, step=step)

    return pd.RangeIndex(start=len(index), stop=len(index) + periods)


def _get_window_index(index, start: int, end: int):
    """Return the labels between positions [start, end), extrapolating past the end"""
    observed = index[start:end]
    missing = end - max(start, len(index))

    if missing <= 0:
        return observed

    future = _make_future_index(index, end - len(index))[-missing:]

    if len(observed) == 0:
        return future

    return observed.append(future)
