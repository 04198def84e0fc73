import warnings
from collections import namedtuple

import numpy as np
import pandas as pd

from forecastpool.backtest import plan_windows
from forecastpool.errors import ForecastPoolError, ModelFailure, ValidationError
from forecastpool.results import ForecastBundle
from forecastpool.transform import largest_contiguous
from forecastpool.utilities import (
    _ensure_is_list,
    _get_window_index,
    _infer_seasonal_period,
)

ModelSpec = namedtuple(
    "ModelSpec",
    ["name", "function", "self_parallelizing", "uses_regressors", "description"],
)
ModelSpec.__doc__ = """
A registered forecasting model.

Models flagged as self_parallelizing manage their own multi-core execution and
always run in the coordinating process, after the worker pool is torn down.
"""

MODEL_REGISTRY = {}

# every built-in model except prophet, which ships as an optional extra
DEFAULT_MODEL_NAMES = ("arima", "ets", "snaive", "nnetar", "stl", "automl_lgbm")


def register_model(
    name: str,
    self_parallelizing: bool = False,
    uses_regressors: bool = False,
    description: str = None,
):
    """
    Decorator to register a forecasting function in MODEL_REGISTRY.

    A forecasting function is called once per backtest window as
    func(y_train, test_index, X_train=None, X_test=None, seasonal_periods=1,
    n_threads=1, **model_args) and returns a dataframe with len(test_index) rows,
    a "forecast" column, and optional "lower" and "upper" columns. It must be
    defined at module level so it can be sent to worker processes.
    """

    def decorator(func):
        if description is None:
            doc = (func.__doc__ or "").strip()
            summary = doc.splitlines()[0] if doc else name
        else:
            summary = description

        MODEL_REGISTRY[name] = ModelSpec(
            name=name,
            function=func,
            self_parallelizing=self_parallelizing,
            uses_regressors=uses_regressors,
            description=summary,
        )
        return func

    return decorator


def resolve_models(model_names):
    """Map a list of model names to their ModelSpec"""
    model_names = _ensure_is_list(model_names)

    unknown_models = [name for name in model_names if name not in MODEL_REGISTRY]
    if unknown_models:
        raise ValidationError(
            f"Unrecognized model names: {unknown_models}. Should be one of "
            f"{list(MODEL_REGISTRY)}"
        )

    return [MODEL_REGISTRY[name] for name in model_names]


def partition_models(model_specs):
    """
    Split model specs into those that can run inside the worker pool and those
    that manage their own parallelism. Preserves the requested order.
    """
    parallel_safe = [spec for spec in model_specs if not spec.self_parallelizing]
    exclusions = [spec for spec in model_specs if spec.self_parallelizing]

    return parallel_safe, exclusions


def get_lgb_params(indicator="light"):
    """
    Return a premade parameter dictionary for automl_lgbm's hyperparameter search.

    Parameters
    ----------
    indicator : str, default "light"
        Used to specify which set of parameters to use.
    """

    param_dict = {
        "full": {
            "max_depth": [3, 5, 10, 20],
            "n_estimators": [50, 100, 150, 200, 300],
            "min_split_gain": [0, 1e-4, 1e-3, 1e-2, 0.1],
            "min_child_samples": [2, 4, 7, 10, 14, 20, 30],
            "min_child_weight": [0, 0.1, 1e-4, 5e-3, 2e-2],
            "num_leaves": [5, 10, 20, 30, 50],
            "learning_rate": [0.001, 0.04, 0.05, 0.07, 0.1],
            "colsample_bytree": [0.5, 0.7, 0.8, 0.9, 1],
            "reg_lambda": [0, 1e-3, 1e-2, 0.1, 1, 10],
            "reg_alpha": [0, 1e-3, 1e-2, 0.1, 1, 10],
            "subsample": [0.9, 1],
            "subsample_freq": [1],
        },
        "light": {
            "min_child_samples": [2, 5, 10],
            "min_child_weight": [0, 0.1, 1e-4, 5e-3, 2e-2],
            "num_leaves": [10, 20, 30, 50],
            "learning_rate": [0.04, 0.05, 0.07, 0.1],
            "colsample_bytree": [0.5, 0.7, 0.8, 0.9, 1],
            "max_depth": [10, 20],
        },
    }

    assert indicator in param_dict, f"indicator should be one of {list(param_dict)}"

    return param_dict[indicator]


def _get_regression_lgbm(
    objective: str = "regression",
    importance_type: str = "gain",
    verbosity: int = -1,
    n_jobs: int = 1,
    **kwargs,
):
    """Returns the normal L2 regression LGBM estimator for modeling"""
    import lightgbm as lgb

    estimator = lgb.LGBMRegressor(
        objective=objective,
        importance_type=importance_type,
        verbosity=verbosity,
        n_jobs=n_jobs,
        random_state=7,
        **kwargs,
    )

    return estimator


def _format_forecast(test_index, forecast, lower=None, upper=None):
    """Helper to build the standard output frame of a forecasting function"""
    output = pd.DataFrame({"forecast": np.asarray(forecast, dtype=float)}, index=test_index)

    if lower is not None and upper is not None:
        output["lower"] = np.asarray(lower, dtype=float)
        output["upper"] = np.asarray(upper, dtype=float)

    return output


def _add_simple_confidence_intervals(output, residuals, interval_width=0.95):
    """
    Add lightweight confidence intervals to a forecast frame using the standard
    deviation of in-sample residuals. For more accurate results, you should use a
    model with built-in confidence interval capabilities (arima, stl or prophet).
    """
    import scipy.stats as st

    multiplier = st.norm.ppf(0.5 + interval_width / 2)

    residuals = np.asarray(residuals, dtype=float)
    residuals = residuals[np.isfinite(residuals)]
    stdev = residuals.std(ddof=1) if len(residuals) > 1 else 0.0

    output["lower"] = output["forecast"] - stdev * multiplier
    output["upper"] = output["forecast"] + stdev * multiplier

    return output


def _make_lag_matrix(y: np.ndarray, lags: int):
    """Return the matrix of [lags] previous values for every predictable observation"""
    X = np.column_stack([y[lags - lag : len(y) - lag] for lag in range(1, lags + 1)])
    return X, y[lags:]


def _recursive_forecast(estimator, history: np.ndarray, lags: int, horizon: int):
    """Forecast [horizon] periods by feeding each prediction back in as a lag"""
    history = list(history[-lags:])
    forecast = []

    for _ in range(horizon):
        features = np.array(history[::-1][:lags]).reshape(1, -1)
        prediction = float(estimator.predict(features)[0])
        forecast.append(prediction)
        history.append(prediction)

    return np.array(forecast)


def _get_default_lags(n_obs: int, seasonal_periods: int):
    """One season of lags (at least 3), capped so that half the data stays trainable"""
    return max(1, min(max(seasonal_periods, 3), n_obs // 2))


@register_model("arima", uses_regressors=True)
def _fc_arima(
    y_train,
    test_index,
    X_train=None,
    X_test=None,
    seasonal_periods=1,
    n_threads=1,
    order=(1, 1, 1),
    seasonal_order=None,
    interval_width=0.95,
    **kwargs,
):
    """ARIMA(X) model from statsmodels, using regressors as exogenous variables"""
    from statsmodels.tsa.arima.model import ARIMA

    if seasonal_order is None:
        seasonal_order = (0, 0, 0, 0)

    exog = None if X_train is None else np.asarray(X_train, dtype=float)
    future_exog = None if X_test is None else np.asarray(X_test, dtype=float)

    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        model = ARIMA(
            np.asarray(y_train, dtype=float),
            exog=exog,
            order=order,
            seasonal_order=seasonal_order,
            **kwargs,
        )
        fitted = model.fit()
        prediction = fitted.get_forecast(steps=len(test_index), exog=future_exog)

    conf_int = np.asarray(prediction.conf_int(alpha=1 - interval_width))

    return _format_forecast(
        test_index, prediction.predicted_mean, conf_int[:, 0], conf_int[:, 1]
    )


@register_model("ets")
def _fc_ets(
    y_train,
    test_index,
    X_train=None,
    X_test=None,
    seasonal_periods=1,
    n_threads=1,
    trend="add",
    damped_trend=False,
    seasonal="add",
    interval_width=0.95,
    **kwargs,
):
    """Holt-Winters exponential smoothing from statsmodels"""
    from statsmodels.tsa.holtwinters import ExponentialSmoothing

    y = np.asarray(y_train, dtype=float)

    # seasonal components need two full cycles to initialize
    if seasonal_periods < 2 or len(y) < 2 * seasonal_periods:
        seasonal = None

    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        model = ExponentialSmoothing(
            y,
            trend=trend,
            damped_trend=damped_trend if trend else False,
            seasonal=seasonal,
            seasonal_periods=seasonal_periods if seasonal else None,
            initialization_method="estimated",
            **kwargs,
        )
        fitted = model.fit()
        forecast = fitted.forecast(len(test_index))

    output = _format_forecast(test_index, forecast)

    return _add_simple_confidence_intervals(
        output, residuals=y - fitted.fittedvalues, interval_width=interval_width
    )


@register_model("stl")
def _fc_stl(
    y_train,
    test_index,
    X_train=None,
    X_test=None,
    seasonal_periods=1,
    n_threads=1,
    period=None,
    robust=True,
    order=(1, 1, 0),
    interval_width=0.95,
    **kwargs,
):
    """STL decomposition from statsmodels, forecasting the deseasonalized series with ARIMA"""
    from statsmodels.tsa.arima.model import ARIMA
    from statsmodels.tsa.forecasting.stl import STLForecast

    period = period or seasonal_periods
    if period < 2:
        raise ValueError(
            "stl needs a seasonal period of at least 2; pass `period` in its model arguments"
        )

    y = np.asarray(y_train, dtype=float)

    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        model = STLForecast(
            y,
            ARIMA,
            model_kwargs={"order": order, "trend": "t"},
            period=period,
            robust=robust,
            **kwargs,
        )
        fitted = model.fit()
        prediction = fitted.get_prediction(start=len(y), end=len(y) + len(test_index) - 1)

    frame = prediction.summary_frame(alpha=1 - interval_width)

    return _format_forecast(
        test_index, frame["mean"], frame["mean_ci_lower"], frame["mean_ci_upper"]
    )


@register_model("snaive")
def _fc_snaive(
    y_train,
    test_index,
    X_train=None,
    X_test=None,
    seasonal_periods=1,
    n_threads=1,
    interval_width=0.95,
):
    """Seasonal naive model, repeating the last observed season"""
    y = np.asarray(y_train, dtype=float)
    horizon = len(test_index)

    period = seasonal_periods if len(y) >= seasonal_periods else 1
    repeats = int(np.ceil(horizon / period))

    forecast = np.tile(y[-period:], repeats)[:horizon]

    output = _format_forecast(test_index, forecast)

    return _add_simple_confidence_intervals(
        output, residuals=y[period:] - y[:-period], interval_width=interval_width
    )


@register_model("nnetar")
def _fc_nnetar(
    y_train,
    test_index,
    X_train=None,
    X_test=None,
    seasonal_periods=1,
    n_threads=1,
    lags=None,
    hidden_layer_sizes=None,
    max_iter=1000,
    interval_width=0.95,
    **kwargs,
):
    """Feed-forward neural network autoregression using scikit-learn's MLPRegressor"""
    from sklearn.neural_network import MLPRegressor

    y = np.asarray(y_train, dtype=float)

    if lags is None:
        lags = _get_default_lags(len(y), seasonal_periods)

    if len(y) <= lags + 1:
        raise ValueError(f"nnetar needs more than {lags + 1} observations, got {len(y)}")

    if hidden_layer_sizes is None:
        hidden_layer_sizes = ((lags + 1) // 2 + 1,)

    mean, stdev = y.mean(), y.std() or 1.0
    scaled = (y - mean) / stdev

    X, target = _make_lag_matrix(scaled, lags)

    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        estimator = MLPRegressor(
            hidden_layer_sizes=hidden_layer_sizes,
            max_iter=max_iter,
            random_state=7,
            **kwargs,
        )
        estimator.fit(X, target)

    forecast = _recursive_forecast(estimator, scaled, lags, len(test_index))
    residuals = (target - estimator.predict(X)) * stdev

    output = _format_forecast(test_index, forecast * stdev + mean)

    return _add_simple_confidence_intervals(
        output, residuals=residuals, interval_width=interval_width
    )


@register_model("prophet", uses_regressors=True)
def _fc_prophet(
    y_train,
    test_index,
    X_train=None,
    X_test=None,
    seasonal_periods=1,
    n_threads=1,
    interval_width=0.95,
    **kwargs,
):
    """Prophet model, adding every regressor as an additional regressor"""
    from prophet import Prophet

    def _to_timestamps(index):
        if isinstance(index, pd.PeriodIndex):
            return index.to_timestamp()
        if not isinstance(index, pd.DatetimeIndex):
            raise ValueError("prophet needs a datetime or period index")
        return index

    history = pd.DataFrame(
        {"ds": _to_timestamps(y_train.index), "y": np.asarray(y_train, dtype=float)}
    )
    future = pd.DataFrame({"ds": _to_timestamps(test_index)})

    model = Prophet(interval_width=interval_width, **kwargs)

    if X_train is not None:
        for column in X_train.columns:
            model.add_regressor(column)
            history[column] = np.asarray(X_train[column], dtype=float)
            future[column] = np.asarray(X_test[column], dtype=float)

    model.fit(history)
    predictions = model.predict(future)

    return _format_forecast(
        test_index,
        predictions["yhat"],
        predictions["yhat_lower"],
        predictions["yhat_upper"],
    )


@register_model("automl_lgbm", self_parallelizing=True)
def _fc_automl_lgbm(
    y_train,
    test_index,
    X_train=None,
    X_test=None,
    seasonal_periods=1,
    n_threads=1,
    lags=None,
    params=None,
    n_iter=10,
    folds=3,
    **kwargs,
):
    """
    LightGBM autoregression tuned with a randomized hyperparameter search. Uses
    n_threads for the search itself, so it runs outside of the worker pool.
    """
    from sklearn.model_selection import RandomizedSearchCV, TimeSeriesSplit

    y = np.asarray(y_train, dtype=float)

    if lags is None:
        lags = _get_default_lags(len(y), seasonal_periods)

    X, target = _make_lag_matrix(y, lags)

    if len(target) <= folds:
        raise ValueError(
            f"automl_lgbm needs more than {folds + lags} observations, got {len(y)}"
        )

    if not params:
        params = get_lgb_params("light")

    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        search = RandomizedSearchCV(
            estimator=_get_regression_lgbm(**kwargs),
            param_distributions=params,
            n_iter=n_iter,
            scoring="neg_mean_squared_error",
            cv=TimeSeriesSplit(n_splits=folds),
            n_jobs=n_threads,
            random_state=7,
        )
        search.fit(X, target)

    forecast = _recursive_forecast(search.best_estimator_, y, lags, len(test_index))
    residuals = target - search.best_estimator_.predict(X)

    return _add_simple_confidence_intervals(_format_forecast(test_index, forecast), residuals)


def _align_regressors(regressors, n_observed: int, n_processed: int):
    """
    Drop the regressor rows that precede the preprocessed series, which always
    ends on the last observed period.
    """
    if regressors is None:
        return None

    return regressors.iloc[n_observed - n_processed :]


def _slice_regressors(regressors, window, series_name, model_name):
    """Return the train and test regressors of one window"""
    if regressors is None:
        return None, None

    X_train = regressors.iloc[window.train_start : window.train_end]
    X_test = regressors.iloc[window.test_start : window.test_end]

    horizon = window.test_end - window.test_start
    if len(X_test) < horizon:
        raise ModelFailure(
            f"Regressors of {series_name} only cover {len(X_test)} of the {horizon} "
            f"periods {model_name} has to forecast"
        )

    return X_train, X_test


def _check_output(output, test_index, model_name):
    """Make sure a forecasting function returned one row per forecasted period"""
    if not isinstance(output, pd.DataFrame) or "forecast" not in output.columns:
        raise ModelFailure(f"{model_name} didn't return a dataframe with a 'forecast' column")

    if len(output) != len(test_index):
        raise ModelFailure(
            f"{model_name} returned {len(output)} rows instead of {len(test_index)}"
        )

    return output.set_axis(test_index, axis=0)


def run_model(
    spec: ModelSpec,
    series: pd.Series,
    horizon: int,
    regressors: pd.DataFrame = None,
    backtest=None,
    model_args: dict = None,
    prepro_fct=None,
    n_threads: int = 1,
    series_name: str = None,
    min_train_size: int = 1,
):
    """
    Forecast one series with one model, once per backtest window.

    Parameters
    ----------
    spec : ModelSpec
        The registered model to run.
    series : pd.Series
        The series to forecast. May contain missing values.
    horizon : int
        The number of periods to forecast.
    regressors : pd.DataFrame, default None
        Regressors scoped to this series, positionally aligned with it. Rows past
        the end of the series hold future values.
    backtest : BacktestSpec, default None
        The backtesting options. If None, forecasts future dates once.
    model_args : dict, default None
        Keyword arguments passed to the forecasting function. A
        "seasonal_periods" key overrides the period inferred from the index.
    prepro_fct : callable, default None
        Handles missing values before windows are planned. Defaults to
        largest_contiguous.
    n_threads : int, default 1
        The number of threads a self-parallelizing model may use.
    series_name : str, default None
        The name used in results and error messages. Defaults to series.name.
    min_train_size : int, default 1
        The minimum number of training observations per window.

    Returns
    -------
    ForecastBundle
    """
    series_name = series_name or str(series.name)
    model_args = dict(model_args or {})
    seasonal_periods = model_args.pop(
        "seasonal_periods", _infer_seasonal_period(series.index)
    )

    if prepro_fct is None:
        prepro_fct = largest_contiguous

    try:
        processed = prepro_fct(series)
    except Exception as e:
        raise ModelFailure(f"Preprocessing {series_name} failed: {e}") from e

    if processed.isna().any():
        raise ModelFailure(f"Preprocessing left missing values in {series_name}")

    if spec.uses_regressors:
        regressors = _align_regressors(regressors, len(series), len(processed))
    else:
        regressors = None

    windows = plan_windows(len(processed), horizon, backtest, min_train_size)
    backtesting = backtest is not None and backtest.enabled

    forecasts = []
    for window in windows:
        y_train = processed.iloc[window.train_start : window.train_end]
        test_index = _get_window_index(processed.index, window.test_start, window.test_end)
        X_train, X_test = _slice_regressors(regressors, window, series_name, spec.name)

        try:
            output = spec.function(
                y_train,
                test_index,
                X_train=X_train,
                X_test=X_test,
                seasonal_periods=seasonal_periods,
                n_threads=n_threads,
                **model_args,
            )
        except ForecastPoolError:
            raise
        except Exception as e:
            raise ModelFailure(
                f"{spec.name} failed on {series_name} for test periods "
                f"[{window.test_start}, {window.test_end}): {e}"
            ) from e

        output = _check_output(output, test_index, spec.name)

        if backtesting:
            output["actual"] = processed.iloc[window.test_start : window.test_end].values

        forecasts.append(output)

    return ForecastBundle(
        series_name=series_name,
        model_name=spec.name,
        forecasts=forecasts,
        windows=windows,
    )
