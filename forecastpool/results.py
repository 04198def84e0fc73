"""
Containers returned by generate_forecasts.
"""

import pandas as pd


class ForecastBundle:
    """
    The output of one model for one series: a forecast frame per backtest
    window, or the error that stopped the model.

    Parameters
    ----------
    series_name : str
        The series the model was fit on.
    model_name : str
        The registered name of the model.
    forecasts : list of pd.DataFrame, default None
        One frame per window, oldest first, indexed by the forecasted periods
        with a "forecast" column, optional "lower" and "upper" columns, and an
        "actual" column when backtesting.
    windows : list of Window, default None
        The train/test positions that produced each forecast frame.
    error_type : str, default None
        The name of the exception raised when the model failed.
    error_message : str, default None
        The message of the exception raised when the model failed.
    """

    def __init__(
        self,
        series_name: str,
        model_name: str,
        forecasts: list = None,
        windows: list = None,
        error_type: str = None,
        error_message: str = None,
    ):
        self.series_name = series_name
        self.model_name = model_name
        self.forecasts = tuple(forecasts or ())
        self.windows = tuple(windows or ())
        self.error_type = error_type
        self.error_message = error_message

    @classmethod
    def from_exception(cls, series_name: str, model_name: str, exception: BaseException):
        """Record a failed (series, model) cell"""
        return cls(
            series_name=series_name,
            model_name=model_name,
            error_type=type(exception).__name__,
            error_message=str(exception),
        )

    @property
    def failed(self):
        return self.error_type is not None

    @property
    def forecast(self):
        """The most recent forecast frame, or None if the model failed"""
        return self.forecasts[-1] if self.forecasts else None

    def to_pandas(self):
        """Stack every window's forecast into one frame with an "iteration" column"""
        if self.failed:
            return pd.DataFrame()

        frames = [
            frame.assign(iteration=iteration)
            for iteration, frame in enumerate(self.forecasts, start=1)
        ]

        return pd.concat(frames, axis=0)

    def __len__(self):
        return len(self.forecasts)

    def __getitem__(self, iteration):
        return self.forecasts[iteration]

    def __repr__(self):
        if self.failed:
            status = f"failed with {self.error_type}: {self.error_message}"
        else:
            status = f"{len(self)} forecast(s)"
        return f"<ForecastBundle {self.series_name}/{self.model_name}: {status}>"


class ForecastResults(dict):
    """
    Nested mapping of series name -> model name -> ForecastBundle returned by
    generate_forecasts. The class itself marks an object as forecastpool output.

    Parameters
    ----------
    tree : dict, default None
        The nested mapping of bundles.
    horizon : int, default None
        The forecasting horizon used to create the bundles.
    backtest : BacktestSpec, default None
        The backtesting options used to create the bundles.
    model_names : list of strings, default None
        The requested model names, in order.
    time_id : pd.Timestamp, default None
        When the forecasts were requested.
    """

    def __init__(
        self,
        tree: dict = None,
        horizon: int = None,
        backtest=None,
        model_names: list = None,
        time_id=None,
    ):
        super().__init__(tree or {})
        self.horizon = horizon
        self.backtest = backtest
        self.model_names = list(model_names or [])
        self.time_id = time_id

    @property
    def series_names(self):
        return list(self.keys())

    def iter_bundles(self):
        """Yield every bundle, series by series"""
        for models in self.values():
            yield from models.values()

    def failures(self):
        """Return a dataframe describing every failed (series, model) cell"""
        rows = [
            {
                "series": bundle.series_name,
                "model": bundle.model_name,
                "error_type": bundle.error_type,
                "error_message": bundle.error_message,
            }
            for bundle in self.iter_bundles()
            if bundle.failed
        ]

        return pd.DataFrame(rows, columns=["series", "model", "error_type", "error_message"])

    def to_pandas(self):
        """Stack every successful forecast into one long-format dataframe"""
        frames = [
            bundle.to_pandas().assign(series=bundle.series_name, model=bundle.model_name)
            for bundle in self.iter_bundles()
            if not bundle.failed
        ]

        if not frames:
            return pd.DataFrame()

        return pd.concat(frames, axis=0)

    def __repr__(self):
        models = ", ".join(self.model_names)
        return (
            f"<ForecastResults: {len(self)} series x [{models}], horizon={self.horizon}, "
            f"{self.backtest!r}>"
        )
