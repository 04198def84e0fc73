"""
Functions to plan the train/test windows used when forecasting or backtesting
a single series.
"""

from collections import namedtuple

from forecastpool.errors import InsufficientHistory, ValidationError

Window = namedtuple("Window", ["train_start", "train_end", "test_start", "test_end"])
Window.__doc__ = """
0-based, half-open positions of one train/test split. Test positions past the
end of the series denote future periods.
"""

_METHODS = ("rolling", "moving")
_SAMPLE_SIZES = ("expanding", "fixed")


class BacktestSpec:
    """
    Options which define the backtesting approach.

    Parameters
    ----------
    enabled : bool, default False
        If False, a single forecast is generated on future dates. If True,
        forecasts are generated on past dates so that they can be compared
        against actuals.
    iterations : int, default 1
        The number of forecasting exercises to run. Forced to 1 when
        backtesting is disabled.
    method : str, default "rolling"
        "rolling" moves the forecasting interval back one period between
        iterations, "moving" moves it back by a full horizon.
    sample_size : str, default "expanding"
        "expanding" keeps the start of the training set fixed, "fixed" keeps
        the size of the training set constant.
    """

    _fields = ("enabled", "iterations", "method", "sample_size")

    def __init__(
        self,
        enabled: bool = False,
        iterations: int = 1,
        method: str = "rolling",
        sample_size: str = "expanding",
    ):
        if method not in _METHODS:
            raise ValidationError(f"method should be one of {_METHODS}, not {method!r}")

        if sample_size not in _SAMPLE_SIZES:
            raise ValidationError(
                f"sample_size should be one of {_SAMPLE_SIZES}, not {sample_size!r}"
            )

        if isinstance(iterations, bool) or not isinstance(iterations, int) or iterations < 1:
            raise ValidationError(
                f"iterations should be a positive integer, not {iterations!r}"
            )

        self.enabled = bool(enabled)
        self.iterations = iterations if enabled else 1
        self.method = method
        self.sample_size = sample_size

    @classmethod
    def from_dict(cls, options: dict):
        """Build a BacktestSpec from a dict of options, using defaults for missing keys"""
        unknown_keys = set(options) - set(cls._fields)
        if unknown_keys:
            raise ValidationError(f"Unrecognized backtest options: {sorted(unknown_keys)}")

        return cls(**options)

    def to_dict(self):
        return {field: getattr(self, field) for field in self._fields}

    def __eq__(self, other):
        if not isinstance(other, BacktestSpec):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self):
        args = ", ".join(f"{key}={value!r}" for key, value in self.to_dict().items())
        return f"BacktestSpec({args})"


def _get_step(horizon: int, spec: BacktestSpec):
    """Number of periods between the test starts of two consecutive iterations"""
    return 1 if spec.method == "rolling" else horizon


def plan_windows(
    series_length: int, horizon: int, spec: BacktestSpec = None, min_train_size: int = 1
):
    """
    Return the ordered train/test windows to evaluate for one series.

    Windows are built backwards from the most recent one, whose test range ends
    on the last observation, and returned oldest first.

    Parameters
    ----------
    series_length : int
        The number of observations in the (preprocessed) series.
    horizon : int
        The number of periods to forecast in each window.
    spec : BacktestSpec, default None
        The backtesting options. If None, a single future window is returned.
    min_train_size : int, default 1
        The minimum number of training observations any window may hold.

    Returns
    -------
    tuple of Window
    """
    if spec is None:
        spec = BacktestSpec()

    if not spec.enabled:
        if series_length < min_train_size:
            raise InsufficientHistory(
                f"Need at least {min_train_size} observations to forecast, "
                f"got {series_length}"
            )
        return (Window(0, series_length, series_length, series_length + horizon),)

    step = _get_step(horizon, spec)

    # the oldest test range starts here, and everything before it is training data
    earliest_test_start = series_length - horizon - (spec.iterations - 1) * step

    if earliest_test_start < min_train_size:
        raise InsufficientHistory(
            f"A series of length {series_length} is too short for {spec.iterations} "
            f"{spec.method} windows of horizon {horizon} with at least "
            f"{min_train_size} training observations"
        )

    windows = []
    for iteration in range(spec.iterations):
        test_start = series_length - horizon - iteration * step

        if spec.sample_size == "expanding":
            train_start = 0
        else:
            train_start = test_start - earliest_test_start

        windows.append(Window(train_start, test_start, test_start, test_start + horizon))

    return tuple(reversed(windows))
