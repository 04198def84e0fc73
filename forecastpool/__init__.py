"""
forecastpool - parallel forecasting across many series and models for Python
=====================================================================
`forecastpool` fans forecast generation out across statistical and
machine-learning models (ARIMA, ETS, STL, seasonal naive, neural-net
autoregression, Prophet, LightGBM AutoML) and across independent series,
optionally repeating the exercise over rolling or moving backtesting windows.

Main Features
-------------
- **One call, many series and models**: results come back as a nested
  ForecastResults keyed by series name, then model name.
- **Built-in backtesting** with rolling or moving windows and expanding or
  fixed training samples.
- **Parallel by default where it's safe**: parallel-safe models run in a pool
  of worker processes, while self-parallelizing models run afterwards with
  every core to themselves.
- **Failures stay local**: a model failing on one series is recorded in the
  results without stopping the others.
"""

from forecastpool.backtest import BacktestSpec, Window, plan_windows
from forecastpool.errors import (
    ForecastPoolError,
    IndexOutOfRange,
    InsufficientHistory,
    ModelFailure,
    PoolCreationError,
    ValidationError,
)
from forecastpool.io import load_results, save_results
from forecastpool.main import generate_forecasts
from forecastpool.model import (
    DEFAULT_MODEL_NAMES,
    MODEL_REGISTRY,
    ModelSpec,
    get_lgb_params,
    register_model,
    run_model,
)
from forecastpool.results import ForecastBundle, ForecastResults
from forecastpool.transform import fill_missings, largest_contiguous
from forecastpool.utilities import split_series
