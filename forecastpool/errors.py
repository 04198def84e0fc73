"""
Exceptions raised by forecastpool.

Validation and pool-creation errors abort a call to generate_forecasts. The
remaining errors are caught per (series, model) cell and recorded in the
returned ForecastResults.
"""


class ForecastPoolError(Exception):
    """Base class for every forecastpool error"""


class ValidationError(ForecastPoolError, ValueError):
    """Malformed inputs, raised before any scheduling happens"""


class InsufficientHistory(ForecastPoolError, ValueError):
    """The series is too short for the requested horizon and backtest windows"""


class PoolCreationError(ForecastPoolError, RuntimeError):
    """The worker pool couldn't be created with the requested size"""


class ModelFailure(ForecastPoolError, RuntimeError):
    """A model collaborator failed for one (series, model) cell"""


class IndexOutOfRange(ForecastPoolError, IndexError):
    """A series ordinal outside of the multi-series container"""
