"""
Fan forecasts out across series and models.

Models which are safe to run in parallel are fit inside a pool of worker
processes, one task per series. Once the pool is torn down, self-parallelizing
models run series by series in the calling process so they can use every core.
"""

import os
from concurrent.futures import ProcessPoolExecutor, as_completed
from concurrent.futures.process import BrokenProcessPool
from functools import partial

from forecastpool import io, validation
from forecastpool.errors import ModelFailure, PoolCreationError
from forecastpool.model import (
    DEFAULT_MODEL_NAMES,
    partition_models,
    resolve_models,
    run_model,
)
from forecastpool.results import ForecastBundle, ForecastResults
from forecastpool.utilities import print_regressor_summary, split_series


def _get_available_cores():
    """Return the number of CPU cores this process can use"""
    try:
        return len(os.sched_getaffinity(0))
    except AttributeError:
        return os.cpu_count() or 1


def _run_task_group(
    series_name,
    series,
    regressors,
    model_specs,
    horizon,
    backtest,
    models_args,
    prepro_fct,
    n_threads=1,
):
    """
    Run every model in model_specs on one series. A failing model is recorded as
    a failed bundle so the remaining models still run.

    Returns
    -------
    (series_name, dict of model name -> ForecastBundle)
    """
    bundles = {}

    for spec in model_specs:
        try:
            bundles[spec.name] = run_model(
                spec=spec,
                series=series,
                horizon=horizon,
                regressors=regressors,
                backtest=backtest,
                model_args=models_args.get(spec.name),
                prepro_fct=prepro_fct,
                n_threads=n_threads,
                series_name=series_name,
            )
        except Exception as e:
            print(f"WARNING: {spec.name} failed on {series_name} with {type(e).__name__}: {e}")
            bundles[spec.name] = ForecastBundle.from_exception(series_name, spec.name, e)

    return series_name, bundles


def _check_available_cores(worker_count: int):
    """Raise PoolCreationError when more workers are requested than there are cores"""
    available_cores = _get_available_cores()

    if worker_count > available_cores:
        raise PoolCreationError(
            f"Requested {worker_count} workers but only {available_cores} cores are available"
        )


def _start_pool(worker_count: int):
    """Create a pool of worker_count processes or raise PoolCreationError"""
    try:
        return ProcessPoolExecutor(max_workers=worker_count)
    except (OSError, ValueError) as e:
        raise PoolCreationError(f"Couldn't start a pool of {worker_count} workers: {e}") from e


def _fail_task_group(series_name, model_specs, exception):
    print(
        f"WARNING: the task for {series_name} failed with "
        f"{type(exception).__name__}: {exception}"
    )
    return {
        spec.name: ForecastBundle.from_exception(series_name, spec.name, exception)
        for spec in model_specs
    }


def _iter_units(data, regressors):
    """Yield (series_name, series, scoped_regressors) for every series in data"""
    for index in range(1, data.shape[1] + 1):
        yield split_series(data, regressors, index)


def _collect_task_groups(executor, task, units, model_specs, results):
    """
    Submit one task per unit and store each series' bundles in results.

    Returns
    -------
    list of the units whose task was lost because a worker process died
    """
    futures = {}
    lost_units = []

    for unit in units:
        try:
            futures[executor.submit(task, *unit)] = unit
        except BrokenProcessPool:
            lost_units.append(unit)

    for future in as_completed(futures):
        unit = futures[future]
        series_name = unit[0]

        try:
            _, bundles = future.result()
        except BrokenProcessPool:
            lost_units.append(unit)
            continue
        except Exception as e:
            bundles = _fail_task_group(series_name, model_specs, e)

        results[series_name] = bundles

    return lost_units


def _run_parallel_phase(
    data,
    regressors,
    model_specs,
    horizon,
    backtest,
    models_args,
    prepro_fct,
    worker_count,
):
    """
    Run the parallel-safe models with one task per series.

    With a single worker the tasks run in the calling process. Otherwise every
    pool is shut down before returning, whatever happened to the tasks.

    A worker process dying breaks the whole pool, failing every task still in
    flight. Those series are then rerun one at a time, each in a pool of its
    own, so only the series that actually kills its worker ends up with failed
    bundles.

    Returns
    -------
    dict of series name -> dict of model name -> ForecastBundle
    """
    if not model_specs:
        return {}

    task = partial(
        _run_task_group,
        model_specs=model_specs,
        horizon=horizon,
        backtest=backtest,
        models_args=models_args,
        prepro_fct=prepro_fct,
    )

    if worker_count == 1:
        return dict(task(*unit) for unit in _iter_units(data, regressors))

    results = {}

    executor = _start_pool(worker_count)
    try:
        lost_units = _collect_task_groups(
            executor, task, _iter_units(data, regressors), model_specs, results
        )
    finally:
        executor.shutdown(wait=True, cancel_futures=True)

    for unit in lost_units:
        series_name = unit[0]

        executor = _start_pool(1)
        try:
            if _collect_task_groups(executor, task, [unit], model_specs, results):
                results[series_name] = _fail_task_group(
                    series_name,
                    model_specs,
                    ModelFailure(f"The worker process forecasting {series_name} died"),
                )
        finally:
            executor.shutdown(wait=True, cancel_futures=True)

    return results


def _run_sequential_phase(
    data,
    regressors,
    model_specs,
    horizon,
    backtest,
    models_args,
    prepro_fct,
    worker_count,
):
    """
    Run the self-parallelizing models series by series in the calling process,
    letting each use worker_count threads.
    """
    results = {}

    if not model_specs:
        return results

    for series_name, series, scoped_regressors in _iter_units(data, regressors):
        _, bundles = _run_task_group(
            series_name=series_name,
            series=series,
            regressors=scoped_regressors,
            model_specs=model_specs,
            horizon=horizon,
            backtest=backtest,
            models_args=models_args,
            prepro_fct=prepro_fct,
            n_threads=worker_count,
        )
        results[series_name] = bundles

    return results


def _assemble_results(series_names, model_names, partial_results, **metadata):
    """
    Merge partial results into one ForecastResults holding a bundle for every
    requested (series, model) pair, in the requested order.
    """
    tree = {series_name: {} for series_name in series_names}

    for partial_result in partial_results:
        for series_name, bundles in partial_result.items():
            if series_name not in tree:
                raise ValueError(f"Received results for an unknown series: {series_name}")

            for model_name, bundle in bundles.items():
                if model_name not in model_names:
                    raise ValueError(f"Received results for an unrequested model: {model_name}")
                if model_name in tree[series_name]:
                    raise ValueError(f"Received {series_name}/{model_name} twice")

                tree[series_name][model_name] = bundle

    output = {}
    for series_name in series_names:
        output[series_name] = {}

        for model_name in model_names:
            bundle = tree[series_name].get(model_name)

            if bundle is None:
                bundle = ForecastBundle.from_exception(
                    series_name, model_name, ModelFailure("no result returned")
                )

            output[series_name][model_name] = bundle

    return ForecastResults(output, model_names=model_names, **metadata)


def generate_forecasts(
    data,
    horizon: int = 12,
    regressors=None,
    backtest=None,
    model_names: list = None,
    models_args: dict = None,
    prepro_fct=None,
    worker_count: int = 1,
    data_dir: str = None,
    time_id=None,
):
    """
    Forecast every series in data with every requested model, in parallel.

    Parameters
    ----------
    data : pd.Series, pd.DataFrame or np.ndarray
        One or more equal-length series, one per column. Unnamed columns are
        called "time_series_<k>".
    horizon : int, default 12
        The number of periods to forecast.
    regressors : pd.Series, pd.DataFrame or np.ndarray, default None
        External regressors, positionally aligned with data. Columns named
        "<series_name>__<feature_name>" are only used for that series, others are
        shared by every series. Rows past the end of data hold future values.
    backtest : BacktestSpec or dict, default None
        Backtesting options (enabled, iterations, method, sample_size). If None,
        forecasts future dates once.
    model_names : list of strings, default None
        The registered models to run. Defaults to DEFAULT_MODEL_NAMES.
    models_args : dict, default None
        Keyword arguments per model name, e.g. {"ets": {"trend": None}}.
    prepro_fct : callable, default None
        Handles missing values in each series. Defaults to
        transform.largest_contiguous.
    worker_count : int, default 1
        The number of worker processes, and the number of threads handed to
        self-parallelizing models.
    data_dir : str, default None
        If given, every successful forecast is also saved there as a CSV file.
    time_id : pd.Timestamp, default None
        Timestamp attached to the results and file names. Defaults to now.

    Returns
    -------
    ForecastResults
    """
    data = validation.check_data(data)
    regressors = validation.check_regressors(regressors, data)

    if regressors is not None:
        print_regressor_summary(regressors)

    horizon = validation.check_horizon(horizon)
    model_names = validation.check_model_names(model_names, DEFAULT_MODEL_NAMES)
    model_specs = resolve_models(model_names)
    models_args = validation.check_models_args(models_args, model_names)
    backtest = validation.check_backtest(backtest)
    prepro_fct = validation.check_preprocess_fct(prepro_fct)
    worker_count = validation.check_worker_count(worker_count)
    _check_available_cores(worker_count)
    data_dir = validation.check_data_dir(data_dir)
    time_id = validation.check_time_id(time_id)

    parallel_safe, exclusions = partition_models(model_specs)

    phase_args = {
        "data": data,
        "regressors": regressors,
        "horizon": horizon,
        "backtest": backtest,
        "models_args": models_args,
        "prepro_fct": prepro_fct,
        "worker_count": worker_count,
    }

    print(
        f"Running {data.shape[1]} series x {len(parallel_safe)} models on "
        f"{worker_count} worker(s)..."
    )
    parallel_results = _run_parallel_phase(model_specs=parallel_safe, **phase_args)

    if exclusions:
        print(
            f"Running {data.shape[1]} series x {len(exclusions)} self-parallelizing "
            f"models with {worker_count} thread(s)..."
        )
    sequential_results = _run_sequential_phase(model_specs=exclusions, **phase_args)

    results = _assemble_results(
        series_names=list(data.columns),
        model_names=model_names,
        partial_results=[parallel_results, sequential_results],
        horizon=horizon,
        backtest=backtest,
        time_id=time_id,
    )

    if data_dir is not None:
        io.save_results_as_csv(results, data_dir)

    return results
