import multiprocessing
import os

import numpy as np
import pandas as pd
import pytest

import forecastpool as fp
from forecastpool import main, testing

requires_two_cores = pytest.mark.skipif(
    main._get_available_cores() < 2, reason="needs at least two CPU cores"
)


def test_generate_forecasts_future():
    data = testing.get_test_series(n_series=1, length=144)

    results = fp.generate_forecasts(data, horizon=12, model_names=["snaive", "test_mean"])

    assert isinstance(results, fp.ForecastResults)
    assert list(results) == ["series_1"]
    assert list(results["series_1"]) == ["snaive", "test_mean"]

    for bundle in results["series_1"].values():
        assert not bundle.failed
        assert len(bundle) == 1
        assert len(bundle.forecast) == 12

    assert results["series_1"]["test_mean"].forecast["forecast"].iloc[0] == 72.5
    assert results.horizon == 12
    assert results.backtest == fp.BacktestSpec()


def test_generate_forecasts_backtest():
    data = testing.get_test_series(n_series=2, length=60)

    results = fp.generate_forecasts(
        data,
        horizon=6,
        backtest={"enabled": True, "iterations": 6, "method": "rolling", "sample_size": "expanding"},
        model_names=["test_last"],
    )

    assert list(results) == ["series_1", "series_2"]

    for series_name, models in results.items():
        assert list(models) == ["test_last"]

        bundle = models["test_last"]
        assert len(bundle) == 6
        assert all(len(frame) == 6 for frame in bundle.forecasts)
        assert len({frame["train_start"].iloc[0] for frame in bundle.forecasts}) == 1
        assert bundle.forecasts[-1]["actual"].iloc[-1] == data[series_name].iloc[-1]


def test_generate_forecasts_shape_and_isolation(capsys):
    data = testing.get_test_series(n_series=3, length=36)
    model_names = ["test_mean", "test_failing", "test_self_parallel"]

    results = fp.generate_forecasts(data, horizon=3, model_names=model_names)

    assert len(results) == 3
    for models in results.values():
        assert list(models) == model_names
        assert not models["test_mean"].failed
        assert not models["test_self_parallel"].failed

        failed = models["test_failing"]
        assert failed.failed
        assert failed.error_type == "ModelFailure"
        assert failed.forecast is None

    failures = results.failures()
    assert failures["model"].tolist() == ["test_failing"] * 3
    assert failures["series"].tolist() == ["series_1", "series_2", "series_3"]

    assert "WARNING: test_failing failed on series_2" in capsys.readouterr().out


def test_generate_forecasts_records_insufficient_history():
    short = pd.Series(np.arange(10.0), name="short")
    long = pd.Series(np.arange(40.0), name="long")
    data = pd.concat([short.reindex(range(40)).shift(30), long], axis=1)

    results = fp.generate_forecasts(
        data,
        horizon=6,
        backtest={"enabled": True, "iterations": 2, "method": "moving"},
        model_names=["test_mean"],
    )

    assert results["short"]["test_mean"].error_type == "InsufficientHistory"
    assert len(results["long"]["test_mean"]) == 2


def test_generate_forecasts_self_parallelizing_threads():
    data = testing.get_test_series(n_series=2, length=24)

    results = fp.generate_forecasts(
        data, horizon=2, model_names=["test_self_parallel"], worker_count=1
    )

    for models in results.values():
        assert models["test_self_parallel"].forecast["n_threads"].iloc[0] == 1


def test_generate_forecasts_regressors(capsys):
    data = testing.get_test_series(n_series=2, length=24)
    regressors = testing.get_test_regressors(list(data.columns), length=24, future_periods=3)

    results = fp.generate_forecasts(
        data, horizon=3, regressors=regressors, model_names=["test_regressors"]
    )

    printed = capsys.readouterr().out
    assert "Number of total features: 3" in printed
    assert "Number of ts specific features (ts_name + '__' + feature_name): 2" in printed

    for series_name in data.columns:
        forecast = results[series_name]["test_regressors"].forecast
        answer = (
            regressors["price"] + regressors[f"{series_name}__promo"]
        ).iloc[24:].values

        assert forecast["regressors"].iloc[0] == "price,promo"
        assert np.abs(forecast["forecast"].values - answer).sum() <= testing._get_difference_threshold()


def test_generate_forecasts_validation_errors():
    data = testing.get_test_series(n_series=1, length=24)

    with pytest.raises(fp.ValidationError):
        fp.generate_forecasts(data, model_names=["tbats"])

    with pytest.raises(fp.ValidationError):
        fp.generate_forecasts(data, horizon=0, model_names=["test_mean"])

    with pytest.raises(fp.ValidationError):
        fp.generate_forecasts(data, model_names=["test_mean"], worker_count=0)

    with pytest.raises(fp.ValidationError):
        fp.generate_forecasts(
            data, model_names=["test_mean"], models_args={"test_last": {}}
        )


def test_generate_forecasts_pool_creation_error(monkeypatch):
    calls = []

    def _record_call(*args, **kwargs):
        calls.append(kwargs)

    monkeypatch.setattr(main, "_get_available_cores", lambda: 1)
    monkeypatch.setattr(main, "run_model", _record_call)

    data = testing.get_test_series(n_series=2, length=24)

    with pytest.raises(fp.PoolCreationError):
        fp.generate_forecasts(
            data, horizon=3, model_names=["test_mean", "test_self_parallel"], worker_count=2
        )

    assert calls == []


def test_generate_forecasts_checks_cores_without_pool(monkeypatch):
    calls = []

    def _record_call(*args, **kwargs):
        calls.append(kwargs)

    monkeypatch.setattr(main, "_get_available_cores", lambda: 1)
    monkeypatch.setattr(main, "run_model", _record_call)

    data = testing.get_test_series(n_series=2, length=24)

    # only self-parallelizing models, so no pool would be started
    with pytest.raises(fp.PoolCreationError):
        fp.generate_forecasts(
            data, horizon=3, model_names=["test_self_parallel"], worker_count=2
        )

    assert calls == []


def test_generate_forecasts_colliding_regressors(monkeypatch):
    calls = []

    def _record_call(*args, **kwargs):
        calls.append(kwargs)

    monkeypatch.setattr(main, "run_model", _record_call)

    data = testing.get_test_series(n_series=2, length=24)
    regressors = pd.DataFrame(
        {"x": np.ones(24), "series_2__x": np.zeros(24)}, index=data.index
    )

    with pytest.raises(fp.ValidationError):
        fp.generate_forecasts(
            data, horizon=3, regressors=regressors, model_names=["test_regressors"]
        )

    assert calls == []


def test_generate_forecasts_data_dir(tmp_path):
    data = testing.get_test_series(n_series=2, length=24)

    results = fp.generate_forecasts(
        data,
        horizon=3,
        model_names=["test_mean", "test_failing"],
        data_dir=str(tmp_path),
        time_id="2020-01-01 12:30:00",
    )

    assert results.time_id == pd.Timestamp("2020-01-01 12:30:00")

    saved = sorted(os.listdir(tmp_path))
    assert saved == [
        "series_1__test_mean__20200101_123000.csv",
        "series_2__test_mean__20200101_123000.csv",
    ]

    loaded = pd.read_csv(tmp_path / saved[0])
    assert loaded["iteration"].tolist() == [1, 1, 1]


@requires_two_cores
def test_generate_forecasts_in_parallel():
    data = testing.get_test_series(n_series=4, length=36)
    model_names = ["test_mean", "test_failing", "test_self_parallel", "snaive"]

    serial = fp.generate_forecasts(data, horizon=3, model_names=model_names, worker_count=1)
    parallel = fp.generate_forecasts(data, horizon=3, model_names=model_names, worker_count=2)

    assert list(parallel) == list(serial)

    for series_name in data.columns:
        assert list(parallel[series_name]) == model_names

        for model_name in ["test_mean", "snaive"]:
            assert parallel[series_name][model_name].forecast["forecast"].equals(
                serial[series_name][model_name].forecast["forecast"]
            )

        assert parallel[series_name]["test_failing"].failed
        assert parallel[series_name]["test_self_parallel"].forecast["n_threads"].iloc[0] == 2

    # no worker outlives the call
    assert multiprocessing.active_children() == []


@requires_two_cores
def test_generate_forecasts_task_group_failure():
    data = testing.get_test_series(n_series=2, length=24)

    # lambdas can't be sent to worker processes, so every task group fails
    results = fp.generate_forecasts(
        data,
        horizon=3,
        model_names=["test_mean", "test_self_parallel"],
        prepro_fct=lambda series: series,
        worker_count=2,
    )

    for models in results.values():
        assert models["test_mean"].failed
        assert not models["test_self_parallel"].failed


@requires_two_cores
def test_generate_forecasts_worker_crash():
    data = testing.get_test_series(n_series=3, length=24)

    results = fp.generate_forecasts(
        data,
        horizon=3,
        model_names=["test_mean", "test_crashing", "test_self_parallel"],
        models_args={"test_crashing": {"crash_on": "series_2"}},
        worker_count=2,
    )

    assert list(results) == ["series_1", "series_2", "series_3"]

    for series_name in ["series_1", "series_3"]:
        assert not results[series_name]["test_mean"].failed
        assert not results[series_name]["test_crashing"].failed

    # the whole task group of the crashing series is lost
    assert results["series_2"]["test_mean"].error_type == "ModelFailure"
    assert results["series_2"]["test_crashing"].error_type == "ModelFailure"
    assert "died" in results["series_2"]["test_crashing"].error_message

    # the sequential phase still runs after the pool
    assert not results["series_2"]["test_self_parallel"].failed

    assert multiprocessing.active_children() == []


def test_generate_forecasts_crashing_model_in_process():
    data = testing.get_test_series(n_series=1, length=24)

    results = fp.generate_forecasts(
        data, horizon=3, model_names=["test_mean", "test_crashing"], worker_count=1
    )

    assert not results["series_1"]["test_mean"].failed
    assert results["series_1"]["test_crashing"].error_type == "ModelFailure"


def test__assemble_results():
    bundle = fp.ForecastBundle("A", "test_mean", forecasts=[pd.DataFrame({"forecast": [1.0]})])

    results = main._assemble_results(
        series_names=["A", "B"],
        model_names=["test_mean", "test_last"],
        partial_results=[{"A": {"test_mean": bundle}}, {}],
        horizon=1,
    )

    assert results["A"]["test_mean"] is bundle
    assert results["A"]["test_last"].error_message == "no result returned"
    assert list(results["B"]) == ["test_mean", "test_last"]
    assert all(bundle.failed for bundle in results["B"].values())

    with pytest.raises(ValueError):
        main._assemble_results(["A"], ["test_mean"], [{"C": {}}])

    with pytest.raises(ValueError):
        main._assemble_results(["A"], ["test_mean"], [{"A": {"arima": bundle}}])

    with pytest.raises(ValueError):
        main._assemble_results(
            ["A"], ["test_mean"], [{"A": {"test_mean": bundle}}, {"A": {"test_mean": bundle}}]
        )


if __name__ == "__main__":
    test_generate_forecasts_future()
    test_generate_forecasts_backtest()
    test_generate_forecasts_records_insufficient_history()
    test_generate_forecasts_self_parallelizing_threads()
    test_generate_forecasts_validation_errors()
    test_generate_forecasts_crashing_model_in_process()
    test__assemble_results()

    print("Finished with main tests!")
