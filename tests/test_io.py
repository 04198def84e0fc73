import pytest

import os

import pandas as pd

import forecastpool as fp
from forecastpool import io, testing


def _get_test_results():
    data = testing.get_test_series(n_series=2, length=36)

    return fp.generate_forecasts(
        data,
        horizon=3,
        backtest={"enabled": True, "iterations": 2},
        model_names=["test_mean", "test_failing"],
        time_id="2021-06-30",
    )


def test_save_and_load_results(tmp_path):
    results = _get_test_results()

    fp.save_results(results, "test.pkl", path=str(tmp_path))

    loaded_results = fp.load_results("test.pkl", path=str(tmp_path))

    assert isinstance(loaded_results, fp.ForecastResults)
    assert list(loaded_results) == list(results)
    assert loaded_results.model_names == results.model_names
    assert loaded_results.horizon == results.horizon
    assert loaded_results.backtest == results.backtest
    assert loaded_results.time_id == results.time_id
    assert loaded_results.to_pandas().equals(results.to_pandas())
    assert loaded_results["series_1"]["test_failing"].error_type == "ModelFailure"


def test_save_bundle(tmp_path):
    results = _get_test_results()
    bundle = results["series_2"]["test_mean"]

    location = io.save_bundle(bundle, str(tmp_path), results.time_id)

    assert os.path.basename(location) == "series_2__test_mean__20210630_000000.csv"

    loaded = pd.read_csv(location, index_col="period", parse_dates=True)
    assert loaded["iteration"].tolist() == [1, 1, 1, 2, 2, 2]
    assert loaded["actual"].tolist() == bundle.to_pandas()["actual"].tolist()

    # failed bundles have nothing to save
    assert io.save_bundle(results["series_2"]["test_failing"], str(tmp_path), results.time_id) is None


def test_save_results_as_csv(tmp_path):
    results = _get_test_results()

    locations = io.save_results_as_csv(results, str(tmp_path))

    assert len(locations) == 2
    assert sorted(os.listdir(tmp_path)) == sorted(os.path.basename(path) for path in locations)


if __name__ == "__main__":
    pytest.main([__file__])

    print("Finished with io tests!")
