import os

import pandas as pd

import forecastpool as fp

data = pd.read_csv(
    "https://raw.githubusercontent.com/facebook/prophet/master/examples/example_retail_sales.csv",
    index_col="ds",
    parse_dates=True,
).asfreq("MS")

# a second, shorter series with a gap in the middle
data["y_recent"] = data["y"].where(data.index >= "2000-01-01") * 1.1
data.loc["2005-03-01":"2005-05-01", "y_recent"] = None

# a shared regressor, plus one used only by "y", both known 12 months ahead
future_index = pd.date_range(data.index[0], periods=len(data) + 12, freq="MS")
regressors = pd.DataFrame(
    {"december": (future_index.month == 12).astype(float), "y__trend": range(len(future_index))},
    index=future_index,
)

if __name__ == "__main__":
    results = fp.generate_forecasts(
        data,
        horizon=12,
        regressors=regressors,
        backtest={"enabled": True, "iterations": 3, "method": "moving"},
        model_names=["arima", "ets", "snaive", "stl", "automl_lgbm"],
        models_args={"automl_lgbm": {"n_iter": 5}},
        worker_count=min(2, os.cpu_count() or 1),
        data_dir="forecasts",
    )

    print(results)
    print(results.failures())
    print(results.to_pandas().head())
