"""
Functions to import or export forecast results.
"""

import os
import pickle


def _format_time_id(time_id):
    return time_id.strftime("%Y%m%d_%H%M%S")


def save_bundle(bundle, data_dir, time_id):
    """
    Save the forecasts of one (series, model) cell as a CSV file named
    "<series>__<model>__<time_id>.csv".

    Parameters
    ----------
    bundle : ForecastBundle
        A successful bundle. Failed bundles are skipped.
    data_dir : str
        The directory you want to save the file to.
    time_id : pd.Timestamp
        The timestamp appended to the file name.

    Returns
    -------
    The path of the saved file, or None if the bundle failed.
    """
    if bundle.failed:
        return None

    name = f"{bundle.series_name}__{bundle.model_name}__{_format_time_id(time_id)}.csv"
    location = os.path.join(data_dir, name)

    bundle.to_pandas().to_csv(location, index_label="period")

    return location


def save_results_as_csv(results, data_dir):
    """Save every successful bundle in a ForecastResults to data_dir"""
    print(f"Saving forecasts to {data_dir}...")

    return [
        location
        for location in (
            save_bundle(bundle, data_dir, results.time_id) for bundle in results.iter_bundles()
        )
        if location is not None
    ]


def save_results(results, name="forecastpool.pkl", path=None):
    """
    Save a ForecastResults object as a pickle.

    Parameters
    ----------
    name : string, default "forecastpool.pkl"
        The filename to save to.
    path : Path, default None
        The path you want to save the pickle to. Defaults to the working directory.
    """
    location = os.path.join(path or os.getcwd(), name)
    print(f"Saving to {location}...")
    with open(location, "wb") as file:
        pickle.dump(results, file)


def load_results(name="forecastpool.pkl", path=None):
    """
    Load a ForecastResults object from a pickle.

    Parameters
    ----------
    name : string, default "forecastpool.pkl"
        The filename to load from.
    path : Path, default None
        The path you want to load the pickle from. Defaults to the working directory.
    """
    with open(os.path.join(path or os.getcwd(), name), "rb") as file:
        results = pickle.load(file)

    return results
