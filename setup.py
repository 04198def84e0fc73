from setuptools import setup

setup(
    name="forecastpool",
    maintainer="Nick Lind",
    version="1.0",
    maintainer_email="nick@quantilegroup.com",
    description="Parallel forecasting across many series and models made easy",
    platforms="any",
    python_requires=">=3.9",
    packages=["forecastpool"],
    install_requires=[
        "numpy",
        "pandas",
        "scipy",
        "scikit-learn",
        "lightgbm",
        "statsmodels",
    ],
    extras_require={
        "prophet": ["prophet"],
        "test": ["pytest"],
    },
)
