"""
YAML configuration loading utilities.

Provides functions to load and validate configuration from YAML files,
returning properly typed Pydantic model instances.
"""

from pathlib import Path
from typing import Any

import yaml

from hjm_xva.config.models import (
    CollateralConfig,
    CrossCorrelation,
    CurrencyModelConfig,
    CurveConfig,
    FXModelConfig,
    HybridModelConfig,
    MarketConfig,
    RegressionConfig,
    SimulationConfig,
    validate_config,
)
from hjm_xva.errors import ConfigurationError


def _load_yaml(path: Path) -> dict[str, Any]:
    """
    Load a YAML file and return its contents as a dictionary.

    Parameters
    ----------
    path : Path
        Path to the YAML file

    Returns
    -------
    dict[str, Any]
        Parsed YAML contents

    Raises
    ------
    FileNotFoundError
        If the file does not exist
    ConfigurationError
        If the file does not hold a mapping
    """
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping")
    return data


def load_market_config(path: Path | str) -> MarketConfig:
    """
    Load market configuration (model, curves, bindings) from a YAML file.

    Example
    -------
    >>> config = load_market_config("examples/config/market.yaml")
    >>> print(config.model.base_currency)
    EUR
    """
    data = _load_yaml(Path(path))

    # Handle nested 'market' key if present
    if "market" in data:
        data = data["market"]

    return validate_config(MarketConfig, data)


def load_model_config(path: Path | str) -> HybridModelConfig:
    """
    Load a hybrid model configuration, nested or flat, from a YAML file.

    A file whose top-level keys are dotted (``EUR.mean_reversion``) is read
    with :meth:`HybridModelConfig.from_flat_mapping`.
    """
    data = _load_yaml(Path(path))

    if "model" in data:
        data = data["model"]

    if any("." in str(key) for key in data):
        return HybridModelConfig.from_flat_mapping(data)
    return validate_config(HybridModelConfig, data)


def load_config(
    market_path: Path | str | None = None,
    simulation_path: Path | str | None = None,
) -> dict[str, Any]:
    """
    Load complete configuration from YAML files.

    Parameters
    ----------
    market_path : Path | str | None
        Path to market configuration file
    simulation_path : Path | str | None
        Path to run configuration file with optional 'simulation',
        'regression' and 'collateral' sections

    Returns
    -------
    dict[str, Any]
        Dictionary containing whichever of 'market', 'simulation',
        'regression' and 'collateral' were provided
    """
    result: dict[str, Any] = {}

    if market_path is not None:
        result["market"] = load_market_config(market_path)

    if simulation_path is not None:
        data = _load_yaml(Path(simulation_path))

        if "simulation" in data:
            result["simulation"] = validate_config(SimulationConfig, data["simulation"])
        if "regression" in data:
            result["regression"] = validate_config(RegressionConfig, data["regression"])
        if "collateral" in data:
            result["collateral"] = validate_config(CollateralConfig, data["collateral"])

    return result


def create_default_market_config() -> MarketConfig:
    """
    Create a default EUR/USD market configuration with typical values.

    Returns
    -------
    MarketConfig
        Two-factor EUR (base) and USD models, EURUSD FX, flat-ish curves
    """
    model = HybridModelConfig(
        base_currency="EUR",
        currencies=[
            CurrencyModelConfig(
                currency="EUR",
                benchmark_tenors=[2.0, 10.0],
                mean_reversion=[0.03, 0.5],
                volatility_times=[2.0],
                volatilities=[[0.0070, 0.0065], [0.0060, 0.0055]],
                correlation_triples=[(2.0, 10.0, 0.75)],
            ),
            CurrencyModelConfig(
                currency="USD",
                benchmark_tenors=[2.0, 10.0],
                mean_reversion=[0.05, 0.6],
                volatility_times=[2.0],
                volatilities=[[0.0090, 0.0080], [0.0075, 0.0070]],
                correlation_triples=[(2.0, 10.0, 0.7)],
            ),
        ],
        fx=[FXModelConfig(currency="USD", spot=0.92, volatilities=[0.09])],
        cross_correlations=[
            CrossCorrelation(first="EUR.0", second="USD.0", value=0.5),
            CrossCorrelation(first="EUR.1", second="USD.1", value=0.5),
            CrossCorrelation(first="EUR.0", second="FX.USD", value=-0.2),
            CrossCorrelation(first="USD.0", second="FX.USD", value=0.25),
        ],
    )
    return MarketConfig(
        model=model,
        curves=[
            CurveConfig(curve_id="EUR.ESTR", tenors=[1.0, 5.0, 10.0, 30.0], rates=[0.025, 0.024, 0.026, 0.027]),
            CurveConfig(curve_id="EUR.EURIBOR6M", tenors=[1.0, 5.0, 10.0, 30.0], rates=[0.028, 0.027, 0.029, 0.030]),
            CurveConfig(curve_id="USD.SOFR", tenors=[1.0, 5.0, 10.0, 30.0], rates=[0.040, 0.037, 0.038, 0.039]),
        ],
        bindings={
            "EUR": {"": "EUR.ESTR", "ESTR": "EUR.ESTR", "EURIBOR6M": "EUR.EURIBOR6M"},
            "USD": {"": "USD.SOFR", "SOFR": "USD.SOFR"},
        },
    )
