"""
Configuration module for the HJM hybrid simulation engine.

Provides Pydantic-validated configuration models, YAML loading utilities
and logging setup for model, market, simulation, regression and collateral
parameters.
"""

from hjm_xva.config.loader import (
    create_default_market_config,
    load_config,
    load_market_config,
    load_model_config,
)
from hjm_xva.config.log import configure_logging
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

__all__ = [
    # Models
    "CurrencyModelConfig",
    "FXModelConfig",
    "CrossCorrelation",
    "HybridModelConfig",
    "CurveConfig",
    "MarketConfig",
    "SimulationConfig",
    "RegressionConfig",
    "CollateralConfig",
    "validate_config",
    # Loaders
    "load_config",
    "load_market_config",
    "load_model_config",
    "create_default_market_config",
    # Logging
    "configure_logging",
]
