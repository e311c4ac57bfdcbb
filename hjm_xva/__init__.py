"""
HJM hybrid exposure engine - Core Package.

Monte Carlo simulation of multi-factor Gaussian HJM interest-rate models
coupled with lognormal FX rates, American Monte Carlo valuation of
Bermudan options, scenario cubes, collateral simulation and exposure
analytics.

Example
-------
>>> from hjm_xva import MarketContext, SimulationConfig, create_default_market_config
>>> from hjm_xva import expected_exposure, scenarios, vanilla_swap
>>> context = MarketContext.from_config(create_default_market_config(), SimulationConfig())
>>> fixed, floating = vanilla_swap("EUR", "EURIBOR6M", 1e7, 0.025, 0.0, 5.0)
>>> cube = scenarios([fixed, floating], context)
>>> expected_exposure(cube).max()
"""

__version__ = "1.0.0"

# Core types
from hjm_xva._types import CubeArray, FloatArray, IntArray, PathArray

# Errors
from hjm_xva.errors import (
    ConfigurationError,
    DimensionMismatchError,
    HJMError,
    NotFittedError,
    NumericalError,
)

# Configuration
from hjm_xva.config import (
    CollateralConfig,
    HybridModelConfig,
    MarketConfig,
    RegressionConfig,
    SimulationConfig,
    configure_logging,
    create_default_market_config,
    load_config,
    load_model_config,
)

# Market models
from hjm_xva.market import (
    CorrelationMatrix,
    CurrencyModel,
    CurveKey,
    DiscountCurve,
    FXModel,
    HybridModel,
    MarketContext,
)

# Simulation
from hjm_xva.simulation import (
    PseudoRandomIncrements,
    Simulation,
    SobolIncrements,
    build_time_grid,
    simulate,
)

# Instruments
from hjm_xva.instruments import (
    BermudanInstrument,
    Exercise,
    FittedBermudan,
    Leg,
    cross_currency_swap,
    fixed_leg,
    floating_leg,
    optionlet_leg,
    vanilla_swap,
)

# Regression
from hjm_xva.amc import PiecewisePolynomialBasis, PolynomialBasis, basis_from_config

# Exposure
from hjm_xva.exposure import (
    ExposureProfile,
    ScenarioCube,
    effective_expected_exposure,
    expected_exposure,
    expected_negative_exposure,
    potential_future_exposure,
    scenarios,
)

# Collateral
from hjm_xva.collateral import collateralize, collateralize_from_config

__all__ = [
    # Version
    "__version__",
    # Types
    "CubeArray",
    "FloatArray",
    "IntArray",
    "PathArray",
    # Errors
    "HJMError",
    "ConfigurationError",
    "NotFittedError",
    "NumericalError",
    "DimensionMismatchError",
    # Config
    "HybridModelConfig",
    "MarketConfig",
    "SimulationConfig",
    "RegressionConfig",
    "CollateralConfig",
    "load_config",
    "load_model_config",
    "create_default_market_config",
    "configure_logging",
    # Market
    "DiscountCurve",
    "CurrencyModel",
    "FXModel",
    "CorrelationMatrix",
    "HybridModel",
    "CurveKey",
    "MarketContext",
    # Simulation
    "PseudoRandomIncrements",
    "SobolIncrements",
    "Simulation",
    "build_time_grid",
    "simulate",
    # Instruments
    "Leg",
    "fixed_leg",
    "floating_leg",
    "optionlet_leg",
    "vanilla_swap",
    "cross_currency_swap",
    "Exercise",
    "BermudanInstrument",
    "FittedBermudan",
    # Regression
    "PolynomialBasis",
    "PiecewisePolynomialBasis",
    "basis_from_config",
    # Exposure
    "ScenarioCube",
    "scenarios",
    "ExposureProfile",
    "expected_exposure",
    "expected_negative_exposure",
    "potential_future_exposure",
    "effective_expected_exposure",
    # Collateral
    "collateralize",
    "collateralize_from_config",
]
