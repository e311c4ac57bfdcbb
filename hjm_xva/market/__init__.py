"""
Market models and curve handling for the hybrid simulation engine.

This module provides:
- Zero-rate discount curves
- Multi-factor Gaussian HJM currency models
- Lognormal FX models
- Global driver correlation with matrix roots
- The cross-currency hybrid model and its exact transition moments
- The market context binding curve keys to simulated state
"""

from hjm_xva.market.context import CurveKey, MarketContext
from hjm_xva.market.correlation import (
    CorrelationMatrix,
    correlation_from_triples,
    matrix_root,
    validate_correlation,
)
from hjm_xva.market.curve import DiscountCurve
from hjm_xva.market.fx_model import FXModel
from hjm_xva.market.hjm_model import CurrencyModel, decay_integral
from hjm_xva.market.hybrid import HybridModel, StepMoments

__all__ = [
    "DiscountCurve",
    "CurrencyModel",
    "decay_integral",
    "FXModel",
    "CorrelationMatrix",
    "correlation_from_triples",
    "matrix_root",
    "validate_correlation",
    "HybridModel",
    "StepMoments",
    "CurveKey",
    "MarketContext",
]
