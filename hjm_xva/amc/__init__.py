"""
American Monte Carlo regression engine.

This module provides:
- Polynomial and piecewise-polynomial regression bases
- Least-squares fitting into sealed regression functions
"""

from hjm_xva.amc.regression import (
    Basis,
    PiecewisePolynomialBasis,
    PolynomialBasis,
    RegressionFunction,
    basis_from_config,
    evaluate,
    fit,
)

__all__ = [
    "Basis",
    "PolynomialBasis",
    "PiecewisePolynomialBasis",
    "RegressionFunction",
    "fit",
    "evaluate",
    "basis_from_config",
]
