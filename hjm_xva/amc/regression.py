"""
Least-squares regression of continuation values for American Monte Carlo.

Regressors are standardised per variable before the basis is applied, so
polynomial terms stay well conditioned whatever the scale of the inputs.
Regressors that are constant across paths (e.g. at time zero) are dropped,
which reduces the fit to the sample mean.
"""

import itertools
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

import numpy as np

from hjm_xva._types import FloatArray
from hjm_xva.errors import ConfigurationError, DimensionMismatchError, NumericalError

logger = logging.getLogger(__name__)


class Basis(Protocol):
    """Regression basis acting on standardised regressors."""

    def design(self, z: FloatArray) -> FloatArray:
        """Design matrix of shape (n_samples, n_terms) for z of shape (n_samples, k)."""
        ...


@dataclass(frozen=True)
class PolynomialBasis:
    """
    All monomials of the regressors up to a total degree.

    Example
    -------
    >>> PolynomialBasis(2).design(np.array([[1.0, 2.0]]))
    array([[1., 1., 2., 1., 2., 4.]])
    """

    degree: int = 2

    def __post_init__(self) -> None:
        if self.degree < 0:
            raise ConfigurationError(f"Degree must be >= 0, got {self.degree}")

    def design(self, z: FloatArray) -> FloatArray:
        n, k = z.shape
        columns = [np.ones(n)]
        for total in range(1, self.degree + 1):
            for combo in itertools.combinations_with_replacement(range(k), total):
                columns.append(np.prod(z[:, list(combo)], axis=1))
        return np.column_stack(columns)


@dataclass(frozen=True)
class PiecewisePolynomialBasis:
    """
    Additive truncated-power spline basis.

    For each regressor: z, ..., z^degree and (z - b)_+^degree for every
    breakpoint b, plus a common constant. Breakpoints are in standardised
    units (0 is the sample mean, 1 one standard deviation above it).
    """

    breakpoints: tuple[float, ...]
    degree: int = 1

    def __post_init__(self) -> None:
        knots = tuple(float(b) for b in self.breakpoints)
        if not knots:
            raise ConfigurationError("Piecewise basis needs at least one breakpoint")
        if any(b2 <= b1 for b1, b2 in zip(knots, knots[1:])):
            raise ConfigurationError(f"Breakpoints must be strictly increasing, got {knots}")
        if self.degree < 1:
            raise ConfigurationError(f"Piecewise degree must be >= 1, got {self.degree}")
        object.__setattr__(self, "breakpoints", knots)

    def design(self, z: FloatArray) -> FloatArray:
        n, k = z.shape
        columns = [np.ones(n)]
        for j in range(k):
            for p in range(1, self.degree + 1):
                columns.append(z[:, j] ** p)
            for b in self.breakpoints:
                columns.append(np.maximum(z[:, j] - b, 0.0) ** self.degree)
        return np.column_stack(columns)


@dataclass(frozen=True, eq=False)
class RegressionFunction:
    """
    Sealed result of a regression fit.

    Attributes
    ----------
    basis : Basis
        Basis used for the fit
    center, scale : FloatArray
        Standardisation of the active regressors
    active : tuple[bool, ...]
        Which input regressors vary across the fitting sample
    coefficients : FloatArray
        Read-only least-squares coefficients
    """

    basis: Basis
    center: FloatArray
    scale: FloatArray
    active: tuple[bool, ...]
    coefficients: FloatArray

    def __post_init__(self) -> None:
        for arr in (self.center, self.scale, self.coefficients):
            arr.flags.writeable = False

    @property
    def n_variables(self) -> int:
        """Number of regressors expected by :func:`evaluate`."""
        return len(self.active)

    def __call__(self, regression_variables: FloatArray) -> FloatArray:
        return evaluate(self, regression_variables)


def _as_matrix(regression_variables: FloatArray | Sequence[float]) -> FloatArray:
    x = np.asarray(regression_variables, dtype=float)
    if x.ndim == 1:
        x = x[:, None]
    if x.ndim != 2:
        raise DimensionMismatchError(f"Regressors must be 1-d or 2-d, got shape {x.shape}")
    return x


def fit(
    basis: Basis,
    regression_variables: FloatArray,
    continuation_values: FloatArray,
) -> RegressionFunction:
    """
    Fit continuation values on the regression variables.

    Parameters
    ----------
    basis : Basis
        Polynomial or piecewise-polynomial basis
    regression_variables : FloatArray
        Regressors, shape (n_samples,) or (n_samples, k)
    continuation_values : FloatArray
        Targets, shape (n_samples,)

    Returns
    -------
    RegressionFunction
        Sealed fitted function

    Raises
    ------
    DimensionMismatchError
        If sample counts differ
    NumericalError
        If inputs or coefficients are non-finite or the design matrix is
        rank deficient
    """
    x = _as_matrix(regression_variables)
    y = np.asarray(continuation_values, dtype=float)
    if y.ndim != 1 or len(y) != x.shape[0]:
        raise DimensionMismatchError(
            f"{x.shape[0]} regressor rows for {y.shape} continuation values"
        )
    if not (np.all(np.isfinite(x)) and np.all(np.isfinite(y))):
        raise NumericalError("Regression inputs contain non-finite values")

    center = x.mean(axis=0)
    spread = x.std(axis=0)
    active = spread > 1e-12 * (1.0 + np.abs(center))
    center, scale = center[active], spread[active]
    design = basis.design((x[:, active] - center) / scale)

    coefficients, _, rank, _ = np.linalg.lstsq(design, y, rcond=None)
    if rank < design.shape[1]:
        raise NumericalError(
            f"Regression basis is rank deficient ({rank} of {design.shape[1]} terms, "
            f"{len(y)} samples)"
        )
    if not np.all(np.isfinite(coefficients)):
        raise NumericalError("Regression produced non-finite coefficients")

    logger.debug("Fitted %d terms on %d samples", design.shape[1], len(y))
    return RegressionFunction(
        basis=basis,
        center=center,
        scale=scale,
        active=tuple(bool(a) for a in active),
        coefficients=coefficients,
    )


def evaluate(fn: RegressionFunction, regression_variables: FloatArray) -> FloatArray:
    """
    Estimated continuation values for new regressors.

    Raises
    ------
    DimensionMismatchError
        If the number of regressors differs from the fit
    """
    x = _as_matrix(regression_variables)
    if x.shape[1] != fn.n_variables:
        raise DimensionMismatchError(
            f"Function was fitted on {fn.n_variables} regressors, got {x.shape[1]}"
        )
    z = (x[:, np.array(fn.active, dtype=bool)] - fn.center) / fn.scale
    return fn.basis.design(z) @ fn.coefficients


def basis_from_config(config: "RegressionConfig") -> Basis:  # noqa: F821
    """
    Build the basis named by a regression configuration.

    Parameters
    ----------
    config : RegressionConfig
        Regression configuration

    Returns
    -------
    Basis
        Polynomial or piecewise-polynomial basis
    """
    if config.basis == "piecewise":
        return PiecewisePolynomialBasis(tuple(config.breakpoints), max(config.degree, 1))
    return PolynomialBasis(config.degree)
