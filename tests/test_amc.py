"""
Tests for the American Monte Carlo regression engine.
"""

import numpy as np
import pytest

from hjm_xva.amc import (
    PiecewisePolynomialBasis,
    PolynomialBasis,
    basis_from_config,
    evaluate,
    fit,
)
from hjm_xva.config import RegressionConfig
from hjm_xva.errors import ConfigurationError, DimensionMismatchError, NumericalError


class TestBases:
    """Tests for regression bases."""

    def test_polynomial_terms(self) -> None:
        """Two variables to degree two give six monomials."""
        design = PolynomialBasis(2).design(np.array([[1.0, 2.0], [3.0, 4.0]]))
        assert design.shape == (2, 6)
        np.testing.assert_allclose(design[0], [1.0, 1.0, 2.0, 1.0, 2.0, 4.0])

    def test_piecewise_terms(self) -> None:
        """Linear pieces per breakpoint per variable."""
        basis = PiecewisePolynomialBasis((-1.0, 1.0), degree=1)
        design = basis.design(np.array([[0.0], [2.0]]))
        np.testing.assert_allclose(design, [[1.0, 0.0, 1.0, 0.0], [1.0, 2.0, 3.0, 1.0]])

    def test_invalid_breakpoints(self) -> None:
        """Breakpoints must be given and increasing."""
        with pytest.raises(ConfigurationError):
            PiecewisePolynomialBasis(())
        with pytest.raises(ConfigurationError):
            PiecewisePolynomialBasis((1.0, 0.0))

    def test_from_config(self) -> None:
        """Configured basis type and degree are used."""
        assert basis_from_config(RegressionConfig(degree=3)) == PolynomialBasis(3)
        basis = basis_from_config(RegressionConfig(basis="piecewise", breakpoints=[0.0], degree=1))
        assert isinstance(basis, PiecewisePolynomialBasis)


class TestFit:
    """Tests for least-squares fitting."""

    def test_exact_polynomial(self) -> None:
        """A quadratic is recovered exactly by a degree-2 basis."""
        x = np.linspace(-3.0, 5.0, 200)
        y = 1.0 + 2.0 * x + 3.0 * x**2
        fn = fit(PolynomialBasis(2), x, y)
        np.testing.assert_allclose(evaluate(fn, np.array([0.0, 10.0])), [1.0, 321.0], rtol=1e-9)
        np.testing.assert_allclose(fn(x), y, rtol=1e-9)

    def test_piecewise_hockey_stick(self) -> None:
        """max(x - mean, 0) is exact with a knot at zero."""
        x = np.linspace(-1.0, 1.0, 101)
        fn = fit(PiecewisePolynomialBasis((0.0,), degree=1), x, np.maximum(x, 0.0))
        np.testing.assert_allclose(fn(np.array([-0.5, 0.25])), [0.0, 0.25], atol=1e-12)

    def test_two_regressors(self) -> None:
        """Cross terms are fitted."""
        rng = np.random.default_rng(0)
        x = rng.standard_normal((500, 2))
        y = x[:, 0] * x[:, 1] - x[:, 1]
        fn = fit(PolynomialBasis(2), x, y)
        assert fn.n_variables == 2
        np.testing.assert_allclose(fn(np.array([[1.0, 2.0]])), [0.0], atol=1e-9)

    def test_constant_regressor_gives_mean(self) -> None:
        """At time zero every path shares the regressor: the fit is the mean."""
        y = np.array([1.0, 2.0, 6.0])
        fn = fit(PolynomialBasis(3), np.full(3, 5.0), y)
        assert fn.active == (False,)
        np.testing.assert_allclose(fn(np.array([5.0, 7.0])), 3.0)

    def test_coefficients_read_only(self) -> None:
        """Fitted functions are sealed."""
        fn = fit(PolynomialBasis(1), np.arange(5.0), np.arange(5.0))
        with pytest.raises(ValueError):
            fn.coefficients[0] = 1.0

    def test_rank_deficient(self) -> None:
        """Too few distinct samples for the basis is a numerical error."""
        with pytest.raises(NumericalError, match="rank deficient"):
            fit(PolynomialBasis(2), np.array([0.0, 1.0, 0.0, 1.0]), np.arange(4.0))

    def test_non_finite_inputs(self) -> None:
        """NaN regressors or targets are rejected."""
        with pytest.raises(NumericalError):
            fit(PolynomialBasis(1), np.array([0.0, np.nan, 1.0]), np.zeros(3))
        with pytest.raises(NumericalError):
            fit(PolynomialBasis(1), np.arange(3.0), np.array([0.0, np.inf, 1.0]))

    def test_shape_mismatch(self) -> None:
        """Sample counts must agree; evaluation needs the fitted width."""
        with pytest.raises(DimensionMismatchError):
            fit(PolynomialBasis(1), np.arange(4.0), np.arange(3.0))
        fn = fit(PolynomialBasis(1), np.arange(4.0), np.arange(4.0))
        with pytest.raises(DimensionMismatchError):
            evaluate(fn, np.zeros((2, 2)))
