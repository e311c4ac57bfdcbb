"""
Correlation handling for multi-factor, multi-asset simulation.

Provides validated correlation matrices over named drivers and the matrix
roots used to turn independent standard normals into correlated shocks.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np

from hjm_xva._types import FloatArray
from hjm_xva.errors import ConfigurationError, DimensionMismatchError, NumericalError

PSD_TOLERANCE = 1e-10


def validate_correlation(matrix: FloatArray, name: str = "correlation") -> FloatArray:
    """
    Check that ``matrix`` is a valid correlation matrix.

    Parameters
    ----------
    matrix : FloatArray
        Candidate correlation matrix
    name : str
        Label used in error messages

    Returns
    -------
    FloatArray
        The matrix as a float array

    Raises
    ------
    ConfigurationError
        If the matrix is not square, symmetric, unit-diagonal, bounded
        by [-1, 1] or positive semi-definite
    """
    matrix = np.array(matrix, dtype=float)
    if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
        raise ConfigurationError(f"{name} matrix must be square, got shape {matrix.shape}")
    if not np.all(np.isfinite(matrix)):
        raise ConfigurationError(f"{name} matrix has non-finite entries")
    if not np.allclose(matrix, matrix.T, atol=1e-12):
        raise ConfigurationError(f"{name} matrix is not symmetric")
    if not np.allclose(np.diag(matrix), 1.0, atol=1e-12):
        raise ConfigurationError(f"{name} matrix must have a unit diagonal")
    if np.any(np.abs(matrix) > 1.0 + 1e-12):
        raise ConfigurationError(f"{name} matrix has entries outside [-1, 1]")

    eigenvalues = np.linalg.eigvalsh(matrix)
    if np.any(eigenvalues < -PSD_TOLERANCE):
        raise ConfigurationError(
            f"{name} matrix is not positive semi-definite. "
            f"Eigenvalues: {eigenvalues}. "
            f"Check that correlations are consistent."
        )
    return matrix


def correlation_from_triples(
    tenors: Sequence[float],
    triples: Sequence[tuple[float, float, float]],
) -> FloatArray:
    """
    Build a benchmark correlation matrix from (tenor1, tenor2, rho) triples.

    Pairs not listed are uncorrelated; the diagonal is one.

    Raises
    ------
    ConfigurationError
        If a triple references an unknown tenor or contradicts another
    """
    index = {float(t): k for k, t in enumerate(tenors)}
    matrix = np.eye(len(tenors))
    seen: dict[tuple[int, int], float] = {}
    for t1, t2, rho in triples:
        if float(t1) not in index or float(t2) not in index:
            raise ConfigurationError(
                f"Correlation triple ({t1}, {t2}) references a tenor "
                f"outside {list(tenors)}"
            )
        i, j = index[float(t1)], index[float(t2)]
        if i == j:
            if abs(rho - 1.0) > 1e-12:
                raise ConfigurationError(f"Self-correlation of tenor {t1} must be 1")
            continue
        key = (min(i, j), max(i, j))
        if key in seen and abs(seen[key] - rho) > 1e-12:
            raise ConfigurationError(f"Conflicting correlations for tenors ({t1}, {t2})")
        seen[key] = rho
        matrix[i, j] = matrix[j, i] = rho
    return matrix


def matrix_root(covariance: FloatArray, name: str = "covariance") -> FloatArray:
    """
    Return a lower-triangular-equivalent root ``L`` with ``L @ L.T == covariance``.

    Uses a Cholesky factorisation when the matrix is positive definite and a
    symmetric eigen-decomposition otherwise, so degenerate (zero-volatility)
    directions are handled without jitter.

    Raises
    ------
    NumericalError
        If the matrix has non-finite entries or a materially negative eigenvalue
    """
    covariance = np.asarray(covariance, dtype=float)
    if not np.all(np.isfinite(covariance)):
        raise NumericalError(f"{name} matrix has non-finite entries")
    if covariance.size == 0:
        return covariance.copy()

    sym = 0.5 * (covariance + covariance.T)
    try:
        return np.linalg.cholesky(sym)
    except np.linalg.LinAlgError:
        pass

    eigenvalues, eigenvectors = np.linalg.eigh(sym)
    scale = max(float(np.max(np.abs(eigenvalues))), 1.0e-300)
    if np.any(eigenvalues < -1e-9 * scale):
        raise NumericalError(
            f"{name} matrix has negative variance direction(s): "
            f"min eigenvalue {eigenvalues.min():.3e}"
        )
    return eigenvectors * np.sqrt(np.clip(eigenvalues, 0.0, None))


@dataclass
class CorrelationMatrix:
    """
    Correlation structure over named simulation drivers.

    Drivers are benchmark forward rates of each currency (``"EUR.0"``) and
    FX rates (``"FX.USD"``). The Cholesky (or equivalent) factor transforms
    independent standard normals into correlated ones:

        Z_correlated = Z_independent @ L.T

    Attributes
    ----------
    names : list[str]
        Driver names, in matrix order
    matrix : FloatArray
        Correlation matrix

    Example
    -------
    >>> corr = CorrelationMatrix(["EUR.0", "FX.USD"], np.array([[1.0, -0.3], [-0.3, 1.0]]))
    >>> z_corr = corr.correlate(np.random.default_rng(1).standard_normal((1000, 2)))
    """

    names: list[str]
    matrix: FloatArray
    _cholesky: FloatArray = field(init=False, repr=False)

    def __post_init__(self) -> None:
        """Validate correlations and compute the matrix root."""
        self.matrix = validate_correlation(self.matrix, "driver correlation")
        if len(self.names) != self.matrix.shape[0]:
            raise DimensionMismatchError(
                f"{len(self.names)} driver names for a "
                f"{self.matrix.shape[0]}x{self.matrix.shape[0]} matrix"
            )
        if len(set(self.names)) != len(self.names):
            raise ConfigurationError(f"Duplicate driver names: {self.names}")
        self.matrix.flags.writeable = False
        self._cholesky = matrix_root(self.matrix, "driver correlation")

    @property
    def correlation_matrix(self) -> FloatArray:
        """Return a copy of the correlation matrix."""
        return np.array(self.matrix)

    def index(self, name: str) -> int:
        """Position of a driver."""
        try:
            return self.names.index(name)
        except ValueError:
            raise ConfigurationError(f"Unknown driver {name!r}; known: {self.names}") from None

    def correlate(self, z_independent: FloatArray) -> FloatArray:
        """
        Transform independent normals to correlated normals.

        Parameters
        ----------
        z_independent : FloatArray
            Array of shape (n_samples, n_drivers) of independent N(0,1)

        Returns
        -------
        FloatArray
            Correlated normal variables
        """
        if z_independent.shape[-1] != len(self.names):
            raise DimensionMismatchError(
                f"Expected {len(self.names)} columns, got {z_independent.shape[-1]}"
            )
        return z_independent @ self._cholesky.T

    @classmethod
    def from_config(cls, config: "HybridModelConfig") -> "CorrelationMatrix":  # noqa: F821
        """
        Assemble the global driver correlation of a hybrid model.

        Intra-currency blocks come from each currency's benchmark correlation;
        cross-asset entries come from ``cross_correlations``.

        Raises
        ------
        ConfigurationError
            If a cross correlation names an unknown driver or lands inside a
            currency block, or if the assembled matrix is not PSD
        """
        names: list[str] = []
        blocks: list[tuple[int, FloatArray]] = []
        for ccy in config.currencies:
            if ccy.correlation is not None:
                block = np.array(ccy.correlation, dtype=float)
            elif ccy.correlation_triples is not None:
                block = correlation_from_triples(ccy.benchmark_tenors, ccy.correlation_triples)
            else:
                block = np.eye(ccy.n_factors)
            blocks.append((len(names), validate_correlation(block, f"{ccy.currency} benchmark")))
            names.extend(f"{ccy.currency}.{k}" for k in range(ccy.n_factors))
        names.extend(f"FX.{fx.currency}" for fx in config.fx)

        matrix = np.eye(len(names))
        for start, block in blocks:
            n = block.shape[0]
            matrix[start : start + n, start : start + n] = block

        position = {name: k for k, name in enumerate(names)}
        for entry in config.cross_correlations:
            for driver in (entry.first, entry.second):
                if driver not in position:
                    raise ConfigurationError(
                        f"Cross correlation references unknown driver {driver!r}; "
                        f"known: {names}"
                    )
            i, j = position[entry.first], position[entry.second]
            if i == j:
                raise ConfigurationError(f"Cross correlation of {entry.first} with itself")
            if entry.first.split(".")[0] == entry.second.split(".")[0] != "FX":
                raise ConfigurationError(
                    f"Use the currency correlation for {entry.first}/{entry.second}"
                )
            matrix[i, j] = matrix[j, i] = entry.value

        return cls(names=names, matrix=matrix)
