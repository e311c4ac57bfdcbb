"""
Multi-factor Gaussian HJM model for a single currency.

Separable (quasi-Gaussian / Cheyette) parameterisation with deterministic
auxiliary variance: forward-rate volatility is a sum of exponentially
decaying factor loadings, so the whole curve is driven by a d-dimensional
Markov state x(t).
"""

from dataclasses import dataclass

import numpy as np

from hjm_xva._types import FloatArray, PathArray, Year
from hjm_xva.errors import ConfigurationError, DimensionMismatchError
from hjm_xva.market.correlation import matrix_root, validate_correlation


def decay_integral(rate: float | FloatArray, tau: float | FloatArray) -> FloatArray:
    """
    Integral of exp(-rate * u) over [0, tau].

    Returns (1 - exp(-rate * tau)) / rate, with the limit tau as rate -> 0.
    """
    rate = np.asarray(rate, dtype=float)
    tau = np.asarray(tau, dtype=float)
    x = rate * tau
    small = np.abs(x) < 1e-8
    safe_rate = np.where(small, 1.0, rate)
    return np.where(small, tau * (1.0 - 0.5 * x), -np.expm1(-x) / safe_rate)


@dataclass(frozen=True, eq=False)
class CurrencyModel:
    """
    d-factor Gaussian HJM term-structure model (Andersen-Piterbarg form).

    Forward rates evolve as

        f(t, T) = f(0, T) + sum_i exp(-a_i (T - t)) [x_i(t) + sum_j y_ij(t) G_j(t, T)]

    with state dynamics under the currency's risk-neutral measure

        dx(t) = (y(t) 1 - a x(t)) dt + dW_x(t),   Cov(dW_x) = Sigma_x(t) dt
        dy(t) = (Sigma_x(t) - a y(t) - y(t) a) dt

    The factor covariance is pinned by the benchmark forwards
    f(t, t + delta_k): with H_ki = exp(-a_i delta_k),

        Sigma_x(t) = H^-1 diag(s(t)) R diag(s(t)) H^-T

    so that the benchmark forwards have volatilities s(t) and correlation R.

    Zero-coupon bonds are exponential-affine in the state:

        P(t, T) = P(0, T) / P(0, t) exp(-G(t, T).x(t) - 1/2 G'(t, T) y(t) G(t, T))
        G_i(t, T) = (1 - exp(-a_i (T - t))) / a_i

    Attributes
    ----------
    currency : str
        Currency code
    benchmark_tenors : FloatArray
        Benchmark forward tenors delta_k, one per factor
    mean_reversion : FloatArray
        Mean reversion a_i per factor (>= 0, pairwise distinct)
    volatility_times : FloatArray
        Breakpoints of the piecewise-constant volatility term structure
    volatilities : FloatArray
        Benchmark volatilities, shape (n_factors, n_pieces)
    correlation : FloatArray
        Benchmark correlation matrix R

    Example
    -------
    >>> model = CurrencyModel.single_factor("EUR", mean_reversion=0.1, volatility=0.01)
    >>> model.factor_covariance(1.0)  # short-rate variance rate sigma**2
    array([[0.0001]])
    """

    currency: str
    benchmark_tenors: FloatArray
    mean_reversion: FloatArray
    volatility_times: FloatArray
    volatilities: FloatArray
    correlation: FloatArray

    def __post_init__(self) -> None:
        """Validate parameters and precompute the benchmark loading inverse."""
        tenors = np.atleast_1d(np.array(self.benchmark_tenors, dtype=float))
        a = np.atleast_1d(np.array(self.mean_reversion, dtype=float))
        times = np.atleast_1d(np.array(self.volatility_times, dtype=float))
        vols = np.atleast_2d(np.array(self.volatilities, dtype=float))
        n = len(tenors)

        if len(a) != n or vols.shape[0] != n:
            raise DimensionMismatchError(
                f"{self.currency}: {n} tenors, {len(a)} mean reversions, "
                f"{vols.shape[0]} volatility rows"
            )
        if vols.shape[1] != len(times) + 1:
            raise DimensionMismatchError(
                f"{self.currency}: {len(times)} breakpoints need "
                f"{len(times) + 1} volatility pieces, got {vols.shape[1]}"
            )
        if not (np.all(np.isfinite(a)) and np.all(a >= 0)):
            raise ConfigurationError(f"{self.currency}: mean reversion must be finite and >= 0")
        if not (np.all(np.isfinite(vols)) and np.all(vols >= 0)):
            raise ConfigurationError(f"{self.currency}: volatilities must be finite and >= 0")
        if np.any(tenors <= 0) or np.any(np.diff(tenors) <= 0):
            raise ConfigurationError(f"{self.currency}: benchmark tenors must be increasing and > 0")
        if np.any(times <= 0) or np.any(np.diff(times) <= 0):
            raise ConfigurationError(f"{self.currency}: volatility breakpoints must be increasing and > 0")

        correlation = validate_correlation(self.correlation, f"{self.currency} benchmark")
        if correlation.shape != (n, n):
            raise DimensionMismatchError(
                f"{self.currency}: correlation must be {n}x{n}, got {correlation.shape}"
            )

        loading = np.exp(-np.outer(tenors, a))
        if np.linalg.cond(loading) > 1e12:
            raise ConfigurationError(
                f"{self.currency}: benchmark loading matrix is singular; "
                f"mean reversions must be pairwise distinct"
            )

        for arr in (tenors, a, times, vols, correlation):
            arr.flags.writeable = False
        object.__setattr__(self, "benchmark_tenors", tenors)
        object.__setattr__(self, "mean_reversion", a)
        object.__setattr__(self, "volatility_times", times)
        object.__setattr__(self, "volatilities", vols)
        object.__setattr__(self, "correlation", correlation)
        object.__setattr__(self, "_loading_inv", np.linalg.inv(loading))

    @classmethod
    def single_factor(
        cls,
        currency: str,
        mean_reversion: float,
        volatility: float,
        benchmark_tenor: float = 1.0,
    ) -> "CurrencyModel":
        """
        One-factor model whose short rate is Hull-White with the given
        mean reversion and (short-rate) volatility.
        """
        # Benchmark vol s relates to the short-rate vol via s = sigma * exp(-a delta).
        return cls(
            currency=currency,
            benchmark_tenors=np.array([benchmark_tenor]),
            mean_reversion=np.array([mean_reversion]),
            volatility_times=np.array([]),
            volatilities=np.array([[volatility * np.exp(-mean_reversion * benchmark_tenor)]]),
            correlation=np.eye(1),
        )

    @classmethod
    def from_config(cls, config: "CurrencyModelConfig") -> "CurrencyModel":  # noqa: F821
        """
        Create model from configuration object.

        Parameters
        ----------
        config : CurrencyModelConfig
            Configuration with model parameters

        Returns
        -------
        CurrencyModel
            Initialized model
        """
        from hjm_xva.market.correlation import correlation_from_triples

        if config.correlation is not None:
            correlation = np.array(config.correlation, dtype=float)
        elif config.correlation_triples is not None:
            correlation = correlation_from_triples(
                config.benchmark_tenors, config.correlation_triples
            )
        else:
            correlation = np.eye(config.n_factors)

        return cls(
            currency=config.currency,
            benchmark_tenors=np.array(config.benchmark_tenors),
            mean_reversion=np.array(config.mean_reversion),
            volatility_times=np.array(config.volatility_times),
            volatilities=np.array(config.volatilities),
            correlation=correlation,
        )

    @property
    def n_factors(self) -> int:
        """Number of factors."""
        return len(self.mean_reversion)

    def state_alias(self) -> list[str]:
        """Names of the simulated state variables of this currency."""
        return [f"{self.currency}.x{i}" for i in range(self.n_factors)] + [
            f"{self.currency}.int_x"
        ]

    def piece_index(self, t: Year) -> int:
        """Index of the volatility piece in force just after time t."""
        return int(np.searchsorted(self.volatility_times, t, side="right"))

    def benchmark_volatility(self, t: Year) -> FloatArray:
        """Benchmark forward volatilities s(t)."""
        return self.volatilities[:, self.piece_index(t)]

    def factor_loading(self, t: Year) -> FloatArray:
        """
        Map from benchmark shocks to factor shocks, H^-1 diag(s(t)).

        Benchmark shocks have correlation R; factor shocks then have
        covariance :meth:`factor_covariance`.
        """
        return self._loading_inv * self.benchmark_volatility(t)  # type: ignore[attr-defined]

    def factor_covariance(self, t: Year) -> FloatArray:
        """Instantaneous factor covariance Sigma_x(t)."""
        loading = self.factor_loading(t)
        return loading @ self.correlation @ loading.T

    def diffusion(self, t: Year) -> FloatArray:
        """Matrix root of Sigma_x(t), mapping independent shocks to dW_x."""
        return matrix_root(self.factor_covariance(t), f"{self.currency} factor covariance")

    def decay_sum(self) -> FloatArray:
        """Pairwise sums a_i + a_j."""
        a = self.mean_reversion
        return a[:, None] + a[None, :]

    def y(self, t: Year) -> FloatArray:
        """
        Deterministic auxiliary variance y(t), exact on the volatility pieces.

        y_ij(t) = integral_0^t Sigma_x,ij(u) exp(-(a_i + a_j)(t - u)) du
        """
        rates = self.decay_sum()
        y = np.zeros((self.n_factors, self.n_factors))
        knots = [0.0] + [float(s) for s in self.volatility_times if s < t] + [float(t)]
        for start, end in zip(knots[:-1], knots[1:]):
            tau = end - start
            if tau <= 0:
                continue
            y = y * np.exp(-rates * tau) + self.factor_covariance(start) * decay_integral(rates, tau)
        return y

    def conditional_covariance(self, t: Year, T: Year) -> FloatArray:
        """Cov(x(T) | x(t)) = y(T) - exp(-(a_i + a_j)(T - t)) y(t)."""
        if T <= t:
            return np.zeros((self.n_factors, self.n_factors))
        return self.y(T) - np.exp(-self.decay_sum() * (T - t)) * self.y(t)

    def drift(self, t: Year, x: PathArray) -> PathArray:
        """Risk-neutral drift y(t) 1 - a x of the factor state, shape like x."""
        return self.y(t).sum(axis=1) - self.mean_reversion * x

    def G(self, t: Year, T: Year | FloatArray) -> FloatArray:
        """
        Bond loadings G_i(t, T), shape (..., n_factors).
        """
        tau = np.maximum(np.asarray(T, dtype=float) - t, 0.0)
        return decay_integral(self.mean_reversion, tau[..., None])

    def log_bond_adjustment(self, t: Year, T: FloatArray, y: FloatArray) -> tuple[FloatArray, FloatArray]:
        """
        Loadings and convexity term of log P(t, T).

        Returns
        -------
        tuple[FloatArray, FloatArray]
            (G of shape (n_T, d), 1/2 G'yG of shape (n_T,))
        """
        g = self.G(t, np.atleast_1d(T))
        convexity = 0.5 * np.einsum("mi,ij,mj->m", g, y, g)
        return g, convexity

    def bond_price(
        self,
        t: Year,
        maturities: FloatArray,
        x: PathArray,
        y: FloatArray,
        initial_ratio: FloatArray,
    ) -> PathArray:
        """
        Zero-coupon bond prices P(t, T) along paths.

        Parameters
        ----------
        t : float
            Observation time
        maturities : FloatArray
            Bond maturities T (shape (m,))
        x : PathArray
            Factor state at t, shape (n_paths, n_factors)
        y : FloatArray
            Auxiliary variance y(t), shape (n_factors, n_factors)
        initial_ratio : FloatArray
            P(0, T) / P(0, t) from the initial curve, shape (m,)

        Returns
        -------
        PathArray
            Bond prices, shape (n_paths, m)
        """
        maturities = np.atleast_1d(np.asarray(maturities, dtype=float))
        g, convexity = self.log_bond_adjustment(t, maturities, y)
        log_p = np.log(initial_ratio)[None, :] - x @ g.T - convexity[None, :]
        return np.exp(log_p)
