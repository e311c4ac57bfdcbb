"""
Cross-currency IR/FX hybrid model.

Couples one Gaussian HJM model per currency with one lognormal FX rate per
foreign currency under the base-currency risk-neutral measure, and provides
the exact Gaussian transition moments used by the path simulator.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
from scipy.linalg import expm

from hjm_xva._types import FloatArray, Year
from hjm_xva.errors import ConfigurationError, DimensionMismatchError
from hjm_xva.market.correlation import CorrelationMatrix
from hjm_xva.market.fx_model import FXModel
from hjm_xva.market.hjm_model import CurrencyModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepMoments:
    """
    Exact transition of the hybrid state over one step.

    Attributes
    ----------
    mean_map : FloatArray
        Propagator of the deterministic (augmented) mean vector
    state_map : FloatArray
        Propagator of the zero-mean stochastic block
    covariance : FloatArray
        Covariance of the stochastic block increment over the step
    """

    mean_map: FloatArray
    state_map: FloatArray
    covariance: FloatArray


class HybridModel:
    """
    Multi-currency Gaussian HJM model with lognormal FX rates.

    The simulated state is split into a deterministic mean and a zero-mean
    Gaussian block. Per currency the stochastic block holds the factor
    deviations x~ and their time integrals I~; per FX rate it holds the
    Brownian accumulator w~. The mean carries the HJM drift y(t) 1, the
    quanto drift of foreign factors, and the -1/2 sigma_S^2 FX drift. Both
    blocks are linear with piecewise-constant coefficients, so each step is
    propagated exactly with matrix exponentials.

    Observable state (see :meth:`state_alias`) per currency is ``x_i`` and
    ``int_x = sum_i integral_0^t x_i``; per FX rate it is ``w``, with

        ln S(t) = ln S0 + ln P_f(0,t) - ln P_d(0,t) + int_x_d - int_x_f + w(t)

    Parameters
    ----------
    base_currency : str
        Pricing currency
    currency_models : Sequence[CurrencyModel]
        Term-structure model per currency, base included
    fx_models : Sequence[FXModel]
        One FX model per foreign currency
    correlation : CorrelationMatrix | None
        Global driver correlation over ``"<CCY>.<k>"`` and ``"FX.<CCY>"``
        drivers. Defaults to the currency blocks with no cross correlation.

    Example
    -------
    >>> eur = CurrencyModel.single_factor("EUR", 0.05, 0.01)
    >>> model = HybridModel("EUR", [eur])
    >>> model.state_alias()
    ['EUR.x0', 'EUR.int_x']
    """

    def __init__(
        self,
        base_currency: str,
        currency_models: Sequence[CurrencyModel],
        fx_models: Sequence[FXModel] = (),
        correlation: CorrelationMatrix | None = None,
    ) -> None:
        by_code = {m.currency: m for m in currency_models}
        if len(by_code) != len(currency_models):
            raise ConfigurationError("Duplicate currency models")
        if base_currency not in by_code:
            raise ConfigurationError(f"Base currency {base_currency} has no model")

        fx_by_code = {f.currency: f for f in fx_models}
        foreign = [m.currency for m in currency_models if m.currency != base_currency]
        if len(fx_by_code) != len(fx_models) or set(fx_by_code) != set(foreign):
            raise ConfigurationError(
                f"FX models {sorted(fx_by_code)} do not match foreign currencies {sorted(foreign)}"
            )

        self.base_currency = base_currency
        self.currencies: list[str] = [base_currency] + foreign
        self._models = by_code
        self._fx = fx_by_code
        self.correlation = self._align_correlation(correlation)
        self._build_layout()

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @property
    def driver_names(self) -> list[str]:
        """Driver names in simulation order."""
        names = [f"{c}.{k}" for c in self.currencies for k in range(self._models[c].n_factors)]
        return names + [f"FX.{c}" for c in self.currencies[1:]]

    def _align_correlation(self, correlation: CorrelationMatrix | None) -> FloatArray:
        names = self.driver_names
        if correlation is None:
            matrix = np.eye(len(names))
            start = 0
            for code in self.currencies:
                block = self._models[code].correlation
                n = block.shape[0]
                matrix[start : start + n, start : start + n] = block
                start += n
            return matrix

        if sorted(correlation.names) != sorted(names):
            raise ConfigurationError(
                f"Correlation drivers {correlation.names} do not match model drivers {names}"
            )
        order = [correlation.index(name) for name in names]
        matrix = correlation.correlation_matrix[np.ix_(order, order)]

        start = 0
        for code in self.currencies:
            block = self._models[code].correlation
            n = block.shape[0]
            if not np.allclose(matrix[start : start + n, start : start + n], block, atol=1e-10):
                raise ConfigurationError(
                    f"Global correlation block for {code} disagrees with its benchmark correlation"
                )
            start += n
        return matrix

    def _build_layout(self) -> None:
        # Offsets into the stochastic block, the augmented mean and the drivers.
        self._stoch_offset: dict[str, int] = {}
        self._mean_offset: dict[str, int] = {}
        self._driver_offset: dict[str, int] = {}
        stoch = mean = driver = 0
        for code in self.currencies:
            d = self._models[code].n_factors
            self._stoch_offset[code] = stoch
            self._mean_offset[code] = mean
            self._driver_offset[code] = driver
            stoch += 2 * d
            mean += 2 * d + d * d
            driver += d
        self._fx_stoch: dict[str, int] = {}
        self._fx_mean: dict[str, int] = {}
        self._fx_driver: dict[str, int] = {}
        for code in self.currencies[1:]:
            self._fx_stoch[code] = stoch
            self._fx_mean[code] = mean
            self._fx_driver[code] = driver
            stoch += 1
            mean += 1
            driver += 1
        self.n_stochastic = stoch
        self.n_mean = mean + 1
        self._const = mean
        self.n_drivers = driver

        n_obs = len(self.state_alias())
        self._obs_mean = np.zeros((n_obs, self.n_mean))
        self._obs_stoch = np.zeros((n_obs, self.n_stochastic))
        row = 0
        for code in self.currencies:
            d = self._models[code].n_factors
            s, m = self._stoch_offset[code], self._mean_offset[code]
            for i in range(d):
                self._obs_mean[row + i, m + i] = 1.0
                self._obs_stoch[row + i, s + i] = 1.0
            self._obs_mean[row + d, m + d : m + 2 * d] = 1.0
            self._obs_stoch[row + d, s + d : s + 2 * d] = 1.0
            row += d + 1
        for code in self.currencies[1:]:
            self._obs_mean[row, self._fx_mean[code]] = 1.0
            self._obs_stoch[row, self._fx_stoch[code]] = 1.0
            row += 1

        # Stochastic generator: dx~ = -a x~ dt + dW, dI~ = x~ dt, dw~ = dW_S.
        self._stoch_generator = np.zeros((self.n_stochastic, self.n_stochastic))
        for code in self.currencies:
            model = self._models[code]
            d = model.n_factors
            s = self._stoch_offset[code]
            for i in range(d):
                self._stoch_generator[s + i, s + i] = -model.mean_reversion[i]
                self._stoch_generator[s + d + i, s + i] = 1.0

    @classmethod
    def from_config(cls, config: "HybridModelConfig") -> "HybridModel":  # noqa: F821
        """
        Create model from configuration object.

        Parameters
        ----------
        config : HybridModelConfig
            Hybrid model configuration

        Returns
        -------
        HybridModel
            Initialized model
        """
        return cls(
            base_currency=config.base_currency,
            currency_models=[CurrencyModel.from_config(c) for c in config.currencies],
            fx_models=[FXModel.from_config(f) for f in config.fx],
            correlation=CorrelationMatrix.from_config(config),
        )

    # ------------------------------------------------------------------
    # Model inspection
    # ------------------------------------------------------------------

    def currency_model(self, currency: str) -> CurrencyModel:
        """Term-structure model of ``currency``."""
        try:
            return self._models[currency]
        except KeyError:
            raise ConfigurationError(
                f"Currency {currency!r} is not modelled; known: {self.currencies}"
            ) from None

    def fx_model(self, currency: str) -> FXModel:
        """FX model of a foreign ``currency``."""
        try:
            return self._fx[currency]
        except KeyError:
            raise ConfigurationError(
                f"No FX model for {currency!r}; foreign currencies: {self.currencies[1:]}"
            ) from None

    def state_alias(self) -> list[str]:
        """Ordered names of the observable state variables."""
        names: list[str] = []
        for code in self.currencies:
            names.extend(self._models[code].state_alias())
        names.extend(f"FX.{code}" for code in self.currencies[1:])
        return names

    @property
    def breakpoints(self) -> FloatArray:
        """Sorted union of every volatility breakpoint in the model."""
        times: set[float] = set()
        for model in self._models.values():
            times.update(float(t) for t in model.volatility_times)
        for fx in self._fx.values():
            times.update(float(t) for t in fx.volatility_times)
        return np.array(sorted(times))

    def loading(self, t: Year) -> FloatArray:
        """
        Map from driver shocks to stochastic-block shocks at time t.

        Returns
        -------
        FloatArray
            Matrix of shape (n_stochastic, n_drivers)
        """
        loading = np.zeros((self.n_stochastic, self.n_drivers))
        for code in self.currencies:
            model = self._models[code]
            d = model.n_factors
            s, p = self._stoch_offset[code], self._driver_offset[code]
            loading[s : s + d, p : p + d] = model.factor_loading(t)
        for code in self.currencies[1:]:
            loading[self._fx_stoch[code], self._fx_driver[code]] = self._fx[code].volatility(t)
        return loading

    def instantaneous_covariance(self, t: Year) -> FloatArray:
        """Covariance rate of the stochastic block at time t."""
        loading = self.loading(t)
        return loading @ self.correlation @ loading.T

    def quanto_drift(self, currency: str, t: Year) -> FloatArray:
        """
        Drift adjustment of a foreign currency's factors under the base measure.

        Equals -Cov(dx_f, d ln S_f) / dt; zero for the base currency.
        """
        model = self.currency_model(currency)
        if currency == self.base_currency:
            return np.zeros(model.n_factors)
        cov = self.instantaneous_covariance(t)
        s = self._stoch_offset[currency]
        return -cov[s : s + model.n_factors, self._fx_stoch[currency]]

    # ------------------------------------------------------------------
    # Transition moments
    # ------------------------------------------------------------------

    def mean_generator(self, t: Year) -> FloatArray:
        """Linear generator of the augmented mean vector, constant on a vol piece."""
        gen = np.zeros((self.n_mean, self.n_mean))
        cov = self.instantaneous_covariance(t)
        for code in self.currencies:
            model = self._models[code]
            d = model.n_factors
            m = self._mean_offset[code]
            s = self._stoch_offset[code]
            a = model.mean_reversion
            quanto = self.quanto_drift(code, t)
            sigma_x = cov[s : s + d, s : s + d]
            y0 = m + 2 * d
            for i in range(d):
                gen[m + i, m + i] = -a[i]
                gen[m + i, y0 + i * d : y0 + (i + 1) * d] = 1.0
                gen[m + i, self._const] = quanto[i]
                gen[m + d + i, m + i] = 1.0
                for j in range(d):
                    gen[y0 + i * d + j, y0 + i * d + j] = -(a[i] + a[j])
                    gen[y0 + i * d + j, self._const] = sigma_x[i, j]
        for code in self.currencies[1:]:
            gen[self._fx_mean[code], self._const] = -0.5 * self._fx[code].volatility(t) ** 2
        return gen

    def initial_mean(self) -> FloatArray:
        """Augmented mean vector at time zero."""
        mean = np.zeros(self.n_mean)
        mean[self._const] = 1.0
        return mean

    def step_moments(self, start: Year, end: Year) -> StepMoments:
        """
        Exact transition over [start, end] with coefficients frozen at ``start``.

        The stochastic covariance uses the Van Loan construction: with
        C = [[-A, Q], [0, A']] tau and F = expm(C),

            Phi = F22',   Cov = Phi F12

        Raises
        ------
        ConfigurationError
            If the step is empty or reversed
        """
        tau = end - start
        if not tau > 0:
            raise ConfigurationError(f"Step [{start}, {end}] must have positive length")

        k = self.n_stochastic
        a = self._stoch_generator
        q = self.instantaneous_covariance(start)
        block = np.zeros((2 * k, 2 * k))
        block[:k, :k] = -a
        block[:k, k:] = q
        block[k:, k:] = a.T
        f = expm(block * tau)
        state_map = f[k:, k:].T
        covariance = state_map @ f[:k, k:]
        covariance = 0.5 * (covariance + covariance.T)

        mean_map = expm(self.mean_generator(start) * tau)
        return StepMoments(mean_map=mean_map, state_map=state_map, covariance=covariance)

    def observe(self, mean: FloatArray, stochastic: FloatArray) -> FloatArray:
        """
        Observable state from the augmented mean and stochastic block.

        Parameters
        ----------
        mean : FloatArray
            Augmented mean vector, shape (n_mean,)
        stochastic : FloatArray
            Stochastic block per path, shape (n_paths, n_stochastic)

        Returns
        -------
        FloatArray
            Observable state, shape (n_states, n_paths)
        """
        if stochastic.shape[-1] != self.n_stochastic:
            raise DimensionMismatchError(
                f"Expected {self.n_stochastic} stochastic components, got {stochastic.shape[-1]}"
            )
        return (self._obs_mean @ mean)[:, None] + self._obs_stoch @ stochastic.T
