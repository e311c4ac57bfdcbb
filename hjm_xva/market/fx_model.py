"""
Lognormal FX model for currency simulation.

The FX rate is driven by the difference of the two currencies' bank
accounts plus its own lognormal shock, so that foreign assets converted to
the base currency are martingales under the base risk-neutral measure.
"""

from dataclasses import dataclass

import numpy as np

from hjm_xva._types import FloatArray, Year
from hjm_xva.errors import ConfigurationError, DimensionMismatchError


@dataclass(frozen=True, eq=False)
class FXModel:
    """
    Lognormal FX rate with piecewise-constant volatility.

    Under the base (domestic) risk-neutral measure:
        dS/S = (r_d - r_f) dt + sigma(t) dW

    where S is quoted as base-currency units per one unit of ``currency``.

    Attributes
    ----------
    currency : str
        Foreign currency code
    spot : float
        Initial FX spot rate S(0)
    volatility_times : FloatArray
        Breakpoints of the volatility term structure
    volatilities : FloatArray
        Volatility per piece (len(volatility_times) + 1 values)

    Example
    -------
    >>> model = FXModel.constant("USD", spot=0.92, volatility=0.09)
    >>> print(f"{model.integrated_variance(2.0):.4f}")
    0.0162
    """

    currency: str
    spot: float
    volatility_times: FloatArray
    volatilities: FloatArray

    def __post_init__(self) -> None:
        """Validate model parameters."""
        times = np.atleast_1d(np.array(self.volatility_times, dtype=float))
        vols = np.atleast_1d(np.array(self.volatilities, dtype=float))
        if not (np.isfinite(self.spot) and self.spot > 0):
            raise ConfigurationError(f"FX {self.currency}: spot must be positive, got {self.spot}")
        if len(vols) != len(times) + 1:
            raise DimensionMismatchError(
                f"FX {self.currency}: {len(times)} breakpoints need "
                f"{len(times) + 1} volatility pieces, got {len(vols)}"
            )
        if not (np.all(np.isfinite(vols)) and np.all(vols >= 0)):
            raise ConfigurationError(f"FX {self.currency}: volatility must be finite and >= 0")
        if np.any(times <= 0) or np.any(np.diff(times) <= 0):
            raise ConfigurationError(f"FX {self.currency}: volatility breakpoints must be increasing and > 0")
        times.flags.writeable = False
        vols.flags.writeable = False
        object.__setattr__(self, "spot", float(self.spot))
        object.__setattr__(self, "volatility_times", times)
        object.__setattr__(self, "volatilities", vols)

    @classmethod
    def constant(cls, currency: str, spot: float, volatility: float) -> "FXModel":
        """Create a model with a single volatility piece."""
        return cls(
            currency=currency,
            spot=spot,
            volatility_times=np.array([]),
            volatilities=np.array([volatility]),
        )

    def volatility(self, t: Year) -> float:
        """Volatility in force just after time t."""
        return float(self.volatilities[np.searchsorted(self.volatility_times, t, side="right")])

    def integrated_variance(self, t: Year) -> float:
        """Integral of sigma(u)^2 over [0, t]."""
        knots = [0.0] + [float(s) for s in self.volatility_times if s < t] + [float(t)]
        total = 0.0
        for start, end in zip(knots[:-1], knots[1:]):
            total += self.volatility(start) ** 2 * (end - start)
        return total

    def forward(self, df_domestic: float | FloatArray, df_foreign: float | FloatArray) -> float | FloatArray:
        """
        FX forward from spot and discount factors to delivery.

        Notes
        -----
        F(0, T) = S(0) * P_f(0, T) / P_d(0, T)
        """
        return self.spot * np.asarray(df_foreign) / np.asarray(df_domestic)

    @classmethod
    def from_config(cls, config: "FXModelConfig") -> "FXModel":  # noqa: F821
        """
        Create model from configuration object.

        Parameters
        ----------
        config : FXModelConfig
            Configuration with model parameters

        Returns
        -------
        FXModel
            Initialized model
        """
        return cls(
            currency=config.currency,
            spot=config.spot,
            volatility_times=np.array(config.volatility_times),
            volatilities=np.array(config.volatilities),
        )
