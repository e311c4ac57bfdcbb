"""
Initial term structures for discounting and forecasting.

Curves are built from (tenor, zero rate) pairs supplied by the market data
provider; the engine never bootstraps them.
"""

from dataclasses import dataclass, field

import numpy as np

from hjm_xva._types import FloatArray, Year
from hjm_xva.errors import ConfigurationError


@dataclass(frozen=True, eq=False)
class DiscountCurve:
    """
    Zero-rate curve giving today's discount factors P(0, t).

    Zero rates are continuously compounded and linearly interpolated in
    tenor, with flat extrapolation at both ends. A single pair is a flat
    curve.

    Attributes
    ----------
    tenors : FloatArray
        Strictly increasing tenor points in years
    rates : FloatArray
        Zero rates corresponding to each tenor
    curve_id : str
        Identifier used by context bindings

    Example
    -------
    >>> curve = DiscountCurve.flat(0.01)
    >>> print(f"1Y DF: {curve.discount_factor(1.0):.6f}")
    1Y DF: 0.990050
    """

    tenors: FloatArray
    rates: FloatArray
    curve_id: str = field(default="")

    def __post_init__(self) -> None:
        """Validate curve inputs."""
        tenors = np.atleast_1d(np.asarray(self.tenors, dtype=float))
        rates = np.atleast_1d(np.asarray(self.rates, dtype=float))
        if len(tenors) != len(rates):
            raise ConfigurationError(
                f"Tenors and rates must have same length, "
                f"got {len(tenors)} and {len(rates)}"
            )
        if len(tenors) == 0:
            raise ConfigurationError("Curve needs at least one (tenor, rate) pair")
        if not np.all(np.diff(tenors) > 0):
            raise ConfigurationError("Tenors must be strictly increasing")
        if not (np.all(np.isfinite(tenors)) and np.all(np.isfinite(rates))):
            raise ConfigurationError(f"Curve {self.curve_id!r} has non-finite points")
        tenors.flags.writeable = False
        rates.flags.writeable = False
        object.__setattr__(self, "tenors", tenors)
        object.__setattr__(self, "rates", rates)

    @classmethod
    def flat(cls, rate: float, curve_id: str = "") -> "DiscountCurve":
        """Create a flat curve at ``rate``."""
        return cls(tenors=np.array([1.0]), rates=np.array([rate]), curve_id=curve_id)

    @classmethod
    def from_pairs(
        cls, pairs: list[tuple[float, float]], curve_id: str = ""
    ) -> "DiscountCurve":
        """Create a curve from (tenor, rate) pairs, sorted by tenor."""
        ordered = sorted(pairs)
        return cls(
            tenors=np.array([p[0] for p in ordered]),
            rates=np.array([p[1] for p in ordered]),
            curve_id=curve_id,
        )

    def zero_rate(self, t: Year | FloatArray) -> float | FloatArray:
        """
        Zero rate to time t.

        Parameters
        ----------
        t : float | FloatArray
            Time(s) in years

        Returns
        -------
        float | FloatArray
            Interpolated zero rate z(t)
        """
        return np.interp(t, self.tenors, self.rates)  # type: ignore[return-value]

    def discount_factor(
        self, t: Year | FloatArray, t_start: Year = 0.0
    ) -> float | FloatArray:
        """
        Calculate today's forward discount factor from t_start to t.

        Parameters
        ----------
        t : float | FloatArray
            End time(s) in years
        t_start : float
            Start time in years (default 0)

        Returns
        -------
        float | FloatArray
            P(0, t) / P(0, t_start); 1.0 where t <= t_start

        Notes
        -----
        P(0, t) = exp(-z(t) * t)
        """
        t = np.asarray(t, dtype=float)
        log_df = -self.zero_rate(np.maximum(t, 0.0)) * np.maximum(t, 0.0)
        log_df_start = -self.zero_rate(max(t_start, 0.0)) * max(t_start, 0.0)
        df = np.exp(np.where(t > t_start, log_df - log_df_start, 0.0))
        if df.ndim == 0:
            return float(df)
        return df

    def forward_rate(self, t1: Year, t2: Year) -> float:
        """
        Calculate continuously compounded forward rate.

        Notes
        -----
        f(t1, t2) = -[ln(P(0,t2)) - ln(P(0,t1))] / (t2 - t1)
        """
        if t2 <= t1:
            raise ConfigurationError(f"t2 ({t2}) must be greater than t1 ({t1})")

        df1 = self.discount_factor(t1)
        df2 = self.discount_factor(t2)

        return float(-np.log(df2 / df1) / (t2 - t1))

    def instantaneous_forward(self, t: Year | FloatArray, bump: float = 1e-5) -> float | FloatArray:
        """Instantaneous forward f(0, t) by central difference of log P(0, t)."""
        t = np.asarray(t, dtype=float)
        lo = np.maximum(t - bump, 0.0)
        hi = t + bump
        fwd = -(np.log(self.discount_factor(hi)) - np.log(self.discount_factor(lo))) / (hi - lo)
        if np.ndim(fwd) == 0:
            return float(fwd)
        return fwd

    @classmethod
    def from_config(cls, config: "CurveConfig") -> "DiscountCurve":  # noqa: F821
        """
        Create curve from configuration object.

        Parameters
        ----------
        config : CurveConfig
            Curve configuration

        Returns
        -------
        DiscountCurve
            Initialized curve
        """
        return cls(
            tenors=np.array(config.tenors),
            rates=np.array(config.rates),
            curve_id=config.curve_id,
        )
