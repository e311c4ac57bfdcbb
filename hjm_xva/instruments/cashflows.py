"""
Cash-flow variants and their path-wise amounts.

Every cash flow is one case of a closed set (fixed coupon, floating coupon,
optionlet, notional exchange). Amounts are computed by a single dispatch on
:class:`CashFlowKind` and are the expected payment under the payment
forward measure given the simulated state at the valuation time; once a
rate has fixed the realised payment is used.
"""

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, TypeAlias

import numpy as np
from scipy.stats import norm

from hjm_xva._types import FloatArray, PathArray, Rate, Year
from hjm_xva.errors import ConfigurationError
from hjm_xva.market.context import CurveKey, MarketContext, Paths

FIXING_TOLERANCE = 1e-9


class CashFlowKind(Enum):
    """Enumeration of supported cash-flow kinds."""

    FIXED = "fixed_coupon"
    FLOATING = "floating_coupon"
    OPTIONLET = "optionlet"
    NOTIONAL = "notional_flow"


def _check_period(start: Year, end: Year, pay: Year) -> None:
    if not (np.isfinite(start) and np.isfinite(end) and np.isfinite(pay)):
        raise ConfigurationError("Cash-flow times must be finite")
    if start < 0 or end <= start:
        raise ConfigurationError(f"Accrual period [{start}, {end}] is invalid")
    if pay < end - FIXING_TOLERANCE:
        raise ConfigurationError(f"Payment time {pay} precedes accrual end {end}")


@dataclass(frozen=True)
class FixedCoupon:
    """
    Fixed-rate coupon paying notional x rate x accrual at ``pay_time``.

    Example
    -------
    >>> FixedCoupon(accrual_start=0.0, accrual_end=1.0, pay_time=1.0, rate=0.02)
    FixedCoupon(accrual_start=0.0, accrual_end=1.0, pay_time=1.0, rate=0.02, accrual=1.0)
    """

    kind: ClassVar[CashFlowKind] = CashFlowKind.FIXED

    accrual_start: Year
    accrual_end: Year
    pay_time: Year
    rate: Rate
    accrual: float | None = None

    def __post_init__(self) -> None:
        _check_period(self.accrual_start, self.accrual_end, self.pay_time)
        if self.accrual is None:
            object.__setattr__(self, "accrual", self.accrual_end - self.accrual_start)


@dataclass(frozen=True)
class FloatingCoupon:
    """
    Floating coupon paying notional x (gearing x rate + spread) x accrual.

    With no ``compounding`` boundaries the rate is the simple forward of the
    forecast curve fixed at ``fixing_time``. Otherwise the accrual period is
    split at the given interior times and the sub-period rates, each fixed
    at its own start, are compounded.

    Attributes
    ----------
    accrual_start, accrual_end : float
        Accrual period in years
    pay_time : float
        Payment time
    fixing_time : float | None
        Fixing time of a simple coupon (defaults to the accrual start)
    spread : float
        Additive spread
    gearing : float
        Multiplier applied to the index rate
    compounding : tuple[float, ...]
        Interior sub-period boundaries for a compounded coupon
    accrual : float | None
        Year fraction (defaults to accrual_end - accrual_start)
    """

    kind: ClassVar[CashFlowKind] = CashFlowKind.FLOATING

    accrual_start: Year
    accrual_end: Year
    pay_time: Year
    fixing_time: Year | None = None
    spread: Rate = 0.0
    gearing: float = 1.0
    compounding: tuple[float, ...] = ()
    accrual: float | None = None

    def __post_init__(self) -> None:
        _check_period(self.accrual_start, self.accrual_end, self.pay_time)
        if self.fixing_time is None:
            object.__setattr__(self, "fixing_time", self.accrual_start)
        if self.fixing_time < 0:
            raise ConfigurationError(f"Fixing time must be >= 0, got {self.fixing_time}")
        if self.accrual is None:
            object.__setattr__(self, "accrual", self.accrual_end - self.accrual_start)
        boundaries = tuple(float(b) for b in self.compounding)
        inner = (self.accrual_start,) + boundaries + (self.accrual_end,)
        if any(b <= a for a, b in zip(inner, inner[1:])):
            raise ConfigurationError(
                f"Compounding boundaries {boundaries} must lie strictly inside "
                f"[{self.accrual_start}, {self.accrual_end}] in increasing order"
            )
        object.__setattr__(self, "compounding", boundaries)

    @property
    def sub_periods(self) -> list[tuple[float, float]]:
        """Compounding sub-periods (a single period for a simple coupon)."""
        knots = [self.accrual_start, *self.compounding, self.accrual_end]
        return list(zip(knots[:-1], knots[1:]))

    @property
    def fixing_times(self) -> list[float]:
        """Times at which the coupon's rates fix."""
        if not self.compounding:
            return [float(self.fixing_time)]
        return [start for start, _ in self.sub_periods]


@dataclass(frozen=True)
class Optionlet:
    """
    Cap or floor on a simple floating coupon.

    Pays notional x accrual x max(R - K, 0) for a caplet or
    max(K - R, 0) for a floorlet, with R = gearing x index + spread.
    """

    kind: ClassVar[CashFlowKind] = CashFlowKind.OPTIONLET

    coupon: FloatingCoupon
    strike: Rate
    is_cap: bool = True

    def __post_init__(self) -> None:
        if self.coupon.compounding:
            raise ConfigurationError("Optionlets are defined on simple coupons only")
        if self.coupon.gearing <= 0:
            raise ConfigurationError(f"Optionlet gearing must be positive, got {self.coupon.gearing}")

    @property
    def accrual_start(self) -> Year:
        return self.coupon.accrual_start

    @property
    def accrual_end(self) -> Year:
        return self.coupon.accrual_end

    @property
    def pay_time(self) -> Year:
        return self.coupon.pay_time

    @property
    def fixing_times(self) -> list[float]:
        return self.coupon.fixing_times


@dataclass(frozen=True)
class NotionalFlow:
    """Exchange of ``weight`` x notional at ``pay_time`` (e.g. -1 initial, +1 final)."""

    kind: ClassVar[CashFlowKind] = CashFlowKind.NOTIONAL

    pay_time: Year
    weight: float = 1.0

    def __post_init__(self) -> None:
        if not np.isfinite(self.pay_time) or self.pay_time < 0:
            raise ConfigurationError(f"Payment time must be finite and >= 0, got {self.pay_time}")


CashFlow: TypeAlias = FixedCoupon | FloatingCoupon | Optionlet | NotionalFlow


def event_times(cash_flow: CashFlow) -> list[float]:
    """Fixing and payment times of a cash flow."""
    times = [float(cash_flow.pay_time)]
    if cash_flow.kind in (CashFlowKind.FLOATING, CashFlowKind.OPTIONLET):
        times.extend(cash_flow.fixing_times)
    return times


# ----------------------------------------------------------------------
# Amounts
# ----------------------------------------------------------------------


def _is_fixed(context: MarketContext, fixing_time: Year, time_index: int) -> bool:
    return fixing_time <= context.time(time_index) + FIXING_TOLERANCE


def _observation_index(context: MarketContext, fixing_time: Year) -> int:
    return max(context.simulation.fixing_index(fixing_time), 0)


def _require_forecast(forecast_key: CurveKey | None, cash_flow: CashFlow) -> CurveKey:
    if forecast_key is None:
        raise ConfigurationError(f"{cash_flow.kind.value} needs a forecast curve key")
    return forecast_key


def _simple_rate(
    context: MarketContext,
    key: CurveKey,
    paths: Paths,
    time_index: int,
    fixing_time: Year,
    start: Year,
    end: Year,
) -> PathArray:
    """Realised rate once fixed, else the forward seen at the valuation time."""
    if _is_fixed(context, fixing_time, time_index):
        return context.forward_rate(key, _observation_index(context, fixing_time), start, end, paths)
    return context.forward_rate(key, time_index, start, end, paths)


def _fixed_amount(
    cash_flow: FixedCoupon,
    notional: float | PathArray,
    context: MarketContext,
    forecast_key: CurveKey | None,
    paths: Paths,
    time_index: int,
) -> PathArray:
    n = context.path_count(paths)
    return np.broadcast_to(notional * cash_flow.rate * cash_flow.accrual, (n,)).astype(float)


def _floating_amount(
    cash_flow: FloatingCoupon,
    notional: float | PathArray,
    context: MarketContext,
    forecast_key: CurveKey | None,
    paths: Paths,
    time_index: int,
) -> PathArray:
    key = _require_forecast(forecast_key, cash_flow)
    if not cash_flow.compounding:
        rate = _simple_rate(
            context,
            key,
            paths,
            time_index,
            cash_flow.fixing_time,
            cash_flow.accrual_start,
            cash_flow.accrual_end,
        )
    else:
        growth = np.ones(context.path_count(paths))
        for start, end in cash_flow.sub_periods:
            if not _is_fixed(context, start, time_index):
                # Unfixed sub-periods telescope to a single bond ratio.
                bonds = context.discount_factor(key, time_index, [start, cash_flow.accrual_end], paths)
                growth = growth * bonds[:, 0] / bonds[:, 1]
                break
            fixed = context.forward_rate(key, _observation_index(context, start), start, end, paths)
            growth = growth * (1.0 + (end - start) * fixed)
        rate = (growth - 1.0) / (cash_flow.accrual_end - cash_flow.accrual_start)

    return notional * cash_flow.accrual * (cash_flow.gearing * rate + cash_flow.spread)


def _optionlet_amount(
    cash_flow: Optionlet,
    notional: float | PathArray,
    context: MarketContext,
    forecast_key: CurveKey | None,
    paths: Paths,
    time_index: int,
) -> PathArray:
    key = _require_forecast(forecast_key, cash_flow)
    coupon = cash_flow.coupon
    start, end, fixing = coupon.accrual_start, coupon.accrual_end, coupon.fixing_time
    tau = end - start
    scale = notional * coupon.gearing * coupon.accrual / tau
    strike = (cash_flow.strike - coupon.spread) / coupon.gearing

    if _is_fixed(context, fixing, time_index):
        rate = _simple_rate(context, key, paths, time_index, fixing, start, end)
        payoff = tau * (rate - strike) if cash_flow.is_cap else tau * (strike - rate)
        return scale * np.maximum(payoff, 0.0)

    t = context.time(time_index)
    disc_key = CurveKey(key.currency)
    bonds = context.discount_factor(disc_key, time_index, [start, end], paths)
    forward_bond = bonds[:, 1] / bonds[:, 0]
    forecast, discount = context.curve(key), context.curve(disc_key)
    basis = discount.discount_factor(end, t_start=start) / forecast.discount_factor(end, t_start=start)
    bond_strike = basis / (1.0 + tau * strike)

    model = context.model.currency_model(key.currency)
    loading = np.exp(-model.mean_reversion * max(start - fixing, 0.0)) * model.G(start, np.array([end]))[0]
    variance = float(loading @ model.conditional_covariance(t, fixing) @ loading)
    vol = np.sqrt(max(variance, 0.0))

    if vol < 1e-14:
        payoff = basis / forward_bond - 1.0 - tau * strike
        if not cash_flow.is_cap:
            payoff = -payoff
        return scale * np.maximum(payoff, 0.0)

    d1 = (np.log(forward_bond / bond_strike) + 0.5 * variance) / vol
    d2 = d1 - vol
    if cash_flow.is_cap:
        put = bond_strike * norm.cdf(-d2) - forward_bond * norm.cdf(-d1)
        option = put
    else:
        option = forward_bond * norm.cdf(d1) - bond_strike * norm.cdf(d2)
    return scale * (1.0 + tau * strike) * option / forward_bond


def _notional_amount(
    cash_flow: NotionalFlow,
    notional: float | PathArray,
    context: MarketContext,
    forecast_key: CurveKey | None,
    paths: Paths,
    time_index: int,
) -> PathArray:
    n = context.path_count(paths)
    return np.broadcast_to(notional * cash_flow.weight, (n,)).astype(float)


_AMOUNT = {
    CashFlowKind.FIXED: _fixed_amount,
    CashFlowKind.FLOATING: _floating_amount,
    CashFlowKind.OPTIONLET: _optionlet_amount,
    CashFlowKind.NOTIONAL: _notional_amount,
}


def amount(
    cash_flow: CashFlow,
    notional: float | FloatArray,
    context: MarketContext,
    forecast_key: CurveKey | None,
    paths: Paths,
    time_index: int,
) -> PathArray:
    """
    Path-wise amount of a cash flow seen at grid ``time_index``.

    Parameters
    ----------
    cash_flow : CashFlow
        Any cash-flow variant
    notional : float | FloatArray
        Notional, scalar or per path
    context : MarketContext
        Market context
    forecast_key : CurveKey | None
        Forecast curve for floating rates
    paths : IntArray | slice | None
        Path selection
    time_index : int
        Valuation grid index

    Returns
    -------
    PathArray
        Expected payment under the payment forward measure, shape (n_paths,)

    Notes
    -----
    Fixings are observed at the last grid time on or before the fixing
    time. Before fixing, optionlets use the Gaussian zero-coupon-bond
    option formula with the model's conditional factor covariance.
    """
    return _AMOUNT[cash_flow.kind](cash_flow, notional, context, forecast_key, paths, time_index)
