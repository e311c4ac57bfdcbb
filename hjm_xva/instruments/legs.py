"""
Legs: ordered cash flows with notionals, curves, sign and optional
mark-to-market notional resets, plus schedule builders for common trades.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np

from hjm_xva._types import FloatArray, Notional, PathArray, Rate, Year
from hjm_xva.errors import ConfigurationError, DimensionMismatchError
from hjm_xva.instruments.cashflows import (
    CashFlow,
    CashFlowKind,
    FixedCoupon,
    FloatingCoupon,
    NotionalFlow,
    Optionlet,
    amount,
    event_times,
)
from hjm_xva.market.context import CurveKey, MarketContext, Paths

logger = logging.getLogger(__name__)

PAYMENT_TOLERANCE = 1e-9


@dataclass(frozen=True)
class MtMReset:
    """
    Mark-to-market notional reset against an FX fixing.

    The notional of period k is ``reference_notional`` units of
    ``reference_currency`` converted at the FX rate observed at
    ``reset_times[k]``. Before a reset the forward FX rate is used.
    """

    reference_currency: str
    reference_notional: Notional
    reset_times: tuple[float, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "reset_times", tuple(float(t) for t in self.reset_times))
        if any(t < 0 for t in self.reset_times):
            raise ConfigurationError("Reset times must be >= 0")


@dataclass(frozen=True, eq=False)
class Leg:
    """
    Ordered cash flows valued on one discount curve.

    Attributes
    ----------
    cash_flows : tuple[CashFlow, ...]
        Cash flows in payment order
    notionals : FloatArray
        Notional per cash flow
    discount_key : CurveKey
        Discount curve; its currency is the leg currency
    forecast_key : CurveKey | None
        Forecast curve of floating cash flows
    sign : int
        +1 receiver, -1 payer
    mtm_reset : MtMReset | None
        Optional FX reset of the notionals
    alias : str
        Label used in scenario cubes

    Example
    -------
    >>> leg = Leg(
    ...     cash_flows=(FixedCoupon(0.0, 1.0, 1.0, 0.02),),
    ...     notionals=np.array([10_000.0]),
    ...     discount_key=CurveKey("EUR"),
    ... )
    >>> leg.value(context, None, 0)[0]  # 10000 * 0.02 * exp(-0.01) on a flat 1% curve
    198.00996674983363
    """

    cash_flows: tuple[CashFlow, ...]
    notionals: FloatArray
    discount_key: CurveKey
    forecast_key: CurveKey | None = None
    sign: int = 1
    mtm_reset: MtMReset | None = None
    alias: str = field(default="")

    def __post_init__(self) -> None:
        """Validate schedule, notionals and sign."""
        cash_flows = tuple(self.cash_flows)
        notionals = np.atleast_1d(np.array(self.notionals, dtype=float))
        object.__setattr__(self, "discount_key", CurveKey.parse(self.discount_key))
        if self.forecast_key is not None:
            object.__setattr__(self, "forecast_key", CurveKey.parse(self.forecast_key))

        if len(notionals) != len(cash_flows):
            raise DimensionMismatchError(
                f"{len(notionals)} notionals for {len(cash_flows)} cash flows"
            )
        if not np.all(np.isfinite(notionals)):
            raise ConfigurationError("Notionals must be finite")
        if self.sign not in (-1, 1):
            raise ConfigurationError(f"Sign must be +1 or -1, got {self.sign}")

        coupons = [cf for cf in cash_flows if cf.kind != CashFlowKind.NOTIONAL]
        for prev, cur in zip(coupons, coupons[1:]):
            if cur.accrual_start < prev.accrual_end - PAYMENT_TOLERANCE:
                raise ConfigurationError(
                    f"Accrual periods overlap or are out of order: "
                    f"[{prev.accrual_start}, {prev.accrual_end}] then "
                    f"[{cur.accrual_start}, {cur.accrual_end}]"
                )
        needs_forecast = any(
            cf.kind in (CashFlowKind.FLOATING, CashFlowKind.OPTIONLET) for cf in cash_flows
        )
        if needs_forecast and self.forecast_key is None:
            raise ConfigurationError("Floating cash flows need a forecast curve key")
        if self.forecast_key is not None and self.forecast_key.currency != self.discount_key.currency:
            raise ConfigurationError(
                f"Forecast curve {self.forecast_key} is not in leg currency {self.currency}"
            )
        if self.mtm_reset is not None and len(self.mtm_reset.reset_times) != len(cash_flows):
            raise DimensionMismatchError(
                f"{len(self.mtm_reset.reset_times)} reset times for {len(cash_flows)} cash flows"
            )

        notionals.flags.writeable = False
        object.__setattr__(self, "cash_flows", cash_flows)
        object.__setattr__(self, "notionals", notionals)
        object.__setattr__(self, "_pay_times", np.array([cf.pay_time for cf in cash_flows], dtype=float))

    @property
    def currency(self) -> str:
        """Leg currency."""
        return self.discount_key.currency

    def event_times(self) -> list[float]:
        """Sorted fixing, payment and reset times of the leg."""
        times: set[float] = set()
        for cf in self.cash_flows:
            times.update(event_times(cf))
        if self.mtm_reset is not None:
            times.update(self.mtm_reset.reset_times)
        return sorted(times)

    def _notional(
        self, k: int, context: MarketContext, paths: Paths, time_index: int
    ) -> float | PathArray:
        if self.mtm_reset is None:
            return float(self.notionals[k])
        reset = self.mtm_reset
        reset_time = reset.reset_times[k]
        if reset_time <= context.time(time_index) + PAYMENT_TOLERANCE:
            index = max(context.simulation.fixing_index(reset_time), 0)
            fx = context.fx_rate(reset.reference_currency, index, paths, to_currency=self.currency)
        else:
            fx = context.forward_fx(
                reset.reference_currency, time_index, reset_time, paths, to_currency=self.currency
            )
        return reset.reference_notional * fx

    def value(
        self,
        context: MarketContext,
        paths: Paths = None,
        time_index: int = 0,
        currency: str | None = None,
    ) -> PathArray:
        """
        Value of the outstanding cash flows at grid ``time_index``.

        Parameters
        ----------
        context : MarketContext
            Market context
        paths : IntArray | slice | None
            Path selection (None for all)
        time_index : int
            Valuation grid index
        currency : str | None
            Reporting currency (leg currency if None)

        Returns
        -------
        PathArray
            sign x sum_k N_k x amount_k x P(t, pay_k) over cash flows paid
            strictly after t, shape (n_paths,)
        """
        t = context.time(time_index)
        n = context.path_count(paths)
        total = np.zeros(n)
        live = np.flatnonzero(self._pay_times > t + PAYMENT_TOLERANCE)
        if len(live):
            discount = context.discount_factor(self.discount_key, time_index, self._pay_times[live], paths)
            for column, k in enumerate(live):
                notional = self._notional(k, context, paths, time_index)
                flow = amount(self.cash_flows[k], notional, context, self.forecast_key, paths, time_index)
                total += flow * discount[:, column]
        total *= self.sign
        if currency is not None and currency != self.currency:
            total = total * context.fx_rate(self.currency, time_index, paths, to_currency=currency)
        return total


# ----------------------------------------------------------------------
# Schedule builders
# ----------------------------------------------------------------------


def schedule(start: Year, maturity: Year, frequency: Year) -> FloatArray:
    """
    Period boundaries from ``start`` to ``maturity`` every ``frequency``.

    A short final stub is added when the frequency does not divide the
    tenor.

    Example
    -------
    >>> schedule(0.0, 1.0, 0.5)
    array([0. , 0.5, 1. ])
    """
    if start < 0:
        raise ConfigurationError(f"Start must be non-negative, got {start}")
    if maturity <= start:
        raise ConfigurationError(f"Start ({start}) must be before maturity ({maturity})")
    if frequency <= 0:
        raise ConfigurationError(f"Frequency must be positive, got {frequency}")
    n = int(np.floor((maturity - start) / frequency + PAYMENT_TOLERANCE))
    dates = start + frequency * np.arange(n + 1)
    if maturity - dates[-1] > PAYMENT_TOLERANCE:
        dates = np.append(dates, maturity)
    else:
        dates[-1] = maturity
    return dates


def fixed_leg(
    currency: str,
    notional: Notional,
    rate: Rate,
    start: Year,
    maturity: Year,
    frequency: Year = 1.0,
    sign: int = 1,
    discount_index: str = "",
    alias: str = "",
) -> Leg:
    """Fixed-rate leg paying at each period end."""
    dates = schedule(start, maturity, frequency)
    flows = tuple(FixedCoupon(s, e, e, rate) for s, e in zip(dates[:-1], dates[1:]))
    return Leg(
        cash_flows=flows,
        notionals=np.full(len(flows), float(notional)),
        discount_key=CurveKey(currency, discount_index),
        sign=sign,
        alias=alias,
    )


def floating_leg(
    currency: str,
    index: str,
    notional: Notional,
    start: Year,
    maturity: Year,
    frequency: Year = 0.5,
    spread: Rate = 0.0,
    compounding_periods: int = 1,
    sign: int = 1,
    discount_index: str = "",
    alias: str = "",
) -> Leg:
    """
    Floating leg on ``currency.index``.

    ``compounding_periods > 1`` splits each period into equal sub-periods
    whose rates are compounded (overnight-style).
    """
    if compounding_periods < 1:
        raise ConfigurationError(f"compounding_periods must be >= 1, got {compounding_periods}")
    dates = schedule(start, maturity, frequency)
    flows = []
    for s, e in zip(dates[:-1], dates[1:]):
        inner = tuple(np.linspace(s, e, compounding_periods + 1)[1:-1])
        flows.append(FloatingCoupon(s, e, e, spread=spread, compounding=inner))
    return Leg(
        cash_flows=tuple(flows),
        notionals=np.full(len(flows), float(notional)),
        discount_key=CurveKey(currency, discount_index),
        forecast_key=CurveKey(currency, index),
        sign=sign,
        alias=alias,
    )


def optionlet_leg(
    currency: str,
    index: str,
    notional: Notional,
    strike: Rate,
    start: Year,
    maturity: Year,
    frequency: Year = 0.5,
    is_cap: bool = True,
    sign: int = 1,
    alias: str = "",
) -> Leg:
    """Cap (or floor) strip on ``currency.index``."""
    dates = schedule(start, maturity, frequency)
    flows = tuple(
        Optionlet(FloatingCoupon(s, e, e), strike=strike, is_cap=is_cap)
        for s, e in zip(dates[:-1], dates[1:])
    )
    return Leg(
        cash_flows=flows,
        notionals=np.full(len(flows), float(notional)),
        discount_key=CurveKey(currency),
        forecast_key=CurveKey(currency, index),
        sign=sign,
        alias=alias,
    )


def vanilla_swap(
    currency: str,
    index: str,
    notional: Notional,
    fixed_rate: Rate,
    start: Year,
    maturity: Year,
    fixed_frequency: Year = 1.0,
    float_frequency: Year = 0.5,
    pay_fixed: bool = True,
    alias: str = "swap",
) -> tuple[Leg, Leg]:
    """
    Fixed-for-floating swap as (fixed leg, floating leg).

    A payer swap (``pay_fixed=True``) pays the fixed leg and receives the
    floating leg.

    Example
    -------
    >>> fixed, floating = vanilla_swap("EUR", "EURIBOR6M", 1e7, 0.025, 0.0, 5.0)
    >>> fixed.sign, floating.sign
    (-1, 1)
    """
    fixed_sign = -1 if pay_fixed else 1
    return (
        fixed_leg(currency, notional, fixed_rate, start, maturity, fixed_frequency,
                  sign=fixed_sign, alias=f"{alias}.fixed"),
        floating_leg(currency, index, notional, start, maturity, float_frequency,
                     sign=-fixed_sign, alias=f"{alias}.float"),
    )


def _with_exchanges(leg: Leg, start: Year, maturity: Year, mtm_reset: MtMReset | None) -> Leg:
    """
    Add notional exchanges at start and maturity.

    With an MtM reset the notional is also re-struck at every period start:
    the previous notional is returned and the new one paid.
    """
    if mtm_reset is None:
        flows = (NotionalFlow(start, -1.0),) + leg.cash_flows + (NotionalFlow(maturity, 1.0),)
        notionals = np.concatenate([[leg.notionals[0]], leg.notionals, [leg.notionals[-1]]])
        return Leg(
            cash_flows=flows,
            notionals=notionals,
            discount_key=leg.discount_key,
            forecast_key=leg.forecast_key,
            sign=leg.sign,
            alias=leg.alias,
        )

    resets = mtm_reset.reset_times
    flows: list[CashFlow] = [NotionalFlow(start, -1.0)]
    reset_times: list[float] = [resets[0]]
    for k, coupon in enumerate(leg.cash_flows):
        if k > 0:
            flows.extend([NotionalFlow(resets[k], 1.0), NotionalFlow(resets[k], -1.0)])
            reset_times.extend([resets[k - 1], resets[k]])
        flows.append(coupon)
        reset_times.append(resets[k])
    flows.append(NotionalFlow(maturity, 1.0))
    reset_times.append(resets[-1])
    return Leg(
        cash_flows=tuple(flows),
        notionals=np.full(len(flows), mtm_reset.reference_notional),
        discount_key=leg.discount_key,
        forecast_key=leg.forecast_key,
        sign=leg.sign,
        mtm_reset=MtMReset(mtm_reset.reference_currency, mtm_reset.reference_notional, tuple(reset_times)),
        alias=leg.alias,
    )


def cross_currency_swap(
    domestic_currency: str,
    domestic_index: str,
    domestic_notional: Notional,
    foreign_currency: str,
    foreign_index: str,
    foreign_notional: Notional,
    start: Year,
    maturity: Year,
    frequency: Year = 0.25,
    foreign_spread: Rate = 0.0,
    receive_foreign: bool = True,
    mtm_reset: bool = False,
    alias: str = "xccy",
) -> tuple[Leg, Leg]:
    """
    Floating-floating cross-currency swap as (domestic leg, foreign leg).

    Both legs exchange notionals at start (paid) and maturity (received).
    With ``mtm_reset`` the domestic notional of each period is reset to
    ``foreign_notional`` converted at the FX rate observed at the period
    start, so the domestic leg tracks the foreign one in value.

    Notes
    -----
    The initial exchange is dropped from valuation once paid, like any
    other cash flow.
    """
    foreign_sign = 1 if receive_foreign else -1
    dom = floating_leg(domestic_currency, domestic_index, domestic_notional, start, maturity,
                       frequency, sign=-foreign_sign, alias=f"{alias}.{domestic_currency}")
    fgn = floating_leg(foreign_currency, foreign_index, foreign_notional, start, maturity,
                       frequency, spread=foreign_spread, sign=foreign_sign,
                       alias=f"{alias}.{foreign_currency}")
    reset = None
    if mtm_reset:
        starts = tuple(cf.accrual_start for cf in dom.cash_flows)
        reset = MtMReset(foreign_currency, foreign_notional, starts)
    return (
        _with_exchanges(dom, start, maturity, reset),
        _with_exchanges(fgn, start, maturity, None),
    )


def legs_event_times(legs: Sequence[Leg]) -> list[float]:
    """Union of the event times of several legs."""
    times: set[float] = set()
    for leg in legs:
        times.update(leg.event_times())
    return sorted(times)
