"""
Market context binding symbolic curve keys to simulated model state.

Trades refer to curves by ``CurveKey`` (currency plus optional index name);
the context resolves each key through a two-level binding table to an
initial curve and queries the currency's factor model at the simulated
state. Index curves share their currency's stochastic factors and differ
from the discount curve by a deterministic basis.
"""

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

import numpy as np

from hjm_xva._types import FloatArray, IntArray, PathArray, Year
from hjm_xva.errors import ConfigurationError
from hjm_xva.market.curve import DiscountCurve
from hjm_xva.market.hybrid import HybridModel
from hjm_xva.simulation.simulator import Simulation

logger = logging.getLogger(__name__)

Paths = IntArray | slice | None


@dataclass(frozen=True)
class CurveKey:
    """
    Symbolic reference to a curve.

    An empty ``index`` denotes the currency's default (discount) curve.

    Example
    -------
    >>> CurveKey.parse("EUR.EURIBOR6M")
    CurveKey(currency='EUR', index='EURIBOR6M')
    >>> CurveKey.parse("USD")
    CurveKey(currency='USD', index='')
    """

    currency: str
    index: str = ""

    @classmethod
    def parse(cls, text: "str | CurveKey") -> "CurveKey":
        """Parse ``"CCY"`` or ``"CCY.INDEX"``."""
        if isinstance(text, CurveKey):
            return text
        currency, _, index = text.partition(".")
        if not currency:
            raise ConfigurationError(f"Malformed curve key {text!r}")
        return cls(currency=currency, index=index)

    def __str__(self) -> str:
        return f"{self.currency}.{self.index}" if self.index else self.currency


class MarketContext:
    """
    Read-only view of a simulation through the market's curve bindings.

    Every query takes an explicit grid ``time_index`` and a path selection
    (``None`` for all paths, an index array or a slice), and returns one
    row per selected path.

    Parameters
    ----------
    model : HybridModel
        Model that produced ``simulation``
    simulation : Simulation
        Simulated state
    curves : Mapping[str, DiscountCurve] | Sequence[DiscountCurve]
        Initial curves by curve id
    bindings : Mapping[str, Mapping[str, str]]
        currency -> index name -> curve id; the ``""`` entry of each
        currency is its discount curve and the fallback for unbound indices

    Raises
    ------
    ConfigurationError
        If a modelled currency has no default binding, a binding names an
        unknown curve or currency, or the simulation does not match the model

    Example
    -------
    >>> ctx = MarketContext(model, sim, [DiscountCurve.flat(0.01, "EUR.ESTR")],
    ...                     {"EUR": {"": "EUR.ESTR"}})
    >>> ctx.discount_factor("EUR", 0, [1.0])[:2]
    array([[0.99004983],
           [0.99004983]])
    """

    def __init__(
        self,
        model: HybridModel,
        simulation: Simulation,
        curves: Mapping[str, DiscountCurve] | Sequence[DiscountCurve],
        bindings: Mapping[str, Mapping[str, str]],
    ) -> None:
        if isinstance(curves, Mapping):
            curve_map = dict(curves)
        else:
            curve_map = {c.curve_id: c for c in curves}
            if len(curve_map) != len(curves):
                raise ConfigurationError("Duplicate curve ids")

        table: dict[str, dict[str, str]] = {}
        for currency, indices in bindings.items():
            if currency not in model.currencies:
                raise ConfigurationError(
                    f"Binding for unmodelled currency {currency!r}; modelled: {model.currencies}"
                )
            for index, curve_id in indices.items():
                if curve_id not in curve_map:
                    raise ConfigurationError(
                        f"Binding {currency}.{index or '<default>'} references unknown curve {curve_id!r}"
                    )
            table[currency] = dict(indices)
        for currency in model.currencies:
            if "" not in table.get(currency, {}):
                raise ConfigurationError(f"Currency {currency} has no default ('') curve binding")

        if simulation.aliases != model.state_alias():
            raise ConfigurationError(
                f"Simulation states {simulation.aliases} do not match model {model.state_alias()}"
            )

        self.model = model
        self.simulation = simulation
        self._curves = curve_map
        self._bindings = table
        self._x_rows = {
            code: [simulation.index(a) for a in model.currency_model(code).state_alias()[:-1]]
            for code in model.currencies
        }

    @classmethod
    def from_config(
        cls,
        market: "MarketConfig",  # noqa: F821
        simulation: "SimulationConfig",  # noqa: F821
        extra_times: Sequence[float] = (),
    ) -> "MarketContext":
        """
        Build model, simulate it and bind the configured curves.

        Parameters
        ----------
        market : MarketConfig
            Model, curves and bindings
        simulation : SimulationConfig
            Path count, grid, seed and increment type
        extra_times : Sequence[float]
            Event times that must lie on the grid

        Returns
        -------
        MarketContext
            Context over a fresh simulation
        """
        from hjm_xva.simulation.increments import increments_from_config
        from hjm_xva.simulation.simulator import build_time_grid, simulate

        model = HybridModel.from_config(market.model)
        grid = build_time_grid(
            simulation.horizon_years,
            simulation.dt,
            list(simulation.extra_times) + list(extra_times),
        )
        sim = simulate(
            model,
            grid,
            simulation.n_paths,
            increments_from_config(simulation),
            n_workers=simulation.n_workers,
        )
        curves = [DiscountCurve.from_config(c) for c in market.curves]
        return cls(model, sim, curves, market.bindings)

    def with_simulation(self, simulation: Simulation) -> "MarketContext":
        """Same model and bindings over another simulation (e.g. for fitting)."""
        return MarketContext(self.model, simulation, self._curves, self._bindings)

    # ------------------------------------------------------------------
    # Grid and binding lookups
    # ------------------------------------------------------------------

    @property
    def time_grid(self) -> FloatArray:
        """Simulation time grid."""
        return self.simulation.time_grid

    @property
    def n_paths(self) -> int:
        """Number of simulated paths."""
        return self.simulation.n_paths

    @property
    def base_currency(self) -> str:
        """Model base currency."""
        return self.model.base_currency

    def time(self, time_index: int) -> Year:
        """Grid time at ``time_index``."""
        return float(self.simulation.time_grid[time_index])

    def path_indices(self, paths: Paths) -> IntArray:
        """Explicit path indices of a selection."""
        return np.arange(self.n_paths)[self._select(paths)]

    def path_count(self, paths: Paths) -> int:
        """Number of paths in a selection."""
        return len(self.path_indices(paths))

    def _select(self, paths: Paths) -> IntArray | slice:
        return slice(None) if paths is None else paths

    def resolve(self, key: "CurveKey | str") -> str:
        """
        Curve id bound to ``key``.

        Unbound index names fall back to the currency's default curve.

        Raises
        ------
        ConfigurationError
            If the currency has no bindings
        """
        key = CurveKey.parse(key)
        try:
            indices = self._bindings[key.currency]
        except KeyError:
            raise ConfigurationError(
                f"No curves bound for currency {key.currency!r}; bound: {sorted(self._bindings)}"
            ) from None
        if key.index and key.index not in indices:
            logger.debug("Index %s not bound, falling back to %s default curve", key, key.currency)
        return indices.get(key.index, indices[""])

    def curve(self, key: "CurveKey | str") -> DiscountCurve:
        """Initial curve bound to ``key``."""
        return self._curves[self.resolve(key)]

    # ------------------------------------------------------------------
    # State queries
    # ------------------------------------------------------------------

    def state(self, currency: str, time_index: int, paths: Paths = None) -> PathArray:
        """Factor state x of ``currency``, shape (n_paths, d)."""
        self.model.currency_model(currency)
        rows = self._x_rows[currency]
        return self.simulation.states[rows, :, time_index][:, self._select(paths)].T

    def _integrated_state(self, currency: str, time_index: int, paths: Paths) -> PathArray:
        row = self.simulation.index(f"{currency}.int_x")
        return self.simulation.states[row, self._select(paths), time_index]

    def discount_factor(
        self,
        key: "CurveKey | str",
        time_index: int,
        maturities: Sequence[float] | FloatArray,
        paths: Paths = None,
    ) -> PathArray:
        """
        Bond prices P(t, T) on the curve bound to ``key``.

        Maturities on or before t give 1.

        Returns
        -------
        PathArray
            Shape (n_paths, n_maturities)
        """
        key = CurveKey.parse(key)
        t = self.time(time_index)
        maturities = np.atleast_1d(np.asarray(maturities, dtype=float))
        curve = self.curve(key)
        initial_ratio = curve.discount_factor(maturities, t_start=t)
        model = self.model.currency_model(key.currency)
        return model.bond_price(
            t,
            maturities,
            self.state(key.currency, time_index, paths),
            self.simulation.y[key.currency][time_index],
            np.atleast_1d(initial_ratio),
        )

    def forward_rate(
        self,
        key: "CurveKey | str",
        time_index: int,
        start: Year,
        end: Year,
        paths: Paths = None,
    ) -> PathArray:
        """
        Simple forward rate over [start, end] seen at t, shape (n_paths,).

        Notes
        -----
        F(t; S, E) = (P(t, S) / P(t, E) - 1) / (E - S)
        """
        if end <= start:
            raise ConfigurationError(f"Forward period [{start}, {end}] is empty")
        bonds = self.discount_factor(key, time_index, [start, end], paths)
        return (bonds[:, 0] / bonds[:, 1] - 1.0) / (end - start)

    def rate_or_discount(
        self,
        key: "CurveKey | str",
        paths: Paths,
        time_index: int,
        tenor: Year | None = None,
        maturity: Year | None = None,
    ) -> PathArray:
        """
        Discount factor to ``maturity`` or simple forward over ``tenor``.

        Exactly one of ``tenor`` and ``maturity`` must be given. With a
        tenor the result is the simple rate over [t, t + tenor].

        Raises
        ------
        ConfigurationError
            If neither or both of ``tenor`` and ``maturity`` are given
        """
        if (tenor is None) == (maturity is None):
            raise ConfigurationError("Give exactly one of tenor and maturity")
        if maturity is not None:
            return self.discount_factor(key, time_index, [maturity], paths)[:, 0]
        if tenor <= 0:
            raise ConfigurationError(f"Tenor must be positive, got {tenor}")
        t = self.time(time_index)
        return self.forward_rate(key, time_index, t, t + tenor, paths)

    def numeraire(self, currency: str, time_index: int, paths: Paths = None) -> PathArray:
        """
        Bank account B(t) = exp(integral_0^t r) of ``currency``.

        Notes
        -----
        ln B(t) = -ln P(0, t) + int_x(t)
        """
        t = self.time(time_index)
        p0t = self.curve(currency).discount_factor(t)
        return np.exp(self._integrated_state(currency, time_index, paths)) / p0t

    def short_rate(self, currency: str, time_index: int, paths: Paths = None) -> PathArray:
        """Short rate r(t) = f(0, t) + sum_i x_i(t)."""
        t = self.time(time_index)
        f0 = self.curve(currency).instantaneous_forward(t)
        return f0 + self.state(currency, time_index, paths).sum(axis=1)

    def fx_rate(
        self,
        currency: str,
        time_index: int,
        paths: Paths = None,
        to_currency: str | None = None,
    ) -> PathArray:
        """
        Value in ``to_currency`` (default base) of one unit of ``currency``.

        Notes
        -----
        ln S(t) = ln S0 + ln P_f(0,t) - ln P_d(0,t) + int_x_d(t) - int_x_f(t) + w(t)
        """
        to_currency = to_currency or self.base_currency
        if currency == to_currency:
            return np.ones(self.path_count(paths))
        rate = self._to_base(currency, time_index, paths)
        if to_currency != self.base_currency:
            rate = rate / self._to_base(to_currency, time_index, paths)
        return rate

    def _to_base(self, currency: str, time_index: int, paths: Paths) -> PathArray:
        if currency == self.base_currency:
            return np.ones(self.path_count(paths))
        fx = self.model.fx_model(currency)
        t = self.time(time_index)
        base = self.base_currency
        w = self.simulation.states[self.simulation.index(f"FX.{currency}"), self._select(paths), time_index]
        log_rate = (
            np.log(fx.spot)
            + np.log(self.curve(currency).discount_factor(t))
            - np.log(self.curve(base).discount_factor(t))
            + self._integrated_state(base, time_index, paths)
            - self._integrated_state(currency, time_index, paths)
            + w
        )
        return np.exp(log_rate)

    def forward_fx(
        self,
        currency: str,
        time_index: int,
        delivery: Year,
        paths: Paths = None,
        to_currency: str | None = None,
    ) -> PathArray:
        """
        FX forward for ``delivery`` seen at t.

        Notes
        -----
        F(t, T) = S(t) P_f(t, T) / P_d(t, T)
        """
        to_currency = to_currency or self.base_currency
        spot = self.fx_rate(currency, time_index, paths, to_currency)
        if currency == to_currency:
            return spot
        p_for = self.discount_factor(currency, time_index, [delivery], paths)[:, 0]
        p_dom = self.discount_factor(to_currency, time_index, [delivery], paths)[:, 0]
        return spot * p_for / p_dom
