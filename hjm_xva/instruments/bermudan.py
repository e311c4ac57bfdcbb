"""
Bermudan-style instruments valued by American Monte Carlo.

An instrument is built unfit; :meth:`BermudanInstrument.fit` runs the
backward induction on a market context and returns a sealed
:class:`FittedBermudan`, the only form that can be valued. Along each path
the instrument moves through

    NotYetExercisable -> Live -> Exercised(i) | Expired

exercising at the first date where the intrinsic value beats the
regression estimate of continuation.

Notes
-----
Fitting and valuation may share one simulation. The exercise policy then
sees the paths it is applied to (foresight bias); pass an independent
context, e.g. ``context.with_simulation(...)``, to :meth:`fit` to avoid it.
"""

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from hjm_xva._types import FloatArray, IntArray, PathArray, Year
from hjm_xva.amc.regression import Basis, RegressionFunction, evaluate, fit
from hjm_xva.errors import ConfigurationError, NotFittedError
from hjm_xva.instruments.legs import Leg, legs_event_times
from hjm_xva.market.context import MarketContext, Paths

logger = logging.getLogger(__name__)

TIME_TOLERANCE = 1e-9
MIN_ITM_SAMPLES = 10

RegressionRule = Callable[[MarketContext, Paths, int, str], FloatArray]


class ExerciseState(Enum):
    """Per-path lifecycle state of a Bermudan instrument."""

    NOT_YET_EXERCISABLE = "not_yet_exercisable"
    LIVE = "live"
    EXERCISED = "exercised"
    EXPIRED = "expired"


def _time_key(t: float) -> float:
    return round(float(t), 9)


@dataclass(frozen=True, eq=False)
class Exercise:
    """
    One exercise opportunity.

    Attributes
    ----------
    time : float
        Exercise time (must lie on the simulation grid)
    underlying : tuple[Leg, ...]
        Legs entered upon exercise; all their payments are after ``time``
    regression_variables : RegressionRule | None
        ``rule(context, paths, time_index, currency)`` returning the
        regressors, shape (n_paths,) or (n_paths, k). Defaults to the
        underlying's value.
    """

    time: Year
    underlying: tuple[Leg, ...]
    regression_variables: RegressionRule | None = None

    def __post_init__(self) -> None:
        legs = tuple(self.underlying)
        if not legs:
            raise ConfigurationError(f"Exercise at {self.time} has no underlying legs")
        if self.time < 0:
            raise ConfigurationError(f"Exercise time must be >= 0, got {self.time}")
        for leg in legs:
            early = [cf.pay_time for cf in leg.cash_flows if cf.pay_time <= self.time + TIME_TOLERANCE]
            if early:
                raise ConfigurationError(
                    f"Underlying leg {leg.alias or leg.currency} pays at {early} "
                    f"on or before exercise time {self.time}"
                )
        object.__setattr__(self, "underlying", legs)

    def intrinsic(
        self, context: MarketContext, paths: Paths, time_index: int, currency: str
    ) -> PathArray:
        """Value of the underlying legs in ``currency``."""
        total = np.zeros(context.path_count(paths))
        for leg in self.underlying:
            total += leg.value(context, paths, time_index, currency)
        return total

    def regressors(
        self, context: MarketContext, paths: Paths, time_index: int, currency: str
    ) -> FloatArray:
        """Regression variables at ``time_index``."""
        if self.regression_variables is None:
            return self.intrinsic(context, paths, time_index, currency)
        return np.asarray(self.regression_variables(context, paths, time_index, currency), dtype=float)


class BermudanInstrument:
    """
    Unfit Bermudan instrument: configuration only, not valuable.

    Parameters
    ----------
    exercises : Sequence[Exercise]
        Exercise opportunities (sorted by time on construction)
    sign : int
        +1 long the option, -1 short
    currency : str | None
        Valuation currency (defaults to the first underlying leg's)
    alias : str
        Label used in scenario cubes

    Example
    -------
    >>> fixed, floating = vanilla_swap("EUR", "EURIBOR6M", 1e7, 0.025, 1.0, 5.0)
    >>> option = BermudanInstrument([Exercise(1.0, (fixed, floating))])
    >>> fitted = option.fit(context, PolynomialBasis(2))
    """

    def __init__(
        self,
        exercises: Sequence[Exercise],
        sign: int = 1,
        currency: str | None = None,
        alias: str = "bermudan",
    ) -> None:
        if not exercises:
            raise ConfigurationError("Bermudan instrument needs at least one exercise")
        ordered = tuple(sorted(exercises, key=lambda e: e.time))
        times = [e.time for e in ordered]
        if any(t2 - t1 <= TIME_TOLERANCE for t1, t2 in zip(times, times[1:])):
            raise ConfigurationError(f"Exercise times must be distinct, got {times}")
        if sign not in (-1, 1):
            raise ConfigurationError(f"Sign must be +1 or -1, got {sign}")
        self.exercises = ordered
        self.sign = sign
        self.currency = currency or ordered[0].underlying[0].currency
        self.alias = alias

    @property
    def exercise_times(self) -> list[float]:
        """Sorted exercise times."""
        return [e.time for e in self.exercises]

    def event_times(self) -> list[float]:
        """Exercise times and every underlying event time."""
        legs = [leg for e in self.exercises for leg in e.underlying]
        return sorted(set(self.exercise_times) | set(legs_event_times(legs)))

    def value(self, *args: object, **kwargs: object) -> PathArray:
        """Unfit instruments cannot be valued."""
        raise NotFittedError(f"{self.alias}: call fit() before valuation")

    def fit(
        self,
        context: MarketContext,
        basis: Basis,
        value_times: Sequence[float] | None = None,
        itm_only: bool = False,
    ) -> "FittedBermudan":
        """
        Fit exercise and valuation regressions by backward induction.

        Parameters
        ----------
        context : MarketContext
            Context whose paths are used for fitting
        basis : Basis
            Regression basis
        value_times : Sequence[float] | None
            Grid times at which live values are needed (default: every
            grid time before the last exercise)
        itm_only : bool
            Fit exercise regressions on in-the-money paths only

        Returns
        -------
        FittedBermudan
            Sealed, valuable instrument

        Raises
        ------
        ConfigurationError
            If an exercise or value time is not on the grid
        NumericalError
            If a regression fails
        """
        sim = context.simulation
        indices = [sim.time_index(t) for t in self.exercise_times]
        ccy = self.currency
        n_ex = len(self.exercises)

        logger.info(
            "Fitting %s: %d exercise dates on %d paths", self.alias, n_ex, context.n_paths
        )

        intrinsic: list[PathArray] = []
        regressors: list[FloatArray] = []
        for exercise, i in zip(self.exercises, indices):
            numeraire = context.numeraire(ccy, i)
            intrinsic.append(exercise.intrinsic(context, None, i, ccy) / numeraire)
            regressors.append(exercise.regressors(context, None, i, ccy))

        exercise_fns: list[RegressionFunction | None] = [None] * n_ex
        payoff = np.maximum(intrinsic[-1], 0.0)
        payoff_from: list[PathArray] = [None] * n_ex  # type: ignore[list-item]
        payoff_from[-1] = payoff.copy()
        for k in range(n_ex - 2, -1, -1):
            sample = np.ones(context.n_paths, dtype=bool)
            if itm_only:
                itm = intrinsic[k] > 0
                if itm.sum() >= MIN_ITM_SAMPLES:
                    sample = itm
                else:
                    logger.debug("Only %d ITM paths at %.4f, fitting on all", itm.sum(), self.exercise_times[k])
            fn = fit(basis, _rows(regressors[k], sample), payoff[sample])
            exercise_fns[k] = fn
            continuation = evaluate(fn, regressors[k])
            exercised = intrinsic[k] > np.maximum(continuation, 0.0)
            payoff = np.where(exercised, intrinsic[k], payoff)
            payoff_from[k] = payoff.copy()
            logger.debug(
                "Exercise %.4f: %.1f%% of paths exercise", self.exercise_times[k], 100 * exercised.mean()
            )

        last = self.exercise_times[-1]
        if value_times is None:
            value_indices = [j for j, t in enumerate(sim.time_grid) if t < last - TIME_TOLERANCE]
        else:
            value_indices = [sim.time_index(t) for t in value_times]

        value_fns: dict[float, RegressionFunction] = {}
        for j in value_indices:
            t = context.time(j)
            if t >= last - TIME_TOLERANCE:
                continue
            k = _next_exercise(self.exercise_times, t)
            x = self.exercises[k].regressors(context, None, j, ccy)
            value_fns[_time_key(t)] = fit(basis, x, payoff_from[k])

        price = float(payoff_from[0].mean()) * self.sign
        logger.info("Fitted %s: deflated value %.6g", self.alias, price)
        return FittedBermudan(
            instrument=self,
            exercise_functions=tuple(exercise_fns),
            value_functions=value_fns,
            deflated_price=price,
        )


def _rows(x: FloatArray, mask: FloatArray) -> FloatArray:
    return x[mask] if x.ndim == 1 else x[mask, :]


def _next_exercise(times: Sequence[float], t: float) -> int:
    """Index of the first exercise strictly after t."""
    for k, s in enumerate(times):
        if s > t + TIME_TOLERANCE:
            return k
    raise ConfigurationError(f"No exercise after time {t}")


@dataclass(frozen=True, eq=False)
class FittedBermudan:
    """
    Sealed Bermudan instrument with fitted regressions.

    Attributes
    ----------
    instrument : BermudanInstrument
        The configuration that was fitted
    exercise_functions : tuple[RegressionFunction | None, ...]
        Continuation regression per exercise date (None at the last date,
        where continuation is zero)
    value_functions : Mapping[float, RegressionFunction]
        Live-value regression per valuation grid time
    deflated_price : float
        Mean deflated payoff on the fitting paths (the time-zero value)
    """

    instrument: BermudanInstrument
    exercise_functions: tuple[RegressionFunction | None, ...]
    value_functions: Mapping[float, RegressionFunction] = field(default_factory=dict)
    deflated_price: float = 0.0

    @property
    def alias(self) -> str:
        return self.instrument.alias

    @property
    def currency(self) -> str:
        return self.instrument.currency

    @property
    def exercises(self) -> tuple[Exercise, ...]:
        return self.instrument.exercises

    def exercise_index(self, context: MarketContext, paths: Paths = None) -> IntArray:
        """
        Exercise decision per path.

        Returns
        -------
        IntArray
            Index of the exercise taken, -1 where the option expires
        """
        ids = context.path_indices(paths)
        taken = np.full(len(ids), -1, dtype=np.int64)
        for k, (exercise, fn) in enumerate(zip(self.exercises, self.exercise_functions)):
            alive = taken < 0
            if not alive.any():
                break
            i = context.simulation.time_index(exercise.time)
            sel = ids[alive]
            numeraire = context.numeraire(self.currency, i, sel)
            intrinsic = exercise.intrinsic(context, sel, i, self.currency) / numeraire
            if fn is None:
                continuation = np.zeros(len(sel))
            else:
                continuation = evaluate(fn, exercise.regressors(context, sel, i, self.currency))
            exercised = intrinsic > np.maximum(continuation, 0.0)
            taken[np.flatnonzero(alive)[exercised]] = k
        return taken

    def states(self, context: MarketContext, time_index: int, paths: Paths = None) -> list[ExerciseState]:
        """Lifecycle state of each path at ``time_index``."""
        t = context.time(time_index)
        taken = self.exercise_index(context, paths)
        times = self.instrument.exercise_times
        result = []
        for k in taken:
            if k >= 0 and times[k] <= t + TIME_TOLERANCE:
                result.append(ExerciseState.EXERCISED)
            elif t >= times[-1] - TIME_TOLERANCE:
                result.append(ExerciseState.EXPIRED)
            elif t < times[0] - TIME_TOLERANCE:
                result.append(ExerciseState.NOT_YET_EXERCISABLE)
            else:
                result.append(ExerciseState.LIVE)
        return result

    def values(
        self,
        context: MarketContext,
        time_indices: Sequence[int],
        paths: Paths = None,
        currency: str | None = None,
        deflate: bool = False,
    ) -> PathArray:
        """
        Path-wise values over several grid times.

        Parameters
        ----------
        context : MarketContext
            Valuation context
        time_indices : Sequence[int]
            Grid indices
        paths : IntArray | slice | None
            Path selection
        currency : str | None
            Reporting currency (instrument currency if None)
        deflate : bool
            Divide by the reporting currency's bank account

        Returns
        -------
        PathArray
            Shape (n_paths, len(time_indices))

        Raises
        ------
        NotFittedError
            If a live value is needed at a time without a fitted regression
        """
        ids = context.path_indices(paths)
        taken = self.exercise_index(context, ids)
        times = self.instrument.exercise_times
        ccy = self.currency
        report = currency or ccy
        out = np.zeros((len(ids), len(time_indices)))

        for col, j in enumerate(time_indices):
            t = context.time(j)
            value = np.zeros(len(ids))
            done = np.zeros(len(ids), dtype=bool)
            for k, exercise in enumerate(self.exercises):
                if times[k] > t + TIME_TOLERANCE:
                    break
                mask = taken == k
                if mask.any():
                    value[mask] = exercise.intrinsic(context, ids[mask], j, ccy)
                done |= mask

            live = ~done
            if live.any() and t < times[-1] - TIME_TOLERANCE:
                fn = self.value_functions.get(_time_key(t))
                if fn is None:
                    raise NotFittedError(f"{self.alias}: no value regression fitted at time {t}")
                sel = ids[live]
                k = _next_exercise(times, t)
                estimate = evaluate(fn, self.exercises[k].regressors(context, sel, j, ccy))
                value[live] = np.maximum(estimate, 0.0) * context.numeraire(ccy, j, sel)

            value *= self.instrument.sign
            if report != ccy:
                value = value * context.fx_rate(ccy, j, ids, to_currency=report)
            if deflate:
                value = value / context.numeraire(report, j, ids)
            out[:, col] = value
        return out

    def value(
        self,
        context: MarketContext,
        paths: Paths = None,
        time_index: int = 0,
        currency: str | None = None,
    ) -> PathArray:
        """Path-wise value at one grid time, shape (n_paths,)."""
        return self.values(context, [time_index], paths, currency)[:, 0]
