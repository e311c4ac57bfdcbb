"""
Scenario engine: path-wise valuation of legs and fitted Bermudans.

Paths are partitioned across a thread pool; each worker fills a disjoint
block of the output cube, so the result does not depend on the number of
workers.
"""

import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor

import numpy as np

from hjm_xva._types import FloatArray, IntArray
from hjm_xva.errors import ConfigurationError, NotFittedError
from hjm_xva.exposure.cube import ScenarioCube
from hjm_xva.instruments.bermudan import BermudanInstrument, FittedBermudan
from hjm_xva.instruments.legs import Leg
from hjm_xva.market.context import MarketContext, Paths

logger = logging.getLogger(__name__)

Valuable = Leg | FittedBermudan


def _alias(instrument: Valuable, position: int) -> str:
    return instrument.alias or f"leg_{position}"


def _value_block(
    instrument: Valuable,
    context: MarketContext,
    ids: IntArray,
    time_indices: Sequence[int],
    currency: str | None,
    deflate: bool,
) -> FloatArray:
    if isinstance(instrument, FittedBermudan):
        return instrument.values(context, time_indices, ids, currency, deflate)
    block = np.empty((len(ids), len(time_indices)))
    report = currency or instrument.currency
    for col, j in enumerate(time_indices):
        value = instrument.value(context, ids, j, currency)
        if deflate:
            value = value / context.numeraire(report, j, ids)
        block[:, col] = value
    return block


def scenarios(
    instruments: Sequence[Valuable | BermudanInstrument],
    context: MarketContext,
    time_grid: Sequence[float] | FloatArray | None = None,
    paths: Paths = None,
    currency: str | None = None,
    deflate: bool = False,
    n_workers: int = 1,
) -> ScenarioCube:
    """
    Value instruments on every selected path and time.

    Parameters
    ----------
    instruments : Sequence[Leg | FittedBermudan]
        Legs and fitted Bermudans, one cube leg each
    context : MarketContext
        Market context holding the simulation
    time_grid : Sequence[float] | None
        Valuation times, all on the simulation grid (default: the full grid)
    paths : IntArray | slice | None
        Path selection (default: all paths)
    currency : str | None
        Reporting currency; None keeps each instrument's own currency
    deflate : bool
        Divide values by the reporting currency's bank account
    n_workers : int
        Threads over which paths are partitioned

    Returns
    -------
    ScenarioCube
        Valuations of shape (n_paths, n_times, n_instruments)

    Raises
    ------
    NotFittedError
        If an instrument is an unfit Bermudan
    ConfigurationError
        If a time is not on the simulation grid or no instrument is given

    Example
    -------
    >>> fitted = option.fit(context, PolynomialBasis(2))
    >>> cube = scenarios([fitted, *hedge_legs], context, currency="EUR")
    """
    if not instruments:
        raise ConfigurationError("No instruments to value")
    for instrument in instruments:
        if isinstance(instrument, BermudanInstrument):
            raise NotFittedError(f"{instrument.alias}: fit() the Bermudan before computing scenarios")
    if n_workers < 1:
        raise ConfigurationError(f"n_workers must be positive, got {n_workers}")

    sim = context.simulation
    grid = sim.time_grid if time_grid is None else np.asarray(time_grid, dtype=float)
    time_indices = [sim.time_index(float(t)) for t in grid]
    ids = context.path_indices(paths)
    aliases = [_alias(inst, k) for k, inst in enumerate(instruments)]

    currencies = {currency or inst.currency for inst in instruments}
    if deflate and len(currencies) > 1:
        raise ConfigurationError(
            f"Deflating mixed currencies {sorted(currencies)} needs a reporting currency"
        )

    logger.info(
        "Computing scenarios for %d instruments on %d paths x %d times",
        len(instruments),
        len(ids),
        len(time_indices),
    )

    values = np.empty((len(ids), len(time_indices), len(instruments)))

    def run(rows: IntArray) -> None:
        for k, instrument in enumerate(instruments):
            values[rows, :, k] = _value_block(instrument, context, ids[rows], time_indices, currency, deflate)

    chunks = [c for c in np.array_split(np.arange(len(ids)), min(n_workers, max(len(ids), 1))) if len(c)]
    if len(chunks) <= 1:
        for rows in chunks:
            run(rows)
    else:
        with ThreadPoolExecutor(max_workers=len(chunks)) as pool:
            list(pool.map(run, chunks))

    cube_currency = currencies.pop() if len(currencies) == 1 else None
    logger.debug("Scenario cube currency: %s", cube_currency)
    return ScenarioCube(values, sim.time_grid[time_indices], tuple(aliases), cube_currency, deflate)

