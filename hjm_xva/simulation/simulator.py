"""
Monte Carlo path simulation of the hybrid model state.

Propagates the model's Gaussian state with its exact transition moments
over a time grid merged with every volatility breakpoint, so coarse grids
carry no discretisation bias.
"""

import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

import numpy as np

from hjm_xva._types import FloatArray, IntArray, PathArray, StateArray, TimeGrid, Year
from hjm_xva.errors import ConfigurationError, DimensionMismatchError, NumericalError
from hjm_xva.market.correlation import matrix_root
from hjm_xva.market.hybrid import HybridModel
from hjm_xva.simulation.increments import IncrementSource

logger = logging.getLogger(__name__)

GRID_TOLERANCE = 1e-9


@dataclass(frozen=True, eq=False)
class Simulation:
    """
    Simulated model state along paths.

    Attributes
    ----------
    states : StateArray
        Read-only array of shape (n_states, n_paths, n_times)
    time_grid : TimeGrid
        Output times in years, strictly increasing
    aliases : list[str]
        State variable names, matching the first axis of ``states``
    y : dict[str, FloatArray]
        Deterministic auxiliary variance per currency, shape (n_times, d, d)
    """

    states: StateArray
    time_grid: TimeGrid
    aliases: list[str]
    y: dict[str, FloatArray]

    def __post_init__(self) -> None:
        """Check shapes and freeze the arrays."""
        if self.states.ndim != 3:
            raise DimensionMismatchError(f"States must be 3-d, got shape {self.states.shape}")
        if self.states.shape[0] != len(self.aliases):
            raise DimensionMismatchError(
                f"{len(self.aliases)} aliases for {self.states.shape[0]} state variables"
            )
        if self.states.shape[2] != len(self.time_grid):
            raise DimensionMismatchError(
                f"{len(self.time_grid)} grid times for {self.states.shape[2]} state columns"
            )
        self.states.flags.writeable = False
        self.time_grid.flags.writeable = False
        for values in self.y.values():
            values.flags.writeable = False

    @property
    def n_paths(self) -> int:
        """Number of simulated paths."""
        return self.states.shape[1]

    @property
    def n_times(self) -> int:
        """Number of output grid times."""
        return self.states.shape[2]

    def index(self, alias: str) -> int:
        """Row of a named state variable."""
        try:
            return self.aliases.index(alias)
        except ValueError:
            raise ConfigurationError(f"Unknown state {alias!r}; known: {self.aliases}") from None

    def state(self, alias: str) -> PathArray:
        """Paths of one state variable, shape (n_paths, n_times)."""
        return self.states[self.index(alias)]

    def time_index(self, t: Year) -> int:
        """
        Grid index of time t.

        Raises
        ------
        ConfigurationError
            If t is not a grid time
        """
        i = int(np.searchsorted(self.time_grid, t - GRID_TOLERANCE))
        if i >= self.n_times or abs(self.time_grid[i] - t) > GRID_TOLERANCE:
            raise ConfigurationError(f"Time {t} is not on the simulation grid")
        return i

    def fixing_index(self, t: Year) -> int:
        """Index of the last grid time on or before t (-1 if none)."""
        return int(np.searchsorted(self.time_grid, t + GRID_TOLERANCE, side="right")) - 1


def validate_time_grid(time_grid: Sequence[float] | FloatArray) -> TimeGrid:
    """
    Check a simulation time grid.

    Raises
    ------
    ConfigurationError
        If the grid is not 1-d, has fewer than two points, starts before
        zero, has non-finite entries or is not strictly increasing
    """
    grid = np.array(time_grid, dtype=float)
    if grid.ndim != 1 or len(grid) < 2:
        raise ConfigurationError(f"Time grid needs at least two points, got {grid}")
    if not np.all(np.isfinite(grid)):
        raise ConfigurationError("Time grid has non-finite entries")
    if grid[0] < 0:
        raise ConfigurationError(f"Time grid starts before zero: {grid[0]}")
    if np.any(np.diff(grid) <= GRID_TOLERANCE):
        raise ConfigurationError("Time grid must be strictly increasing")
    return grid


def build_time_grid(
    horizon: Year,
    dt: Year,
    extra_times: Sequence[float] = (),
) -> TimeGrid:
    """
    Regular grid from 0 to ``horizon`` merged with event times.

    Parameters
    ----------
    horizon : float
        Last regular grid time in years
    dt : float
        Regular step in years
    extra_times : Sequence[float]
        Event times (fixings, exercises, payments) to include exactly

    Returns
    -------
    TimeGrid
        Strictly increasing grid starting at 0

    Example
    -------
    >>> build_time_grid(1.0, 0.5, extra_times=[0.75])
    array([0.  , 0.5 , 0.75, 1.  ])
    """
    if horizon <= 0 or dt <= 0:
        raise ConfigurationError(f"horizon and dt must be positive, got {horizon}, {dt}")
    n = int(np.floor(horizon / dt + GRID_TOLERANCE))
    regular = dt * np.arange(n + 1)
    if horizon - regular[-1] > GRID_TOLERANCE:
        regular = np.append(regular, horizon)

    extras = np.array(list(extra_times), dtype=float)
    if extras.size and (np.any(extras < 0) or not np.all(np.isfinite(extras))):
        raise ConfigurationError(f"Event times must be finite and >= 0, got {extras}")

    merged = np.union1d(regular, extras)
    keep = np.concatenate([[True], np.diff(merged) > GRID_TOLERANCE])
    return merged[keep]


def simulate(
    model: HybridModel,
    time_grid: Sequence[float] | FloatArray,
    n_paths: int,
    increment_source: IncrementSource,
    n_workers: int = 1,
) -> Simulation:
    """
    Simulate the hybrid model state over a time grid.

    Parameters
    ----------
    model : HybridModel
        Hybrid model (its correlations are applied per step)
    time_grid : Sequence[float] | FloatArray
        Output times, strictly increasing, starting at or after 0
    n_paths : int
        Number of paths
    increment_source : IncrementSource
        Source of independent standard normals
    n_workers : int
        Threads over which paths are partitioned; results do not depend on it

    Returns
    -------
    Simulation
        Read-only simulated states

    Raises
    ------
    ConfigurationError
        On an invalid grid or path count, before any draw is made
    NumericalError
        If a step covariance is not PSD or a state becomes non-finite

    Example
    -------
    >>> sim = simulate(model, build_time_grid(5.0, 0.25), 4096, SobolIncrements(7))
    >>> sim.states.shape
    (7, 4096, 21)
    """
    grid = validate_time_grid(time_grid)
    if not isinstance(n_paths, (int, np.integer)) or n_paths < 1:
        raise ConfigurationError(f"n_paths must be a positive integer, got {n_paths}")
    if n_workers < 1:
        raise ConfigurationError(f"n_workers must be positive, got {n_workers}")

    breaks = model.breakpoints
    breaks = breaks[(breaks > 0) & (breaks < grid[-1])]
    fine = np.union1d(np.concatenate([[0.0], grid]), breaks)
    fine = fine[np.concatenate([[True], np.diff(fine) > GRID_TOLERANCE])]
    output = np.searchsorted(fine, grid - GRID_TOLERANCE)
    n_steps = len(fine) - 1

    logger.info(
        "Simulating %d paths over %d output times (%d exact steps, %d stochastic factors)",
        n_paths,
        len(grid),
        n_steps,
        model.n_stochastic,
    )

    means = [model.initial_mean()]
    state_maps: list[FloatArray] = []
    roots: list[FloatArray] = []
    for start, end in zip(fine[:-1], fine[1:]):
        moments = model.step_moments(float(start), float(end))
        means.append(moments.mean_map @ means[-1])
        state_maps.append(moments.state_map)
        roots.append(matrix_root(moments.covariance, f"step [{start:.4f}, {end:.4f}] covariance"))
    logger.debug("Prepared %d transition steps", n_steps)

    z = increment_source.normals(n_paths, n_steps, model.n_stochastic)
    if z.shape != (n_paths, n_steps, model.n_stochastic):
        raise DimensionMismatchError(
            f"Increment source returned shape {z.shape}, expected "
            f"{(n_paths, n_steps, model.n_stochastic)}"
        )

    aliases = model.state_alias()
    states = np.empty((len(aliases), n_paths, len(grid)))
    observe_at = {int(k): j for j, k in enumerate(output)}

    def propagate(chunk: IntArray) -> None:
        block = np.zeros((len(chunk), model.n_stochastic))
        if 0 in observe_at:
            states[:, chunk, observe_at[0]] = model.observe(means[0], block)
        for k in range(n_steps):
            block = block @ state_maps[k].T + z[chunk, k, :] @ roots[k].T
            if k + 1 in observe_at:
                states[:, chunk, observe_at[k + 1]] = model.observe(means[k + 1], block)

    chunks = [c for c in np.array_split(np.arange(n_paths), min(n_workers, n_paths)) if len(c)]
    if len(chunks) == 1:
        propagate(chunks[0])
    else:
        with ThreadPoolExecutor(max_workers=len(chunks)) as pool:
            list(pool.map(propagate, chunks))

    if not np.all(np.isfinite(states)):
        raise NumericalError("Simulation produced non-finite states")

    y = {
        code: np.stack([model.currency_model(code).y(float(t)) for t in grid])
        for code in model.currencies
    }
    return Simulation(states=states, time_grid=grid, aliases=aliases, y=y)
