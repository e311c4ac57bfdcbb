"""
Scenario cube: path-wise valuations indexed by (path, time, leg).

A cube is immutable. Aggregation and collateral simulation return new
cubes; the netting set of a cube is the sum over its legs.
"""

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
import pandas as pd

from hjm_xva._types import CubeArray, FloatArray, PathArray, TimeGrid
from hjm_xva.errors import ConfigurationError, DimensionMismatchError


@dataclass(frozen=True, eq=False)
class ScenarioCube:
    """
    Valuations of several legs over simulated paths.

    Attributes
    ----------
    values : CubeArray
        Read-only valuations, shape (n_paths, n_times, n_legs)
    time_grid : TimeGrid
        Valuation times, length n_times
    aliases : tuple[str, ...]
        Leg labels, length n_legs
    currency : str | None
        Reporting currency (None for mixed native currencies)
    deflated : bool
        Whether values are divided by the numeraire

    Example
    -------
    >>> cube = scenarios([fixed, floating], context)
    >>> net = cube.aggregate()
    >>> net.leg("netting_set").shape
    (5000, 41)
    """

    values: CubeArray
    time_grid: TimeGrid
    aliases: tuple[str, ...]
    currency: str | None = None
    deflated: bool = False

    def __post_init__(self) -> None:
        values = np.array(self.values, dtype=float)
        grid = np.array(self.time_grid, dtype=float)
        aliases = tuple(self.aliases)
        if values.ndim != 3:
            raise DimensionMismatchError(
                f"Cube values must be (path, time, leg), got shape {values.shape}"
            )
        if values.shape[1] != len(grid):
            raise DimensionMismatchError(
                f"Cube has {values.shape[1]} times but time grid has {len(grid)}"
            )
        if values.shape[2] != len(aliases):
            raise DimensionMismatchError(
                f"Cube has {values.shape[2]} legs but {len(aliases)} aliases"
            )
        if len(set(aliases)) != len(aliases):
            raise ConfigurationError(f"Leg aliases must be unique, got {aliases}")
        values.flags.writeable = False
        grid.flags.writeable = False
        object.__setattr__(self, "values", values)
        object.__setattr__(self, "time_grid", grid)
        object.__setattr__(self, "aliases", aliases)

    @property
    def n_paths(self) -> int:
        return self.values.shape[0]

    @property
    def n_times(self) -> int:
        return self.values.shape[1]

    @property
    def n_legs(self) -> int:
        return self.values.shape[2]

    def index(self, alias: str) -> int:
        """Position of leg ``alias``."""
        try:
            return self.aliases.index(alias)
        except ValueError:
            raise ConfigurationError(f"Unknown leg {alias!r}; available: {list(self.aliases)}") from None

    def leg(self, alias: str) -> PathArray:
        """Valuations of one leg, shape (n_paths, n_times)."""
        return self.values[:, :, self.index(alias)]

    def net(self) -> PathArray:
        """Netting-set value (sum over legs), shape (n_paths, n_times)."""
        return self.values.sum(axis=2)

    def select(self, aliases: Sequence[str]) -> "ScenarioCube":
        """Sub-cube with the given legs, in the given order."""
        columns = [self.index(a) for a in aliases]
        return ScenarioCube(
            self.values[:, :, columns], self.time_grid, tuple(aliases), self.currency, self.deflated
        )

    def aggregate(self, keep_gross: bool = False, alias: str = "netting_set") -> "ScenarioCube":
        """
        Sum all legs into one netting-set leg.

        Parameters
        ----------
        keep_gross : bool
            Keep the individual legs next to the aggregate
        alias : str
            Label of the aggregate leg

        Returns
        -------
        ScenarioCube
            New cube with the aggregate as its last leg
        """
        total = self.net()[:, :, None]
        if keep_gross:
            return self.append(total[:, :, 0], alias)
        return ScenarioCube(total, self.time_grid, (alias,), self.currency, self.deflated)

    def append(self, values: PathArray, alias: str) -> "ScenarioCube":
        """
        New cube with an extra leg.

        Raises
        ------
        DimensionMismatchError
            If ``values`` is not (n_paths, n_times)
        """
        extra = np.asarray(values, dtype=float)
        if extra.shape != (self.n_paths, self.n_times):
            raise DimensionMismatchError(
                f"Appended leg must have shape {(self.n_paths, self.n_times)}, got {extra.shape}"
            )
        return ScenarioCube(
            np.concatenate([self.values, extra[:, :, None]], axis=2),
            self.time_grid,
            self.aliases + (alias,),
            self.currency,
            self.deflated,
        )

    def time_index(self, t: float) -> int:
        """Index of grid time ``t``."""
        hits = np.flatnonzero(np.abs(self.time_grid - t) <= 1e-9)
        if len(hits) == 0:
            raise ConfigurationError(f"Time {t} is not on the cube time grid")
        return int(hits[0])

    def to_frame(self) -> pd.DataFrame:
        """
        Long-format table with columns path, time, leg, value.

        Returns
        -------
        pd.DataFrame
            One row per (path, time, leg)
        """
        paths, times, legs = np.meshgrid(
            np.arange(self.n_paths), np.arange(self.n_times), np.arange(self.n_legs), indexing="ij"
        )
        return pd.DataFrame(
            {
                "path": paths.ravel(),
                "time": self.time_grid[times.ravel()],
                "leg": np.array(self.aliases, dtype=object)[legs.ravel()],
                "value": self.values.ravel(),
            }
        )


def stack_legs(
    legs: Sequence[FloatArray],
    time_grid: TimeGrid,
    aliases: Sequence[str],
    currency: str | None = None,
    deflated: bool = False,
) -> ScenarioCube:
    """Build a cube from per-leg (n_paths, n_times) arrays."""
    if len(legs) != len(aliases):
        raise DimensionMismatchError(f"{len(legs)} legs for {len(aliases)} aliases")
    shapes = {np.shape(v) for v in legs}
    if len(shapes) != 1:
        raise DimensionMismatchError(f"Legs have different shapes: {sorted(shapes)}")
    return ScenarioCube(np.stack(legs, axis=2), time_grid, tuple(aliases), currency, deflated)
