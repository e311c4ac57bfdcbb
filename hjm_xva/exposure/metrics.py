"""
Exposure metrics over scenario cubes.

Provides functions to compute:
- EE (Expected positive Exposure)
- ENE (Expected Negative Exposure)
- PFE (Potential Future Exposure)
- EEE (Effective Expected Exposure)

All functions are pure reductions over the path axis. Without an alias they
act on the netting set (sum over all legs of the cube).
"""

from dataclasses import dataclass

import numpy as np
import pandas as pd

from hjm_xva._types import FloatArray, PathArray
from hjm_xva.errors import ConfigurationError
from hjm_xva.exposure.cube import ScenarioCube


def _signed_values(cube: ScenarioCube, alias: str | None) -> PathArray:
    return cube.net() if alias is None else cube.leg(alias)


def expected_exposure(cube: ScenarioCube, alias: str | None = None) -> FloatArray:
    """
    Expected positive exposure at each time.

    EE(t) = E[max(V(t), 0)]

    Parameters
    ----------
    cube : ScenarioCube
        Scenario cube
    alias : str | None
        Leg to use (netting set if None)

    Returns
    -------
    FloatArray
        EE at each cube time, shape (n_times,)

    Example
    -------
    >>> ee = expected_exposure(cube)
    >>> print(f"Peak EE: {ee.max():,.0f}")
    """
    return np.maximum(_signed_values(cube, alias), 0.0).mean(axis=0)


def expected_negative_exposure(cube: ScenarioCube, alias: str | None = None) -> FloatArray:
    """
    Expected negative exposure at each time.

    ENE(t) = E[max(-V(t), 0)]

    This represents the counterparty's exposure to us.
    """
    return np.maximum(-_signed_values(cube, alias), 0.0).mean(axis=0)


def potential_future_exposure(
    cube: ScenarioCube, quantile: float = 0.95, alias: str | None = None
) -> FloatArray:
    """
    Potential future exposure as an empirical quantile of the signed value.

    Parameters
    ----------
    cube : ScenarioCube
        Scenario cube
    quantile : float
        Quantile level in (0, 1); low levels give the negative tail
    alias : str | None
        Leg to use (netting set if None)

    Returns
    -------
    FloatArray
        PFE at each cube time, shape (n_times,)
    """
    if not 0 < quantile < 1:
        raise ConfigurationError(f"Quantile must be in (0, 1), got {quantile}")
    return np.quantile(_signed_values(cube, alias), quantile, axis=0)


def effective_expected_exposure(cube: ScenarioCube, alias: str | None = None) -> FloatArray:
    """
    Effective expected exposure (non-decreasing EE).

    EEE(t) = max_{s <= t} EE(s)
    """
    return np.maximum.accumulate(expected_exposure(cube, alias))


@dataclass(frozen=True, eq=False)
class ExposureProfile:
    """
    Exposure summary of one leg or the netting set.

    Attributes
    ----------
    time_grid : FloatArray
        Time points in years
    ee : FloatArray
        Expected positive exposure at each time
    ene : FloatArray
        Expected negative exposure at each time
    eee : FloatArray
        Effective expected exposure at each time
    pfe : FloatArray
        PFE at ``quantile``
    quantile : float
        PFE quantile level
    peak_ee : float
        Maximum EE across all times
    average_ee : float
        Time-weighted average EE
    """

    time_grid: FloatArray
    ee: FloatArray
    ene: FloatArray
    eee: FloatArray
    pfe: FloatArray
    quantile: float
    peak_ee: float
    average_ee: float

    @classmethod
    def from_cube(
        cls, cube: ScenarioCube, alias: str | None = None, quantile: float = 0.95
    ) -> "ExposureProfile":
        """
        Calculate all exposure metrics from a scenario cube.

        Parameters
        ----------
        cube : ScenarioCube
            Scenario cube
        alias : str | None
            Leg to summarise (netting set if None)
        quantile : float
            PFE quantile level

        Returns
        -------
        ExposureProfile
            Complete exposure metrics
        """
        ee = expected_exposure(cube, alias)
        grid = cube.time_grid

        # Time-weighted average over the grid span
        span = grid[-1] - grid[0]
        if span > 0:
            average_ee = float(np.sum(0.5 * (ee[1:] + ee[:-1]) * np.diff(grid)) / span)
        else:
            average_ee = float(ee.mean())

        return cls(
            time_grid=grid.copy(),
            ee=ee,
            ene=expected_negative_exposure(cube, alias),
            eee=np.maximum.accumulate(ee),
            pfe=potential_future_exposure(cube, quantile, alias),
            quantile=quantile,
            peak_ee=float(ee.max()),
            average_ee=average_ee,
        )

    def to_frame(self) -> pd.DataFrame:
        """Profile as a table indexed by time."""
        return pd.DataFrame(
            {"ee": self.ee, "ene": self.ene, "eee": self.eee, f"pfe_{self.quantile:g}": self.pfe},
            index=pd.Index(self.time_grid, name="time"),
        )
