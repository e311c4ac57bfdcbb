"""
Sources of standard normal increments for path simulation.

Both sources return independent, unit-variance draws shaped
(n_paths, n_steps, dimension); correlation is applied by the simulator.
"""

import logging
from typing import Protocol

import numpy as np
from scipy.stats import norm, qmc

from hjm_xva._types import FloatArray
from hjm_xva.errors import ConfigurationError

logger = logging.getLogger(__name__)

SOBOL_MAX_DIMENSION = 21201


class IncrementSource(Protocol):
    """Anything that can produce a block of independent standard normals."""

    def normals(self, n_paths: int, n_steps: int, dimension: int) -> FloatArray:
        """Return draws of shape (n_paths, n_steps, dimension)."""
        ...


class PseudoRandomIncrements:
    """
    Pseudo-random normals from numpy's PCG64 generator.

    Parameters
    ----------
    seed : int | None
        Seed; the same seed always yields the same block

    Example
    -------
    >>> z = PseudoRandomIncrements(seed=42).normals(1000, 20, 3)
    >>> z.shape
    (1000, 20, 3)
    """

    def __init__(self, seed: int | None = 42) -> None:
        self.seed = seed

    def normals(self, n_paths: int, n_steps: int, dimension: int) -> FloatArray:
        """Draw independent standard normals."""
        rng = np.random.default_rng(self.seed)
        return rng.standard_normal((n_paths, n_steps, dimension))

    def __repr__(self) -> str:
        return f"PseudoRandomIncrements(seed={self.seed})"


class SobolIncrements:
    """
    Scrambled Sobol points mapped through the inverse normal CDF.

    Each path is one Sobol point of dimension ``n_steps * dimension``, laid
    out step by step so the leading (best distributed) coordinates drive the
    earliest steps.

    Parameters
    ----------
    seed : int | None
        Scrambling seed
    scramble : bool
        Apply Owen scrambling (default True)

    Notes
    -----
    Sobol balance properties hold for power-of-two path counts; other
    counts are accepted but lose some of the variance reduction.
    """

    def __init__(self, seed: int | None = 42, scramble: bool = True) -> None:
        self.seed = seed
        self.scramble = scramble

    def normals(self, n_paths: int, n_steps: int, dimension: int) -> FloatArray:
        """
        Draw quasi-random standard normals.

        Raises
        ------
        ConfigurationError
            If the total dimension exceeds the Sobol direction-number table
        """
        total = n_steps * dimension
        if total > SOBOL_MAX_DIMENSION:
            raise ConfigurationError(
                f"Sobol dimension {total} ({n_steps} steps x {dimension} factors) "
                f"exceeds the supported maximum of {SOBOL_MAX_DIMENSION}"
            )
        if total == 0:
            return np.zeros((n_paths, n_steps, dimension))

        sampler = qmc.Sobol(d=total, scramble=self.scramble, seed=self.seed)
        if n_paths & (n_paths - 1) == 0:
            points = sampler.random_base2(int(np.log2(n_paths)))
        else:
            logger.debug("Sobol path count %d is not a power of two", n_paths)
            points = sampler.random(n_paths)

        # Keep away from 0 and 1 so the inverse CDF stays finite.
        eps = np.finfo(float).eps
        u = 0.5 + (1.0 - eps) * (points - 0.5)
        return norm.ppf(u).reshape(n_paths, n_steps, dimension)

    def __repr__(self) -> str:
        return f"SobolIncrements(seed={self.seed}, scramble={self.scramble})"


def increments_from_config(config: "SimulationConfig") -> IncrementSource:  # noqa: F821
    """
    Build the increment source named by a simulation configuration.

    Parameters
    ----------
    config : SimulationConfig
        Simulation configuration

    Returns
    -------
    IncrementSource
        Pseudo-random or Sobol source seeded from the configuration
    """
    if config.increments == "sobol":
        return SobolIncrements(seed=config.seed)
    return PseudoRandomIncrements(seed=config.seed)
