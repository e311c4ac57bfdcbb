"""
Path simulation for the hybrid model.

This module provides:
- Pseudo-random and Sobol increment sources
- Exact-moment path simulation with path-partitioned threading
- Time grid construction and validation
"""

from hjm_xva.simulation.increments import (
    IncrementSource,
    PseudoRandomIncrements,
    SobolIncrements,
    increments_from_config,
)
from hjm_xva.simulation.simulator import (
    Simulation,
    build_time_grid,
    simulate,
    validate_time_grid,
)

__all__ = [
    "IncrementSource",
    "PseudoRandomIncrements",
    "SobolIncrements",
    "increments_from_config",
    "Simulation",
    "build_time_grid",
    "simulate",
    "validate_time_grid",
]
