"""
Scenario cubes, scenario generation and exposure metrics.

This module provides:
- ScenarioCube: immutable (path, time, leg) valuations
- scenarios: path-wise valuation of legs and fitted Bermudans
- EE / ENE / PFE / EEE profiles
"""

from hjm_xva.exposure.cube import ScenarioCube, stack_legs
from hjm_xva.exposure.metrics import (
    ExposureProfile,
    effective_expected_exposure,
    expected_exposure,
    expected_negative_exposure,
    potential_future_exposure,
)
from hjm_xva.exposure.scenario import scenarios

__all__ = [
    "ScenarioCube",
    "stack_legs",
    "scenarios",
    "ExposureProfile",
    "expected_exposure",
    "expected_negative_exposure",
    "potential_future_exposure",
    "effective_expected_exposure",
]
