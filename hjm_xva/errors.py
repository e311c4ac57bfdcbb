"""
Exception hierarchy for the HJM hybrid simulation engine.

All errors are unrecoverable at the point where they are raised and
propagate to the caller of the engine. Pricing is deterministic given its
inputs, so nothing in the engine retries or substitutes fallback values.
"""


class HJMError(Exception):
    """
    Base exception for engine failures.

    Allows callers to catch every engine-specific error with a single handler.
    """


class ConfigurationError(HJMError, ValueError):
    """
    Raised when model, context or instrument parameters are invalid or missing.

    Detected at build time wherever static validation can catch the issue,
    i.e. before any path is generated.
    """


class NotFittedError(ConfigurationError):
    """
    Raised when an instrument requiring regression fitting is valued unfit.
    """


class NumericalError(HJMError, ArithmeticError):
    """
    Raised on non-finite results, singular regression bases or negative
    variances produced during simulation or fitting.
    """


class DimensionMismatchError(HJMError, ValueError):
    """
    Raised when array lengths disagree (legs, cash flows, notionals,
    time grids, path counts).
    """
