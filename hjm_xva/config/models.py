"""
Pydantic configuration models for the HJM hybrid simulation engine.

These models provide validation and type-safe configuration for:
- Currency term-structure models (benchmark tenors, mean reversion, vols)
- FX models and cross-asset correlations
- Discount/index curves and their bindings
- Simulation, regression and collateral parameters

Validation failures surface as ``ConfigurationError`` through
:func:`validate_config`, so callers never see partially defaulted records.
"""

import math
from collections.abc import Mapping
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from hjm_xva.errors import ConfigurationError

ConfigT = TypeVar("ConfigT", bound=BaseModel)


def validate_config(model_cls: type[ConfigT], data: Mapping[str, Any]) -> ConfigT:
    """
    Validate a mapping into a configuration record.

    Parameters
    ----------
    model_cls : type[BaseModel]
        Configuration class to build
    data : Mapping[str, Any]
        Raw parameter mapping

    Returns
    -------
    BaseModel
        Validated configuration instance

    Raises
    ------
    ConfigurationError
        If required keys are absent or values are out of domain
    """
    try:
        return model_cls.model_validate(dict(data))
    except ValidationError as exc:
        raise ConfigurationError(
            f"Invalid {model_cls.__name__}: {exc.error_count()} error(s)\n{exc}"
        ) from exc


def _check_breakpoints(times: list[float]) -> list[float]:
    if any(t <= 0 for t in times):
        raise ValueError(f"Volatility breakpoints must be positive, got {times}")
    if any(t2 <= t1 for t1, t2 in zip(times, times[1:])):
        raise ValueError(f"Volatility breakpoints must be strictly increasing, got {times}")
    return times


class CurrencyModelConfig(BaseModel):
    """
    Multi-factor Gaussian HJM parameters for one currency.

    Factors are identified with benchmark forward rates f(t, t + delta_k);
    each benchmark carries a piecewise-constant volatility in calendar time.

    Attributes
    ----------
    currency : str
        ISO currency code (e.g., 'EUR')
    benchmark_tenors : list[float]
        Benchmark forward tenors in years, one per factor
    mean_reversion : list[float]
        Mean reversion speed per factor (>= 0)
    volatility_times : list[float]
        Breakpoints of the volatility term structure (pieces = len + 1)
    volatilities : list[list[float]]
        Absolute (normal) volatility per benchmark and piece
    correlation : list[list[float]] | None
        Benchmark correlation matrix (identity if omitted)
    correlation_triples : list[tuple[float, float, float]] | None
        Alternative (tenor1, tenor2, correlation) representation

    Example
    -------
    >>> config = CurrencyModelConfig(
    ...     currency="EUR",
    ...     benchmark_tenors=[2.0, 10.0],
    ...     mean_reversion=[0.05, 0.5],
    ...     volatilities=[[0.008], [0.007]],
    ...     correlation=[[1.0, 0.6], [0.6, 1.0]],
    ... )
    """

    currency: str = Field(min_length=1)
    benchmark_tenors: list[float] = Field(min_length=1)
    mean_reversion: list[float] = Field(min_length=1)
    volatility_times: list[float] = Field(default_factory=list)
    volatilities: list[list[float]] = Field(min_length=1)
    correlation: list[list[float]] | None = None
    correlation_triples: list[tuple[float, float, float]] | None = None

    @field_validator("mean_reversion")
    @classmethod
    def mean_reversion_non_negative(cls, v: list[float]) -> list[float]:
        """Mean reversion must be finite and non-negative."""
        for a in v:
            if not math.isfinite(a) or a < 0:
                raise ValueError(f"Mean reversion must be finite and >= 0, got {a}")
        return v

    @field_validator("benchmark_tenors")
    @classmethod
    def tenors_increasing(cls, v: list[float]) -> list[float]:
        """Benchmark tenors must be positive and strictly increasing."""
        if any(t <= 0 for t in v):
            raise ValueError(f"Benchmark tenors must be positive, got {v}")
        if any(t2 <= t1 for t1, t2 in zip(v, v[1:])):
            raise ValueError(f"Benchmark tenors must be strictly increasing, got {v}")
        return v

    @field_validator("volatility_times")
    @classmethod
    def breakpoints_increasing(cls, v: list[float]) -> list[float]:
        """Volatility breakpoints must be positive and strictly increasing."""
        return _check_breakpoints(v)

    @model_validator(mode="after")
    def dimensions_consistent(self) -> "CurrencyModelConfig":
        """Check factor counts and volatility piece counts agree."""
        n_factors = len(self.benchmark_tenors)
        if len(self.mean_reversion) != n_factors:
            raise ValueError(
                f"{n_factors} benchmark tenors but "
                f"{len(self.mean_reversion)} mean reversion values"
            )
        if len(self.volatilities) != n_factors:
            raise ValueError(
                f"{n_factors} benchmark tenors but "
                f"{len(self.volatilities)} volatility rows"
            )
        n_pieces = len(self.volatility_times) + 1
        for row in self.volatilities:
            if len(row) != n_pieces:
                raise ValueError(
                    f"Each volatility row needs {n_pieces} pieces, got {len(row)}"
                )
            for vol in row:
                if not math.isfinite(vol) or vol < 0:
                    raise ValueError(f"Volatility must be finite and >= 0, got {vol}")
        if self.correlation is not None and self.correlation_triples is not None:
            raise ValueError("Give either correlation or correlation_triples, not both")
        if self.correlation is not None:
            if len(self.correlation) != n_factors or any(
                len(row) != n_factors for row in self.correlation
            ):
                raise ValueError(
                    f"Correlation matrix must be {n_factors}x{n_factors}"
                )
            for row in self.correlation:
                for rho in row:
                    if not -1.0 <= rho <= 1.0:
                        raise ValueError(f"Correlation outside [-1, 1]: {rho}")
        if self.correlation_triples is not None:
            for _, _, rho in self.correlation_triples:
                if not -1.0 <= rho <= 1.0:
                    raise ValueError(f"Correlation outside [-1, 1]: {rho}")
        return self

    @property
    def n_factors(self) -> int:
        """Number of factors."""
        return len(self.benchmark_tenors)


class FXModelConfig(BaseModel):
    """
    Lognormal FX model parameters.

    The rate is quoted as base-currency units per one unit of ``currency``.

    Attributes
    ----------
    currency : str
        Foreign currency code
    spot : float
        Initial FX spot rate
    volatility_times : list[float]
        Breakpoints of the volatility term structure
    volatilities : list[float]
        Lognormal volatility per piece
    """

    currency: str = Field(min_length=1)
    spot: float = Field(gt=0, description="Initial FX spot rate")
    volatility_times: list[float] = Field(default_factory=list)
    volatilities: list[float] = Field(min_length=1)

    @field_validator("volatility_times")
    @classmethod
    def breakpoints_increasing(cls, v: list[float]) -> list[float]:
        """Volatility breakpoints must be positive and strictly increasing."""
        return _check_breakpoints(v)

    @model_validator(mode="after")
    def pieces_consistent(self) -> "FXModelConfig":
        """Check the number of volatility pieces."""
        if len(self.volatilities) != len(self.volatility_times) + 1:
            raise ValueError(
                f"FX {self.currency} needs {len(self.volatility_times) + 1} "
                f"volatility pieces, got {len(self.volatilities)}"
            )
        for vol in self.volatilities:
            if not math.isfinite(vol) or vol < 0:
                raise ValueError(f"FX volatility must be finite and >= 0, got {vol}")
        return self


class CrossCorrelation(BaseModel):
    """
    Correlation between two named drivers of the hybrid model.

    Driver names are ``"<CCY>.<k>"`` for benchmark factor ``k`` of a currency
    and ``"FX.<CCY>"`` for an FX rate.
    """

    first: str
    second: str
    value: float = Field(ge=-1, le=1)


class HybridModelConfig(BaseModel):
    """
    Cross-asset IR/FX hybrid model configuration.

    Attributes
    ----------
    base_currency : str
        Pricing (domestic) currency
    currencies : list[CurrencyModelConfig]
        One term-structure model per currency, base included
    fx : list[FXModelConfig]
        One FX model per foreign currency
    cross_correlations : list[CrossCorrelation]
        Correlations between drivers of different assets
    """

    base_currency: str
    currencies: list[CurrencyModelConfig] = Field(min_length=1)
    fx: list[FXModelConfig] = Field(default_factory=list)
    cross_correlations: list[CrossCorrelation] = Field(default_factory=list)

    @model_validator(mode="after")
    def currencies_consistent(self) -> "HybridModelConfig":
        """Every foreign currency needs exactly one FX model."""
        codes = [c.currency for c in self.currencies]
        if len(set(codes)) != len(codes):
            raise ValueError(f"Duplicate currency models: {codes}")
        if self.base_currency not in codes:
            raise ValueError(f"Base currency {self.base_currency} has no model")
        fx_codes = [f.currency for f in self.fx]
        if len(set(fx_codes)) != len(fx_codes):
            raise ValueError(f"Duplicate FX models: {fx_codes}")
        foreign = set(codes) - {self.base_currency}
        if set(fx_codes) != foreign:
            raise ValueError(
                f"FX models {sorted(fx_codes)} do not match foreign "
                f"currencies {sorted(foreign)}"
            )
        return self

    @classmethod
    def from_flat_mapping(cls, mapping: Mapping[str, Any]) -> "HybridModelConfig":
        """
        Build from a flat mapping of dotted keys.

        Recognised keys:
        - ``base_currency``
        - ``<CCY>.<field>`` for currency model fields
        - ``FX.<CCY>.<field>`` for FX model fields
        - ``correlation.<driver1>|<driver2>`` for cross correlations

        Raises
        ------
        ConfigurationError
            If a key cannot be interpreted or validation fails
        """
        currencies: dict[str, dict[str, Any]] = {}
        fx: dict[str, dict[str, Any]] = {}
        cross: list[dict[str, Any]] = []
        base = None

        for key, value in mapping.items():
            if key == "base_currency":
                base = value
            elif key.startswith("correlation."):
                pair = key[len("correlation."):].split("|")
                if len(pair) != 2:
                    raise ConfigurationError(f"Malformed correlation key: {key!r}")
                cross.append({"first": pair[0], "second": pair[1], "value": value})
            elif key.startswith("FX."):
                parts = key.split(".")
                if len(parts) != 3:
                    raise ConfigurationError(f"Malformed FX key: {key!r}")
                fx.setdefault(parts[1], {"currency": parts[1]})[parts[2]] = value
            else:
                parts = key.split(".")
                if len(parts) != 2:
                    raise ConfigurationError(f"Unrecognised configuration key: {key!r}")
                currencies.setdefault(parts[0], {"currency": parts[0]})[parts[1]] = value

        if base is None:
            raise ConfigurationError("Missing required key 'base_currency'")

        return validate_config(
            cls,
            {
                "base_currency": base,
                "currencies": list(currencies.values()),
                "fx": list(fx.values()),
                "cross_correlations": cross,
            },
        )


class CurveConfig(BaseModel):
    """
    Initial term structure given as (tenor, zero rate) pairs.

    Rates are continuously compounded; a single pair gives a flat curve.
    """

    curve_id: str
    tenors: list[float] = Field(min_length=1)
    rates: list[float] = Field(min_length=1)

    @model_validator(mode="after")
    def same_length(self) -> "CurveConfig":
        """Tenors and rates must pair up."""
        if len(self.tenors) != len(self.rates):
            raise ValueError(
                f"Curve {self.curve_id}: {len(self.tenors)} tenors "
                f"but {len(self.rates)} rates"
            )
        return self


class MarketConfig(BaseModel):
    """
    Complete market configuration: model, curves and curve bindings.

    Attributes
    ----------
    model : HybridModelConfig
        Hybrid model parameters
    curves : list[CurveConfig]
        Initial curves
    bindings : dict[str, dict[str, str]]
        currency -> index name -> curve id ('' is the discount curve)
    """

    model: HybridModelConfig
    curves: list[CurveConfig] = Field(min_length=1)
    bindings: dict[str, dict[str, str]]

    @model_validator(mode="after")
    def bindings_resolvable(self) -> "MarketConfig":
        """Every binding must reference a configured curve."""
        curve_ids = {c.curve_id for c in self.curves}
        for currency, indices in self.bindings.items():
            if "" not in indices:
                raise ValueError(f"Currency {currency} has no default ('') curve")
            for index, curve_id in indices.items():
                if curve_id not in curve_ids:
                    raise ValueError(
                        f"Binding {currency}.{index or '<default>'} references "
                        f"unknown curve {curve_id!r}"
                    )
        return self


class SimulationConfig(BaseModel):
    """
    Monte Carlo simulation parameters.

    Attributes
    ----------
    n_paths : int
        Number of Monte Carlo paths
    horizon_years : float
        Simulation horizon in years
    time_step : str
        Time step frequency
    extra_times : list[float]
        Additional grid times (fixings, exercises) merged into the grid
    seed : int | None
        Random seed for reproducibility
    increments : str
        'pseudo' (independent normals) or 'sobol' (scrambled Sobol)
    n_workers : int
        Worker threads for path-partitioned work
    """

    n_paths: int = Field(ge=1, le=1_000_000, default=5000)
    horizon_years: float = Field(gt=0, le=60, default=5.0)
    time_step: Literal["monthly", "quarterly", "semiannual", "annual"] = "quarterly"
    extra_times: list[float] = Field(default_factory=list)
    seed: int | None = Field(default=42)
    increments: Literal["pseudo", "sobol"] = "pseudo"
    n_workers: int = Field(ge=1, le=64, default=1)

    @property
    def dt(self) -> float:
        """Time step in years."""
        return {
            "monthly": 1 / 12,
            "quarterly": 0.25,
            "semiannual": 0.5,
            "annual": 1.0,
        }[self.time_step]


class RegressionConfig(BaseModel):
    """
    American Monte Carlo regression parameters.

    Attributes
    ----------
    basis : str
        'polynomial' or 'piecewise'
    degree : int
        Polynomial degree
    breakpoints : list[float]
        Knots of the piecewise basis (in standardised regressor units)
    itm_only : bool
        Fit exercise regressions on in-the-money paths only
    """

    basis: Literal["polynomial", "piecewise"] = "polynomial"
    degree: int = Field(ge=0, le=8, default=2)
    breakpoints: list[float] = Field(default_factory=list)
    itm_only: bool = False

    @model_validator(mode="after")
    def breakpoints_for_piecewise(self) -> "RegressionConfig":
        """Piecewise bases need at least one breakpoint."""
        if self.basis == "piecewise" and not self.breakpoints:
            raise ValueError("Piecewise basis requires at least one breakpoint")
        return self


class CollateralConfig(BaseModel):
    """
    Collateral agreement parameters.

    Attributes
    ----------
    threshold : float
        Unsecured exposure allowed before VM is called
    minimum_transfer_amount : float
        Smallest transfer that is actually made
    independent_amount : float
        Fixed amount held on top of variation margin
    initial_balance : float
        Variation margin balance at the first grid time
    mpr_days : int
        Margin period of risk in calendar days
    """

    threshold: float = Field(ge=0, default=0.0)
    minimum_transfer_amount: float = Field(ge=0, default=0.0)
    independent_amount: float = 0.0
    initial_balance: float = 0.0
    mpr_days: int = Field(ge=0, le=60, default=10)

    @property
    def margin_period_of_risk(self) -> float:
        """Margin period of risk in years."""
        return self.mpr_days / 365.0
