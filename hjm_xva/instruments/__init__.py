"""
Cash flows, legs and Bermudan instruments.

This module provides:
- The closed set of cash-flow variants and their path-wise amounts
- Legs with discounting, FX conversion and MtM notional resets
- Schedule builders for fixed, floating, cap/floor and swap legs
- Bermudan instruments with an unfit -> fitted lifecycle
"""

from hjm_xva.instruments.bermudan import (
    BermudanInstrument,
    Exercise,
    ExerciseState,
    FittedBermudan,
)
from hjm_xva.instruments.cashflows import (
    CashFlow,
    CashFlowKind,
    FixedCoupon,
    FloatingCoupon,
    NotionalFlow,
    Optionlet,
    amount,
)
from hjm_xva.instruments.legs import (
    Leg,
    MtMReset,
    cross_currency_swap,
    fixed_leg,
    floating_leg,
    optionlet_leg,
    schedule,
    vanilla_swap,
)

__all__ = [
    # Cash flows
    "CashFlow",
    "CashFlowKind",
    "FixedCoupon",
    "FloatingCoupon",
    "Optionlet",
    "NotionalFlow",
    "amount",
    # Legs
    "Leg",
    "MtMReset",
    "schedule",
    "fixed_leg",
    "floating_leg",
    "optionlet_leg",
    "vanilla_swap",
    "cross_currency_swap",
    # Bermudan
    "Exercise",
    "ExerciseState",
    "BermudanInstrument",
    "FittedBermudan",
]
