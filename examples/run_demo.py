#!/usr/bin/env python3
"""
HJM hybrid exposure engine - Demo Script

This script demonstrates the complete exposure workflow:
1. Load market, simulation, regression and collateral configuration
2. Simulate the EUR/USD hybrid model
3. Define a portfolio of swaps, caps, a cross-currency swap and a Bermudan
4. Fit the Bermudan exercise policy on independent paths
5. Compute the scenario cube and exposure profiles
6. Apply variation margin

Usage:
    python examples/run_demo.py
"""

from pathlib import Path

import pandas as pd

from hjm_xva import (
    BermudanInstrument,
    Exercise,
    ExposureProfile,
    MarketContext,
    PseudoRandomIncrements,
    basis_from_config,
    collateralize_from_config,
    configure_logging,
    cross_currency_swap,
    load_config,
    optionlet_leg,
    scenarios,
    simulate,
    vanilla_swap,
)

CONFIG_DIR = Path(__file__).parent / "config"


def main() -> None:
    """Run the exposure demo."""
    configure_logging("INFO")

    print("=" * 60)
    print("HJM Hybrid Exposure Engine - Demo")
    print("=" * 60)
    print()

    # =========================================================================
    # 1. Load Configuration
    # =========================================================================
    print("1. Loading configuration...")

    config = load_config(CONFIG_DIR / "market.yaml", CONFIG_DIR / "run.yaml")
    market = config["market"]
    sim_config = config["simulation"]

    print(f"   Base currency: {market.model.base_currency}")
    print(f"   Paths: {sim_config.n_paths}, horizon: {sim_config.horizon_years:.0f}Y")
    print()

    # =========================================================================
    # 2. Simulate
    # =========================================================================
    print("2. Simulating hybrid model...")

    context = MarketContext.from_config(market, sim_config)

    print(f"   State variables: {', '.join(context.simulation.aliases)}")
    print(f"   Time steps: {len(context.time_grid) - 1}")
    print()

    # =========================================================================
    # 3. Define Portfolio
    # =========================================================================
    print("3. Defining portfolio...")

    payer = vanilla_swap("EUR", "EURIBOR6M", 10_000_000, 0.027, 0.0, 10.0, alias="payer")
    cap = optionlet_leg("EUR", "EURIBOR6M", 5_000_000, 0.03, 0.5, 5.0, sign=-1, alias="short_cap")
    xccy = cross_currency_swap(
        "EUR", "ESTR", 9_200_000, "USD", "SOFR", 10_000_000, 0.25, 5.0, mtm_reset=True
    )
    exercises = [
        Exercise(
            float(t),
            vanilla_swap("EUR", "EURIBOR6M", 10_000_000, 0.027, float(t), 10.0,
                         pay_fixed=False, alias=f"receiver_{t}"),
        )
        for t in range(2, 10)
    ]
    bermudan = BermudanInstrument(exercises, alias="bermudan_receiver")

    print(f"   Legs: {len(payer) + 1 + len(xccy)}, Bermudan exercises: {len(exercises)}")
    print()

    # =========================================================================
    # 4. Fit Bermudan
    # =========================================================================
    print("4. Fitting Bermudan exercise policy on independent paths...")

    regression = config["regression"]
    fitting_sim = simulate(
        context.model,
        context.time_grid,
        sim_config.n_paths,
        PseudoRandomIncrements(seed=(sim_config.seed or 0) + 1),
        n_workers=sim_config.n_workers,
    )
    fitted = bermudan.fit(
        context.with_simulation(fitting_sim),
        basis_from_config(regression),
        itm_only=regression.itm_only,
    )

    print(f"   Bermudan value (fitting paths): EUR {fitted.deflated_price:,.0f}")
    print(f"   Bermudan value (pricing paths): EUR {fitted.value(context).mean():,.0f}")
    print()

    # =========================================================================
    # 5. Scenario Cube and Exposure
    # =========================================================================
    print("5. Computing scenario cube...")

    cube = scenarios(
        [*payer, cap, *xccy, fitted],
        context,
        currency="EUR",
        n_workers=sim_config.n_workers,
    )
    netting_set = cube.aggregate()
    uncollateralised = ExposureProfile.from_cube(netting_set)

    print(f"   Cube: {cube.n_paths} paths x {cube.n_times} times x {cube.n_legs} legs")
    print(f"   Peak EE (uncoll): EUR {uncollateralised.peak_ee:,.0f}")
    print(f"   Average EE (uncoll): EUR {uncollateralised.average_ee:,.0f}")
    print()

    # =========================================================================
    # 6. Apply Collateral
    # =========================================================================
    print("6. Applying variation margin...")

    collateralised = collateralize_from_config(netting_set, config["collateral"])
    coll_profile = ExposureProfile.from_cube(collateralised)

    benefit = (1 - coll_profile.peak_ee / uncollateralised.peak_ee) * 100
    print(f"   Peak EE (coll): EUR {coll_profile.peak_ee:,.0f}")
    print(f"   Collateral benefit: {benefit:.1f}%")
    print()

    summary = pd.concat(
        {"uncollateralised": uncollateralised.to_frame(), "collateralised": coll_profile.to_frame()},
        axis=1,
    )
    with pd.option_context("display.float_format", "{:,.0f}".format, "display.width", 120):
        print(summary.iloc[::4])

    print()
    print("=" * 60)
    print("Demo complete!")
    print("=" * 60)


if __name__ == "__main__":
    main()
