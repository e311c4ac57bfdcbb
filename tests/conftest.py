"""
Pytest fixtures for HJM hybrid testing.

Provides reusable test fixtures for curves, models, simulations and market
contexts.
"""

import numpy as np
import pytest

from hjm_xva.config import SimulationConfig, create_default_market_config
from hjm_xva.exposure import ScenarioCube
from hjm_xva.market import CurrencyModel, DiscountCurve, HybridModel, MarketContext
from hjm_xva.simulation import PseudoRandomIncrements, build_time_grid, simulate

EUR_BINDINGS = {"EUR": {"": "EUR.ESTR", "ESTR": "EUR.ESTR", "EURIBOR6M": "EUR.EURIBOR6M"}}


@pytest.fixture
def time_grid() -> np.ndarray:
    """Standard 5-year quarterly time grid."""
    return build_time_grid(5.0, 0.25)


@pytest.fixture
def flat_discount_curve() -> DiscountCurve:
    """Flat 1% discount curve."""
    return DiscountCurve.flat(0.01, "EUR.ESTR")


@pytest.fixture
def eur_model() -> CurrencyModel:
    """One-factor EUR model (Hull-White a=5%, sigma=1%)."""
    return CurrencyModel.single_factor("EUR", mean_reversion=0.05, volatility=0.01)


@pytest.fixture
def eur_hybrid(eur_model: CurrencyModel) -> HybridModel:
    """Single-currency hybrid model."""
    return HybridModel("EUR", [eur_model])


def _eur_context(n_paths: int, seed: int) -> MarketContext:
    model = HybridModel("EUR", [CurrencyModel.single_factor("EUR", 0.05, 0.01)])
    grid = build_time_grid(5.0, 0.25)
    sim = simulate(model, grid, n_paths, PseudoRandomIncrements(seed))
    curves = [DiscountCurve.flat(0.01, "EUR.ESTR"), DiscountCurve.flat(0.012, "EUR.EURIBOR6M")]
    return MarketContext(model, sim, curves, EUR_BINDINGS)


@pytest.fixture(scope="session")
def eur_context() -> MarketContext:
    """EUR-only context: 4096 paths on a quarterly 5-year grid."""
    return _eur_context(4096, seed=7)


@pytest.fixture(scope="session")
def eur_fitting_context() -> MarketContext:
    """Independent EUR simulation for out-of-sample regression fits."""
    return _eur_context(4096, seed=99)


@pytest.fixture(scope="session")
def hybrid_context() -> MarketContext:
    """Default EUR/USD two-factor hybrid context."""
    return MarketContext.from_config(
        create_default_market_config(),
        SimulationConfig(n_paths=2048, horizon_years=3.0, seed=11),
    )


@pytest.fixture
def sample_cube() -> ScenarioCube:
    """Two-leg cube that starts near zero and fans out."""
    rng = np.random.default_rng(42)
    n_paths, n_steps = 1000, 21
    t = np.linspace(0, 5, n_steps)
    base = np.sin(t) * 1e6
    values = np.stack(
        [
            base + rng.standard_normal((n_paths, n_steps)) * 5e5,
            -0.5 * base + rng.standard_normal((n_paths, n_steps)) * 2e5,
        ],
        axis=2,
    )
    return ScenarioCube(values, t, ("trade_a", "trade_b"), currency="EUR")
