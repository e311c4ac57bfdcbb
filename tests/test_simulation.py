"""
Tests for increment sources, time grids and path simulation.
"""

import numpy as np
import pytest

from hjm_xva.config import SimulationConfig
from hjm_xva.errors import ConfigurationError
from hjm_xva.market import HybridModel
from hjm_xva.simulation import (
    PseudoRandomIncrements,
    SobolIncrements,
    build_time_grid,
    increments_from_config,
    simulate,
    validate_time_grid,
)
from hjm_xva.simulation.increments import SOBOL_MAX_DIMENSION


class TestIncrements:
    """Tests for random and quasi-random increment sources."""

    def test_pseudo_random_reproducible(self) -> None:
        """Same seed gives the same draws."""
        a = PseudoRandomIncrements(seed=3).normals(100, 4, 2)
        b = PseudoRandomIncrements(seed=3).normals(100, 4, 2)
        assert a.shape == (100, 4, 2)
        np.testing.assert_array_equal(a, b)

    def test_sobol_moments(self) -> None:
        """Scrambled Sobol normals have near-zero mean and unit variance."""
        z = SobolIncrements(seed=5).normals(4096, 3, 2)
        assert z.shape == (4096, 3, 2)
        assert np.all(np.isfinite(z))
        np.testing.assert_allclose(z.mean(axis=0), 0.0, atol=0.02)
        np.testing.assert_allclose(z.std(axis=0), 1.0, atol=0.03)

    def test_sobol_non_power_of_two(self) -> None:
        """Non power-of-two path counts are accepted."""
        z = SobolIncrements(seed=5).normals(1000, 2, 2)
        assert z.shape == (1000, 2, 2)

    def test_sobol_dimension_limit(self) -> None:
        """Too many steps x factors is a configuration error."""
        with pytest.raises(ConfigurationError, match="Sobol dimension"):
            SobolIncrements().normals(16, SOBOL_MAX_DIMENSION, 2)

    def test_from_config(self) -> None:
        """The configured increment type is used."""
        assert isinstance(increments_from_config(SimulationConfig(increments="sobol")), SobolIncrements)
        assert isinstance(increments_from_config(SimulationConfig()), PseudoRandomIncrements)


class TestTimeGrid:
    """Tests for time grid construction."""

    def test_regular_grid(self, time_grid: np.ndarray) -> None:
        """Quarterly 5Y grid has 21 points."""
        grid = validate_time_grid(time_grid)
        assert len(grid) == 21
        assert grid[0] == 0.0
        assert grid[-1] == pytest.approx(5.0)

    def test_extra_times_merged(self) -> None:
        """Event times are inserted and duplicates removed."""
        grid = build_time_grid(2.0, 0.5, [0.3, 1.0, 1.0 + 1e-12])
        np.testing.assert_allclose(grid, [0.0, 0.3, 0.5, 1.0, 1.5, 2.0])

    @pytest.mark.parametrize(
        "grid",
        [[0.0], [0.0, 1.0, 1.0], [-0.5, 1.0], [0.0, np.nan], [1.0, 0.5]],
    )
    def test_invalid_grid(self, grid: list[float]) -> None:
        """Short, unsorted, negative or non-finite grids are rejected."""
        with pytest.raises(ConfigurationError):
            validate_time_grid(grid)


class TestSimulate:
    """Tests for exact-moment path simulation."""

    def test_ou_variance(self, eur_hybrid: HybridModel) -> None:
        """Var x(t) = sigma^2 (1 - exp(-2 a t)) / (2 a)."""
        grid = build_time_grid(5.0, 1.0)
        sim = simulate(eur_hybrid, grid, 20_000, PseudoRandomIncrements(seed=1))
        x = sim.state("EUR.x0")
        a, sigma = 0.05, 0.01
        expected = sigma**2 * (1 - np.exp(-2 * a * grid)) / (2 * a)
        np.testing.assert_allclose(x[:, 1:].var(axis=0), expected[1:], rtol=0.05)
        np.testing.assert_array_equal(x[:, 0], 0.0)

    def test_ou_mean(self, eur_hybrid: HybridModel) -> None:
        """E[x(t)] = integral of y(s) exp(-a (t - s)) over [0, t]."""
        a, sigma, t = 0.05, 0.01, 5.0
        sim = simulate(eur_hybrid, [0.0, t], 20_000, SobolIncrements(seed=2))
        expected = sigma**2 / (2 * a**2) * (1 - np.exp(-a * t)) ** 2
        assert sim.state("EUR.x0")[:, 1].mean() == pytest.approx(expected, abs=2e-4)

    def test_worker_count_invariance(self, eur_hybrid: HybridModel) -> None:
        """Partitioning paths over threads does not change the result."""
        grid = build_time_grid(2.0, 0.5)
        one = simulate(eur_hybrid, grid, 257, PseudoRandomIncrements(seed=4), n_workers=1)
        four = simulate(eur_hybrid, grid, 257, PseudoRandomIncrements(seed=4), n_workers=4)
        np.testing.assert_array_equal(one.states, four.states)

    def test_states_read_only(self, eur_hybrid: HybridModel) -> None:
        """Simulated arrays cannot be modified."""
        sim = simulate(eur_hybrid, [0.0, 1.0], 8, PseudoRandomIncrements())
        with pytest.raises(ValueError):
            sim.states[0, 0, 0] = 1.0
        assert sim.states.shape == (2, 8, 2)

    def test_y_recorded(self, eur_hybrid: HybridModel) -> None:
        """Deterministic y(t) is stored per currency and grid time."""
        grid = build_time_grid(2.0, 1.0)
        sim = simulate(eur_hybrid, grid, 8, PseudoRandomIncrements())
        assert sim.y["EUR"].shape == (3, 1, 1)
        assert sim.y["EUR"][0, 0, 0] == 0.0

    def test_invalid_path_count(self, eur_hybrid: HybridModel) -> None:
        """Path count is validated before any work."""
        with pytest.raises(ConfigurationError):
            simulate(eur_hybrid, [0.0, 1.0], 0, PseudoRandomIncrements())

    def test_time_index(self, eur_hybrid: HybridModel) -> None:
        """Only grid times have an index; fixings map to the last time before."""
        sim = simulate(eur_hybrid, [0.0, 0.5, 1.0], 4, PseudoRandomIncrements())
        assert sim.time_index(0.5) == 1
        with pytest.raises(ConfigurationError):
            sim.time_index(0.7)
        assert sim.fixing_index(0.7) == 1
        assert sim.fixing_index(1.0) == 2

    def test_hybrid_states(self, hybrid_context) -> None:
        """Two two-factor currencies plus one FX rate."""
        sim = hybrid_context.simulation
        assert sim.aliases == [
            "EUR.x0", "EUR.x1", "EUR.int_x", "USD.x0", "USD.x1", "USD.int_x", "FX.USD",
        ]
        assert np.all(np.isfinite(sim.states))
