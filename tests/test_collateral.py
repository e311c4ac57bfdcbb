"""
Tests for variation margin simulation.
"""

import numpy as np
import pytest

from hjm_xva.collateral import collateralize, collateralize_from_config, margin_target
from hjm_xva.config import CollateralConfig
from hjm_xva.errors import ConfigurationError, DimensionMismatchError
from hjm_xva.exposure import ScenarioCube, expected_exposure


class TestMarginTarget:
    """Tests for the CSA margin requirement."""

    def test_threshold_both_ways(self) -> None:
        """Exposure inside the threshold needs no margin."""
        target = margin_target(np.array([-5.0, -1.0, 0.0, 1.5, 5.0]), threshold=2.0)
        np.testing.assert_allclose(target, [-3.0, 0.0, 0.0, 0.0, 3.0])

    def test_zero_threshold(self) -> None:
        """Without threshold the full exposure is margined."""
        exposure = np.array([-1.0, 0.5])
        np.testing.assert_allclose(margin_target(exposure, 0.0), exposure)


class TestCollateralize:
    """Tests for path-wise collateral balances."""

    def test_perfect_collateral(self, sample_cube: ScenarioCube) -> None:
        """No threshold, MTA or MPoR leaves nothing uncollateralised."""
        result = collateralize(sample_cube)
        assert result.aliases == ("trade_a", "trade_b", "collateral")
        np.testing.assert_allclose(result.net(), 0.0, atol=1e-6)
        np.testing.assert_allclose(result.leg("collateral"), -sample_cube.net())

    def test_input_unchanged(self, sample_cube: ScenarioCube) -> None:
        """A new cube is returned."""
        collateralize(sample_cube, threshold=1e5)
        assert sample_cube.n_legs == 2

    def test_minimum_transfer_amount(self, sample_cube: ScenarioCube) -> None:
        """Every transfer made is at least the MTA."""
        mta = 2e5
        balance = -collateralize(sample_cube, minimum_transfer_amount=mta).leg("collateral")
        transfers = np.diff(np.concatenate([np.zeros((sample_cube.n_paths, 1)), balance], axis=1), axis=1)
        moved = transfers[transfers != 0]
        assert moved.size > 0
        assert np.all(np.abs(moved) >= mta)

    def test_threshold_reduces_collateral(self, sample_cube: ScenarioCube) -> None:
        """A threshold leaves the exposure below it unsecured."""
        threshold = 3e5
        result = collateralize(sample_cube, threshold=threshold)
        residual = result.net()
        assert np.all(np.abs(residual) <= threshold + 1e-6)
        assert expected_exposure(result).max() > 0

    def test_constant_between_margin_dates(self, sample_cube: ScenarioCube) -> None:
        """The balance only moves on call dates."""
        dates = [0.0, 1.0, 2.0, 3.0, 4.0, 5.0]
        balance = collateralize(sample_cube, time_grid=dates).leg("collateral")
        for start in range(0, 20, 4):
            block = balance[:, start : start + 4]
            np.testing.assert_array_equal(block, block[:, :1].repeat(4, axis=1))

    def test_margin_period_of_risk(self, sample_cube: ScenarioCube) -> None:
        """Calls are based on the exposure one MPoR earlier."""
        result = collateralize(sample_cube, margin_period_of_risk=10 / 365)
        balance = -result.leg("collateral")
        np.testing.assert_array_equal(balance[:, 0], 0.0)
        np.testing.assert_allclose(balance[:, 1:], sample_cube.net()[:, :-1])

    def test_long_mpor_no_calls(self, sample_cube: ScenarioCube) -> None:
        """Before the first observable date the initial balance is held."""
        balance = -collateralize(
            sample_cube, margin_period_of_risk=1.0, initial_balance=7.0
        ).leg("collateral")
        np.testing.assert_array_equal(balance[:, :4], 7.0)
        np.testing.assert_allclose(balance[:, 4], sample_cube.net()[:, 0])

    def test_independent_amount(self, sample_cube: ScenarioCube) -> None:
        """An independent amount shifts the whole balance."""
        plain = collateralize(sample_cube).leg("collateral")
        shifted = collateralize(sample_cube, independent_amount=1e4).leg("collateral")
        np.testing.assert_allclose(plain - shifted, 1e4)

    def test_fx_conversion(self, sample_cube: ScenarioCube) -> None:
        """FX rates convert every leg and drop the cube currency."""
        fx = np.full((sample_cube.n_paths, sample_cube.n_times), 1.1)
        result = collateralize(sample_cube, fx_rates=fx)
        assert result.currency is None
        np.testing.assert_allclose(result.leg("trade_a"), 1.1 * sample_cube.leg("trade_a"))
        per_leg = collateralize(sample_cube, fx_rates=np.full(sample_cube.values.shape, 1.1))
        np.testing.assert_allclose(per_leg.values, result.values)
        with pytest.raises(DimensionMismatchError):
            collateralize(sample_cube, fx_rates=np.ones((3, 3)))

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"threshold": -1.0},
            {"minimum_transfer_amount": -1.0},
            {"margin_period_of_risk": -0.1},
        ],
    )
    def test_negative_parameters(self, sample_cube: ScenarioCube, kwargs: dict) -> None:
        """Negative agreement parameters are rejected."""
        with pytest.raises(ConfigurationError):
            collateralize(sample_cube, **kwargs)

    def test_off_grid_margin_date(self, sample_cube: ScenarioCube) -> None:
        """Margin dates must be cube times."""
        with pytest.raises(ConfigurationError):
            collateralize(sample_cube, time_grid=[0.1])

    def test_from_config(self, sample_cube: ScenarioCube) -> None:
        """Agreement parameters are read from the config."""
        config = CollateralConfig(threshold=1e5, minimum_transfer_amount=5e4, mpr_days=10)
        from_config = collateralize_from_config(sample_cube, config)
        direct = collateralize(
            sample_cube,
            threshold=1e5,
            minimum_transfer_amount=5e4,
            margin_period_of_risk=10 / 365,
        )
        np.testing.assert_array_equal(from_config.values, direct.values)
