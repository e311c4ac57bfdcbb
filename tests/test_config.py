"""
Tests for configuration models and YAML loading.
"""

import pytest
import yaml

from hjm_xva.config import (
    CollateralConfig,
    CurrencyModelConfig,
    HybridModelConfig,
    MarketConfig,
    RegressionConfig,
    SimulationConfig,
    create_default_market_config,
    load_config,
    load_market_config,
    load_model_config,
    validate_config,
)
from hjm_xva.errors import ConfigurationError
from hjm_xva.market import MarketContext

EUR_MODEL = {
    "currency": "EUR",
    "benchmark_tenors": [2.0, 10.0],
    "mean_reversion": [0.03, 0.5],
    "volatilities": [[0.007], [0.006]],
}


class TestModelConfig:
    """Tests for model parameter validation."""

    def test_valid(self) -> None:
        """A consistent two-factor model validates."""
        config = validate_config(CurrencyModelConfig, EUR_MODEL)
        assert config.n_factors == 2

    @pytest.mark.parametrize(
        "override",
        [
            {"mean_reversion": [0.03]},
            {"mean_reversion": [-0.01, 0.5]},
            {"volatilities": [[0.007, 0.006], [0.006]]},
            {"benchmark_tenors": [10.0, 2.0]},
            {"volatility_times": [0.0], "volatilities": [[0.007, 0.007], [0.006, 0.006]]},
            {"correlation": [[1.0, 1.5], [1.5, 1.0]]},
        ],
    )
    def test_invalid(self, override: dict) -> None:
        """Inconsistent or out-of-domain parameters are configuration errors."""
        with pytest.raises(ConfigurationError):
            validate_config(CurrencyModelConfig, {**EUR_MODEL, **override})

    def test_missing_key(self) -> None:
        """Required keys must be present."""
        data = dict(EUR_MODEL)
        del data["mean_reversion"]
        with pytest.raises(ConfigurationError, match="CurrencyModelConfig"):
            validate_config(CurrencyModelConfig, data)

    def test_fx_models_match_currencies(self) -> None:
        """Each foreign currency needs an FX model."""
        usd = {**EUR_MODEL, "currency": "USD"}
        with pytest.raises(ConfigurationError):
            validate_config(HybridModelConfig, {"base_currency": "EUR", "currencies": [EUR_MODEL, usd]})

    def test_from_flat_mapping(self) -> None:
        """Dotted keys build the nested model."""
        config = HybridModelConfig.from_flat_mapping(
            {
                "base_currency": "EUR",
                "EUR.benchmark_tenors": [2.0],
                "EUR.mean_reversion": [0.05],
                "EUR.volatilities": [[0.01]],
                "USD.benchmark_tenors": [2.0],
                "USD.mean_reversion": [0.05],
                "USD.volatilities": [[0.012]],
                "FX.USD.spot": 0.9,
                "FX.USD.volatilities": [0.1],
                "correlation.EUR.0|FX.USD": -0.2,
            }
        )
        assert [c.currency for c in config.currencies] == ["EUR", "USD"]
        assert config.fx[0].spot == 0.9
        assert config.cross_correlations[0].second == "FX.USD"

    def test_flat_mapping_errors(self) -> None:
        """Malformed keys and a missing base currency are rejected."""
        with pytest.raises(ConfigurationError):
            HybridModelConfig.from_flat_mapping({"EUR.mean_reversion": [0.05]})
        with pytest.raises(ConfigurationError):
            HybridModelConfig.from_flat_mapping({"base_currency": "EUR", "EUR.a.b": 1})


class TestRunConfig:
    """Tests for simulation, regression and collateral records."""

    def test_simulation_defaults(self) -> None:
        """Defaults give a quarterly 5-year run."""
        config = SimulationConfig()
        assert config.dt == 0.25
        assert config.n_paths == 5000
        with pytest.raises(ConfigurationError):
            validate_config(SimulationConfig, {"n_paths": 0})

    def test_piecewise_needs_breakpoints(self) -> None:
        """Piecewise regression needs knots."""
        with pytest.raises(ConfigurationError):
            validate_config(RegressionConfig, {"basis": "piecewise"})
        config = validate_config(RegressionConfig, {"basis": "piecewise", "breakpoints": [0.0]})
        assert config.degree == 2

    def test_collateral_mpor(self) -> None:
        """MPoR is converted from calendar days."""
        assert CollateralConfig(mpr_days=73).margin_period_of_risk == pytest.approx(0.2)
        with pytest.raises(ConfigurationError):
            validate_config(CollateralConfig, {"threshold": -1.0})


class TestMarketConfig:
    """Tests for market configuration and YAML loading."""

    def test_unknown_curve_binding(self) -> None:
        """Bindings must reference configured curves."""
        data = create_default_market_config().model_dump()
        data["bindings"]["EUR"]["EURIBOR3M"] = "EUR.MISSING"
        with pytest.raises(ConfigurationError, match="unknown curve"):
            validate_config(MarketConfig, data)

    def test_default_market_builds_context(self) -> None:
        """The default market simulates end to end."""
        context = MarketContext.from_config(
            create_default_market_config(), SimulationConfig(n_paths=16, horizon_years=1.0)
        )
        assert context.n_paths == 16
        assert context.model.base_currency == "EUR"

    def test_yaml_round_trip(self, tmp_path) -> None:
        """Market, simulation, regression and collateral load from YAML."""
        market_file = tmp_path / "market.yaml"
        market_file.write_text(yaml.safe_dump({"market": create_default_market_config().model_dump(mode="json")}))
        run_file = tmp_path / "run.yaml"
        run_file.write_text(
            yaml.safe_dump(
                {
                    "simulation": {"n_paths": 100, "time_step": "monthly"},
                    "regression": {"degree": 3},
                    "collateral": {"threshold": 1e6, "mpr_days": 5},
                }
            )
        )

        loaded = load_config(market_file, run_file)
        assert loaded["market"] == load_market_config(market_file)
        assert loaded["market"].model.fx[0].spot == 0.92
        assert loaded["simulation"].n_paths == 100
        assert loaded["regression"].degree == 3
        assert loaded["collateral"].threshold == 1e6

    def test_flat_model_yaml(self, tmp_path) -> None:
        """Flat dotted model files are recognised."""
        path = tmp_path / "model.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "base_currency": "EUR",
                    "EUR.benchmark_tenors": [2.0],
                    "EUR.mean_reversion": [0.05],
                    "EUR.volatilities": [[0.01]],
                }
            )
        )
        config = load_model_config(path)
        assert config.currencies[0].n_factors == 1

    def test_missing_file(self, tmp_path) -> None:
        """Missing files raise FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_market_config(tmp_path / "missing.yaml")

    def test_non_mapping_file(self, tmp_path) -> None:
        """A YAML list is not a configuration."""
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigurationError):
            load_market_config(path)
