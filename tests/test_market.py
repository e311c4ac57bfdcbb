"""
Tests for market models: curves, correlation, HJM and FX models, hybrid
model and market context.
"""

import numpy as np
import pytest

from hjm_xva.errors import ConfigurationError, DimensionMismatchError, NumericalError
from hjm_xva.market import (
    CorrelationMatrix,
    CurrencyModel,
    CurveKey,
    DiscountCurve,
    FXModel,
    HybridModel,
    MarketContext,
    correlation_from_triples,
    decay_integral,
    matrix_root,
    validate_correlation,
)


class TestDiscountCurve:
    """Tests for DiscountCurve class."""

    def test_flat_curve_discount_factor(self, flat_discount_curve: DiscountCurve) -> None:
        """Flat curve should give exp(-r*t) discount factors."""
        assert flat_discount_curve.discount_factor(1.0) == pytest.approx(np.exp(-0.01))
        assert flat_discount_curve.discount_factor(5.0) == pytest.approx(np.exp(-0.05))

    def test_discount_factor_at_zero(self, flat_discount_curve: DiscountCurve) -> None:
        """DF at t=0 should be 1.0."""
        assert flat_discount_curve.discount_factor(0.0) == pytest.approx(1.0)

    def test_forward_discount_factor(self, flat_discount_curve: DiscountCurve) -> None:
        """P(0, t) / P(0, s) on a flat curve is exp(-r (t - s))."""
        assert flat_discount_curve.discount_factor(3.0, t_start=1.0) == pytest.approx(np.exp(-0.02))

    def test_from_pairs_interpolation(self) -> None:
        """Zero rates are linear between pillars and flat outside."""
        curve = DiscountCurve.from_pairs([(5.0, 0.03), (1.0, 0.01)])
        assert curve.zero_rate(3.0) == pytest.approx(0.02)
        assert curve.zero_rate(0.5) == pytest.approx(0.01)
        assert curve.zero_rate(10.0) == pytest.approx(0.03)

    def test_instantaneous_forward_flat(self, flat_discount_curve: DiscountCurve) -> None:
        """Instantaneous forward of a flat curve equals the rate."""
        assert flat_discount_curve.instantaneous_forward(2.0) == pytest.approx(0.01, abs=1e-8)

    def test_invalid_curve(self) -> None:
        """Mismatched or unsorted pillars should raise."""
        with pytest.raises(ConfigurationError):
            DiscountCurve(tenors=np.array([1.0, 2.0]), rates=np.array([0.01]))
        with pytest.raises(ConfigurationError):
            DiscountCurve(tenors=np.array([2.0, 1.0]), rates=np.array([0.01, 0.02]))


class TestCorrelation:
    """Tests for correlation helpers."""

    def test_triples(self) -> None:
        """Unlisted pairs are uncorrelated."""
        matrix = correlation_from_triples([1.0, 5.0, 10.0], [(1.0, 10.0, 0.6)])
        assert matrix[0, 2] == matrix[2, 0] == 0.6
        assert matrix[0, 1] == 0.0
        np.testing.assert_allclose(np.diag(matrix), 1.0)

    def test_unknown_tenor(self) -> None:
        """Triples must reference known tenors."""
        with pytest.raises(ConfigurationError):
            correlation_from_triples([1.0, 5.0], [(1.0, 7.0, 0.5)])

    def test_not_psd(self) -> None:
        """Inconsistent correlations should be rejected."""
        bad = np.array([[1.0, 0.9, -0.9], [0.9, 1.0, 0.9], [-0.9, 0.9, 1.0]])
        with pytest.raises(ConfigurationError, match="positive semi-definite"):
            validate_correlation(bad)

    def test_matrix_root_degenerate(self) -> None:
        """Singular covariances still have a root reproducing them."""
        cov = np.array([[1.0, 1.0], [1.0, 1.0]])
        root = matrix_root(cov)
        np.testing.assert_allclose(root @ root.T, cov, atol=1e-12)

    def test_matrix_root_negative(self) -> None:
        """Materially negative directions are a numerical error."""
        with pytest.raises(NumericalError):
            matrix_root(np.array([[1.0, 2.0], [2.0, 1.0]]))

    def test_correlate_shape(self) -> None:
        """Correlated draws keep the input shape."""
        corr = CorrelationMatrix(["EUR.0", "FX.USD"], np.array([[1.0, -0.3], [-0.3, 1.0]]))
        z = np.random.default_rng(1).standard_normal((50_000, 2))
        out = corr.correlate(z)
        assert out.shape == z.shape
        assert np.corrcoef(out.T)[0, 1] == pytest.approx(-0.3, abs=0.02)
        with pytest.raises(DimensionMismatchError):
            corr.correlate(np.zeros((10, 3)))


class TestCurrencyModel:
    """Tests for the separable Gaussian HJM currency model."""

    def test_decay_integral_limit(self) -> None:
        """(1 - exp(-a tau)) / a tends to tau as a -> 0."""
        assert decay_integral(0.0, 2.0) == pytest.approx(2.0)
        assert decay_integral(1e-12, 2.0) == pytest.approx(2.0)
        assert decay_integral(0.5, 2.0) == pytest.approx((1 - np.exp(-1.0)) / 0.5)

    def test_single_factor_covariance(self, eur_model: CurrencyModel) -> None:
        """One-factor covariance equals the short-rate variance rate."""
        assert eur_model.factor_covariance(0.5)[0, 0] == pytest.approx(0.01**2)

    def test_y_matches_hull_white(self, eur_model: CurrencyModel) -> None:
        """y(t) = sigma^2 (1 - exp(-2 a t)) / (2 a)."""
        a, sigma, t = 0.05, 0.01, 3.0
        expected = sigma**2 * (1 - np.exp(-2 * a * t)) / (2 * a)
        assert eur_model.y(t)[0, 0] == pytest.approx(expected)

    def test_drift_and_diffusion(self, eur_model: CurrencyModel) -> None:
        """dx = (y(t) - a x) dt + sigma dW in the one-factor case."""
        x = np.array([[0.0], [0.02]])
        drift = eur_model.drift(2.0, x)
        np.testing.assert_allclose(drift[:, 0], eur_model.y(2.0)[0, 0] - 0.05 * x[:, 0])
        np.testing.assert_allclose(eur_model.diffusion(2.0), [[0.01]])

    def test_bond_price_at_zero_state(self, eur_model: CurrencyModel) -> None:
        """With x = 0 and y = 0 the bond price is the initial forward ratio."""
        ratio = np.array([0.99, 0.95])
        prices = eur_model.bond_price(0.0, np.array([1.0, 5.0]), np.zeros((3, 1)), np.zeros((1, 1)), ratio)
        np.testing.assert_allclose(prices, np.tile(ratio, (3, 1)))

    def test_two_factor_dimensions(self) -> None:
        """Loadings and covariance are d x d for d benchmark tenors."""
        model = CurrencyModel(
            currency="EUR",
            benchmark_tenors=np.array([2.0, 10.0]),
            mean_reversion=np.array([0.03, 0.5]),
            volatility_times=np.array([2.0]),
            volatilities=np.array([[0.007, 0.0065], [0.006, 0.0055]]),
            correlation=np.array([[1.0, 0.75], [0.75, 1.0]]),
        )
        assert model.n_factors == 2
        assert model.factor_covariance(1.0).shape == (2, 2)
        assert model.G(0.0, np.array([1.0, 2.0, 3.0])).shape == (3, 2)
        cov_early, cov_late = model.factor_covariance(1.0), model.factor_covariance(3.0)
        assert not np.allclose(cov_early, cov_late)

    def test_volatility_shape_mismatch(self) -> None:
        """Volatility pieces must match the breakpoints."""
        with pytest.raises((ConfigurationError, DimensionMismatchError)):
            CurrencyModel(
                currency="EUR",
                benchmark_tenors=np.array([1.0]),
                mean_reversion=np.array([0.05]),
                volatility_times=np.array([1.0]),
                volatilities=np.array([[0.01]]),
                correlation=np.eye(1),
            )


class TestFXModel:
    """Tests for the lognormal FX model."""

    def test_integrated_variance_piecewise(self) -> None:
        """Integrated variance sums the pieces."""
        fx = FXModel("USD", 0.9, np.array([1.0]), np.array([0.1, 0.2]))
        assert fx.integrated_variance(0.5) == pytest.approx(0.01 * 0.5)
        assert fx.integrated_variance(2.0) == pytest.approx(0.01 + 0.04)

    def test_forward(self) -> None:
        """F = S0 P_f / P_d."""
        fx = FXModel.constant("USD", 0.9, 0.1)
        assert fx.forward(np.exp(-0.02), np.exp(-0.04)) == pytest.approx(0.9 * np.exp(-0.02))


class TestHybridModel:
    """Tests for the hybrid model layout."""

    def test_single_currency_aliases(self, eur_hybrid: HybridModel) -> None:
        """One currency: factor state and its integral."""
        assert eur_hybrid.state_alias() == ["EUR.x0", "EUR.int_x"]
        assert eur_hybrid.driver_names == ["EUR.0"]

    def test_fx_models_must_match(self, eur_model: CurrencyModel) -> None:
        """Each foreign currency needs exactly one FX model."""
        usd = CurrencyModel.single_factor("USD", 0.05, 0.01)
        with pytest.raises(ConfigurationError):
            HybridModel("EUR", [eur_model, usd])
        model = HybridModel("EUR", [eur_model, usd], [FXModel.constant("USD", 0.9, 0.1)])
        assert model.state_alias()[-1] == "FX.USD"

    def test_quanto_drift(self, eur_model: CurrencyModel) -> None:
        """Quanto drift is -rho sigma_x sigma_S for a one-factor foreign currency."""
        usd = CurrencyModel.single_factor("USD", 0.05, 0.01)
        corr = CorrelationMatrix(
            ["EUR.0", "USD.0", "FX.USD"],
            np.array([[1.0, 0.0, 0.0], [0.0, 1.0, 0.3], [0.0, 0.3, 1.0]]),
        )
        model = HybridModel("EUR", [eur_model, usd], [FXModel.constant("USD", 0.9, 0.1)], corr)
        assert model.quanto_drift("USD", 1.0)[0] == pytest.approx(-0.3 * 0.01 * 0.1)
        assert model.quanto_drift("EUR", 1.0)[0] == 0.0

    def test_step_covariance_psd(self, hybrid_context: MarketContext) -> None:
        """Exact step covariances are symmetric PSD."""
        moments = hybrid_context.model.step_moments(0.0, 0.25)
        cov = moments.covariance
        np.testing.assert_allclose(cov, cov.T, atol=1e-14)
        assert np.linalg.eigvalsh(cov).min() > -1e-14


class TestMarketContext:
    """Tests for MarketContext queries."""

    def test_curve_key_parse(self) -> None:
        """Keys parse from 'CCY.INDEX' strings."""
        assert CurveKey.parse("EUR.EURIBOR6M") == CurveKey("EUR", "EURIBOR6M")
        assert CurveKey.parse("EUR") == CurveKey("EUR", "")
        assert str(CurveKey("EUR", "ESTR")) == "EUR.ESTR"

    def test_unbound_index_falls_back(self, eur_context: MarketContext) -> None:
        """Unknown index names resolve to the currency's default curve."""
        assert eur_context.resolve("EUR.UNKNOWN") == "EUR.ESTR"
        assert eur_context.resolve("EUR.EURIBOR6M") == "EUR.EURIBOR6M"
        with pytest.raises(ConfigurationError):
            eur_context.resolve("GBP")

    def test_initial_discount_factor(self, eur_context: MarketContext) -> None:
        """At t=0 every path sees today's curve."""
        df = eur_context.discount_factor("EUR", 0, [1.0, 2.0])
        assert df.shape == (eur_context.n_paths, 2)
        np.testing.assert_allclose(df[:, 0], np.exp(-0.01))
        np.testing.assert_allclose(df[:, 1], np.exp(-0.02))

    def test_deflated_bond_martingale(self, eur_context: MarketContext) -> None:
        """E[P(t, T) / B(t)] = P(0, T)."""
        i = eur_context.simulation.time_index(2.0)
        bond = eur_context.discount_factor("EUR", i, [5.0])[:, 0]
        deflated = bond / eur_context.numeraire("EUR", i)
        assert deflated.mean() == pytest.approx(np.exp(-0.05), rel=5e-3)

    def test_rate_or_discount(self, eur_context: MarketContext) -> None:
        """Exactly one of tenor and maturity must be given."""
        rate = eur_context.rate_or_discount("EUR.EURIBOR6M", None, 0, tenor=0.5)
        assert rate[0] == pytest.approx((np.exp(0.012 * 0.5) - 1) / 0.5)
        with pytest.raises(ConfigurationError):
            eur_context.rate_or_discount("EUR", None, 0)
        with pytest.raises(ConfigurationError):
            eur_context.rate_or_discount("EUR", None, 0, tenor=0.5, maturity=1.0)

    def test_path_selection(self, eur_context: MarketContext) -> None:
        """Index arrays and slices select rows."""
        ids = np.array([3, 1, 7])
        full = eur_context.short_rate("EUR", 4)
        np.testing.assert_allclose(eur_context.short_rate("EUR", 4, ids), full[ids])
        assert eur_context.path_count(slice(0, 10)) == 10

    def test_fx_rate_initial(self, hybrid_context: MarketContext) -> None:
        """Spot is the configured value at t=0, inverse in the other direction."""
        spot = hybrid_context.fx_rate("USD", 0)
        np.testing.assert_allclose(spot, 0.92)
        np.testing.assert_allclose(hybrid_context.fx_rate("EUR", 0, to_currency="USD"), 1 / 0.92)
        np.testing.assert_allclose(hybrid_context.fx_rate("EUR", 0), 1.0)

    def test_deflated_fx_martingale(self, hybrid_context: MarketContext) -> None:
        """E[S(t) P_f(t, T) / B_d(t)] = S0 P_f(0, T)."""
        i = hybrid_context.simulation.time_index(2.0)
        foreign_bond = hybrid_context.discount_factor("USD", i, [3.0])[:, 0]
        value = hybrid_context.fx_rate("USD", i) * foreign_bond / hybrid_context.numeraire("EUR", i)
        expected = 0.92 * hybrid_context.curve("USD").discount_factor(3.0)
        assert value.mean() == pytest.approx(expected, rel=2e-2)

    def test_binding_unknown_curve(self, eur_hybrid: HybridModel, eur_context: MarketContext) -> None:
        """Bindings must reference known curves."""
        with pytest.raises(ConfigurationError):
            MarketContext(
                eur_hybrid,
                eur_context.simulation,
                [DiscountCurve.flat(0.01, "EUR.ESTR")],
                {"EUR": {"": "EUR.MISSING"}},
            )
