from core.market_regime import REGIMES, MarketRegimeClassifier
from core.portfolio_state import MarketSnapshot


def _market(n=10, **fields):
    return {f"SYM{i}": dict(fields) for i in range(n)}


def test_high_iv_flat_market_is_high_volatility(high_iv_market):
    regime = MarketRegimeClassifier().classify(high_iv_market)
    assert regime.primary == "high_volatility"
    assert regime.confidence == 40
    assert regime.scores["range_bound"] == 30
    assert regime.market_metrics.avg_iv == 0.5


def test_empty_market_defaults_to_range_bound():
    regime = MarketRegimeClassifier().classify({})
    assert regime.primary == "range_bound"
    assert regime.market_metrics.avg_iv == 0.25
    assert regime.market_metrics.avg_change == 0
    assert list(regime.scores) == list(REGIMES)


def test_low_iv_breakout_with_volume_and_setups():
    market = _market(impliedVolatility=0.15, changePercent=2.5, holyGrail=70,
                     volume=3_000_000, avgVolume=1_000_000)
    regime = MarketRegimeClassifier().classify(market)

    assert regime.scores["low_volatility"] == 40
    assert regime.scores["volatility_expansion"] == 55
    assert regime.scores["trending_bullish"] == 45
    assert regime.scores["momentum_breakout"] == 60
    assert regime.primary == "momentum_breakout"
    assert regime.market_metrics.squeeze_count == 10
    assert regime.market_metrics.high_volume_count == 10


def test_bearish_trend():
    regime = MarketRegimeClassifier().classify(_market(changePercent=-3, impliedVolatility=0.3))
    assert regime.primary == "trending_bearish"
    assert regime.scores["momentum_breakout"] == 20


def test_zero_or_missing_iv_treated_as_default():
    assert MarketSnapshot.coerce({"impliedVolatility": 0}).implied_volatility == 0.25
    assert MarketSnapshot.coerce({"impliedVolatility": "n/a"}).implied_volatility == 0.25
    assert MarketSnapshot.coerce(None).implied_volatility == 0.25


def test_missing_avg_volume_uses_volume_itself():
    regime = MarketRegimeClassifier().classify(_market(volume=5_000_000))
    assert regime.market_metrics.high_volume_count == 0
