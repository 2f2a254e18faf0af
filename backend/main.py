import asyncio
import logging

# Local Architecture Imports
from agents.market_data import MarketDataAgent
from agents.strategy import StrategyCandidateAgent
from core.ensemble import EnsembleState, MultiStrategyEnsemble
from core.performance_store import InMemoryPerformanceStore
from core.refinement import StrategyRefinementEngine
from core.risk_config import DEFAULT_WATCHLIST
from core.risk_scorer import AdvancedRiskManager

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

DEMO_POSITIONS = [
    {"symbol": "SOFI", "sector": "Financial", "strategyName": "Long Call", "currentValue": 10_000,
     "dte": 5, "unrealizedPnL": -900},
    {"symbol": "PLTR", "sector": "Technology", "strategyName": "Iron Condor", "currentValue": 8_000,
     "expirationDate": "2099-01-15"},
    {"symbol": "AAPL", "sector": "Technology", "strategyName": "Covered Call", "currentValue": 12_000},
]


async def demonstrate_pipeline():
    risk_manager = AdvancedRiskManager()
    ensemble = MultiStrategyEnsemble(EnsembleState())
    refinement = StrategyRefinementEngine(InMemoryPerformanceStore())

    logging.info("--- PORTFOLIO RISK ---")
    assessment = risk_manager.assess_portfolio_risk(DEMO_POSITIONS, portfolio_value=100_000)
    logging.info(f"Overall risk: {assessment.overall_risk_score} ({assessment.risk_level.value})")
    for pr in assessment.position_risks:
        logging.info(f"  {pr.symbol}: {pr.risk_score} {pr.risk_factors}")

    logging.info("--- ENSEMBLE SCAN ---")
    snapshots = await MarketDataAgent().fetch_batch(DEFAULT_WATCHLIST)
    candidates = await StrategyCandidateAgent().generate_candidates(snapshots)
    market_data = {s: snap.model_dump(by_alias=True) for s, snap in snapshots.items()}

    for _ in range(3):
        ensemble.record_strategy_performance("Iron Condor", True, 12.5)

    result = ensemble.generate_ensemble_recommendations(
        market_data, candidates, {"activeTrades": DEMO_POSITIONS})
    logging.info(f"Regime: {result.market_regime.primary} ({result.market_regime.confidence}%)")
    for name, w in result.ensemble_weights.items():
        logging.info(f"  {name}: {w['current']}% (base {w['base']}%)")
    for rec in result.recommendations[:5]:
        logging.info(f"  {rec.get('symbol')} {rec['strategy']}: score {rec['ensembleScore']} "
                     f"alloc {rec['portfolioAllocation']}")

    logging.info("--- REFINEMENT ---")
    for i in range(12):
        refinement.record_trade_outcome({
            "symbol": "SOFI", "strategy": "Iron Condor",
            "outcome": "win" if i % 3 else "loss",
            "actualReturn": 15 if i % 3 else -20, "expectedReturn": 12,
            "daysHeld": 9, "originalParameters": {"squeeze": 55 + i % 4, "aiScore": 72},
            "marketConditions": {"regime": result.market_regime.primary},
        })
    refined = refinement.apply_refinements({"squeeze": 50, "aiScore": 60})
    logging.info(f"Refined config: squeeze={refined['squeeze']} aiScore={refined['aiScore']} "
                 f"universe={refined['universeSize']}")


if __name__ == "__main__":
    asyncio.run(demonstrate_pipeline())
