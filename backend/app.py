"""
Quantum Trading Suite: Risk & Ensemble API
===========================================
  - Portfolio risk assessment, position sizing, heat map and live alerts
  - Multi-strategy ensemble recommendations with dynamic group weights
  - Strategy refinement from reported trade outcomes
  - All /api/* endpoints protected by X-API-Key authentication
  - CORS origins driven by CORS_ALLOWED_ORIGINS env var
  - Per-IP rate limiting on the ensemble scan via slowapi
  - Every API action written to the SQLAlchemy audit log
  - /health endpoint for liveness/readiness probes
"""

import logging
import os
import time
import uuid
from datetime import datetime

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded

# Local imports
from agents.market_data import MarketDataAgent
from agents.strategy import StrategyCandidateAgent
from core.database import SessionLocal, StoredAuditLog
from core.ensemble import EnsembleState, MultiStrategyEnsemble
from core.exceptions import UnknownActionError
from core.performance_store import build_performance_store
from core.refinement import StrategyRefinementEngine
from core.risk_config import apply_risk_config, get_config
from core.risk_scorer import AdvancedRiskManager
from core.portfolio_state import to_float
from interface.security import SecurityHeadersMiddleware, require_api_key, sanitize_ticker
from interface.security.rate_limit import SCAN_RATE_LIMIT, limiter, rate_limit_exceeded_handler

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("QuantumSuiteAPI")

# ---------------------------------------------------------------------------
# App & Middleware
# ---------------------------------------------------------------------------
app = FastAPI(title="Quantum Trading Suite API", version="1.0.0")

_cors_origins = os.getenv(
    "CORS_ALLOWED_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000"
).split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(SecurityHeadersMiddleware)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

# ---------------------------------------------------------------------------
# Module-level singletons (one owned state per process)
# ---------------------------------------------------------------------------
RISK_MANAGER      = AdvancedRiskManager()
ENSEMBLE          = MultiStrategyEnsemble(EnsembleState())
REFINEMENT_ENGINE = StrategyRefinementEngine(build_performance_store(get_config().refinement_store))
MARKET_AGENT      = MarketDataAgent()
STRATEGY_AGENT    = StrategyCandidateAgent()

apply_risk_config(RISK_MANAGER)


@app.on_event("startup")
async def startup_event():
    from core.database import Base, engine
    Base.metadata.create_all(bind=engine)
    cfg = get_config()
    logger.info(f"Quantum Trading Suite ready, refinement store: {cfg.refinement_store}, "
                f"watchlist: {len(cfg.watchlist)} symbols")


# ---------------------------------------------------------------------------
# Helper: DB Audit Logging
# ---------------------------------------------------------------------------
def log_audit(action: str, agent: str, subject: str, reason: str):
    entry_id = str(uuid.uuid4())[:8]
    db = SessionLocal()
    try:
        db.add(StoredAuditLog(
            id=entry_id,
            time=time.strftime("%H:%M:%S"),
            agent=agent,
            action=action,
            subject=subject,
            reason=reason,
        ))
        db.commit()
    except Exception as e:
        logger.error(f"Audit log write failed: {e}")
    finally:
        db.close()


def _dump(model):
    return model.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@app.get("/health")
def health_check():
    """Liveness & readiness probe target."""
    return {"status": "ok", "timestamp": datetime.utcnow().isoformat()}


# ── Risk ────────────────────────────────────────────────────────────────────

@app.post("/api/risk-management", dependencies=[Depends(require_api_key)])
def risk_management(payload: dict):
    """
    Action dispatcher.
    Body: { "action": "assessPortfolioRisk" | "calculatePositionSize" |
            "generateHeatMap" | "getLiveAlerts", ...action fields }
    """
    action = payload.get("action", "")
    try:
        result = RISK_MANAGER.dispatch_action(action, payload)
    except UnknownActionError as e:
        raise HTTPException(status_code=400, detail=str(e))

    log_audit(action, "RiskManager", "PORTFOLIO",
              f"{len(payload.get('positions') or [])} positions")
    return {"success": True, "data": result, "timestamp": datetime.utcnow().isoformat()}


@app.post("/api/risk/assess", dependencies=[Depends(require_api_key)])
def assess_risk(payload: dict):
    """Body: { "positions": [...], "marketData": {...}, "portfolioValue": 100000 }"""
    assessment = RISK_MANAGER.assess_portfolio_risk(
        payload.get("positions", []),
        market_data=payload.get("marketData"),
        portfolio_value=payload.get("portfolioValue"),
    )
    log_audit("ASSESS", "RiskManager", "PORTFOLIO",
              f"score={assessment.overall_risk_score} level={assessment.risk_level.value}")
    return _dump(assessment)


# ── Ensemble ────────────────────────────────────────────────────────────────

@app.post("/api/ensemble/recommendations", dependencies=[Depends(require_api_key)])
def ensemble_recommendations(payload: dict):
    """Body: { "marketData": {...}, "availableStrategies": [...], "portfolioContext": {...} }"""
    result = ENSEMBLE.generate_ensemble_recommendations(
        payload.get("marketData") or {},
        payload.get("availableStrategies") or [],
        payload.get("portfolioContext"),
    )
    log_audit("RECOMMEND", "MultiStrategyEnsemble", "PORTFOLIO",
              f"{len(result.recommendations)} recommendations, regime {result.market_regime.primary}")
    return _dump(result)


@app.post("/api/ensemble/performance", dependencies=[Depends(require_api_key)])
def record_performance(payload: dict):
    """Body: { "strategyKey": "Iron Condor", "isWin": true, "returnPercent": 12.5 }"""
    strategy_key = str(payload.get("strategyKey") or "").strip()
    if not strategy_key:
        raise HTTPException(status_code=400, detail="strategyKey is required")
    is_win = bool(payload.get("isWin"))
    return_percent = to_float(payload.get("returnPercent"), 0.0)

    recorded = ENSEMBLE.record_strategy_performance(strategy_key, is_win, return_percent)
    log_audit("WIN" if is_win else "LOSS", "MultiStrategyEnsemble", strategy_key,
              f"return {return_percent:.2f}% ({'recorded' if recorded else 'no matching group'})")
    return {"recorded": recorded, "weights": ENSEMBLE.get_current_weights()}


@app.get("/api/ensemble/weights", dependencies=[Depends(require_api_key)])
def ensemble_weights():
    return {"weights": ENSEMBLE.get_current_weights()}


@app.get("/api/ensemble/summary", dependencies=[Depends(require_api_key)])
def ensemble_summary():
    return ENSEMBLE.get_ensemble_summary()


@app.post("/api/ensemble/reset", dependencies=[Depends(require_api_key)])
def reset_ensemble():
    ENSEMBLE.reset_weights()
    log_audit("RESET", "MultiStrategyEnsemble", "PORTFOLIO", "Weights reset to base allocation")
    return {"message": "Ensemble weights reset", "weights": ENSEMBLE.get_current_weights()}


@app.post("/api/ensemble/scan", dependencies=[Depends(require_api_key)])
@limiter.limit(SCAN_RATE_LIMIT)
async def ensemble_scan(request: Request, payload: dict):
    """
    Runs the mock upstream agents over a watchlist and feeds the ensemble.
    Body: { "symbols": ["SOFI", "PLTR"] }  (defaults to the configured watchlist)
    """
    cfg = get_config()
    raw = payload.get("symbols") or cfg.watchlist
    symbols = list(dict.fromkeys(sanitize_ticker(s) for s in raw))
    if len(symbols) > cfg.max_scan_symbols:
        raise HTTPException(status_code=400,
                            detail=f"At most {cfg.max_scan_symbols} symbols per scan")

    snapshots = await MARKET_AGENT.fetch_batch(symbols)
    candidates = await STRATEGY_AGENT.generate_candidates(snapshots)
    market_data = {s: snap.model_dump(by_alias=True) for s, snap in snapshots.items()}

    result = ENSEMBLE.generate_ensemble_recommendations(market_data, candidates, payload.get("portfolioContext"))
    log_audit("SCAN", "MultiStrategyEnsemble", ",".join(symbols)[:200],
              f"{len(candidates)} candidates -> {len(result.recommendations)} recommendations")
    return {"symbols": symbols, "marketData": market_data, **_dump(result)}


# ── Refinement ──────────────────────────────────────────────────────────────

@app.post("/api/refinement/outcome", dependencies=[Depends(require_api_key)])
def record_outcome(payload: dict):
    """Body: a closed trade {symbol, strategy, outcome, actualReturn, expectedReturn, ...}"""
    metrics = REFINEMENT_ENGINE.record_trade_outcome(payload)
    log_audit(str(payload.get("outcome") or "breakeven").upper(), "StrategyRefinement",
              str(payload.get("strategy") or "Unknown"),
              f"actual {to_float(payload.get('actualReturn'), 0.0):.2f}%")
    return {"strategy": payload.get("strategy") or "Unknown", "metrics": metrics}


@app.get("/api/refinement/report", dependencies=[Depends(require_api_key)])
def refinement_report():
    return REFINEMENT_ENGINE.generate_refinement_report()


@app.post("/api/refinement/apply", dependencies=[Depends(require_api_key)])
def apply_refinements(payload: dict):
    """Body: the current pipeline config, e.g. { "squeeze": 50, "aiScore": 60 }"""
    refined = REFINEMENT_ENGINE.apply_refinements(payload)
    log_audit("REFINE", "StrategyRefinement", "PIPELINE",
              f"universe={refined['universeSize']} confidence={refined['refinementMetadata']['confidence']}")
    return refined


# ── Audit ───────────────────────────────────────────────────────────────────

@app.get("/api/logs", dependencies=[Depends(require_api_key)])
def get_logs():
    db = SessionLocal()
    try:
        logs = (
            db.query(StoredAuditLog)
            .order_by(StoredAuditLog.created_at.desc())
            .limit(20)
            .all()
        )
        return {
            "logs": [
                {
                    "id":      l.id,
                    "time":    l.time,
                    "agent":   l.agent,
                    "action":  l.action,
                    "subject": l.subject,
                    "reason":  l.reason,
                }
                for l in logs
            ]
        }
    finally:
        db.close()
