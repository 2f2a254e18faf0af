import logging
from typing import Dict, List

from core.portfolio_state import MarketSnapshot, StrategyCandidate

logger = logging.getLogger("StrategyCandidateAgent")


class StrategyCandidateAgent:
    """
    Upstream strategy generator for the ensemble scan.

    Maps each symbol's snapshot to the options structures that suit it and
    scores them with a simple setup heuristic. The ensemble treats aiScore as
    an opaque 0-100 input, so nothing here is meant to be predictive.
    """

    HIGH_IV = 0.45
    LOW_IV = 0.25
    TREND = 1.5
    SETUP = 60

    def propose(self, ticker: str, snap: MarketSnapshot) -> List[StrategyCandidate]:
        names = []
        if snap.implied_volatility >= self.HIGH_IV:
            names += ["Iron Condor", "Short Strangle"]
        elif snap.implied_volatility <= self.LOW_IV:
            names += ["Long Straddle", "Calendar Spread"]

        if snap.change_percent > self.TREND:
            names.append("Bull Call Spread")
        elif snap.change_percent < -self.TREND:
            names.append("Bear Put Spread")
        else:
            names += ["Covered Call", "Cash Secured Put"]

        if snap.holy_grail >= self.SETUP:
            names.append("Call Ratio Backspread")

        base = 40 + snap.holy_grail * 0.3 + snap.squeeze * 0.1
        candidates = []
        for i, name in enumerate(names):
            score = max(0.0, min(100.0, round(base + abs(snap.change_percent) * 2 - i * 3, 1)))
            candidates.append(StrategyCandidate(strategy=name, ai_score=score, symbol=ticker))
        return candidates

    async def generate_candidates(self, snapshots: Dict[str, MarketSnapshot]) -> List[Dict]:
        proposals = []
        for ticker, snap in snapshots.items():
            proposals.extend(c.to_payload() for c in self.propose(ticker, snap))
        logger.info(f"Proposed {len(proposals)} strategies across {len(snapshots)} symbols")
        return proposals
