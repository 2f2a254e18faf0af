"""
Portfolio concentration by sector, strategy and symbol.
"""
from typing import Dict, List

from core.portfolio_state import Position
from core.schemas import (
    ConcentrationBucket, ConcentrationReport, LargestPosition, SymbolConcentration,
)

LARGEST_POSITIONS_LIMIT = 5


def compute_concentration(positions: List[Position]) -> ConcentrationReport:
    """
    Share of the (absolute) portfolio value held in each sector, strategy and
    symbol. A zero total returns an all-empty report.
    """
    report = ConcentrationReport()

    total_value = sum(p.abs_value for p in positions)
    if total_value == 0:
        return report

    def _accumulate(buckets: Dict[str, ConcentrationBucket], key: str, value: float):
        bucket = buckets.setdefault(key, ConcentrationBucket())
        bucket.value += value
        bucket.percentage += value / total_value
        bucket.positions += 1

    for pos in positions:
        value = pos.abs_value
        _accumulate(report.by_sector, pos.sector, value)
        _accumulate(report.by_strategy, pos.strategy_label, value)
        # Later duplicates of a symbol overwrite earlier ones
        report.by_symbol[pos.symbol] = SymbolConcentration(
            value=value, percentage=value / total_value,
        )

    ranked = sorted(positions, key=lambda p: p.abs_value, reverse=True)
    report.largest_positions = [
        LargestPosition(
            symbol     = p.symbol,
            strategy   = p.strategy_name or p.strategy,
            value      = p.abs_value,
            percentage = p.abs_value / total_value,
        )
        for p in ranked[:LARGEST_POSITIONS_LIMIT]
    ]
    return report
