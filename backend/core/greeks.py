"""
Aggregate Greeks Exposure
=========================
Linear proxy for portfolio delta/gamma/theta/vega. This is NOT an options
pricing model: every call/put position is treated as an at-the-money option
with fixed sensitivity coefficients, and positions whose strategy name
mentions neither "call" nor "put" contribute nothing.
"""
from typing import List

from core.portfolio_state import Position
from core.schemas import GreekExposure

DELTA_COEFFICIENT = 0.5    # ATM delta
GAMMA_COEFFICIENT = 0.02
THETA_COEFFICIENT = 0.05   # Spread over remaining days
VEGA_COEFFICIENT  = 0.1


def compute_greeks(positions: List[Position]) -> GreekExposure:
    greeks = GreekExposure()

    for pos in positions:
        name = pos.strategy_label.lower()
        is_call = "call" in name
        is_put = "put" in name
        if not (is_call or is_put):
            continue

        value = pos.value
        delta_sign = 1 if is_call else -1
        greeks.total_delta += value * DELTA_COEFFICIENT * delta_sign
        greeks.total_gamma += abs(value) * GAMMA_COEFFICIENT
        greeks.total_theta += -abs(value) * THETA_COEFFICIENT / max(pos.dte, 1)
        greeks.total_vega  += abs(value) * VEGA_COEFFICIENT

    greeks.net_exposure = abs(greeks.total_delta)
    greeks.delta_hedge_ratio = greeks.net_exposure / max(1, len(positions))
    return greeks
