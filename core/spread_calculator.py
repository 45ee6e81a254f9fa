"""
Spread Calculator Module
=========================

Fee-adjusted profitability of buying on one venue and selling on
the other, evaluated in both directions.
"""

import logging
from typing import Optional

from exchange_client.models import (
    Quote,
    SpreadEvaluation,
    TradeDirection,
)


logger = logging.getLogger(__name__)


NO_OPPORTUNITY = SpreadEvaluation(
    direction=TradeDirection.NO_OPPORTUNITY,
    net_profit_ratio=0.0,
)


def net_profit_ratio(buy_ask: float, sell_bid: float, fee_buy: float, fee_sell: float) -> Optional[float]:
    """
    Net profit ratio of buying at ``buy_ask`` and selling at ``sell_bid``.
    
    Gross spread is (sell_bid - buy_ask) / buy_ask; fees are ratios of
    notional charged on each leg and are subtracted directly.
    Returns None when the ask is not positive.
    """
    if buy_ask is None or sell_bid is None or buy_ask <= 0:
        return None
    gross = (sell_bid - buy_ask) / buy_ask
    return gross - (fee_buy + fee_sell)


class SpreadCalculator:
    """
    Evaluates both directions for a pair of venue quotes.
    
    Stateless: identical inputs always produce identical output.
    """
    
    def __init__(self, min_net_profit_ratio: float = 0.0):
        self.min_net_profit_ratio = min_net_profit_ratio
    
    def evaluate(
        self,
        quote_a: Optional[Quote],
        fee_a: float,
        quote_b: Optional[Quote],
        fee_b: float,
    ) -> SpreadEvaluation:
        """
        Evaluate buy-A-sell-B and buy-B-sell-A.
        
        A direction is profitable only when its net ratio is strictly
        greater than ``min_net_profit_ratio`` (0 by default). If both are
        profitable the larger ratio wins; ties go to buy-A-sell-B.
        """
        if quote_a is None or quote_b is None:
            return NO_OPPORTUNITY
        
        a_to_b = net_profit_ratio(quote_a.ask, quote_b.bid, fee_a, fee_b)
        b_to_a = net_profit_ratio(quote_b.ask, quote_a.bid, fee_b, fee_a)
        if a_to_b is None or b_to_a is None:
            return NO_OPPORTUNITY
        
        a_to_b_ok = a_to_b > self.min_net_profit_ratio
        b_to_a_ok = b_to_a > self.min_net_profit_ratio
        
        if a_to_b_ok and (not b_to_a_ok or a_to_b >= b_to_a):
            direction, ratio = TradeDirection.BUY_A_SELL_B, a_to_b
        elif b_to_a_ok:
            direction, ratio = TradeDirection.BUY_B_SELL_A, b_to_a
        else:
            direction, ratio = TradeDirection.NO_OPPORTUNITY, max(a_to_b, b_to_a)
        
        return SpreadEvaluation(
            direction=direction,
            net_profit_ratio=ratio,
            ratio_a_to_b=a_to_b,
            ratio_b_to_a=b_to_a,
        )
