"""Payout arithmetic in fixed-point rupees. No floats touch money here."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from app.models.bet import Bet, BetType
from app.models.draw import BetEvaluation, CombinationResult
from app.models.payout_config import PayoutConfig
from app.utils.money import PAISE, ZERO, to_money


def payout(stake: Decimal, ratio: Decimal) -> Decimal:
    """Amount paid for one winning unit: stake * ratio (X:1), to the paisa."""
    ratio = Decimal(str(ratio))
    if not ratio.is_finite() or ratio <= 0:
        raise ValueError(f"Payout ratio must be positive, got {ratio}")
    return (to_money(stake) * ratio).quantize(PAISE, rounding=ROUND_HALF_UP)


def bet_payout(
    bet: Bet, evaluation: BetEvaluation, config: PayoutConfig,
) -> tuple[Decimal, tuple[CombinationResult, ...]]:
    """Total payout for an evaluated bet, plus per-combination payouts for crossing.

    Lost bets pay 0. Crossing pays the sum over matched combinations, each at
    its own stake share.
    """
    ratio = config.ratio_for(bet.bet_type)

    if bet.bet_type == BetType.crossing:
        combinations = tuple(
            combo.model_copy(update={"payout": payout(combo.stake, ratio) if combo.won else ZERO})
            for combo in evaluation.combinations
        )
        total = sum((combo.payout for combo in combinations), ZERO)
        return total, combinations

    if not evaluation.won:
        return ZERO, ()
    return payout(bet.stake, ratio), ()
