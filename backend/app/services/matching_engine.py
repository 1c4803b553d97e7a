"""
backend/app/services/matching_engine.py

Purpose:
    Pure win/lose classification of a normalized bet against a declared
    result. No I/O, no clock, no randomness: the same (bet, result) pair
    always yields the same evaluation, so settlement re-runs are safe.

Dependencies:
    - app.models.bet
    - app.models.draw
"""

from __future__ import annotations

from app.models.bet import (
    TWO_DIGITS,
    Bet,
    BetStatus,
    CrossingSelection,
    HarufPosition,
    HarufSelection,
    JodiSelection,
)
from app.models.draw import BetEvaluation, CombinationResult, DeclaredResult
from app.services.errors import DrawMismatchError, InvalidResultError


def validate_winning_number(value: str) -> str:
    """Return `value` if it is exactly two ASCII digits, else raise InvalidResultError."""
    if not isinstance(value, str) or not TWO_DIGITS.match(value):
        raise InvalidResultError(f"Winning number must be exactly two digits, got {value!r}")
    return value


def _outcome(won: bool) -> BetStatus:
    return BetStatus.won if won else BetStatus.lost


def evaluate_jodi(selection: JodiSelection, winning_number: str) -> bool:
    return selection.number == winning_number


def evaluate_haruf(selection: HarufSelection, winning_number: str) -> bool:
    # Character comparison, not numeric: "0" and "00" never get confused.
    if selection.position == HarufPosition.first:
        return selection.digit == winning_number[0]
    return selection.digit == winning_number[1]


def evaluate_crossing(selection: CrossingSelection, winning_number: str) -> tuple[CombinationResult, ...]:
    """Each combination is graded as its own Jodi. Payouts are filled in later."""
    return tuple(
        CombinationResult(
            number=combo.number,
            stake=combo.stake,
            won=combo.number == winning_number,
        )
        for combo in selection.combinations
    )


def evaluate(bet: Bet, result: DeclaredResult) -> BetEvaluation:
    """Classify one bet. Callers pre-filter by draw; a mismatch is a bug."""
    if bet.draw_id != result.draw_id:
        raise DrawMismatchError(
            f"Bet {bet.id} belongs to draw {bet.draw_id}, not {result.draw_id}"
        )
    winning_number = validate_winning_number(result.winning_number)
    selection = bet.selection

    if isinstance(selection, JodiSelection):
        return BetEvaluation(
            bet_id=bet.id,
            bet_type=bet.bet_type,
            outcome=_outcome(evaluate_jodi(selection, winning_number)),
        )

    if isinstance(selection, HarufSelection):
        return BetEvaluation(
            bet_id=bet.id,
            bet_type=bet.bet_type,
            outcome=_outcome(evaluate_haruf(selection, winning_number)),
        )

    if isinstance(selection, CrossingSelection):
        combinations = evaluate_crossing(selection, winning_number)
        return BetEvaluation(
            bet_id=bet.id,
            bet_type=bet.bet_type,
            outcome=_outcome(any(combo.won for combo in combinations)),
            combinations=combinations,
        )

    raise TypeError(f"Unsupported selection {type(selection).__name__}")
