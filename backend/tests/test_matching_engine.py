"""
backend/tests/test_matching_engine.py

Purpose:
    Win/lose classification for Jodi, Haruf and Crossing bets.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from app.models.bet import (
    Bet,
    BetStatus,
    BetType,
    CrossingCombination,
    CrossingSelection,
    HarufPosition,
    HarufSelection,
    JodiSelection,
)
from app.models.draw import DeclaredResult
from app.services.errors import DrawMismatchError, InvalidResultError
from app.services.matching_engine import evaluate, validate_winning_number

ALL_NUMBERS = [f"{n:02d}" for n in range(100)]


def _result(number: str, draw_id: str = "draw-1") -> DeclaredResult:
    return DeclaredResult(
        draw_id=draw_id,
        market_id="kalyan",
        winning_number=number,
        declared_at=datetime(2026, 3, 1, 15, 0, tzinfo=timezone.utc),
        declared_by="admin",
    )


def _jodi(number: str) -> Bet:
    return Bet(
        id=f"jodi-{number}",
        user_id="u1",
        draw_id="draw-1",
        market_id="kalyan",
        bet_type=BetType.jodi,
        stake=Decimal("10"),
        selection=JodiSelection(number=number),
    )


def _haruf(digit: str, position: HarufPosition) -> Bet:
    return Bet(
        id=f"haruf-{position.value}-{digit}",
        user_id="u1",
        draw_id="draw-1",
        market_id="kalyan",
        bet_type=BetType.haruf,
        stake=Decimal("10"),
        selection=HarufSelection(digit=digit, position=position),
    )


def _crossing(numbers: list[str], stake: str = "10") -> Bet:
    return Bet(
        id="crossing-1",
        user_id="u1",
        draw_id="draw-1",
        market_id="kalyan",
        bet_type=BetType.crossing,
        stake=Decimal(stake) * len(numbers),
        selection=CrossingSelection(
            combinations=[CrossingCombination(number=n, stake=Decimal(stake)) for n in numbers]
        ),
    )


def test_jodi_wins_only_on_exact_number() -> None:
    for declared in ALL_NUMBERS:
        result = _result(declared)
        winners = [n for n in ALL_NUMBERS if evaluate(_jodi(n), result).outcome == BetStatus.won]
        assert winners == [declared]


def test_jodi_leading_zero_is_not_numeric() -> None:
    assert evaluate(_jodi("05"), _result("05")).won
    assert not evaluate(_jodi("50"), _result("05")).won


def test_haruf_first_digit_wins() -> None:
    assert evaluate(_haruf("4", HarufPosition.first), _result("45")).outcome == BetStatus.won


def test_haruf_last_digit_loses_when_other_position_matches() -> None:
    assert evaluate(_haruf("4", HarufPosition.last), _result("45")).outcome == BetStatus.lost


def test_haruf_ignores_the_other_digit() -> None:
    for other in "0123456789":
        assert evaluate(_haruf("7", HarufPosition.first), _result(f"7{other}")).won
        assert evaluate(_haruf("7", HarufPosition.last), _result(f"{other}7")).won
        if other != "7":
            assert not evaluate(_haruf("7", HarufPosition.first), _result(f"{other}7")).won


def test_crossing_grades_each_combination() -> None:
    bet = _crossing(["33", "35", "32", "53", "55", "52"])
    evaluation = evaluate(bet, _result("35"))

    assert evaluation.outcome == BetStatus.won
    assert [c.number for c in evaluation.combinations if c.won] == ["35"]
    assert len(evaluation.combinations) == 6


def test_crossing_loses_when_no_combination_matches() -> None:
    evaluation = evaluate(_crossing(["12", "21"]), _result("11"))
    assert evaluation.outcome == BetStatus.lost
    assert not any(c.won for c in evaluation.combinations)


def test_evaluate_is_deterministic() -> None:
    bet = _crossing(["33", "35"])
    result = _result("35")
    assert evaluate(bet, result) == evaluate(bet, result)


def test_draw_mismatch_is_rejected() -> None:
    with pytest.raises(DrawMismatchError):
        evaluate(_jodi("45"), _result("45", draw_id="draw-2"))


@pytest.mark.parametrize("value", ["5", "456", "4a", "", " 4", None, 45])
def test_invalid_winning_numbers(value) -> None:
    with pytest.raises(InvalidResultError):
        validate_winning_number(value)
