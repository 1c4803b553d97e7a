"""
backend/app/services/selection_normalizer.py

Purpose:
    Boundary translation from stored bet documents into normalized `Bet`
    models. Legacy selection shapes (andhar/bahar positions, "A4"/"B5" haruf
    bet numbers, crossing combos stored as generatedCombos + stakePerCombo,
    one stored document per crossing combination) are resolved here, once,
    so the matching engine never sees them.

Dependencies:
    - pydantic
    - app.models.bet
"""

from __future__ import annotations

import re
from decimal import Decimal
from typing import Any

from pydantic import ValidationError

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
from app.services.errors import MalformedSelectionError
from app.utils.money import ZERO, to_decimal128, to_money

_POSITION_ALIASES = {
    "first": HarufPosition.first,
    "andhar": HarufPosition.first,
    "a": HarufPosition.first,
    "a1": HarufPosition.first,
    "last": HarufPosition.last,
    "bahar": HarufPosition.last,
    "b": HarufPosition.last,
    "b2": HarufPosition.last,
}
_LEGACY_HARUF_NUMBER = re.compile(r"^([ABab])\s*([0-9])$")


def normalize_position(raw: Any) -> HarufPosition:
    """Map first/last and their andhar/bahar (A/B) aliases onto HarufPosition."""
    if isinstance(raw, HarufPosition):
        return raw
    key = str(raw or "").strip().lower()
    try:
        return _POSITION_ALIASES[key]
    except KeyError:
        raise ValueError(f"unknown haruf position {raw!r}") from None


def _pick(data: dict, *keys: str) -> Any:
    """First non-empty value among snake_case / camelCase spellings."""
    for key in keys:
        value = data.get(key)
        if value not in (None, "", []):
            return value
    return None


def _bet_id(doc: dict) -> str:
    return str(doc.get("_id") or doc.get("id") or "")


def _required(doc: dict, key: str) -> str:
    # Routing keys are only read in their stored snake_case form; settlement
    # queries and indexes select bets by them.
    value = _pick(doc, key)
    if value is None:
        raise KeyError(key)
    return str(value)


def _haruf_selection(bet_number: str, bet_data: dict) -> HarufSelection:
    digit = _pick(bet_data, "haruf_digit", "harufDigit", "digit")
    position = _pick(bet_data, "haruf_position", "harufPosition", "position")

    if digit is None or position is None:
        legacy = _LEGACY_HARUF_NUMBER.match(bet_number.strip())
        if legacy:
            position = position or legacy.group(1)
            digit = digit or legacy.group(2)
        elif digit is None and len(bet_number.strip()) == 1:
            digit = bet_number.strip()

    if digit is None:
        raise ValueError("haruf digit missing")
    if position is None:
        raise ValueError("haruf position missing")
    return HarufSelection(digit=str(digit).strip(), position=normalize_position(position))


def _crossing_selection(bet_number: str, bet_data: dict, stake: Decimal) -> CrossingSelection:
    explicit = bet_data.get("combinations")
    if explicit:
        combos = [
            CrossingCombination(number=str(item["number"]).strip(), stake=item["stake"])
            for item in explicit
        ]
        return CrossingSelection(combinations=combos)

    numbers = _pick(bet_data, "generated_combos", "generatedCombos")
    if numbers is None:
        single = _pick(bet_data, "crossing_combination", "crossingCombination")
        numbers = [single] if single else None
    if not numbers:
        raise ValueError("crossing combinations missing")

    per_combo = _pick(bet_data, "stake_per_combo", "stakePerCombo")
    if per_combo is not None:
        per_combo = to_money(per_combo)

    # One stored document per combination: betNumber is the combination and
    # the document stake is its own stake. generatedCombos lists the siblings.
    child = bet_number.strip()
    siblings = {str(number).strip() for number in numbers}
    if child in siblings and (per_combo is None or per_combo == stake):
        return CrossingSelection(combinations=[CrossingCombination(number=child, stake=stake)])

    if per_combo is None:
        per_combo = to_money(stake / len(numbers))
        if per_combo * len(numbers) != stake:
            raise ValueError(
                f"stake {stake} does not split evenly across {len(numbers)} combinations"
            )
    if per_combo <= ZERO:
        raise ValueError("crossing stake per combination must be positive")

    return CrossingSelection(
        combinations=[
            CrossingCombination(number=str(number).strip(), stake=per_combo)
            for number in numbers
        ]
    )


def bet_from_document(doc: dict) -> Bet:
    """Normalize one stored bet document. Raises MalformedSelectionError."""
    bet_id = _bet_id(doc)
    try:
        raw_type = str(_pick(doc, "bet_type", "betType", "game_type", "gameType") or "").lower()
        bet_type = BetType(raw_type)
        bet_data = _pick(doc, "bet_data", "betData") or {}
        bet_number = str(_pick(doc, "bet_number", "betNumber") or "")
        stake = to_money(_pick(doc, "stake", "bet_amount", "betAmount"))

        if bet_type == BetType.jodi:
            number = _pick(bet_data, "jodi_number", "jodiNumber") or bet_number
            selection = JodiSelection(number=str(number).strip())
        elif bet_type == BetType.haruf:
            selection = _haruf_selection(bet_number, bet_data)
        else:
            selection = _crossing_selection(bet_number, bet_data, stake)

        return Bet(
            id=bet_id,
            user_id=_required(doc, "user_id"),
            draw_id=_required(doc, "draw_id"),
            market_id=str(_pick(doc, "market_id", "marketId", "game_id", "gameId") or ""),
            bet_type=bet_type,
            stake=stake,
            selection=selection,
            status=BetStatus(doc.get("status") or BetStatus.pending.value),
            placed_at=_pick(doc, "placed_at", "betPlacedAt"),
        )
    except MalformedSelectionError:
        raise
    except (ValidationError, ValueError, KeyError, TypeError) as exc:
        raise MalformedSelectionError(bet_id, str(exc)) from exc


def bet_to_document(bet: Bet) -> dict:
    """Canonical storage shape for a normalized bet."""
    selection = bet.selection
    if isinstance(selection, JodiSelection):
        bet_number = selection.number
        bet_data: dict[str, Any] = {"jodi_number": selection.number}
    elif isinstance(selection, HarufSelection):
        bet_number = selection.digit
        bet_data = {"haruf_digit": selection.digit, "haruf_position": selection.position.value}
    else:
        bet_number = ",".join(combo.number for combo in selection.combinations)
        bet_data = {
            "combinations": [
                {"number": combo.number, "stake": to_decimal128(combo.stake)}
                for combo in selection.combinations
            ],
        }
    return {
        "_id": bet.id,
        "user_id": bet.user_id,
        "draw_id": bet.draw_id,
        "market_id": bet.market_id,
        "bet_type": bet.bet_type.value,
        "bet_number": bet_number,
        "bet_data": bet_data,
        "stake": to_decimal128(bet.stake),
        "status": bet.status.value,
        "placed_at": bet.placed_at,
    }
