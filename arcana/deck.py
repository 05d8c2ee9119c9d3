"""Deck and spread reference tables.

- Loads the 78-card deck from arcana/data/deck.json
- Loads spread layouts from arcana/data/spreads.json
- Provides: get_deck(), get_cards(), get_card(card_id), get_spreads(), get_spread(spread_id)

Both tables are loaded once and cached; they are never mutated.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from arcana.errors import DeckError, DeckUnavailable
from arcana.models import Card, SpreadDefinition

DATA_DIR = Path(__file__).resolve().parent / "data"
DECK_PATH = DATA_DIR / "deck.json"
SPREADS_PATH = DATA_DIR / "spreads.json"

DECK_SIZE = 78
SUITS = ("major", "wands", "cups", "swords", "pentacles")


def _load_json(path: Path) -> Dict[str, Any]:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise DeckUnavailable(f"Reference data file not found at: {path}") from e

    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise DeckUnavailable(f"Invalid JSON in {path}: {e}") from e


def _load_deck() -> List[Card]:
    data = _load_json(DECK_PATH)
    if "cards" not in data or not isinstance(data["cards"], list) or len(data["cards"]) != DECK_SIZE:
        raise DeckUnavailable(f"Deck data must contain exactly {DECK_SIZE} cards.")
    try:
        return [Card.model_validate(c) for c in data["cards"]]
    except ValidationError as e:
        raise DeckUnavailable(f"Invalid card record in {DECK_PATH}: {e}") from e


def _load_spreads() -> List[SpreadDefinition]:
    data = _load_json(SPREADS_PATH)
    try:
        return [SpreadDefinition.model_validate(s) for s in data.get("spreads", [])]
    except ValidationError as e:
        raise DeckUnavailable(f"Invalid spread record in {SPREADS_PATH}: {e}") from e


_DECK_CACHE: Optional[List[Card]] = None
_SPREADS_CACHE: Optional[List[SpreadDefinition]] = None


def get_deck() -> List[Card]:
    global _DECK_CACHE
    if _DECK_CACHE is None:
        _DECK_CACHE = _load_deck()
    return _DECK_CACHE


def get_cards() -> List[Card]:
    return list(get_deck())


def get_card(card_id: str) -> Card:
    for c in get_deck():
        if c.id == card_id:
            return c
    raise DeckError(f"Unknown card id: {card_id}")


def cards_by_id() -> Dict[str, Card]:
    return {c.id: c for c in get_deck()}


def get_spreads() -> List[SpreadDefinition]:
    global _SPREADS_CACHE
    if _SPREADS_CACHE is None:
        _SPREADS_CACHE = _load_spreads()
    return list(_SPREADS_CACHE)


def get_spread(spread_id: str) -> SpreadDefinition:
    for s in get_spreads():
        if s.id == spread_id:
            return s
    raise DeckError(f"Unknown spread id: {spread_id}")


def find_spread(spread_id: str) -> Optional[SpreadDefinition]:
    try:
        return get_spread(spread_id)
    except DeckError:
        return None


def validate_deck() -> None:
    cards = get_deck()
    ids = [c.id for c in cards]
    if len(ids) != len(set(ids)):
        raise DeckError("Duplicate card ids detected.")

    for c in cards:
        if c.suit not in SUITS:
            raise DeckError(f"Card {c.id} has unknown suit {c.suit}")
        if not c.keywords:
            raise DeckError(f"Card {c.id} has no keywords")

    for s in get_spreads():
        if s.card_count == 0:
            raise DeckError(f"Spread {s.id} has no positions")
        if s.card_count >= len(cards):
            raise DeckError(f"Spread {s.id} needs more cards than the deck holds")
