"""Card drawing with duplicate-free linear probing."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from arcana.deck import get_deck
from arcana.errors import DeckUnavailable, EntropyUnavailable, SpreadTooLarge
from arcana.models import Card, DrawnCard, Orientation, SpreadDefinition
from arcana.utils.rng import EntropySource

logger = logging.getLogger(__name__)


class CardDrawer:
    """Draws one card per spread position from a fixed deck.

    The entropy feed is asked for ``2 * card_count`` integers in one call:
    the first half picks cards, the second half picks orientation. A card
    index that is already taken probes forward (with wraparound) to the next
    free index, so the result never repeats a card.
    """

    def __init__(self, deck: Optional[Sequence[Card]] = None):
        self._deck = deck

    @property
    def deck(self) -> List[Card]:
        if self._deck is None:
            self._deck = get_deck()
        if not self._deck:
            raise DeckUnavailable("Card deck is not configured.")
        return list(self._deck)

    async def draw(self, spread: SpreadDefinition, entropy: EntropySource) -> List[DrawnCard]:
        deck = self.deck
        deck_size = len(deck)
        count = spread.card_count
        if count >= deck_size:
            raise SpreadTooLarge(count, deck_size)

        try:
            numbers = await entropy.request(count * 2)
        except EntropyUnavailable:
            raise
        except Exception as e:
            raise EntropyUnavailable(f"Entropy source failed: {e}") from e
        _check_numbers(numbers, count * 2)

        used = set()
        drawn: List[DrawnCard] = []
        for i, position in enumerate(spread.positions):
            idx = numbers[i] % deck_size
            while idx in used:
                idx = (idx + 1) % deck_size
            used.add(idx)

            orientation = Orientation.UPRIGHT if numbers[count + i] % 2 == 0 else Orientation.REVERSED
            drawn.append(DrawnCard(
                card=deck[idx],
                position=position.name,
                orientation=orientation,
                position_meaning=position.meaning,
            ))

        logger.info("Drew %d cards for %s spread", len(drawn), spread.name)
        return drawn


def _check_numbers(numbers: object, expected: int) -> None:
    if not isinstance(numbers, (list, tuple)) or len(numbers) != expected:
        raise EntropyUnavailable(f"Entropy source returned the wrong amount of data (expected {expected})")
    for n in numbers:
        if isinstance(n, bool) or not isinstance(n, int) or n < 0:
            raise EntropyUnavailable(f"Entropy source returned an invalid value: {n!r}")
