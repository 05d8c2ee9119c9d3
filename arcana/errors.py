"""Error taxonomy for the reading pipeline."""

from __future__ import annotations

from typing import Optional


class ArcanaError(RuntimeError):
    pass


class DeckError(ArcanaError):
    """Unknown card or spread id."""


class DeckUnavailable(ArcanaError):
    """The deck is not loaded or cannot serve the requested draw."""


class SpreadTooLarge(DeckUnavailable):
    def __init__(self, card_count: int, deck_size: int):
        self.card_count = card_count
        self.deck_size = deck_size
        super().__init__(
            f"Spread needs {card_count} cards but the deck only has {deck_size}; "
            "card count must be smaller than the deck size."
        )


class EntropyUnavailable(ArcanaError):
    pass


class GenerationUnavailable(ArcanaError):
    pass


class GenerationTimeout(GenerationUnavailable):
    pass


# ValidationFailed reasons
EMPTY = "empty"
TOO_SHORT = "too_short"
TOO_LONG = "too_long"
DECLINED = "declined"
MALFORMED = "malformed"
CARD_COUNT_MISMATCH = "card_count_mismatch"


class ValidationFailed(ArcanaError):
    def __init__(self, reason: str, detail: Optional[str] = None):
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason}: {detail}" if detail else reason)


class PersistenceFailed(ArcanaError):
    pass


class InvalidTransition(ArcanaError):
    def __init__(self, operation: str, step: str, detail: str = ""):
        self.operation = operation
        self.step = step
        msg = f"Cannot {operation} while session is in step '{step}'"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)
