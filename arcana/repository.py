"""Saving and loading readings.

Stored records are lightweight: each card is kept as its id, position and
orientation. Loading joins those back against the deck and spread tables.
"""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import ValidationError

from arcana.deck import cards_by_id, find_spread
from arcana.errors import PersistenceFailed
from arcana.fallback import fallback_interpretation
from arcana.models import (
    LOCAL_ID_PREFIX,
    Card,
    DrawnCard,
    Interpretation,
    InterpretationSource,
    LegacyInterpretation,
    PersistedReading,
    ReadingSession,
    SpreadDefinition,
    SpreadPosition,
    StoredCard,
    StoredMetadata,
    StructuredInterpretation,
)
from arcana.readings_storage.readings_db import ReadingStore

logger = logging.getLogger(__name__)

READING_TYPE = "tarot"
HISTORY_LIMIT = 50


def is_local_id(reading_id: str) -> bool:
    return reading_id.startswith(LOCAL_ID_PREFIX)


def local_id() -> str:
    return f"{LOCAL_ID_PREFIX}{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def minimal_spread(spread_id: str, name: str, cards: List[StoredCard]) -> SpreadDefinition:
    """Stand-in spread for a stored reading whose spread is no longer known."""
    positions = [
        SpreadPosition(id=f"position-{i + 1}", name=c.position, meaning=c.position_meaning)
        for i, c in enumerate(cards)
    ]
    return SpreadDefinition(id=spread_id, name=name or spread_id, positions=positions)


def stored_interpretation(text: str, fmt: str, source: InterpretationSource, record_id: str = "?") -> Interpretation:
    """Rebuild the interpretation variant named by the stored format tag."""
    if fmt == "v2":
        try:
            return StructuredInterpretation.model_validate_json(text).model_copy(update={"source": source})
        except ValidationError as e:
            logger.warning("Reading %s has an unreadable v2 document, showing it as text: %s", record_id, e)
    return LegacyInterpretation(text=text, source=source)


class ReadingRepository:
    def __init__(self, store: ReadingStore, deck: Optional[Dict[str, Card]] = None):
        self.store = store
        self._deck = deck

    @property
    def deck(self) -> Dict[str, Card]:
        if self._deck is None:
            self._deck = cards_by_id()
        return self._deck

    async def save(self, session: ReadingSession, user_id: str) -> PersistedReading:
        """Persist a completed session. Never raises.

        When the store cannot be written the reading comes back with a
        ``local-`` id instead of a store id. A session without an
        interpretation is saved with the static reading for its cards.
        """
        interpretation = session.interpretation
        if interpretation is None:
            logger.warning("Session %s has no interpretation, saving the static reading", session.id)
            interpretation = fallback_interpretation(session.intention, session.drawn_cards)

        reading_id = None
        created_at = _now()
        try:
            saved = await self.store.insert(self._record(session, interpretation, user_id, created_at))
            reading_id = saved["id"]
            created_at = saved.get("timestamp") or created_at
            logger.info("Reading saved", extra={"reading_id": reading_id})
        except Exception as e:
            logger.warning("Reading not persisted to store, keeping it locally only: %s", e)

        return PersistedReading(
            id=reading_id or local_id(),
            user_id=user_id,
            created_at=created_at,
            intention=session.intention,
            spread=session.spread,
            cards=list(session.drawn_cards),
            interpretation=interpretation,
            source=interpretation.source,
        )

    @staticmethod
    def _record(session: ReadingSession, interpretation: Interpretation, user_id: str, timestamp: str) -> Dict:
        metadata = StoredMetadata(
            spread_id=session.spread.id,
            spread_name=session.spread.name,
            cards=[
                StoredCard(
                    card_id=dc.card.id,
                    position=dc.position,
                    position_meaning=dc.position_meaning,
                    orientation=dc.orientation,
                )
                for dc in session.drawn_cards
            ],
            interpretation_source=interpretation.source,
            interpretation_format=interpretation.format,
        )
        return {
            "user_id": user_id,
            "reading_type": READING_TYPE,
            "timestamp": timestamp,
            "intention": session.intention,
            "interpretation": interpretation.as_text(),
            "metadata": metadata.model_dump(mode="json"),
        }

    async def load(self, user_id: str, limit: int = HISTORY_LIMIT) -> List[PersistedReading]:
        try:
            records = await self.store.select_by_user(user_id, READING_TYPE, limit)
        except Exception as e:
            logger.warning("Failed to load reading history: %s", e)
            return []

        readings = []
        for record in records:
            reading = self._rebuild(record)
            if reading is not None:
                readings.append(reading)
        logger.info("Loaded %d readings", len(readings))
        return readings

    async def delete(self, reading_id: str, user_id: str) -> None:
        if is_local_id(reading_id):
            return
        try:
            await self.store.delete_by_id(reading_id, user_id)
        except PersistenceFailed:
            raise
        except Exception as e:
            raise PersistenceFailed(f"Failed to delete reading {reading_id}: {e}") from e

    def _rebuild(self, record: Dict) -> Optional[PersistedReading]:
        record_id = record.get("id", "?")
        try:
            meta = StoredMetadata.model_validate(record.get("metadata") or {})
        except ValidationError as e:
            logger.warning("Skipping reading %s with unreadable metadata: %s", record_id, e)
            return None

        drawn = []
        for sc in meta.cards:
            card = self.deck.get(sc.card_id)
            if card is None:
                logger.warning("Skipping reading %s: unknown card id %s", record_id, sc.card_id)
                return None
            drawn.append(DrawnCard(
                card=card,
                position=sc.position,
                orientation=sc.orientation,
                position_meaning=sc.position_meaning,
            ))

        spread = find_spread(meta.spread_id)
        if spread is None or spread.card_count != len(drawn):
            spread = minimal_spread(meta.spread_id, meta.spread_name, meta.cards)

        interpretation = stored_interpretation(
            record.get("interpretation") or "", meta.interpretation_format, meta.interpretation_source, record_id
        )
        return PersistedReading(
            id=record["id"],
            user_id=record["user_id"],
            created_at=record.get("timestamp") or "",
            intention=record.get("intention") or "",
            spread=spread,
            cards=drawn,
            interpretation=interpretation,
            source=meta.interpretation_source,
        )
