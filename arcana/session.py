"""State machine for one reading's lifecycle.

    setup -> intention -> drawing -> reveal -> interpreting -> complete

``clear()`` is valid from any step and returns to ``setup``. Draws and
generation are awaited, and the session may be cleared or restarted while
they are in flight. Each session carries a token; an async operation only
writes its result back if the token it started with is still current.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import List, Optional

from arcana.ai import GenerationOrchestrator
from arcana.drawing import CardDrawer
from arcana.errors import DeckUnavailable, EntropyUnavailable, InvalidTransition
from arcana.models import (
    DetailLevel,
    DrawnCard,
    Interpretation,
    PersistedReading,
    PersonalizationContext,
    ReadingSession,
    ReadingStyle,
    SessionStep,
    SpreadDefinition,
)
from arcana.repository import ReadingRepository
from arcana.utils.rng import EntropySource

logger = logging.getLogger(__name__)


class ReadingSessionMachine:
    def __init__(
        self,
        drawer: CardDrawer,
        entropy: EntropySource,
        orchestrator: GenerationOrchestrator,
        repository: ReadingRepository,
    ):
        self.drawer = drawer
        self.entropy = entropy
        self.orchestrator = orchestrator
        self.repository = repository
        self.session: Optional[ReadingSession] = None
        self._token: Optional[str] = None

    # ------------------------------------------------------------------
    # state helpers
    # ------------------------------------------------------------------

    @property
    def step(self) -> SessionStep:
        return self.session.step if self.session else SessionStep.SETUP

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def intention(self) -> str:
        return self.session.intention if self.session else ""

    @property
    def drawn_cards(self) -> List[DrawnCard]:
        return list(self.session.drawn_cards) if self.session else []

    @property
    def interpretation(self) -> Optional[Interpretation]:
        return self.session.interpretation if self.session else None

    def _require(self, operation: str, *steps: SessionStep) -> ReadingSession:
        if self.session is None or self.session.step not in steps:
            raise InvalidTransition(operation, self.step.value)
        return self.session

    def _is_current(self, token: Optional[str]) -> bool:
        return token is not None and token == self._token and self.session is not None

    # ------------------------------------------------------------------
    # driver operations
    # ------------------------------------------------------------------

    def start_session(self, spread: SpreadDefinition) -> ReadingSession:
        if self.session is not None:
            logger.info("Discarding session %s for a new one", self.session.id)
        self._token = uuid.uuid4().hex
        self.session = ReadingSession(
            id=f"tarot-{int(time.time() * 1000)}",
            started_at=time.time(),
            spread=spread,
            step=SessionStep.INTENTION,
        )
        return self.session

    def set_intention(self, text: str) -> None:
        session = self._require("set intention", SessionStep.INTENTION)
        session.intention = (text or "").strip()

    async def draw_cards(self) -> Optional[List[DrawnCard]]:
        """Draw the spread. Returns None if the session was cleared meanwhile.

        Drawer failures put the session back in the intention step with the
        error attached, then re-raise so the caller can offer a retry.
        """
        session = self._require("draw cards", SessionStep.INTENTION)
        token = self._token
        session.step = SessionStep.DRAWING
        session.error = None

        try:
            drawn = await self.drawer.draw(session.spread, self.entropy)
        except (DeckUnavailable, EntropyUnavailable) as e:
            if self._is_current(token):
                session.step = SessionStep.INTENTION
                session.drawn_cards = []
                session.error = str(e)
            logger.warning("Card draw failed: %s", e)
            raise

        if not self._is_current(token):
            logger.info("Discarding draw for a session that is no longer active")
            return None

        session.drawn_cards = drawn
        session.revealed = [False] * len(drawn)
        session.step = SessionStep.REVEAL
        return drawn

    def mark_revealed(self, position_index: int) -> None:
        session = self._require("reveal a card", SessionStep.REVEAL)
        if not 0 <= position_index < len(session.drawn_cards):
            raise InvalidTransition(
                "reveal a card", session.step.value, f"position {position_index} out of range"
            )
        session.revealed[position_index] = True

    @property
    def all_revealed(self) -> bool:
        return bool(self.session and self.session.revealed and all(self.session.revealed))

    async def request_interpretation(
        self,
        context: Optional[PersonalizationContext] = None,
        style: ReadingStyle = "psychological",
        detail: DetailLevel = "detailed",
    ) -> Optional[Interpretation]:
        session = self._require("request interpretation", SessionStep.REVEAL)
        if not self.all_revealed:
            raise InvalidTransition("request interpretation", session.step.value, "not every card is revealed")

        token = self._token
        session.step = SessionStep.INTERPRETING
        interpretation = await self.orchestrator.generate(
            session.intention, list(session.drawn_cards), context, style, detail
        )

        if not self._is_current(token):
            logger.info("Discarding interpretation for a session that is no longer active")
            return None

        session.interpretation = interpretation
        session.step = SessionStep.COMPLETE
        return interpretation

    async def save(self, user_id: str) -> PersistedReading:
        """Persist the completed reading and close the session."""
        session = self._require("save", SessionStep.COMPLETE)
        token = self._token
        reading = await self.repository.save(session, user_id)
        if self._is_current(token):
            self._reset()
        return reading

    def clear(self) -> None:
        if self.session is not None:
            logger.info("Clearing session %s at step %s", self.session.id, self.session.step.value)
        self._reset()

    def _reset(self) -> None:
        self.session = None
        self._token = None
