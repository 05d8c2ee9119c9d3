"""Pytest configuration, Hypothesis profiles and shared fakes."""

import asyncio
import json
import re

import pytest
from hypothesis import settings

from arcana.deck import get_cards, get_spread
from arcana.errors import PersistenceFailed
from arcana.models import DrawnCard, Orientation

# Register Hypothesis profiles
settings.register_profile("ci", max_examples=100)
settings.register_profile("dev", max_examples=20)

# Load dev profile by default, CI can override via --hypothesis-profile=ci
settings.load_profile("dev")


_CARD_RE = re.compile(r"THIS CARD \(Card (\d+)\)")


def prompt_kind(prompt: str):
    """Classify a rendered prompt as ("overview"|"meta"|"single"|"legacy", None) or ("card", index)."""
    if prompt.startswith("You are writing the opening overview"):
        return "overview", None
    if prompt.startswith("You are interpreting ONE card"):
        return "card", int(_CARD_RE.search(prompt).group(1)) - 1
    if prompt.startswith("You are writing the synthesis"):
        return "meta", None
    if prompt.startswith("IMPORTANT: Return ONLY valid JSON"):
        return "single", None
    return "legacy", None


def meta_sections():
    return {
        "synthesis": {
            "narrative": "The cards move from holding on toward letting something new take root in your life.",
            "mainTheme": "Release and renewal",
        },
        "guidance": {
            "understanding": "You are being asked to trust a change that is already underway.",
            "actionSteps": ["Name what you are ready to finish", "Make one small commitment this week"],
            "thingsToEmbrace": ["Patience"],
            "thingsToRelease": ["Old expectations"],
        },
        "timing": {
            "immediateAction": "Write down the question you keep returning to.",
            "nearFuture": "Over the next few weeks a clearer choice appears.",
            "longTerm": "The groundwork you lay now shapes the coming season.",
        },
        "keyInsight": "Endings make room for what you actually want.",
        "reflectionPrompts": [
            "What am I still holding that no longer fits?",
            "Where do I feel most alive right now?",
            "What would a gentle next step look like?",
        ],
        "conclusion": "Move at your own pace and let the change find its shape around you.",
    }


def preview():
    return {
        "title": "A Season of Quiet Change",
        "summary": "This reading points to a transition already in motion. It asks for patience.",
        "tone": "Transformative",
    }


def card_insight_doc(dc: DrawnCard) -> dict:
    return {
        "position": dc.position,
        "cardName": dc.label,
        "interpretation": f"{dc.card.name} in the {dc.position} position speaks to your current path.",
    }


def overview_text() -> str:
    return json.dumps({
        "overview": "This spread tells a story of transition, moving from uncertainty toward a steadier footing.",
    })


def meta_text() -> str:
    return json.dumps({"preview": preview(), **meta_sections()})


def structured_text(drawn_cards) -> str:
    return json.dumps({
        "preview": preview(),
        "fullContent": {
            "overview": "This spread tells a story of transition, moving from uncertainty toward a steadier footing.",
            "cardInsights": [card_insight_doc(dc) for dc in drawn_cards],
            **meta_sections(),
        },
    })


LEGACY_TEXT = (
    "The cards describe a turning point. The first card shows where you have been, the second "
    "where you stand now and the third where this path leads if nothing changes. Trust the process."
)


class FakeGenerator:
    """Scripted text generator.

    ``overrides`` maps a prompt kind ("overview", "meta", "single",
    "legacy") or ("card", index) to a reply string or an exception to raise.
    Anything not overridden gets a well-formed reply for ``drawn_cards``.
    """

    def __init__(self, drawn_cards=None, overrides=None, fail_all=None, delay: float = 0.0):
        self.drawn_cards = list(drawn_cards or [])
        self.overrides = dict(overrides or {})
        self.fail_all = fail_all
        self.delay = delay
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def submit(self, prompt: str, max_output_tokens: int, temperature: float) -> str:
        kind, index = prompt_kind(prompt)
        self.calls.append({"kind": kind, "index": index, "prompt": prompt,
                           "max_output_tokens": max_output_tokens, "temperature": temperature})
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1

        if self.fail_all is not None:
            raise self.fail_all

        key = (kind, index) if kind == "card" else kind
        reply = self.overrides.get(key, self._default(kind, index))
        if isinstance(reply, BaseException):
            raise reply
        return reply

    def _default(self, kind, index):
        if kind == "overview":
            return overview_text()
        if kind == "meta":
            return meta_text()
        if kind == "card":
            return json.dumps(card_insight_doc(self.drawn_cards[index]))
        if kind == "single":
            return structured_text(self.drawn_cards)
        return LEGACY_TEXT


class MemoryStore:
    """In-memory ReadingStore."""

    def __init__(self):
        self.rows = []
        self._next = 1

    async def insert(self, record):
        row = dict(record)
        row["id"] = f"reading-{self._next}"
        self._next += 1
        self.rows.append(row)
        return row

    async def select_by_user(self, user_id, reading_type="tarot", limit=50):
        rows = [r for r in self.rows if r["user_id"] == user_id and r["reading_type"] == reading_type]
        return sorted(rows, key=lambda r: r["timestamp"], reverse=True)[:limit]

    async def delete_by_id(self, reading_id, user_id):
        self.rows = [r for r in self.rows if not (r["id"] == reading_id and r["user_id"] == user_id)]


class FailingStore:
    """ReadingStore whose every operation fails."""

    async def insert(self, record):
        raise PersistenceFailed("store offline")

    async def select_by_user(self, user_id, reading_type="tarot", limit=50):
        raise PersistenceFailed("store offline")

    async def delete_by_id(self, reading_id, user_id):
        raise PersistenceFailed("store offline")


def drawn_for(spread_id: str, orientations=None):
    """Deterministic draw: the first N cards of the deck, one per position."""
    spread = get_spread(spread_id)
    cards = get_cards()
    out = []
    for i, position in enumerate(spread.positions):
        orientation = (orientations or {}).get(i, Orientation.UPRIGHT)
        out.append(DrawnCard(
            card=cards[i],
            position=position.name,
            orientation=orientation,
            position_meaning=position.meaning,
        ))
    return out


@pytest.fixture
def three_card_draw():
    return drawn_for("three-card", {1: Orientation.REVERSED})


@pytest.fixture
def celtic_cross_draw():
    return drawn_for("celtic-cross")


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def failing_store():
    return FailingStore()
