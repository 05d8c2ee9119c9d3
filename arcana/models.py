from __future__ import annotations

import json
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

InterpretationSource = Literal["ai", "static"]
ReadingStyle = Literal["mystical", "psychological", "practical"]
DetailLevel = Literal["brief", "detailed", "comprehensive"]
Tone = Literal["Supportive", "Challenging", "Transformative", "Illuminating"]

LOCAL_ID_PREFIX = "local-"


class Card(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    number: int = 0
    suit: str = "major"
    keywords: List[str] = Field(default_factory=list)
    upright: str
    reversed: str
    element: Optional[str] = None
    astrology: Optional[str] = None


class SpreadPosition(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    meaning: str = ""
    x: float = 0.5
    y: float = 0.5
    rotation: Optional[int] = None


class SpreadDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    positions: List[SpreadPosition]

    @property
    def card_count(self) -> int:
        return len(self.positions)


class Orientation(str, Enum):
    UPRIGHT = "upright"
    REVERSED = "reversed"


class DrawnCard(BaseModel):
    model_config = ConfigDict(frozen=True)

    card: Card
    position: str
    orientation: Orientation
    position_meaning: str = ""

    @property
    def reversed(self) -> bool:
        return self.orientation is Orientation.REVERSED

    @property
    def meaning(self) -> str:
        return self.card.reversed if self.reversed else self.card.upright

    @property
    def label(self) -> str:
        return f"{self.card.name} ({self.orientation.value})"


class BirthData(BaseModel):
    sun_sign: Optional[str] = None
    moon_sign: Optional[str] = None
    rising_sign: Optional[str] = None


class PersonalizationContext(BaseModel):
    current_date: str
    birth_data: Optional[BirthData] = None


# ---------------------------------------------------------------------------
# Interpretation documents
# ---------------------------------------------------------------------------

class _Document(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class Preview(_Document):
    title: str
    summary: str
    tone: Tone


class CardInsight(_Document):
    position: str
    card_name: str = Field(alias="cardName")
    interpretation: str


class Synthesis(_Document):
    narrative: str
    main_theme: str = Field(alias="mainTheme")


class Guidance(_Document):
    understanding: str
    action_steps: List[str] = Field(alias="actionSteps")
    things_to_embrace: List[str] = Field(alias="thingsToEmbrace")
    things_to_release: List[str] = Field(alias="thingsToRelease")


class Timing(_Document):
    immediate_action: str = Field(alias="immediateAction")
    near_future: str = Field(alias="nearFuture")
    long_term: str = Field(alias="longTerm")


class FullContent(_Document):
    overview: str
    card_insights: List[CardInsight] = Field(alias="cardInsights")
    synthesis: Synthesis
    guidance: Guidance
    timing: Timing
    key_insight: str = Field(alias="keyInsight")
    reflection_prompts: List[str] = Field(alias="reflectionPrompts")
    conclusion: str


class MetaContent(_Document):
    """Everything in a reading except the overview and the card insights."""

    preview: Preview
    synthesis: Synthesis
    guidance: Guidance
    timing: Timing
    key_insight: str = Field(alias="keyInsight")
    reflection_prompts: List[str] = Field(alias="reflectionPrompts")
    conclusion: str


class LegacyInterpretation(BaseModel):
    format: Literal["legacy"] = "legacy"
    text: str
    source: InterpretationSource = "static"

    def as_text(self) -> str:
        return self.text


class StructuredInterpretation(_Document):
    format: Literal["v2"] = "v2"
    preview: Preview
    full_content: FullContent = Field(alias="fullContent")
    source: InterpretationSource = "ai"

    def as_text(self) -> str:
        doc = self.model_dump(by_alias=True, include={"preview", "full_content"})
        return json.dumps(doc, ensure_ascii=False)


Interpretation = Annotated[
    Union[LegacyInterpretation, StructuredInterpretation],
    Field(discriminator="format"),
]


# ---------------------------------------------------------------------------
# Session + persistence
# ---------------------------------------------------------------------------

class SessionStep(str, Enum):
    SETUP = "setup"
    INTENTION = "intention"
    DRAWING = "drawing"
    REVEAL = "reveal"
    INTERPRETING = "interpreting"
    COMPLETE = "complete"


class ReadingSession(BaseModel):
    id: str
    started_at: float
    spread: SpreadDefinition
    intention: str = ""
    drawn_cards: List[DrawnCard] = Field(default_factory=list)
    revealed: List[bool] = Field(default_factory=list)
    interpretation: Optional[Interpretation] = None
    step: SessionStep = SessionStep.INTENTION
    error: Optional[str] = None


class PersistedReading(BaseModel):
    id: str
    user_id: str
    created_at: str
    intention: str
    spread: SpreadDefinition
    cards: List[DrawnCard]
    interpretation: Interpretation
    source: InterpretationSource

    @property
    def is_local(self) -> bool:
        return self.id.startswith(LOCAL_ID_PREFIX)


class StoredCard(BaseModel):
    """What a stored reading keeps for each drawn card."""

    card_id: str
    position: str
    position_meaning: str = ""
    orientation: Orientation


class StoredMetadata(BaseModel):
    spread_id: str
    spread_name: str = ""
    cards: List[StoredCard] = Field(default_factory=list)
    interpretation_source: InterpretationSource = "ai"
    interpretation_format: Literal["legacy", "v2"] = "legacy"
