from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional

from arcana.config import Settings
from arcana.errors import CARD_COUNT_MISMATCH, EMPTY, ValidationFailed
from arcana.fallback import fallback_card_insight, fallback_interpretation
from arcana.llm import TextGenerator
from arcana.models import (
    CardInsight,
    DetailLevel,
    DrawnCard,
    FullContent,
    Interpretation,
    LegacyInterpretation,
    PersonalizationContext,
    ReadingStyle,
    StructuredInterpretation,
)
from arcana.prompts import (
    CARD_MAX_TOKENS,
    META_MAX_TOKENS,
    OVERVIEW_MAX_TOKENS,
    build_card_prompt,
    build_legacy_prompt,
    build_meta_prompt,
    build_overview_prompt,
    build_reading_prompt,
    max_output_tokens,
)
from arcana.validation import ensure_valid, parse_card_insight, parse_meta, parse_overview, parse_structured

logger = logging.getLogger(__name__)


def default_context() -> PersonalizationContext:
    return PersonalizationContext(current_date=datetime.now(timezone.utc).isoformat())


# -------------------------------------------------------------------
# AI READING
# -------------------------------------------------------------------

class GenerationOrchestrator:
    """Turns a drawn spread into an interpretation.

    Spreads of ``parallel_threshold`` cards or more are split into
    ``2 + N`` independent requests (overview, one per card, meta) that run
    concurrently; smaller spreads use one request. Whatever goes wrong, the
    caller gets a usable interpretation: a failed card insight is replaced
    in place, and any other failure degrades to the static reading.
    """

    def __init__(self, generator: TextGenerator, settings: Optional[Settings] = None):
        self.generator = generator
        self.settings = settings or Settings()

    @property
    def parallel_threshold(self) -> int:
        return self.settings.parallel_threshold

    def uses_parallel(self, drawn_cards: List[DrawnCard]) -> bool:
        return len(drawn_cards) >= self.parallel_threshold

    async def generate(
        self,
        intention: str,
        drawn_cards: List[DrawnCard],
        context: Optional[PersonalizationContext] = None,
        style: ReadingStyle = "psychological",
        detail: DetailLevel = "detailed",
    ) -> Interpretation:
        if not drawn_cards:
            logger.warning("No cards to interpret, using static fallback")
            return fallback_interpretation(intention, drawn_cards)

        context = context or default_context()
        try:
            if self.uses_parallel(drawn_cards):
                logger.info("Generating interpretation in parallel mode (%d requests)", len(drawn_cards) + 2)
                return await self._generate_parallel(intention, drawn_cards, context, style)
            logger.info("Generating interpretation in single-call mode")
            return await self._generate_single(intention, drawn_cards, context, style, detail)
        except ValidationFailed as e:
            logger.warning("AI response validation failed (%s), using static fallback: %s", e.reason, e.detail)
        except Exception as e:
            logger.warning("AI interpretation failed, using static fallback: %s", e)
        return fallback_interpretation(intention, drawn_cards)

    async def generate_text(self, *args, **kwargs) -> str:
        interpretation = await self.generate(*args, **kwargs)
        return interpretation.as_text()

    async def _generate_single(
        self,
        intention: str,
        drawn_cards: List[DrawnCard],
        context: PersonalizationContext,
        style: ReadingStyle,
        detail: DetailLevel,
    ) -> Interpretation:
        temperature = self.settings.temperature
        tokens = max_output_tokens(detail)

        if not self.settings.structured_output:
            prompt = build_legacy_prompt(intention, drawn_cards, context, style, detail)
            text = await self.generator.submit(prompt, tokens, temperature)
            return LegacyInterpretation(text=ensure_valid(text).strip(), source="ai")

        prompt = build_reading_prompt(intention, drawn_cards, context, style, detail)
        text = await self.generator.submit(prompt, tokens, temperature)
        return parse_structured(text, len(drawn_cards))

    async def _generate_parallel(
        self,
        intention: str,
        drawn_cards: List[DrawnCard],
        context: PersonalizationContext,
        style: ReadingStyle,
    ) -> StructuredInterpretation:
        temperature = self.settings.temperature
        # Render every prompt before any request coroutine exists.
        overview_prompt = build_overview_prompt(intention, drawn_cards, context, style)
        card_prompts = [
            build_card_prompt(dc, i, drawn_cards, intention, context, style) for i, dc in enumerate(drawn_cards)
        ]
        meta_prompt = build_meta_prompt(intention, drawn_cards, context, style)

        # All calls settle before assembly; results come back in call order.
        results = await asyncio.gather(
            self.generator.submit(overview_prompt, OVERVIEW_MAX_TOKENS, temperature),
            *(self.generator.submit(p, CARD_MAX_TOKENS, temperature) for p in card_prompts),
            self.generator.submit(meta_prompt, META_MAX_TOKENS, temperature),
            return_exceptions=True,
        )
        overview_raw, card_raws, meta_raw = results[0], results[1:-1], results[-1]

        overview = parse_overview(_unwrap(overview_raw, "overview"))
        meta = parse_meta(_unwrap(meta_raw, "meta"))

        insights = [self._card_insight(raw, dc, i) for i, (raw, dc) in enumerate(zip(card_raws, drawn_cards))]

        full_content = FullContent(
            overview=overview,
            card_insights=insights,
            synthesis=meta.synthesis,
            guidance=meta.guidance,
            timing=meta.timing,
            key_insight=meta.key_insight,
            reflection_prompts=meta.reflection_prompts,
            conclusion=meta.conclusion,
        )
        if len(full_content.card_insights) != len(drawn_cards):
            raise ValidationFailed(CARD_COUNT_MISMATCH, "Assembled reading lost a card insight")

        return StructuredInterpretation(preview=meta.preview, full_content=full_content, source="ai")

    @staticmethod
    def _card_insight(raw: object, dc: DrawnCard, index: int) -> CardInsight:
        try:
            insight = parse_card_insight(_unwrap(raw, f"card {index + 1}"))
        except Exception as e:
            logger.warning("Card %d (%s) insight unusable, using static meaning: %s", index + 1, dc.position, e)
            return fallback_card_insight(dc)
        # Position and name come from the draw, not from the response.
        return CardInsight(position=dc.position, card_name=dc.label, interpretation=insight.interpretation)


def _unwrap(result: object, label: str) -> str:
    if isinstance(result, BaseException):
        raise result
    if not isinstance(result, str):
        raise ValidationFailed(EMPTY, f"{label} response is not text")
    return result
