"""Prompt rendering for the generative text service.

Everything here is a pure function of the drawn cards, the intention and the
personalization context. There are two families:

- a single consolidated prompt asking for the whole structured reading
  (or plain text in legacy mode)
- a decomposed set for large spreads: one overview prompt, one prompt per
  card and one meta prompt (synthesis, guidance, timing, closing)

Each decomposed prompt carries everything it needs, so the calls can run
concurrently and in any order.
"""

from __future__ import annotations

import json
from typing import Dict, List

from arcana.models import DetailLevel, DrawnCard, PersonalizationContext, ReadingStyle

GENERAL_INTENTION = "General guidance"
TONES = ("Supportive", "Challenging", "Transformative", "Illuminating")

STYLE_GUIDANCE: Dict[str, str] = {
    "mystical": (
        "Connect the cards to bigger themes and life lessons while staying relatable. "
        "Lean on wisdom traditions and personal meaning-making rather than esoteric jargon."
    ),
    "psychological": (
        "Treat the cards as a mirror of the querent's inner world. Explore patterns, "
        "motivations and growth using accessible psychology."
    ),
    "practical": (
        "Speak like a friend giving advice. Focus on real-world situations and concrete "
        "next steps, and skip mystical language."
    ),
}

DETAIL_GUIDANCE: Dict[str, str] = {
    "brief": "2-3 paragraphs total.",
    "detailed": "4-5 paragraphs.",
    "comprehensive": "6-8 paragraphs.",
}

MAX_OUTPUT_TOKENS: Dict[str, int] = {
    "brief": 1000,
    "detailed": 2000,
    "comprehensive": 3000,
}
OVERVIEW_MAX_TOKENS = 400
CARD_MAX_TOKENS = 400
META_MAX_TOKENS = 1500

_PREVIEW_SHAPE = {
    "title": "Compelling 4-8 word title capturing the reading's essence",
    "summary": "2 sentence overview of what this reading reveals",
    "tone": "|".join(TONES),
}

_META_SHAPE = {
    "synthesis": {
        "narrative": "3-4 sentences on how the cards work together",
        "mainTheme": "2 sentences naming the central theme or lesson",
    },
    "guidance": {
        "understanding": "2-3 sentences on what the cards reveal",
        "actionSteps": ["Specific step 1", "Specific step 2", "Specific step 3"],
        "thingsToEmbrace": ["Quality to lean into 1", "Quality to lean into 2"],
        "thingsToRelease": ["Pattern to let go of 1", "Pattern to let go of 2"],
    },
    "timing": {
        "immediateAction": "What to focus on right now (1-2 sentences)",
        "nearFuture": "What to watch for soon (1-2 sentences)",
        "longTerm": "Broader perspective (1-2 sentences)",
    },
    "keyInsight": "1-2 sentences with the single most important takeaway",
    "reflectionPrompts": ["Question 1?", "Question 2?", "Question 3?"],
    "conclusion": "2 sentences empowering them to work with this reading",
}


def max_output_tokens(detail: DetailLevel) -> int:
    return MAX_OUTPUT_TOKENS.get(detail, MAX_OUTPUT_TOKENS["detailed"])


def _intention(intention: str) -> str:
    return (intention or "").strip() or GENERAL_INTENTION


def format_astro_profile(context: PersonalizationContext) -> str:
    if context.birth_data is None:
        return "Astrological data not provided"
    bd = context.birth_data
    parts = []
    if bd.sun_sign:
        parts.append(f"Sun in {bd.sun_sign}")
    if bd.moon_sign:
        parts.append(f"Moon in {bd.moon_sign}")
    if bd.rising_sign:
        parts.append(f"Rising {bd.rising_sign}")
    return ", ".join(parts) if parts else "Astrological data not fully available"


def _context_lines(intention: str, context: PersonalizationContext) -> List[str]:
    lines = [
        f'Question/Intention: "{_intention(intention)}"',
        f"Date: {context.current_date}",
    ]
    if context.birth_data is not None:
        lines.append(f"Querent's Astrology: {format_astro_profile(context)}")
    return lines


def card_details(dc: DrawnCard) -> List[str]:
    parts = [
        f"Card: {dc.label}",
        f"Keywords: {', '.join(dc.card.keywords)}",
        f"Meaning: {dc.meaning}",
    ]
    if dc.card.astrology:
        parts.append(f"Astrology: {dc.card.astrology}")
    if dc.card.element:
        parts.append(f"Element: {dc.card.element}")
    return parts


def card_summary(cards: List[DrawnCard]) -> str:
    return "\n".join(f'{i + 1}. {dc.label} in "{dc.position}"' for i, dc in enumerate(cards))


def _shape(obj: object) -> str:
    return json.dumps(obj, indent=2)


def build_reading_prompt(
    intention: str,
    cards: List[DrawnCard],
    context: PersonalizationContext,
    style: ReadingStyle = "psychological",
    detail: DetailLevel = "detailed",
) -> str:
    """Consolidated prompt asking for the full structured (v2) document."""
    blocks = []
    for i, dc in enumerate(cards, start=1):
        head = f"{i}. Position: {dc.position} ({dc.position_meaning})"
        blocks.append("\n".join([head] + [f"   - {p}" for p in card_details(dc)]))

    insight_shape = [
        {"position": dc.position, "cardName": dc.label, "interpretation": "3-4 sentences for this card here"}
        for dc in cards
    ]
    shape = {"preview": _PREVIEW_SHAPE, "fullContent": {"overview": "Opening paragraph (3-4 sentences)",
                                                        "cardInsights": insight_shape, **_META_SHAPE}}

    return "\n".join([
        "IMPORTANT: Return ONLY valid JSON, no explanatory text before or after.",
        "",
        "You are a skilled tarot reader giving a warm, grounded and honest reading.",
        "Write in second person. Avoid fortune-telling, mystical theatre and vague platitudes.",
        "Reversed cards add nuance (internal, blocked or shadow expression), they are not automatically negative.",
        "",
        "READING CONTEXT:",
        *_context_lines(intention, context),
        f"Spread: {', '.join(dc.position for dc in cards) or 'Custom spread'} ({len(cards)} cards)",
        f"Reading Style: {style}",
        f"Detail Level: {detail} ({DETAIL_GUIDANCE.get(detail, '')})",
        "",
        "STYLE GUIDANCE:",
        STYLE_GUIDANCE.get(style, STYLE_GUIDANCE["psychological"]),
        "",
        "CARDS DRAWN:",
        "\n\n".join(blocks),
        "",
        "Return a JSON document with exactly this structure. ALL FIELDS ARE REQUIRED:",
        _shape(shape),
        "",
        "CRITICAL:",
        f"- fullContent.cardInsights must have exactly one entry per card ({len(cards)} total), in the order above",
        f"- preview.tone must be exactly one of: {', '.join(TONES)}",
        "- reflectionPrompts must have at least 3 questions",
        "- Return ONLY the JSON object",
    ])


def build_legacy_prompt(
    intention: str,
    cards: List[DrawnCard],
    context: PersonalizationContext,
    style: ReadingStyle = "psychological",
    detail: DetailLevel = "detailed",
) -> str:
    """Plain-text prompt used when structured output is switched off."""
    lines = [
        "You are an expert tarot reader. Provide an insightful interpretation of this reading.",
        "",
        *_context_lines(intention, context),
        "",
        "CARDS DRAWN:",
    ]
    for i, dc in enumerate(cards, start=1):
        lines.append(f"{i}. {dc.label} - Position: {dc.position}")
        lines.append(f"   Position Meaning: {dc.position_meaning}")
    lines += [
        "",
        f"INTERPRETATION STYLE: {STYLE_GUIDANCE.get(style, STYLE_GUIDANCE['psychological'])}",
        f"LENGTH: {DETAIL_GUIDANCE.get(detail, DETAIL_GUIDANCE['detailed'])}",
        "",
        "Include an overview, each card in its position, how the cards relate, practical guidance "
        "and one key insight. Write in plain prose, not JSON.",
    ]
    return "\n".join(lines)


def build_overview_prompt(
    intention: str,
    cards: List[DrawnCard],
    context: PersonalizationContext,
    style: ReadingStyle = "psychological",
) -> str:
    return "\n".join([
        "You are writing the opening overview of a tarot reading. Look at the spread as a whole.",
        "",
        f"WRITING STYLE: {STYLE_GUIDANCE.get(style, STYLE_GUIDANCE['psychological'])}",
        "",
        "CONTEXT:",
        *_context_lines(intention, context),
        "",
        "CARDS IN THIS SPREAD:",
        card_summary(cards),
        "",
        "Write 3-4 sentences on the overall energy or story. Do not interpret individual cards yet.",
        "",
        "Return ONLY valid JSON with this structure:",
        _shape({"overview": "Your 3-4 sentence opening overview"}),
    ])


def build_card_prompt(
    card: DrawnCard,
    index: int,
    all_cards: List[DrawnCard],
    intention: str,
    context: PersonalizationContext,
    style: ReadingStyle = "psychological",
) -> str:
    others = [f'{dc.label} in "{dc.position}"' for i, dc in enumerate(all_cards) if i != index]
    if card.reversed:
        orientation_note = "This card is reversed: read it with nuance (internal, blocked or shadow expression)."
    else:
        orientation_note = "This card is upright: full expression of its energy."

    return "\n".join([
        "You are interpreting ONE card of a tarot reading. Focus on this card's message.",
        "",
        f"WRITING STYLE: {STYLE_GUIDANCE.get(style, STYLE_GUIDANCE['psychological'])}",
        "Write 3-4 specific, grounded sentences.",
        "",
        "CONTEXT:",
        *_context_lines(intention, context),
        "",
        f"THIS CARD (Card {index + 1}):",
        f'Position: "{card.position}"',
        f"Position Meaning: {card.position_meaning}",
        *card_details(card),
        orientation_note,
        "",
        "OTHER CARDS IN SPREAD (context only):",
        "\n".join(others) if others else "(none)",
        "",
        "Return ONLY valid JSON with this structure:",
        _shape({"position": card.position, "cardName": card.label,
                "interpretation": "Your 3-4 sentence interpretation"}),
    ])


def build_meta_prompt(
    intention: str,
    cards: List[DrawnCard],
    context: PersonalizationContext,
    style: ReadingStyle = "psychological",
) -> str:
    return "\n".join([
        "You are writing the synthesis, guidance and reflection sections of a tarot reading.",
        "",
        f"WRITING STYLE: {STYLE_GUIDANCE.get(style, STYLE_GUIDANCE['psychological'])}",
        "",
        "CONTEXT:",
        *_context_lines(intention, context),
        "",
        "CARDS IN THIS SPREAD:",
        card_summary(cards),
        "",
        "You have the card list but not the individual interpretations. Focus on the big picture.",
        "",
        "Return ONLY valid JSON with this EXACT structure:",
        _shape({"preview": _PREVIEW_SHAPE, **_META_SHAPE}),
        "",
        f"- preview.tone must be exactly one of: {', '.join(TONES)}",
        "- Return ONLY the JSON, no other text",
    ])
