"""Offline interpretation built only from the static card meanings.

This is the end of the fallback chain: no I/O, no parsing, and the same
input always renders the same text.
"""

from typing import List

from arcana.models import CardInsight, DrawnCard, LegacyInterpretation


def _first_keyword(dc: DrawnCard) -> str:
    return dc.card.keywords[0] if dc.card.keywords else dc.card.name.lower()


def static_interpretation(intention: str, drawn_cards: List[DrawnCard]) -> str:
    intention = (intention or "").strip()
    if intention:
        opening = f'You asked about: "{intention}"\n\nHere\'s what the cards reveal:'
    else:
        opening = "The cards offer this guidance:"

    card_blocks = []
    for dc in drawn_cards:
        block = f"**{dc.position}: {dc.card.name} ({dc.orientation.value})**"
        if dc.position_meaning:
            block += f"\n{dc.position_meaning}"
        block += f"\n\n{dc.meaning}"
        card_blocks.append(block)

    if drawn_cards:
        themes = ", ".join(_first_keyword(dc) for dc in drawn_cards)
        synthesis = (
            f"The cards suggest a journey through {themes}. Consider how these energies relate to "
            "your current situation. Each card's position offers specific insight into a different "
            "aspect of your question."
        )
    else:
        synthesis = "No cards were drawn, so take a moment to settle your question before drawing again."

    sections = [opening]
    if card_blocks:
        sections.append("\n\n".join(card_blocks))
    sections.append(f"**Synthesis**\n{synthesis}")
    sections.append(
        "**Guidance**\nReflect on how these card meanings resonate with your experience. "
        "Trust your intuition as you integrate this wisdom into your path forward."
    )
    return "\n\n".join(sections)


def fallback_card_insight(dc: DrawnCard) -> CardInsight:
    """Stand-in for one card when its generated insight is unusable."""
    meaning = dc.meaning.rstrip(".")
    if dc.reversed:
        note = (
            f"Reversed in the {dc.position} position, {dc.card.name} points to {meaning[:1].lower()}{meaning[1:]}. "
            "This asks you to look at what may be blocked or turned inward."
        )
    else:
        note = (
            f"Upright in the {dc.position} position, {dc.card.name} offers {meaning[:1].lower()}{meaning[1:]}. "
            "This energy supports your path forward when paired with clear intention."
        )
    if dc.position_meaning:
        note += f" Here it speaks to: {dc.position_meaning.lower()}."
    return CardInsight(position=dc.position, card_name=dc.label, interpretation=note)


def fallback_interpretation(intention: str, drawn_cards: List[DrawnCard]) -> LegacyInterpretation:
    return LegacyInterpretation(text=static_interpretation(intention, drawn_cards), source="static")
