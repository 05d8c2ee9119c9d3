"""Structural checks on generated text before it is trusted.

Checks are lexical and structural only: emptiness, length bounds, refusal
phrasing, JSON shape and the card count of a structured reading. Nothing
here tries to judge or repair the content itself.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ValidationError

from arcana.errors import (
    CARD_COUNT_MISMATCH,
    DECLINED,
    EMPTY,
    MALFORMED,
    TOO_LONG,
    TOO_SHORT,
    ValidationFailed,
)
from arcana.models import (
    CardInsight,
    MetaContent,
    StructuredInterpretation,
)

MIN_LENGTH = 100
MAX_LENGTH = 10000
STRUCTURED_MAX_LENGTH = 20000
CARD_MIN_LENGTH = 40
CARD_MAX_LENGTH = 4000
OVERVIEW_MIN_LENGTH = 50
META_MIN_LENGTH = 200

REFUSAL_PATTERNS = (
    "i cannot",
    "i can't",
    "i am not able",
    "i'm not able",
    "i do not have access",
    "as an ai",
    "i apologize, but",
)

VALID_TONES = ("Supportive", "Challenging", "Transformative", "Illuminating")

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")


class ValidationResult(BaseModel):
    valid: bool
    reason: Optional[str] = None
    detail: Optional[str] = None

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(valid=True)

    @classmethod
    def invalid(cls, reason: str, detail: Optional[str] = None) -> "ValidationResult":
        return cls(valid=False, reason=reason, detail=detail)


def validate_response(text: Any, min_length: int = MIN_LENGTH, max_length: int = MAX_LENGTH) -> ValidationResult:
    if not isinstance(text, str) or not text.strip():
        return ValidationResult.invalid(EMPTY, "Response is empty")

    lowered = text.lower()
    for pattern in REFUSAL_PATTERNS:
        if pattern in lowered:
            return ValidationResult.invalid(DECLINED, "Service declined to provide an interpretation")

    if len(text) < min_length:
        return ValidationResult.invalid(TOO_SHORT, f"Response is too short ({len(text)} < {min_length})")
    if len(text) > max_length:
        return ValidationResult.invalid(TOO_LONG, f"Response is too long ({len(text)} > {max_length})")
    return ValidationResult.ok()


def ensure_valid(text: Any, min_length: int = MIN_LENGTH, max_length: int = MAX_LENGTH) -> str:
    result = validate_response(text, min_length=min_length, max_length=max_length)
    if not result.valid:
        raise ValidationFailed(result.reason, result.detail)
    return text


def extract_json(text: str) -> Dict[str, Any]:
    """Return the JSON object in ``text``, ignoring code fences and stray prose."""
    cleaned = _FENCE_RE.sub("", text.strip())
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end <= start:
        raise ValidationFailed(MALFORMED, "No JSON object found in response")
    try:
        data = json.loads(cleaned[start:end + 1])
    except json.JSONDecodeError as e:
        raise ValidationFailed(MALFORMED, f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValidationFailed(MALFORMED, "Expected a JSON object")
    return data


def _missing(obj: Dict[str, Any], prefix: str, keys: List[str]) -> List[str]:
    return [f"Missing {prefix}{k}" for k in keys if not obj.get(k)]


def _check_meta_sections(doc: Dict[str, Any], prefix: str) -> List[str]:
    errors = _missing(doc, prefix, ["synthesis", "guidance", "timing", "keyInsight", "reflectionPrompts", "conclusion"])

    synthesis = doc.get("synthesis")
    if isinstance(synthesis, dict):
        errors += _missing(synthesis, f"{prefix}synthesis.", ["narrative", "mainTheme"])

    guidance = doc.get("guidance")
    if isinstance(guidance, dict):
        errors += _missing(guidance, f"{prefix}guidance.", ["understanding"])
        for key in ("actionSteps", "thingsToEmbrace", "thingsToRelease"):
            if not isinstance(guidance.get(key), list):
                errors.append(f"{prefix}guidance.{key} must be an array")

    timing = doc.get("timing")
    if isinstance(timing, dict):
        errors += _missing(timing, f"{prefix}timing.", ["immediateAction", "nearFuture", "longTerm"])

    prompts = doc.get("reflectionPrompts")
    if prompts is not None:
        if not isinstance(prompts, list):
            errors.append(f"{prefix}reflectionPrompts must be an array")
        elif len(prompts) < 3:
            errors.append(f"{prefix}reflectionPrompts must have at least 3 items")

    key_insight = doc.get("keyInsight")
    if isinstance(key_insight, str) and key_insight and len(key_insight) < 15:
        errors.append(f"{prefix}keyInsight is too short")
    conclusion = doc.get("conclusion")
    if isinstance(conclusion, str) and conclusion and len(conclusion) < 30:
        errors.append(f"{prefix}conclusion is too short")
    return errors


def _check_preview(doc: Dict[str, Any]) -> List[str]:
    preview = doc.get("preview")
    if not isinstance(preview, dict):
        return ["Missing preview"]
    errors = _missing(preview, "preview.", ["title", "summary", "tone"])
    tone = preview.get("tone")
    if tone and tone not in VALID_TONES:
        errors.append(f"preview.tone must be one of: {', '.join(VALID_TONES)}")
    return errors


def validate_structured(doc: Any, card_count: int) -> ValidationResult:
    if not isinstance(doc, dict):
        return ValidationResult.invalid(MALFORMED, "Response is empty or invalid - expected JSON object")

    errors = _check_preview(doc)
    fc = doc.get("fullContent")
    if not isinstance(fc, dict):
        errors.append("Missing fullContent")
    else:
        errors += _missing(fc, "fullContent.", ["overview"])
        insights = fc.get("cardInsights")
        if not isinstance(insights, list) or not insights:
            errors.append("fullContent.cardInsights must be a non-empty array")
        else:
            for idx, card in enumerate(insights):
                if not isinstance(card, dict):
                    errors.append(f"cardInsights[{idx}] must be an object")
                    continue
                errors += _missing(card, f"cardInsights[{idx}].", ["position", "cardName", "interpretation"])
            if len(insights) != card_count:
                return ValidationResult.invalid(
                    CARD_COUNT_MISMATCH,
                    f"Expected {card_count} card insights, got {len(insights)}",
                )
        errors += _check_meta_sections(fc, "fullContent.")
        overview = fc.get("overview")
        if isinstance(overview, str) and overview and len(overview) < 50:
            errors.append("fullContent.overview is too short")

    if errors:
        return ValidationResult.invalid(MALFORMED, "; ".join(errors))
    return ValidationResult.ok()


def parse_structured(text: str, card_count: int) -> StructuredInterpretation:
    """Validate and parse a full v2 document produced in a single call."""
    ensure_valid(text, max_length=STRUCTURED_MAX_LENGTH)
    doc = extract_json(text)
    result = validate_structured(doc, card_count)
    if not result.valid:
        raise ValidationFailed(result.reason, result.detail)
    try:
        return StructuredInterpretation.model_validate({**doc, "source": "ai"})
    except ValidationError as e:
        raise ValidationFailed(MALFORMED, str(e)) from e


def parse_overview(text: str) -> str:
    ensure_valid(text, min_length=OVERVIEW_MIN_LENGTH, max_length=MAX_LENGTH)
    doc = extract_json(text)
    overview = doc.get("overview")
    if not isinstance(overview, str) or len(overview.strip()) < OVERVIEW_MIN_LENGTH:
        raise ValidationFailed(MALFORMED, "overview is missing or too short")
    return overview.strip()


def parse_card_insight(text: str) -> CardInsight:
    ensure_valid(text, min_length=CARD_MIN_LENGTH, max_length=CARD_MAX_LENGTH)
    doc = extract_json(text)
    missing = _missing(doc, "", ["position", "cardName", "interpretation"])
    if missing:
        raise ValidationFailed(MALFORMED, "; ".join(missing))
    try:
        return CardInsight.model_validate(doc)
    except ValidationError as e:
        raise ValidationFailed(MALFORMED, str(e)) from e


def parse_meta(text: str) -> MetaContent:
    ensure_valid(text, min_length=META_MIN_LENGTH, max_length=MAX_LENGTH)
    doc = extract_json(text)
    errors = _check_preview(doc) + _check_meta_sections(doc, "")
    if errors:
        raise ValidationFailed(MALFORMED, "; ".join(errors))
    try:
        return MetaContent.model_validate(doc)
    except ValidationError as e:
        raise ValidationFailed(MALFORMED, str(e)) from e
