"""
Turns the free-form reply of the vision model into an ExtractionResult.

The model is asked for bare JSON but regularly wraps it in a Markdown fence
or surrounds it with prose, and the key set it returns is not guaranteed.
`normalize` makes exactly one pass over one reply and either returns a
validated result or raises a NormalizationError subclass carrying a bounded
excerpt of the reply for debugging.
"""
import json
import logging
import re
from typing import Any

from pydantic import ValidationError

from ..models.extraction import ExtractionResult, Stanza

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "unknown"
DEFAULT_CONTENT = "No content extracted"
EXCERPT_CHARS = 500

_CODE_FENCE_RE = re.compile(r"```[\w+-]*[ \t]*\n?(.*)```", flags=re.DOTALL)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class NormalizationError(Exception):
    message = "Failed to normalize the model response"

    def __init__(self, details: str, raw: str, excerpt_chars: int = EXCERPT_CHARS) -> None:
        super().__init__(details)
        self.details = details
        self.excerpt = (raw or "")[:excerpt_chars]


class NoJsonFound(NormalizationError):
    message = "No JSON object found in the model response"


class MalformedJson(NormalizationError):
    message = "Invalid JSON response from the model"


class InvalidShape(NormalizationError):
    message = "Invalid response structure from the model"


# ---------------------------------------------------------------------------
# Text cleanup
# ---------------------------------------------------------------------------

def strip_code_fence(text: str) -> str:
    """Unwrap a reply that is entirely one fenced block; anything else is returned as is."""
    match = _CODE_FENCE_RE.fullmatch(text)
    if not match:
        return text
    return match.group(1).strip()


def slice_json_object(text: str) -> str | None:
    """Best effort: everything from the first '{' to the last '}'.

    An object that is opened but never closed (a reply cut off by the token
    budget) is returned up to the end of the text so the JSON parser reports it.
    """
    start = text.find("{")
    if start < 0:
        return None
    end = text.rfind("}")
    if end < start:
        return text[start:]
    return text[start : end + 1]


# ---------------------------------------------------------------------------
# Coercion
# ---------------------------------------------------------------------------

def _as_text(value: Any, default: str = "") -> str:
    if not value:
        return default
    return value if isinstance(value, str) else str(value)


def _coerce_stanza(item: Any, raw: str, excerpt_chars: int) -> Stanza:
    if isinstance(item, str):
        return Stanza(original=item)
    if not isinstance(item, dict):
        raise InvalidShape(
            f"stanza must be an object, got {type(item).__name__}", raw, excerpt_chars
        )

    transliteration = item.get("transliteration")
    return Stanza(
        original=_as_text(item.get("original")),
        transliteration=_as_text(transliteration) if transliteration else None,
        translation=_as_text(item.get("translation")),
    )


def _coerce(data: dict, raw: str, excerpt_chars: int) -> ExtractionResult:
    language = _as_text(data.get("language"), DEFAULT_LANGUAGE)
    is_poem = bool(data.get("isPoem"))
    content = data.get("content") or DEFAULT_CONTENT
    translation = _as_text(data.get("translation")) or None

    if not isinstance(content, (list, str)):
        raise InvalidShape(
            f"content must be a list or a string, got {type(content).__name__}", raw, excerpt_chars
        )

    if is_poem:
        # A poem delivered as one string becomes a single stanza.
        if isinstance(content, str):
            content = [Stanza(original=content, translation=translation or "")]
        else:
            content = [_coerce_stanza(item, raw, excerpt_chars) for item in content]
    elif isinstance(content, list):
        stanzas = [_coerce_stanza(item, raw, excerpt_chars) for item in content]
        content = "\n\n".join(s.original for s in stanzas if s.original) or DEFAULT_CONTENT
        if translation is None:
            translation = "\n\n".join(s.translation for s in stanzas if s.translation) or None

    try:
        return ExtractionResult(
            language=language,
            is_poem=is_poem,
            content=content,
            translation=translation,
        )
    except ValidationError as exc:
        raise InvalidShape(str(exc), raw, excerpt_chars) from exc


# ---------------------------------------------------------------------------
# Public interface
# ---------------------------------------------------------------------------

def normalize(raw: str, excerpt_chars: int = EXCERPT_CHARS) -> ExtractionResult:
    raw = raw or ""
    text = strip_code_fence(raw.strip())

    candidate = slice_json_object(text)
    if candidate is None:
        logger.warning("Model reply contains no JSON object (%d chars).", len(raw))
        raise NoJsonFound("no '{' in the model reply", raw, excerpt_chars)

    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as exc:
        logger.warning("Model reply is not valid JSON: %s", exc)
        raise MalformedJson(str(exc), raw, excerpt_chars) from exc

    if not isinstance(data, dict):
        raise InvalidShape(
            f"top-level JSON must be an object, got {type(data).__name__}", raw, excerpt_chars
        )

    result = _coerce(data, raw, excerpt_chars)
    logger.info("Normalized reply: language=%s is_poem=%s", result.language, result.is_poem)
    return result
