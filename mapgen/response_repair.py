"""
LLM response repair.

Mistral is asked for a single JSON object but regularly wraps it in a
markdown fence, adds a sentence before or after it, or leaks control
characters. repair() turns any raw text into a displayable dict:

1. strip a leading/trailing ``` or ```json fence
2. drop control characters (Unicode category Cc, C0 and C1 ranges)
3. json.loads
4. on failure, json.loads the greedy {...} span
5. on failure, a fallback object flagged parseError=True

It never raises.
"""

import json
import logging
import re
import unicodedata
from datetime import datetime, timezone

from .constants import KIND_FALLBACK, TECHNICAL_SPECS

logger = logging.getLogger("mapgen")

_OPENING_FENCE = re.compile(r"^```[ \t]*(?:json|JSON)?[ \t]*\r?\n?")
_CLOSING_FENCE = re.compile(r"\r?\n?```\s*$")
_OBJECT_SPAN = re.compile(r"\{.*\}", re.DOTALL)


def strip_code_fence(text: str) -> str:
    """Remove a markdown fence around the whole response, if present."""
    text = text.strip()
    if text.startswith("```"):
        text = _OPENING_FENCE.sub("", text, count=1)
    if text.endswith("```"):
        text = _CLOSING_FENCE.sub("", text, count=1)
    return text.strip()


def remove_control_characters(text: str) -> str:
    return "".join(ch for ch in text if unicodedata.category(ch) != "Cc")


def _parse_object(text: str):
    """json.loads restricted to JSON objects; None otherwise."""
    try:
        parsed = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


def attach_metadata(parsed: dict, documents_used: int) -> dict:
    parsed["ragEnhanced"] = True
    parsed["documentsUsed"] = documents_used
    parsed["enhancedAt"] = datetime.now(timezone.utc).isoformat()
    return parsed


def build_fallback(raw_text: str, prompt: str = "", document_names=()) -> dict:
    """Displayable stand-in when nothing parseable came back."""
    names = [n for n in document_names if n]
    return {
        "type": KIND_FALLBACK,
        "title": f"Carte: {prompt}" if prompt else "Carte générée",
        "description": (
            f"La réponse de l'IA pour « {prompt} » n'a pas pu être interprétée. "
            "Reformulez la demande ou réessayez."
        ),
        "documentsUsed": len(names),
        "sources": names,
        "technicalSpecs": dict(TECHNICAL_SPECS),
        "rawResponse": raw_text,
        "parseError": True,
        "ragEnhanced": False,
        "enhancedAt": datetime.now(timezone.utc).isoformat(),
    }


def repair(raw_text, prompt: str = "", documents=()) -> dict:
    """
    Parse raw model output into a dict.

    Args:
        raw_text: the message content returned by the LLM
        prompt: the user's prompt (quoted in the fallback description)
        documents: reference documents that were in the context

    Returns:
        the parsed object with ragEnhanced/documentsUsed/enhancedAt set,
        or the fallback object with parseError=True
    """
    documents = list(documents or [])
    document_names = [doc.get("name") for doc in documents]
    raw_text = raw_text if isinstance(raw_text, str) else ""

    cleaned = remove_control_characters(strip_code_fence(raw_text))

    parsed = _parse_object(cleaned)
    if parsed is not None:
        return attach_metadata(parsed, len(documents))

    match = _OBJECT_SPAN.search(cleaned)
    if match:
        parsed = _parse_object(match.group(0))
        if parsed is not None:
            logger.info("Parsed LLM response from extracted JSON span")
            return attach_metadata(parsed, len(documents))

    logger.warning(f"Could not parse LLM response, using fallback. Preview: {cleaned[:200]}")
    return build_fallback(raw_text, prompt, document_names)
