"""Turn the upstream model's free-form reply into the canonical response shape.

The model is asked for JSON but nothing guarantees it: replies arrive as plain
prose, fenced JSON, or JSON embedded in prose. parse_reply() returns a tagged
result and extract() always produces ``{message, citations, suggestedActions}``.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from policy_chat.models import Citation, ExtractedReply, SuggestedAction

logger = logging.getLogger("gateway")

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_BRACED_SPAN = re.compile(r"\{[\s\S]*\}")

_ItemT = TypeVar("_ItemT", bound=BaseModel)


@dataclass
class ParsedReply:
    """A reply whose structured payload was recovered."""

    message: str
    citations: List[Citation] = field(default_factory=list)
    suggested_actions: List[SuggestedAction] = field(default_factory=list)
    dropped_items: int = 0


@dataclass
class RawReply:
    """A reply that could not be parsed; the raw text becomes the message."""

    text: str


def find_json_span(raw: str) -> Optional[str]:
    """Locate the text most likely to hold the structured payload."""
    fenced = _FENCED_BLOCK.search(raw)
    if fenced:
        return fenced.group(1).strip()

    braced = _BRACED_SPAN.search(raw)
    if braced:
        return braced.group(0)

    return None


def _coerce_items(value: Any, model: Type[_ItemT]) -> Tuple[List[_ItemT], int]:
    """Validate list items individually, dropping the ones that do not fit."""
    if not isinstance(value, list):
        return [], 0

    items: List[_ItemT] = []
    dropped = 0
    for raw_item in value:
        try:
            items.append(model.model_validate(raw_item))
        except ValidationError:
            dropped += 1
    return items, dropped


def parse_reply(raw: str) -> Union[ParsedReply, RawReply]:
    """Parse an upstream reply into a ParsedReply, or a RawReply on failure."""
    span = find_json_span(raw)
    if span is None:
        return RawReply(text=raw)

    try:
        data = json.loads(span)
    except (ValueError, RecursionError):
        return RawReply(text=raw)

    if not isinstance(data, dict):
        return RawReply(text=raw)

    message = data.get("message")
    citations, dropped_citations = _coerce_items(data.get("citations"), Citation)
    actions, dropped_actions = _coerce_items(
        data.get("suggestedActions"), SuggestedAction
    )

    return ParsedReply(
        message=message if isinstance(message, str) and message else raw,
        citations=citations,
        suggested_actions=actions,
        dropped_items=dropped_citations + dropped_actions,
    )


def to_extracted(reply: Union[ParsedReply, RawReply]) -> ExtractedReply:
    """Convert a tagged parse result into the canonical reply shape."""
    if isinstance(reply, RawReply):
        return ExtractedReply(message=reply.text)

    if reply.dropped_items:
        logger.warning(
            "Dropped %d malformed citation/action item(s) from model reply",
            reply.dropped_items,
        )
    return ExtractedReply(
        message=reply.message,
        citations=reply.citations,
        suggested_actions=reply.suggested_actions,
    )


def extract(raw: str) -> ExtractedReply:
    """Return the canonical reply shape for any upstream text. Never raises."""
    return to_extracted(parse_reply(raw or ""))
