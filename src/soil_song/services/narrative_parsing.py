"""Recover a structured narrative from free-form model output.

The text-generation endpoint has no schema-enforcing mode, so the prompt asks for
JSON and this module tries progressively looser readings of whatever comes back.
Strategies run in order and the first one yielding a valid narrative wins.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Sequence, Tuple

from pydantic import ValidationError

from ..schemas.soil import SoilNarrative

logger = logging.getLogger(__name__)

# Greedy: first "{" through the last "}" in the text.
_BRACED_OBJECT = re.compile(r"\{[\s\S]*\}")

ParseStrategy = Callable[[str], Any]


class NarrativeParseError(ValueError):
    """Raised when no strategy produces a valid narrative."""


def parse_direct(text: str) -> Any:
    return json.loads(text)


def parse_braced(text: str) -> Any:
    match = _BRACED_OBJECT.search(text)
    if match is None:
        raise ValueError("no brace-delimited object in text")
    return json.loads(match.group(0))


DEFAULT_STRATEGIES: Tuple[Tuple[str, ParseStrategy], ...] = (
    ("direct", parse_direct),
    ("extracted", parse_braced),
)


@dataclass(frozen=True)
class ParsedNarrative:
    narrative: SoilNarrative
    strategy: str


def parse_narrative(
    text: str,
    strategies: Sequence[Tuple[str, ParseStrategy]] = DEFAULT_STRATEGIES,
) -> ParsedNarrative:
    """Run each strategy in turn and return the first valid narrative."""

    for name, strategy in strategies:
        try:
            payload = strategy(text)
        except ValueError as exc:
            logger.debug("Narrative %s parse failed: %s", name, exc)
            continue
        if not isinstance(payload, dict):
            logger.debug("Narrative %s parse produced %s, not an object", name, type(payload).__name__)
            continue
        try:
            narrative = SoilNarrative.model_validate(payload)
        except ValidationError as exc:
            logger.debug("Narrative %s parse has the wrong shape: %s", name, exc)
            continue
        logger.info("Parsed narrative via %s path", name)
        return ParsedNarrative(narrative=narrative, strategy=name)

    raise NarrativeParseError("unparseable")


__all__ = [
    "DEFAULT_STRATEGIES",
    "NarrativeParseError",
    "ParsedNarrative",
    "parse_braced",
    "parse_direct",
    "parse_narrative",
]
