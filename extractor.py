"""Pull the JSON object out of a free-form model answer.

Search models do not reliably honour "JSON only" instructions. Answers
arrive wrapped in a ``<think>`` reasoning preamble, a markdown fence,
explanatory prose, or any combination. Extraction runs as a fixed
sequence of states:

    SEEKING_REASONING_END -> SEEKING_FENCE -> SEEKING_BRACES -> DONE

Brace slicing is "first ``{`` to last ``}``" with no balancing.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from enum import Enum, auto
from json import JSONDecodeError
from typing import Any

from errors import MalformedResponseError

REASONING_END_MARKER = "</think>"
JSON_FENCE = "```json"
FENCE = "```"

LOGGER = logging.getLogger(__name__)


class ExtractionState(Enum):
    SEEKING_REASONING_END = auto()
    SEEKING_FENCE = auto()
    SEEKING_BRACES = auto()
    DONE = auto()


def strip_reasoning(text: str) -> str:
    """Drop everything up to and including the reasoning end marker."""
    text = text.strip()
    end = text.find(REASONING_END_MARKER)
    if end == -1:
        return text
    return text[end + len(REASONING_END_MARKER):].strip()


def _unfence(text: str) -> str:
    for opener in (JSON_FENCE, FENCE):
        start = text.find(opener)
        if start == -1:
            continue
        start += len(opener)
        end = text.find(FENCE, start)
        if end > start:
            return text[start:end].strip()
        # an unclosed ```json falls through to the generic fence check
    return text


def _slice_braces(text: str) -> str:
    first = text.find("{")
    last = text.rfind("}")
    if first != -1 and last > first:
        return text[first:last + 1]
    return text


_TRANSITIONS: dict[ExtractionState, tuple[Callable[[str], str], ExtractionState]] = {
    ExtractionState.SEEKING_REASONING_END: (strip_reasoning, ExtractionState.SEEKING_FENCE),
    ExtractionState.SEEKING_FENCE: (_unfence, ExtractionState.SEEKING_BRACES),
    ExtractionState.SEEKING_BRACES: (_slice_braces, ExtractionState.DONE),
}


def extract_json_candidate(raw: str) -> str:
    """Return the substring of ``raw`` most likely to be the JSON payload."""
    text = raw.strip()
    state = ExtractionState.SEEKING_REASONING_END
    while state is not ExtractionState.DONE:
        step, next_state = _TRANSITIONS[state]
        result = step(text)
        if result != text:
            LOGGER.debug("Extractor %s trimmed %s chars", state.name, len(text) - len(result))
        text = result
        state = next_state
    return text


def parse_feed_json(raw: str) -> dict[str, Any]:
    """Extract and strictly parse the JSON object from a model answer."""
    candidate = extract_json_candidate(raw)
    try:
        parsed = json.loads(candidate)
    except JSONDecodeError as exc:
        raise MalformedResponseError(f"Invalid JSON response from model: {exc}", raw=raw) from exc

    if not isinstance(parsed, dict):
        raise MalformedResponseError(
            f"Expected a JSON object from model, got {type(parsed).__name__}", raw=raw
        )
    return parsed
