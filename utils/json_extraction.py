"""Robust JSON extraction from LLM responses.

Handles various LLM output formats including:
- Pure JSON
- Markdown code blocks (```json...``` or ```...```)
- JSON embedded in surrounding prose
"""

import json
import re
from typing import Any

from utils.logging import get_logger

logger = get_logger(__name__)


def _first_balanced(text: str, opener: str, closer: str) -> str | None:
    """Return the first balanced {...} or [...] span, honouring JSON strings."""
    start = text.find(opener)
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for pos in range(start, len(text)):
            ch = text[pos]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == opener:
                depth += 1
            elif ch == closer:
                depth -= 1
                if depth == 0:
                    return text[start : pos + 1]
        start = text.find(opener, start + 1)
    return None


def extract_json_from_response(response: str, context: str = "extraction") -> Any | None:
    """Extract JSON from an LLM response using multiple strategies.

    Tries the following strategies in order:
    1. Parse as pure JSON
    2. Extract from ```json code blocks
    3. Extract from ``` code blocks (untyped)
    4. First balanced JSON object in the text
    5. First balanced JSON array in the text

    Args:
        response: The raw LLM response text
        context: Context identifier for logging (e.g., "identify-decisions")

    Returns:
        Parsed JSON data (dict or list), or None if parsing fails
    """
    if not response:
        return None

    text = response.strip()

    # Strategy 1: pure JSON
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    # Strategy 2: ```json code blocks
    json_block_match = re.search(
        r"```json\s*\n?(.*?)\n?```", text, re.DOTALL | re.IGNORECASE
    )
    if json_block_match:
        try:
            return json.loads(json_block_match.group(1).strip())
        except json.JSONDecodeError as e:
            logger.debug(f"Failed to parse ```json block for {context}: {e}")

    # Strategy 3: untyped ``` code blocks
    generic_block_match = re.search(r"```\s*\n?(.*?)\n?```", text, re.DOTALL)
    if generic_block_match:
        try:
            return json.loads(generic_block_match.group(1).strip())
        except json.JSONDecodeError as e:
            logger.debug(f"Failed to parse ``` block for {context}: {e}")

    # Strategies 4-5: embedded object, then array
    for opener, closer in (("{", "}"), ("[", "]")):
        candidate = _first_balanced(text, opener, closer)
        if candidate:
            try:
                return json.loads(candidate)
            except json.JSONDecodeError:
                pass

    logger.warning(
        f"Failed to extract JSON from response for {context}. "
        f"Response length: {len(text)}, "
        f"First 200 chars: {text[:200]!r}"
    )
    return None
