"""Pulling JSON objects out of model replies.

Even in JSON mode, small local models sometimes wrap the object in a
Markdown fence or put a sentence before it.
"""

import json
import re

from pydantic import BaseModel, ValidationError

from adaptive_scraper.utils.logging import get_logger

logger = get_logger(__name__)

_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)
_decoder = json.JSONDecoder()


def find_json_object(text: str | None) -> dict | None:
    """Return the first JSON object in a reply.

    Tries the whole reply, then each fenced block, then decodes from every
    ``{`` in turn, so trailing prose after the object is ignored.

    Examples:
        >>> find_json_object('Sure: {"articleUrls": []} Hope that helps!')
        {'articleUrls': []}
    """
    if not text:
        return None
    text = text.strip()

    candidates = [text, *(block.strip() for block in _FENCE.findall(text))]
    for candidate in candidates:
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value

    start = text.find("{")
    while start != -1:
        try:
            value, _ = _decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            value = None
        if isinstance(value, dict):
            return value
        start = text.find("{", start + 1)
    return None


def parse_reply[T: BaseModel](text: str | None, schema: type[T]) -> T | None:
    """Find the JSON object in a reply and validate it against ``schema``.

    Returns:
        Model instance, or None when no object is found or it does not fit.
    """
    data = find_json_object(text)
    if data is None:
        return None
    try:
        return schema.model_validate(data)
    except ValidationError as e:
        logger.warning("LLM reply does not match schema", schema=schema.__name__, errors=str(e)[:500])
        return None
