"""
Typed decoding of raw marker values.

Model output is untrusted free text, so decoding is lenient: a value that is
a well-formed JSON list becomes a list of strings, anything else is kept
verbatim as a string.
"""

import json

from ..state.campaign_state import FieldValue


def try_decode_list(raw: str):
    """Return the raw text as a list of strings, or None if it is not a JSON list."""
    text = raw.strip()
    if not text.startswith("["):
        return None
    try:
        decoded = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    if not isinstance(decoded, list):
        return None
    return [item if isinstance(item, str) else json.dumps(item) for item in decoded]


def decode_value(raw: str) -> FieldValue:
    """
    Decode a marker's raw value.

    Args:
        raw: Text between the ``name:`` separator and the closing bracket

    Returns:
        A list of strings when ``raw`` is a JSON list, otherwise ``raw`` itself
    """
    as_list = try_decode_list(raw)
    if as_list is not None:
        return as_list
    return raw


_decoder = json.JSONDecoder()


def list_may_still_close(raw: str) -> bool:
    """
    Whether more input could still turn ``raw`` into a complete list value.

    False once the text is already broken as JSON, or once a list literal has
    ended and something other than the closing bracket follows it.
    """
    text = raw.strip()
    try:
        _, end = _decoder.raw_decode(text)
    except json.JSONDecodeError as e:
        return e.pos >= len(text) or e.msg.startswith("Unterminated string")
    rest = text[end:].lstrip()
    return not rest or rest.startswith("]")
