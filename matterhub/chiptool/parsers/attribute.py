"""
One-shot attribute read parser.

chip-tool logs the decoded value of a read as ``CHIP:DMG: Value = <v>``.
"""

import re
from typing import Any

RAW_VALUE_PREFIX = "Raw: "

VALUE_LINE_RE = re.compile(r"\bValue = (.*)$", re.MULTILINE)

INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1


def is_raw_value(value: Any) -> bool:
    """True when ``parse_attribute_value`` could not find a value line."""
    return isinstance(value, str) and value.startswith(RAW_VALUE_PREFIX)


def coerce_scalar(text: str) -> Any:
    """
    Interpret a value string: bool, then int64, then float, then a
    quoted string, else the text itself.
    """
    text = text.strip()

    # Only the words true/false; a bare 1 or 0 stays an integer
    lowered = text.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False

    # int()/float() accept digit separators, the tool never prints them
    if "_" in text:
        return _unquote(text)

    try:
        number = int(text, 10)
    except ValueError:
        pass
    else:
        if INT64_MIN <= number <= INT64_MAX:
            return number

    try:
        return float(text)
    except ValueError:
        pass

    return _unquote(text)


def _unquote(text: str) -> str:
    if len(text) >= 2 and text.startswith('"') and text.endswith('"'):
        return text[1:-1]
    return text


def parse_attribute_value(output: str) -> Any:
    """
    Extract the value from a read's captured stdout.

    Returns ``"Raw: " + output`` when no value line is present; check with
    ``is_raw_value``.
    """
    match = VALUE_LINE_RE.search(output)
    if not match:
        return RAW_VALUE_PREFIX + output
    return coerce_scalar(match.group(1))
