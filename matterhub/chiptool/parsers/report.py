"""
Subscription report parser.

A running ``chip-tool <cluster> subscribe`` prints one report block per
attribute change:

    [DMG] ReportDataMessage =
    [DMG] {
    [DMG] 	AttributeReportIBs =
    ...
    [DMG] 				Data = true (BOOLEAN)
    ...
    [DMG] }

The parser assumes one ``Data =`` line per report block.
"""

import logging
import re
from enum import Enum
from typing import Any, Optional, Tuple

from ..models import AttributeReport

logger = logging.getLogger(__name__)


REPORT_START_RE = re.compile(r"ReportDataMessage =")
DATA_LINE_RE = re.compile(r"\bData = (?P<value>.*) \((?P<type>[^()]*)\),?\s*$")
# Only the outermost closing brace, inner ones are indented further
REPORT_END_RE = re.compile(r"(?:CHIP:DMG:|\[DMG\]) \}\s*$")

BOOLEAN_TYPES = {"BOOLEAN", "BOOL"}
INTEGER_TYPES = {
    "INT8S", "INT16S", "INT24S", "INT32S", "INT40S", "INT48S", "INT56S", "INT64S",
    "INT8U", "INT16U", "INT24U", "INT32U", "INT40U", "INT48U", "INT56U", "INT64U",
    "UINT8", "UINT16", "UINT32", "UINT64",
    "ENUM8", "ENUM16", "BITMAP8", "BITMAP16", "BITMAP32", "BITMAP64",
}
FLOAT_TYPES = {"FLOAT", "SINGLE", "DOUBLE"}
STRING_TYPES = {"UTF8S", "OCTET_STRING", "CHAR_STRING", "LONG_CHAR_STRING", "OCTET_STRING_LONG"}


class ReportState(str, Enum):
    """Where the parser is relative to a report block."""
    IDLE = "idle"
    IN_REPORT = "in_report"


def decode_typed_value(raw: str, type_tag: str) -> Tuple[Any, bool]:
    """
    Decode a report value by its chip-tool type tag.

    Returns (value, decoded). On failure or unknown tags the raw string is
    returned with ``decoded`` False.
    """
    raw = raw.strip()
    tag = type_tag.strip().upper()

    try:
        if tag in BOOLEAN_TYPES:
            lowered = raw.lower()
            if lowered in ("true", "1"):
                return True, True
            if lowered in ("false", "0"):
                return False, True
            raise ValueError(f"not a boolean: {raw!r}")
        if tag in INTEGER_TYPES:
            if raw.lower().startswith("0x"):
                return int(raw, 16), True
            return int(raw, 10), True
        if tag in FLOAT_TYPES:
            return float(raw), True
        if tag in STRING_TYPES:
            if len(raw) >= 2 and raw.startswith('"') and raw.endswith('"'):
                return raw[1:-1], True
            return raw, True
    except ValueError as e:
        logger.debug(f"Could not decode {raw!r} as {tag}: {e}")
        return raw, False

    logger.debug(f"Unhandled report data type {tag}, keeping raw string")
    return raw, False


class ReportParser:
    """Two-state machine turning subscription stdout into reports."""

    def __init__(self):
        self.state = ReportState.IDLE

    @property
    def in_report(self) -> bool:
        return self.state == ReportState.IN_REPORT

    def reset(self) -> None:
        self.state = ReportState.IDLE

    def feed(self, line: str) -> Optional[AttributeReport]:
        """Consume one stdout line; return a report when a value is decoded."""
        if REPORT_START_RE.search(line):
            self.state = ReportState.IN_REPORT
            return None

        if self.state != ReportState.IN_REPORT:
            return None

        match = DATA_LINE_RE.search(line)
        if match:
            raw = match.group("value").strip()
            type_tag = match.group("type").strip()
            value, _ = decode_typed_value(raw, type_tag)
            self.state = ReportState.IDLE
            return AttributeReport(value=value, type_tag=type_tag, raw=raw)

        if REPORT_END_RE.search(line.rstrip()):
            self.state = ReportState.IDLE

        return None
