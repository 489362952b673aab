"""
Parsers for chip-tool's log-style output.

Everything that knows the textual format lives here; the rest of matterhub
only sees the structured results.
"""

from .attribute import (
    RAW_VALUE_PREFIX,
    coerce_scalar,
    is_raw_value,
    parse_attribute_value,
)
from .commissioning import (
    normalize_node_id,
    parse_commissioning_output,
    parse_parts_list,
)
from .discovery import (
    DiscoveryParser,
    parse_discovery_lines,
    parse_discovery_output,
    strip_ansi,
)
from .report import (
    ReportParser,
    ReportState,
    decode_typed_value,
)

__all__ = [
    "RAW_VALUE_PREFIX",
    "coerce_scalar",
    "is_raw_value",
    "parse_attribute_value",
    "normalize_node_id",
    "parse_commissioning_output",
    "parse_parts_list",
    "DiscoveryParser",
    "parse_discovery_lines",
    "parse_discovery_output",
    "strip_ansi",
    "ReportParser",
    "ReportState",
    "decode_typed_value",
]
