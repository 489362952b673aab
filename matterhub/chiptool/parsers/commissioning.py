"""
Commissioning output parsers.

Recover the outcome of a ``chip-tool pairing`` run and the endpoint list of
the joined device from a ``descriptor read parts-list`` run.
"""

import logging
import re
from typing import List, Optional

from ..models import CommissioningOutcome

logger = logging.getLogger(__name__)


NODE_ID_RE = re.compile(r"Successfully commissioned device with node ID (0x[0-9a-fA-F]+|\d+)")
SUCCESS_MARKERS = (
    "Device commissioning completed with success",
    "Commissioning success",
)

PARTS_LIST_HEADER_RE = re.compile(r"PartsList: (\d+) entries")
LIST_ENTRY_RE = re.compile(r"\[\d+\]: (\d+)\s*$")


def normalize_node_id(raw: str) -> str:
    """chip-tool prints node ids in hex or decimal; clients get decimal."""
    try:
        return str(int(raw, 0))
    except ValueError:
        return raw


def parse_commissioning_output(
    stdout: str,
    requested_node_id: str,
    discriminator: str,
    details: Optional[str] = None,
) -> CommissioningOutcome:
    """
    Decide whether a pairing run that exited cleanly actually commissioned.

    A run can exit 0 without joining the device, so success needs either the
    node id line or one of the success markers.
    """
    details = details if details is not None else stdout

    match = NODE_ID_RE.search(stdout)
    if match:
        node_id = normalize_node_id(match.group(1))
        logger.info(f"Parsed commissioned node id {node_id} for discriminator {discriminator}")
        return CommissioningOutcome(
            success=True,
            assigned_node_id=node_id,
            details="Device commissioned successfully.",
            correlation_discriminator=discriminator,
        )

    if any(marker in stdout for marker in SUCCESS_MARKERS):
        logger.info(
            f"Commissioning reported success for discriminator {discriminator}, "
            f"node id not printed; assuming requested id {requested_node_id}"
        )
        return CommissioningOutcome(
            success=True,
            assigned_node_id=requested_node_id,
            details="Commissioning reported success; node id taken from the request.",
            correlation_discriminator=discriminator,
        )

    return CommissioningOutcome(
        success=False,
        details=details,
        error="Commissioning finished, but success or node id unclear. Check logs.",
        correlation_discriminator=discriminator,
    )


def parse_parts_list(output: str) -> List[int]:
    """Endpoint ids listed in a descriptor PartsList read, in output order."""
    endpoints: List[int] = []
    remaining = 0

    for line in output.splitlines():
        header = PARTS_LIST_HEADER_RE.search(line)
        if header:
            remaining = int(header.group(1))
            continue
        if remaining <= 0:
            continue
        entry = LIST_ENTRY_RE.search(line)
        if entry:
            endpoints.append(int(entry.group(1)))
            remaining -= 1

    return endpoints
