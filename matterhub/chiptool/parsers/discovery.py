"""
Discovery output parser.

Turns the log output of ``chip-tool discover commissionables`` into
``DiscoveredDevice`` records. chip-tool prints one block per advertisement:

    [1700000000.123] [1234:5678] [DIS] Discovered commissionable/commissioner node:
    [1700000000.123] [1234:5678] [DIS] 	Hostname: 0E6B3A8F4B2C0000
    [1700000000.123] [1234:5678] [DIS] 	Long Discriminator: 3840
    ...

Only lines carrying the discovery log marker are considered. The parser never
raises; malformed lines degrade to partially filled records.
"""

import logging
import re
from typing import Callable, Dict, Iterable, List, Optional

from ..models import DiscoveredDevice

logger = logging.getLogger(__name__)


# CSI sequences (colours, cursor moves) and OSC sequences (titles)
ANSI_ESCAPE_RE = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]|\x1b\][^\x07]*(?:\x07|\x1b\\)")

DISCOVERY_MARKERS = ("[DIS]", "CHIP:DIS:")
NODE_BLOCK_START = "Discovered commissionable/commissioner node:"

_MARKER_SPLIT_RE = re.compile(r"(?:\[DIS\]|CHIP:DIS:)")
_KEY_VALUE_RE = re.compile(r"^(?P<key>[A-Za-z][A-Za-z ]*?)(?:\s*#\d+)?\s*:\s*(?P<value>.*)$")
_NUMBER_RE = re.compile(r"^(0x[0-9A-Fa-f]+|-?\d+)")

COMMISSIONING_MODES = {
    1: ("BLE", "ble"),
    2: ("OnNetwork", "dnssd"),
}


def strip_ansi(line: str) -> str:
    """Remove terminal control sequences from a line."""
    return ANSI_ESCAPE_RE.sub("", line)


def _parse_int(value: str) -> int:
    match = _NUMBER_RE.match(value.strip())
    if not match:
        raise ValueError(f"not a number: {value!r}")
    return int(match.group(1), 0)


def _parse_flag(value: str) -> bool:
    value = value.strip().lower()
    if value in ("1", "true", "yes", "present"):
        return True
    if value in ("0", "false", "no", "not present", "absent"):
        return False
    # ICD lines carry the operating mode (SIT/LIT) when present
    if value in ("sit", "lit"):
        return True
    raise ValueError(f"not a flag: {value!r}")


class DiscoveryParser:
    """
    Line-oriented state machine for discovery output.

    Feed lines with ``feed()``, then call ``finish()`` to flush the last
    block and get the result list.
    """

    def __init__(self, on_log: Optional[Callable[[str], None]] = None):
        self.devices: List[DiscoveredDevice] = []
        self._current: Optional[DiscoveredDevice] = None
        self._on_log = on_log
        self._text_fields: Dict[str, Callable[[DiscoveredDevice, str], None]] = {
            "hostname": self._set_hostname,
            "ip address": self._add_ip,
            "vendor id": lambda d, v: setattr(d, "vendor_id", v),
            "product id": lambda d, v: setattr(d, "product_id", v),
            "long discriminator": lambda d, v: setattr(d, "discriminator", v),
            "instance name": lambda d, v: setattr(d, "instance_name", v),
            "pairing instruction": lambda d, v: setattr(d, "pairing_instruction", v),
            "device name": lambda d, v: setattr(d, "device_name", v),
            "rotating id": lambda d, v: setattr(d, "rotating_id", v),
        }
        self._int_fields = {
            "port": "port",
            "pairing hint": "pairing_hint",
            "device type": "device_type",
            "mrp interval idle": "mrp_interval_idle",
            "mrp interval active": "mrp_interval_active",
            "mrp active threshold": "mrp_active_threshold",
        }
        self._flag_fields = {
            "icd": "icd",
            "tcp client supported": "tcp_client_supported",
            "tcp server supported": "tcp_server_supported",
        }

    def _log(self, message: str) -> None:
        logger.debug(message)
        if self._on_log:
            self._on_log(message)

    @staticmethod
    def _set_hostname(device: DiscoveredDevice, value: str) -> None:
        device.hostname = value
        device.name = value

    @staticmethod
    def _add_ip(device: DiscoveredDevice, value: str) -> None:
        if value:
            device.ip_addresses.append(value)

    def _flush(self) -> None:
        device = self._current
        self._current = None
        if device is None:
            return
        if not device.is_complete:
            self._log("Dropping discovery block without discriminator or instance name")
            return
        device.derive_identity()
        self.devices.append(device)
        self._log(f"Completed parsing device {device.id}")

    def feed(self, line: str) -> None:
        """Consume one line of tool output."""
        line = strip_ansi(line)
        if not any(marker in line for marker in DISCOVERY_MARKERS):
            return

        parts = _MARKER_SPLIT_RE.split(line, maxsplit=1)
        body = parts[-1].strip()

        if body.startswith(NODE_BLOCK_START):
            self._flush()
            self._current = DiscoveredDevice()
            self._log(f"New device block started by: {body}")
            return

        if self._current is None:
            return

        match = _KEY_VALUE_RE.match(body)
        if not match:
            return

        key = match.group("key").strip().lower()
        value = match.group("value").strip()
        self._apply(key, value)

    def _apply(self, key: str, value: str) -> None:
        device = self._current

        if key in self._text_fields:
            self._text_fields[key](device, value)
            return

        if key == "commissioning mode":
            try:
                mode = _parse_int(value)
            except ValueError:
                logger.warning(f"Unparseable commissioning mode: {value!r}")
                return
            device.commissioning_mode = mode
            label, transport = COMMISSIONING_MODES.get(mode, (f"CM:{mode}", None))
            device.type = label
            device.transport = transport
            return

        if key in self._int_fields:
            try:
                setattr(device, self._int_fields[key], _parse_int(value))
            except ValueError:
                logger.warning(f"Unparseable numeric discovery field {key!r}: {value!r}")
            return

        if key in self._flag_fields:
            try:
                setattr(device, self._flag_fields[key], _parse_flag(value))
            except ValueError:
                logger.warning(f"Unparseable flag discovery field {key!r}: {value!r}")
            return

        # Unknown keys are expected across chip-tool versions

    def finish(self) -> List[DiscoveredDevice]:
        """Flush the block in progress and return every finalized device."""
        self._flush()
        if not self.devices:
            self._log("No devices parsed from discovery output")
        else:
            self._log(f"Successfully parsed {len(self.devices)} device(s)")
        return self.devices


def parse_discovery_output(
    output: str,
    on_log: Optional[Callable[[str], None]] = None,
) -> List[DiscoveredDevice]:
    """Parse a full discovery run into device records."""
    return parse_discovery_lines(output.splitlines(), on_log=on_log)


def parse_discovery_lines(
    lines: Iterable[str],
    on_log: Optional[Callable[[str], None]] = None,
) -> List[DiscoveredDevice]:
    parser = DiscoveryParser(on_log=on_log)
    for line in lines:
        parser.feed(line)
    return parser.finish()
