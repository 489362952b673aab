"""
chip-tool data models.

Structured results recovered from chip-tool invocations and output.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class DiscoveredDevice:
    """
    A commissionable device seen in a `discover commissionables` run.

    Fields are filled line by line from one discovery block; ``id`` and
    ``name`` are derived when the block is finalized.
    """
    id: str = ""
    name: str = ""
    type: str = ""
    discriminator: str = ""
    vendor_id: str = ""
    product_id: str = ""
    hostname: str = ""
    ip_addresses: List[str] = field(default_factory=list)
    port: Optional[int] = None
    pairing_hint: Optional[int] = None
    pairing_instruction: str = ""
    instance_name: str = ""
    commissioning_mode: Optional[int] = None
    transport: Optional[str] = None  # ble, dnssd
    device_type: Optional[int] = None
    device_name: str = ""
    rotating_id: str = ""
    icd: Optional[bool] = None
    mrp_interval_idle: Optional[int] = None  # ms
    mrp_interval_active: Optional[int] = None  # ms
    mrp_active_threshold: Optional[int] = None  # ms
    tcp_client_supported: Optional[bool] = None
    tcp_server_supported: Optional[bool] = None

    @property
    def is_complete(self) -> bool:
        """A block is only worth reporting once it can be told apart."""
        return bool(self.discriminator or self.instance_name)

    def derive_identity(self) -> None:
        """Fill in ``id`` and ``name`` from the parsed fields."""
        if not self.id:
            if self.instance_name:
                self.id = f"dnsd_instance_{self.instance_name}"
            else:
                self.id = (
                    f"dnsd_vid{self.vendor_id}_pid{self.product_id}"
                    f"_disc{self.discriminator}"
                )
        if not self.name:
            if self.hostname:
                self.name = self.hostname
            elif self.instance_name:
                self.name = f"MatterDevice-{self.instance_name}"
            else:
                self.name = f"MatterDevice-VID{self.vendor_id}-PID{self.product_id}"

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the client's camelCase shape, omitting empty fields."""
        data = {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "discriminator": self.discriminator,
            "vendorId": self.vendor_id,
            "productId": self.product_id,
            "hostname": self.hostname,
            "ipAddresses": list(self.ip_addresses),
            "port": self.port,
            "pairingHint": self.pairing_hint,
            "pairingInstruction": self.pairing_instruction,
            "instanceName": self.instance_name,
            "commissioningMode": self.commissioning_mode,
            "transport": self.transport,
            "deviceType": self.device_type,
            "deviceName": self.device_name,
            "rotatingId": self.rotating_id,
            "icd": self.icd,
            "mrpIntervalIdle": self.mrp_interval_idle,
            "mrpIntervalActive": self.mrp_interval_active,
            "mrpActiveThreshold": self.mrp_active_threshold,
            "tcpClientSupported": self.tcp_client_supported,
            "tcpServerSupported": self.tcp_server_supported,
        }
        # discriminator is always sent, the client keys devices on it
        return {
            k: v for k, v in data.items()
            if k == "discriminator" or v not in (None, "", [])
        }


@dataclass
class CommissioningOutcome:
    """
    Result of a pairing run.

    ``correlation_discriminator`` is the discriminator the caller supplied;
    chip-tool does not always echo the requested node id, so this is how the
    client maps the result back to the device it picked.
    """
    success: bool
    details: str
    correlation_discriminator: str
    assigned_node_id: Optional[str] = None
    endpoint_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class AttributeReport:
    """One decoded value from a subscription report block."""
    value: Any
    type_tag: str
    raw: str
