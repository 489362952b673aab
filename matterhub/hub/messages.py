"""
Wire messages between clients and the hub.

Client → server: ``{"type": <intent>, "payload": {...}}``, decoded into the
pydantic intent models below.

Server → client: ``{"type": <event>, "payload": ...}``. Transport
diagnostics (the keepalive probe) carry a plain string in ``data`` instead.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Annotated, Any, ClassVar, Dict, List, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError, field_validator

from ..chiptool.models import CommissioningOutcome, DiscoveredDevice


# ============ Errors ============

class IntentError(Exception):
    """Base exception for undecodable client messages."""

    def __init__(self, message: str, intent_type: Optional[str] = None):
        self.message = message
        self.intent_type = intent_type
        super().__init__(message)


class UnknownIntentError(IntentError):
    """The envelope's type is not one we handle."""
    pass


class InvalidPayloadError(IntentError):
    """The payload doesn't match the intent's shape."""
    pass


# ============ Intents ============

def _number_to_str(value: Any) -> Any:
    # JSON clients send ids and intervals as numbers or strings
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float)):
        return str(value)
    if value is None:
        return ""
    return value


WireStr = Annotated[str, BeforeValidator(_number_to_str)]


class IntentModel(BaseModel):
    """Base for payload models: camelCase on the wire."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    TYPE: ClassVar[str] = ""


class DiscoverIntent(IntentModel):
    """Scan for commissionable devices."""
    TYPE: ClassVar[str] = "discover_devices"


class CommissionIntent(IntentModel):
    """Commission a discovered device onto the fabric."""
    TYPE: ClassVar[str] = "commission_device"

    setup_code: WireStr = Field("", alias="setupCode")
    discriminator: WireStr = ""
    node_id_to_assign: WireStr = Field("", alias="nodeIdToAssign")
    vendor_id: WireStr = Field("", alias="vendorId")
    product_id: WireStr = Field("", alias="productId")


class InvokeIntent(IntentModel):
    """Invoke a cluster command on a commissioned node."""
    TYPE: ClassVar[str] = "device_command"

    node_id: WireStr = Field("", alias="nodeId")
    endpoint_id: WireStr = Field("", alias="endpointId")
    cluster: WireStr = ""
    command: WireStr = ""
    params: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("params", mode="before")
    @classmethod
    def _none_params(cls, value):
        return {} if value is None else value


class SubscribeIntent(IntentModel):
    """Stream attribute reports for one attribute."""
    TYPE: ClassVar[str] = "subscribe_attribute"

    node_id: WireStr = Field("", alias="nodeId")
    endpoint_id: WireStr = Field("", alias="endpointId")
    cluster: WireStr = ""
    attribute: WireStr = ""
    min_interval: WireStr = Field("", alias="minInterval")
    max_interval: WireStr = Field("", alias="maxInterval")


class StatusIntent(IntentModel):
    """Query the on/off state of a node endpoint."""
    TYPE: ClassVar[str] = "get_status"

    node_id: WireStr = Field("", alias="nodeId")
    endpoint_id: WireStr = Field("", alias="endpointId")


Intent = Union[DiscoverIntent, CommissionIntent, InvokeIntent, SubscribeIntent, StatusIntent]

INTENT_TYPES: Dict[str, type] = {
    model.TYPE: model
    for model in (DiscoverIntent, CommissionIntent, InvokeIntent, SubscribeIntent, StatusIntent)
}


def decode_intent(envelope: Any) -> Intent:
    """
    Decode a parsed JSON envelope into an intent.

    Raises:
        InvalidPayloadError: Envelope or payload has the wrong shape
        UnknownIntentError: Unrecognized type
    """
    if not isinstance(envelope, dict):
        raise InvalidPayloadError("Invalid message format: expected a JSON object")

    intent_type = envelope.get("type")
    if not isinstance(intent_type, str) or not intent_type:
        raise InvalidPayloadError("Invalid message format: missing 'type'")

    model = INTENT_TYPES.get(intent_type)
    if model is None:
        raise UnknownIntentError(f"Unknown command type received: {intent_type}", intent_type)

    payload = envelope.get("payload")
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise InvalidPayloadError(f"Invalid payload for {intent_type}: expected an object", intent_type)

    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise InvalidPayloadError(f"Invalid payload for {intent_type}: {e}", intent_type) from e


# ============ Events ============

def _compact(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


@dataclass
class OutboundEvent:
    """Base for server → client messages."""
    TYPE: ClassVar[str] = ""

    @property
    def event_type(self) -> str:
        return self.TYPE

    def payload(self) -> Any:
        raise NotImplementedError

    def to_message(self) -> Dict[str, Any]:
        return {"type": self.event_type, "payload": self.payload()}


@dataclass
class LogEvent(OutboundEvent):
    """Free-text progress line; the category is the event type."""
    text: str = ""
    category: str = "log"

    @property
    def event_type(self) -> str:
        return self.category

    def payload(self) -> Any:
        return self.text


@dataclass
class DiscoveryLog(LogEvent):
    category: str = "discovery_log"


@dataclass
class CommissioningLog(LogEvent):
    category: str = "commissioning_log"


@dataclass
class SubscriptionLog(LogEvent):
    category: str = "subscription_log"


@dataclass
class DiscoveryResult(OutboundEvent):
    TYPE: ClassVar[str] = "discovery_result"

    devices: List[DiscoveredDevice] = field(default_factory=list)
    error: Optional[str] = None

    def payload(self) -> Any:
        return _compact({
            "devices": [d.to_dict() for d in self.devices],
            "error": self.error,
        })


@dataclass
class CommissioningStatus(OutboundEvent):
    TYPE: ClassVar[str] = "commissioning_status"

    success: bool = False
    node_id: Optional[str] = None
    endpoint_id: Optional[str] = None
    details: Optional[str] = None
    error: Optional[str] = None
    correlation_discriminator: Optional[str] = None

    @classmethod
    def from_outcome(cls, outcome: CommissioningOutcome) -> "CommissioningStatus":
        return cls(
            success=outcome.success,
            node_id=outcome.assigned_node_id,
            endpoint_id=outcome.endpoint_id,
            details=outcome.details,
            error=outcome.error,
            correlation_discriminator=outcome.correlation_discriminator,
        )

    def payload(self) -> Any:
        return _compact({
            "success": self.success,
            "nodeId": self.node_id,
            "endpointId": self.endpoint_id,
            "details": self.details,
            "error": self.error,
            "originalDiscriminator": self.correlation_discriminator,
            "discriminatorAssociatedWithRequest": self.correlation_discriminator,
        })


@dataclass
class AttributeUpdate(OutboundEvent):
    TYPE: ClassVar[str] = "attribute_update"

    node_id: str = ""
    endpoint_id: str = ""
    cluster: str = ""
    attribute: str = ""
    value: Any = None

    def payload(self) -> Any:
        return {
            "nodeId": self.node_id,
            "endpointId": self.endpoint_id,
            "cluster": self.cluster,
            "attribute": self.attribute,
            "value": self.value,
        }


@dataclass
class CommandResponse(OutboundEvent):
    TYPE: ClassVar[str] = "command_response"

    success: bool = False
    node_id: Optional[str] = None
    details: Optional[str] = None
    error: Optional[str] = None

    def payload(self) -> Any:
        return _compact({
            "success": self.success,
            "nodeId": self.node_id or None,
            "details": self.details,
            "error": self.error,
        })


@dataclass
class StatusReport(OutboundEvent):
    TYPE: ClassVar[str] = "get_status"

    node_id: str = ""
    endpoint_id: str = ""
    status: str = "unknown"  # on, off, unknown, unreachable
    value: Any = None
    error: Optional[str] = None

    def payload(self) -> Any:
        return _compact({
            "nodeId": self.node_id,
            "endpointId": self.endpoint_id,
            "status": self.status,
            "value": self.value,
            "error": self.error,
        })


@dataclass
class GenericError(OutboundEvent):
    TYPE: ClassVar[str] = "error"

    message: str = ""

    def payload(self) -> Any:
        return {"message": self.message}


def ping_message() -> Dict[str, Any]:
    """Keepalive probe; uses ``data`` like the other transport diagnostics."""
    return {"type": "ping", "data": datetime.now(timezone.utc).isoformat()}
