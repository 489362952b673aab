"""
Client-facing hub.

Architecture:
    connection → SessionRegistry.admit → Session (reader/writer)
        → CommandDispatcher → chip-tool → OutboundEvent → Session queue
"""

from .messages import (
    AttributeUpdate,
    CommandResponse,
    CommissioningLog,
    CommissioningStatus,
    DiscoveryLog,
    DiscoveryResult,
    GenericError,
    IntentError,
    InvalidPayloadError,
    LogEvent,
    OutboundEvent,
    StatusReport,
    SubscriptionLog,
    UnknownIntentError,
    decode_intent,
)
from .dispatcher import CommandDispatcher
from .registry import SessionRegistry
from .session import Session

__all__ = [
    "AttributeUpdate",
    "CommandResponse",
    "CommissioningLog",
    "CommissioningStatus",
    "DiscoveryLog",
    "DiscoveryResult",
    "GenericError",
    "IntentError",
    "InvalidPayloadError",
    "LogEvent",
    "OutboundEvent",
    "StatusReport",
    "SubscriptionLog",
    "UnknownIntentError",
    "decode_intent",
    "CommandDispatcher",
    "SessionRegistry",
    "Session",
]
