"""
chip-tool integration.

Architecture:
    argv builders (commands) → ProcessRunner / StreamSubscriber → parsers → models

Key Components:
- runner: bounded one-shot invocations with captured output
- stream: unbounded invocations exposed as line streams
- commands: argument vectors and ordered parameter schemas
- parsers: text → structured results
"""

from .models import (
    AttributeReport,
    CommissioningOutcome,
    DiscoveredDevice,
)
from .runner import (
    ProcessRunner,
    RunResult,
    ToolError,
    ToolExitError,
    ToolSpawnError,
    ToolTimeoutError,
)
from .stream import (
    StreamSubscriber,
    ToolStream,
)
from .commands import (
    COMMAND_SCHEMAS,
    CommandBuildError,
    CommandSchema,
    ParamSpec,
)

__all__ = [
    "AttributeReport",
    "CommissioningOutcome",
    "DiscoveredDevice",
    "ProcessRunner",
    "RunResult",
    "ToolError",
    "ToolExitError",
    "ToolSpawnError",
    "ToolTimeoutError",
    "StreamSubscriber",
    "ToolStream",
    "COMMAND_SCHEMAS",
    "CommandBuildError",
    "CommandSchema",
    "ParamSpec",
]
