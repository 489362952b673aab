"""
chip-tool argument vectors.

chip-tool takes ``<cluster> <command> [positional args...] <node-id>
<endpoint-id>``. Cluster, command and attribute tokens are the lower-cased
names ("LevelControl" -> "levelcontrol", "MoveToLevel" -> "movetolevel").
Hyphenated tokens such as "move-to-level" are passed through as given.

Command parameters are positional, so every command that takes parameters
has an explicit ordered schema here.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..config import ChipToolConfig

# Substrings that mean the tool reported a failure despite exiting 0
OUTPUT_ERROR_MARKERS = ("CHIP Error", "IM Error")
STDERR_ERROR_MARKERS = ("Error:",)


class CommandBuildError(ValueError):
    """The client's parameters don't fit the command."""
    pass


def cluster_token(name: str) -> str:
    return name.strip().replace(" ", "").lower()


def command_token(name: str) -> str:
    """Command/attribute token: hyphenated names pass through unchanged."""
    name = name.strip()
    if "-" in name:
        return name
    return name.lower()


@dataclass
class ParamSpec:
    """One positional command argument."""
    name: str
    default: Any = None
    required: bool = False

    def resolve(self, params: Dict[str, Any]) -> str:
        if self.name in params and params[self.name] is not None:
            return format_arg(params[self.name])
        if self.required:
            raise CommandBuildError(f"Missing or invalid '{self.name}' parameter")
        return format_arg(self.default)


@dataclass
class CommandSchema:
    """Ordered positional arguments for a cluster command."""
    cluster: str
    command: str
    params: List[ParamSpec] = field(default_factory=list)
    refresh_attribute: Optional[str] = None  # attribute to read back on success


def _options() -> List[ParamSpec]:
    # optionsMask and optionsOverride trail most level/colour commands
    return [ParamSpec("optionsMask", 0), ParamSpec("optionsOverride", 0)]


COMMAND_SCHEMAS: Dict[Tuple[str, str], CommandSchema] = {}


def _register(schema: CommandSchema) -> None:
    COMMAND_SCHEMAS[(schema.cluster, schema.command)] = schema


# --- OnOff ---
for _cmd in ("On", "Off", "Toggle"):
    _register(CommandSchema("OnOff", _cmd, refresh_attribute="OnOff"))

# --- LevelControl ---
for _cmd in ("MoveToLevel", "MoveToLevelWithOnOff"):
    _register(CommandSchema(
        "LevelControl", _cmd,
        [ParamSpec("level", required=True), ParamSpec("transitionTime", 0), *_options()],
        refresh_attribute="CurrentLevel",
    ))
_register(CommandSchema(
    "LevelControl", "Move",
    [ParamSpec("moveMode", required=True), ParamSpec("rate", required=True), *_options()],
    refresh_attribute="CurrentLevel",
))
_register(CommandSchema(
    "LevelControl", "Step",
    [
        ParamSpec("stepMode", required=True),
        ParamSpec("stepSize", required=True),
        ParamSpec("transitionTime", 0),
        *_options(),
    ],
    refresh_attribute="CurrentLevel",
))
_register(CommandSchema("LevelControl", "Stop", _options(), refresh_attribute="CurrentLevel"))

# --- ColorControl ---
_register(CommandSchema(
    "ColorControl", "MoveToHue",
    [
        ParamSpec("hue", required=True),
        ParamSpec("direction", 0),
        ParamSpec("transitionTime", 0),
        *_options(),
    ],
    refresh_attribute="CurrentHue",
))
_register(CommandSchema(
    "ColorControl", "MoveToSaturation",
    [ParamSpec("saturation", required=True), ParamSpec("transitionTime", 0), *_options()],
    refresh_attribute="CurrentSaturation",
))
_register(CommandSchema(
    "ColorControl", "MoveToHueAndSaturation",
    [
        ParamSpec("hue", required=True),
        ParamSpec("saturation", required=True),
        ParamSpec("transitionTime", 0),
        *_options(),
    ],
    refresh_attribute="CurrentHue",
))
_register(CommandSchema(
    "ColorControl", "MoveToColorTemperature",
    [ParamSpec("colorTemperatureMireds", required=True), ParamSpec("transitionTime", 0), *_options()],
    refresh_attribute="ColorTemperatureMireds",
))

# --- Identify ---
_register(CommandSchema("Identify", "Identify", [ParamSpec("identifyTime", 10)]))

# --- Thermostat ---
_register(CommandSchema(
    "Thermostat", "SetpointRaiseLower",
    [ParamSpec("mode", required=True), ParamSpec("amount", required=True)],
))

# --- WindowCovering ---
for _cmd in ("UpOrOpen", "DownOrClose", "StopMotion"):
    _register(CommandSchema("WindowCovering", _cmd))
_register(CommandSchema(
    "WindowCovering", "GoToLiftPercentage",
    [ParamSpec("liftPercent100thsValue", required=True)],
))


def get_schema(cluster: str, command: str) -> Optional[CommandSchema]:
    return COMMAND_SCHEMAS.get((cluster, command))


def format_arg(value: Any) -> str:
    """Render a JSON value as a chip-tool positional argument."""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def build_command_args(
    cluster: str,
    command: str,
    params: Optional[Dict[str, Any]],
    node_id: str,
    endpoint_id: str,
) -> List[str]:
    """
    Build ``<cluster> <command> [args...] <node> <endpoint>``.

    Commands without a schema accept no keyed parameters, since their order
    would be a guess. An explicit ``args`` list is passed through in order.

    Raises:
        CommandBuildError: Missing required parameter, or keyed parameters
            for a command with no schema
    """
    params = dict(params or {})
    args = [cluster_token(cluster), command_token(command)]

    schema = get_schema(cluster, command)
    if schema is not None:
        args.extend(spec.resolve(params) for spec in schema.params)
    else:
        positional = params.pop("args", None)
        if params:
            raise CommandBuildError(
                f"No parameter order known for {cluster}.{command}; "
                f"send positional values as an ordered 'args' list"
            )
        if positional is not None:
            if not isinstance(positional, (list, tuple)):
                raise CommandBuildError("'args' must be a list")
            args.extend(format_arg(v) for v in positional)

    args.extend([str(node_id), str(endpoint_id)])
    return args


def refresh_attribute_for(cluster: str, command: str) -> Optional[str]:
    """Attribute whose value a successful command changes, if known."""
    schema = get_schema(cluster, command)
    return schema.refresh_attribute if schema else None


def build_read_args(cluster: str, attribute: str, node_id: str, endpoint_id: str) -> List[str]:
    return [cluster_token(cluster), "read", command_token(attribute), str(node_id), str(endpoint_id)]


def build_subscribe_args(
    cluster: str,
    attribute: str,
    min_interval: str,
    max_interval: str,
    node_id: str,
    endpoint_id: str,
) -> List[str]:
    return [
        cluster_token(cluster),
        "subscribe",
        command_token(attribute),
        str(min_interval),
        str(max_interval),
        str(node_id),
        str(endpoint_id),
    ]


def build_discover_args() -> List[str]:
    return ["discover", "commissionables"]


def build_pairing_args(
    config: ChipToolConfig,
    node_id: str,
    setup_code: str,
    discriminator: str,
) -> List[str]:
    """
    Pairing invocation for the configured method.

    Raises:
        CommandBuildError: The method needs network credentials that are
            not configured
    """
    method = config.pairing_method

    if method == "code":
        args = ["pairing", "code", node_id, setup_code]
    elif method == "onnetwork-long":
        args = ["pairing", "onnetwork-long", node_id, setup_code, discriminator]
    elif method == "ble-wifi":
        if not config.wifi_ssid or config.wifi_password is None:
            raise CommandBuildError("ble-wifi pairing needs wifi_ssid and wifi_password configured")
        args = [
            "pairing", "ble-wifi", node_id,
            config.wifi_ssid, config.wifi_password,
            setup_code, discriminator,
        ]
    elif method == "ble-thread":
        if not config.thread_dataset:
            raise CommandBuildError("ble-thread pairing needs thread_dataset configured")
        dataset = config.thread_dataset
        if not dataset.startswith("hex:"):
            dataset = f"hex:{dataset}"
        args = ["pairing", "ble-thread", node_id, dataset, setup_code, discriminator]
    elif method == "ble-discriminator":
        args = ["pairing", "ble-discriminator", discriminator, setup_code, node_id]
    else:
        raise CommandBuildError(f"Unknown pairing method: {method}")

    if config.paa_trust_store_path:
        args.extend(["--paa-trust-store-path", config.paa_trust_store_path])
    return args


def has_error_markers(stdout: str, stderr: str) -> bool:
    """True when output shows a failure even though the tool exited 0."""
    for marker in OUTPUT_ERROR_MARKERS:
        if marker in stdout or marker in stderr:
            return True
    return any(marker in stderr for marker in STDERR_ERROR_MARKERS)


def describe_argv(argv: Sequence[str]) -> str:
    return " ".join(argv)
