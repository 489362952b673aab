"""
Command dispatcher.

Turns each decoded intent into chip-tool invocations and the resulting
events. Every handler reports failure as an event on the originating session;
nothing here raises into the session.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional, Tuple

from ..chiptool.commands import (
    CommandBuildError,
    build_command_args,
    build_discover_args,
    build_pairing_args,
    build_read_args,
    build_subscribe_args,
    describe_argv,
    has_error_markers,
    refresh_attribute_for,
)
from ..chiptool.models import CommissioningOutcome
from ..chiptool.parsers import (
    ReportParser,
    parse_attribute_value,
    parse_commissioning_output,
    parse_discovery_output,
    parse_parts_list,
)
from ..chiptool.runner import ProcessRunner, RunResult, ToolSpawnError
from ..chiptool.stream import StreamSubscriber, ToolStream
from ..config import ChipToolConfig
from .messages import (
    AttributeUpdate,
    CommandResponse,
    CommissionIntent,
    CommissioningLog,
    CommissioningStatus,
    DiscoverIntent,
    DiscoveryLog,
    DiscoveryResult,
    GenericError,
    Intent,
    IntentError,
    InvokeIntent,
    StatusIntent,
    StatusReport,
    SubscribeIntent,
    SubscriptionLog,
    decode_intent,
)

if TYPE_CHECKING:
    from .session import Session

logger = logging.getLogger(__name__)


def subscription_key(node_id: str, endpoint_id: str, cluster: str, attribute: str) -> str:
    return f"sub-{node_id}-{endpoint_id}-{cluster}-{attribute}"


class CommandDispatcher:
    """
    Executes client intents against chip-tool.

    Example:
        dispatcher = CommandDispatcher(ProcessRunner(path), StreamSubscriber(path))
        dispatcher.handle_envelope(session, {"type": "discover_devices"})
    """

    def __init__(
        self,
        runner: ProcessRunner,
        subscriber: StreamSubscriber,
        config: Optional[ChipToolConfig] = None,
    ):
        self.runner = runner
        self.subscriber = subscriber
        self.config = config or ChipToolConfig()

        self._handlers: Dict[type, Callable[["Session", Any], Awaitable[None]]] = {
            DiscoverIntent: self.discover,
            CommissionIntent: self.commission,
            InvokeIntent: self.invoke,
            SubscribeIntent: self.subscribe,
            StatusIntent: self.status,
        }

    # ============ Entry points ============

    def handle_envelope(self, session: "Session", envelope: Any) -> Optional[str]:
        """
        Decode an envelope and start its handler as a session task.

        Returns the task id, or None when the envelope was rejected.
        """
        try:
            intent = decode_intent(envelope)
        except IntentError as e:
            logger.warning(f"Session {session.id}: {e.message}")
            self.reject(session, e)
            return None

        logger.info(f"Session {session.id} requested {intent.TYPE}")
        return session.spawn(self.dispatch(session, intent), label=intent.TYPE)

    def reject(self, session: "Session", error: IntentError) -> None:
        """Answer an undecodable intent with that intent's negative event."""
        if error.intent_type == CommissionIntent.TYPE:
            session.send(CommissioningStatus(success=False, error=error.message))
        elif error.intent_type == InvokeIntent.TYPE:
            session.send(CommandResponse(success=False, error=error.message))
        else:
            session.send(GenericError(error.message))

    async def dispatch(self, session: "Session", intent: Intent) -> None:
        handler = self._handlers.get(type(intent))
        if handler is None:
            session.send(GenericError(f"Unknown command type received: {intent.TYPE}"))
            return
        await handler(session, intent)

    # ============ Discovery ============

    async def discover(self, session: "Session", intent: DiscoverIntent) -> None:
        session.send(DiscoveryLog("Starting device discovery..."))

        result = await self.runner.run(build_discover_args(), timeout=self.config.discovery_timeout)
        # Partial output from a failed or timed-out scan is still worth parsing
        devices = parse_discovery_output(
            result.stdout, on_log=lambda message: session.send(DiscoveryLog(message)),
        )

        if not result.ok:
            error = f"Discovery failed: {result.error}"
            logger.warning(f"{error} ({len(devices)} devices parsed from partial output)")
            session.send(DiscoveryLog(f"{error}\n{result.combined_output}"))
            session.send(DiscoveryResult(devices=devices, error=error))
            return

        logger.info(f"Discovery found {len(devices)} devices")
        session.send(DiscoveryLog(f"Discovery command output:\n{result.combined_output}"))
        session.send(DiscoveryResult(devices=devices))

    # ============ Commissioning ============

    async def commission(self, session: "Session", intent: CommissionIntent) -> None:
        discriminator = intent.discriminator
        if not intent.setup_code or not discriminator:
            session.send(CommissioningStatus(
                success=False,
                error="Missing setupCode or discriminator",
                correlation_discriminator=discriminator or None,
            ))
            return

        node_id = intent.node_id_to_assign or self.config.commissioning_node_id
        try:
            args = build_pairing_args(self.config, node_id, intent.setup_code, discriminator)
        except CommandBuildError as e:
            logger.error(f"Cannot build pairing command: {e}")
            session.send(CommissioningStatus(
                success=False, error=str(e), correlation_discriminator=discriminator,
            ))
            return

        session.send(CommissioningLog(f"Executing: {describe_argv([self.runner.tool_path, *args])}"))
        result = await self.runner.run(args, timeout=self.config.commissioning_timeout)
        session.send(CommissioningLog(f"Commissioning command output:\n{result.combined_output}"))

        if not result.ok:
            logger.warning(f"Commissioning for discriminator {discriminator} failed: {result.error}")
            outcome = CommissioningOutcome(
                success=False,
                details=result.combined_output,
                error=f"Error commissioning device: {result.error}",
                correlation_discriminator=discriminator,
            )
        else:
            outcome = parse_commissioning_output(
                result.stdout, node_id, discriminator, details=result.combined_output,
            )
            if outcome.success:
                outcome.endpoint_id = await self.resolve_endpoint(outcome.assigned_node_id)

        session.send(CommissioningStatus.from_outcome(outcome))

        if outcome.success:
            session.spawn(
                self.read_attribute(
                    session, outcome.assigned_node_id, "0", "BasicInformation", "NodeLabel",
                ),
                label="read NodeLabel",
            )

    async def resolve_endpoint(self, node_id: str) -> str:
        """First application endpoint of a freshly joined node."""
        fallback = self.config.default_endpoint
        result = await self.runner.run(
            build_read_args("Descriptor", "PartsList", node_id, "0"),
            timeout=self.config.read_timeout,
        )
        if not result.ok:
            logger.warning(f"PartsList read for node {node_id} failed ({result.error}), using endpoint {fallback}")
            return fallback

        endpoints = [ep for ep in parse_parts_list(result.stdout) if ep != 0]
        if not endpoints:
            logger.info(f"Node {node_id} lists no application endpoints, using endpoint {fallback}")
            return fallback
        return str(endpoints[0])

    # ============ Commands ============

    async def invoke(self, session: "Session", intent: InvokeIntent) -> None:
        node_id = intent.node_id
        if not node_id or not intent.cluster or not intent.command:
            session.send(CommandResponse(
                success=False, node_id=node_id, error="Missing nodeId, cluster, or command",
            ))
            return

        endpoint_id = intent.endpoint_id or self.config.default_endpoint
        try:
            args = build_command_args(intent.cluster, intent.command, intent.params, node_id, endpoint_id)
        except CommandBuildError as e:
            logger.warning(f"Rejected {intent.cluster}.{intent.command} for node {node_id}: {e}")
            session.send(CommandResponse(success=False, node_id=node_id, error=str(e)))
            return

        result = await self.runner.run(args, timeout=self.config.command_timeout)

        if not result.ok:
            logger.warning(f"{describe_argv(result.argv)} failed: {result.error}")
            session.send(CommandResponse(
                success=False,
                node_id=node_id,
                details=result.combined_output,
                error=f"Error executing command: {result.error}",
            ))
            return

        if has_error_markers(result.stdout, result.stderr):
            logger.warning(f"{describe_argv(result.argv)} exited 0 but reported an error")
            session.send(CommandResponse(
                success=False,
                node_id=node_id,
                details=result.combined_output,
                error="Command executed, but the device reported an error",
            ))
            return

        session.send(CommandResponse(
            success=True,
            node_id=node_id,
            details=f"Command {intent.cluster}.{intent.command} sent successfully.",
        ))

        attribute = refresh_attribute_for(intent.cluster, intent.command)
        if attribute:
            session.spawn(
                self.read_attribute(session, node_id, endpoint_id, intent.cluster, attribute),
                label=f"refresh {intent.cluster}.{attribute}",
            )

    # ============ Reads ============

    async def read_value(
        self,
        node_id: str,
        endpoint_id: str,
        cluster: str,
        attribute: str,
    ) -> Tuple[RunResult, Any]:
        """One-shot attribute read; the value is None when the run failed."""
        result = await self.runner.run(
            build_read_args(cluster, attribute, node_id, endpoint_id),
            timeout=self.config.read_timeout,
        )
        if not result.ok:
            return result, None
        return result, parse_attribute_value(result.stdout)

    async def read_attribute(
        self,
        session: "Session",
        node_id: str,
        endpoint_id: str,
        cluster: str,
        attribute: str,
    ) -> None:
        """Read an attribute and push it as an update. Failures are only logged."""
        logger.info(f"Reading {cluster}.{attribute} for node {node_id} endpoint {endpoint_id}")
        session.send(CommissioningLog(f"Reading attribute {cluster}.{attribute} for Node {node_id}..."))

        result, value = await self.read_value(node_id, endpoint_id, cluster, attribute)
        if not result.ok:
            logger.warning(f"Reading {cluster}.{attribute} for node {node_id} failed: {result.error}")
            session.send(CommissioningLog(f"Failed to read attribute {cluster}.{attribute}: {result.error}"))
            return

        session.send(AttributeUpdate(
            node_id=node_id,
            endpoint_id=endpoint_id,
            cluster=cluster,
            attribute=attribute,
            value=value,
        ))

    async def status(self, session: "Session", intent: StatusIntent) -> None:
        endpoint_id = intent.endpoint_id or self.config.default_endpoint
        if not intent.node_id:
            session.send(StatusReport(endpoint_id=endpoint_id, error="Missing nodeId"))
            return

        result, value = await self.read_value(intent.node_id, endpoint_id, "OnOff", "OnOff")
        if not result.ok:
            session.send(StatusReport(
                node_id=intent.node_id,
                endpoint_id=endpoint_id,
                status="unreachable",
                error=f"Failed to read OnOff state: {result.error}",
            ))
            return

        if isinstance(value, bool):
            state = "on" if value else "off"
        else:
            state = "unknown"
        session.send(StatusReport(
            node_id=intent.node_id, endpoint_id=endpoint_id, status=state, value=value,
        ))

    # ============ Subscriptions ============

    async def subscribe(self, session: "Session", intent: SubscribeIntent) -> None:
        required = (
            ("nodeId", intent.node_id),
            ("cluster", intent.cluster),
            ("attribute", intent.attribute),
            ("minInterval", intent.min_interval),
            ("maxInterval", intent.max_interval),
        )
        missing = [name for name, value in required if not value]
        if missing:
            session.send(GenericError(f"Missing required fields for subscription: {', '.join(missing)}"))
            return
        for name, value in (("minInterval", intent.min_interval), ("maxInterval", intent.max_interval)):
            if not value.isdigit():
                session.send(GenericError(f"{name} must be a whole number of seconds, got '{value}'"))
                return

        node_id = intent.node_id
        endpoint_id = intent.endpoint_id or self.config.default_endpoint
        cluster, attribute = intent.cluster, intent.attribute
        key = subscription_key(node_id, endpoint_id, cluster, attribute)

        args = build_subscribe_args(
            cluster, attribute, intent.min_interval, intent.max_interval, node_id, endpoint_id,
        )
        try:
            stream = await self.subscriber.start(args)
        except ToolSpawnError as e:
            logger.error(f"Subscription {key} could not start: {e}")
            session.send(GenericError(f"Failed to start subscription: {e}"))
            return

        previous = session.track_subscription(key, stream)
        if previous is not None:
            logger.info(f"Replacing subscription {key} (pid {previous.pid})")
            await previous.terminate()
        if session.closed:
            # Session went away while the process was starting
            session.release_subscription(key, stream)
            await stream.terminate()
            return

        session.send(SubscriptionLog(
            f"Subscription started for {cluster}.{attribute} on Node {node_id} Endpoint {endpoint_id}"
        ))

        try:
            await asyncio.gather(
                self._pump_reports(session, stream, key, node_id, endpoint_id, cluster, attribute),
                self._pump_log(session, stream),
            )
            returncode = await stream.wait()
        finally:
            session.release_subscription(key, stream)

        logger.info(f"Subscription {key} ended (exit status {returncode})")
        session.send(SubscriptionLog(
            f"Subscription for {cluster}.{attribute} on Node {node_id} ended (exit status {returncode})"
        ))

    async def _pump_reports(
        self,
        session: "Session",
        stream: ToolStream,
        key: str,
        node_id: str,
        endpoint_id: str,
        cluster: str,
        attribute: str,
    ) -> None:
        parser = ReportParser()
        async for line in stream.stdout_lines():
            logger.debug(f"[{key}] Stdout: {line}")
            report = parser.feed(line)
            if report is None:
                continue
            session.send(AttributeUpdate(
                node_id=node_id,
                endpoint_id=endpoint_id,
                cluster=cluster,
                attribute=attribute,
                value=report.value,
            ))

    async def _pump_log(self, session: "Session", stream: ToolStream) -> None:
        async for line in stream.stderr_lines():
            if line.strip():
                session.send(SubscriptionLog(line))
