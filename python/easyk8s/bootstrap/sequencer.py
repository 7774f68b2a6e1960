"""
easyk8s/bootstrap/sequencer.py

Drives one cluster from nothing to a converged, externally reachable state:

    IDLE -> PROVISIONING -> PROVISIONED -> CONVERGING_IDENTITY
         -> RECONNECTING_FLEET -> READY

with FAILED reachable from any non-terminal phase.

  - PROVISIONING runs tofu init/plan/apply. Any failure is fatal and nothing
    is rolled back; the working directory is left for inspection or a retry.
  - Reading the fleet from the tofu outputs is fatal too: without it there is
    no cluster to talk to.
  - CONVERGING_IDENTITY adds the external address (load balancer, else
    virtual IP) to each control-plane node's TLS SANs, one node at a time.
    It is skipped when there is no external address, or when the backend
    already baked that address into the initial SAN list. Per-node failures
    are warnings, and so is a remote channel that cannot be set up: every
    node is then recorded as failed and the run still ends READY.
  - RECONNECTING_FLEET sends an agent restart to every worker concurrently
    and does not wait for the restarts to finish.

Concurrent runs against the same cluster name are not guarded against.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, List, Optional

from pydantic import BaseModel, Field

from easyk8s.bootstrap.scripts import agent_restart_script, tls_san_update_script
from easyk8s.errors import BootstrapError, EasyK8sError, ResolutionError
from easyk8s.kubeconfig import resolve_endpoint
from easyk8s.models.cluster import ClusterSpec
from easyk8s.models.nodes import Endpoint, EndpointCandidates, Fleet
from easyk8s.models.remote import DispatchReport, ExecutionMode, PollPolicy
from easyk8s.models.settings import EasyK8sSettings
from easyk8s.remote.channel import (
    RemoteCommandChannel,
    converge_nodes,
    dispatch_to_fleet,
    make_command,
)

if TYPE_CHECKING:
    from easyk8s.providers.base import TofuProvider

logger = logging.getLogger(__name__)


class BootstrapPhase(str, Enum):
    idle = "IDLE"
    provisioning = "PROVISIONING"
    provisioned = "PROVISIONED"
    converging_identity = "CONVERGING_IDENTITY"
    reconnecting_fleet = "RECONNECTING_FLEET"
    ready = "READY"
    failed = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (BootstrapPhase.ready, BootstrapPhase.failed)


class BootstrapReport(BaseModel):
    """What happened during one create_infrastructure run."""

    cluster: str
    phase: BootstrapPhase = BootstrapPhase.idle
    history: List[BootstrapPhase] = Field(default_factory=lambda: [BootstrapPhase.idle])
    endpoint: Optional[Endpoint] = None
    identity_converged: bool = False
    convergence: Optional[DispatchReport] = None
    reconnect: Optional[DispatchReport] = None
    warnings: List[str] = Field(default_factory=list)
    failed_phase: Optional[BootstrapPhase] = None
    failure: Optional[str] = None

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)


class BootstrapSequencer:
    """Runs the bootstrap phases of one cluster against a provider."""

    def __init__(
        self,
        provider: TofuProvider,
        settings: Optional[EasyK8sSettings] = None,
        *,
        policy: Optional[PollPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.provider = provider
        self.settings = settings or provider.settings
        self.policy = policy or self.settings.poll_policy()
        self._sleep = sleep
        self.report: Optional[BootstrapReport] = None

    def _enter(self, phase: BootstrapPhase) -> None:
        assert self.report is not None
        logger.info("[%s] %s -> %s", self.report.cluster, self.report.phase.value, phase.value)
        self.report.phase = phase
        self.report.history.append(phase)

    def _fail(self, exc: BaseException) -> BootstrapError:
        assert self.report is not None
        phase = self.report.phase
        self.report.failed_phase = phase
        self.report.failure = str(exc)
        self._enter(BootstrapPhase.failed)
        return BootstrapError(phase.value, exc)

    async def run(self, spec: ClusterSpec) -> BootstrapReport:
        """Bootstrap `spec`, returning the report once READY.

        Raises:
            PreconditionError: If the spec does not validate. Nothing has run yet.
            BootstrapError: If provisioning or fleet discovery fails.
        """
        await self.provider.validate_config(spec)

        self.report = BootstrapReport(cluster=spec.name)
        report = self.report

        self._enter(BootstrapPhase.provisioning)
        try:
            await self.provider.provision(spec)
        except Exception as exc:
            raise self._fail(exc) from exc
        self._enter(BootstrapPhase.provisioned)

        try:
            outputs = await self.provider.read_outputs(spec)
            fleet = self.provider.fleet_from_outputs(spec, outputs)
        except Exception as exc:
            raise self._fail(exc) from exc

        try:
            candidates = self.provider.candidates_from_outputs(spec, outputs)
        except ResolutionError as exc:
            report.warn(f"endpoint candidates unavailable: {exc}")
            candidates = EndpointCandidates(leader=fleet.leader.address)
        if not candidates.leader:
            candidates = candidates.model_copy(update={"leader": fleet.leader.address})

        external = candidates.external()
        baked_in = self.provider.initial_tls_sans(spec, candidates)
        if not external or external in baked_in:
            # nothing to converge; the initial TLS material already matches
            report.endpoint = resolve_endpoint(candidates, self.settings.api_port)
            self._enter(BootstrapPhase.ready)
            return report

        try:
            channel = await self.provider.remote_channel(spec, outputs)
        except EasyK8sError as exc:
            return self._finish_unconverged(fleet, external, exc)
        if channel.mode == ExecutionMode.async_poll and self.settings.remote_ready_delay_seconds > 0:
            logger.info(
                "Waiting %gs for the remote command service on new nodes",
                self.settings.remote_ready_delay_seconds,
            )
            await self._sleep(self.settings.remote_ready_delay_seconds)

        self._enter(BootstrapPhase.converging_identity)
        report.convergence = await self._converge_identity(fleet, channel, external)
        report.identity_converged = not report.convergence.failures

        self._enter(BootstrapPhase.reconnecting_fleet)
        report.reconnect = await self._reconnect_fleet(fleet, channel)

        report.endpoint = Endpoint(address=external, port=self.settings.api_port)
        self._enter(BootstrapPhase.ready)
        return report

    def _finish_unconverged(
        self, fleet: Fleet, external: str, exc: BaseException
    ) -> BootstrapReport:
        """Walk the remaining phases when no node can be reached at all."""
        assert self.report is not None
        report = self.report
        report.warn(f"remote channel unavailable, nodes left unconverged: {exc}")

        self._enter(BootstrapPhase.converging_identity)
        report.convergence = DispatchReport(
            failures={node.node_id: str(exc) for node in fleet.control_plane}
        )
        report.identity_converged = False

        self._enter(BootstrapPhase.reconnecting_fleet)
        report.reconnect = DispatchReport(
            failures={node.node_id: str(exc) for node in fleet.workers}
        )

        report.endpoint = Endpoint(address=external, port=self.settings.api_port)
        self._enter(BootstrapPhase.ready)
        return report

    async def _converge_identity(
        self, fleet: Fleet, channel: RemoteCommandChannel, address: str
    ) -> DispatchReport:
        assert self.report is not None
        command = make_command(
            tls_san_update_script(address), fleet.control_plane, channel
        )
        result = await converge_nodes(channel, fleet, command, self.policy)
        for node_id, error in result.failures.items():
            self.report.warn(f"TLS SAN update on {node_id} failed: {error}")
        return result

    async def _reconnect_fleet(self, fleet: Fleet, channel: RemoteCommandChannel) -> DispatchReport:
        assert self.report is not None
        if not fleet.workers:
            logger.info("[%s] No worker nodes to restart", self.report.cluster)
            return DispatchReport()

        command = make_command(agent_restart_script(), fleet.workers, channel)
        result = await dispatch_to_fleet(channel, fleet, command)
        for node_id, error in result.failures.items():
            self.report.warn(f"agent restart on {node_id} failed: {error}")
        logger.info(
            "[%s] Restart sent to %d/%d workers; they rejoin on their own",
            self.report.cluster,
            len(result.submitted),
            len(fleet.workers),
        )
        return result
