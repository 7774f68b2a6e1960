"""
easyk8s/remote/channel.py

The remote command channel abstraction and the fleet-wide dispatch helpers.

A channel runs a shell script on one node:
  - submit(node, script) -> CommandHandle
  - poll(handle)         -> CommandOutcome
  - wait(handle, policy) -> CommandOutcome, or RemoteCommandTimeout

`wait` is implemented once here on top of `poll`. Its clock and sleep are
injected at construction so tests can drive it without real time passing.
Errors raised by `poll` are treated as transient: the command is still
considered pending and polling continues until the policy times out.

Fleet helpers:
  - dispatch_to_fleet: submit to every target concurrently, never wait.
  - converge_nodes: submit-and-wait one node at a time.
Both record per-node failures in a DispatchReport instead of raising, so one
unreachable node never stops the rest of the fleet.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, List, Optional, Union

from easyk8s.errors import EasyK8sError, RemoteCommandTimeout, RemoteExecutionError
from easyk8s.models.nodes import Fleet, NodeRef
from easyk8s.models.remote import (
    CommandHandle,
    CommandOutcome,
    CommandStatus,
    DispatchReport,
    ExecutionMode,
    PollPolicy,
    RemoteCommand,
)
from easyk8s.utils.async_command_runner import CommandError

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[Any]]


class RemoteCommandChannel(ABC):
    """Runs scripts on remote nodes."""

    mode: ExecutionMode

    def __init__(
        self,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._clock = clock
        self._sleep = sleep

    @abstractmethod
    async def submit(self, node: NodeRef, script: str) -> CommandHandle:
        """Send `script` to `node`.

        Raises:
            RemoteExecutionError: If the command could not be submitted.
        """

    @abstractmethod
    async def poll(self, handle: CommandHandle) -> CommandOutcome:
        """Return the current outcome of a submitted command."""

    async def wait(
        self, handle: CommandHandle, policy: Optional[PollPolicy] = None
    ) -> CommandOutcome:
        """Poll until the command is terminal or `policy.timeout` elapses.

        Raises:
            RemoteCommandTimeout: If no terminal outcome is seen in time.
        """
        policy = policy or PollPolicy()
        deadline = self._clock() + policy.timeout
        node_id = handle.node.node_id

        while True:
            try:
                outcome = await self.poll(handle)
            except (RemoteExecutionError, CommandError) as exc:
                logger.debug(
                    "Transient poll error for %s on %s: %s",
                    handle.command_id,
                    node_id,
                    exc,
                )
                outcome = CommandOutcome(node_id=node_id, status=CommandStatus.pending)

            if outcome.status.is_terminal:
                return outcome

            if self._clock() >= deadline:
                raise RemoteCommandTimeout(
                    f"command {handle.command_id} on {node_id} did not finish "
                    f"within {policy.timeout:g}s",
                    node_id=node_id,
                )
            await self._sleep(policy.interval)


async def _try_submit(
    channel: RemoteCommandChannel, node: NodeRef, script: str
) -> Union[CommandHandle, Exception]:
    try:
        return await channel.submit(node, script)
    except (EasyK8sError, CommandError) as exc:
        logger.warning("Dispatch to %s failed: %s", node.node_id, exc)
        return exc


async def dispatch_to_fleet(
    channel: RemoteCommandChannel,
    fleet: Fleet,
    command: RemoteCommand,
) -> DispatchReport:
    """Submit `command` to every target concurrently without waiting for completion.

    Raises:
        PreconditionError: If a target is not part of the provisioned fleet.
    """
    fleet.require(command.targets)
    report = DispatchReport(attempted=[n.node_id for n in command.targets])
    if not command.targets:
        return report

    results = await asyncio.gather(
        *(_try_submit(channel, node, command.script) for node in command.targets)
    )
    for node, result in zip(command.targets, results):
        if isinstance(result, CommandHandle):
            report.submitted.append(result)
        else:
            report.failures[node.node_id] = str(result)
    return report


async def converge_nodes(
    channel: RemoteCommandChannel,
    fleet: Fleet,
    command: RemoteCommand,
    policy: Optional[PollPolicy] = None,
) -> DispatchReport:
    """Run `command` on each target in order, waiting for each before the next.

    Raises:
        PreconditionError: If a target is not part of the provisioned fleet.
    """
    fleet.require(command.targets)
    report = DispatchReport()

    for node in command.targets:
        report.attempted.append(node.node_id)
        handle = await _try_submit(channel, node, command.script)
        if not isinstance(handle, CommandHandle):
            report.failures[node.node_id] = str(handle)
            continue
        report.submitted.append(handle)

        try:
            outcome = await channel.wait(handle, policy)
        except RemoteCommandTimeout as exc:
            logger.warning("%s", exc)
            report.outcomes.append(
                CommandOutcome(
                    node_id=node.node_id, status=CommandStatus.timeout, error=str(exc)
                )
            )
            report.failures[node.node_id] = str(exc)
            continue

        report.outcomes.append(outcome)
        if not outcome.succeeded:
            message = f"command {outcome.status.value}: {outcome.error or outcome.output}"
            logger.warning("Node %s: %s", node.node_id, message)
            report.failures[node.node_id] = message

    return report


def make_command(
    script: str, targets: List[NodeRef], channel: RemoteCommandChannel
) -> RemoteCommand:
    return RemoteCommand(script=script, targets=targets, mode=channel.mode)
