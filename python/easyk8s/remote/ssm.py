"""
easyk8s/remote/ssm.py

Async-poll channel backed by AWS Systems Manager, driven through the aws CLI:
  - submit: `aws ssm send-command --document-name AWS-RunShellScript`
  - poll:   `aws ssm get-command-invocation`

SSM needs a little while after boot before it accepts commands, and an
invocation may not be queryable right after submission; the latter surfaces
as a poll error, which `wait` treats as still pending.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Dict, List, Optional

from easyk8s.errors import RemoteExecutionError
from easyk8s.models.nodes import NodeRef
from easyk8s.models.remote import (
    CommandHandle,
    CommandOutcome,
    CommandStatus,
    ExecutionMode,
)
from easyk8s.models.validator import parse_json_as
from easyk8s.remote.channel import Clock, RemoteCommandChannel, Sleep
from easyk8s.utils.async_command_runner import (
    CommandError,
    CommandRunner,
    SubprocessRunner,
    run_command,
)

SSM_DOCUMENT = "AWS-RunShellScript"

_STATUS_MAP: Dict[str, CommandStatus] = {
    "Pending": CommandStatus.pending,
    "InProgress": CommandStatus.pending,
    "Delayed": CommandStatus.pending,
    "Success": CommandStatus.success,
    "Cancelled": CommandStatus.failed,
    "Cancelling": CommandStatus.failed,
    "Failed": CommandStatus.failed,
    "TimedOut": CommandStatus.timeout,
}


def map_ssm_status(status: str) -> CommandStatus:
    """Translate an SSM invocation status. Unknown values count as still pending."""
    return _STATUS_MAP.get(status, CommandStatus.pending)


def script_parameters(script: str) -> str:
    """Encode a script as the AWS-RunShellScript `commands` parameter, one line per entry."""
    lines: List[str] = script.strip().splitlines()
    return json.dumps({"commands": lines})


class SSMChannel(RemoteCommandChannel):
    """Runs scripts on EC2 instances through AWS Systems Manager."""

    mode = ExecutionMode.async_poll

    def __init__(
        self,
        region: str,
        *,
        runner: Optional[CommandRunner] = None,
        retries: int = 1,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        super().__init__(clock=clock, sleep=sleep)
        self.region = region
        self.runner = runner or SubprocessRunner()
        # applies to send-command only
        self.retries = retries

    async def submit(self, node: NodeRef, script: str) -> CommandHandle:
        cmd = [
            "aws",
            "ssm",
            "send-command",
            "--document-name",
            SSM_DOCUMENT,
            "--instance-ids",
            node.node_id,
            "--parameters",
            script_parameters(script),
            "--region",
            self.region,
            "--output",
            "text",
            "--query",
            "Command.CommandId",
        ]
        try:
            command_id = await run_command(cmd, runner=self.runner, retries=self.retries)
        except CommandError as exc:
            raise RemoteExecutionError(
                f"failed to send SSM command to {node.node_id}: {exc.stderr or exc}",
                node_id=node.node_id,
            ) from exc

        command_id = command_id.strip()
        if not command_id:
            raise RemoteExecutionError(
                f"SSM returned no command id for {node.node_id}", node_id=node.node_id
            )
        return CommandHandle(command_id=command_id, node=node)

    async def poll(self, handle: CommandHandle) -> CommandOutcome:
        cmd = [
            "aws",
            "ssm",
            "get-command-invocation",
            "--command-id",
            handle.command_id,
            "--instance-id",
            handle.node.node_id,
            "--region",
            self.region,
            "--output",
            "json",
        ]
        try:
            raw = await run_command(cmd, runner=self.runner)
            invocation = parse_json_as(raw, Dict[str, object])
        except (CommandError, ValueError) as exc:
            raise RemoteExecutionError(
                f"failed to query SSM command {handle.command_id}: {exc}",
                node_id=handle.node.node_id,
            ) from exc

        return CommandOutcome(
            node_id=handle.node.node_id,
            status=map_ssm_status(str(invocation.get("Status", ""))),
            output=str(invocation.get("StandardOutputContent") or ""),
            error=str(invocation.get("StandardErrorContent") or ""),
        )
