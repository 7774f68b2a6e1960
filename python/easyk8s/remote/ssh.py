"""
easyk8s/remote/ssh.py

Sync-direct channel over OpenSSH. `submit` runs the script through
`bash -s` and returns only after the remote process exits, so the outcome is
known at submission time and `poll` just reads it back.

ssh itself exits with 255 when the connection fails; that is reported as a
RemoteExecutionError from `submit`. Any other non-zero exit is a failed
outcome of the script.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from typing import Dict, List, Optional

from easyk8s.errors import RemoteExecutionError
from easyk8s.models.nodes import NodeRef
from easyk8s.models.remote import (
    CommandHandle,
    CommandOutcome,
    CommandStatus,
    ExecutionMode,
)
from easyk8s.models.ssh import SSHConfig
from easyk8s.remote.channel import Clock, RemoteCommandChannel, Sleep
from easyk8s.utils.async_command_runner import (
    CommandError,
    CommandRunner,
    SubprocessRunner,
)
from easyk8s.utils.ssh import run_ssh_command, ssh_read_file

SSH_CONNECTION_FAILURE = 255


class SSHChannel(RemoteCommandChannel):
    """Runs scripts on nodes over SSH with a shared private key."""

    mode = ExecutionMode.sync_direct

    def __init__(
        self,
        private_key: str,
        *,
        user: str = "root",
        connect_timeout: int = 10,
        host_keys: Optional[List[str]] = None,
        runner: Optional[CommandRunner] = None,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        super().__init__(clock=clock, sleep=sleep)
        self.private_key = private_key
        self.user = user
        self.connect_timeout = connect_timeout
        self.host_keys = host_keys
        self.runner = runner or SubprocessRunner()
        self._outcomes: Dict[str, CommandOutcome] = {}

    def ssh_config(self, node: NodeRef) -> SSHConfig:
        return SSHConfig(
            user=self.user,
            hostname=node.address,
            private_key=self.private_key,
            host_keys=self.host_keys,
            connect_timeout=self.connect_timeout,
        )

    async def submit(self, node: NodeRef, script: str) -> CommandHandle:
        handle = CommandHandle(command_id=uuid.uuid4().hex, node=node)
        try:
            output = await run_ssh_command(
                self.ssh_config(node),
                ["bash", "-s"],
                runner=self.runner,
                input_data=script,
            )
            outcome = CommandOutcome(
                node_id=node.node_id, status=CommandStatus.success, output=output
            )
        except CommandError as exc:
            if exc.return_code in (None, SSH_CONNECTION_FAILURE):
                raise RemoteExecutionError(
                    f"cannot reach {node.address} over ssh: {exc.stderr or exc}",
                    node_id=node.node_id,
                ) from exc
            outcome = CommandOutcome(
                node_id=node.node_id,
                status=CommandStatus.failed,
                error=exc.stderr or str(exc),
            )

        self._outcomes[handle.command_id] = outcome
        return handle

    async def poll(self, handle: CommandHandle) -> CommandOutcome:
        try:
            return self._outcomes[handle.command_id]
        except KeyError as exc:
            raise RemoteExecutionError(
                f"unknown command {handle.command_id}", node_id=handle.node.node_id
            ) from exc

    async def read_file(self, node: NodeRef, path: str) -> str:
        """Return the contents of `path` on `node`.

        Raises:
            RemoteExecutionError: If the file cannot be read.
        """
        try:
            return await ssh_read_file(self.ssh_config(node), path, runner=self.runner)
        except CommandError as exc:
            raise RemoteExecutionError(
                f"failed to read {path} from {node.address}: {exc.stderr or exc}",
                node_id=node.node_id,
            ) from exc
