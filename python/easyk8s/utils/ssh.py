"""
easyk8s/utils/ssh.py

SSH helpers for nodes reachable over OpenSSH (Hetzner, Proxmox). The private
key is written to an ephemeral file in /dev/shm for the duration of a single
invocation, and so is known_hosts when host keys are known. This module
provides:
  - build_ssh_command: the ssh argument list for one invocation.
  - run_ssh_command: run a command (or a script on stdin) on a node.
  - ssh_read_file: fetch a remote file's contents.

Freshly provisioned nodes have no known host keys yet, so when SSHConfig has
no host_keys we run with StrictHostKeyChecking=no against /dev/null.
"""

from __future__ import annotations

import os
import shlex
from typing import List, Optional

import aiofiles

from easyk8s.models.ssh import SSHConfig
from easyk8s.utils.async_command_runner import CommandRunner, run_command
from easyk8s.utils.ephemeral_file import ephemeral_manager


def build_ssh_command(
    ssh_config: SSHConfig,
    key_path: str,
    known_hosts_path: Optional[str] = None,
) -> List[str]:
    """
    Build the ssh argument list, without the remote command.

    Args:
      ssh_config: user, hostname, port, connect_timeout.
      key_path: path of the private key file.
      known_hosts_path: ephemeral known_hosts, or None to disable checking.
    """
    host_key_opts = (
        [
            "-o",
            "StrictHostKeyChecking=yes",
            "-o",
            f"UserKnownHostsFile={known_hosts_path}",
        ]
        if known_hosts_path
        else [
            "-o",
            "StrictHostKeyChecking=no",
            "-o",
            "UserKnownHostsFile=/dev/null",
        ]
    )
    return [
        "ssh",
        "-p",
        str(ssh_config.port),
        "-i",
        key_path,
        "-o",
        "BatchMode=yes",
        *host_key_opts,
        "-o",
        "GlobalKnownHostsFile=/dev/null",
        "-o",
        "LogLevel=ERROR",
        "-o",
        f"ConnectTimeout={ssh_config.connect_timeout}",
        f"{ssh_config.user}@{ssh_config.hostname}",
    ]


async def run_ssh_command(
    ssh_config: SSHConfig,
    remote_command: List[str],
    *,
    runner: Optional[CommandRunner] = None,
    input_data: Optional[str] = None,
    sensitive: bool = True,
    timeout: Optional[float] = None,
    retries: int = 1,
    retry_delay: float = 1.0,
    successful_return_codes: Optional[List[int]] = None,
) -> str:
    """
    Run `remote_command` on the node described by `ssh_config`.

    Args:
      ssh_config: connection details and private key.
      remote_command: The remote command tokens, shell-quoted before sending.
      runner: CommandRunner to execute ssh with.
      input_data: Optional stdin, e.g. a script for `bash -s`.
      sensitive: If True, hides details on error.
      timeout: Seconds before the ssh process is killed.
      retries: how many times to try in total.
      retry_delay: seconds between retries.
      successful_return_codes: exit codes considered "non-error".

    Returns:
      captured stdout from the remote command

    Raises:
      CommandError: if the command fails.
    """
    async with ephemeral_manager("ssh_idkey", prefix="sshpk-") as pk_path:
        async with aiofiles.open(pk_path, "wb") as fpk:
            await fpk.write(ssh_config.private_key.encode("utf-8"))
        os.chmod(pk_path, 0o600)

        async with ephemeral_manager("ssh_known_hosts", prefix="sshkh-") as kh_path:
            known_hosts: Optional[str] = None
            if ssh_config.host_keys:
                async with aiofiles.open(kh_path, "w", encoding="utf-8") as fkh:
                    for line in ssh_config.host_keys:
                        await fkh.write(line + "\n")
                known_hosts = kh_path

            ssh_cmd = build_ssh_command(ssh_config, pk_path, known_hosts)
            ssh_cmd.append(" ".join(shlex.quote(x) for x in remote_command))

            return await run_command(
                ssh_cmd,
                runner=runner,
                sensitive=sensitive,
                input_data=input_data,
                timeout=timeout,
                retries=retries,
                retry_delay=retry_delay,
                successful_return_codes=successful_return_codes,
            )


async def ssh_read_file(
    ssh_config: SSHConfig,
    path: str,
    *,
    runner: Optional[CommandRunner] = None,
    retries: int = 1,
) -> str:
    """Return the contents of `path` on the remote node."""
    return await run_ssh_command(
        ssh_config, ["cat", path], runner=runner, retries=retries
    )
