"""
easyk8s/models/remote.py

Value types exchanged with a remote command channel.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field

from easyk8s.models.nodes import NodeRef


class ExecutionMode(str, Enum):
    async_poll = "async-poll"
    sync_direct = "sync-direct"


class CommandStatus(str, Enum):
    pending = "pending"
    success = "success"
    failed = "failed"
    timeout = "timeout"

    @property
    def is_terminal(self) -> bool:
        return self is not CommandStatus.pending


class RemoteCommand(BaseModel):
    """A script body plus the nodes it must run on."""

    script: str
    targets: List[NodeRef]
    mode: ExecutionMode = ExecutionMode.async_poll


class CommandHandle(BaseModel):
    """Opaque reference to a submitted command on one node."""

    model_config = ConfigDict(frozen=True)

    command_id: str
    node: NodeRef


class CommandOutcome(BaseModel):
    """The status of one command on one node."""

    node_id: str
    status: CommandStatus
    output: str = ""
    error: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status == CommandStatus.success


class PollPolicy(BaseModel):
    """How often and for how long `wait` polls a submitted command."""

    model_config = ConfigDict(frozen=True)

    interval: float = Field(default=5.0, gt=0)
    timeout: float = Field(default=300.0, gt=0)


class DispatchReport(BaseModel):
    """Per-node results of sending one script to many nodes.

    Attributes:
        attempted: node ids a submit was tried for, in dispatch order.
        submitted: Handles of the commands that were accepted.
        outcomes: Terminal outcomes, when the dispatch waited for them.
        failures: node_id -> error message for nodes that could not be reached
            or whose command did not succeed.
    """

    attempted: List[str] = Field(default_factory=list)
    submitted: List[CommandHandle] = Field(default_factory=list)
    outcomes: List[CommandOutcome] = Field(default_factory=list)
    failures: Dict[str, str] = Field(default_factory=dict)


__all__ = [
    "ExecutionMode",
    "CommandStatus",
    "RemoteCommand",
    "CommandHandle",
    "CommandOutcome",
    "PollPolicy",
    "DispatchReport",
]
