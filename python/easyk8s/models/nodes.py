"""
easyk8s/models/nodes.py

Models for the provisioned fleet and the API endpoint:
 - NodeRole / NodeRef: one remote node, as produced by tofu outputs.
 - Fleet: every NodeRef of a cluster, with exactly one control-plane leader.
 - EndpointCandidates / Endpoint: addresses that can front the API server.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, model_validator

from easyk8s.errors import PreconditionError


class NodeRole(str, Enum):
    leader = "control-plane-leader"
    follower = "control-plane-follower"
    worker = "worker"


class NodeRef(BaseModel):
    """A single remote node.

    Attributes:
        node_id: Opaque remote identifier (EC2 instance id, or the node's IP
            for SSH-reachable backends).
        role: The node's role in the cluster.
        address: Node-local network address.
    """

    model_config = ConfigDict(frozen=True)

    node_id: str
    role: NodeRole
    address: str

    @property
    def is_control_plane(self) -> bool:
        return self.role in (NodeRole.leader, NodeRole.follower)


class Fleet(BaseModel):
    """All nodes of one cluster. Roles partition the nodes; one leader exactly."""

    model_config = ConfigDict(frozen=True)

    nodes: List[NodeRef]

    @model_validator(mode="after")
    def check_roles(self) -> Fleet:
        leaders = [n for n in self.nodes if n.role == NodeRole.leader]
        if len(leaders) != 1:
            raise ValueError(
                f"fleet must contain exactly one control-plane leader, got {len(leaders)}"
            )
        ids = [n.node_id for n in self.nodes]
        if len(set(ids)) != len(ids):
            raise ValueError("fleet contains duplicate node ids")
        return self

    @classmethod
    def from_groups(
        cls,
        control_plane: List[NodeRef],
        workers: List[NodeRef],
    ) -> Fleet:
        return cls(nodes=[*control_plane, *workers])

    @property
    def leader(self) -> NodeRef:
        return next(n for n in self.nodes if n.role == NodeRole.leader)

    @property
    def control_plane(self) -> List[NodeRef]:
        """Leader first, followers after, in provisioning order."""
        return [self.leader] + [n for n in self.nodes if n.role == NodeRole.follower]

    @property
    def workers(self) -> List[NodeRef]:
        return [n for n in self.nodes if n.role == NodeRole.worker]

    def require(self, targets: Iterable[NodeRef]) -> None:
        """Raise PreconditionError if any target was not produced by provisioning."""
        known = set(self.nodes)
        unknown = [t.node_id for t in targets if t not in known]
        if unknown:
            raise PreconditionError(
                f"remote command targets nodes that are not provisioned: {', '.join(unknown)}"
            )


def build_node_refs(
    ids: List[str], addresses: List[str], *, control_plane: bool
) -> List[NodeRef]:
    """Pair per-role id and address outputs into NodeRefs.

    For control-plane groups the first node becomes the leader.
    """
    if len(ids) != len(addresses):
        raise ValueError(
            f"mismatched outputs: {len(ids)} node ids but {len(addresses)} addresses"
        )

    def _role(index: int) -> NodeRole:
        if not control_plane:
            return NodeRole.worker
        return NodeRole.leader if index == 0 else NodeRole.follower

    return [
        NodeRef(node_id=node_id, role=_role(i), address=addr)
        for i, (node_id, addr) in enumerate(zip(ids, addresses))
    ]


class Endpoint(BaseModel):
    """A resolved (address, port) pair for the Kubernetes API server."""

    model_config = ConfigDict(frozen=True)

    address: str
    port: int = 6443

    @property
    def url(self) -> str:
        return f"https://{self.address}:{self.port}"


class EndpointCandidates(BaseModel):
    """Addresses read from provisioning outputs, any of which may be missing."""

    load_balancer: Optional[str] = None
    virtual_ip: Optional[str] = None
    leader: Optional[str] = None

    def external(self) -> Optional[str]:
        """The stable externally-derived address, if the topology has one."""
        return self.load_balancer or self.virtual_ip or None


__all__ = [
    "NodeRole",
    "NodeRef",
    "Fleet",
    "build_node_refs",
    "Endpoint",
    "EndpointCandidates",
]
