"""
easyk8s/models/cluster.py

Pydantic models describing a requested cluster (ClusterSpec) as read from a
cluster.yaml file. The models are frozen: once a spec has been validated it is
passed around unchanged.

Field aliases mirror the camelCase keys used in cluster.yaml
(`controlPlane`, `instanceType`, `vlanTag`, `loadBalancer`), while the Python
attribute names stay snake_case.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class VPCSpec(BaseModel):
    """Network settings for the cluster's private network."""

    model_config = ConfigDict(frozen=True)

    cidr: str = "10.0.0.0/16"


class ProviderSpec(BaseModel):
    """Backend identity plus the backend-specific fields.

    Attributes:
        type: Backend identity string ("aws", "hetzner", "proxmox", "vsphere").
        region: AWS region, or Hetzner location when `location` is empty.
        location: Hetzner location (fsn1, nbg1, ...).
        node: Proxmox node name that hosts the VMs.
        vip: Virtual IP announced by kube-vip (Proxmox).
        bridge: Proxmox network bridge.
        datastore: Proxmox datastore for VM disks.
        vlan_tag: Optional Proxmox VLAN tag; 0 means untagged.
        load_balancer: Whether the topology provisions a load balancer in
            front of the control plane.
        vpc: Private network settings.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: str
    region: str = ""
    location: str = ""
    node: str = ""
    vip: str = ""
    bridge: str = ""
    datastore: str = ""
    vlan_tag: int = Field(default=0, alias="vlanTag")
    load_balancer: bool = Field(default=True, alias="loadBalancer")
    vpc: VPCSpec = Field(default_factory=VPCSpec)

    @property
    def vpc_cidr(self) -> str:
        return self.vpc.cidr


class KubernetesSpec(BaseModel):
    """Kubernetes version and distribution installed on the nodes."""

    model_config = ConfigDict(frozen=True)

    version: str = ""
    distribution: str = "rke2"


class NodeGroupSpec(BaseModel):
    """A group of identically-sized nodes."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    count: int = 0
    instance_type: str = Field(default="", alias="instanceType")


class NodesSpec(BaseModel):
    """Control-plane and worker node groups."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    control_plane: NodeGroupSpec = Field(
        default_factory=NodeGroupSpec, alias="controlPlane"
    )
    workers: NodeGroupSpec = Field(default_factory=NodeGroupSpec)


class ClusterSpec(BaseModel):
    """The full, immutable description of one cluster.

    Structural typing is enforced here; semantic rules (odd control-plane
    count, backend-specific fields, credentials) are checked by each
    provider's validate_config so that they surface as PreconditionError.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    provider: ProviderSpec
    kubernetes: KubernetesSpec = Field(default_factory=KubernetesSpec)
    nodes: NodesSpec = Field(default_factory=NodesSpec)

    @property
    def location(self) -> str:
        """Hetzner-style location, preferring `location` over `region`."""
        return self.provider.location or self.provider.region


__all__ = [
    "VPCSpec",
    "ProviderSpec",
    "KubernetesSpec",
    "NodeGroupSpec",
    "NodesSpec",
    "ClusterSpec",
]
