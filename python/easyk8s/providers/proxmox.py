"""
easyk8s/providers/proxmox.py

Proxmox VE backend. There is no cloud load balancer; kube-vip announces a
virtual IP chosen up front in the spec, which is baked into the initial
tls-san list.
"""

from __future__ import annotations

import ipaddress
from typing import Any, Dict, List

from easyk8s.errors import PreconditionError
from easyk8s.models.cluster import ClusterSpec
from easyk8s.models.nodes import EndpointCandidates
from easyk8s.providers.ssh_backed import SSHBackedProvider


class ProxmoxProvider(SSHBackedProvider):
    name = "proxmox"

    def validate_backend(self, spec: ClusterSpec) -> None:
        if not spec.provider.node:
            raise PreconditionError(
                "Proxmox node name is required (set provider.node, e.g. 'pve')"
            )
        vip = spec.provider.vip
        if not vip:
            raise PreconditionError(
                "kube-vip VIP address is required (set provider.vip); "
                "it must be a free IP on your network"
            )
        try:
            ipaddress.IPv4Address(vip)
        except ValueError as exc:
            raise PreconditionError(
                f"invalid VIP address {vip!r}: must be a valid IPv4 address"
            ) from exc
        if spec.provider.vlan_tag < 0 or spec.provider.vlan_tag > 4094:
            raise PreconditionError(f"invalid VLAN tag {spec.provider.vlan_tag}")

    def check_credentials(self, spec: ClusterSpec) -> None:
        if not self.environ.get("PROXMOX_VE_ENDPOINT"):
            raise PreconditionError(
                "PROXMOX_VE_ENDPOINT environment variable is required "
                "(e.g. https://proxmox.local:8006)"
            )
        if not (
            self.environ.get("PROXMOX_VE_API_TOKEN")
            or self.environ.get("PROXMOX_VE_USERNAME")
        ):
            raise PreconditionError(
                "PROXMOX_VE_API_TOKEN or PROXMOX_VE_USERNAME environment variable is required"
            )

    def tfvars(self, spec: ClusterSpec) -> Dict[str, Any]:
        variables: Dict[str, Any] = {
            "cluster_name": spec.name,
            "proxmox_node": spec.provider.node,
            "bridge": spec.provider.bridge or "vmbr0",
            "datastore": spec.provider.datastore or "local-lvm",
            "vip_address": spec.provider.vip,
            "cp_count": spec.nodes.control_plane.count,
            "worker_count": spec.nodes.workers.count,
            "kubernetes_version": spec.kubernetes.version,
        }
        if spec.provider.vlan_tag > 0:
            variables["vlan_tag"] = spec.provider.vlan_tag
        return variables

    def candidates_from_outputs(
        self, spec: ClusterSpec, outputs: Dict[str, Any]
    ) -> EndpointCandidates:
        return EndpointCandidates(
            virtual_ip=outputs.get("vip_address") or spec.provider.vip or None,
            leader=self.leader_address(spec, outputs),
        )

    def initial_tls_sans(
        self, spec: ClusterSpec, candidates: EndpointCandidates
    ) -> List[str]:
        return [a for a in (spec.provider.vip, candidates.leader) if a]
