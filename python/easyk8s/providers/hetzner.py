"""
easyk8s/providers/hetzner.py

Hetzner Cloud backend. The load balancer is created before the servers, so
its IPv4 address is already in the initial tls-san list and identity
convergence is never needed.
"""

from __future__ import annotations

from typing import Any, Dict, List

from easyk8s.errors import PreconditionError
from easyk8s.models.cluster import ClusterSpec
from easyk8s.models.nodes import EndpointCandidates
from easyk8s.providers.ssh_backed import SSHBackedProvider

HETZNER_LOCATIONS = {
    "fsn1": "Falkenstein, Germany",
    "nbg1": "Nuremberg, Germany",
    "hel1": "Helsinki, Finland",
    "ash": "Ashburn, USA",
    "hil": "Hillsboro, USA",
}


class HetznerProvider(SSHBackedProvider):
    name = "hetzner"

    def validate_backend(self, spec: ClusterSpec) -> None:
        location = spec.location
        if not location:
            raise PreconditionError(
                "Hetzner location is required (set provider.location or provider.region)"
            )
        if location not in HETZNER_LOCATIONS:
            raise PreconditionError(
                f"invalid Hetzner location {location!r} "
                f"(valid: {', '.join(HETZNER_LOCATIONS)})"
            )
        if not spec.nodes.control_plane.instance_type:
            raise PreconditionError("control plane server type is required (e.g., cx22)")
        if spec.nodes.workers.count > 0 and not spec.nodes.workers.instance_type:
            raise PreconditionError("worker server type is required (e.g., cx32)")

    def check_credentials(self, spec: ClusterSpec) -> None:
        if not self.environ.get("HCLOUD_TOKEN"):
            raise PreconditionError(
                "HCLOUD_TOKEN environment variable is required "
                "(create one in the Hetzner Cloud console under API tokens)"
            )

    def tfvars(self, spec: ClusterSpec) -> Dict[str, Any]:
        return {
            "cluster_name": spec.name,
            "location": spec.location,
            "server_type_cp": spec.nodes.control_plane.instance_type,
            "server_type_worker": spec.nodes.workers.instance_type,
            "cp_count": spec.nodes.control_plane.count,
            "worker_count": spec.nodes.workers.count,
            "network_cidr": spec.provider.vpc_cidr or "10.0.0.0/16",
            "kubernetes_version": spec.kubernetes.version,
            "enable_load_balancer": spec.provider.load_balancer,
        }

    def candidates_from_outputs(
        self, spec: ClusterSpec, outputs: Dict[str, Any]
    ) -> EndpointCandidates:
        return EndpointCandidates(
            load_balancer=outputs.get("lb_ipv4") or None,
            leader=self.leader_address(spec, outputs),
        )

    def initial_tls_sans(
        self, spec: ClusterSpec, candidates: EndpointCandidates
    ) -> List[str]:
        return [a for a in (candidates.load_balancer, candidates.leader) if a]
