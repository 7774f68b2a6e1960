"""
easyk8s/providers/ssh_backed.py

Shared behaviour of backends whose nodes are reached over SSH (Hetzner,
Proxmox). Tofu generates the cluster's SSH key pair and exposes the private
key as the `ssh_private_key` output; node addresses come from
`control_plane_ips` / `worker_ips`, falling back to `first_cp_ip`.
Nodes are identified by their address.
"""

from __future__ import annotations

from typing import Any, ClassVar, Dict, List, Optional

from easyk8s.bootstrap.scripts import RKE2_KUBECONFIG
from easyk8s.errors import BackendError
from easyk8s.models.cluster import ClusterSpec
from easyk8s.models.nodes import Fleet, build_node_refs
from easyk8s.providers.base import TofuProvider
from easyk8s.remote.ssh import SSHChannel
from easyk8s.utils.terraform import output_value


class SSHBackedProvider(TofuProvider):
    required_tools: ClassVar[List[str]] = ["kubectl", "ssh"]

    def _addresses(self, outputs: Dict[str, Any], name: str) -> List[str]:
        if outputs.get(name) is None:
            return []
        return output_value(outputs, name, List[str])

    def fleet_from_outputs(self, spec: ClusterSpec, outputs: Dict[str, Any]) -> Fleet:
        try:
            cp_ips = self._addresses(outputs, "control_plane_ips")
            if not cp_ips and outputs.get("first_cp_ip"):
                cp_ips = [output_value(outputs, "first_cp_ip", str)]
            worker_ips = self._addresses(outputs, "worker_ips")
            return Fleet.from_groups(
                build_node_refs(cp_ips, cp_ips, control_plane=True),
                build_node_refs(worker_ips, worker_ips, control_plane=False),
            )
        except ValueError as exc:
            raise BackendError(f"cannot build fleet from tofu outputs: {exc}") from exc

    def leader_address(self, spec: ClusterSpec, outputs: Dict[str, Any]) -> Optional[str]:
        """The fleet leader's address, or None when the outputs name no nodes."""
        try:
            return self.fleet_from_outputs(spec, outputs).leader.address
        except BackendError:
            return None

    async def remote_channel(
        self, spec: ClusterSpec, outputs: Dict[str, Any]
    ) -> SSHChannel:
        try:
            private_key = output_value(outputs, "ssh_private_key", str)
        except (KeyError, ValueError) as exc:
            raise BackendError(f"cannot read SSH private key: {exc}") from exc
        return SSHChannel(
            private_key,
            user=self.settings.ssh_user,
            connect_timeout=self.settings.ssh_connect_timeout,
            runner=self.runner,
            sleep=self.sleep,
        )

    async def fetch_raw_kubeconfig(
        self, spec: ClusterSpec, outputs: Dict[str, Any]
    ) -> str:
        fleet = self.fleet_from_outputs(spec, outputs)
        channel = await self.remote_channel(spec, outputs)
        return await channel.read_file(fleet.leader, RKE2_KUBECONFIG)
