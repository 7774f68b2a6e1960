"""
easyk8s/providers/vsphere.py

VMware vSphere backend. Registered so it can be listed and selected, but
every operation raises ProviderNotImplementedError.
"""

from __future__ import annotations

from typing import NoReturn

from easyk8s.bootstrap.sequencer import BootstrapReport
from easyk8s.errors import ProviderNotImplementedError
from easyk8s.kubeconfig import KubeconfigResult
from easyk8s.models.cluster import ClusterSpec
from easyk8s.models.status import ClusterStatus
from easyk8s.providers.base import Provider


class VSphereProvider(Provider):
    name = "vsphere"

    def __init__(self, *args: object, **kwargs: object) -> None:
        pass

    def _unimplemented(self) -> NoReturn:
        raise ProviderNotImplementedError(self.name)

    async def validate_config(self, spec: ClusterSpec) -> None:
        self._unimplemented()

    async def create_infrastructure(self, spec: ClusterSpec) -> BootstrapReport:
        self._unimplemented()

    async def destroy_infrastructure(
        self, spec: ClusterSpec, cleanup: bool = False
    ) -> None:
        self._unimplemented()

    async def get_kubeconfig(self, spec: ClusterSpec) -> KubeconfigResult:
        self._unimplemented()

    async def get_cluster_status(self, spec: ClusterSpec) -> ClusterStatus:
        self._unimplemented()

    async def validate_api_server(self, spec: ClusterSpec) -> str:
        self._unimplemented()

    async def validate_nodes(self, spec: ClusterSpec) -> str:
        self._unimplemented()

    async def validate_system_pods(self, spec: ClusterSpec) -> str:
        self._unimplemented()

    async def validate_etcd(self, spec: ClusterSpec) -> str:
        self._unimplemented()

    async def validate_dns(self, spec: ClusterSpec) -> str:
        self._unimplemented()

    async def validate_networking(self, spec: ClusterSpec) -> str:
        self._unimplemented()

    async def validate_pod_scheduling(self, spec: ClusterSpec) -> str:
        self._unimplemented()
