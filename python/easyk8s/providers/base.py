"""
easyk8s/providers/base.py

The Provider contract and the shared OpenTofu-driven implementation.

Provider lists every operation callers may use. TofuProvider implements them
once, on top of a handful of backend hooks:

  - validate_backend / check_credentials: offline spec and environment checks.
  - tfvars / tofu_env / before_apply: what goes into a tofu run.
  - fleet_from_outputs / candidates_from_outputs / initial_tls_sans:
    how the tofu outputs map onto NodeRefs and endpoint candidates.
  - remote_channel / fetch_raw_kubeconfig: how nodes are reached.

Every caller that needs a kubeconfig (get_kubeconfig, get_cluster_status,
the validate_* checks) goes through the same fetch -> resolve -> patch path
in `get_kubeconfig`.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from abc import ABC, abstractmethod
from functools import partial
from typing import (
    Any,
    Awaitable,
    Callable,
    ClassVar,
    Dict,
    List,
    Mapping,
    Optional,
)

import aiofiles

from easyk8s.bootstrap.sequencer import BootstrapReport, BootstrapSequencer
from easyk8s.errors import BackendError, PreconditionError, ResolutionError
from easyk8s.kubeconfig import (
    KubeconfigResult,
    patch_kubeconfig,
    resolve_endpoint,
    server_url,
    write_kubeconfig,
)
from easyk8s.models.cluster import ClusterSpec
from easyk8s.models.nodes import EndpointCandidates, Fleet
from easyk8s.models.settings import EasyK8sSettings
from easyk8s.models.status import ClusterStatus
from easyk8s.remote.channel import RemoteCommandChannel
from easyk8s.utils import kubectl
from easyk8s.utils.async_command_runner import (
    CommandError,
    CommandRunner,
    SubprocessRunner,
)
from easyk8s.utils.terraform import (
    apply_tofu,
    destroy_tofu,
    get_outputs,
    init_tofu,
    plan_tofu,
)
from easyk8s.utils.workdir import (
    prepare_workdir,
    remove_cluster_dir,
    state_exists,
    template_dir,
    write_tfvars,
)

logger = logging.getLogger(__name__)

RAW_KUBECONFIG = "rke2.raw.yaml"
PATCHED_KUBECONFIG = "kubeconfig.yaml"


class Provider(ABC):
    """The operations every backend offers, implemented or not."""

    name: ClassVar[str]

    @abstractmethod
    async def validate_config(self, spec: ClusterSpec) -> None:
        """Check the spec and local environment without contacting any backend.

        Raises:
            PreconditionError: On the first problem found.
        """

    @abstractmethod
    async def create_infrastructure(self, spec: ClusterSpec) -> BootstrapReport:
        """Provision and converge the cluster."""

    @abstractmethod
    async def destroy_infrastructure(
        self, spec: ClusterSpec, cleanup: bool = False
    ) -> None:
        """Tear the cluster down; with `cleanup` also remove local state."""

    @abstractmethod
    async def get_kubeconfig(self, spec: ClusterSpec) -> KubeconfigResult:
        """Fetch the cluster's kubeconfig, patched to the external endpoint."""

    @abstractmethod
    async def get_cluster_status(self, spec: ClusterSpec) -> ClusterStatus:
        """Node and component health."""

    @abstractmethod
    async def validate_api_server(self, spec: ClusterSpec) -> str: ...

    @abstractmethod
    async def validate_nodes(self, spec: ClusterSpec) -> str: ...

    @abstractmethod
    async def validate_system_pods(self, spec: ClusterSpec) -> str: ...

    @abstractmethod
    async def validate_etcd(self, spec: ClusterSpec) -> str: ...

    @abstractmethod
    async def validate_dns(self, spec: ClusterSpec) -> str: ...

    @abstractmethod
    async def validate_networking(self, spec: ClusterSpec) -> str: ...

    @abstractmethod
    async def validate_pod_scheduling(self, spec: ClusterSpec) -> str: ...


def validate_common(spec: ClusterSpec, provider_name: str) -> None:
    """Rules shared by every backend.

    Raises:
        PreconditionError: If the spec breaks one of them.
    """
    if spec.provider.type != provider_name:
        raise PreconditionError(f"provider type must be '{provider_name}'")
    if not spec.name.strip():
        raise PreconditionError("cluster name is required")
    if os.sep in spec.name or spec.name in (".", ".."):
        raise PreconditionError(f"invalid cluster name {spec.name!r}")

    count = spec.nodes.control_plane.count
    if count < 1:
        raise PreconditionError("at least one control plane node is required")
    if count % 2 == 0:
        raise PreconditionError(
            f"control plane count must be odd for etcd quorum, got {count}"
        )
    if spec.nodes.workers.count < 0:
        raise PreconditionError("worker count cannot be negative")


class TofuProvider(Provider):
    """Provider whose infrastructure is an OpenTofu module tree."""

    required_tools: ClassVar[List[str]] = ["kubectl"]
    cni: ClassVar[str] = kubectl.DEFAULT_CNI

    def __init__(
        self,
        settings: Optional[EasyK8sSettings] = None,
        runner: Optional[CommandRunner] = None,
        *,
        environ: Optional[Mapping[str, str]] = None,
        which: Callable[[str], Optional[str]] = shutil.which,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or EasyK8sSettings()
        self.runner = runner or SubprocessRunner()
        self.environ = os.environ if environ is None else environ
        self.which = which
        self.sleep = sleep

    # ----- backend hooks -------------------------------------------------

    @abstractmethod
    def validate_backend(self, spec: ClusterSpec) -> None:
        """Backend-specific spec rules. Raises PreconditionError."""

    @abstractmethod
    def check_credentials(self, spec: ClusterSpec) -> None:
        """Verify credentials are present locally. Raises PreconditionError."""

    @abstractmethod
    def tfvars(self, spec: ClusterSpec) -> Dict[str, Any]:
        """Flat variables map written to terraform.tfvars.json."""

    def tofu_env(self, spec: ClusterSpec) -> Dict[str, str]:
        return {}

    async def before_apply(self, spec: ClusterSpec) -> None:
        """Runs after the working directory is prepared and before tofu init."""

    @abstractmethod
    def fleet_from_outputs(self, spec: ClusterSpec, outputs: Dict[str, Any]) -> Fleet:
        """Build the fleet from tofu outputs."""

    @abstractmethod
    def candidates_from_outputs(
        self, spec: ClusterSpec, outputs: Dict[str, Any]
    ) -> EndpointCandidates:
        """Extract endpoint candidates from tofu outputs."""

    def initial_tls_sans(
        self, spec: ClusterSpec, candidates: EndpointCandidates
    ) -> List[str]:
        """Addresses already present in the nodes' TLS material at first boot."""
        return [a for a in (candidates.leader,) if a]

    @abstractmethod
    async def remote_channel(
        self, spec: ClusterSpec, outputs: Dict[str, Any]
    ) -> RemoteCommandChannel:
        """The channel used to run scripts on this backend's nodes."""

    @abstractmethod
    async def fetch_raw_kubeconfig(
        self, spec: ClusterSpec, outputs: Dict[str, Any]
    ) -> str:
        """Return the unpatched kubeconfig written by RKE2 on the leader."""

    # ----- local state ---------------------------------------------------

    def cluster_dir(self, spec: ClusterSpec) -> str:
        return self.settings.cluster_dir(spec.name)

    def work_dir(self, spec: ClusterSpec) -> str:
        return self.settings.terraform_dir(spec.name)

    def _tofu_kwargs(self, spec: ClusterSpec) -> Dict[str, Any]:
        return {
            "binary": self.settings.tofu_binary,
            "runner": self.runner,
            "env": self.tofu_env(spec),
        }

    # ----- validation ----------------------------------------------------

    async def validate_config(self, spec: ClusterSpec) -> None:
        validate_common(spec, self.name)
        self.validate_backend(spec)
        self.check_credentials(spec)

        for tool in [self.settings.tofu_binary, *self.required_tools]:
            if self.which(tool) is None:
                raise PreconditionError(f"required tool not found on PATH: {tool}")

        source = template_dir(self.settings.modules_dir, self.name)
        if not os.path.isdir(source):
            raise PreconditionError(f"provider templates not found: {source}")

    # ----- lifecycle -----------------------------------------------------

    async def provision(self, spec: ClusterSpec) -> None:
        """Prepare the working directory, then tofu init, plan and apply.

        Raises:
            BackendError: If any tofu step fails.
        """
        work_dir = prepare_workdir(
            self.work_dir(spec), template_dir(self.settings.modules_dir, self.name)
        )
        await write_tfvars(work_dir, self.tfvars(spec))
        await self.before_apply(spec)

        kwargs = self._tofu_kwargs(spec)
        # only init is retried
        steps = (
            ("init", partial(init_tofu, retries=self.settings.command_retries)),
            ("plan", plan_tofu),
            ("apply", apply_tofu),
        )
        for label, step in steps:
            logger.info("[%s] tofu %s", spec.name, label)
            try:
                await step(work_dir, **kwargs)
            except CommandError as exc:
                raise BackendError(f"tofu {label} failed: {exc}") from exc

    async def read_outputs(self, spec: ClusterSpec) -> Dict[str, Any]:
        """All tofu outputs of the cluster.

        Raises:
            BackendError: If tofu cannot report its outputs.
        """
        try:
            return await get_outputs(
                self.work_dir(spec),
                retries=self.settings.command_retries,
                **self._tofu_kwargs(spec),
            )
        except (CommandError, ValueError) as exc:
            raise BackendError(f"cannot read tofu outputs: {exc}") from exc

    async def create_infrastructure(self, spec: ClusterSpec) -> BootstrapReport:
        sequencer = BootstrapSequencer(self, self.settings, sleep=self.sleep)
        return await sequencer.run(spec)

    async def destroy_infrastructure(
        self, spec: ClusterSpec, cleanup: bool = False
    ) -> None:
        work_dir = self.work_dir(spec)
        if not state_exists(work_dir):
            logger.warning(
                "No tofu state found in %s; infrastructure may already be destroyed",
                work_dir,
            )
        else:
            logger.info("[%s] tofu destroy", spec.name)
            try:
                await destroy_tofu(work_dir, **self._tofu_kwargs(spec))
            except CommandError as exc:
                raise BackendError(f"tofu destroy failed: {exc}") from exc

        if cleanup:
            remove_cluster_dir(self.cluster_dir(spec))

    # ----- kubeconfig ----------------------------------------------------

    async def get_kubeconfig(self, spec: ClusterSpec) -> KubeconfigResult:
        """Fetch, resolve and patch.

        If the endpoint cannot be resolved, or the bundle has no single
        server line to rewrite, the unpatched kubeconfig is returned with a
        warning.

        Raises:
            BackendError, RemoteExecutionError: If the raw kubeconfig cannot be
                fetched, or is empty.
        """
        outputs = await self.read_outputs(spec)
        raw = await self.fetch_raw_kubeconfig(spec, outputs)
        if not raw.strip():
            raise BackendError(f"fetched kubeconfig for {spec.name} is empty")
        if not raw.endswith("\n"):
            raw += "\n"
        cluster_dir = self.cluster_dir(spec)
        raw_path = await write_kubeconfig(os.path.join(cluster_dir, RAW_KUBECONFIG), raw)

        try:
            candidates = self.candidates_from_outputs(spec, outputs)
            endpoint = resolve_endpoint(candidates, self.settings.api_port)
        except ResolutionError as exc:
            logger.warning("Returning unpatched kubeconfig for %s: %s", spec.name, exc)
            return KubeconfigResult(path=raw_path, patched=False, warning=str(exc))

        try:
            patched = patch_kubeconfig(raw, endpoint)
        except ValueError as exc:
            logger.warning("Returning unpatched kubeconfig for %s: %s", spec.name, exc)
            return KubeconfigResult(path=raw_path, patched=False, warning=str(exc))

        path = await write_kubeconfig(
            os.path.join(cluster_dir, PATCHED_KUBECONFIG), patched
        )
        return KubeconfigResult(path=path, patched=True, endpoint=endpoint)

    async def get_cluster_status(self, spec: ClusterSpec) -> ClusterStatus:
        result = await self.get_kubeconfig(spec)
        if result.endpoint is not None:
            endpoint = result.endpoint.url
        else:
            async with aiofiles.open(result.path, "r", encoding="utf-8") as f:
                endpoint = server_url(await f.read()) or ""
        return await kubectl.collect_cluster_status(
            result.path, endpoint, cni=self.cni, runner=self.runner
        )

    # ----- health checks -------------------------------------------------

    async def _kubeconfig_path(self, spec: ClusterSpec) -> str:
        return (await self.get_kubeconfig(spec)).path

    async def validate_api_server(self, spec: ClusterSpec) -> str:
        path = await self._kubeconfig_path(spec)
        return await kubectl.check_api_server(path, runner=self.runner)

    async def validate_nodes(self, spec: ClusterSpec) -> str:
        path = await self._kubeconfig_path(spec)
        return await kubectl.check_nodes(path, runner=self.runner)

    async def validate_system_pods(self, spec: ClusterSpec) -> str:
        path = await self._kubeconfig_path(spec)
        return await kubectl.check_system_pods(path, runner=self.runner)

    async def validate_etcd(self, spec: ClusterSpec) -> str:
        path = await self._kubeconfig_path(spec)
        return await kubectl.check_etcd(path, runner=self.runner)

    async def validate_dns(self, spec: ClusterSpec) -> str:
        path = await self._kubeconfig_path(spec)
        return await kubectl.check_dns(path, runner=self.runner)

    async def validate_networking(self, spec: ClusterSpec) -> str:
        path = await self._kubeconfig_path(spec)
        return await kubectl.check_networking(path, cni=self.cni, runner=self.runner)

    async def validate_pod_scheduling(self, spec: ClusterSpec) -> str:
        path = await self._kubeconfig_path(spec)
        return await kubectl.check_pod_scheduling(path, runner=self.runner)
