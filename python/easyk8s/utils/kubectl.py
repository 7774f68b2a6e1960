"""
easyk8s/utils/kubectl.py

Read-only kubectl queries against a cluster, addressed by an explicit
kubeconfig path (passed through the KUBECONFIG environment variable):

  - kubectl_get: run `kubectl get ... -o json` and parse the result.
  - check_*: one health query each, returning a message on success and
    raising CheckError when the cluster fails the check.
  - collect_cluster_status: node and component summary for `status`.

Whether a failed check is fatal or only a warning is decided by the
validation pipeline, not here.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel

from easyk8s.errors import CheckError
from easyk8s.models.k8s import NodeList, PodList
from easyk8s.models.status import ClusterStatus, ComponentStatus
from easyk8s.models.validator import parse_json_as
from easyk8s.utils.async_command_runner import CommandError, CommandRunner, run_command

M = TypeVar("M", bound=BaseModel)

KUBE_SYSTEM = "kube-system"
DEFAULT_CNI = "canal"


async def run_kubectl(
    kubeconfig: str,
    args: List[str],
    *,
    runner: Optional[CommandRunner] = None,
    timeout: Optional[float] = 60.0,
) -> str:
    """Run `kubectl <args>` against `kubeconfig` and return stdout.

    Raises:
        CommandError: If kubectl fails.
    """
    return await run_command(
        ["kubectl", *args],
        runner=runner,
        env={"KUBECONFIG": kubeconfig},
        timeout=timeout,
    )


async def kubectl_get(
    kubeconfig: str,
    args: List[str],
    model: Type[M],
    *,
    runner: Optional[CommandRunner] = None,
) -> M:
    """`kubectl get <args> -o json`, validated into `model`.

    Raises:
        CommandError: If kubectl fails.
        ValueError: If the output does not parse.
    """
    raw = await run_kubectl(kubeconfig, ["get", *args, "-o", "json"], runner=runner)
    return parse_json_as(raw, model)


async def _pods(
    kubeconfig: str,
    runner: Optional[CommandRunner],
    what: str,
    *selector: str,
) -> PodList:
    try:
        return await kubectl_get(
            kubeconfig, ["pods", "-n", KUBE_SYSTEM, *selector], PodList, runner=runner
        )
    except (CommandError, ValueError) as exc:
        raise CheckError(f"failed to check {what}: {exc}") from exc


async def check_api_server(
    kubeconfig: str, *, runner: Optional[CommandRunner] = None
) -> str:
    try:
        await run_kubectl(kubeconfig, ["cluster-info"], runner=runner)
    except CommandError as exc:
        raise CheckError("API server is not responding") from exc
    return "API server is accessible"


async def check_nodes(kubeconfig: str, *, runner: Optional[CommandRunner] = None) -> str:
    try:
        nodes = await kubectl_get(kubeconfig, ["nodes"], NodeList, runner=runner)
    except (CommandError, ValueError) as exc:
        raise CheckError(f"failed to get nodes: {exc}") from exc

    total = len(nodes.items)
    ready = sum(1 for n in nodes.items if n.is_ready)
    if total == 0:
        raise CheckError("no nodes registered")
    if ready < total:
        raise CheckError(f"{ready}/{total} nodes ready")
    return f"All {total} nodes are ready"


async def check_system_pods(
    kubeconfig: str, *, runner: Optional[CommandRunner] = None
) -> str:
    pods = await _pods(kubeconfig, runner, "system pods")
    completed = sum(1 for p in pods.items if p.is_completed)
    active = len(pods.items) - completed
    running = len(pods.running())
    if running < active:
        raise CheckError(f"{running}/{active} pods running")
    if completed:
        return f"All {active} system pods are running ({completed} completed jobs)"
    return f"All {active} system pods are running"


async def check_etcd(kubeconfig: str, *, runner: Optional[CommandRunner] = None) -> str:
    pods = await _pods(kubeconfig, runner, "etcd", "-l", "component=etcd")
    if not pods.items:
        # RKE2 may run etcd outside the pod API
        return "etcd is running on control plane nodes"
    running = len(pods.running())
    if running < len(pods.items):
        raise CheckError(f"{running}/{len(pods.items)} etcd members running")
    return f"etcd cluster healthy ({running} members)"


async def check_dns(kubeconfig: str, *, runner: Optional[CommandRunner] = None) -> str:
    pods = await _pods(kubeconfig, runner, "DNS", "-l", "k8s-app=kube-dns")
    running = len(pods.running())
    if running == 0:
        raise CheckError("no DNS pods running")
    return f"DNS is working ({running} pods running)"


async def check_networking(
    kubeconfig: str,
    *,
    cni: str = DEFAULT_CNI,
    runner: Optional[CommandRunner] = None,
) -> str:
    pods = await _pods(kubeconfig, runner, "networking", "-l", f"k8s-app={cni}")
    running = len(pods.running())
    if running == 0:
        raise CheckError("no CNI pods running")
    return f"Pod networking is operational ({running} {cni} pods running)"


async def check_pod_scheduling(
    kubeconfig: str, *, runner: Optional[CommandRunner] = None
) -> str:
    try:
        pending = await kubectl_get(
            kubeconfig,
            ["pods", "--all-namespaces", "--field-selector=status.phase=Pending"],
            PodList,
            runner=runner,
        )
    except (CommandError, ValueError) as exc:
        raise CheckError(f"failed to check pod scheduling: {exc}") from exc
    if pending.items:
        raise CheckError(f"{len(pending.items)} pods are pending")
    return "Pod scheduling is working correctly"


def _component_of(pod_name: str, cni: str) -> str:
    for component in ("coredns", cni, "etcd", "kube-apiserver"):
        if component in pod_name:
            return component
    return "other"


async def collect_cluster_status(
    kubeconfig: str,
    endpoint: str,
    *,
    cni: str = DEFAULT_CNI,
    runner: Optional[CommandRunner] = None,
) -> ClusterStatus:
    """Summarise node readiness and kube-system component health.

    An unreachable API server yields a not-ready status rather than an error.
    """
    status = ClusterStatus(endpoint=endpoint)

    try:
        nodes = await kubectl_get(kubeconfig, ["nodes"], NodeList, runner=runner)
    except (CommandError, ValueError):
        status.message = "Unable to connect to API server"
        return status

    control_plane = [n for n in nodes.items if n.is_control_plane]
    workers = [n for n in nodes.items if not n.is_control_plane]
    status.total_nodes = len(nodes.items)
    status.ready_nodes = sum(1 for n in nodes.items if n.is_ready)
    status.control_plane_nodes = len(control_plane)
    status.control_plane_ready = sum(1 for n in control_plane if n.is_ready)
    status.worker_nodes = len(workers)
    status.workers_ready = sum(1 for n in workers if n.is_ready)

    try:
        pods = await kubectl_get(
            kubeconfig, ["pods", "-n", KUBE_SYSTEM], PodList, runner=runner
        )
    except (CommandError, ValueError):
        pods = PodList()

    totals: Dict[str, int] = {}
    running: Dict[str, int] = {}
    for pod in pods.items:
        if pod.is_completed:
            continue
        component = _component_of(pod.metadata.name, cni)
        totals[component] = totals.get(component, 0) + 1
        running[component] = running.get(component, 0) + int(pod.is_running)

    status.components = [
        ComponentStatus(
            name=name,
            ready=running[name] == total,
            message=f"{running[name]}/{total} running",
        )
        for name, total in sorted(totals.items())
    ]

    status.ready = (
        status.control_plane_nodes > 0
        and status.worker_nodes > 0
        and status.control_plane_ready == status.control_plane_nodes
        and status.workers_ready == status.worker_nodes
    )
    status.message = "Cluster is healthy" if status.ready else "Cluster is not fully ready"
    return status
