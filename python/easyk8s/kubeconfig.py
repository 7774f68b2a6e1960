"""
easyk8s/kubeconfig.py

Endpoint resolution and kubeconfig patching.

RKE2 writes its admin kubeconfig with a loopback (or node-local) server
address. Before it is usable from outside, the host of its single `server:`
line is replaced with the cluster's external endpoint:

  - resolve_endpoint: pick load balancer > virtual IP > leader address.
  - patch_kubeconfig: line-oriented rewrite of the server host only.
  - write_kubeconfig / save_kubeconfig / merge_kubeconfig: delivery to disk.

The patch is idempotent: patching an already patched bundle with the same
endpoint returns the same text.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
from typing import Any, Dict, List, Optional

import aiofiles
import yaml
from pydantic import BaseModel

from easyk8s.errors import ResolutionError
from easyk8s.models.nodes import Endpoint, EndpointCandidates
from easyk8s.utils.async_command_runner import CommandRunner, run_command
from easyk8s.utils.ephemeral_file import ephemeral_manager

logger = logging.getLogger(__name__)

_SERVER_LINE = re.compile(
    r"^(?P<prefix>[ \t]*server:[ \t]*(?P<quote>[\"']?))"
    r"(?P<scheme>[a-z][a-z0-9+.-]*://)"
    r"(?P<host>\[[^\]]+\]|[^\s:/]+)"
    r"(?P<rest>.*)$",
    re.MULTILINE,
)


class KubeconfigResult(BaseModel):
    """Where a kubeconfig was written and whether its server line was patched."""

    path: str
    patched: bool
    endpoint: Optional[Endpoint] = None
    warning: Optional[str] = None


def resolve_endpoint(candidates: EndpointCandidates, port: int = 6443) -> Endpoint:
    """Select exactly one API endpoint, highest priority first.

    Raises:
        ResolutionError: If no candidate is available.
    """
    for address in (candidates.load_balancer, candidates.virtual_ip, candidates.leader):
        if address:
            return Endpoint(address=address, port=port)
    raise ResolutionError("no load balancer, virtual IP or leader address available")


def _format_host(address: str) -> str:
    if ":" in address and not address.startswith("["):
        return f"[{address}]"
    return address


def patch_kubeconfig(raw: str, endpoint: Endpoint) -> str:
    """Replace the host of the single `server:` line with `endpoint.address`.

    Indentation, quoting, scheme, port and every other line are left untouched.

    Raises:
        ValueError: If the bundle does not contain exactly one server line.
    """
    matches = list(_SERVER_LINE.finditer(raw))
    if len(matches) != 1:
        raise ValueError(
            f"expected exactly one server line in kubeconfig, found {len(matches)}"
        )

    match = matches[0]
    replacement = (
        match.group("prefix")
        + match.group("scheme")
        + _format_host(endpoint.address)
        + match.group("rest")
    )
    return raw[: match.start()] + replacement + raw[match.end() :]


def server_url(raw: str) -> Optional[str]:
    """Return the server URL declared in a kubeconfig, if any."""
    match = _SERVER_LINE.search(raw)
    if match is None:
        return None
    rest = match.group("rest").strip()
    quote = match.group("quote")
    if quote and rest.endswith(quote):
        rest = rest[: -len(quote)]
    return match.group("scheme") + match.group("host") + rest


async def write_kubeconfig(path: str, content: str) -> str:
    """Write `content` to `path` (~ expanded) with mode 0600 and return the path."""
    path = os.path.expanduser(path)
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    async with aiofiles.open(path, "w", encoding="utf-8") as f:
        await f.write(content)
    os.chmod(path, 0o600)
    return path


async def save_kubeconfig(source_path: str, output_path: str) -> str:
    """Copy a fetched kubeconfig to `output_path`."""
    async with aiofiles.open(source_path, "r", encoding="utf-8") as f:
        content = await f.read()
    return await write_kubeconfig(output_path, content)


def context_name(cluster_name: str) -> str:
    return f"easyk8s-{cluster_name}"


def rename_entries(document: Dict[str, Any], new_name: str) -> Dict[str, Any]:
    """Give the cluster, user and context of a single-cluster kubeconfig one name.

    RKE2 names all three `default`, which collides with every other RKE2
    cluster on merge.
    """
    renamed = dict(document)
    for section in ("clusters", "users", "contexts"):
        entries: List[Dict[str, Any]] = renamed.get(section) or []
        renamed[section] = [{**entry, "name": new_name} for entry in entries]
    renamed["contexts"] = [
        {**entry, "context": {**entry.get("context", {}), "cluster": new_name, "user": new_name}}
        for entry in renamed["contexts"]
    ]
    renamed["current-context"] = new_name
    return renamed


async def merge_kubeconfig(
    source_path: str,
    cluster_name: str,
    *,
    kube_config: str = "~/.kube/config",
    set_context: bool = False,
    runner: Optional[CommandRunner] = None,
) -> str:
    """Merge a cluster kubeconfig into `kube_config` and return the context name.

    The existing file is backed up to `<kube_config>.backup` first. The merge
    itself is done by `kubectl config view --flatten`.
    """
    target = os.path.expanduser(kube_config)
    os.makedirs(os.path.dirname(target), mode=0o755, exist_ok=True)
    if os.path.exists(target):
        shutil.copyfile(target, target + ".backup")
        os.chmod(target + ".backup", 0o600)
        logger.info("Backed up %s to %s.backup", target, target)

    name = context_name(cluster_name)
    async with aiofiles.open(source_path, "r", encoding="utf-8") as f:
        document = yaml.safe_load(await f.read()) or {}

    async with ephemeral_manager("kubeconfig.yaml", prefix="kubecfg-") as tmp_path:
        await write_kubeconfig(
            tmp_path, yaml.safe_dump(rename_entries(document, name), sort_keys=False)
        )
        sources = [target, tmp_path] if os.path.exists(target) else [tmp_path]
        merged = await run_command(
            ["kubectl", "config", "view", "--flatten"],
            runner=runner,
            env={"KUBECONFIG": os.pathsep.join(sources)},
        )

    await write_kubeconfig(target, merged + "\n")

    if set_context:
        await run_command(
            ["kubectl", "config", "use-context", name],
            runner=runner,
            env={"KUBECONFIG": target},
        )
    return name
