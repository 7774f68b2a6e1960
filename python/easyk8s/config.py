"""
easyk8s/config.py

Reading and writing cluster.yaml files.

  - load_cluster_spec: parse YAML, apply defaults, validate into ClusterSpec.
  - save_cluster_spec: store a spec under `<state_root>/<name>/cluster.yaml`
    so later commands can find the cluster by name.
  - find_cluster_spec: load a stored spec by cluster name.
  - sample_cluster_config: an example cluster.yaml per backend.
"""

from __future__ import annotations

import os
from typing import Any, Dict, Optional

import aiofiles
import yaml
from pydantic import ValidationError

from easyk8s.errors import PreconditionError
from easyk8s.models.cluster import ClusterSpec
from easyk8s.models.settings import EasyK8sSettings

CLUSTER_FILE = "cluster.yaml"

DEFAULT_AWS_REGION = "us-east-1"
DEFAULT_VPC_CIDR = "10.0.0.0/16"
DEFAULT_DISTRIBUTION = "rke2"
DEFAULT_CP_INSTANCE_TYPE = "t3.medium"
DEFAULT_WORKER_INSTANCE_TYPE = "t3.large"


def apply_defaults(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Fill in the defaults a hand-written cluster.yaml may omit."""
    data = dict(raw)
    provider = dict(data.get("provider") or {})
    if provider.get("type") == "aws" and not provider.get("region"):
        provider["region"] = DEFAULT_AWS_REGION
    vpc = dict(provider.get("vpc") or {})
    if not vpc.get("cidr"):
        vpc["cidr"] = DEFAULT_VPC_CIDR
    provider["vpc"] = vpc
    data["provider"] = provider

    kubernetes = dict(data.get("kubernetes") or {})
    if not kubernetes.get("distribution"):
        kubernetes["distribution"] = DEFAULT_DISTRIBUTION
    data["kubernetes"] = kubernetes

    nodes = dict(data.get("nodes") or {})
    for key, default_type in (
        ("controlPlane", DEFAULT_CP_INSTANCE_TYPE),
        ("workers", DEFAULT_WORKER_INSTANCE_TYPE),
    ):
        group = dict(nodes.get(key) or {})
        # EC2 sizes only make sense on AWS
        if provider.get("type") == "aws" and not group.get("instanceType"):
            group["instanceType"] = default_type
        nodes[key] = group
    data["nodes"] = nodes
    return data


def parse_cluster_spec(text: str, source: str = "<string>") -> ClusterSpec:
    """Parse cluster YAML text into a ClusterSpec.

    Raises:
        PreconditionError: If the YAML is malformed or does not match the schema.
    """
    try:
        raw = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise PreconditionError(f"failed to parse {source}: {exc}") from exc
    if not isinstance(raw, dict):
        raise PreconditionError(f"{source} must contain a mapping")

    try:
        return ClusterSpec.model_validate(apply_defaults(raw))
    except ValidationError as exc:
        raise PreconditionError(f"invalid configuration in {source}: {exc}") from exc


async def load_cluster_spec(path: str) -> ClusterSpec:
    path = os.path.expanduser(path)
    try:
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            text = await f.read()
    except OSError as exc:
        raise PreconditionError(f"failed to read config file {path}: {exc}") from exc
    return parse_cluster_spec(text, path)


def dump_cluster_spec(spec: ClusterSpec) -> str:
    return yaml.safe_dump(
        spec.model_dump(mode="json", by_alias=True), sort_keys=False
    )


async def save_cluster_spec(
    spec: ClusterSpec, settings: Optional[EasyK8sSettings] = None
) -> str:
    settings = settings or EasyK8sSettings()
    cluster_dir = settings.cluster_dir(spec.name)
    os.makedirs(cluster_dir, mode=0o755, exist_ok=True)
    path = os.path.join(cluster_dir, CLUSTER_FILE)
    async with aiofiles.open(path, "w", encoding="utf-8") as f:
        await f.write(dump_cluster_spec(spec))
    return path


async def find_cluster_spec(
    name: str, settings: Optional[EasyK8sSettings] = None
) -> ClusterSpec:
    """Load the spec stored for cluster `name`.

    Raises:
        PreconditionError: If the cluster is unknown.
    """
    settings = settings or EasyK8sSettings()
    path = os.path.join(settings.cluster_dir(name), CLUSTER_FILE)
    if not os.path.isfile(path):
        raise PreconditionError(
            f"cluster {name!r} not found (expected {path}); run `easyk8s create` first"
        )
    return await load_cluster_spec(path)


_SAMPLE_PROVIDERS: Dict[str, Dict[str, Any]] = {
    "aws": {
        "type": "aws",
        "region": DEFAULT_AWS_REGION,
        "loadBalancer": True,
        "vpc": {"cidr": DEFAULT_VPC_CIDR},
    },
    "hetzner": {"type": "hetzner", "location": "fsn1"},
    "proxmox": {
        "type": "proxmox",
        "node": "pve",
        "vip": "192.168.1.100",
        "bridge": "vmbr0",
        "datastore": "local-lvm",
    },
}

_SAMPLE_INSTANCE_TYPES = {
    "aws": (DEFAULT_CP_INSTANCE_TYPE, DEFAULT_WORKER_INSTANCE_TYPE),
    "hetzner": ("cx22", "cx32"),
}


def sample_cluster_config(provider: str = "aws", name: str = "production") -> str:
    """Return an example cluster.yaml for `provider`, ready to be edited.

    Raises:
        PreconditionError: If there is no sample for `provider`.
    """
    if provider not in _SAMPLE_PROVIDERS:
        raise PreconditionError(
            f"no sample configuration for provider {provider!r} "
            f"(available: {', '.join(_SAMPLE_PROVIDERS)})"
        )

    control_plane: Dict[str, Any] = {"count": 3}
    workers: Dict[str, Any] = {"count": 3}
    if provider in _SAMPLE_INSTANCE_TYPES:
        control_plane["instanceType"], workers["instanceType"] = _SAMPLE_INSTANCE_TYPES[
            provider
        ]

    document = {
        "name": name,
        "provider": dict(_SAMPLE_PROVIDERS[provider]),
        "kubernetes": {"version": "v1.30.4+rke2r1", "distribution": DEFAULT_DISTRIBUTION},
        "nodes": {"controlPlane": control_plane, "workers": workers},
    }
    header = (
        "# Example cluster configuration\n"
        "# Save this to cluster.yaml and customize as needed\n\n"
    )
    return header + yaml.safe_dump(document, sort_keys=False)
