"""
easyk8s/providers/aws.py

AWS backend: EC2 instances behind an optional Network Load Balancer.

The NLB DNS name only exists after apply, so it is not in the API server
certificate the nodes generate at first boot. Identity convergence adds it
through AWS Systems Manager. RKE2 uploads its kubeconfig to the cluster's S3
bucket, which is where get_kubeconfig reads it from.

Tofu outputs read: control_plane_instance_ids, worker_instance_ids,
control_plane_private_ips, worker_private_ips, nlb_dns_name.
"""

from __future__ import annotations

import ipaddress
import json
import logging
import os
import re
from typing import Any, ClassVar, Dict, List, Optional

from easyk8s.errors import BackendError, PreconditionError
from easyk8s.models.cluster import ClusterSpec
from easyk8s.models.nodes import EndpointCandidates, Fleet, build_node_refs
from easyk8s.providers.base import TofuProvider
from easyk8s.remote.channel import RemoteCommandChannel
from easyk8s.remote.ssm import SSMChannel
from easyk8s.utils.async_command_runner import CommandError, run_command
from easyk8s.utils.terraform import output_value

logger = logging.getLogger(__name__)

AWS_REGIONS = frozenset(
    {
        "us-east-1",
        "us-east-2",
        "us-west-1",
        "us-west-2",
        "af-south-1",
        "ap-east-1",
        "ap-south-1",
        "ap-south-2",
        "ap-southeast-1",
        "ap-southeast-2",
        "ap-southeast-3",
        "ap-southeast-4",
        "ap-southeast-5",
        "ap-northeast-1",
        "ap-northeast-2",
        "ap-northeast-3",
        "ca-central-1",
        "ca-west-1",
        "eu-central-1",
        "eu-central-2",
        "eu-west-1",
        "eu-west-2",
        "eu-west-3",
        "eu-south-1",
        "eu-south-2",
        "eu-north-1",
        "il-central-1",
        "me-south-1",
        "me-central-1",
        "sa-east-1",
    }
)

INSTANCE_TYPE_PATTERN = re.compile(r"^[a-z][a-z0-9]*\.[a-z0-9]+$")

_PRIVATE_RANGES = [
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
]

_CREDENTIAL_ENV = (
    "AWS_ACCESS_KEY_ID",
    "AWS_PROFILE",
    "AWS_WEB_IDENTITY_TOKEN_FILE",
    "AWS_CONTAINER_CREDENTIALS_FULL_URI",
    "AWS_CONTAINER_CREDENTIALS_RELATIVE_URI",
)

BUCKET_ENCRYPTION = json.dumps(
    {
        "Rules": [
            {
                "ApplyServerSideEncryptionByDefault": {"SSEAlgorithm": "AES256"},
                "BucketKeyEnabled": True,
            }
        ]
    }
)


def validate_vpc_cidr(cidr: str) -> None:
    """The VPC CIDR must be RFC 1918 and between /16 and /24.

    Raises:
        PreconditionError: If it is not.
    """
    if not cidr:
        raise PreconditionError("VPC CIDR is required")
    try:
        network = ipaddress.ip_network(cidr, strict=False)
    except ValueError as exc:
        raise PreconditionError(f"invalid VPC CIDR {cidr!r}: {exc}") from exc

    if network.version != 4:
        raise PreconditionError(f"VPC CIDR {cidr!r} must be IPv4")
    if not 16 <= network.prefixlen <= 24:
        raise PreconditionError(
            f"VPC CIDR prefix length must be between /16 and /24, got /{network.prefixlen}"
        )
    if not any(network.network_address in r for r in _PRIVATE_RANGES):
        raise PreconditionError(
            f"VPC CIDR {cidr!r} must be in a private range "
            "(10.0.0.0/8, 172.16.0.0/12, 192.168.0.0/16)"
        )


def validate_instance_type(role: str, instance_type: str) -> None:
    if not instance_type:
        raise PreconditionError(f"{role} instance type is required")
    if not INSTANCE_TYPE_PATTERN.match(instance_type):
        raise PreconditionError(
            f"invalid {role} instance type {instance_type!r}: "
            "must match AWS format (e.g. t3.medium, m5.xlarge)"
        )


def _str_list(outputs: Dict[str, Any], name: str) -> List[str]:
    if outputs.get(name) is None:
        return []
    return output_value(outputs, name, List[str])


class AWSProvider(TofuProvider):
    """EC2 + NLB, converged through SSM."""

    name = "aws"
    required_tools: ClassVar[List[str]] = ["kubectl", "aws"]
    cni = "cilium"

    # ----- validation ----------------------------------------------------

    def validate_backend(self, spec: ClusterSpec) -> None:
        region = spec.provider.region
        if not region:
            raise PreconditionError("AWS region is required")
        if region not in AWS_REGIONS:
            raise PreconditionError(f"invalid AWS region {region!r}")
        validate_vpc_cidr(spec.provider.vpc_cidr)
        validate_instance_type("control plane", spec.nodes.control_plane.instance_type)
        validate_instance_type("worker", spec.nodes.workers.instance_type)

    def check_credentials(self, spec: ClusterSpec) -> None:
        if any(self.environ.get(var) for var in _CREDENTIAL_ENV):
            return
        home = self.environ.get("HOME", "")
        candidates = [
            self.environ.get("AWS_SHARED_CREDENTIALS_FILE", ""),
            self.environ.get("AWS_CONFIG_FILE", ""),
            os.path.join(home, ".aws", "credentials") if home else "",
            os.path.join(home, ".aws", "config") if home else "",
        ]
        if any(path and os.path.isfile(path) for path in candidates):
            return
        raise PreconditionError(
            "AWS credentials not found. Configure them with `aws configure` "
            "or set AWS_ACCESS_KEY_ID / AWS_PROFILE"
        )

    # ----- tofu ----------------------------------------------------------

    def state_bucket(self, spec: ClusterSpec) -> str:
        return f"easyk8s-{spec.name}-state"

    def tfvars(self, spec: ClusterSpec) -> Dict[str, Any]:
        return {
            "cluster_name": spec.name,
            "environment": "production",
            "aws_region": spec.provider.region,
            "vpc_cidr": spec.provider.vpc_cidr,
            "control_plane_count": spec.nodes.control_plane.count,
            "control_plane_instance_type": spec.nodes.control_plane.instance_type,
            "worker_count": spec.nodes.workers.count,
            "worker_instance_type": spec.nodes.workers.instance_type,
            "kubernetes_version": spec.kubernetes.version,
            "kubernetes_distribution": spec.kubernetes.distribution,
            "state_bucket": self.state_bucket(spec),
            "enable_nlb": spec.provider.load_balancer,
            "enable_cloudwatch_logs": True,
            "enable_session_manager": True,
            "enable_encryption": True,
        }

    def tofu_env(self, spec: ClusterSpec) -> Dict[str, str]:
        return {
            "AWS_REGION": spec.provider.region,
            "AWS_DEFAULT_REGION": spec.provider.region,
        }

    async def _aws(
        self, spec: ClusterSpec, *args: str, retries: Optional[int] = None
    ) -> str:
        return await run_command(
            ["aws", *args, "--region", spec.provider.region],
            runner=self.runner,
            retries=self.settings.command_retries if retries is None else retries,
        )

    async def _bucket_exists(self, spec: ClusterSpec, bucket: str) -> bool:
        try:
            await self._aws(spec, "s3", "ls", f"s3://{bucket}", retries=1)
        except CommandError:
            return False
        return True

    async def before_apply(self, spec: ClusterSpec) -> None:
        await self.ensure_state_bucket(spec)

    async def ensure_state_bucket(self, spec: ClusterSpec) -> None:
        """Create the kubeconfig bucket if missing, with encryption and versioning.

        Raises:
            BackendError: If the bucket cannot be created.
        """
        bucket = self.state_bucket(spec)
        if await self._bucket_exists(spec, bucket):
            logger.info("[S3] Bucket already exists: %s", bucket)
            return

        logger.info("[S3] Creating bucket: %s", bucket)
        try:
            await self._aws(spec, "s3", "mb", f"s3://{bucket}")
        except CommandError as exc:
            raise BackendError(f"failed to create S3 bucket {bucket}: {exc}") from exc

        for label, args in (
            (
                "encryption",
                [
                    "s3api",
                    "put-bucket-encryption",
                    "--bucket",
                    bucket,
                    "--server-side-encryption-configuration",
                    BUCKET_ENCRYPTION,
                ],
            ),
            (
                "versioning",
                [
                    "s3api",
                    "put-bucket-versioning",
                    "--bucket",
                    bucket,
                    "--versioning-configuration",
                    "Status=Enabled",
                ],
            ),
        ):
            try:
                await self._aws(spec, *args)
            except CommandError as exc:
                logger.warning("Failed to enable %s on %s: %s", label, bucket, exc)

    # ----- outputs -------------------------------------------------------

    def fleet_from_outputs(self, spec: ClusterSpec, outputs: Dict[str, Any]) -> Fleet:
        try:
            cp_ids = _str_list(outputs, "control_plane_instance_ids")
            worker_ids = _str_list(outputs, "worker_instance_ids")
            cp_ips = _str_list(outputs, "control_plane_private_ips") or cp_ids
            worker_ips = _str_list(outputs, "worker_private_ips") or worker_ids
            return Fleet.from_groups(
                build_node_refs(cp_ids, cp_ips, control_plane=True),
                build_node_refs(worker_ids, worker_ips, control_plane=False),
            )
        except ValueError as exc:
            raise BackendError(f"cannot build fleet from tofu outputs: {exc}") from exc

    def candidates_from_outputs(
        self, spec: ClusterSpec, outputs: Dict[str, Any]
    ) -> EndpointCandidates:
        cp_ips = _str_list(outputs, "control_plane_private_ips")
        nlb: Optional[str] = outputs.get("nlb_dns_name") or None
        return EndpointCandidates(
            load_balancer=nlb if spec.provider.load_balancer else None,
            leader=cp_ips[0] if cp_ips else None,
        )

    # ----- nodes ---------------------------------------------------------

    async def remote_channel(
        self, spec: ClusterSpec, outputs: Dict[str, Any]
    ) -> RemoteCommandChannel:
        return SSMChannel(
            spec.provider.region,
            runner=self.runner,
            retries=self.settings.command_retries,
            sleep=self.sleep,
        )

    async def fetch_raw_kubeconfig(
        self, spec: ClusterSpec, outputs: Dict[str, Any]
    ) -> str:
        source = f"s3://{self.state_bucket(spec)}/kubeconfig/{spec.name}/rke2.yaml"
        try:
            return await self._aws(spec, "s3", "cp", source, "-")
        except CommandError as exc:
            raise BackendError(f"failed to download kubeconfig from {source}: {exc}") from exc
