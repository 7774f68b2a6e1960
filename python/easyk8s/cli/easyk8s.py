#!/usr/bin/env python3
"""
easyk8s/cli/easyk8s.py

Command-line entry point:

  providers   List the known backends.
  sample      Print an example cluster.yaml.
  create      Provision and bootstrap a cluster from a cluster.yaml.
  destroy     Tear a cluster down, optionally removing its local state.
  kubeconfig  Fetch the cluster's kubeconfig (save or merge).
  status      Print node and component health.
  validate    Run the health checks and print a verdict.

Clusters created here are found again by name under EASYK8S_STATE_ROOT.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from easyk8s.config import (
    find_cluster_spec,
    load_cluster_spec,
    sample_cluster_config,
    save_cluster_spec,
)
from easyk8s.errors import EasyK8sError, ProviderNotImplementedError
from easyk8s.kubeconfig import merge_kubeconfig, save_kubeconfig
from easyk8s.models.settings import EasyK8sSettings
from easyk8s.models.validation import CheckStatus, ValidationResult, Verdict
from easyk8s.providers import ProviderName, get_provider, provider_map
from easyk8s.providers.base import TofuProvider
from easyk8s.validation.pipeline import run_validation

_STATUS_MARK = {
    CheckStatus.passed: "PASS",
    CheckStatus.failed: "FAIL",
    CheckStatus.warning: "WARN",
    CheckStatus.skipped: "SKIP",
}

_VERDICT_TEXT = {
    Verdict.passed: "PASSED",
    Verdict.passed_with_warnings: "PASSED (with warnings)",
    Verdict.failed: "FAILED",
}


async def _run_providers(args: argparse.Namespace, settings: EasyK8sSettings) -> int:
    for name in ProviderName:
        implemented = issubclass(provider_map[name], TofuProvider)
        note = "" if implemented else " (not yet implemented)"
        print(f"{name.value}{note}")
    return 0


async def _run_sample(args: argparse.Namespace, settings: EasyK8sSettings) -> int:
    print(sample_cluster_config(args.provider, args.name), end="")
    return 0


async def _run_create(args: argparse.Namespace, settings: EasyK8sSettings) -> int:
    spec = await load_cluster_spec(args.file)
    provider = get_provider(spec.provider.type, settings)
    await provider.validate_config(spec)
    await save_cluster_spec(spec, settings)

    report = await provider.create_infrastructure(spec)
    for warning in report.warnings:
        print(f"WARNING: {warning}", file=sys.stderr)
    endpoint = report.endpoint.url if report.endpoint else "unknown"
    print(f"Cluster {spec.name} is {report.phase.value}; API endpoint {endpoint}")
    print(f"Run `easyk8s kubeconfig {spec.name}` to fetch the kubeconfig.")
    return 0


async def _run_destroy(args: argparse.Namespace, settings: EasyK8sSettings) -> int:
    spec = await find_cluster_spec(args.name, settings)
    provider = get_provider(spec.provider.type, settings)
    await provider.destroy_infrastructure(spec, cleanup=args.cleanup)
    print(f"Cluster {spec.name} destroyed.")
    return 0


async def _run_kubeconfig(args: argparse.Namespace, settings: EasyK8sSettings) -> int:
    spec = await find_cluster_spec(args.name, settings)
    provider = get_provider(spec.provider.type, settings)
    result = await provider.get_kubeconfig(spec)
    if result.warning:
        print(f"WARNING: {result.warning}", file=sys.stderr)

    if args.merge:
        context = await merge_kubeconfig(
            result.path, spec.name, set_context=args.set_context
        )
        print(f"Merged into ~/.kube/config as context {context}")
    elif args.output:
        path = await save_kubeconfig(result.path, args.output)
        print(f"Kubeconfig written to {path}")
    else:
        print(result.path)
    return 0


async def _run_status(args: argparse.Namespace, settings: EasyK8sSettings) -> int:
    spec = await find_cluster_spec(args.name, settings)
    provider = get_provider(spec.provider.type, settings)
    status = await provider.get_cluster_status(spec)

    print(f"Cluster:       {spec.name}")
    print(f"Endpoint:      {status.endpoint or 'unknown'}")
    print(f"Ready:         {'yes' if status.ready else 'no'}")
    if status.message:
        print(f"Message:       {status.message}")
    print(f"Nodes:         {status.ready_nodes}/{status.total_nodes} ready")
    print(
        f"Control plane: {status.control_plane_ready}/{status.control_plane_nodes} ready"
    )
    print(f"Workers:       {status.workers_ready}/{status.worker_nodes} ready")
    for component in status.components:
        mark = "ok" if component.ready else "!!"
        print(f"  [{mark}] {component.name}: {component.message}")
    return 0 if status.ready else 1


def _print_result(result: ValidationResult) -> None:
    print(f"[{_STATUS_MARK[result.status]}] {result.name}: {result.message}")


async def _run_validate(args: argparse.Namespace, settings: EasyK8sSettings) -> int:
    spec = await find_cluster_spec(args.name, settings)
    provider = get_provider(spec.provider.type, settings)
    report = await run_validation(
        provider, spec, quick=args.quick, on_result=_print_result
    )
    print(
        f"\n{_VERDICT_TEXT[report.verdict]}: "
        f"{report.count(CheckStatus.passed)} passed, "
        f"{report.count(CheckStatus.warning)} warnings, "
        f"{report.count(CheckStatus.failed)} failed, "
        f"{report.count(CheckStatus.skipped)} skipped "
        f"in {report.elapsed_seconds:.1f}s"
    )
    return 0 if report.ok else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="easyk8s",
        description="Provision and bootstrap RKE2 Kubernetes clusters with OpenTofu.",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    providers_parser = subparsers.add_parser("providers", help="List known backends.")
    providers_parser.set_defaults(func=_run_providers)

    sample_parser = subparsers.add_parser(
        "sample", help="Print an example cluster.yaml to stdout."
    )
    sample_parser.add_argument(
        "--provider",
        default=ProviderName.aws.value,
        choices=[
            name.value
            for name in ProviderName
            if issubclass(provider_map[name], TofuProvider)
        ],
        help="Backend to write the example for (default: aws).",
    )
    sample_parser.add_argument(
        "--name", default="production", help="Cluster name to put in the example."
    )
    sample_parser.set_defaults(func=_run_sample)

    create_parser = subparsers.add_parser(
        "create", help="Create a cluster from a cluster.yaml file."
    )
    create_parser.add_argument(
        "-f",
        "--file",
        default="cluster.yaml",
        help="Path to the cluster configuration (default: cluster.yaml).",
    )
    create_parser.set_defaults(func=_run_create)

    destroy_parser = subparsers.add_parser("destroy", help="Destroy a cluster.")
    destroy_parser.add_argument("name", help="Cluster name.")
    destroy_parser.add_argument(
        "--cleanup",
        action="store_true",
        default=False,
        help="Also remove the cluster's local state directory.",
    )
    destroy_parser.set_defaults(func=_run_destroy)

    kubeconfig_parser = subparsers.add_parser(
        "kubeconfig", help="Fetch the cluster's kubeconfig."
    )
    kubeconfig_parser.add_argument("name", help="Cluster name.")
    target = kubeconfig_parser.add_mutually_exclusive_group()
    target.add_argument("-o", "--output", help="Write the kubeconfig to this path.")
    target.add_argument(
        "--merge",
        action="store_true",
        default=False,
        help="Merge into ~/.kube/config.",
    )
    kubeconfig_parser.add_argument(
        "--set-context",
        action="store_true",
        default=False,
        help="With --merge, switch the current context to this cluster.",
    )
    kubeconfig_parser.set_defaults(func=_run_kubeconfig)

    status_parser = subparsers.add_parser("status", help="Show cluster health.")
    status_parser.add_argument("name", help="Cluster name.")
    status_parser.set_defaults(func=_run_status)

    validate_parser = subparsers.add_parser(
        "validate", help="Run the cluster health checks."
    )
    validate_parser.add_argument("name", help="Cluster name.")
    validate_parser.add_argument(
        "--quick",
        action="store_true",
        default=False,
        help="Skip the slower checks (pod scheduling).",
    )
    validate_parser.set_defaults(func=_run_validate)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point. Returns the process exit code."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = EasyK8sSettings()
    try:
        return asyncio.run(args.func(args, settings))
    except ProviderNotImplementedError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2
    except EasyK8sError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
