"""
easyk8s/validation/pipeline.py

Runs the ordered health checks against a provider and aggregates them into a
single verdict.

Each check owns its failure severity: an error from a `fail` check marks the
run FAILED, an error from a `warn` check only adds a warning. A provider that
does not implement a check yields `skip`. Every check runs, whatever the
earlier ones returned, and no check error escapes the pipeline.
"""

from __future__ import annotations

import logging
import time
from typing import Awaitable, Callable, List, Optional

from pydantic import BaseModel

from easyk8s.errors import ProviderNotImplementedError
from easyk8s.models.cluster import ClusterSpec
from easyk8s.models.validation import (
    CheckStatus,
    ValidationReport,
    ValidationResult,
    Verdict,
)
from easyk8s.providers.base import Provider

logger = logging.getLogger(__name__)

CheckFunc = Callable[[Provider, ClusterSpec], Awaitable[str]]


class ValidationCheck(BaseModel):
    """A named check and the status an error from it maps to."""

    name: str
    run: CheckFunc
    on_error: CheckStatus = CheckStatus.failed
    quick: bool = True


DEFAULT_CHECKS: List[ValidationCheck] = [
    ValidationCheck(
        name="API Server",
        run=lambda p, s: p.validate_api_server(s),
    ),
    ValidationCheck(
        name="Nodes",
        run=lambda p, s: p.validate_nodes(s),
    ),
    ValidationCheck(
        name="System Pods",
        run=lambda p, s: p.validate_system_pods(s),
    ),
    ValidationCheck(
        name="etcd",
        run=lambda p, s: p.validate_etcd(s),
        on_error=CheckStatus.warning,
    ),
    ValidationCheck(
        name="DNS",
        run=lambda p, s: p.validate_dns(s),
    ),
    ValidationCheck(
        name="Pod Networking",
        run=lambda p, s: p.validate_networking(s),
        on_error=CheckStatus.warning,
    ),
    ValidationCheck(
        name="Pod Scheduling",
        run=lambda p, s: p.validate_pod_scheduling(s),
        on_error=CheckStatus.warning,
        quick=False,
    ),
]


def select_checks(
    checks: List[ValidationCheck], quick: bool = False
) -> List[ValidationCheck]:
    return [c for c in checks if c.quick] if quick else list(checks)


async def run_check(
    check: ValidationCheck, provider: Provider, spec: ClusterSpec
) -> ValidationResult:
    try:
        message = await check.run(provider, spec)
    except ProviderNotImplementedError as exc:
        return ValidationResult(name=check.name, status=CheckStatus.skipped, message=str(exc))
    except Exception as exc:  # mapped to this check's severity
        logger.debug("Check %s raised %r", check.name, exc)
        return ValidationResult(
            name=check.name,
            status=check.on_error,
            message=str(exc) or type(exc).__name__,
            detail=type(exc).__name__,
        )
    return ValidationResult(name=check.name, status=CheckStatus.passed, message=message)


def aggregate(results: List[ValidationResult]) -> Verdict:
    statuses = {r.status for r in results}
    if CheckStatus.failed in statuses:
        return Verdict.failed
    if CheckStatus.warning in statuses:
        return Verdict.passed_with_warnings
    # nothing was verified when every check was skipped
    if statuses == {CheckStatus.skipped}:
        return Verdict.passed_with_warnings
    return Verdict.passed


async def run_validation(
    provider: Provider,
    spec: ClusterSpec,
    *,
    quick: bool = False,
    checks: Optional[List[ValidationCheck]] = None,
    clock: Callable[[], float] = time.monotonic,
    on_result: Optional[Callable[[ValidationResult], None]] = None,
) -> ValidationReport:
    """Run every selected check in order and aggregate the results.

    Args:
        provider: The provider owning the cluster.
        spec: The cluster to validate.
        quick: Leave out the checks not marked `quick` (pod scheduling).
        checks: Override the default check list.
        clock: Monotonic clock used to measure elapsed time.
        on_result: Called after each check, e.g. to print progress.
    """
    started = clock()
    results: List[ValidationResult] = []
    for check in select_checks(checks or DEFAULT_CHECKS, quick):
        result = await run_check(check, provider, spec)
        results.append(result)
        if on_result is not None:
            on_result(result)

    return ValidationReport(
        results=results,
        verdict=aggregate(results),
        elapsed_seconds=clock() - started,
    )
