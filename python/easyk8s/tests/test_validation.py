import asyncio

from easyk8s.errors import CheckError, ProviderNotImplementedError
from easyk8s.models.validation import (
    CheckStatus,
    ValidationReport,
    ValidationResult,
    Verdict,
)
from easyk8s.providers.vsphere import VSphereProvider
from easyk8s.tests.fakes import FakeClock, make_spec
from easyk8s.validation.pipeline import (
    DEFAULT_CHECKS,
    ValidationCheck,
    aggregate,
    run_validation,
    select_checks,
)


def _result(status):
    return ValidationResult(name=status.value, status=status)


def test_aggregate_verdicts():
    passed, warned, failed, skipped = (
        _result(CheckStatus.passed),
        _result(CheckStatus.warning),
        _result(CheckStatus.failed),
        _result(CheckStatus.skipped),
    )
    assert aggregate([passed, passed]) == Verdict.passed
    assert aggregate([passed, skipped]) == Verdict.passed
    assert aggregate([skipped, skipped]) == Verdict.passed_with_warnings
    assert aggregate([passed, warned, skipped]) == Verdict.passed_with_warnings
    assert aggregate([warned, failed, passed]) == Verdict.failed
    assert aggregate([]) == Verdict.passed


def _check(name, outcome, on_error=CheckStatus.failed, quick=True, seen=None):
    async def run(provider, spec):
        if seen is not None:
            seen.append(name)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    return ValidationCheck(name=name, run=run, on_error=on_error, quick=quick)


def test_every_check_runs_and_errors_map_to_their_severity():
    seen = []
    checks = [
        _check("API Server", CheckError("API server is not responding"), seen=seen),
        _check("etcd", CheckError("etcd unreachable"), on_error=CheckStatus.warning, seen=seen),
        _check("DNS", "DNS is working", seen=seen),
        _check("Boom", RuntimeError("unexpected"), seen=seen),
    ]
    clock = FakeClock(start=100.0)

    def tick():
        clock.now += 1.5
        return clock.now

    report = asyncio.run(
        run_validation(object(), make_spec(), checks=checks, clock=tick)
    )

    assert seen == ["API Server", "etcd", "DNS", "Boom"]
    assert [r.status for r in report.results] == [
        CheckStatus.failed,
        CheckStatus.warning,
        CheckStatus.passed,
        CheckStatus.failed,
    ]
    assert report.results[0].message == "API server is not responding"
    assert report.results[3].detail == "RuntimeError"
    assert report.verdict == Verdict.failed
    assert not report.ok
    assert report.elapsed_seconds == 1.5


def test_warnings_only_pass_with_warnings():
    checks = [
        _check("Nodes", "All 3 nodes are ready"),
        _check("Pod Networking", CheckError("no CNI pods"), on_error=CheckStatus.warning),
    ]
    report = asyncio.run(run_validation(object(), make_spec(), checks=checks))
    assert report.verdict == Verdict.passed_with_warnings
    assert report.ok
    assert report.count(CheckStatus.warning) == 1


def test_quick_mode_leaves_out_slow_checks():
    seen = []
    checks = [
        _check("Nodes", "ok", seen=seen),
        _check("Pod Scheduling", "ok", quick=False, seen=seen),
    ]
    report = asyncio.run(run_validation(object(), make_spec(), quick=True, checks=checks))

    assert seen == ["Nodes"]
    assert [r.name for r in report.results] == ["Nodes"]
    assert [c.name for c in select_checks(DEFAULT_CHECKS, quick=True)] == [
        "API Server",
        "Nodes",
        "System Pods",
        "etcd",
        "DNS",
        "Pod Networking",
    ]
    assert len(select_checks(DEFAULT_CHECKS)) == 7


def test_default_check_severities():
    severities = {c.name: c.on_error for c in DEFAULT_CHECKS}
    assert severities["etcd"] == CheckStatus.warning
    assert severities["Pod Networking"] == CheckStatus.warning
    assert severities["Pod Scheduling"] == CheckStatus.warning
    assert severities["API Server"] == CheckStatus.failed
    assert severities["DNS"] == CheckStatus.failed


def test_unimplemented_provider_skips_every_check():
    report = asyncio.run(run_validation(VSphereProvider(), make_spec("vsphere")))

    assert len(report.results) == len(DEFAULT_CHECKS)
    assert {r.status for r in report.results} == {CheckStatus.skipped}
    assert report.results[0].message == str(ProviderNotImplementedError("vsphere"))
    assert report.verdict == Verdict.passed_with_warnings
    assert report.ok


def test_report_counts():
    report = ValidationReport(
        results=[_result(CheckStatus.passed), _result(CheckStatus.passed)],
        verdict=Verdict.passed,
    )
    assert report.count(CheckStatus.passed) == 2
    assert report.count(CheckStatus.failed) == 0
