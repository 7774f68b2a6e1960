"""
easyk8s/models/validation.py

Result types of the health validation pipeline. A failed check is data here,
never an exception.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class CheckStatus(str, Enum):
    passed = "pass"
    failed = "fail"
    warning = "warn"
    skipped = "skip"


class Verdict(str, Enum):
    passed = "PASSED"
    passed_with_warnings = "PASSED_WITH_WARNINGS"
    failed = "FAILED"


class ValidationResult(BaseModel):
    """The outcome of one named check."""

    name: str
    status: CheckStatus
    message: str = ""
    detail: Optional[str] = None


class ValidationReport(BaseModel):
    """Every check result of one pipeline run, plus the aggregate verdict."""

    results: List[ValidationResult] = Field(default_factory=list)
    verdict: Verdict = Verdict.passed
    elapsed_seconds: float = 0.0

    def count(self, status: CheckStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def ok(self) -> bool:
        return self.verdict != Verdict.failed


__all__ = ["CheckStatus", "Verdict", "ValidationResult", "ValidationReport"]
