"""
Models for pre-deployment validation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional

from tenantops.store.models import ItemKey, format_key


class Severity(Enum):
    """Severity of a validation finding."""

    ERROR = "error"  # Blocks the plan before the approval gate
    WARNING = "warning"  # Reported, never blocks


@dataclass
class ValidationFinding:
    """A single rule violation."""

    rule: str
    severity: Severity
    message: str
    item: Optional[ItemKey] = None

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR

    def __str__(self) -> str:
        prefix = f"{format_key(self.item)}: " if self.item else ""
        return f"[{self.rule}] {prefix}{self.message}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule": self.rule,
            "severity": self.severity.value,
            "message": self.message,
            "item": format_key(self.item) if self.item else None,
        }


@dataclass
class ValidationReport:
    """Every finding of one validation run."""

    environment: str
    errors: List[ValidationFinding] = field(default_factory=list)
    warnings: List[ValidationFinding] = field(default_factory=list)

    def add(self, finding: ValidationFinding) -> None:
        if finding.is_error:
            self.errors.append(finding)
        else:
            self.warnings.append(finding)

    def extend(self, findings: List[ValidationFinding]) -> None:
        for finding in findings:
            self.add(finding)

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    @property
    def passed(self) -> bool:
        """True when nothing blocks the plan (warnings allowed)."""
        return not self.has_errors

    def errors_for(self, rule: str) -> List[ValidationFinding]:
        return [f for f in self.errors if f.rule == rule]

    def to_dict(self) -> dict[str, Any]:
        return {
            "environment": self.environment,
            "passed": self.passed,
            "errors": [f.to_dict() for f in self.errors],
            "warnings": [f.to_dict() for f in self.warnings],
        }
