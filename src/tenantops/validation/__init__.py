"""Pre-deployment validation: schemas, safety invariants, conflicts."""

from tenantops.validation.engine import ValidationEngine
from tenantops.validation.models import Severity, ValidationFinding, ValidationReport
from tenantops.validation.schemas import SCHEMAS, schema_errors

__all__ = [
    "SCHEMAS",
    "Severity",
    "ValidationEngine",
    "ValidationFinding",
    "ValidationReport",
    "schema_errors",
]
