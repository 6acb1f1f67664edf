"""Violation model for representing policy violations or errors."""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

SEVERITIES = ("error", "warning", "info")


@dataclass
class Violation:
    """Represents a policy violation found in a resolved configuration.

    Violations are returned by oracles during verification and contain
    information about what went wrong, where it occurred, and evidence
    for the operator.

    Attributes:
        id: Identifier for the violation (e.g., "scaling.REPLICAS_ABOVE_CEILING")
        message: Human-readable description of the violation
        path: Location path as list of strings
              (e.g., ["Deployment/web", "spec", "replicas"])
        severity: Severity level - "error", "warning", or "info"
        evidence: Domain-specific data such as offending values and limits
    """

    id: str
    message: str
    path: List[str]
    severity: str = "error"
    evidence: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if self.severity not in SEVERITIES:
            raise ValueError(f"Unknown severity '{self.severity}', expected one of {SEVERITIES}")

    @property
    def is_error(self) -> bool:
        return self.severity == "error"

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "id": self.id,
            "message": self.message,
            "path": list(self.path),
            "severity": self.severity,
        }
        if self.evidence is not None:
            result["evidence"] = self.evidence
        return result
