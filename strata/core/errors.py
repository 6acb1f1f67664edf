"""Resolution exceptions for error handling."""

from typing import Any, List, Optional


class PatchApplyError(Exception):
    """Raised when patch application fails.

    This exception is raised when applying an override fragment to a set of
    manifests fails due to:
    - Unknown operation types
    - Missing patch targets (no document with the given kind/name)
    - Malformed operation arguments

    Attributes:
        message: Description of the failure
        patch_op: The PatchOp that failed (optional)
        document: The manifest document being patched (optional)
    """

    def __init__(
        self, message: str, patch_op: Optional[Any] = None, document: Optional[Any] = None
    ) -> None:
        """Initialize PatchApplyError exception.

        Args:
            message: Error message describing the failure
            patch_op: The PatchOp that failed (optional)
            document: The manifest document being patched (optional)
        """
        super().__init__(message)
        self.patch_op = patch_op
        self.document = document


class ResolutionError(Exception):
    """Raised when an environment cannot be resolved to a workload spec.

    Resolution fails closed: any error aborts the whole resolution rather
    than producing a partially-applied configuration.

    Attributes:
        message: Description of the failure
        details: Additional debugging information (optional)
    """

    def __init__(self, message: str, details: Optional[str] = None) -> None:
        """Initialize ResolutionError exception.

        Args:
            message: Error message describing the failure
            details: Additional details for debugging (optional)
        """
        super().__init__(message)
        self.details = details


class UnknownEnvironmentError(ResolutionError):
    """Raised when the environment tag has no profile."""

    def __init__(self, environment: str, known: List[str]) -> None:
        super().__init__(
            f"Unknown environment '{environment}'",
            details=f"valid environments: {', '.join(sorted(known))}",
        )
        self.environment = environment


class WriterCeilingError(ResolutionError):
    """Raised when scaling would allow more than one concurrent writer.

    The workload persists to an embedded database file on a single-writer
    volume, so any replica count or autoscaler bound above the ceiling is
    rejected instead of clamped.

    Attributes:
        resource: "<Kind>/<name>" of the offending manifest
        field: Field that exceeded the ceiling (e.g. "spec.replicas")
        value: The requested value
        limit: The writer ceiling
        source: The fragment that introduced the value (optional)
    """

    def __init__(
        self, resource: str, field: str, value: int, limit: int, source: Optional[str] = None
    ) -> None:
        origin = f" (from {source})" if source else ""
        super().__init__(
            f"{resource} {field}={value} exceeds the single-writer ceiling of {limit}{origin}",
            details="file-based persistence cannot be shared by concurrent writers",
        )
        self.resource = resource
        self.field = field
        self.value = value
        self.limit = limit
        self.source = source


class WriterFloorError(ResolutionError):
    """Raised when scaling would leave the workload without a running writer.

    Attributes:
        resource: "<Kind>/<name>" of the offending manifest
        field: Field that fell below the floor (e.g. "spec.replicas")
        value: The requested value
        limit: The minimum replica count
        source: The fragment that introduced the value (optional)
    """

    def __init__(
        self, resource: str, field: str, value: int, limit: int, source: Optional[str] = None
    ) -> None:
        origin = f" (from {source})" if source else ""
        super().__init__(
            f"{resource} {field}={value} is below the minimum of {limit} replica{origin}",
            details="minReplicas is pinned; the workload must always run one writer",
        )
        self.resource = resource
        self.field = field
        self.value = value
        self.limit = limit
        self.source = source


class DisruptionBudgetError(ResolutionError):
    """Raised when a PodDisruptionBudget demands more pods than can exist."""

    def __init__(self, budget: str, min_available: Any, replicas: int) -> None:
        super().__init__(
            f"PodDisruptionBudget/{budget} minAvailable={min_available} "
            f"exceeds resolved replica count {replicas}"
        )
        self.budget = budget
        self.min_available = min_available
        self.replicas = replicas


class PolicyViolationError(ResolutionError):
    """Raised when the merged configuration fails one or more oracles.

    Attributes:
        violations: The error-severity violations that blocked resolution
    """

    def __init__(self, violations: List[Any]) -> None:
        summary = "; ".join(f"{v.id}: {v.message}" for v in violations[:5])
        if len(violations) > 5:
            summary += f"; ... ({len(violations) - 5} more)"
        super().__init__(
            f"Resolved configuration violates {len(violations)} policies", details=summary
        )
        self.violations = violations
