"""Oracle protocol for verification functions."""

from typing import Any, List, Protocol

from strata.core.schema.violation import Violation


class Oracle(Protocol):
    """Verification function interface.

    An oracle is a callable that checks an artifact for correctness and
    returns a list of violations. Each oracle owns one policy area:

    - Scaling: replica ceilings, autoscaler bounds, volume access modes
    - Probes: handler shape and environment-specific probe kind
    - Security: privileges, capabilities, user IDs
    - Network: default-deny and explicitly scoped allow rules

    Multiple oracles are combined by the verifier to check a fully resolved
    configuration.

    Example:
        def replicas_oracle(artifact: K8sArtifact) -> List[Violation]:
            violations = []
            # ... verification logic ...
            return violations
    """

    def __call__(self, artifact: Any) -> List[Violation]:
        """Check artifact and return violations.

        Args:
            artifact: The artifact to verify (type depends on domain)

        Returns:
            List of violations found during verification.
            Empty list if artifact passes all checks.
        """
        ...
