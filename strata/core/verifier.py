"""Verifier for executing oracles and aggregating violations."""

import logging
from typing import Any, List, Tuple

from strata.core.schema.oracle import Oracle
from strata.core.schema.violation import Violation

logger = logging.getLogger(__name__)


def verify(artifact: Any, oracles: List[Oracle]) -> List[Violation]:
    """Execute all oracles against artifact and aggregate violations.

    This function runs all provided oracles sequentially against the artifact
    and collects all violations. It handles empty oracle lists gracefully and
    continues execution even if individual oracles fail.

    Args:
        artifact: The artifact to verify (e.g., a K8sArtifact)
        oracles: List of verification functions to execute

    Returns:
        Aggregated list of violations from all oracles. Returns empty list if
        no oracles provided or if all oracles pass.

    Example:
        >>> artifact = K8sArtifact(files={"deployment.yaml": "..."})
        >>> violations = verify(artifact, [ScalingOracle(), SecurityOracle()])
        >>> len(violations)
        0
    """
    if not oracles:
        return []

    violations: List[Violation] = []

    for oracle in oracles:
        name = getattr(oracle, "__name__", type(oracle).__name__)
        try:
            oracle_violations = oracle(artifact)
            violations.extend(oracle_violations)
        except Exception as e:
            # A crashing oracle must not hide the results of the others
            logger.warning(f"Oracle {name} failed: {e}")
            violations.append(Violation(
                id=f"oracle_error:{name}",
                message=f"Oracle execution failed: {str(e)}",
                path=["verifier", "oracle_error"],
                severity="error",
                evidence={"exception": str(e), "exception_type": type(e).__name__},
            ))

    return violations


def split_by_severity(violations: List[Violation]) -> Tuple[List[Violation], List[Violation]]:
    """Split violations into (errors, non-errors)."""
    errors = [v for v in violations if v.is_error]
    others = [v for v in violations if not v.is_error]
    return errors, others
