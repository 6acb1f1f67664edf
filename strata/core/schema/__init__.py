"""
Core schema definitions for artifacts, violations, patches, and oracles.

These domain-agnostic protocols and dataclasses form the foundation
of the strata system.
"""

from strata.core.schema.artifact import Artifact
from strata.core.schema.oracle import Oracle
from strata.core.schema.patch_dsl import Patch, PatchOp
from strata.core.schema.violation import Violation

__all__ = [
    "Artifact",
    "Oracle",
    "Patch",
    "PatchOp",
    "Violation",
]
