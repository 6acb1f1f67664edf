"""Patch DSL for structured override fragments.

This module defines the core patch data structures used throughout strata.
An environment overlay is an ordered list of patches; each patch is an
ordered list of operations applied to the merged manifests.

JSON Transport Format
---------------------

Patches serialize to a small envelope:

Example::

    {
      "ops": [
        { "op": "EnsureReplicas", "args": { "replicas": 1 } },
        {
          "op": "StrategicMerge",
          "args": { "patch": { "kind": "Deployment", "metadata": { "name": "web" } } }
        }
      ],
      "meta": { "source": "overlays/local/deployment-patch.yaml" }
    }

The envelope contains:

- ops: List of patch operations to apply sequentially
- meta: Optional metadata (source file, overlay name, etc.)
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class PatchOp:
    """Single atomic patch operation.

    The specific operations available depend on the artifact type (domain).
    For Kubernetes manifests see strata.k8s.patch_dsl.

    Attributes:
        op: Operation name (e.g., "EnsureReplicas")
        args: Operation-specific arguments as a dictionary
    """

    op: str
    args: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"op": self.op, "args": self.args}


@dataclass
class Patch:
    """Structured edit program (one override fragment).

    Attributes:
        ops: List of patch operations to apply sequentially
        meta: Optional metadata dictionary (source file, overlay name, etc.)
    """

    ops: List[PatchOp]
    meta: Optional[Dict[str, Any]] = None

    @property
    def source(self) -> str:
        """Human-readable origin of this fragment, used in logs and errors."""
        if self.meta and self.meta.get("source"):
            return str(self.meta["source"])
        return ",".join(op.op for op in self.ops) or "<empty>"

    def to_dict(self) -> Dict[str, Any]:
        """Convert patch to the JSON transport envelope."""
        result: Dict[str, Any] = {"ops": [op.to_dict() for op in self.ops]}
        if self.meta is not None:
            result["meta"] = self.meta
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Patch":
        """Build a patch from the JSON transport envelope.

        Raises:
            ValueError: If an op entry has no "op" name
        """
        ops = []
        for entry in data.get("ops", []):
            if "op" not in entry:
                raise ValueError(f"Patch op entry missing 'op': {entry!r}")
            ops.append(PatchOp(op=entry["op"], args=dict(entry.get("args") or {})))
        return cls(ops=ops, meta=data.get("meta"))
