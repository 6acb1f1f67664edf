"""Artifact protocol for domain-agnostic artifact interface."""

from typing import Any, Protocol


class Artifact(Protocol):
    """Domain-agnostic artifact interface.

    An artifact is a configuration object that can be verified by oracles
    and written out for an external reconciler, e.g. a set of Kubernetes
    manifests.
    """

    def to_serializable(self) -> Any:
        """Convert artifact to JSON-serializable format.

        Returns:
            JSON-serializable representation of the artifact (dict, list, str, etc.)
        """
        ...
