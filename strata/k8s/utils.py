"""Shared utility functions for K8s manifests.

This module provides common helpers for parsing, dumping and navigating
manifests, used by the patch operations, the resolver and the oracles.
"""

from io import StringIO
from typing import Any, Iterable, List, Optional

from ruamel.yaml import YAML

from strata.k8s.constants import WORKLOAD_KINDS


def create_yaml_instance() -> YAML:
    """Create configured ruamel.yaml instance for K8s manifest editing.

    Returns:
        YAML instance configured to:
        - Preserve quotes and formatting
        - Not wrap long strings (prevents image field splitting)
        - Use block style (not flow style)
    """
    yaml = YAML()
    yaml.preserve_quotes = True
    yaml.width = 4096
    yaml.default_flow_style = False
    yaml.allow_unicode = True
    return yaml


def load_documents(content: str) -> List[dict]:
    """Parse every non-empty YAML document in a (multi-document) string."""
    yaml = create_yaml_instance()
    return [doc for doc in yaml.load_all(content) if doc is not None]


def dump_documents(documents: Iterable[Any]) -> str:
    """Serialize documents to a multi-document YAML string."""
    yaml = create_yaml_instance()
    yaml.explicit_start = True
    stream = StringIO()
    yaml.dump_all(list(documents), stream)
    return stream.getvalue()


def resource_id(manifest: dict) -> str:
    """Return "<Kind>/<name>" for a manifest."""
    name = (manifest.get("metadata") or {}).get("name", "<unnamed>")
    return f"{manifest.get('kind', '<unknown>')}/{name}"


def find_documents(documents: Iterable[dict], kind: str, name: Optional[str] = None) -> List[dict]:
    """Return all documents of a kind, optionally restricted to one name."""
    found = []
    for doc in documents:
        if not isinstance(doc, dict) or doc.get("kind") != kind:
            continue
        if name is not None and (doc.get("metadata") or {}).get("name") != name:
            continue
        found.append(doc)
    return found


def find_workloads(documents: Iterable[dict]) -> List[dict]:
    """Return every Deployment/StatefulSet in the documents."""
    return [d for d in documents if isinstance(d, dict) and d.get("kind") in WORKLOAD_KINDS]


def get_pod_spec(manifest: dict) -> dict:
    """Extract the pod spec from a workload manifest, empty dict if absent."""
    return (manifest.get("spec") or {}).get("template", {}).get("spec") or {}


def get_containers(manifest: dict) -> list:
    """Extract containers list from a workload manifest.

    Args:
        manifest: Kubernetes manifest dict

    Returns:
        List of container dicts, empty list if not found
    """
    return get_pod_spec(manifest).get("containers") or []


def get_container(manifest: dict, name: Optional[str] = None) -> Optional[dict]:
    """Return the named container, or the first one when name is None."""
    containers = get_containers(manifest)
    if name is None:
        return containers[0] if containers else None
    for container in containers:
        if container.get("name") == name:
            return container
    return None


def ensure_path(mapping: dict, *keys: str) -> dict:
    """Walk/create nested mappings and return the innermost one."""
    current = mapping
    for key in keys:
        if not isinstance(current.get(key), dict):
            current[key] = {}
        current = current[key]
    return current


def selector_matches(selector: Optional[dict], labels: Optional[dict]) -> bool:
    """Evaluate a label selector's matchLabels against a label set.

    An empty selector matches every pod, as in Kubernetes.
    """
    if not selector:
        return True
    labels = labels or {}
    match_labels = selector.get("matchLabels") or {}
    if any(labels.get(k) != v for k, v in match_labels.items()):
        return False
    for expr in selector.get("matchExpressions") or []:
        key, operator = expr.get("key"), expr.get("operator")
        values = expr.get("values") or []
        if operator == "In" and labels.get(key) not in values:
            return False
        if operator == "NotIn" and labels.get(key) in values:
            return False
        if operator == "Exists" and key not in labels:
            return False
        if operator == "DoesNotExist" and key in labels:
            return False
    return True
