"""K8s Patch DSL operations for modifying manifest documents.

Every operation takes the current list of parsed documents and returns a new
list; the input documents are never mutated. Documents are ruamel.yaml
round-trip mappings so comments and key order survive to the output.
"""

import copy
import logging
from typing import Any, Dict, List, Optional

from strata.core.errors import PatchApplyError
from strata.core.schema.patch_dsl import Patch, PatchOp
from strata.k8s.merge import apply_strategic_patch
from strata.k8s.models import probe_field
from strata.k8s.constants import PROBE_HANDLERS, WORKLOAD_KINDS
from strata.k8s.utils import (
    ensure_path,
    find_workloads,
    get_containers,
    resource_id,
    selector_matches,
)

logger = logging.getLogger(__name__)

# Resource profile mappings
RESOURCE_PROFILES = {
    "small": {
        "requests": {"cpu": "100m", "memory": "128Mi"},
        "limits": {"cpu": "200m", "memory": "256Mi"}
    },
    "medium": {
        "requests": {"cpu": "250m", "memory": "256Mi"},
        "limits": {"cpu": "1000m", "memory": "1Gi"}
    },
    "large": {
        "requests": {"cpu": "500m", "memory": "512Mi"},
        "limits": {"cpu": "2000m", "memory": "2Gi"}
    }
}

CLUSTER_SCOPED_KINDS = {
    "Namespace", "ClusterRole", "ClusterRoleBinding", "PersistentVolume",
    "StorageClass", "CustomResourceDefinition", "PriorityClass",
}

DEFAULT_RUN_AS_USER = 10001


def apply_k8s_patch(documents: List[dict], patch: Patch) -> List[dict]:
    """Apply K8s patch operations to manifest documents.

    Applies all patch operations sequentially.

    Args:
        documents: Parsed manifest documents
        patch: Patch containing K8s-specific operations

    Returns:
        New list of patched documents

    Example:
        >>> patch = Patch(ops=[PatchOp("EnsureReplicas", {"replicas": 1})])
        >>> patched = apply_k8s_patch(documents, patch)
    """
    result = list(documents)
    for op in patch.ops:
        result = apply_k8s_op(result, op)
    return result


def apply_k8s_op(documents: List[dict], op: PatchOp) -> List[dict]:
    """Apply single K8s patch operation.

    Args:
        documents: Parsed manifest documents (not modified)
        op: Single patch operation to apply

    Returns:
        New list of documents with the operation applied

    Raises:
        PatchApplyError: If the operation kind is unknown or its arguments are invalid
    """
    docs = copy.deepcopy(list(documents))
    try:
        if op.op == "StrategicMerge":
            return apply_strategic_patch(docs, op.args["patch"])
        elif op.op == "AddResource":
            return _apply_add_resource(docs, op.args)
        elif op.op == "EnsureNamespace":
            return _apply_ensure_namespace(docs, op.args)
        elif op.op == "EnsureLabel":
            return _apply_ensure_label(docs, op.args)
        elif op.op == "EnsureImage":
            return _apply_ensure_image(docs, op.args)
        elif op.op == "EnsureReplicas":
            return _apply_ensure_replicas(docs, op.args)
        elif op.op == "EnsureProbe":
            return _apply_ensure_probe(docs, op.args)
        elif op.op == "EnsureRollingUpdate":
            return _apply_ensure_rolling_update(docs, op.args)
        elif op.op == "EnsureDisruptionBudget":
            return _apply_ensure_disruption_budget(docs, op.args)
        elif op.op == "EnsureSecurityBaseline":
            return _apply_ensure_security_baseline(docs, op.args)
        elif op.op == "EnsureResourceProfile":
            return _apply_ensure_resource_profile(docs, op.args)
    except KeyError as e:
        raise PatchApplyError(f"{op.op} missing required argument {e}", patch_op=op)
    except PatchApplyError as e:
        if e.patch_op is None:
            e.patch_op = op
        raise
    raise PatchApplyError(f"Unknown K8s patch operation: {op.op}", patch_op=op)


def _target_containers(docs: List[dict], container_name: Optional[str]) -> List[tuple]:
    """(workload, container) pairs addressed by an op; first container when unnamed."""
    targets = []
    for workload in find_workloads(docs):
        containers = get_containers(workload)
        if container_name is None:
            targets.extend((workload, c) for c in containers[:1])
        else:
            targets.extend((workload, c) for c in containers if c.get("name") == container_name)
    if not targets:
        raise PatchApplyError(f"No workload container matches {container_name or '<first>'}")
    return targets


def _apply_add_resource(docs: List[dict], args: dict) -> List[dict]:
    """Add a new manifest document.

    Args:
        args: {document: dict}
    """
    document = args["document"]
    new_id = resource_id(document)
    new_ns = (document.get("metadata") or {}).get("namespace")
    for existing in docs:
        if resource_id(existing) == new_id and (existing.get("metadata") or {}).get("namespace") == new_ns:
            raise PatchApplyError(f"Resource {new_id} already exists", document=document)
    docs.append(copy.deepcopy(document))
    return docs


def _apply_ensure_namespace(docs: List[dict], args: dict) -> List[dict]:
    """Set metadata.namespace on every namespaced resource.

    ServiceAccount subjects of RoleBindings follow the namespace change.

    Args:
        args: {namespace: str}
    """
    namespace = args["namespace"]
    for doc in docs:
        kind = doc.get("kind")
        if kind in CLUSTER_SCOPED_KINDS:
            continue
        ensure_path(doc, "metadata")["namespace"] = namespace
        if kind in ("RoleBinding", "ClusterRoleBinding"):
            for subject in doc.get("subjects") or []:
                if subject.get("kind") == "ServiceAccount":
                    subject["namespace"] = namespace
    return docs


def _apply_ensure_label(docs: List[dict], args: dict) -> List[dict]:
    """Add or update a label.

    Args:
        args: {key: str, value: str, scope: str}
              scope: "metadata" (resource labels only) or "all" (default; also
              pod templates and the selectors of workloads, Services and PDBs)
    """
    key = args["key"]
    value = args["value"]
    scope = args.get("scope", "all")
    if scope not in ("metadata", "all"):
        raise PatchApplyError(f"Unknown label scope: {scope}")

    for doc in docs:
        ensure_path(doc, "metadata", "labels")[key] = value
        if scope != "all":
            continue
        kind = doc.get("kind")
        if kind in WORKLOAD_KINDS:
            ensure_path(doc, "spec", "template", "metadata", "labels")[key] = value
            ensure_path(doc, "spec", "selector", "matchLabels")[key] = value
        elif kind == "Service":
            ensure_path(doc, "spec", "selector")[key] = value
        elif kind == "PodDisruptionBudget":
            ensure_path(doc, "spec", "selector", "matchLabels")[key] = value
    return docs


def _apply_ensure_image(docs: List[dict], args: dict) -> List[dict]:
    """Override a container image reference.

    Matches containers whose image (without tag/digest) equals ``name``.

    Args:
        args: {name: str, new_name: str?, new_tag: str?, digest: str?}
    """
    name = args["name"]
    new_name = args.get("new_name")
    new_tag = args.get("new_tag")
    digest = args.get("digest")

    for workload in find_workloads(docs):
        pod_spec = (workload.get("spec") or {}).get("template", {}).get("spec") or {}
        for container in (pod_spec.get("containers") or []) + (pod_spec.get("initContainers") or []):
            image = str(container.get("image", ""))
            base, tag, current_digest = _split_image(image)
            if base != name:
                continue
            base = new_name or base
            if digest:
                container["image"] = f"{base}@{digest}"
            elif new_tag:
                container["image"] = f"{base}:{new_tag}"
            elif current_digest:
                container["image"] = f"{base}@{current_digest}"
            else:
                container["image"] = f"{base}:{tag}" if tag else base
            logger.debug(f"{resource_id(workload)} image {image} -> {container['image']}")
    return docs


def _split_image(image: str) -> tuple:
    digest = None
    if "@" in image:
        image, digest = image.split("@", 1)
    tag = None
    last = image.rsplit("/", 1)[-1]
    if ":" in last:
        image, tag = image.rsplit(":", 1)
    return image, tag, digest


def _apply_ensure_replicas(docs: List[dict], args: dict) -> List[dict]:
    """Set replica count.

    Args:
        args: {replicas: int, name: str?} - name restricts to one workload
    """
    replicas = args["replicas"]
    name = args.get("name")
    if not isinstance(replicas, int) or isinstance(replicas, bool) or replicas < 0:
        raise PatchApplyError(f"replicas must be a non-negative integer, got {replicas!r}")

    matched = False
    for workload in find_workloads(docs):
        if name is not None and (workload.get("metadata") or {}).get("name") != name:
            continue
        ensure_path(workload, "spec")["replicas"] = replicas
        matched = True
    if name is not None and not matched:
        raise PatchApplyError(f"No workload named {name} for replica override")
    return docs


def _apply_ensure_probe(docs: List[dict], args: dict) -> List[dict]:
    """Replace a container probe.

    Args:
        args: {probe: "readiness"|"liveness"|"startup", spec: dict, container: str?}
    """
    try:
        field_name = probe_field(args["probe"])
    except ValueError as e:
        raise PatchApplyError(str(e))
    spec = args["spec"]

    for workload, container in _target_containers(docs, args.get("container")):
        old_handlers = [h for h in PROBE_HANDLERS if h in (container.get(field_name) or {})]
        new_handlers = [h for h in PROBE_HANDLERS if h in spec]
        if old_handlers and old_handlers != new_handlers:
            logger.info(
                f"{resource_id(workload)} container {container.get('name')}: "
                f"{field_name} switched from {','.join(old_handlers)} to {','.join(new_handlers)}"
            )
        container[field_name] = copy.deepcopy(spec)
    return docs


def _apply_ensure_rolling_update(docs: List[dict], args: dict) -> List[dict]:
    """Set a RollingUpdate strategy on Deployments.

    Args:
        args: {max_unavailable: int|str, max_surge: int|str}
    """
    max_unavailable = args["max_unavailable"]
    max_surge = args["max_surge"]
    if max_unavailable in (0, "0%") and max_surge in (0, "0%"):
        raise PatchApplyError("maxUnavailable and maxSurge cannot both be zero")

    for workload in find_workloads(docs):
        if workload.get("kind") != "Deployment":
            logger.debug(f"Skipping rolling update for {resource_id(workload)}")
            continue
        spec = ensure_path(workload, "spec")
        spec["strategy"] = {
            "type": "RollingUpdate",
            "rollingUpdate": {"maxUnavailable": max_unavailable, "maxSurge": max_surge},
        }
    return docs


def _apply_ensure_disruption_budget(docs: List[dict], args: dict) -> List[dict]:
    """Ensure a PodDisruptionBudget with minAvailable covers each workload.

    An existing budget whose selector matches the pod labels is updated;
    otherwise ``<workload>-pdb`` is created.

    Args:
        args: {min_available: int|str, name: str?}
    """
    min_available = args["min_available"]

    for workload in find_workloads(docs):
        metadata = workload.get("metadata") or {}
        pod_labels = (workload.get("spec") or {}).get("template", {}).get("metadata", {}).get("labels") or {}
        existing = [
            d for d in docs
            if d.get("kind") == "PodDisruptionBudget"
            and (d.get("metadata") or {}).get("namespace") == metadata.get("namespace")
            and selector_matches((d.get("spec") or {}).get("selector"), pod_labels)
        ]
        if existing:
            for pdb in existing:
                spec = ensure_path(pdb, "spec")
                spec.pop("maxUnavailable", None)
                spec["minAvailable"] = min_available
            continue

        pdb_metadata: Dict[str, Any] = {"name": args.get("name") or f"{metadata.get('name')}-pdb"}
        if metadata.get("namespace"):
            pdb_metadata["namespace"] = metadata["namespace"]
        if metadata.get("labels"):
            pdb_metadata["labels"] = copy.deepcopy(metadata["labels"])
        match_labels = ((workload.get("spec") or {}).get("selector") or {}).get("matchLabels") or pod_labels
        docs.append({
            "apiVersion": "policy/v1",
            "kind": "PodDisruptionBudget",
            "metadata": pdb_metadata,
            "spec": {
                "minAvailable": min_available,
                "selector": {"matchLabels": copy.deepcopy(match_labels)},
            },
        })
        logger.debug(f"Created PodDisruptionBudget/{pdb_metadata['name']}")
    return docs


def _apply_ensure_security_baseline(docs: List[dict], args: dict) -> List[dict]:
    """Enforce security baseline on container.

    Args:
        args: {container: str?, run_as_user: int?}
    """
    run_as_user = args.get("run_as_user", DEFAULT_RUN_AS_USER)
    if run_as_user == 0:
        raise PatchApplyError("Security baseline cannot run as UID 0")

    for _, container in _target_containers(docs, args.get("container")):
        ctx = ensure_path(container, "securityContext")
        ctx["runAsNonRoot"] = True
        ctx["runAsUser"] = run_as_user
        ctx["allowPrivilegeEscalation"] = False
        ctx["readOnlyRootFilesystem"] = True
        ctx.pop("privileged", None)
        ctx["capabilities"] = {"drop": ["ALL"]}
    return docs


def _apply_ensure_resource_profile(docs: List[dict], args: dict) -> List[dict]:
    """Set resource requests/limits from profile.

    Args:
        args: {container: str?, profile: str}
              profile: "small" | "medium" | "large"
    """
    profile = args["profile"]

    if profile not in RESOURCE_PROFILES:
        raise PatchApplyError(f"Unknown resource profile: {profile}. Valid: {list(RESOURCE_PROFILES.keys())}")

    profile_spec = RESOURCE_PROFILES[profile]
    for _, container in _target_containers(docs, args.get("container")):
        container["resources"] = {
            "requests": dict(profile_spec["requests"]),
            "limits": dict(profile_spec["limits"])
        }
    return docs
