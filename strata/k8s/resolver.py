"""Environment-conditional policy resolver.

Given an environment tag, resolves a complete, non-contradictory workload
configuration by applying override fragments to the base:

1. Fragments are applied in order (last-applied-wins for scalars, structured
   merge for composite fields). After every fragment the writer bounds are
   enforced: a workload above or below one replica, or an autoscaler
   allowing either, fails resolution immediately rather than being clamped.
2. The environment profile is applied last, so the environment tag alone
   decides the probe policy, rollout strategy and disruption budget.
3. Disruption budgets are normalized against the resolved replica count,
   both before and after the profile: percentages become integers, and any
   minAvailable above the replica count is rejected.
4. Every oracle runs against the result; any error-severity violation
   rejects the resolution.
"""

import copy
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from strata.core.config import get_config_value, get_int_config_value, load_config
from strata.core.errors import (
    DisruptionBudgetError,
    PolicyViolationError,
    ResolutionError,
    UnknownEnvironmentError,
    WriterCeilingError,
    WriterFloorError,
)
from strata.core.schema.patch_dsl import Patch
from strata.core.schema.violation import Violation
from strata.core.verifier import split_by_severity, verify
from strata.k8s.artifact import K8sArtifact
from strata.k8s.environments import EnvironmentProfile, build_profiles
from strata.k8s.kustomization import Overlay, environment_for, load_overlay
from strata.k8s.models import (
    DisruptionBudget,
    NetworkPolicySet,
    ProbePolicy,
    ScalingPolicy,
    SecurityPolicy,
    WorkloadSpec,
)
from strata.k8s.constants import MIN_REPLICAS
from strata.k8s.oracle_config import get_oracles_for_environment
from strata.k8s.patch_dsl import apply_k8s_patch
from strata.k8s.utils import (
    dump_documents,
    find_documents,
    find_workloads,
    get_containers,
    resource_id,
    selector_matches,
)

logger = logging.getLogger(__name__)


@dataclass
class ResolvedWorkload:
    """Result of resolving one environment.

    Attributes:
        environment: Environment tag the configuration was resolved for
        documents: Merged manifest documents
        warnings: Non-blocking violations reported by the oracles
        container_name: Workload container the policies apply to
    """
    environment: str
    documents: List[dict]
    warnings: List[Violation] = field(default_factory=list)
    container_name: Optional[str] = None

    @property
    def workload_manifest(self) -> dict:
        return find_workloads(self.documents)[0]

    @property
    def workload(self) -> WorkloadSpec:
        return WorkloadSpec.from_manifest(self.workload_manifest, self.container_name)

    @property
    def scaling(self) -> ScalingPolicy:
        return ScalingPolicy.from_documents(self.documents, self.workload_manifest)

    @property
    def security(self) -> SecurityPolicy:
        return self.workload.security

    @property
    def network_policies(self) -> NetworkPolicySet:
        return NetworkPolicySet.from_documents(self.documents)

    @property
    def disruption_budget(self) -> Optional[DisruptionBudget]:
        labels = _pod_labels(self.workload_manifest)
        for pdb in find_documents(self.documents, "PodDisruptionBudget"):
            budget = DisruptionBudget.from_manifest(pdb)
            if selector_matches(budget.selector, labels):
                return budget
        return None

    def probe(self, probe_type: str) -> ProbePolicy:
        """Return the resolved probe policy ("readiness" or "liveness").

        Raises:
            KeyError: If the container has no such probe
        """
        return self.workload.probes[probe_type]

    def to_yaml(self) -> str:
        return dump_documents(self.documents)

    def to_artifact(self, filename: str = "resolved.yaml") -> K8sArtifact:
        return K8sArtifact.from_documents(self.documents, environment=self.environment, filename=filename)


def _pod_labels(workload: dict) -> dict:
    return (workload.get("spec") or {}).get("template", {}).get("metadata", {}).get("labels") or {}


class PolicyResolver:
    """Resolves base documents plus override fragments for an environment.

    Example:
        >>> resolver = PolicyResolver()
        >>> resolved = resolver.resolve("local", base_documents, fragments)
        >>> resolved.probe("readiness").kind
        'exec'
    """

    def __init__(
        self,
        profiles: Optional[Dict[str, EnvironmentProfile]] = None,
        oracles: Optional[List[Any]] = None,
        max_writers: Optional[int] = None,
        container_name: Optional[str] = None,
        config: Optional[Dict[str, Any]] = None,
    ):
        """Initialize the resolver.

        Args:
            profiles: Environment profiles (default: build_profiles(config))
            oracles: Oracles run on the result (default: the standard set)
            max_writers: Writer ceiling (default: policy.max_writers, 1)
            container_name: Workload container (default: workload.container, else first)
            config: Optional config dict (uses load_config() if not provided)
        """
        if config is None:
            config = load_config()
        self.profiles = profiles if profiles is not None else build_profiles(config)
        self.oracles = oracles if oracles is not None else get_oracles_for_environment(config=config)
        if max_writers is None:
            max_writers = get_int_config_value(["policy", "max_writers"], default=1, config=config)
        self.max_writers = max_writers
        self.container_name = container_name or get_config_value(["workload", "container"], config=config)

    def resolve(self, environment: str, base: List[dict], fragments: List[Patch]) -> ResolvedWorkload:
        """Resolve the configuration for one environment.

        Args:
            environment: Environment tag ("local" or "prod")
            base: Base manifest documents (not modified)
            fragments: Override fragments, applied in order

        Returns:
            ResolvedWorkload with every field resolved

        Raises:
            UnknownEnvironmentError: If the environment has no profile
            WriterCeilingError: If any step would allow more than one writer
            WriterFloorError: If any step would leave no running writer
            DisruptionBudgetError: If a PDB requires more pods than can exist
            PolicyViolationError: If the result fails an oracle
            PatchApplyError: If a fragment cannot be applied
            ResolutionError: If a replica or budget value is malformed
        """
        profile = self.profiles.get(environment)
        if profile is None:
            raise UnknownEnvironmentError(environment, list(self.profiles))

        documents = copy.deepcopy(list(base))
        self._enforce_writer_bounds(documents, "base")

        for fragment in fragments:
            logger.debug(f"Applying {fragment.source}")
            documents = apply_k8s_patch(documents, fragment)
            self._enforce_writer_bounds(documents, fragment.source)

        workload = self._single_workload(documents)
        container = self.container_name or (get_containers(workload)[0].get("name")
                                            if get_containers(workload) else None)
        # overlay budgets are checked before the profile can overwrite them
        documents = self._resolve_disruption_budgets(documents)

        documents = apply_k8s_patch(documents, profile.to_patch(container))
        self._enforce_writer_bounds(documents, f"profile:{environment}")
        documents = self._resolve_disruption_budgets(documents)

        artifact = K8sArtifact.from_documents(documents, environment=environment)
        errors, warnings = split_by_severity(verify(artifact, self.oracles))
        if errors:
            raise PolicyViolationError(errors)
        for warning in warnings:
            logger.warning(f"{warning.id}: {warning.message}")

        logger.info(f"Resolved {resource_id(workload)} for env={environment}")
        return ResolvedWorkload(
            environment=environment,
            documents=documents,
            warnings=warnings,
            container_name=container,
        )

    def resolve_overlay(self, overlay: Overlay, environment: Optional[str] = None) -> ResolvedWorkload:
        """Resolve a loaded overlay; the environment defaults to the overlay's directory name."""
        env = environment_for(overlay.path, environment)
        return self.resolve(env, overlay.base, overlay.fragments)

    def _single_workload(self, documents: List[dict]) -> dict:
        workloads = find_workloads(documents)
        if len(workloads) != 1:
            raise ResolutionError(
                f"Expected exactly one workload, found {len(workloads)}",
                details=", ".join(resource_id(w) for w in workloads) or None,
            )
        return workloads[0]

    def _enforce_writer_bounds(self, documents: List[dict], source: str) -> None:
        for workload in find_workloads(documents):
            rid = resource_id(workload)
            replicas = (workload.get("spec") or {}).get("replicas")
            if replicas is not None:
                self._check_bounds(rid, "spec.replicas", _as_int(replicas, rid, "spec.replicas", source), source)
        for hpa in find_documents(documents, "HorizontalPodAutoscaler"):
            rid = resource_id(hpa)
            spec = hpa.get("spec") or {}
            for field_name in ("minReplicas", "maxReplicas"):
                value = spec.get(field_name)
                if value is not None:
                    path = f"spec.{field_name}"
                    self._check_bounds(rid, path, _as_int(value, rid, path, source), source)

    def _check_bounds(self, rid: str, path: str, value: int, source: str) -> None:
        if value > self.max_writers:
            raise WriterCeilingError(rid, path, value, self.max_writers, source)
        if value < MIN_REPLICAS:
            raise WriterFloorError(rid, path, value, MIN_REPLICAS, source)

    def _resolve_disruption_budgets(self, documents: List[dict]) -> List[dict]:
        workload = self._single_workload(documents)
        replicas = (workload.get("spec") or {}).get("replicas")
        replicas = 1 if replicas is None else _as_int(replicas, resource_id(workload), "spec.replicas")
        labels = _pod_labels(workload)

        for pdb in find_documents(documents, "PodDisruptionBudget"):
            spec = pdb.get("spec") or {}
            if not selector_matches(spec.get("selector"), labels):
                continue
            name = (pdb.get("metadata") or {}).get("name", "")
            value = spec.get("minAvailable")
            if value is None:
                continue
            try:
                resolved = DisruptionBudget(name=name, min_available=value).resolved_min_available(replicas)
            except ValueError:
                raise ResolutionError(
                    f"PodDisruptionBudget/{name} minAvailable={value!r} is not an integer or percentage"
                ) from None
            if resolved > replicas:
                raise DisruptionBudgetError(name, value, replicas)
            if resolved != value:
                logger.info(f"PodDisruptionBudget/{name} minAvailable {value} -> {resolved}")
                spec["minAvailable"] = resolved
        return documents


def _as_int(value: Any, rid: str, path: str, source: Optional[str] = None) -> int:
    if isinstance(value, bool):
        value = str(value)
    try:
        return int(value)
    except (TypeError, ValueError):
        origin = f" (from {source})" if source else ""
        raise ResolutionError(f"{rid} {path}={value!r} is not an integer{origin}") from None


def resolve_overlay(
    path: Union[str, Path], environment: Optional[str] = None, **resolver_kwargs: Any
) -> ResolvedWorkload:
    """Load and resolve an overlay directory.

    Args:
        path: Overlay directory (e.g. manifests/overlays/prod)
        environment: Optional environment tag (default: directory name)
        **resolver_kwargs: Passed to PolicyResolver

    Returns:
        ResolvedWorkload
    """
    overlay = load_overlay(path)
    return PolicyResolver(**resolver_kwargs).resolve_overlay(overlay, environment)
