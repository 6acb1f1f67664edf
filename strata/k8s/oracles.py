"""K8s oracles for resolved manifest validation.

Each oracle checks one policy area of a fully merged configuration and
returns Violations. Error-severity violations make resolution fail closed;
warnings are reported but do not block.
"""

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from ruamel.yaml.error import YAMLError

from strata.core.schema.violation import Violation
from strata.k8s.artifact import K8sArtifact
from strata.k8s.constants import (
    DEFAULT_EGRESS_PORTS,
    DEFAULT_INGRESS_NAMESPACE,
    DEFAULT_SECRET_KEYS,
    DEFAULT_SERVICE_PORT,
    MIN_REPLICAS,
    SINGLE_WRITER_ACCESS_MODES,
)
from strata.k8s.models import (
    DisruptionBudget,
    NetworkPolicySet,
    ProbePolicy,
    RolloutStrategy,
    SecurityPolicy,
    probe_field,
)
from strata.k8s.utils import (
    find_documents,
    find_workloads,
    get_container,
    get_pod_spec,
    resource_id,
    selector_matches,
)

logger = logging.getLogger(__name__)

NAMESPACE_NAME_LABELS = ("kubernetes.io/metadata.name", "name")


def _load(artifact: K8sArtifact, prefix: str) -> Tuple[List[dict], List[Violation]]:
    """Parse an artifact, converting YAML errors into a violation."""
    try:
        return artifact.documents(), []
    except YAMLError as e:
        return [], [Violation(
            id=f"{prefix}.INVALID_YAML",
            message=f"Failed to parse YAML: {e}",
            path=list(artifact.files.keys()),
            severity="error",
        )]


def _pod_labels(workload: dict) -> dict:
    return (workload.get("spec") or {}).get("template", {}).get("metadata", {}).get("labels") or {}


def _replicas(workload: dict) -> int:
    replicas = (workload.get("spec") or {}).get("replicas")
    return 1 if replicas is None else int(replicas)


class ScalingOracle:
    """Single-writer scaling oracle.

    The workload keeps an embedded database file on a volume that only one
    writer may hold. Checks:
    - workload replicas stay between one and the writer ceiling
    - autoscalers never allow more than the ceiling or fewer than one (min or max)
    - claimed volumes use single-writer access modes
    - a rollout that lets old and new replicas overlap is flagged as a warning
    """

    def __init__(self, max_writers: int = 1):
        self.max_writers = max_writers

    def __call__(self, artifact: K8sArtifact) -> List[Violation]:
        documents, violations = _load(artifact, "scaling")

        for workload in find_workloads(documents):
            rid = resource_id(workload)
            replicas = _replicas(workload)
            if replicas > self.max_writers:
                violations.append(Violation(
                    id="scaling.REPLICAS_ABOVE_CEILING",
                    message=f"{rid} runs {replicas} replicas; single-writer persistence allows {self.max_writers}",
                    path=[rid, "spec", "replicas"],
                    severity="error",
                    evidence={"replicas": replicas, "limit": self.max_writers},
                ))
            elif replicas < MIN_REPLICAS:
                violations.append(Violation(
                    id="scaling.REPLICAS_BELOW_FLOOR",
                    message=f"{rid} runs {replicas} replicas; minReplicas is pinned at {MIN_REPLICAS}",
                    path=[rid, "spec", "replicas"],
                    severity="error",
                    evidence={"replicas": replicas, "minimum": MIN_REPLICAS},
                ))

            violations.extend(self._check_volumes(documents, workload))

            strategy = RolloutStrategy.from_manifest(workload)
            if strategy.type == "RollingUpdate" and strategy.max_surge in (0, "0%") \
                    and strategy.max_unavailable in (0, "0%"):
                violations.append(Violation(
                    id="scaling.ROLLOUT_STALLED",
                    message=f"{rid} rolling update has maxSurge=0 and maxUnavailable=0",
                    path=[rid, "spec", "strategy"],
                    severity="error",
                ))
            elif strategy.allows_overlap:
                violations.append(Violation(
                    id="scaling.ROLLOUT_OVERLAP",
                    message=f"{rid} rollout lets a new replica start before the old one is retired "
                            f"(maxSurge={strategy.max_surge})",
                    path=[rid, "spec", "strategy"],
                    severity="warning",
                    evidence={"max_surge": strategy.max_surge, "max_unavailable": strategy.max_unavailable},
                ))

        for hpa in find_documents(documents, "HorizontalPodAutoscaler"):
            rid = resource_id(hpa)
            spec = hpa.get("spec") or {}
            for field_name, default in (("minReplicas", 1), ("maxReplicas", None)):
                value = spec.get(field_name, default)
                if value is not None and int(value) > self.max_writers:
                    violations.append(Violation(
                        id=f"scaling.HPA_{field_name[:3].upper()}_ABOVE_CEILING",
                        message=f"{rid} {field_name}={value} would run more than {self.max_writers} writer; "
                                f"autoscaling is reference-only until persistence supports multiple writers",
                        path=[rid, "spec", field_name],
                        severity="error",
                        evidence={field_name: value, "limit": self.max_writers},
                    ))
                elif value is not None and int(value) < MIN_REPLICAS:
                    violations.append(Violation(
                        id=f"scaling.HPA_{field_name[:3].upper()}_BELOW_FLOOR",
                        message=f"{rid} {field_name}={value} would let the workload scale to zero",
                        path=[rid, "spec", field_name],
                        severity="error",
                        evidence={field_name: value, "minimum": MIN_REPLICAS},
                    ))

        return violations

    def _check_volumes(self, documents: List[dict], workload: dict) -> List[Violation]:
        violations = []
        rid = resource_id(workload)
        namespace = (workload.get("metadata") or {}).get("namespace")
        for volume in get_pod_spec(workload).get("volumes") or []:
            claim = (volume.get("persistentVolumeClaim") or {}).get("claimName")
            if not claim:
                continue
            pvcs = [
                p for p in find_documents(documents, "PersistentVolumeClaim", claim)
                if (p.get("metadata") or {}).get("namespace") == namespace
            ]
            if not pvcs:
                violations.append(Violation(
                    id="scaling.MISSING_CLAIM",
                    message=f"{rid} mounts PersistentVolumeClaim/{claim} which is not in the bundle",
                    path=[rid, "spec", "template", "spec", "volumes", volume.get("name", "")],
                    severity="warning",
                ))
                continue
            modes = set((pvcs[0].get("spec") or {}).get("accessModes") or [])
            if not modes or not modes <= SINGLE_WRITER_ACCESS_MODES:
                violations.append(Violation(
                    id="scaling.SHARED_WRITER_VOLUME",
                    message=f"PersistentVolumeClaim/{claim} access modes {sorted(modes)} are not single-writer",
                    path=[f"PersistentVolumeClaim/{claim}", "spec", "accessModes"],
                    severity="error",
                    evidence={"access_modes": sorted(modes)},
                ))
        return violations


class ProbeOracle:
    """Probe shape and environment probe-kind oracle.

    Readiness and liveness probes must be present with exactly one handler.
    When the artifact carries an environment tag and a profile exists for
    it, the handler kind must match the profile (exec for local, httpGet
    for prod).
    """

    PROBE_TYPES = ("readiness", "liveness")

    def __init__(self, profiles: Optional[Dict[str, object]] = None, container_name: Optional[str] = None):
        self.profiles = profiles or {}
        self.container_name = container_name

    def __call__(self, artifact: K8sArtifact) -> List[Violation]:
        documents, violations = _load(artifact, "probe")
        profile = self.profiles.get(artifact.environment) if artifact.environment else None

        for workload in find_workloads(documents):
            rid = resource_id(workload)
            container = get_container(workload, self.container_name)
            if container is None:
                violations.append(Violation(
                    id="probe.MISSING_CONTAINER",
                    message=f"{rid} has no container {self.container_name or ''}".rstrip(),
                    path=[rid, "spec", "template", "spec", "containers"],
                    severity="error",
                ))
                continue
            name = container.get("name", "unknown")

            for probe_type in self.PROBE_TYPES:
                field_name = probe_field(probe_type)
                path = [rid, "spec", "template", "spec", "containers", name, field_name]
                probe = container.get(field_name)
                if not probe:
                    violations.append(Violation(
                        id=f"probe.MISSING_{probe_type.upper()}",
                        message=f"Container {name} has no {probe_type} probe",
                        path=path,
                        severity="error",
                    ))
                    continue
                try:
                    policy = ProbePolicy.from_manifest(probe_type, probe)
                except ValueError as e:
                    violations.append(Violation(
                        id="probe.INVALID_HANDLER",
                        message=f"Container {name}: {e}",
                        path=path,
                        severity="error",
                    ))
                    continue

                expected = getattr(profile, probe_type, None)
                if expected is not None and policy.kind != expected.kind:
                    violations.append(Violation(
                        id="probe.WRONG_KIND",
                        message=f"env={artifact.environment} requires {expected.kind} {probe_type} probe, "
                                f"got {policy.kind}",
                        path=path,
                        severity="error",
                        evidence={"env": artifact.environment, "expected": expected.kind, "actual": policy.kind},
                    ))

        return violations


class SecurityOracle:
    """Security baseline oracle.

    No environment may grant elevated privileges: non-root UID, no privilege
    escalation, no privileged mode, no added capabilities, ALL capabilities
    dropped and no host namespaces. A writable root filesystem is a warning.
    """

    def __call__(self, artifact: K8sArtifact) -> List[Violation]:
        documents, violations = _load(artifact, "security")

        for workload in find_workloads(documents):
            rid = resource_id(workload)
            pod_spec = get_pod_spec(workload)
            containers = (pod_spec.get("containers") or []) + (pod_spec.get("initContainers") or [])

            for container in containers:
                policy = SecurityPolicy.from_manifest(workload, container)
                name = policy.container
                path = [rid, "spec", "template", "spec", "containers", name, "securityContext"]

                def add(code: str, message: str, severity: str = "error", **evidence):
                    violations.append(Violation(
                        id=f"security.{code}.{name}",
                        message=f"Container {name} {message}",
                        path=path,
                        severity=severity,
                        evidence={"container": name, **evidence},
                    ))

                if not policy.run_as_non_root:
                    add("NO_RUN_AS_NON_ROOT", "must set runAsNonRoot=true")
                if policy.run_as_user is None:
                    add("NO_RUN_AS_USER", "must set an explicit non-root runAsUser")
                elif policy.run_as_user == 0:
                    add("ROOT_UID", "must not run as UID 0", run_as_user=0)
                if policy.allow_privilege_escalation is not False:
                    add("PRIVILEGE_ESCALATION", "must set allowPrivilegeEscalation=false")
                if policy.privileged:
                    add("PRIVILEGED", "must not run privileged")
                if policy.added_capabilities:
                    add("ADDED_CAPABILITIES", f"must not add capabilities, got {list(policy.added_capabilities)}",
                        capabilities=list(policy.added_capabilities))
                if "ALL" not in policy.dropped_capabilities:
                    add("CAPABILITIES_NOT_DROPPED", "must drop ALL capabilities")
                if policy.host_namespaces:
                    add("HOST_NAMESPACE", f"shares host namespaces {list(policy.host_namespaces)}")
                if not policy.read_only_root_filesystem:
                    add("WRITABLE_ROOT_FS", "should set readOnlyRootFilesystem=true", severity="warning")

        return violations


class NetworkPolicyOracle:
    """Network policy oracle.

    Traffic is denied by default in both directions; every allowed flow must
    be named and port-scoped:
    - ingress only from the ingress-controller namespace to the service port
    - egress only to the allowed (port, protocol) pairs (DNS, HTTPS)
    """

    def __init__(
        self,
        service_port: int = DEFAULT_SERVICE_PORT,
        ingress_namespace: str = DEFAULT_INGRESS_NAMESPACE,
        egress_ports: Iterable[Tuple[int, str]] = DEFAULT_EGRESS_PORTS,
    ):
        self.service_port = service_port
        self.ingress_namespace = ingress_namespace
        self.egress_ports = {(int(port), str(proto).upper()) for port, proto in egress_ports}

    def __call__(self, artifact: K8sArtifact) -> List[Violation]:
        documents, violations = _load(artifact, "network")
        policies = NetworkPolicySet.from_documents(documents)

        for direction in ("Ingress", "Egress"):
            if not policies.denies_by_default(direction):
                violations.append(Violation(
                    id=f"network.NO_DEFAULT_DENY_{direction.upper()}",
                    message=f"No default-deny NetworkPolicy for {direction}",
                    path=["NetworkPolicy"],
                    severity="error",
                ))

        ingress_ports = self._ingress_ports(documents)
        for rule in policies.rules:
            path = [f"NetworkPolicy/{rule.policy}", "spec", rule.direction.lower()]
            if not rule.ports or any(port is None for port, _ in rule.ports):
                violations.append(Violation(
                    id="network.UNSCOPED_RULE",
                    message=f"NetworkPolicy/{rule.policy} {rule.direction} rule is not port-scoped",
                    path=path,
                    severity="error",
                ))
                continue

            if rule.direction == "Ingress":
                if not rule.peers:
                    violations.append(Violation(
                        id="network.UNNAMED_INGRESS_PEER",
                        message=f"NetworkPolicy/{rule.policy} ingress rule allows any source",
                        path=path,
                        severity="error",
                    ))
                elif not all(self._from_ingress_controller(peer) for peer in rule.peers):
                    violations.append(Violation(
                        id="network.INGRESS_NOT_FROM_CONTROLLER",
                        message=f"NetworkPolicy/{rule.policy} allows ingress from outside "
                                f"namespace {self.ingress_namespace}",
                        path=path,
                        severity="error",
                        evidence={"peers": [dict(p) for p in rule.peers]},
                    ))
                for port, protocol in rule.ports:
                    if port not in ingress_ports or protocol != "TCP":
                        violations.append(Violation(
                            id="network.INGRESS_PORT_NOT_ALLOWED",
                            message=f"NetworkPolicy/{rule.policy} allows ingress on {port}/{protocol}",
                            path=path,
                            severity="error",
                            evidence={"port": port, "protocol": protocol},
                        ))
            else:
                for port, protocol in rule.ports:
                    if not isinstance(port, int) or (port, protocol.upper()) not in self.egress_ports:
                        violations.append(Violation(
                            id="network.EGRESS_NOT_ALLOWED",
                            message=f"NetworkPolicy/{rule.policy} allows egress on {port}/{protocol}",
                            path=path,
                            severity="error",
                            evidence={"port": port, "protocol": protocol,
                                      "allowed": sorted(f"{p}/{q}" for p, q in self.egress_ports)},
                        ))

        return violations

    def _ingress_ports(self, documents: List[dict]) -> set:
        """Ports the workload serves: the service port, service target ports and container ports."""
        ports = {self.service_port}
        for service in find_documents(documents, "Service"):
            for port in (service.get("spec") or {}).get("ports") or []:
                if port.get("targetPort") is not None:
                    ports.add(port["targetPort"])
        for workload in find_workloads(documents):
            for container in get_pod_spec(workload).get("containers") or []:
                for port in container.get("ports") or []:
                    ports.add(port.get("containerPort"))
                    if port.get("name"):
                        ports.add(port["name"])
        return ports

    def _from_ingress_controller(self, peer: dict) -> bool:
        if peer.get("ipBlock"):
            return False
        labels = (peer.get("namespaceSelector") or {}).get("matchLabels") or {}
        return any(labels.get(key) == self.ingress_namespace for key in NAMESPACE_NAME_LABELS)


class ServiceOracle:
    """Service contract oracle: the workload is exposed on the service port."""

    def __init__(self, service_port: int = DEFAULT_SERVICE_PORT):
        self.service_port = service_port

    def __call__(self, artifact: K8sArtifact) -> List[Violation]:
        documents, violations = _load(artifact, "service")
        services = find_documents(documents, "Service")
        workloads = find_workloads(documents)

        if not services:
            violations.append(Violation(
                id="service.MISSING",
                message="No Service exposes the workload",
                path=["Service"],
                severity="error",
            ))
            return violations

        for service in services:
            rid = resource_id(service)
            spec = service.get("spec") or {}
            ports = spec.get("ports") or []
            exposed = [p for p in ports if p.get("port") == self.service_port]
            if not exposed:
                violations.append(Violation(
                    id="service.PORT_MISMATCH",
                    message=f"{rid} does not expose port {self.service_port}",
                    path=[rid, "spec", "ports"],
                    severity="error",
                    evidence={"ports": [p.get("port") for p in ports]},
                ))

            selected = [w for w in workloads if selector_matches({"matchLabels": spec.get("selector") or {}},
                                                                 _pod_labels(w))]
            if not spec.get("selector") or not selected:
                violations.append(Violation(
                    id="service.SELECTOR_MISMATCH",
                    message=f"{rid} selector does not select the workload",
                    path=[rid, "spec", "selector"],
                    severity="error",
                ))
                continue

            for port in exposed:
                target = port.get("targetPort", port.get("port"))
                known = set()
                for workload in selected:
                    for container in get_pod_spec(workload).get("containers") or []:
                        for cport in container.get("ports") or []:
                            known.add(cport.get("containerPort"))
                            known.add(cport.get("name"))
                if target not in known:
                    violations.append(Violation(
                        id="service.TARGET_PORT_UNKNOWN",
                        message=f"{rid} targetPort {target} is not a container port",
                        path=[rid, "spec", "ports"],
                        severity="error",
                        evidence={"target_port": target},
                    ))

        return violations


class SecretOracle:
    """Credential delivery oracle.

    Credentials arrive only as a SealedSecret carrying exactly the expected
    fields; plaintext Secrets with data are rejected.
    """

    def __init__(self, required_keys: Iterable[str] = DEFAULT_SECRET_KEYS):
        self.required_keys = set(required_keys)

    def __call__(self, artifact: K8sArtifact) -> List[Violation]:
        documents, violations = _load(artifact, "secret")

        for secret in find_documents(documents, "Secret"):
            if secret.get("data") or secret.get("stringData"):
                rid = resource_id(secret)
                violations.append(Violation(
                    id="secret.PLAINTEXT_SECRET",
                    message=f"{rid} carries plaintext data; use a SealedSecret",
                    path=[rid],
                    severity="error",
                ))

        sealed = find_documents(documents, "SealedSecret")
        if not sealed:
            violations.append(Violation(
                id="secret.MISSING_SEALED_SECRET",
                message="No SealedSecret delivers the superuser credentials",
                path=["SealedSecret"],
                severity="error",
            ))
            return violations

        keys = set()
        for secret in sealed:
            keys.update(((secret.get("spec") or {}).get("encryptedData") or {}).keys())
        for key in sorted(self.required_keys - keys):
            violations.append(Violation(
                id="secret.MISSING_KEY",
                message=f"SealedSecret is missing field {key}",
                path=[resource_id(sealed[0]), "spec", "encryptedData"],
                severity="error",
                evidence={"key": key},
            ))
        for key in sorted(keys - self.required_keys):
            violations.append(Violation(
                id="secret.UNEXPECTED_KEY",
                message=f"SealedSecret carries unexpected field {key}",
                path=[resource_id(sealed[0]), "spec", "encryptedData"],
                severity="warning",
                evidence={"key": key},
            ))
        return violations


class RbacOracle:
    """RBAC oracle: least privilege, no dangling references."""

    def __call__(self, artifact: K8sArtifact) -> List[Violation]:
        documents, violations = _load(artifact, "rbac")
        roles = {(resource_id(r), (r.get("metadata") or {}).get("namespace"))
                 for r in find_documents(documents, "Role")}
        accounts = {(resource_id(a), (a.get("metadata") or {}).get("namespace"))
                    for a in find_documents(documents, "ServiceAccount")}

        for kind in ("Role", "ClusterRole"):
            for role in find_documents(documents, kind):
                rid = resource_id(role)
                if kind == "ClusterRole":
                    violations.append(Violation(
                        id="rbac.CLUSTER_SCOPED",
                        message=f"{rid} grants cluster-wide permissions",
                        path=[rid],
                        severity="warning",
                    ))
                for i, rule in enumerate(role.get("rules") or []):
                    for key in ("verbs", "resources", "apiGroups"):
                        if "*" in (rule.get(key) or []):
                            violations.append(Violation(
                                id="rbac.WILDCARD",
                                message=f"{rid} rule {i} uses a wildcard in {key}",
                                path=[rid, "rules", str(i), key],
                                severity="error",
                            ))

        for binding in find_documents(documents, "RoleBinding"):
            rid = resource_id(binding)
            namespace = (binding.get("metadata") or {}).get("namespace")
            ref = binding.get("roleRef") or {}
            if ref.get("kind") == "Role" and (f"Role/{ref.get('name')}", namespace) not in roles:
                violations.append(Violation(
                    id="rbac.DANGLING_ROLE_REF",
                    message=f"{rid} refers to missing Role/{ref.get('name')}",
                    path=[rid, "roleRef"],
                    severity="error",
                ))
            for subject in binding.get("subjects") or []:
                if subject.get("kind") != "ServiceAccount":
                    continue
                subject_ns = subject.get("namespace", namespace)
                if (f"ServiceAccount/{subject.get('name')}", subject_ns) not in accounts:
                    violations.append(Violation(
                        id="rbac.DANGLING_SUBJECT",
                        message=f"{rid} binds missing ServiceAccount/{subject.get('name')}",
                        path=[rid, "subjects"],
                        severity="error",
                    ))

        for workload in find_workloads(documents):
            rid = resource_id(workload)
            namespace = (workload.get("metadata") or {}).get("namespace")
            account = get_pod_spec(workload).get("serviceAccountName")
            if not account:
                violations.append(Violation(
                    id="rbac.DEFAULT_SERVICE_ACCOUNT",
                    message=f"{rid} runs as the namespace default ServiceAccount",
                    path=[rid, "spec", "template", "spec", "serviceAccountName"],
                    severity="warning",
                ))
            elif (f"ServiceAccount/{account}", namespace) not in accounts:
                violations.append(Violation(
                    id="rbac.SERVICE_ACCOUNT_MISSING",
                    message=f"{rid} runs as ServiceAccount/{account} which is not in the bundle",
                    path=[rid, "spec", "template", "spec", "serviceAccountName"],
                    severity="error",
                ))

        return violations


class ResourceOracle:
    """Resource validation oracle.

    Every container must set both requests and limits for cpu and memory.
    """

    def __call__(self, artifact: K8sArtifact) -> List[Violation]:
        documents, violations = _load(artifact, "resource")

        for workload in find_workloads(documents):
            rid = resource_id(workload)
            for container in get_pod_spec(workload).get("containers") or []:
                name = container.get("name", "unknown")
                resources = container.get("resources") or {}
                for section in ("requests", "limits"):
                    values = resources.get(section) or {}
                    missing = [k for k in ("cpu", "memory") if not values.get(k)]
                    if missing:
                        violations.append(Violation(
                            id=f"resource.MISSING_{section.upper()}.{name}",
                            message=f"Container {name} must set {section} for {', '.join(missing)}",
                            path=[rid, "spec", "template", "spec", "containers", name, "resources", section],
                            severity="error",
                            evidence={"container": name, "missing": missing},
                        ))

        return violations


class DisruptionBudgetOracle:
    """A PodDisruptionBudget may not require more pods than can exist."""

    def __call__(self, artifact: K8sArtifact) -> List[Violation]:
        documents, violations = _load(artifact, "pdb")

        for pdb in find_documents(documents, "PodDisruptionBudget"):
            budget = DisruptionBudget.from_manifest(pdb)
            rid = resource_id(pdb)
            for workload in find_workloads(documents):
                if not selector_matches(budget.selector, _pod_labels(workload)):
                    continue
                replicas = _replicas(workload)
                try:
                    min_available = budget.resolved_min_available(replicas)
                except ValueError as e:
                    violations.append(Violation(
                        id="pdb.INVALID_MIN_AVAILABLE",
                        message=f"{rid}: {e}",
                        path=[rid, "spec", "minAvailable"],
                        severity="error",
                    ))
                    continue
                if min_available is not None and min_available > replicas:
                    violations.append(Violation(
                        id="pdb.MIN_AVAILABLE_ABOVE_REPLICAS",
                        message=f"{rid} minAvailable={min_available} exceeds "
                                f"{resource_id(workload)} replicas={replicas}",
                        path=[rid, "spec", "minAvailable"],
                        severity="error",
                        evidence={"min_available": min_available, "replicas": replicas},
                    ))

        return violations
