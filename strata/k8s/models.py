"""Typed records extracted from resolved manifests.

These records have no lifecycle of their own: they are read out of the
merged documents so that policies can be checked and asserted without
walking raw YAML mappings.
"""

import math
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union

from strata.k8s.constants import PROBE_HANDLERS
from strata.k8s.utils import find_documents, get_container, get_pod_spec, resource_id

IntOrString = Union[int, str]

PROBE_TYPES = ("readiness", "liveness", "startup")


def probe_field(probe_type: str) -> str:
    """Map "readiness" -> "readinessProbe"."""
    if probe_type not in PROBE_TYPES:
        raise ValueError(f"Unknown probe type '{probe_type}', expected one of {PROBE_TYPES}")
    return f"{probe_type}Probe"


def resolve_int_or_percent(value: IntOrString, total: int) -> int:
    """Resolve an int-or-percent value against a total, rounding up.

    Raises:
        ValueError: If value is neither an int nor an "N%" string
    """
    if isinstance(value, bool):
        raise ValueError(f"Expected int or percentage, got {value!r}")
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if text.endswith("%"):
        return math.ceil(int(text[:-1]) * total / 100)
    return int(text)


@dataclass(frozen=True)
class ProbePolicy:
    """Timing parameters shared by every probe handler kind.

    Subclasses add the handler itself; ``kind`` is the manifest handler key.
    """
    probe_type: str = "readiness"
    initial_delay: int = 0
    period: int = 10
    timeout: int = 1
    failure_threshold: int = 3

    kind: ClassVar[str] = ""

    def _timings(self) -> Dict[str, int]:
        return {
            "initialDelaySeconds": self.initial_delay,
            "periodSeconds": self.period,
            "timeoutSeconds": self.timeout,
            "failureThreshold": self.failure_threshold,
        }

    def handler(self) -> Dict[str, Any]:
        raise NotImplementedError

    def to_manifest(self) -> Dict[str, Any]:
        """Render the probe as a container probe mapping."""
        probe = {self.kind: self.handler()}
        probe.update(self._timings())
        return probe

    @staticmethod
    def from_manifest(probe_type: str, probe: dict) -> "ProbePolicy":
        """Build a ProbePolicy from a container probe mapping.

        Raises:
            ValueError: If the probe does not have exactly one handler, or
                        uses a handler other than exec/httpGet
        """
        handlers = [h for h in PROBE_HANDLERS if probe.get(h) is not None]
        if len(handlers) != 1:
            raise ValueError(
                f"{probe_type} probe must have exactly one handler, found {handlers or 'none'}"
            )
        timings = dict(
            probe_type=probe_type,
            initial_delay=int(probe.get("initialDelaySeconds", 0)),
            period=int(probe.get("periodSeconds", 10)),
            timeout=int(probe.get("timeoutSeconds", 1)),
            failure_threshold=int(probe.get("failureThreshold", 3)),
        )
        handler = handlers[0]
        if handler == "exec":
            command = tuple(str(c) for c in (probe["exec"].get("command") or []))
            return ExecProbe(command=command, **timings)
        if handler == "httpGet":
            http = probe["httpGet"]
            return HTTPGetProbe(
                path=str(http.get("path", "/")),
                port=http.get("port"),
                scheme=str(http.get("scheme", "HTTP")),
                **timings,
            )
        raise ValueError(f"Unsupported {probe_type} probe handler: {handler}")


@dataclass(frozen=True)
class ExecProbe(ProbePolicy):
    """Runs a command in the container; checks process liveness only."""
    command: Tuple[str, ...] = ()

    kind: ClassVar[str] = "exec"

    def handler(self) -> Dict[str, Any]:
        return {"command": list(self.command)}


@dataclass(frozen=True)
class HTTPGetProbe(ProbePolicy):
    """Issues an HTTP GET against a path served by the application."""
    path: str = "/"
    port: IntOrString = 8000
    scheme: str = "HTTP"

    kind: ClassVar[str] = "httpGet"

    def handler(self) -> Dict[str, Any]:
        return {"path": self.path, "port": self.port, "scheme": self.scheme}


@dataclass(frozen=True)
class SecurityPolicy:
    """Effective security settings for one container.

    Container-level securityContext fields override the pod-level ones.
    """
    container: str
    run_as_user: Optional[int]
    run_as_non_root: bool
    allow_privilege_escalation: Optional[bool]
    privileged: bool
    added_capabilities: Tuple[str, ...]
    dropped_capabilities: Tuple[str, ...]
    read_only_root_filesystem: bool
    host_namespaces: Tuple[str, ...] = ()

    @property
    def non_root(self) -> bool:
        return self.run_as_non_root and self.run_as_user is not None and self.run_as_user != 0

    @property
    def elevated(self) -> bool:
        """True if the container can gain any privilege beyond a plain user."""
        return (
            self.privileged
            or bool(self.added_capabilities)
            or self.allow_privilege_escalation is not False
            or "ALL" not in self.dropped_capabilities
            or bool(self.host_namespaces)
            or not self.non_root
        )

    @classmethod
    def from_manifest(cls, workload: dict, container: dict) -> "SecurityPolicy":
        pod_spec = get_pod_spec(workload)
        pod_ctx = pod_spec.get("securityContext") or {}
        ctx = container.get("securityContext") or {}
        capabilities = ctx.get("capabilities") or {}

        run_as_user = ctx.get("runAsUser", pod_ctx.get("runAsUser"))
        run_as_non_root = ctx.get("runAsNonRoot", pod_ctx.get("runAsNonRoot"))
        host_namespaces = tuple(
            key for key in ("hostNetwork", "hostPID", "hostIPC") if pod_spec.get(key)
        )
        return cls(
            container=str(container.get("name", "unknown")),
            run_as_user=int(run_as_user) if run_as_user is not None else None,
            run_as_non_root=bool(run_as_non_root),
            allow_privilege_escalation=ctx.get("allowPrivilegeEscalation"),
            privileged=bool(ctx.get("privileged", False)),
            added_capabilities=tuple(str(c) for c in capabilities.get("add") or []),
            dropped_capabilities=tuple(str(c) for c in capabilities.get("drop") or []),
            read_only_root_filesystem=bool(ctx.get("readOnlyRootFilesystem", False)),
            host_namespaces=host_namespaces,
        )


@dataclass(frozen=True)
class RolloutStrategy:
    type: str = "RollingUpdate"
    max_unavailable: Optional[IntOrString] = "25%"
    max_surge: Optional[IntOrString] = "25%"

    @property
    def allows_overlap(self) -> bool:
        """True if an old and a new replica can run at the same time."""
        if self.type != "RollingUpdate":
            return False
        return self.max_surge not in (0, "0", "0%", None)

    @classmethod
    def from_manifest(cls, workload: dict) -> "RolloutStrategy":
        spec = workload.get("spec") or {}
        if workload.get("kind") == "StatefulSet":
            strategy = spec.get("updateStrategy") or {}
            rolling = strategy.get("rollingUpdate") or {}
            return cls(
                type=strategy.get("type", "RollingUpdate"),
                max_unavailable=rolling.get("maxUnavailable", 1),
                max_surge=0,
            )
        strategy = spec.get("strategy") or {}
        kind = strategy.get("type", "RollingUpdate")
        if kind == "Recreate":
            return cls(type=kind, max_unavailable=None, max_surge=None)
        rolling = strategy.get("rollingUpdate") or {}
        return cls(
            type=kind,
            max_unavailable=rolling.get("maxUnavailable", "25%"),
            max_surge=rolling.get("maxSurge", "25%"),
        )


@dataclass
class WorkloadSpec:
    """Desired state of the single workload container."""
    kind: str
    name: str
    namespace: Optional[str]
    container: str
    image: str
    replicas: int
    resources: Dict[str, Any]
    probes: Dict[str, ProbePolicy]
    volume_mounts: List[Dict[str, Any]]
    security: SecurityPolicy
    strategy: RolloutStrategy

    @classmethod
    def from_manifest(cls, workload: dict, container_name: Optional[str] = None) -> "WorkloadSpec":
        """Extract the workload record.

        Raises:
            ValueError: If the container is missing or a probe is malformed
        """
        container = get_container(workload, container_name)
        if container is None:
            raise ValueError(f"{resource_id(workload)} has no container {container_name or ''}".rstrip())

        probes = {}
        for probe_type in PROBE_TYPES:
            probe = container.get(probe_field(probe_type))
            if probe:
                probes[probe_type] = ProbePolicy.from_manifest(probe_type, probe)

        metadata = workload.get("metadata") or {}
        replicas = (workload.get("spec") or {}).get("replicas")
        return cls(
            kind=workload.get("kind", ""),
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace"),
            container=container.get("name", ""),
            image=container.get("image", ""),
            replicas=1 if replicas is None else int(replicas),
            resources=dict(container.get("resources") or {}),
            probes=probes,
            volume_mounts=[dict(m) for m in container.get("volumeMounts") or []],
            security=SecurityPolicy.from_manifest(workload, container),
            strategy=RolloutStrategy.from_manifest(workload),
        )


@dataclass(frozen=True)
class ScalingPolicy:
    """Replica bounds of the workload, including any autoscaler targeting it."""
    min_replicas: int
    max_replicas: int
    autoscaled: bool = False
    metrics: Tuple[str, ...] = ()

    @classmethod
    def from_documents(cls, documents: List[dict], workload: dict) -> "ScalingPolicy":
        replicas = (workload.get("spec") or {}).get("replicas")
        replicas = 1 if replicas is None else int(replicas)
        name = (workload.get("metadata") or {}).get("name")

        for hpa in find_documents(documents, "HorizontalPodAutoscaler"):
            spec = hpa.get("spec") or {}
            target = spec.get("scaleTargetRef") or {}
            if target.get("kind") != workload.get("kind") or target.get("name") != name:
                continue
            metrics = []
            for metric in spec.get("metrics") or []:
                metric_type = metric.get("type", "")
                source = metric.get(metric_type[:1].lower() + metric_type[1:]) or {}
                source_name = source.get("name") or (source.get("metric") or {}).get("name")
                metrics.append(f"{metric_type}:{source_name}" if source_name else metric_type)
            return cls(
                min_replicas=int(spec.get("minReplicas", 1)),
                max_replicas=int(spec.get("maxReplicas", 1)),
                autoscaled=True,
                metrics=tuple(metrics),
            )
        return cls(min_replicas=replicas, max_replicas=replicas)


@dataclass(frozen=True)
class AllowRule:
    """One ingress or egress rule of a NetworkPolicy."""
    policy: str
    direction: str
    peers: Tuple[Dict[str, Any], ...]
    ports: Tuple[Tuple[Optional[IntOrString], str], ...]


@dataclass(frozen=True)
class NetworkPolicySet:
    """Default-deny directions plus every explicit allow rule in the bundle."""
    default_deny: Tuple[str, ...]
    rules: Tuple[AllowRule, ...]

    def denies_by_default(self, direction: str) -> bool:
        return direction in self.default_deny

    def allowed_ports(self, direction: str) -> List[Tuple[Optional[IntOrString], str]]:
        return [p for rule in self.rules if rule.direction == direction for p in rule.ports]

    @classmethod
    def from_documents(cls, documents: List[dict]) -> "NetworkPolicySet":
        default_deny = []
        rules = []
        for policy in find_documents(documents, "NetworkPolicy"):
            name = (policy.get("metadata") or {}).get("name", "<unnamed>")
            spec = policy.get("spec") or {}
            policy_types = spec.get("policyTypes")
            if not policy_types:
                policy_types = ["Ingress"] + (["Egress"] if "egress" in spec else [])

            for direction in policy_types:
                key = direction.lower()
                entries = spec.get(key)
                if not entries:
                    if not spec.get("podSelector"):
                        default_deny.append(direction)
                    continue
                peer_key = "from" if direction == "Ingress" else "to"
                for entry in entries:
                    entry = entry or {}
                    ports = tuple(
                        (p.get("port"), str(p.get("protocol", "TCP")))
                        for p in entry.get("ports") or []
                    )
                    peers = tuple(dict(p) for p in entry.get(peer_key) or [])
                    rules.append(AllowRule(policy=name, direction=direction, peers=peers, ports=ports))
        return cls(default_deny=tuple(sorted(set(default_deny))), rules=tuple(rules))


@dataclass(frozen=True)
class DisruptionBudget:
    name: str
    min_available: Optional[IntOrString] = None
    max_unavailable: Optional[IntOrString] = None
    selector: Dict[str, Any] = field(default_factory=dict)

    def resolved_min_available(self, replicas: int) -> Optional[int]:
        if self.min_available is None:
            return None
        return resolve_int_or_percent(self.min_available, replicas)

    @classmethod
    def from_manifest(cls, pdb: dict) -> "DisruptionBudget":
        spec = pdb.get("spec") or {}
        return cls(
            name=(pdb.get("metadata") or {}).get("name", ""),
            min_available=spec.get("minAvailable"),
            max_unavailable=spec.get("maxUnavailable"),
            selector=dict(spec.get("selector") or {}),
        )
