"""Environment profiles: the per-environment probe, rollout and disruption policy.

The environment tag deterministically selects the profile:

- ``local``: single node, low rigor. Exec probes that only check the process
  is alive, tolerant of a slow-starting or partially initialized app. Rolling
  updates retire the old replica before the new one starts.
- ``prod``: strict. HTTP probes against a path served by the app, no
  unavailability during rollout, and a PodDisruptionBudget pinned to the
  single-replica ceiling.

Exec probes are also what the base ships: the image does not reliably serve
the HTTP health path in every state, so HTTP probing is a prod-only choice.

prod keeps maxUnavailable at zero, which forces maxSurge to one: during a
rollout the new pod starts before the old one stops, and the ReadWriteOnce
claim bounds that overlap to pods on the node already holding the volume.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from strata.core.config import get_config_value, get_int_config_value, load_config
from strata.core.errors import UnknownEnvironmentError
from strata.core.schema.patch_dsl import Patch, PatchOp
from strata.k8s.constants import DEFAULT_HTTP_PROBE_PATH, DEFAULT_SERVICE_PORT
from strata.k8s.models import ExecProbe, HTTPGetProbe, IntOrString, ProbePolicy

DEFAULT_EXEC_COMMAND = ["/bin/sh", "-c", "kill -0 1"]


@dataclass(frozen=True)
class EnvironmentProfile:
    """Resolution profile for one environment tag.

    Attributes:
        name: Environment tag ("local" or "prod")
        description: One-line summary shown by ``strata envs``
        readiness: Readiness probe policy
        liveness: Liveness probe policy
        max_unavailable: Rolling update maxUnavailable
        max_surge: Rolling update maxSurge
        pdb_min_available: minAvailable of the PodDisruptionBudget, None for no PDB
    """
    name: str
    description: str
    readiness: ProbePolicy
    liveness: ProbePolicy
    max_unavailable: IntOrString
    max_surge: IntOrString
    pdb_min_available: Optional[int] = None

    @property
    def probe_kind(self) -> str:
        return self.readiness.kind

    def to_patch(self, container: Optional[str] = None) -> Patch:
        """Express the profile as the final override fragment."""
        ops = [
            PatchOp("EnsureProbe", {
                "container": container, "probe": "readiness", "spec": self.readiness.to_manifest(),
            }),
            PatchOp("EnsureProbe", {
                "container": container, "probe": "liveness", "spec": self.liveness.to_manifest(),
            }),
            PatchOp("EnsureRollingUpdate", {
                "max_unavailable": self.max_unavailable, "max_surge": self.max_surge,
            }),
        ]
        if self.pdb_min_available is not None:
            ops.append(PatchOp("EnsureDisruptionBudget", {"min_available": self.pdb_min_available}))
        return Patch(ops=ops, meta={"source": f"profile:{self.name}"})


def _timing(config: Dict[str, Any], env: str, probe: str, key: str, default: int) -> int:
    return get_int_config_value(["environments", env, probe, key], default=default, config=config)


def build_profiles(config: Optional[Dict[str, Any]] = None) -> Dict[str, EnvironmentProfile]:
    """Build the environment profiles, applying any configured timing overrides.

    Args:
        config: Optional config dict (uses load_config() if not provided)

    Returns:
        Mapping from environment tag to profile
    """
    if config is None:
        config = load_config()

    command = get_config_value(["probes", "exec_command"], default=DEFAULT_EXEC_COMMAND, config=config)
    if isinstance(command, str):
        command = ["/bin/sh", "-c", command]
    http_path = get_config_value(["probes", "http_path"], default=DEFAULT_HTTP_PROBE_PATH, config=config)
    http_port = get_int_config_value(["network", "service_port"], default=DEFAULT_SERVICE_PORT, config=config)

    local = EnvironmentProfile(
        name="local",
        description="single node, exec probes, old replica retired before the new one starts",
        readiness=ExecProbe(
            probe_type="readiness",
            command=tuple(command),
            initial_delay=_timing(config, "local", "readiness", "initial_delay", 20),
            period=_timing(config, "local", "readiness", "period", 15),
            timeout=5,
            failure_threshold=3,
        ),
        liveness=ExecProbe(
            probe_type="liveness",
            command=tuple(command),
            initial_delay=_timing(config, "local", "liveness", "initial_delay", 60),
            period=_timing(config, "local", "liveness", "period", 30),
            timeout=5,
            failure_threshold=5,
        ),
        max_unavailable=1,
        max_surge=0,
    )

    prod = EnvironmentProfile(
        name="prod",
        description="HTTP probes, no unavailability during rollout, PDB at the single-replica ceiling",
        readiness=HTTPGetProbe(
            probe_type="readiness",
            path=http_path,
            port=http_port,
            initial_delay=_timing(config, "prod", "readiness", "initial_delay", 10),
            period=_timing(config, "prod", "readiness", "period", 10),
            timeout=5,
            failure_threshold=3,
        ),
        liveness=HTTPGetProbe(
            probe_type="liveness",
            path=http_path,
            port=http_port,
            initial_delay=_timing(config, "prod", "liveness", "initial_delay", 30),
            period=_timing(config, "prod", "liveness", "period", 20),
            timeout=5,
            failure_threshold=3,
        ),
        # maxSurge and maxUnavailable cannot both be zero
        max_unavailable=0,
        max_surge=1,
        pdb_min_available=1,
    )

    return {profile.name: profile for profile in (local, prod)}


def get_profile(environment: str, config: Optional[Dict[str, Any]] = None) -> EnvironmentProfile:
    """Return the profile for an environment tag.

    Raises:
        UnknownEnvironmentError: If the tag has no profile
    """
    profiles = build_profiles(config)
    if environment not in profiles:
        raise UnknownEnvironmentError(environment, list(profiles))
    return profiles[environment]


def list_profiles(config: Optional[Dict[str, Any]] = None) -> List[EnvironmentProfile]:
    return sorted(build_profiles(config).values(), key=lambda p: p.name)
