"""Oracle set configuration.

Single source of truth for the oracles run against a resolved configuration,
parameterized from strata.json (see strata.core.config).
"""

from typing import Any, Dict, List, Optional

from strata.core.config import get_config_value, get_int_config_value, load_config
from strata.k8s.constants import (
    DEFAULT_EGRESS_PORTS,
    DEFAULT_INGRESS_NAMESPACE,
    DEFAULT_SECRET_KEYS,
    DEFAULT_SERVICE_PORT,
)
from strata.k8s.environments import build_profiles
from strata.k8s.oracles import (
    DisruptionBudgetOracle,
    NetworkPolicyOracle,
    ProbeOracle,
    RbacOracle,
    ResourceOracle,
    ScalingOracle,
    SecretOracle,
    SecurityOracle,
    ServiceOracle,
)


def _egress_ports(config: Dict[str, Any]) -> List[tuple]:
    entries = get_config_value(["network", "egress_ports"], default=None, config=config)
    if not entries:
        return list(DEFAULT_EGRESS_PORTS)
    ports = []
    for entry in entries:
        # "53/UDP" or {"port": 53, "protocol": "UDP"}
        if isinstance(entry, str):
            port, _, protocol = entry.partition("/")
            ports.append((int(port), protocol or "TCP"))
        else:
            ports.append((int(entry["port"]), entry.get("protocol", "TCP")))
    return ports


def get_oracles_for_environment(
    environment: Optional[str] = None, config: Optional[Dict[str, Any]] = None
) -> List[Any]:
    """Return the standard oracle set.

    Args:
        environment: Environment tag; currently every environment runs the
                     same set, with environment-specific rules read from the
                     artifact's tag by the oracles themselves
        config: Optional config dict (uses load_config() if not provided)

    Returns:
        List of oracle instances
    """
    if config is None:
        config = load_config()

    service_port = get_int_config_value(["network", "service_port"], default=DEFAULT_SERVICE_PORT, config=config)
    container = get_config_value(["workload", "container"], default=None, config=config)
    secret_keys = get_config_value(["secrets", "required_keys"], default=list(DEFAULT_SECRET_KEYS), config=config)
    if isinstance(secret_keys, str):
        secret_keys = [k.strip() for k in secret_keys.split(",") if k.strip()]

    return [
        ScalingOracle(max_writers=get_int_config_value(["policy", "max_writers"], default=1, config=config)),
        ProbeOracle(profiles=build_profiles(config), container_name=container),
        SecurityOracle(),
        NetworkPolicyOracle(
            service_port=service_port,
            ingress_namespace=get_config_value(
                ["network", "ingress_namespace"], default=DEFAULT_INGRESS_NAMESPACE, config=config
            ),
            egress_ports=_egress_ports(config),
        ),
        ServiceOracle(service_port=service_port),
        SecretOracle(required_keys=secret_keys),
        RbacOracle(),
        ResourceOracle(),
        DisruptionBudgetOracle(),
    ]
