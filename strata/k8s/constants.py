"""K8s constants used across merge, resolver and oracle modules.

This module contains constants that are shared across multiple modules
to avoid circular import issues.
"""

# Environment tags with a resolution profile; exact match required
VALID_ENV_NAMES = {"local", "prod"}

# Kinds that run the file-storage workload (the single writer)
WORKLOAD_KINDS = {"Deployment", "StatefulSet"}

PROBE_FIELDS = ("readinessProbe", "livenessProbe", "startupProbe")

# Mutually exclusive probe handler keys
PROBE_HANDLERS = ("exec", "httpGet", "tcpSocket", "grpc")

# Merge keys for lists of named objects; first key present on the patch item wins
LIST_MERGE_KEYS = {
    "containers": ("name",),
    "initContainers": ("name",),
    "ephemeralContainers": ("name",),
    "volumes": ("name",),
    "env": ("name",),
    "envFrom": (),
    "volumeMounts": ("mountPath",),
    "ports": ("name", "containerPort", "port"),
    "imagePullSecrets": ("name",),
}

# Access modes that allow only one node to mount the volume read-write
SINGLE_WRITER_ACCESS_MODES = {"ReadWriteOnce", "ReadWriteOncePod"}

DEFAULT_SERVICE_PORT = 8000
DEFAULT_INGRESS_NAMESPACE = "ingress-nginx"
DEFAULT_HTTP_PROBE_PATH = "/health"

# (port, protocol) pairs the workload may reach: DNS and HTTPS
DEFAULT_EGRESS_PORTS = ((53, "UDP"), (443, "TCP"))

# Literal fields carried by the sealed credentials secret
DEFAULT_SECRET_KEYS = ("SUPERUSER_USERNAME", "SUPERUSER_PASSWORD")

# Replicas the workload must keep; scaling to zero leaves the data unserved
MIN_REPLICAS = 1
