"""
strata: layered Kubernetes workload configuration

Resolves a base manifest profile plus environment overlays into one
non-contradictory desired state for a single-writer file-storage workload,
failing closed when an overlay would break the workload's safety policies.
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
