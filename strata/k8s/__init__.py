"""Kubernetes domain for strata.

This module provides the K8s-specific pieces of environment resolution:
- K8sArtifact: Represents K8s YAML manifests
- Strategic merge and K8s PatchDSL: Override fragments and how they apply
- Environment profiles: Probe, rollout and disruption policy per environment
- Oracles: Scaling, probe, security, network, secret and RBAC validators
- PolicyResolver: Fragments in, one validated workload configuration out
"""
