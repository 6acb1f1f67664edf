"""
Core domain-agnostic components for strata.

This package contains the schemas (violations, patches, oracles), the
verifier, error types and configuration loading.
"""

__all__ = []
