"""
.. include:: ../README.md
"""

__all__ = [
    "source",
    "pipeline",
    "dependency",
    "chart",
    "manifest",
    "kustomize",
    "helm",
    "kubectl",
    "release",
    "adopt",
    "operations",
    "exceptions",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
