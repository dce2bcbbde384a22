"""Declarative backend implementations: in-memory fake and Kubernetes REST."""

from fluxbridge.backend.base import KIND_REGISTRY, Backend, KindInfo
from fluxbridge.backend.kube import KubeBackend
from fluxbridge.backend.memory import InMemoryBackend, flux_reconciler

__all__ = [
    "Backend",
    "KindInfo",
    "KIND_REGISTRY",
    "InMemoryBackend",
    "KubeBackend",
    "flux_reconciler",
]
