"""Declarative backend capability.

The drivers talk to the cluster only through the ``Backend`` protocol:
fetch, list, server-side apply, status apply and delete of typed objects,
exchanged as plain Kubernetes-shaped dicts.  Two implementations ship with
fluxbridge:

* ``InMemoryBackend``: deterministic fake used by tests and dry runs.
* ``KubeBackend``: the Kubernetes REST API over httpx.

Kinds are resolved through ``KIND_REGISTRY``, an immutable table built once
at import time; there is no process-wide mutable scheme.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, NamedTuple, Protocol, runtime_checkable

from fluxbridge.errors import BackendIOError
from fluxbridge.models.descriptors import DeploymentDescriptor, SourceDescriptor


class KindInfo(NamedTuple):
    group: str
    version: str
    plural: str

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"


KIND_REGISTRY: MappingProxyType[str, KindInfo] = MappingProxyType({
    SourceDescriptor.KIND: KindInfo("source.toolkit.fluxcd.io", "v1", "externalartifacts"),
    DeploymentDescriptor.KIND: KindInfo("kustomize.toolkit.fluxcd.io", "v1", "kustomizations"),
})


def kind_info(kind: str) -> KindInfo:
    """Look up a registered kind, raising ``BackendIOError`` if unknown."""
    try:
        return KIND_REGISTRY[kind]
    except KeyError:
        raise BackendIOError(f"unsupported kind {kind!r}") from None


def manifest_key(manifest: dict[str, Any]) -> tuple[str, str, str]:
    """Return ``(kind, namespace, name)`` for a manifest."""
    meta = manifest.get("metadata") or {}
    kind = manifest.get("kind", "")
    name = meta.get("name", "")
    namespace = meta.get("namespace", "")
    if not kind or not name or not namespace:
        raise BackendIOError("manifest must carry kind, metadata.name and metadata.namespace")
    return kind, namespace, name


@runtime_checkable
class Backend(Protocol):
    """Typed-object access to the declarative backend.

    Every method raises ``NotFoundError`` for a missing object and
    ``BackendIOError`` for any other failure.
    """

    def get(self, kind: str, namespace: str, name: str) -> dict[str, Any]:
        """Fetch one object."""
        ...

    def list(self, kind: str, namespace: str) -> list[dict[str, Any]]:
        """List all objects of ``kind`` in ``namespace``."""
        ...

    def apply(
        self, manifest: dict[str, Any], *, field_manager: str, force: bool = False
    ) -> dict[str, Any]:
        """Server-side apply ``manifest``; returns the stored object."""
        ...

    def apply_status(self, manifest: dict[str, Any], *, field_manager: str) -> dict[str, Any]:
        """Server-side apply the ``status`` subresource of ``manifest``."""
        ...

    def delete(self, kind: str, namespace: str, name: str) -> None:
        """Request deletion of one object."""
        ...
