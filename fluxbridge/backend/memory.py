"""In-memory fake of the declarative backend.

Implements enough of Kubernetes server-side apply for the drivers to be
exercised deterministically:

* Each field manager owns the leaf fields it last applied.
* Re-applying drops fields the manager previously owned but no longer
  sends, unless another manager also owns them.
* Fields owned by other managers are left untouched.  Changing one of
  them is a conflict (409) unless ``force`` is set, in which case the
  applying manager takes ownership.
* ``status`` is a separate subresource: ``apply`` ignores it and
  ``apply_status`` touches nothing else.

Reactors are callables run on every ``get`` before the object is
returned; tests use them to play the role of the asynchronous reconciler.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from fluxbridge.backend.base import kind_info, manifest_key
from fluxbridge.errors import BackendIOError, NotFoundError
from fluxbridge.models.descriptors import (
    READY_CONDITION,
    RECONCILING_CONDITION,
    STALLED_CONDITION,
    DeploymentDescriptor,
    SourceDescriptor,
)

logger = logging.getLogger(__name__)

Key = tuple[str, str, str]
FieldPath = tuple[str, ...]
Reactor = Callable[["InMemoryBackend", dict[str, Any]], None]

# Identity fields are never owned or pruned.
_IDENTITY: frozenset[FieldPath] = frozenset({
    ("apiVersion",),
    ("kind",),
    ("metadata", "name"),
    ("metadata", "namespace"),
})


class InMemoryBackend:
    """Deterministic, single-process stand-in for the cluster API.

    Parameters
    ----------
    reactors:
        Callables invoked with ``(backend, stored_object)`` on every
        ``get``.  They may mutate state through ``apply_status``.
    finalizer_reads:
        Number of ``get`` calls a deleted object survives before it
        disappears, simulating finalizers.
    """

    def __init__(
        self,
        reactors: list[Reactor] | None = None,
        *,
        finalizer_reads: int = 0,
    ) -> None:
        self._objects: dict[Key, dict[str, Any]] = {}
        self._owners: dict[Key, dict[str, set[FieldPath]]] = {}
        self._pending_delete: dict[Key, int] = {}
        self._errors: dict[tuple[str, str], BaseException] = {}
        self._resource_version = 0
        self.reactors: list[Reactor] = list(reactors or [])
        self.finalizer_reads = finalizer_reads
        self.calls: list[tuple[str, str, str]] = []

    # ------------------------------------------------------------------
    # Test hooks
    # ------------------------------------------------------------------

    def inject_error(self, op: str, kind: str, error: BaseException) -> None:
        """Make every ``op`` (get/list/apply/apply_status/delete) on ``kind`` raise."""
        self._errors[(op, kind)] = error

    def clear_errors(self) -> None:
        self._errors.clear()

    def managed_fields(self, kind: str, namespace: str, name: str) -> dict[str, set[FieldPath]]:
        """Field ownership for an object, keyed by manager."""
        return copy.deepcopy(self._owners.get((kind, namespace, name), {}))

    def _record(self, op: str, kind: str, name: str) -> None:
        self.calls.append((op, kind, name))
        error = self._errors.get((op, kind))
        if error is not None:
            raise error

    # ------------------------------------------------------------------
    # Backend protocol
    # ------------------------------------------------------------------

    def get(self, kind: str, namespace: str, name: str) -> dict[str, Any]:
        kind_info(kind)
        self._record("get", kind, name)
        key = (kind, namespace, name)

        if key in self._pending_delete:
            self._pending_delete[key] -= 1
            if self._pending_delete[key] < 0:
                self._forget(key)

        obj = self._objects.get(key)
        if obj is None:
            raise NotFoundError(kind, namespace, name)
        for reactor in self.reactors:
            reactor(self, obj)
        return copy.deepcopy(self._objects[key])

    def list(self, kind: str, namespace: str) -> list[dict[str, Any]]:
        kind_info(kind)
        self._record("list", kind, "")
        return [
            copy.deepcopy(obj)
            for (k, ns, _), obj in sorted(self._objects.items())
            if k == kind and ns == namespace
        ]

    def apply(
        self, manifest: dict[str, Any], *, field_manager: str, force: bool = False
    ) -> dict[str, Any]:
        kind, namespace, name = manifest_key(manifest)
        info = kind_info(kind)
        self._record("apply", kind, name)
        if manifest.get("apiVersion") != info.api_version:
            raise BackendIOError(
                f"apiVersion {manifest.get('apiVersion')!r} does not serve kind {kind}",
                status_code=400,
            )

        key = (kind, namespace, name)
        body = {k: v for k, v in manifest.items() if k != "status"}
        obj = self._objects.get(key)
        created = obj is None
        if obj is None:
            obj = {
                "apiVersion": info.api_version,
                "kind": kind,
                "metadata": {"name": name, "namespace": namespace, "generation": 0},
            }
        before_spec = copy.deepcopy(obj.get("spec"))
        self._merge(key, obj, body, field_manager, force=force, subresource=None)

        meta = obj["metadata"]
        if created or obj.get("spec") != before_spec:
            meta["generation"] = meta.get("generation", 0) + 1
        self._touch(obj)
        self._objects[key] = obj
        return copy.deepcopy(obj)

    def apply_status(self, manifest: dict[str, Any], *, field_manager: str) -> dict[str, Any]:
        kind, namespace, name = manifest_key(manifest)
        kind_info(kind)
        self._record("apply_status", kind, name)
        key = (kind, namespace, name)
        obj = self._objects.get(key)
        if obj is None:
            raise NotFoundError(kind, namespace, name)

        body = {"status": manifest.get("status") or {}}
        self._merge(key, obj, body, field_manager, force=True, subresource="status")
        self._touch(obj)
        return copy.deepcopy(obj)

    def delete(self, kind: str, namespace: str, name: str) -> None:
        kind_info(kind)
        self._record("delete", kind, name)
        key = (kind, namespace, name)
        obj = self._objects.get(key)
        if obj is None:
            raise NotFoundError(kind, namespace, name)
        if self.finalizer_reads > 0:
            if key not in self._pending_delete:
                obj["metadata"]["deletionTimestamp"] = _now()
                self._pending_delete[key] = self.finalizer_reads
            return
        self._forget(key)

    # ------------------------------------------------------------------
    # Field ownership
    # ------------------------------------------------------------------

    def _merge(
        self,
        key: Key,
        obj: dict[str, Any],
        body: dict[str, Any],
        manager: str,
        *,
        force: bool,
        subresource: str | None,
    ) -> None:
        owners = self._owners.setdefault(key, {})
        incoming = {p: v for p, v in _leaves(body) if p not in _IDENTITY}

        def in_scope(path: FieldPath) -> bool:
            is_status = path[:1] == ("status",)
            return is_status if subresource == "status" else not is_status

        conflicts = [
            (other, path)
            for other, paths in owners.items()
            if other != manager
            for path in paths
            if path in incoming and _lookup(obj, path) != incoming[path]
        ]
        if conflicts and not force:
            detail = ", ".join(f"{'.'.join(p)} (owned by {m})" for m, p in conflicts)
            raise BackendIOError(f"apply conflict: {detail}", status_code=409)
        for other, path in conflicts:
            owners[other].discard(path)

        previous = {p for p in owners.get(manager, set()) if in_scope(p)}
        held_by_others = set().union(*(p for m, p in owners.items() if m != manager))
        for path in previous - incoming.keys() - held_by_others:
            _prune(obj, path)

        for path, value in incoming.items():
            _assign(obj, path, copy.deepcopy(value))

        kept = {p for p in owners.get(manager, set()) if not in_scope(p)}
        owners[manager] = kept | set(incoming)

    def _touch(self, obj: dict[str, Any]) -> None:
        self._resource_version += 1
        obj["metadata"]["resourceVersion"] = str(self._resource_version)

    def _forget(self, key: Key) -> None:
        self._objects.pop(key, None)
        self._owners.pop(key, None)
        self._pending_delete.pop(key, None)
        logger.debug("InMemoryBackend: removed %s %s/%s", *key)


# ---------------------------------------------------------------------------
# Reconciler simulation
# ---------------------------------------------------------------------------


def flux_reconciler(
    *,
    ready: bool = True,
    stalled_message: str | None = None,
    lag_reads: int = 0,
    field_manager: str = "kustomize-controller",
) -> Reactor:
    """Build a reactor that plays kustomize-controller for Kustomizations.

    On each read of a Kustomization it copies the referenced
    ExternalArtifact's revision into ``lastAttemptedRevision`` and, when
    ``ready``, into ``lastAppliedRevision`` with ``Ready=True``.

    Parameters
    ----------
    ready:
        Report success (``Ready=True``) or failure (``Ready=False``).
    stalled_message:
        If set, report ``Stalled=True`` with this message instead.
    lag_reads:
        Number of reads to leave the Kustomization untouched for after a
        new revision appears, simulating reconciler latency.
    """
    seen: dict[tuple[str, str], str] = {}
    remaining: dict[tuple[str, str], int] = {}

    def react(backend: InMemoryBackend, obj: dict[str, Any]) -> None:
        if obj.get("kind") != DeploymentDescriptor.KIND:
            return
        meta = obj["metadata"]
        if "deletionTimestamp" in meta:
            return
        ref = (obj.get("spec") or {}).get("sourceRef") or {}
        source = backend._objects.get(
            (SourceDescriptor.KIND, ref.get("namespace", meta["namespace"]), ref.get("name", ""))
        )
        if source is None:
            return
        artifact = (source.get("status") or {}).get("artifact")
        if not artifact:
            return

        revision = artifact["revision"]
        obj_key = (meta["namespace"], meta["name"])
        if seen.get(obj_key) != revision:
            seen[obj_key] = revision
            remaining[obj_key] = lag_reads
        if remaining[obj_key] > 0:
            remaining[obj_key] -= 1
            return

        generation = meta.get("generation", 0)
        status: dict[str, Any] = {
            "observedGeneration": generation,
            "lastAttemptedRevision": revision,
        }
        if stalled_message is not None:
            conditions = [
                _condition(STALLED_CONDITION, "True", "BuildFailed", stalled_message, generation),
                _condition(READY_CONDITION, "False", "BuildFailed", stalled_message, generation),
            ]
        elif ready:
            status["lastAppliedRevision"] = revision
            conditions = [
                _condition(
                    READY_CONDITION, "True", "ReconciliationSucceeded",
                    f"Applied revision: {revision}", generation,
                ),
            ]
        else:
            conditions = [
                _condition(
                    READY_CONDITION, "False", "HealthCheckFailed",
                    "health check failed", generation,
                ),
            ]
        status["conditions"] = conditions
        backend.apply_status(
            {
                "apiVersion": obj["apiVersion"],
                "kind": obj["kind"],
                "metadata": {"name": meta["name"], "namespace": meta["namespace"]},
                "status": status,
            },
            field_manager=field_manager,
        )

    return react


def reconciling_condition(generation: int = 1) -> dict[str, Any]:
    """A ``Reconciling=True`` condition, as emitted while progress is underway."""
    return _condition(RECONCILING_CONDITION, "True", "Progressing", "reconciling", generation)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _condition(
    type_: str, status: str, reason: str, message: str, generation: int
) -> dict[str, Any]:
    return {
        "type": type_,
        "status": status,
        "reason": reason,
        "message": message,
        "observedGeneration": generation,
        "lastTransitionTime": _now(),
    }


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _leaves(value: dict[str, Any], prefix: FieldPath = ()) -> list[tuple[FieldPath, Any]]:
    """Flatten nested dicts into ``(path, value)`` leaves; lists are atomic."""
    out: list[tuple[FieldPath, Any]] = []
    for k, v in value.items():
        path = (*prefix, k)
        if isinstance(v, dict) and v:
            out.extend(_leaves(v, path))
        else:
            out.append((path, v))
    return out


_MISSING = object()


def _lookup(obj: dict[str, Any], path: FieldPath) -> Any:
    node: Any = obj
    for part in path:
        if not isinstance(node, dict) or part not in node:
            return _MISSING
        node = node[part]
    return node


def _assign(obj: dict[str, Any], path: FieldPath, value: Any) -> None:
    node = obj
    for part in path[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    # An empty map claims the key without clearing fields set by others.
    if value == {} and isinstance(node.get(path[-1]), dict):
        return
    node[path[-1]] = value


def _prune(obj: dict[str, Any], path: FieldPath) -> None:
    """Delete a leaf and any parent dicts left empty by its removal."""
    parents: list[tuple[dict[str, Any], str]] = []
    node: Any = obj
    for part in path[:-1]:
        if not isinstance(node, dict) or part not in node:
            return
        parents.append((node, part))
        node = node[part]
    if isinstance(node, dict):
        node.pop(path[-1], None)
    for parent, part in reversed(parents):
        if parent[part] == {}:
            del parent[part]
        else:
            break
