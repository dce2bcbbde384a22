"""Kubernetes REST backend over httpx.

Speaks the subset of the API server protocol fluxbridge needs:

* ``GET`` / ``DELETE`` on a named custom resource,
* ``GET`` on the namespaced collection,
* server-side apply: ``PATCH`` with ``application/apply-patch+yaml``,
  ``fieldManager`` and ``force`` on the object or its ``/status``
  subresource.  JSON is valid YAML, so the manifest is sent as JSON.

A 404 becomes ``NotFoundError``; any other HTTP or transport failure
becomes ``BackendIOError``.  Nothing is retried here.
"""

from __future__ import annotations

import json
import logging
import ssl
from types import TracebackType
from typing import Any

import httpx

from fluxbridge.backend.base import kind_info, manifest_key
from fluxbridge.config import BridgeConfig
from fluxbridge.errors import BackendIOError, NotFoundError

logger = logging.getLogger(__name__)

APPLY_PATCH_CONTENT_TYPE = "application/apply-patch+yaml"


class KubeBackend:
    """Backend backed by a live Kubernetes API server.

    Parameters
    ----------
    client:
        A configured ``httpx.Client`` whose ``base_url`` points at the API
        server.  Use ``KubeBackend.from_config`` to build one.
    """

    def __init__(self, client: httpx.Client) -> None:
        self._client = client

    @classmethod
    def from_config(cls, config: BridgeConfig) -> KubeBackend:
        headers = {"Accept": "application/json"}
        token = config.resolve_kube_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"

        verify: bool | ssl.SSLContext = config.kube_verify_tls
        ca_file = config.resolve_kube_ca()
        if config.kube_verify_tls and ca_file is not None:
            verify = ssl.create_default_context(cafile=str(ca_file))

        client = httpx.Client(
            base_url=config.kube_api_url,
            headers=headers,
            verify=verify,
            timeout=config.kube_request_timeout,
        )
        logger.info("KubeBackend: using API server %s", config.kube_api_url)
        return cls(client)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> KubeBackend:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    # ------------------------------------------------------------------
    # URLs
    # ------------------------------------------------------------------

    @staticmethod
    def _collection_path(kind: str, namespace: str) -> str:
        info = kind_info(kind)
        return f"/apis/{info.group}/{info.version}/namespaces/{namespace}/{info.plural}"

    def _object_path(self, kind: str, namespace: str, name: str) -> str:
        return f"{self._collection_path(kind, namespace)}/{name}"

    # ------------------------------------------------------------------
    # Backend protocol
    # ------------------------------------------------------------------

    def get(self, kind: str, namespace: str, name: str) -> dict[str, Any]:
        response = self._send(
            "GET", self._object_path(kind, namespace, name), key=(kind, namespace, name)
        )
        return response.json()

    def list(self, kind: str, namespace: str) -> list[dict[str, Any]]:
        info = kind_info(kind)
        response = self._send(
            "GET", self._collection_path(kind, namespace), key=(kind, namespace, "")
        )
        items = response.json().get("items") or []
        for item in items:
            # List items omit their own type meta.
            item.setdefault("apiVersion", info.api_version)
            item.setdefault("kind", kind)
        return items

    def apply(
        self, manifest: dict[str, Any], *, field_manager: str, force: bool = False
    ) -> dict[str, Any]:
        kind, namespace, name = manifest_key(manifest)
        return self._apply(
            self._object_path(kind, namespace, name),
            manifest,
            key=(kind, namespace, name),
            field_manager=field_manager,
            force=force,
        )

    def apply_status(self, manifest: dict[str, Any], *, field_manager: str) -> dict[str, Any]:
        kind, namespace, name = manifest_key(manifest)
        return self._apply(
            f"{self._object_path(kind, namespace, name)}/status",
            manifest,
            key=(kind, namespace, name),
            field_manager=field_manager,
            force=True,
        )

    def delete(self, kind: str, namespace: str, name: str) -> None:
        self._send(
            "DELETE", self._object_path(kind, namespace, name), key=(kind, namespace, name)
        )

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _apply(
        self,
        path: str,
        manifest: dict[str, Any],
        *,
        key: tuple[str, str, str],
        field_manager: str,
        force: bool,
    ) -> dict[str, Any]:
        params = {"fieldManager": field_manager}
        if force:
            params["force"] = "true"
        response = self._send(
            "PATCH",
            path,
            key=key,
            params=params,
            content=json.dumps(manifest).encode("utf-8"),
            headers={"Content-Type": APPLY_PATCH_CONTENT_TYPE},
        )
        return response.json()

    def _send(
        self,
        method: str,
        path: str,
        *,
        key: tuple[str, str, str],
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise BackendIOError(f"{method} {path} failed: {exc}") from exc

        if response.status_code == 404:
            raise NotFoundError(*key)
        if response.is_error:
            raise BackendIOError(
                f"{method} {path} returned {response.status_code}: {_status_message(response)}",
                status_code=response.status_code,
            )
        logger.debug("KubeBackend: %s %s -> %d", method, path, response.status_code)
        return response


def _status_message(response: httpx.Response) -> str:
    """Extract ``message`` from a Kubernetes ``Status`` body, if present."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return response.text[:200]
