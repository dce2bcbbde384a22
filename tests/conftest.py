"""Shared test fixtures for fluxbridge."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from fluxbridge.backend.memory import InMemoryBackend, Reactor, flux_reconciler
from fluxbridge.config import BridgeConfig
from fluxbridge.core.artifact_store import ArtifactStore
from fluxbridge.core.controller import FluxController

NAMESPACE = "confighub"


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def config(tmp_dir: Path) -> BridgeConfig:
    """A BridgeConfig with fast polling and no ambient environment."""
    return BridgeConfig(
        _env_file=None,
        namespace=NAMESPACE,
        data_dir=tmp_dir / "artifacts",
        storage_address=":8080",
        storage_adv_address="localhost:8080",
        poll_interval_seconds=0.01,
        deployment_timeout_seconds=2.0,
        gc_grace_seconds=5.0,
        kube_token_file=tmp_dir / "no-token",
    )


@pytest.fixture
def artifact_store(tmp_dir: Path) -> ArtifactStore:
    """Provide a fresh ArtifactStore in a temp directory."""
    return ArtifactStore(tmp_dir / "artifacts", ":8080", namespace=NAMESPACE)


@pytest.fixture
def make_backend() -> Callable[..., InMemoryBackend]:
    """Factory fixture: an InMemoryBackend with a simulated reconciler."""

    def _factory(*reactors: Reactor, **kwargs: Any) -> InMemoryBackend:
        return InMemoryBackend(reactors=list(reactors) or [flux_reconciler()], **kwargs)

    return _factory


@pytest.fixture
def backend(make_backend: Callable[..., InMemoryBackend]) -> InMemoryBackend:
    """An InMemoryBackend whose reconciler always succeeds."""
    return make_backend()


@pytest.fixture
def make_controller(
    artifact_store: ArtifactStore, config: BridgeConfig
) -> Callable[[InMemoryBackend], FluxController]:
    """Factory fixture: a FluxController over the given backend."""

    def _factory(backend: InMemoryBackend) -> FluxController:
        return FluxController(backend, artifact_store, config)

    return _factory


@pytest.fixture
def controller(
    backend: InMemoryBackend,
    make_controller: Callable[[InMemoryBackend], FluxController],
) -> FluxController:
    """A FluxController wired to the default in-memory backend."""
    return make_controller(backend)
