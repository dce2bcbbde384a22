"""fluxbridge: publish configuration as Flux artifacts and drive it to convergence.

Apply packs raw configuration into a deterministic tar.gz artifact, serves
it through an ExternalArtifact, points a Kustomization at it and blocks
until the Kustomization reports the new revision as Ready.  Diff compares
live state against expected content; Delete tears everything down in the
order the reconciler needs to prune.
"""

__version__ = "0.1.0"
__description__ = "Bridge that deploys raw configuration through Flux ExternalArtifacts"

from fluxbridge.config import BridgeConfig
from fluxbridge.core.artifact_store import ArtifactStore
from fluxbridge.core.context import Context
from fluxbridge.core.controller import FluxController

__all__ = ["ArtifactStore", "BridgeConfig", "Context", "FluxController", "__version__"]
