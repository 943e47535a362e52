"""Core storage - artifact and checkpoint storage."""

from core.storage.artifacts import (
    put_json,
    get_json,
    load_json,
    ArtifactStore,
)
from core.storage.checkpoints import CheckpointStore

__all__ = [
    "put_json",
    "get_json",
    "load_json",
    "ArtifactStore",
    "CheckpointStore",
]
