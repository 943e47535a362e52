"""Resumable extraction checkpoints.

Each extractor owns a directory under the checkpoint root holding one
``<key>.json`` file per checkpoint. ``_complete.json`` marks a finished
extraction.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from core.models.refs import DataReference
from core.observability.logging import get_logger
from core.storage.artifacts import ArtifactStore


logger = get_logger(__name__)

COMPLETE_KEY = "_complete"


def _check_name(value: str, kind: str) -> str:
    if not value or "/" in value or "\\" in value or value in (".", ".."):
        raise ValueError(f"Invalid checkpoint {kind}: {value!r}")
    return value


class CheckpointStore:
    """File-backed checkpoint store keyed by extractor id."""

    def __init__(self, base_path: Union[str, Path]):
        self._store = ArtifactStore(base_path)

    @property
    def base_path(self) -> Path:
        return self._store.base_path

    def _relative(self, extractor_id: str, key: str) -> str:
        _check_name(extractor_id, "extractor id")
        _check_name(key, "key")
        return f"{extractor_id}/{key}.json"

    def save(self, extractor_id: str, key: str, data: Any) -> DataReference:
        """Write checkpoint ``key`` for an extractor."""
        ref = self._store.put_json(data, self._relative(extractor_id, key))
        logger.debug(
            "Checkpoint saved",
            extra_fields={"extractor_id": extractor_id, "key": key, "size_bytes": ref.size_bytes},
        )
        return ref

    def load(self, extractor_id: str, key: str) -> Optional[Any]:
        """Read a checkpoint, or None if it was never written."""
        relative = self._relative(extractor_id, key)
        if not self._store.exists(relative):
            return None
        return self._store.read_json(relative)

    def clear(self, extractor_id: str) -> int:
        """Delete every checkpoint of an extractor. Returns the number removed."""
        directory = self.base_path / _check_name(extractor_id, "extractor id")
        if not directory.exists():
            return 0
        removed = 0
        for path in directory.glob("*.json"):
            path.unlink()
            removed += 1
        logger.info("Checkpoints cleared", extra_fields={"extractor_id": extractor_id, "removed": removed})
        return removed

    def mark_complete(self, extractor_id: str, result_keys: List[str]) -> DataReference:
        """Write the completion sentinel."""
        return self.save(extractor_id, COMPLETE_KEY, {
            "status": "completed",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "resultKeys": list(result_keys),
        })

    def is_complete(self, extractor_id: str) -> bool:
        return self.load(extractor_id, COMPLETE_KEY) is not None

    def list_keys(self, extractor_id: str) -> List[str]:
        directory = self.base_path / _check_name(extractor_id, "extractor id")
        if not directory.exists():
            return []
        return sorted(p.stem for p in directory.glob("*.json"))

    def get_completion(self, extractor_id: str) -> Optional[Dict[str, Any]]:
        return self.load(extractor_id, COMPLETE_KEY)
