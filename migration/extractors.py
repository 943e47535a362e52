"""Extractor interface and registry.

An extractor reads one source area and returns record sets keyed by
logical entity name::

    {"customers": [{...}, ...], "vendors": [...]}

The extraction mode is explicit. ``Mode.MOCK`` returns the extractor's
canned payload; ``Mode.LIVE`` must be implemented by the extractor and
raises ExtractorError otherwise (there is no silent fallback to mock).

Registration is explicit at startup::

    registry = get_extractor_registry()
    registry.register(JsonPayloadExtractor("FI_GL", "GL balances", "payloads/gl.json"))
"""

import json
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from core.observability.logging import get_logger
from core.storage.artifacts import load_json
from core.storage.checkpoints import CheckpointStore


logger = get_logger(__name__)

RecordSet = Dict[str, List[Dict[str, Any]]]


class ExtractorError(Exception):
    """Raised when an extractor cannot produce its records."""

    def __init__(self, message: str, extractor_id: Optional[str] = None):
        self.extractor_id = extractor_id
        super().__init__(message)


class Mode(str, Enum):
    """Where extracted data comes from."""
    MOCK = "mock"
    LIVE = "live"


# =============================================================================
# Extractor Interface
# =============================================================================

class Extractor(ABC):
    """Base class for extractors.

    Subclasses set ``extractor_id`` and ``name`` and implement
    ``_extract_mock``; live-capable extractors also override ``_extract_live``.
    """

    extractor_id: str = ""
    name: str = ""

    def expected_tables(self) -> List[Dict[str, Any]]:
        """Source tables this extractor reads: ``[{table, description, critical}]``."""
        return []

    def extract(self, mode: Union[Mode, str] = Mode.MOCK,
                checkpoints: Optional[CheckpointStore] = None,
                resume: bool = False) -> RecordSet:
        """Extract all record sets.

        Args:
            mode: MOCK or LIVE
            checkpoints: Store receiving one checkpoint per record set and
                the completion sentinel
            resume: Return the checkpointed result when a completed
                extraction is on record

        Raises:
            ExtractorError: Extraction failed or the mode is not supported
        """
        mode = Mode(mode)

        if resume and checkpoints is not None and checkpoints.is_complete(self.extractor_id):
            completion = checkpoints.get_completion(self.extractor_id) or {}
            logger.info(f"Resuming completed extraction: {self.name}",
                        extra_fields={"extractor_id": self.extractor_id})
            return {key: checkpoints.load(self.extractor_id, key) or [] for key in completion.get("resultKeys", [])}

        logger.info(f"Starting extraction: {self.name}",
                    extra_fields={"extractor_id": self.extractor_id, "mode": mode.value})
        if mode == Mode.MOCK:
            result = self._extract_mock()
        else:
            result = self._extract_live()

        if checkpoints is not None:
            for key, records in result.items():
                checkpoints.save(self.extractor_id, key, records)
            checkpoints.mark_complete(self.extractor_id, list(result))

        logger.info(
            f"Extraction complete: {self.name}",
            extra_fields={"extractor_id": self.extractor_id,
                          "record_sets": {k: len(v) for k, v in result.items()}},
        )
        return result

    @abstractmethod
    def _extract_mock(self) -> RecordSet:
        pass

    def _extract_live(self) -> RecordSet:
        raise ExtractorError(f"Live extraction not implemented for {self.extractor_id}", self.extractor_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "extractorId": self.extractor_id,
            "name": self.name,
            "expectedTables": self.expected_tables(),
        }


class StaticExtractor(Extractor):
    """Extractor over in-memory record sets."""

    def __init__(self, extractor_id: str, name: str, records: RecordSet,
                 tables: Optional[List[Dict[str, Any]]] = None):
        self.extractor_id = extractor_id
        self.name = name
        self._records = records
        self._tables = tables or []

    def expected_tables(self) -> List[Dict[str, Any]]:
        return list(self._tables)

    def _extract_mock(self) -> RecordSet:
        return {key: [dict(r) for r in rows] for key, rows in self._records.items()}


class JsonPayloadExtractor(Extractor):
    """Extractor reading a JSON payload file of ``{entity: [records]}``."""

    def __init__(self, extractor_id: str, name: str, path: Union[str, Path],
                 tables: Optional[List[Dict[str, Any]]] = None):
        self.extractor_id = extractor_id
        self.name = name
        self.path = Path(path)
        self._tables = tables or []

    def expected_tables(self) -> List[Dict[str, Any]]:
        return list(self._tables)

    def _extract_mock(self) -> RecordSet:
        try:
            payload = load_json(self.path)
        except OSError as e:
            raise ExtractorError(f"Cannot read payload {self.path}: {e}", self.extractor_id) from e
        except json.JSONDecodeError as e:
            raise ExtractorError(f"Invalid JSON in payload {self.path}: {e}", self.extractor_id) from e

        if not isinstance(payload, dict) or not all(isinstance(v, list) for v in payload.values()):
            raise ExtractorError(
                f"Payload {self.path} must be an object of record lists", self.extractor_id)
        return payload


# =============================================================================
# Registry
# =============================================================================

class ExtractorRegistry:
    """Extractors by id. Registering an existing id replaces it and is reported."""

    def __init__(self):
        self._extractors: Dict[str, Extractor] = {}
        self.replacements: List[str] = []

    def register(self, extractor: Extractor) -> bool:
        """Register an extractor. Returns True when it replaced an existing one."""
        if not extractor.extractor_id:
            raise ValueError("Extractor has no extractor_id")
        replaced = extractor.extractor_id in self._extractors
        if replaced:
            self.replacements.append(extractor.extractor_id)
            logger.warning(f"Replacing extractor: {extractor.extractor_id}")
        self._extractors[extractor.extractor_id] = extractor
        return replaced

    def get(self, extractor_id: str) -> Optional[Extractor]:
        return self._extractors.get(extractor_id)

    def __contains__(self, extractor_id: str) -> bool:
        return extractor_id in self._extractors

    def __len__(self) -> int:
        return len(self._extractors)

    def list_ids(self) -> List[str]:
        return sorted(self._extractors)

    def list_extractors(self) -> List[Dict[str, Any]]:
        return [self._extractors[i].to_dict() for i in self.list_ids()]

    def clear(self) -> None:
        self._extractors.clear()
        self.replacements.clear()


_registry: Optional[ExtractorRegistry] = None


def get_extractor_registry() -> ExtractorRegistry:
    """Process-wide registry; populated explicitly at startup."""
    global _registry
    if _registry is None:
        _registry = ExtractorRegistry()
    return _registry
