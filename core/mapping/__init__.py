"""Core mapping engine - declarative source-to-target field mapping."""

from core.mapping.engine import (
    CONVERTERS,
    FieldMapping,
    FieldMappingEngine,
    MappingError,
    MappingType,
)

__all__ = [
    "CONVERTERS",
    "FieldMapping",
    "FieldMappingEngine",
    "MappingError",
    "MappingType",
]
