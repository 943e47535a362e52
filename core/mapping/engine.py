"""Declarative field mapping engine.

Translates extracted source records (legacy ERP field names and formats)
into target-system record shapes using declarative mapping definitions.

Supported mapping kinds:
    simple:         {"source": "KUNNR", "target": "Customer"}
    convert:        {"source": "WRBTR", "target": "Amount", "convert": "toDecimal"}
    value map:      {"source": "KTOKD", "target": "Group", "valueMap": {"0001": "DOM"}, "default": "OTH"}
    concatenation:  {"sources": ["NAME1", "NAME2"], "target": "Name", "separator": " "}
    default:        {"target": "Country", "default": "US"}
    transform:      FieldMapping(source="X", target="Y", transform=lambda value, record: ...)

This is ERP-neutral - mapping definitions come from migration objects or
JSON configuration.
"""

import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from core.observability.logging import get_logger
from core.storage.artifacts import load_json


logger = get_logger(__name__)


class MappingError(ValueError):
    """Raised for invalid mapping definitions in strict mode."""
    pass


# =============================================================================
# Built-in Converters
# =============================================================================

def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def _pad_left(width: int) -> Callable[[Any], str]:
    def convert(value: Any) -> str:
        return "" if value is None else str(value).rjust(width, "0")
    return convert


def _to_date(value: Any) -> Optional[str]:
    """YYYYMMDD (any separators) -> YYYY-MM-DD; anything else unchanged as text."""
    if not value:
        return None
    digits = re.sub(r"[^0-9]", "", str(value))
    if len(digits) == 8:
        return f"{digits[0:4]}-{digits[4:6]}-{digits[6:8]}"
    return str(value)


def _to_decimal(value: Any) -> Decimal:
    if _is_blank(value):
        return Decimal("0")
    try:
        result = Decimal(str(value).strip())
    except InvalidOperation:
        return Decimal("0")
    return result if result.is_finite() else Decimal("0")


_INT_PREFIX = re.compile(r"^\s*([+-]?\d+)")


def _to_integer(value: Any) -> int:
    if _is_blank(value):
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    match = _INT_PREFIX.match(str(value))
    return int(match.group(1)) if match else 0


def _is_flag_set(value: Any) -> bool:
    return value is True or value in ("Y", "X") or (type(value) is int and value == 1)


def _strip_leading_zeros(value: Any) -> str:
    if value is None:
        return ""
    return str(value).lstrip("0") or "0"


CONVERTERS: Dict[str, Callable[[Any], Any]] = {
    "padLeft40": _pad_left(40),
    "padLeft10": _pad_left(10),
    "toUpperCase": lambda v: "" if v is None else str(v).upper(),
    "toLowerCase": lambda v: "" if v is None else str(v).lower(),
    "toDate": _to_date,
    "toDecimal": _to_decimal,
    "toInteger": _to_integer,
    "boolYN": _is_flag_set,
    "boolTF": lambda v: "T" if _is_flag_set(v) else "F",
    "stripLeadingZeros": _strip_leading_zeros,
    "trim": lambda v: "" if v is None else str(v).strip(),
}


# =============================================================================
# Mapping Definitions
# =============================================================================

class MappingType(str, Enum):
    """Kinds of field mapping, resolved from which attributes are set."""
    CONCATENATION = "CONCATENATION"
    VALUE_MAP = "VALUE_MAP"
    CONVERT = "CONVERT"
    TRANSFORM = "TRANSFORM"
    DEFAULT = "DEFAULT"
    SIMPLE = "SIMPLE"
    INVALID = "INVALID"


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


# Distinguishes "no default" from an explicit default of None
MISSING: Any = _Missing()


@dataclass
class FieldMapping:
    """A single source -> target field mapping."""
    target: Optional[str]
    source: Optional[str] = None
    sources: Optional[List[str]] = None
    separator: str = " "
    convert: Optional[Union[str, Callable[[Any], Any]]] = None
    value_map: Optional[Dict[Any, Any]] = None
    default: Any = MISSING
    transform: Optional[Callable[[Any, Dict[str, Any]], Any]] = None
    description: Optional[str] = None

    @property
    def has_default(self) -> bool:
        return self.default is not MISSING

    @property
    def kind(self) -> MappingType:
        if not self.target:
            return MappingType.INVALID
        if self.sources:
            return MappingType.CONCATENATION
        if self.source and self.value_map is not None:
            return MappingType.VALUE_MAP
        if self.source and self.convert is not None:
            return MappingType.CONVERT
        if self.source and self.transform is not None:
            return MappingType.TRANSFORM
        if not self.source and self.has_default:
            return MappingType.DEFAULT
        if self.source:
            return MappingType.SIMPLE
        return MappingType.INVALID

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldMapping":
        """Build from a JSON-style definition (camelCase or snake_case keys)."""
        return cls(
            target=data.get("target"),
            source=data.get("source"),
            sources=data.get("sources"),
            separator=data.get("separator") if data.get("separator") is not None else " ",
            convert=data.get("convert"),
            value_map=data.get("valueMap", data.get("value_map")),
            default=data["default"] if "default" in data else MISSING,
            transform=data.get("transform"),
            description=data.get("description"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form; callables are reported by name."""
        result: Dict[str, Any] = {"target": self.target, "kind": self.kind.value}
        if self.source:
            result["source"] = self.source
        if self.sources:
            result["sources"] = list(self.sources)
            result["separator"] = self.separator
        if self.convert is not None:
            result["convert"] = self.convert if isinstance(self.convert, str) else getattr(
                self.convert, "__name__", "custom")
        if self.value_map is not None:
            result["valueMap"] = dict(self.value_map)
        if self.has_default and not callable(self.default):
            result["default"] = self.default
        if self.transform is not None:
            result["transform"] = getattr(self.transform, "__name__", "custom")
        if self.description:
            result["description"] = self.description
        return result


MappingSpec = Union[FieldMapping, Dict[str, Any]]


def _coerce(mapping: MappingSpec) -> FieldMapping:
    if isinstance(mapping, FieldMapping):
        return mapping
    return FieldMapping.from_dict(mapping)


# =============================================================================
# Engine
# =============================================================================

class FieldMappingEngine:
    """Applies an ordered list of field mappings to source records.

    Args:
        mappings: Mapping definitions (FieldMapping or dicts)
        pass_through: Copy source fields that no mapping consumed
        strict: Reject invalid mapping definitions at construction
    """

    def __init__(
        self,
        mappings: Optional[List[MappingSpec]] = None,
        pass_through: bool = False,
        strict: bool = False,
    ):
        self.mappings: List[FieldMapping] = [_coerce(m) for m in (mappings or [])]
        self.pass_through = pass_through
        self.strict = strict
        self._stats = self._empty_stats()

        if strict:
            result = self.validate_mappings()
            if not result["valid"]:
                raise MappingError("; ".join(result["errors"]))

    @staticmethod
    def _empty_stats() -> Dict[str, int]:
        return {"processed": 0, "mapped": 0, "unmapped": 0, "errors": 0}

    @staticmethod
    def from_legacy(definitions: List[str]) -> List[FieldMapping]:
        """Convert legacy ``"SOURCE->TARGET"`` strings to simple mappings."""
        result = []
        for definition in definitions:
            source, _, target = definition.partition("->")
            result.append(FieldMapping(source=source.strip() or None, target=target.strip() or None))
        return result

    def add_mapping(self, mapping: MappingSpec) -> None:
        self.mappings.append(_coerce(mapping))

    def _apply_one(self, mapping: FieldMapping, record: Dict[str, Any], consumed: set) -> Any:
        kind = mapping.kind

        if kind == MappingType.CONCATENATION:
            parts = []
            for name in mapping.sources:
                consumed.add(name)
                value = record.get(name)
                parts.append("" if value is None else str(value))
            return mapping.separator.join(parts)

        if kind == MappingType.VALUE_MAP:
            consumed.add(mapping.source)
            raw = record.get(mapping.source)
            mapped = mapping.value_map.get(raw)
            if mapped is not None:
                return mapped
            if mapping.has_default and mapping.default is not None:
                return mapping.default
            return raw

        if kind == MappingType.CONVERT:
            consumed.add(mapping.source)
            converter = mapping.convert if callable(mapping.convert) else CONVERTERS.get(mapping.convert)
            if converter is None:
                logger.warning(f"Unknown converter: {mapping.convert}", extra_fields={"target": mapping.target})
                return record.get(mapping.source)
            return converter(record.get(mapping.source))

        if kind == MappingType.TRANSFORM:
            consumed.add(mapping.source)
            return mapping.transform(record.get(mapping.source), record)

        if kind == MappingType.DEFAULT:
            return mapping.default(record) if callable(mapping.default) else mapping.default

        consumed.add(mapping.source)
        return record.get(mapping.source)

    def apply_record(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Apply all mappings to one source record and return the target record."""
        target: Dict[str, Any] = {}
        consumed: set = set()

        for mapping in self.mappings:
            if mapping.kind == MappingType.INVALID:
                continue
            try:
                target[mapping.target] = self._apply_one(mapping, record, consumed)
                self._stats["mapped"] += 1
            except (ValueError, TypeError, KeyError, AttributeError, ArithmeticError) as e:
                self._stats["errors"] += 1
                logger.warning(
                    f"Mapping error on field {mapping.source or mapping.target}: {e}",
                    extra_fields={"target": mapping.target},
                )
                target[mapping.target] = None

        if self.pass_through:
            for key, value in record.items():
                if key not in consumed and key not in target:
                    target[key] = value
                    self._stats["unmapped"] += 1

        self._stats["processed"] += 1
        return target

    def apply_batch(self, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Apply mappings to a batch of records."""
        return [self.apply_record(r) for r in records]

    def validate_mappings(self) -> Dict[str, Any]:
        """Check mapping definitions for common errors.

        Returns:
            {"valid": bool, "errors": [message, ...]}
        """
        errors = []
        targets = set()

        for i, m in enumerate(self.mappings):
            if not m.target:
                errors.append(f"Mapping[{i}]: missing target field")
            if not m.source and not m.sources and not m.has_default:
                errors.append(f"Mapping[{i}]: no source, sources, or default defined")
            if isinstance(m.convert, str) and m.convert not in CONVERTERS:
                errors.append(f"Mapping[{i}]: unknown converter '{m.convert}'")
            if m.target and m.target in targets:
                errors.append(f"Mapping[{i}]: duplicate target '{m.target}'")
            if m.target:
                targets.add(m.target)

        return {"valid": not errors, "errors": errors}

    def get_summary(self) -> Dict[str, int]:
        """Processing statistics since construction or the last reset."""
        return {"totalMappings": len(self.mappings), **self._stats}

    def reset_stats(self) -> None:
        self._stats = self._empty_stats()

    def get_stats(self) -> Dict[str, int]:
        """Count of mappings by kind."""
        counts = {kind.value: 0 for kind in MappingType}
        for m in self.mappings:
            counts[m.kind.value] += 1
        return counts

    @classmethod
    def load_mappings_from_json(cls, path: Path, **options) -> "FieldMappingEngine":
        """Create an engine from a JSON file.

        Expected format:
        {
            "mappings": [
                {"source": "KUNNR", "target": "Customer", "convert": "padLeft10"},
                {"sources": ["NAME1", "NAME2"], "target": "Name"},
                {"target": "Country", "default": "US"}
            ]
        }
        """
        data = load_json(Path(path))
        return cls([FieldMapping.from_dict(m) for m in data.get("mappings", [])], **options)
