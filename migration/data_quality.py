"""Data quality checks for migration records.

Checks run in a fixed order: required, exact duplicates, fuzzy duplicates,
referential integrity, format, range. Required, exact-duplicate and
referential findings are errors (they block the load); fuzzy duplicates,
format and range findings are warnings.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Pattern, Union

from pydantic import BaseModel, ConfigDict, Field

from core.config import get_settings
from core.observability.logging import get_logger
from core.similarity import normalized_distance


logger = get_logger(__name__)

SEVERITY_ERROR = "error"
SEVERITY_WARNING = "warning"
SEVERITY_PASS = "pass"


# =============================================================================
# Check Configuration
# =============================================================================

class DuplicateCheck(BaseModel):
    keys: List[str] = Field(..., min_length=1, description="Fields forming the composite key")


class FuzzyDuplicateCheck(BaseModel):
    keys: List[str] = Field(..., min_length=1, description="Fields compared as one lower-cased string")
    threshold: float = Field(default=0.85, ge=0.0, le=1.0, description="Minimum similarity")


class ReferentialCheck(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    field: str = Field(..., description="Field whose values must exist in valid_set")
    valid_set: List[Any] = Field(..., alias="validSet", description="Allowed values")


class FormatCheck(BaseModel):
    field: str
    pattern: str = Field(..., description="Regular expression searched in the value")
    description: Optional[str] = None


class RangeCheck(BaseModel):
    field: str
    min: Optional[float] = None
    max: Optional[float] = None


class QualityChecks(BaseModel):
    """Checks to run for one migration object. Wire names are camelCase."""
    model_config = ConfigDict(populate_by_name=True)

    required: List[str] = Field(default_factory=list)
    exact_duplicate: Optional[DuplicateCheck] = Field(default=None, alias="exactDuplicate")
    fuzzy_duplicate: Optional[FuzzyDuplicateCheck] = Field(default=None, alias="fuzzyDuplicate")
    referential: List[ReferentialCheck] = Field(default_factory=list)
    format: List[FormatCheck] = Field(default_factory=list)
    range: List[RangeCheck] = Field(default_factory=list)


# =============================================================================
# Results
# =============================================================================

@dataclass
class CheckResult:
    name: str
    severity: str
    message: str
    details: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.details)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "severity": self.severity,
            "message": self.message,
            "count": self.count,
            "details": self.details,
        }


@dataclass
class QualityReport:
    total_records: int
    checks: List[CheckResult]

    @property
    def errors(self) -> List[CheckResult]:
        return [c for c in self.checks if c.severity == SEVERITY_ERROR]

    @property
    def warnings(self) -> List[CheckResult]:
        return [c for c in self.checks if c.severity == SEVERITY_WARNING]

    @property
    def passed(self) -> List[CheckResult]:
        return [c for c in self.checks if c.severity == SEVERITY_PASS]

    @property
    def status(self) -> str:
        if self.errors:
            return "errors"
        if self.warnings:
            return "warnings"
        return "passed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "totalRecords": self.total_records,
            "errorCount": len(self.errors),
            "warningCount": len(self.warnings),
            "passedCount": len(self.passed),
            "checks": [c.to_dict() for c in self.checks],
        }


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def _text(value: Any) -> str:
    return "" if value is None else str(value)


# =============================================================================
# Checker
# =============================================================================

class DataQualityChecker:
    """Runs configured quality checks over a list of records.

    Args:
        fuzzy_cap: Max records compared pairwise for fuzzy duplicates
            (defaults to FUZZY_DUPLICATE_CAP from settings)
    """

    def __init__(self, fuzzy_cap: Optional[int] = None):
        self.fuzzy_cap = fuzzy_cap if fuzzy_cap is not None else get_settings().fuzzy_duplicate_cap

    def check(self, records: List[Dict[str, Any]],
              checks: Union[QualityChecks, Dict[str, Any], None] = None) -> QualityReport:
        config = checks if isinstance(checks, QualityChecks) else QualityChecks.model_validate(checks or {})
        results: List[CheckResult] = []

        if config.required:
            results.append(self.check_required(records, config.required))
        if config.exact_duplicate:
            results.append(self.find_exact_duplicates(records, config.exact_duplicate.keys))
        if config.fuzzy_duplicate:
            results.append(self.find_fuzzy_duplicates(
                records, config.fuzzy_duplicate.keys, config.fuzzy_duplicate.threshold))
        for ref in config.referential:
            results.append(self.check_referential_integrity(records, ref.field, ref.valid_set))
        for fmt in config.format:
            results.append(self.check_format(records, fmt.field, fmt.pattern, fmt.description))
        for rng in config.range:
            results.append(self.check_range(records, rng.field, rng.min, rng.max))

        report = QualityReport(total_records=len(records), checks=results)
        logger.info(
            f"Quality check {report.status}: {len(records)} records",
            extra_fields={"errors": len(report.errors), "warnings": len(report.warnings)},
        )
        return report

    def check_required(self, records: List[Dict[str, Any]], fields: List[str]) -> CheckResult:
        missing = [
            {"row": i, "field": f}
            for i, record in enumerate(records)
            for f in fields
            if _is_blank(record.get(f))
        ]
        listed = ", ".join(fields)
        if missing:
            return CheckResult("required", SEVERITY_ERROR,
                               f"{len(missing)} missing required value(s) across fields: {listed}", missing)
        return CheckResult("required", SEVERITY_PASS, f"All required fields present: {listed}")

    def find_exact_duplicates(self, records: List[Dict[str, Any]], keys: List[str]) -> CheckResult:
        seen: Dict[str, int] = {}
        duplicates = []
        for i, record in enumerate(records):
            key = "|".join(_text(record.get(k)) for k in keys)
            if key in seen:
                duplicates.append({"row": i, "duplicateOf": seen[key], "key": key})
            else:
                seen[key] = i

        listed = ", ".join(keys)
        if duplicates:
            return CheckResult("exactDuplicate", SEVERITY_ERROR,
                               f"{len(duplicates)} exact duplicate(s) on keys: {listed}", duplicates)
        return CheckResult("exactDuplicate", SEVERITY_PASS, f"No exact duplicates on keys: {listed}")

    def find_fuzzy_duplicates(self, records: List[Dict[str, Any]], keys: List[str],
                              threshold: float = 0.85) -> CheckResult:
        """Pairs whose similarity is at least ``threshold`` but below 1.

        Pairwise comparison is quadratic; only the first ``fuzzy_cap``
        records take part.
        """
        limit = min(len(records), self.fuzzy_cap)
        if len(records) > limit:
            logger.warning(f"Fuzzy duplicate check capped at {limit} of {len(records)} records")

        strings = [
            " ".join(_text(r.get(k)).lower().strip() for k in keys)
            for r in records[:limit]
        ]
        candidates = []
        for i in range(limit):
            for j in range(i + 1, limit):
                similarity = 1.0 - normalized_distance(strings[i], strings[j])
                if threshold <= similarity < 1.0:
                    candidates.append({"rowA": i, "rowB": j, "similarity": round(similarity, 2)})

        if candidates:
            return CheckResult("fuzzyDuplicate", SEVERITY_WARNING,
                               f"{len(candidates)} potential fuzzy duplicate(s) (threshold: {threshold})", candidates)
        return CheckResult("fuzzyDuplicate", SEVERITY_PASS, f"No fuzzy duplicates detected (threshold: {threshold})")

    def check_referential_integrity(self, records: List[Dict[str, Any]], field_name: str,
                                    valid_set: List[Any]) -> CheckResult:
        allowed = set(valid_set)
        violations = [
            {"row": i, "field": field_name, "value": r.get(field_name)}
            for i, r in enumerate(records)
            if not _is_blank(r.get(field_name)) and r.get(field_name) not in allowed
        ]
        if violations:
            return CheckResult("referentialIntegrity", SEVERITY_ERROR,
                               f"{len(violations)} referential integrity violation(s) on {field_name}", violations)
        return CheckResult("referentialIntegrity", SEVERITY_PASS, f"Referential integrity OK for {field_name}")

    def check_format(self, records: List[Dict[str, Any]], field_name: str, pattern: Union[str, Pattern],
                     description: Optional[str] = None) -> CheckResult:
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        violations = [
            {"row": i, "field": field_name, "value": r.get(field_name)}
            for i, r in enumerate(records)
            if not _is_blank(r.get(field_name)) and not regex.search(str(r.get(field_name)))
        ]
        if violations:
            label = description or regex.pattern
            return CheckResult("format", SEVERITY_WARNING,
                               f"{len(violations)} format violation(s) on {field_name} ({label})", violations)
        return CheckResult("format", SEVERITY_PASS, f"Format OK for {field_name}")

    def check_range(self, records: List[Dict[str, Any]], field_name: str,
                    minimum: Optional[float] = None, maximum: Optional[float] = None) -> CheckResult:
        """Numeric bounds; blank and non-numeric values are ignored."""
        violations = []
        for i, record in enumerate(records):
            raw = record.get(field_name)
            if _is_blank(raw) or isinstance(raw, bool):
                continue
            try:
                value = float(raw)
            except (TypeError, ValueError):
                continue
            if minimum is not None and value < minimum:
                violations.append({"row": i, "field": field_name, "value": value, "reason": f"below min {minimum}"})
            if maximum is not None and value > maximum:
                violations.append({"row": i, "field": field_name, "value": value, "reason": f"above max {maximum}"})

        if violations:
            low = minimum if minimum is not None else "-inf"
            high = maximum if maximum is not None else "inf"
            return CheckResult("range", SEVERITY_WARNING,
                               f"{len(violations)} range violation(s) on {field_name} ({low}..{high})", violations)
        return CheckResult("range", SEVERITY_PASS, f"Range OK for {field_name}")
