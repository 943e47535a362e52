"""Migration objects and their ETLV lifecycle."""

from migration.data_quality import CheckResult, DataQualityChecker, QualityChecks, QualityReport
from migration.extractors import (
    Extractor,
    ExtractorError,
    ExtractorRegistry,
    JsonPayloadExtractor,
    Mode,
    StaticExtractor,
    get_extractor_registry,
)
from migration.lifecycle import (
    LifecycleRunner,
    Loader,
    LoaderError,
    MigrationObject,
    MigrationRunResult,
    MigrationStatus,
    MockLoader,
)
from migration.objects import (
    BUILTIN_OBJECTS,
    build_business_partner,
    build_gl_balance,
    build_migration_objects,
    register_default_extractors,
)

__all__ = [
    "CheckResult",
    "DataQualityChecker",
    "QualityChecks",
    "QualityReport",
    "Extractor",
    "ExtractorError",
    "ExtractorRegistry",
    "JsonPayloadExtractor",
    "Mode",
    "StaticExtractor",
    "get_extractor_registry",
    "LifecycleRunner",
    "Loader",
    "LoaderError",
    "MigrationObject",
    "MigrationRunResult",
    "MigrationStatus",
    "MockLoader",
    "BUILTIN_OBJECTS",
    "build_business_partner",
    "build_gl_balance",
    "build_migration_objects",
    "register_default_extractors",
]
