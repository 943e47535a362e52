"""Runtime configuration.

Reads settings from environment variables. A ``.env`` file at the repository
root is loaded first if it exists.
"""

import os
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, Optional

# Load .env file if it exists
from dotenv import load_dotenv
env_path = Path(__file__).resolve().parents[1] / ".env"
if env_path.exists():
    load_dotenv(env_path)


REPO_ROOT = Path(__file__).resolve().parents[1]


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_path(name: str, default: Optional[Path]) -> Optional[Path]:
    value = os.getenv(name)
    if not value:
        return default
    return Path(value)


@dataclass
class Settings:
    """Application settings resolved from the environment."""
    environment: str = "development"
    log_level: str = "INFO"
    log_json: bool = False

    # Storage
    audit_log_path: Optional[Path] = None
    checkpoint_dir: Path = REPO_ROOT / "artifacts" / "checkpoints"
    artifacts_dir: Path = REPO_ROOT / "artifacts"
    metrics_db_path: Optional[Path] = None

    # Approvals
    approval_ttl_hours: float = 24.0

    # Analytics
    kpi_bootstrap_seed: int = 42
    kpi_bootstrap_iterations: int = 1000

    # Migration
    mock_load_error_rate: float = 0.02
    fuzzy_duplicate_cap: int = 10000

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables.

        Reads:
        - APP_ENV, LOG_LEVEL, LOG_JSON
        - AUDIT_LOG_PATH: JSON-lines audit file (in-memory audit when unset)
        - CHECKPOINT_DIR, ARTIFACTS_DIR, METRICS_DB_PATH
        - APPROVAL_TTL_HOURS
        - KPI_BOOTSTRAP_SEED, KPI_BOOTSTRAP_ITERATIONS
        - MOCK_LOAD_ERROR_RATE, FUZZY_DUPLICATE_CAP

        Raises:
            ValueError: If a numeric variable cannot be parsed
        """
        defaults = cls()
        return cls(
            environment=os.getenv("APP_ENV", defaults.environment),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
            log_json=_env_bool("LOG_JSON", defaults.log_json),
            audit_log_path=_env_path("AUDIT_LOG_PATH", None),
            checkpoint_dir=_env_path("CHECKPOINT_DIR", defaults.checkpoint_dir),
            artifacts_dir=_env_path("ARTIFACTS_DIR", defaults.artifacts_dir),
            metrics_db_path=_env_path("METRICS_DB_PATH", None),
            approval_ttl_hours=float(os.getenv("APPROVAL_TTL_HOURS", defaults.approval_ttl_hours)),
            kpi_bootstrap_seed=int(os.getenv("KPI_BOOTSTRAP_SEED", defaults.kpi_bootstrap_seed)),
            kpi_bootstrap_iterations=int(
                os.getenv("KPI_BOOTSTRAP_ITERATIONS", defaults.kpi_bootstrap_iterations)
            ),
            mock_load_error_rate=float(
                os.getenv("MOCK_LOAD_ERROR_RATE", defaults.mock_load_error_rate)
            ),
            fuzzy_duplicate_cap=int(os.getenv("FUZZY_DUPLICATE_CAP", defaults.fuzzy_duplicate_cap)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {k: str(v) if isinstance(v, Path) else v for k, v in asdict(self).items()}


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the process-wide settings (read once from the environment)."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Drop cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
