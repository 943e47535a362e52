"""API Routes Package."""

from api.routes import health, process_mining, security, migration, audit

__all__ = [
    "health",
    "process_mining",
    "security",
    "migration",
    "audit",
]
