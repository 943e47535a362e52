"""Core module - shared infrastructure for the migration toolkit.

This module contains configuration, audit, security tiers and approvals,
field mapping, storage and observability. It knows nothing about a
particular ERP; process models and migration objects build on top of it.
"""

__version__ = "1.0.0"
