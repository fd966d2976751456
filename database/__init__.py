"""
Arena Tracker Database Package

This package provides database connectivity, schema migrations and the stores
for players, sync watermarks and Arena matches.

Key Components:
- config.py: Configuration management for different environments
- connection.py: Database connection management with pooling and retries
- schema.py / migrations.py: Table definitions and versioned migrations
- players.py: Player and watermark stores
- matches.py: Arena match store and reporting reads

Usage:
    from database import DatabaseManager, get_database_config, run_migrations
    from database.players import PlayerStore

    db = DatabaseManager(get_database_config())
    run_migrations(db)
    player = PlayerStore(db).find_by_puuid(puuid)
"""

import logging

from .connection import (
    DatabaseManager,
    DatabaseError,
    DatabaseConnectionError,
)

from .config import (
    DatabaseConfig,
    get_database_config,
)

from .migrations import run_migrations

# Version information
__version__ = "1.0.0"

# Package-level exports
__all__ = [
    # Connection management
    "DatabaseManager",
    "DatabaseError",
    "DatabaseConnectionError",

    # Configuration
    "DatabaseConfig",
    "get_database_config",

    # Schema
    "run_migrations",

    # Version
    "__version__"
]

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())  # Prevent "No handler found" warnings
