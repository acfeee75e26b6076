"""
MIGRATOR INFRASTRUCTURE - System-Level Modules

This package contains infrastructure components:
- config: TOML run configuration decoded into msgspec structs
- logger: Build event logging (ring buffer, JSON-lines file)
- source_db: Source snapshots and entity importers (in-memory, SQLite)
"""

from infrastructure.config import MigratorConfig, load_config, config_from_dict
from infrastructure.logger import (
    BuildLogger,
    BuildEvent,
    BuildEventType,
    LoggerConfig,
    configure_logging,
    get_logger,
    configure_logger,
)
from infrastructure.source_db import (
    SourceStore,
    SourceSnapshot,
    EntityImporter,
    InMemorySourceStore,
    InMemoryEntityImporter,
    SqliteSourceStore,
    SqliteEntityImporter,
)

__all__ = [
    "MigratorConfig",
    "load_config",
    "config_from_dict",
    "BuildLogger",
    "BuildEvent",
    "BuildEventType",
    "LoggerConfig",
    "configure_logging",
    "get_logger",
    "configure_logger",
    "SourceStore",
    "SourceSnapshot",
    "EntityImporter",
    "InMemorySourceStore",
    "InMemoryEntityImporter",
    "SqliteSourceStore",
    "SqliteEntityImporter",
]
