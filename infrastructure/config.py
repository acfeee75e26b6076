"""
MIGRATOR CONFIG - Declarative Run Configuration

One TOML file describes a migration run: where the source lives, how many
workers each build phase may use, how to log, and the source data model
(entity types and their relationship fields).

Example (migrator.toml):

    [source]
    path = "shop.db"

    [build]
    import_workers = 4
    edge_workers = 4

    [logging]
    level = "INFO"

    [[entities]]
    name = "Customer"
    table = "customer"
    id_column = "id"
    properties = ["name"]

    [[entities]]
    name = "Order"
    table = "orders"
    id_column = "id"

    [[entities.relations]]
    field = "customer"
    target = "Customer"
    multiplicity = "single"
    column = "customer_id"

    [[entities.relations]]
    field = "items"
    target = "Item"
    multiplicity = "collection"
    join_table = "order_items"
    join_source_column = "order_id"
    join_target_column = "item_id"

The file is parsed with tomllib and converted into msgspec Structs, so
type mistakes are reported with the offending path (e.g. `$.build.edge_workers`).
"""
import tomllib
from logging import getLevelName
from pathlib import Path
from typing import Any, Dict, List, Optional

import msgspec

from modelgraph.errors import ConfigurationError
from modelgraph.ontology import Multiplicity


# =============================================================================
# CONFIG SECTIONS
# =============================================================================

class SourceConfig(msgspec.Struct, kw_only=True, forbid_unknown_fields=True):
    """[source] - the SQLite database entities are read from."""
    path: str
    timeout: float = 5.0


class BuildConfig(msgspec.Struct, kw_only=True, forbid_unknown_fields=True):
    """[build] - parallelism of the two build phases."""
    import_workers: int = 1
    edge_workers: int = 1


class LoggingConfig(msgspec.Struct, kw_only=True, forbid_unknown_fields=True):
    """[logging] - diagnostic logging and the build event log."""
    level: str = "INFO"
    event_log: bool = False
    event_log_path: str = "./workspace/logs"
    buffer_size: int = 10000


class RelationConfig(msgspec.Struct, kw_only=True, forbid_unknown_fields=True):
    """
    [[entities.relations]] - one relationship field.

    A SINGLE relation reads a foreign-key `column` on the source row.
    A COLLECTION relation reads a join table, or a `column` already holding
    a list of target ids.
    """
    field: str
    target: str
    multiplicity: Multiplicity = Multiplicity.SINGLE
    column: Optional[str] = None
    join_table: Optional[str] = None
    join_source_column: Optional[str] = None
    join_target_column: Optional[str] = None

    @property
    def uses_join_table(self) -> bool:
        return self.join_table is not None


class EntityConfig(msgspec.Struct, kw_only=True, forbid_unknown_fields=True):
    """[[entities]] - one entity type of the source data model."""
    name: str
    table: str
    id_column: str = "id"
    properties: List[str] = msgspec.field(default_factory=list)
    relations: List[RelationConfig] = msgspec.field(default_factory=list)


class MigratorConfig(msgspec.Struct, kw_only=True, forbid_unknown_fields=True):
    """The whole run configuration."""
    source: SourceConfig
    build: BuildConfig = msgspec.field(default_factory=BuildConfig)
    logging: LoggingConfig = msgspec.field(default_factory=LoggingConfig)
    entities: List[EntityConfig] = msgspec.field(default_factory=list)

    def entity(self, name: str) -> Optional[EntityConfig]:
        return next((e for e in self.entities if e.name == name), None)


# =============================================================================
# LOADING
# =============================================================================

def load_config(path: Path | str) -> MigratorConfig:
    """
    Load and validate a migrator TOML file.

    Relative source/log paths are resolved against the config file's directory.

    Raises:
        ConfigurationError: If the file is missing, unparsable or invalid
    """
    config_path = Path(path)
    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(f"Config file not found: {config_path}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {config_path}: {e}") from e

    config = config_from_dict(data)

    base = config_path.parent
    config.source.path = str(_resolve(base, config.source.path))
    config.logging.event_log_path = str(_resolve(base, config.logging.event_log_path))
    return config


def config_from_dict(data: Dict[str, Any]) -> MigratorConfig:
    """
    Convert already-parsed configuration data.

    Raises:
        ConfigurationError: If the data does not match the schema
    """
    try:
        config = msgspec.convert(data, type=MigratorConfig)
    except msgspec.ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e

    validate_config(config)
    return config


def validate_config(config: MigratorConfig) -> None:
    """
    Cross-field checks msgspec cannot express.

    Raises:
        ConfigurationError: On the first problem found
    """
    if config.build.import_workers < 1:
        raise ConfigurationError(f"build.import_workers must be >= 1, got {config.build.import_workers}")
    if config.build.edge_workers < 1:
        raise ConfigurationError(f"build.edge_workers must be >= 1, got {config.build.edge_workers}")
    if config.logging.buffer_size < 1:
        raise ConfigurationError(f"logging.buffer_size must be >= 1, got {config.logging.buffer_size}")
    if not isinstance(getLevelName(config.logging.level.upper()), int):
        raise ConfigurationError(f"logging.level is not a log level: {config.logging.level!r}")

    names = [e.name for e in config.entities]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ConfigurationError(f"Entity types declared twice: {duplicates}")

    for entity in config.entities:
        for relation in entity.relations:
            where = f"{entity.name}.{relation.field}"
            if relation.target not in names:
                raise ConfigurationError(f"{where} targets undeclared entity type: {relation.target}")
            if relation.uses_join_table:
                if relation.multiplicity is not Multiplicity.COLLECTION:
                    raise ConfigurationError(f"{where}: join_table requires multiplicity 'collection'")
                if not (relation.join_source_column and relation.join_target_column):
                    raise ConfigurationError(
                        f"{where}: join_table requires join_source_column and join_target_column"
                    )
            elif relation.column is None:
                raise ConfigurationError(f"{where}: needs either column or join_table")


def _resolve(base: Path, value: str) -> Path:
    candidate = Path(value)
    return candidate if candidate.is_absolute() else (base / candidate)
