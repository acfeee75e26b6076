"""
SOURCE DB - Snapshots and Entity Importers

The builder reads the source store through two seams:
- SourceStore.snapshot(): a scoped, read-only, repeatable-read view
- EntityImporter.import_entities(): all raw entities of one type, read
  through an explicitly passed snapshot

Usage:
    with source.snapshot() as snapshot:
        orders = importer.import_entities(order_type, snapshot, [])

A snapshot is released when the `with` block exits, whether it exits
normally or by an exception; exceptions are never suppressed.

Implementations:
- InMemorySourceStore / InMemoryEntityImporter: entity lists per type name
- SqliteSourceStore / SqliteEntityImporter: one table per entity type

Any driver-level failure surfaces as SourceIOError.
"""
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from infrastructure.config import EntityConfig
from modelgraph.errors import ConfigurationError, SourceIOError
from modelgraph.metamodel import MetamodelVertex

logger = logging.getLogger(__name__)


# =============================================================================
# INTERFACES
# =============================================================================

class SourceSnapshot(ABC):
    """A consistent read-only view of the source, held open for phase 1."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        pass

    @abstractmethod
    def acquire(self) -> None:
        pass

    @abstractmethod
    def release(self) -> None:
        """
        Release the snapshot. Must be safe to call more than once.

        Raises:
            SourceIOError: If the source fails to end the snapshot
        """
        pass

    def __enter__(self) -> "SourceSnapshot":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is None:
            self.release()
            return
        # Keep the error that ended the block
        try:
            self.release()
        except SourceIOError as e:
            logger.warning("Snapshot release failed while handling %s: %s", exc_type.__name__, e)


class SourceStore(ABC):
    """A source datastore that can hand out snapshots."""

    @abstractmethod
    def snapshot(self) -> SourceSnapshot:
        """A new, not yet acquired snapshot. Use it as a context manager."""
        pass


class EntityImporter(ABC):
    """Fetches raw entities of one type from the source."""

    @abstractmethod
    def import_entities(
        self,
        vertex: MetamodelVertex,
        snapshot: SourceSnapshot,
        accumulator: List[Any],
    ) -> Sequence[Any]:
        """
        Append every entity of `vertex`'s type to `accumulator` and return it.

        Raises:
            SourceIOError: If the source cannot be read
            ConfigurationError: If the importer does not know the type
        """
        pass


# =============================================================================
# IN-MEMORY SOURCE
# =============================================================================

class InMemorySnapshot(SourceSnapshot):
    """Copies the store's entity lists on acquisition."""

    def __init__(self, store: "InMemorySourceStore"):
        self._store = store
        self._entities: Optional[Dict[str, Tuple[Any, ...]]] = None

    @property
    def is_open(self) -> bool:
        return self._entities is not None

    def acquire(self) -> None:
        self._entities = self._store._copy_entities()
        self._store._snapshot_opened()

    def release(self) -> None:
        if self._entities is not None:
            self._entities = None
            self._store._snapshot_released()

    def entities_of(self, type_name: str) -> Tuple[Any, ...]:
        if self._entities is None:
            raise SourceIOError("Snapshot is not open")
        return self._entities.get(type_name, ())


class InMemorySourceStore(SourceStore):
    """
    Entities held in memory, keyed by type name.

    Writes made after a snapshot was acquired are not visible through it.
    """

    def __init__(self, entities: Optional[Dict[str, Iterable[Any]]] = None):
        self._entities: Dict[str, List[Any]] = {
            name: list(items) for name, items in (entities or {}).items()
        }
        self._lock = threading.Lock()
        self.active_snapshots = 0

    def add(self, type_name: str, *entities: Any) -> None:
        with self._lock:
            self._entities.setdefault(type_name, []).extend(entities)

    def remove(self, type_name: str, entity: Any) -> None:
        with self._lock:
            self._entities[type_name].remove(entity)

    def snapshot(self) -> InMemorySnapshot:
        return InMemorySnapshot(self)

    def _copy_entities(self) -> Dict[str, Tuple[Any, ...]]:
        with self._lock:
            return {name: tuple(items) for name, items in self._entities.items()}

    def _snapshot_opened(self) -> None:
        with self._lock:
            self.active_snapshots += 1

    def _snapshot_released(self) -> None:
        with self._lock:
            self.active_snapshots -= 1


class InMemoryEntityImporter(EntityImporter):
    """Reads entities of a type straight from an InMemorySnapshot."""

    def import_entities(self, vertex, snapshot, accumulator):
        if not isinstance(snapshot, InMemorySnapshot):
            raise ConfigurationError(
                f"InMemoryEntityImporter needs an InMemorySnapshot, got {type(snapshot).__name__}"
            )
        accumulator.extend(snapshot.entities_of(vertex.type_name))
        return accumulator


# =============================================================================
# SQLITE SOURCE
# =============================================================================

def quote_identifier(name: str) -> str:
    """Quote a table or column name for SQLite."""
    return '"' + name.replace('"', '""') + '"'


class SqliteSnapshot(SourceSnapshot):
    """
    One read-only connection with one read transaction held open.

    The transaction is started and pinned by a first read on acquisition,
    so every later query sees the database as it was at that moment.
    Queries are serialized, letting several import threads share it.
    """

    def __init__(self, db_path: Path, timeout: float = 5.0):
        self._db_path = db_path
        self._timeout = timeout
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def acquire(self) -> None:
        uri = f"{self._db_path.resolve().as_uri()}?mode=ro"
        try:
            conn = sqlite3.connect(
                uri,
                uri=True,
                timeout=self._timeout,
                isolation_level=None,
                check_same_thread=False,
            )
        except sqlite3.Error as e:
            raise SourceIOError(f"Cannot open source database {self._db_path}: {e}") from e

        try:
            conn.row_factory = sqlite3.Row
            conn.execute("BEGIN")
            conn.execute("SELECT count(*) FROM sqlite_master").fetchone()
        except sqlite3.Error as e:
            conn.close()
            raise SourceIOError(f"Cannot start read snapshot on {self._db_path}: {e}") from e

        self._conn = conn
        logger.debug("Source snapshot acquired on %s", self._db_path)

    def release(self) -> None:
        with self._lock:
            conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            conn.rollback()
        except sqlite3.Error as e:
            raise SourceIOError(f"Cannot end read snapshot on {self._db_path}: {e}") from e
        finally:
            conn.close()
        logger.debug("Source snapshot released on %s", self._db_path)

    def query(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        """
        Run a read query inside the snapshot.

        Raises:
            SourceIOError: If the snapshot is released or the query fails
        """
        with self._lock:
            if self._conn is None:
                raise SourceIOError("Source snapshot is not open")
            try:
                rows = self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise SourceIOError(f"Source query failed ({sql!r}): {e}") from e
        return [dict(row) for row in rows]


class SqliteSourceStore(SourceStore):
    """A SQLite database file used as the migration source."""

    def __init__(self, db_path: Path | str, timeout: float = 5.0):
        self.db_path = Path(db_path)
        self.timeout = timeout

    def snapshot(self) -> SqliteSnapshot:
        return SqliteSnapshot(self.db_path, self.timeout)


class SqliteEntityImporter(EntityImporter):
    """
    Imports each entity type from its table as plain dict rows.

    Collection relations backed by a join table are loaded while the
    snapshot is open and stored on each row under the relation's field name,
    as a list of target ids. Rows without join rows get an empty list.
    """

    def __init__(self, entities: Iterable[EntityConfig]):
        self._entities: Dict[str, EntityConfig] = {e.name: e for e in entities}

    def import_entities(self, vertex, snapshot, accumulator):
        entity_config = self._entities.get(vertex.type_name)
        if entity_config is None:
            raise ConfigurationError(f"No table configured for entity type {vertex.type_name}")
        if not isinstance(snapshot, SqliteSnapshot):
            raise ConfigurationError(
                f"SqliteEntityImporter needs a SqliteSnapshot, got {type(snapshot).__name__}"
            )

        rows = snapshot.query(f"SELECT * FROM {quote_identifier(entity_config.table)}")
        logger.debug("Read %d rows of %s from %s", len(rows), vertex.type_name, entity_config.table)

        for relation in entity_config.relations:
            if not relation.uses_join_table:
                continue
            members = self._join_members(snapshot, relation.join_table,
                                         relation.join_source_column, relation.join_target_column)
            for row in rows:
                row[relation.field] = members.get(row.get(entity_config.id_column), [])

        accumulator.extend(rows)
        return accumulator

    def _join_members(
        self,
        snapshot: SqliteSnapshot,
        join_table: str,
        source_column: str,
        target_column: str,
    ) -> Dict[Any, List[Any]]:
        """source id -> target ids, from one pass over a join table."""
        rows = snapshot.query(
            f"SELECT {quote_identifier(source_column)} AS src, "
            f"{quote_identifier(target_column)} AS tgt "
            f"FROM {quote_identifier(join_table)}"
        )
        members: Dict[Any, List[Any]] = defaultdict(list)
        for row in rows:
            members[row["src"]].append(row["tgt"])
        return members
