"""
Unit tests for infrastructure/source_db.py - snapshots and entity importers
"""
import sqlite3

import pytest

from infrastructure.config import config_from_dict
from infrastructure.source_db import (
    InMemoryEntityImporter,
    InMemorySourceStore,
    SqliteEntityImporter,
    SqliteSourceStore,
    quote_identifier,
)
from modelgraph.declarative import MappingMetamodelVertex
from modelgraph.errors import ConfigurationError, DuplicateVertexError, SourceIOError


@pytest.fixture
def shop_db(tmp_path):
    """SQLite file with customers, orders and an order_items join table."""
    db_path = tmp_path / "shop.db"
    conn = sqlite3.connect(db_path)
    conn.executescript("""
        CREATE TABLE customer (id INTEGER PRIMARY KEY, name TEXT);
        CREATE TABLE orders (id INTEGER PRIMARY KEY, customer_id INTEGER);
        CREATE TABLE item (id INTEGER PRIMARY KEY);
        CREATE TABLE order_items (order_id INTEGER, item_id INTEGER);
        INSERT INTO customer VALUES (1, 'Ada'), (2, 'Grace');
        INSERT INTO orders VALUES (10, 1), (11, NULL);
        INSERT INTO item VALUES (1), (2);
        INSERT INTO order_items VALUES (10, 1), (10, 2);
    """)
    conn.commit()
    conn.close()
    return db_path


@pytest.fixture
def shop_entities():
    return config_from_dict({
        "source": {"path": "unused"},
        "entities": [
            {"name": "Customer", "table": "customer"},
            {"name": "Order", "table": "orders", "relations": [
                {"field": "customer", "target": "Customer", "column": "customer_id"},
                {"field": "items", "target": "Item", "multiplicity": "collection",
                 "join_table": "order_items", "join_source_column": "order_id",
                 "join_target_column": "item_id"},
            ]},
            {"name": "Item", "table": "item"},
        ],
    }).entities


# =============================================================================
# IN-MEMORY SOURCE TESTS
# =============================================================================

def test_in_memory_import():
    source = InMemorySourceStore({"Customer": [{"id": 1}, {"id": 2}]})
    importer = InMemoryEntityImporter()

    with source.snapshot() as snapshot:
        assert snapshot.is_open
        assert source.active_snapshots == 1
        customers = importer.import_entities(MappingMetamodelVertex("Customer"), snapshot, [])
        unknown = importer.import_entities(MappingMetamodelVertex("Other"), snapshot, [])

    assert [c["id"] for c in customers] == [1, 2]
    assert unknown == []
    assert not snapshot.is_open
    assert source.active_snapshots == 0


def test_in_memory_snapshot_isolation():
    source = InMemorySourceStore({"Customer": [{"id": 1}]})
    removed = {"id": 2}
    source.add("Customer", removed)

    with source.snapshot() as snapshot:
        source.add("Customer", {"id": 3})
        source.remove("Customer", removed)
        seen = [c["id"] for c in snapshot.entities_of("Customer")]

    assert seen == [1, 2]


def test_in_memory_importer_accumulates():
    source = InMemorySourceStore({"Item": [{"id": 5}]})
    accumulator = [{"id": 0}]

    with source.snapshot() as snapshot:
        result = InMemoryEntityImporter().import_entities(MappingMetamodelVertex("Item"), snapshot, accumulator)

    assert result is accumulator
    assert [i["id"] for i in accumulator] == [0, 5]


def test_in_memory_released_snapshot_unreadable():
    snapshot = InMemorySourceStore({"Item": [{"id": 5}]}).snapshot()
    with snapshot:
        pass

    with pytest.raises(SourceIOError):
        snapshot.entities_of("Item")


def test_release_is_idempotent():
    source = InMemorySourceStore()
    snapshot = source.snapshot()
    snapshot.acquire()
    snapshot.release()
    snapshot.release()

    assert source.active_snapshots == 0


def test_snapshot_released_when_block_raises():
    source = InMemorySourceStore()

    with pytest.raises(RuntimeError):
        with source.snapshot():
            raise RuntimeError("boom")

    assert source.active_snapshots == 0


def test_in_memory_importer_rejects_foreign_snapshot(shop_db):
    with SqliteSourceStore(shop_db).snapshot() as snapshot:
        with pytest.raises(ConfigurationError, match="InMemorySnapshot"):
            InMemoryEntityImporter().import_entities(MappingMetamodelVertex("Customer"), snapshot, [])


# =============================================================================
# SQLITE SOURCE TESTS
# =============================================================================

def test_sqlite_import_rows(shop_db, shop_entities):
    importer = SqliteEntityImporter(shop_entities)

    with SqliteSourceStore(shop_db).snapshot() as snapshot:
        customers = importer.import_entities(MappingMetamodelVertex("Customer"), snapshot, [])

    assert sorted((c["id"], c["name"]) for c in customers) == [(1, "Ada"), (2, "Grace")]


def test_sqlite_join_table_members(shop_db, shop_entities):
    importer = SqliteEntityImporter(shop_entities)

    with SqliteSourceStore(shop_db).snapshot() as snapshot:
        orders = {o["id"]: o for o in importer.import_entities(MappingMetamodelVertex("Order"), snapshot, [])}

    assert sorted(orders[10]["items"]) == [1, 2]
    assert orders[11]["items"] == []
    assert orders[11]["customer_id"] is None


def test_sqlite_snapshot_isolation(shop_db, shop_entities):
    importer = SqliteEntityImporter(shop_entities)
    customer = MappingMetamodelVertex("Customer")

    # WAL lets the writer commit while the snapshot's read transaction is open
    writer = sqlite3.connect(shop_db)
    writer.execute("PRAGMA journal_mode=WAL")
    try:
        with SqliteSourceStore(shop_db).snapshot() as snapshot:
            writer.execute("INSERT INTO customer VALUES (3, 'Hedy')")
            writer.commit()

            seen = {c["id"] for c in importer.import_entities(customer, snapshot, [])}
    finally:
        writer.close()

    assert seen == {1, 2}


def test_sqlite_snapshot_is_read_only(shop_db):
    with SqliteSourceStore(shop_db).snapshot() as snapshot:
        with pytest.raises(SourceIOError):
            snapshot.query("DELETE FROM customer")


def test_sqlite_missing_database(tmp_path):
    with pytest.raises(SourceIOError, match="missing.db"):
        with SqliteSourceStore(tmp_path / "missing.db").snapshot():
            pass


def test_sqlite_missing_table(shop_db):
    importer = SqliteEntityImporter(config_from_dict({
        "source": {"path": "unused"},
        "entities": [{"name": "Ghost", "table": "ghost"}],
    }).entities)

    with SqliteSourceStore(shop_db).snapshot() as snapshot:
        with pytest.raises(SourceIOError, match="no such table"):
            importer.import_entities(MappingMetamodelVertex("Ghost"), snapshot, [])


def test_sqlite_query_after_release(shop_db):
    snapshot = SqliteSourceStore(shop_db).snapshot()
    with snapshot:
        assert snapshot.is_open

    assert not snapshot.is_open
    with pytest.raises(SourceIOError, match="not open"):
        snapshot.query("SELECT 1")


def test_sqlite_importer_unknown_type(shop_db, shop_entities):
    with SqliteSourceStore(shop_db).snapshot() as snapshot:
        with pytest.raises(ConfigurationError, match="No table configured"):
            SqliteEntityImporter(shop_entities).import_entities(MappingMetamodelVertex("Other"), snapshot, [])


def test_sqlite_importer_rejects_foreign_snapshot(shop_entities):
    with InMemorySourceStore().snapshot() as snapshot:
        with pytest.raises(ConfigurationError, match="SqliteSnapshot"):
            SqliteEntityImporter(shop_entities).import_entities(MappingMetamodelVertex("Customer"), snapshot, [])


def test_quote_identifier():
    assert quote_identifier("orders") == '"orders"'
    assert quote_identifier('we"ird') == '"we""ird"'


class _RollbackFailingConnection:
    """Wraps a real connection whose rollback hits an I/O error."""

    def __init__(self, conn):
        self._conn = conn
        self.closed = False

    def rollback(self):
        raise sqlite3.OperationalError("disk I/O error")

    def close(self):
        self._conn.close()
        self.closed = True


def test_sqlite_release_failure_is_source_io_error(shop_db):
    snapshot = SqliteSourceStore(shop_db).snapshot()
    snapshot.acquire()
    failing = _RollbackFailingConnection(snapshot._conn)
    snapshot._conn = failing

    with pytest.raises(SourceIOError, match="disk I/O error"):
        snapshot.release()

    assert failing.closed
    assert not snapshot.is_open


def test_sqlite_release_failure_keeps_original_error(shop_db):
    snapshot = SqliteSourceStore(shop_db).snapshot()

    with pytest.raises(DuplicateVertexError):
        with snapshot:
            failing = _RollbackFailingConnection(snapshot._conn)
            snapshot._conn = failing
            raise DuplicateVertexError("Customer", 7)

    assert failing.closed
