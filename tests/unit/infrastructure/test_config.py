"""
Unit tests for infrastructure/config.py - TOML run configuration
"""
from pathlib import Path

import pytest

from infrastructure.config import MigratorConfig, config_from_dict, load_config
from modelgraph.errors import ConfigurationError
from modelgraph.ontology import Multiplicity


SHOP_TOML = """
[source]
path = "data/shop.db"
timeout = 2.5

[build]
import_workers = 2
edge_workers = 3

[logging]
level = "DEBUG"
event_log = true
event_log_path = "logs"

[[entities]]
name = "Customer"
table = "customer"
properties = ["name"]

[[entities]]
name = "Order"
table = "orders"

[[entities.relations]]
field = "customer"
target = "Customer"
column = "customer_id"
"""


def _minimal(**overrides):
    data = {"source": {"path": "shop.db"}}
    data.update(overrides)
    return data


# =============================================================================
# LOADING TESTS
# =============================================================================

def test_load_config(tmp_path):
    config_file = tmp_path / "migrator.toml"
    config_file.write_text(SHOP_TOML)

    config = load_config(config_file)

    assert isinstance(config, MigratorConfig)
    assert Path(config.source.path) == tmp_path / "data" / "shop.db"
    assert config.source.timeout == 2.5
    assert config.build.import_workers == 2
    assert config.build.edge_workers == 3
    assert config.logging.level == "DEBUG"
    assert config.logging.event_log is True
    assert Path(config.logging.event_log_path) == tmp_path / "logs"

    order = config.entity("Order")
    assert order.table == "orders"
    assert order.id_column == "id"
    assert order.relations[0].multiplicity is Multiplicity.SINGLE
    assert config.entity("Missing") is None


def test_absolute_source_path_kept(tmp_path):
    db = tmp_path / "elsewhere" / "shop.db"
    config_file = tmp_path / "migrator.toml"
    config_file.write_text(f'[source]\npath = "{db.as_posix()}"\n')

    assert Path(load_config(config_file).source.path) == db


def test_defaults():
    config = config_from_dict(_minimal())

    assert config.build.import_workers == 1
    assert config.build.edge_workers == 1
    assert config.logging.level == "INFO"
    assert config.logging.event_log is False
    assert config.entities == []


def test_missing_file(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        load_config(tmp_path / "absent.toml")


def test_invalid_toml(tmp_path):
    config_file = tmp_path / "broken.toml"
    config_file.write_text("[source\npath = ")

    with pytest.raises(ConfigurationError, match="Invalid TOML"):
        load_config(config_file)


# =============================================================================
# VALIDATION TESTS
# =============================================================================

def test_missing_source_section():
    with pytest.raises(ConfigurationError, match="source"):
        config_from_dict({})


def test_wrong_type_reports_path():
    with pytest.raises(ConfigurationError, match=r"\$\.build\.edge_workers"):
        config_from_dict(_minimal(build={"edge_workers": "many"}))


def test_unknown_field_rejected():
    with pytest.raises(ConfigurationError):
        config_from_dict(_minimal(build={"threads": 4}))


def test_unknown_multiplicity_rejected():
    with pytest.raises(ConfigurationError):
        config_from_dict(_minimal(entities=[
            {"name": "A", "table": "a", "relations": [
                {"field": "b", "target": "A", "column": "b", "multiplicity": "many"},
            ]},
        ]))


@pytest.mark.parametrize("section,key", [
    ("build", "import_workers"),
    ("build", "edge_workers"),
    ("logging", "buffer_size"),
])
def test_counts_must_be_positive(section, key):
    with pytest.raises(ConfigurationError, match=key):
        config_from_dict(_minimal(**{section: {key: 0}}))


def test_duplicate_entity_names():
    with pytest.raises(ConfigurationError, match="declared twice"):
        config_from_dict(_minimal(entities=[
            {"name": "A", "table": "a"},
            {"name": "A", "table": "a2"},
        ]))


def test_relation_to_undeclared_entity():
    with pytest.raises(ConfigurationError, match="A.b targets undeclared entity type: B"):
        config_from_dict(_minimal(entities=[
            {"name": "A", "table": "a", "relations": [{"field": "b", "target": "B", "column": "b_id"}]},
        ]))


def test_relation_needs_column_or_join_table():
    with pytest.raises(ConfigurationError, match="needs either column or join_table"):
        config_from_dict(_minimal(entities=[
            {"name": "A", "table": "a", "relations": [{"field": "parent", "target": "A"}]},
        ]))


def test_join_table_requires_collection():
    with pytest.raises(ConfigurationError, match="requires multiplicity 'collection'"):
        config_from_dict(_minimal(entities=[
            {"name": "A", "table": "a", "relations": [{
                "field": "peers", "target": "A", "join_table": "a_peers",
                "join_source_column": "a_id", "join_target_column": "peer_id",
            }]},
        ]))


def test_join_table_requires_both_columns():
    with pytest.raises(ConfigurationError, match="join_source_column and join_target_column"):
        config_from_dict(_minimal(entities=[
            {"name": "A", "table": "a", "relations": [{
                "field": "peers", "target": "A", "multiplicity": "collection",
                "join_table": "a_peers", "join_source_column": "a_id",
            }]},
        ]))


def test_unknown_log_level():
    with pytest.raises(ConfigurationError, match="logging.level"):
        config_from_dict(_minimal(logging={"level": "chatty"}))
