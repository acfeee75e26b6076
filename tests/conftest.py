"""
Pytest configuration and shared fixtures for the model graph test suite.
"""
import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


@pytest.fixture(autouse=True)
def reset_global_state():
    """Reset the global build event logger before each test to ensure isolation."""
    from infrastructure.logger import configure_logger

    configure_logger(None)

    yield

    configure_logger(None)


@pytest.fixture
def fresh_store():
    """Provide an empty GraphStore."""
    from modelgraph.graph_store import GraphStore
    return GraphStore()


@pytest.fixture
def shop_metamodel():
    """
    Customer / Order / Item metamodel.

    Order.customer -> Customer (SINGLE, foreign key column customer_id)
    Order.items    -> Item     (COLLECTION, list of ids under "items")
    """
    from modelgraph.declarative import MappingMetamodelVertex, reference_by_key, references_by_keys
    from modelgraph.metamodel import Metamodel
    from modelgraph.ontology import Multiplicity

    metamodel = Metamodel()
    customer = metamodel.add_vertex(MappingMetamodelVertex("Customer", "id", ["name"]))
    order = metamodel.add_vertex(MappingMetamodelVertex("Order", "id"))
    item = metamodel.add_vertex(MappingMetamodelVertex("Item", "id"))

    metamodel.add_field_edge(order, customer, "customer", Multiplicity.SINGLE,
                             reference_by_key("customer_id", "id"))
    metamodel.add_field_edge(order, item, "items", Multiplicity.COLLECTION,
                             references_by_keys("items", "id"))
    return metamodel


@pytest.fixture
def build_graph():
    """Build a graph from in-memory entity lists: build_graph(metamodel, entities, **builder_kwargs)."""
    from infrastructure.logger import BuildLogger
    from infrastructure.source_db import InMemoryEntityImporter, InMemorySourceStore
    from modelgraph.builder import ModelGraphBuilder

    def _build(metamodel, entities, **kwargs):
        kwargs.setdefault("event_logger", BuildLogger())
        source = InMemorySourceStore(entities)
        builder = ModelGraphBuilder(InMemoryEntityImporter(), source, **kwargs)
        return builder.build(metamodel), builder

    return _build
