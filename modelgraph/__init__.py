"""
MODEL GRAPH - Materializes a source data model as a property graph.

This module provides access to:
- The error taxonomy (ConfigurationError, SourceIOError, DuplicateVertexError, ...)
- The metamodel (MetamodelVertex, FieldEdge, Metamodel, Multiplicity)
- The instance graph (ModelVertex, ModelEdge, GraphStore, BuildReport)

The builder depends on the infrastructure adapters and is imported from
its own module:

    from modelgraph.builder import ModelGraphBuilder, build_from_config
    from modelgraph.declarative import MappingMetamodelVertex, metamodel_from_config
"""

from modelgraph.errors import (
    MigratorError,
    ConfigurationError,
    SourceIOError,
    GraphError,
    DuplicateVertexError,
    VertexNotFoundError,
    ReadOnlyGraphError,
)
from modelgraph.ontology import Multiplicity, SkipReason, BuildPhase
from modelgraph.metamodel import MetamodelVertex, FieldEdge, Metamodel
from modelgraph.schemas import ModelVertex, ModelEdge, BuildReport
from modelgraph.graph_store import GraphStore

__all__ = [
    # Errors
    "MigratorError",
    "ConfigurationError",
    "SourceIOError",
    "GraphError",
    "DuplicateVertexError",
    "VertexNotFoundError",
    "ReadOnlyGraphError",
    # Vocabulary
    "Multiplicity",
    "SkipReason",
    "BuildPhase",
    # Metamodel
    "MetamodelVertex",
    "FieldEdge",
    "Metamodel",
    # Instance graph
    "ModelVertex",
    "ModelEdge",
    "BuildReport",
    "GraphStore",
]
