"""
MODEL GRAPH ERRORS - The Failure Taxonomy

Every fatal condition of a model-graph build has exactly one exception type.
Silent-skip conditions (unset relationship, null target id, target never
imported) are NOT exceptions; they are counted by the builder and logged.

Hierarchy:
    MigratorError
    ├── ConfigurationError     malformed metamodel / config, primary entity without id
    ├── SourceIOError          source store unreachable or snapshot lost
    └── GraphError
        ├── DuplicateVertexError   (type_name, id) already materialized
        ├── VertexNotFoundError    edge endpoint absent from the store
        └── ReadOnlyGraphError     write attempted after the build completed
"""
from typing import Any


class MigratorError(Exception):
    """Base exception for the migrator."""
    pass


class ConfigurationError(MigratorError):
    """Raised for a malformed metamodel, bad configuration, or an unidentifiable entity."""
    pass


class SourceIOError(MigratorError):
    """Raised when the source store cannot be read."""
    pass


# =============================================================================
# GRAPH STORE EXCEPTIONS
# =============================================================================

class GraphError(MigratorError):
    """Base exception for graph store operations."""
    pass


class DuplicateVertexError(GraphError):
    """Raised when two entities of the same type resolve to the same id."""
    def __init__(self, type_name: str, vertex_id: Any):
        self.type_name = type_name
        self.vertex_id = vertex_id
        super().__init__(f"Vertex already exists: {type_name}:{vertex_id!r}")


class VertexNotFoundError(GraphError):
    """Raised when an edge endpoint is not in the graph store."""
    def __init__(self, type_name: str, vertex_id: Any):
        self.type_name = type_name
        self.vertex_id = vertex_id
        super().__init__(f"Vertex not found: {type_name}:{vertex_id!r}")


class ReadOnlyGraphError(GraphError):
    """Raised when a frozen graph store is written to."""
    pass
