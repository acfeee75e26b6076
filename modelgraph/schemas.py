"""
MODEL GRAPH SCHEMAS - The Records of the Instance Graph

If metamodel.py describes what MAY exist, schemas.py describes what DOES:
- ModelVertex: one materialized source entity
- ModelEdge: one resolved relationship occurrence
- BuildReport: what a build produced and what it tolerated

Design Principles:
1. IDENTITY BY KEY: a vertex is (type_name, id); an edge is
   (source key, target key, field_name). Graph equality is key-set equality.
2. CREATED ONCE: vertices are never copied, so vertex equality is identity.
3. KW_ONLY: enforce keyword arguments to prevent positional mix-ups.
"""
import msgspec
from typing import Any, Dict, Tuple

from modelgraph.metamodel import FieldEdge, MetamodelVertex


VertexKey = Tuple[str, Any]
EdgeKey = Tuple[VertexKey, VertexKey, str]


# =============================================================================
# VERTEX
# =============================================================================

class ModelVertex(msgspec.Struct, kw_only=True, frozen=True, eq=False):
    """
    A materialized node of the model graph.

    `entity` is the raw payload returned by the importer; it is never
    transformed. `properties` holds the scalar values extracted by the
    owning metamodel vertex.
    """
    type_name: str
    id: Any
    metamodel_vertex: MetamodelVertex
    entity: Any
    properties: Dict[str, Any] = msgspec.field(default_factory=dict)

    @property
    def key(self) -> VertexKey:
        return (self.type_name, self.id)

    def __repr__(self) -> str:
        return f"ModelVertex({self.type_name}:{self.id!r})"


# =============================================================================
# EDGE
# =============================================================================

class ModelEdge(msgspec.Struct, kw_only=True, frozen=True):
    """A resolved relationship: source vertex -> target vertex through one field."""
    source: ModelVertex
    target: ModelVertex
    field_name: str
    field_edge: FieldEdge

    @property
    def key(self) -> EdgeKey:
        return (self.source.key, self.target.key, self.field_name)

    def __repr__(self) -> str:
        return f"ModelEdge({self.source.type_name}:{self.source.id!r} -[{self.field_name}]-> {self.target.type_name}:{self.target.id!r})"


# =============================================================================
# BUILD REPORT
# =============================================================================

class BuildReport(msgspec.Struct, kw_only=True, frozen=True):
    """Summary of one successful build."""
    vertices_by_type: Dict[str, int]
    edge_count: int
    skipped: Dict[str, int]              # SkipReason.value -> occurrences
    elapsed_seconds: float

    @property
    def vertex_count(self) -> int:
        return sum(self.vertices_by_type.values())

    @property
    def skipped_count(self) -> int:
        return sum(self.skipped.values())
