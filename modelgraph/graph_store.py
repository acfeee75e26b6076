"""
MODEL GRAPH STORE - The Materialized Instance Graph

Holds every migrated entity as a vertex and every resolved relationship as
an edge. Built once per migration run, frozen, then read by downstream
stages (ordering, cycle breaking, sink writing) and discarded.

Architecture (The Bridge Pattern):
  Business Layer
  - Addresses vertices by (type_name, id): ("Order", 10)

  Bridge Layer (This File)
  - _vertex_map: Dict[(type_name, id), int]  (key -> rustworkx index)

  Rust Layer (rustworkx.PyDiGraph, multigraph)
  - node payload: ModelVertex
  - edge payload: ModelEdge

Concurrency:
- Writes (vertices, edges) are serialized by one lock.
- Reads never lock. The builder only reads vertices after phase 1 has
  finished writing them.
"""
import threading
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set

import msgspec
import polars as pl
import rustworkx as rx

from modelgraph.errors import DuplicateVertexError, ReadOnlyGraphError, VertexNotFoundError
from modelgraph.metamodel import FieldEdge, Metamodel, MetamodelVertex
from modelgraph.schemas import EdgeKey, ModelEdge, ModelVertex, VertexKey


class VertexView:
    """
    Restartable, lazily iterated view over the vertices of a store.

    Every iteration walks the store again; nothing is copied up front.
    """

    def __init__(self, store: "GraphStore"):
        self._store = store

    def __iter__(self) -> Iterator[ModelVertex]:
        graph = self._store._graph
        for idx in graph.node_indices():
            yield graph[idx]

    def __len__(self) -> int:
        return self._store.vertex_count


class GraphStore:
    """
    In-memory property graph keyed by (type_name, id).

    Usage:
        store = GraphStore()
        customer = store.add_vertex("Customer", 1, customer_mv, row)
        order = store.add_vertex("Order", 10, order_mv, order_row)
        store.add_edge(order, customer, "customer", field_edge)

        store.get_vertex("Customer", 1)         # ModelVertex
        store.get_vertex("Customer", 2)         # None
        list(store.outbound_edges(order))       # [ModelEdge(...)]
    """

    def __init__(self, metamodel: Optional[Metamodel] = None):
        self._graph: rx.PyDiGraph = rx.PyDiGraph(multigraph=True)
        self._vertex_map: Dict[VertexKey, int] = {}
        self._write_lock = threading.Lock()
        self._frozen = False

        # Schema of the vertices and edges, handed downstream with the graph
        self.metamodel = metamodel

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def vertex_count(self) -> int:
        return self._graph.num_nodes()

    @property
    def edge_count(self) -> int:
        return self._graph.num_edges()

    @property
    def is_empty(self) -> bool:
        return self.vertex_count == 0

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        """Make the store read-only. Irreversible."""
        with self._write_lock:
            self._frozen = True

    def _check_writable(self) -> None:
        if self._frozen:
            raise ReadOnlyGraphError("Graph store is read-only once the build has completed")

    # =========================================================================
    # VERTEX OPERATIONS
    # =========================================================================

    def add_vertex(
        self,
        type_name: str,
        vertex_id: Any,
        metamodel_vertex: MetamodelVertex,
        entity: Any,
        extra_properties: Optional[Dict[str, Any]] = None,
    ) -> ModelVertex:
        """
        Materialize one entity as a vertex.

        Raises:
            DuplicateVertexError: If (type_name, vertex_id) is already present
            ReadOnlyGraphError: If the store is frozen
        """
        key = (type_name, vertex_id)
        vertex = ModelVertex(
            type_name=type_name,
            id=vertex_id,
            metamodel_vertex=metamodel_vertex,
            entity=entity,
            properties=dict(extra_properties or {}),
        )

        with self._write_lock:
            self._check_writable()
            if key in self._vertex_map:
                raise DuplicateVertexError(type_name, vertex_id)
            self._vertex_map[key] = self._graph.add_node(vertex)

        return vertex

    def get_vertex(self, type_name: str, vertex_id: Any) -> Optional[ModelVertex]:
        """Vertex for (type_name, vertex_id), or None. Never raises for a missing key."""
        idx = self._vertex_map.get((type_name, vertex_id))
        return None if idx is None else self._graph[idx]

    def has_vertex(self, type_name: str, vertex_id: Any) -> bool:
        return (type_name, vertex_id) in self._vertex_map

    def all_vertices(self) -> VertexView:
        """All vertices, unordered. The returned view can be iterated repeatedly."""
        return VertexView(self)

    def vertices_of_type(self, type_name: str) -> List[ModelVertex]:
        return [v for v in self.all_vertices() if v.type_name == type_name]

    def vertex_keys(self) -> Set[VertexKey]:
        return set(self._vertex_map)

    # =========================================================================
    # EDGE OPERATIONS
    # =========================================================================

    def add_edge(
        self,
        source: ModelVertex,
        target: ModelVertex,
        field_name: str,
        field_edge: FieldEdge,
    ) -> ModelEdge:
        """
        Append a resolved relationship. No deduplication is performed.

        Raises:
            VertexNotFoundError: If either endpoint is not in this store
            ReadOnlyGraphError: If the store is frozen
        """
        edge = ModelEdge(source=source, target=target, field_name=field_name, field_edge=field_edge)
        self.add_edges_batch([edge])
        return edge

    def add_edges_batch(self, edges: Iterable[ModelEdge]) -> int:
        """
        Append many edges in a single rustworkx call.

        All endpoints are checked before anything is written, so a failing
        batch leaves the store unchanged.

        Returns:
            Number of edges added
        """
        with self._write_lock:
            self._check_writable()
            edge_tuples = [
                (self._index_of(edge.source), self._index_of(edge.target), edge)
                for edge in edges
            ]
            if edge_tuples:
                self._graph.add_edges_from(edge_tuples)
        return len(edge_tuples)

    def _index_of(self, vertex: ModelVertex) -> int:
        """rustworkx index of a vertex that must belong to this store."""
        idx = self._vertex_map.get(vertex.key)
        if idx is None or self._graph[idx] is not vertex:
            raise VertexNotFoundError(vertex.type_name, vertex.id)
        return idx

    def outbound_edges(self, vertex: ModelVertex) -> Iterator[ModelEdge]:
        """Edges whose source is `vertex`, lazily. Empty for a foreign vertex."""
        idx = self._vertex_map.get(vertex.key)
        if idx is None:
            return iter(())
        return (data for _, _, data in self._graph.out_edges(idx))

    def inbound_edges(self, vertex: ModelVertex) -> Iterator[ModelEdge]:
        """Edges whose target is `vertex`, lazily. Empty for a foreign vertex."""
        idx = self._vertex_map.get(vertex.key)
        if idx is None:
            return iter(())
        return (data for _, _, data in self._graph.in_edges(idx))

    def all_edges(self) -> List[ModelEdge]:
        return list(self._graph.edges())

    def edge_keys(self) -> Set[EdgeKey]:
        return {edge.key for edge in self._graph.edges()}

    # =========================================================================
    # EXPORT (Polars-Compatible)
    # =========================================================================

    def to_polars_vertices(self) -> pl.DataFrame:
        """
        Export vertices to a Polars DataFrame.

        Ids are rendered as strings since different entity types may use
        different id types. Extra properties are JSON-encoded.
        """
        vertices = list(self.all_vertices())
        return pl.DataFrame(
            {
                "type_name": [v.type_name for v in vertices],
                "id": [str(v.id) for v in vertices],
                "properties": [
                    msgspec.json.encode(v.properties).decode("utf-8") for v in vertices
                ],
            },
            schema={"type_name": pl.Utf8, "id": pl.Utf8, "properties": pl.Utf8},
        )

    def to_polars_edges(self) -> pl.DataFrame:
        """Export edges to a Polars DataFrame."""
        edges = self.all_edges()
        return pl.DataFrame(
            {
                "source_type": [e.source.type_name for e in edges],
                "source_id": [str(e.source.id) for e in edges],
                "target_type": [e.target.type_name for e in edges],
                "target_id": [str(e.target.id) for e in edges],
                "field_name": [e.field_name for e in edges],
                "multiplicity": [e.field_edge.multiplicity.value for e in edges],
            },
            schema={
                "source_type": pl.Utf8,
                "source_id": pl.Utf8,
                "target_type": pl.Utf8,
                "target_id": pl.Utf8,
                "field_name": pl.Utf8,
                "multiplicity": pl.Utf8,
            },
        )

    def __len__(self) -> int:
        return self.vertex_count

    def __contains__(self, key: VertexKey) -> bool:
        return key in self._vertex_map

    def __repr__(self) -> str:
        return f"GraphStore(vertices={self.vertex_count}, edges={self.edge_count}, frozen={self._frozen})"
