"""
MODEL GRAPH METAMODEL - The Type Graph

Describes what kinds of entities exist and how they may relate, independent
of any concrete data:
- MetamodelVertex: one entity type (capability interface, one variant per type)
- FieldEdge: one relationship field between two entity types
- Metamodel: the type graph itself, backed by rustworkx

Architecture:
  Metamodel (rx.PyDiGraph, multigraph)
  - nodes: MetamodelVertex
  - edges: FieldEdge (several fields may link the same pair of types)
  - _index: Dict[str, int]  (type_name -> rustworkx index)

The metamodel is read-only input to the builder. Every structural mistake
(unknown type, duplicate type, duplicate field) is rejected at construction
time with ConfigurationError, so a build never starts on a malformed model.
"""
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterator, List, Optional

import msgspec
import rustworkx as rx

from modelgraph.errors import ConfigurationError
from modelgraph.ontology import Multiplicity


# Evaluates a relationship on a source entity.
# Returns None, one related entity (SINGLE) or an iterable of them (COLLECTION).
RelationshipEvaluator = Callable[[Any, Any], Any]


# =============================================================================
# METAMODEL VERTEX (Capability Interface)
# =============================================================================

class MetamodelVertex(ABC):
    """
    One entity type of the source data model.

    Subclasses decide how to read an identifier and extra scalar properties
    from a raw entity of their type.
    """

    @property
    @abstractmethod
    def type_name(self) -> str:
        """Unique name of this entity type."""
        pass

    @abstractmethod
    def get_id(self, entity: Any) -> Any:
        """
        Extract the identifier of an entity of this type.

        Returns:
            The id, or None when the entity has none.
        """
        pass

    def get_additional_properties(self, entity: Any) -> Dict[str, Any]:
        """Scalar properties to carry onto the graph vertex. None by default."""
        return {}

    def get_outbound_field_edges(self, metamodel: "Metamodel") -> List["FieldEdge"]:
        """Relationship fields declared on this type."""
        return metamodel.outbound_field_edges(self)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.type_name})"


# =============================================================================
# FIELD EDGE
# =============================================================================

class FieldEdge(msgspec.Struct, kw_only=True, frozen=True):
    """
    A relationship field from `source` to `target`.

    The multiplicity is declared, never inferred from the runtime shape of
    the evaluated value.
    """
    source: MetamodelVertex
    target: MetamodelVertex
    field_name: str
    multiplicity: Multiplicity
    evaluator: RelationshipEvaluator

    @property
    def source_type_name(self) -> str:
        return self.source.type_name

    @property
    def target_type_name(self) -> str:
        return self.target.type_name

    def relationship_value(self, entity: Any, graph: Any = None) -> Any:
        """Evaluate this field on a source entity, with optional graph context."""
        return self.evaluator(entity, graph)

    def __repr__(self) -> str:
        return (
            f"FieldEdge({self.source_type_name}.{self.field_name} -> "
            f"{self.target_type_name}, {self.multiplicity.value})"
        )


# =============================================================================
# METAMODEL (The Type Graph)
# =============================================================================

class Metamodel:
    """
    Declared entity types and the relationship fields between them.

    Usage:
        metamodel = Metamodel()
        customer = metamodel.add_vertex(MappingMetamodelVertex("Customer", "id"))
        order = metamodel.add_vertex(MappingMetamodelVertex("Order", "id"))
        metamodel.add_field_edge(
            order, customer, "customer", Multiplicity.SINGLE,
            reference_by_key("customer_id", "id"),
        )
    """

    def __init__(self):
        self._graph: rx.PyDiGraph = rx.PyDiGraph(multigraph=True)
        self._index: Dict[str, int] = {}

    # =========================================================================
    # CONSTRUCTION
    # =========================================================================

    def add_vertex(self, vertex: MetamodelVertex) -> MetamodelVertex:
        """
        Declare an entity type.

        Raises:
            ConfigurationError: If the type name is empty or already declared
        """
        type_name = vertex.type_name
        if not type_name:
            raise ConfigurationError(f"Metamodel vertex has no type name: {vertex!r}")
        if type_name in self._index:
            raise ConfigurationError(f"Entity type declared twice: {type_name}")

        self._index[type_name] = self._graph.add_node(vertex)
        return vertex

    def add_field_edge(
        self,
        source: MetamodelVertex,
        target: MetamodelVertex,
        field_name: str,
        multiplicity: Multiplicity,
        evaluator: RelationshipEvaluator,
    ) -> FieldEdge:
        """
        Declare a relationship field.

        Raises:
            ConfigurationError: If either endpoint is not a declared type,
                or the field already exists on the source type
        """
        src_idx = self._declared_index(source)
        tgt_idx = self._declared_index(target)

        if not field_name:
            raise ConfigurationError(f"Field edge on {source.type_name} has no field name")
        if any(fe.field_name == field_name for fe in self.outbound_field_edges(source)):
            raise ConfigurationError(
                f"Field declared twice on {source.type_name}: {field_name}"
            )

        field_edge = FieldEdge(
            source=source,
            target=target,
            field_name=field_name,
            multiplicity=Multiplicity(multiplicity),
            evaluator=evaluator,
        )
        self._graph.add_edge(src_idx, tgt_idx, field_edge)
        return field_edge

    def _declared_index(self, vertex: MetamodelVertex) -> int:
        """Index of a declared vertex; the declared object must be the same one."""
        idx = self._index.get(vertex.type_name)
        if idx is None or self._graph[idx] is not vertex:
            raise ConfigurationError(
                f"Field edge references undeclared entity type: {vertex.type_name}"
            )
        return idx

    # =========================================================================
    # QUERIES
    # =========================================================================

    def vertices(self) -> List[MetamodelVertex]:
        """All declared entity types."""
        return list(self._graph.nodes())

    def get_vertex(self, type_name: str) -> Optional[MetamodelVertex]:
        idx = self._index.get(type_name)
        return None if idx is None else self._graph[idx]

    def field_edges(self) -> List[FieldEdge]:
        """All declared relationship fields."""
        return list(self._graph.edges())

    def outbound_field_edges(self, vertex: MetamodelVertex) -> List[FieldEdge]:
        """
        Relationship fields declared on a type.

        Raises:
            ConfigurationError: If the type is not declared
        """
        idx = self._declared_index(vertex)
        return [data for _, _, data in self._graph.out_edges(idx)]

    def __iter__(self) -> Iterator[MetamodelVertex]:
        return iter(self.vertices())

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, type_name: str) -> bool:
        return type_name in self._index

    def __repr__(self) -> str:
        return f"Metamodel(types={len(self)}, fields={self._graph.num_edges()})"
