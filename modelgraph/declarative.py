"""
Declarative metamodels: entity types read from mapping keys (or object
attributes), relationships expressed as id references.

A related entity produced here is a reference stub, `{target_id_field: id}`;
the target type's own id extractor reads the id back out of it, exactly as
it would from a fully loaded entity.
"""
from collections.abc import Iterable, Mapping
from typing import Any, Dict, Sequence

from infrastructure.config import EntityConfig
from modelgraph.errors import ConfigurationError
from modelgraph.metamodel import Metamodel, MetamodelVertex, RelationshipEvaluator
from modelgraph.ontology import Multiplicity


def field_value(entity: Any, name: str) -> Any:
    """Read `name` from a mapping or an object. Missing reads as None."""
    if isinstance(entity, Mapping):
        return entity.get(name)
    return getattr(entity, name, None)


class MappingMetamodelVertex(MetamodelVertex):
    """Entity type whose id and extra properties are named fields."""

    def __init__(self, type_name: str, id_field: str = "id", property_fields: Sequence[str] = ()):
        self._type_name = type_name
        self.id_field = id_field
        self.property_fields = tuple(property_fields)

    @property
    def type_name(self) -> str:
        return self._type_name

    def get_id(self, entity: Any) -> Any:
        return field_value(entity, self.id_field)

    def get_additional_properties(self, entity: Any) -> Dict[str, Any]:
        return {name: field_value(entity, name) for name in self.property_fields}


def reference_by_key(column: str, target_id_field: str) -> RelationshipEvaluator:
    """SINGLE relation stored as a foreign-key column."""
    def evaluate(entity: Any, graph: Any = None) -> Any:
        key = field_value(entity, column)
        if key is None:
            return None
        return {target_id_field: key}
    return evaluate


def references_by_keys(column: str, target_id_field: str) -> RelationshipEvaluator:
    """COLLECTION relation stored as a list of target ids."""
    def evaluate(entity: Any, graph: Any = None) -> Any:
        keys = field_value(entity, column)
        if keys is None:
            return None
        if isinstance(keys, (str, bytes)) or not isinstance(keys, Iterable):
            raise ConfigurationError(
                f"Collection column {column!r} holds {type(keys).__name__}, expected a list of ids"
            )
        return [{target_id_field: key} for key in keys]
    return evaluate


def metamodel_from_config(entities: Sequence[EntityConfig]) -> Metamodel:
    """
    Build a Metamodel from [[entities]] config sections.

    Join-table collections read the id list the importer stored under the
    relation's field name.

    Raises:
        ConfigurationError: If a relation targets an undeclared type
    """
    metamodel = Metamodel()
    for entity in entities:
        metamodel.add_vertex(MappingMetamodelVertex(entity.name, entity.id_column, entity.properties))

    for entity in entities:
        source = metamodel.get_vertex(entity.name)
        for relation in entity.relations:
            target = metamodel.get_vertex(relation.target)
            if target is None:
                raise ConfigurationError(
                    f"{entity.name}.{relation.field} targets undeclared entity type: {relation.target}"
                )

            column = relation.field if relation.uses_join_table else relation.column
            if relation.multiplicity is Multiplicity.SINGLE:
                evaluator = reference_by_key(column, target.id_field)
            else:
                evaluator = references_by_keys(column, target.id_field)

            metamodel.add_field_edge(source, target, relation.field, relation.multiplicity, evaluator)

    return metamodel
