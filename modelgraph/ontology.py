"""
MODEL GRAPH ONTOLOGY - The Vocabulary

Enums shared by the metamodel, the builder and the event log.
"""
from enum import Enum


class Multiplicity(str, Enum):
    """Declared shape of a relationship field."""
    SINGLE = "single"            # At most one related entity
    COLLECTION = "collection"    # Zero or more related entities


class SkipReason(str, Enum):
    """Tolerated gaps during edge resolution. Never errors."""
    FIELD_UNSET = "FIELD_UNSET"                  # Relationship value is None
    NULL_TARGET_ID = "NULL_TARGET_ID"            # Related entity has no id
    TARGET_NOT_IMPORTED = "TARGET_NOT_IMPORTED"  # Id matches no materialized vertex


class BuildPhase(str, Enum):
    """The two strictly sequential build phases."""
    VERTICES = "VERTICES"
    EDGES = "EDGES"
