"""
MODEL GRAPH BUILDER - Metamodel + Source Data -> Model Graph

Turns a declarative metamodel and a source store into a populated, frozen
GraphStore in two strictly sequential phases:

  Phase 1 - Vertex materialization
    One source snapshot is acquired, every entity type is imported through
    it (in parallel when import_workers > 1), each entity becomes a vertex
    keyed (type_name, id), and the snapshot is released.

  Phase 2 - Edge resolution
    Only once every vertex exists: each vertex's relationship fields are
    evaluated, normalized to "zero or more related entities", and wired to
    the matching vertices (in parallel partitions when edge_workers > 1,
    merged into the store in one batch at the end).

Fatal (the build raises, no graph is returned):
  ConfigurationError, DuplicateVertexError, SourceIOError
Tolerated (counted in the BuildReport, logged, no edge created):
  unset relationship, related entity without id, related id never imported
"""
import logging
import time
from collections import Counter
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from infrastructure.config import MigratorConfig, load_config
from infrastructure.logger import BuildLogger, LoggerConfig, configure_logger, configure_logging, get_logger
from infrastructure.source_db import EntityImporter, SourceSnapshot, SourceStore, SqliteEntityImporter, SqliteSourceStore
from modelgraph.declarative import metamodel_from_config
from modelgraph.errors import ConfigurationError
from modelgraph.graph_store import GraphStore
from modelgraph.metamodel import FieldEdge, Metamodel, MetamodelVertex
from modelgraph.ontology import BuildPhase, Multiplicity, SkipReason
from modelgraph.schemas import BuildReport, ModelEdge, ModelVertex

logger = logging.getLogger(__name__)


def normalize_related(field_edge: FieldEdge, value: Any) -> List[Any]:
    """
    Normalize an evaluated relationship value to a list of related entities.

    This is the only place that branches on multiplicity.

    Raises:
        ConfigurationError: If a COLLECTION field did not evaluate to an iterable
    """
    if value is None:
        return []
    if field_edge.multiplicity is Multiplicity.SINGLE:
        return [value]
    if isinstance(value, (str, bytes, Mapping)) or not isinstance(value, Iterable):
        raise ConfigurationError(
            f"{field_edge!r} evaluated to {type(value).__name__}, expected a collection"
        )
    return list(value)


def _checked_field_edges(metamodel: Metamodel) -> Dict[str, List[FieldEdge]]:
    """
    Outbound field edges per type, with both endpoints checked against the metamodel.

    Raises:
        ConfigurationError: If a field edge leaves a different type than the one
            reporting it, or points at a type the metamodel does not declare
    """
    field_edges: Dict[str, List[FieldEdge]] = {}
    for mv in metamodel.vertices():
        edges = list(mv.get_outbound_field_edges(metamodel))
        for fe in edges:
            if fe.source is not mv:
                raise ConfigurationError(
                    f"{fe!r} reported by {mv.type_name} does not originate from it"
                )
            if metamodel.get_vertex(fe.target_type_name) is not fe.target:
                raise ConfigurationError(
                    f"{fe!r} references undeclared entity type: {fe.target_type_name}"
                )
        field_edges[mv.type_name] = edges
    return field_edges


def _checked_id(type_name: str, entity_id: Any) -> Any:
    """
    Ids key a dict, so they must be hashable.

    Keys compare by Python equality: 1, 1.0 and True are the same id of a
    type, while "1" and 1 are different ids.
    """
    try:
        hash(entity_id)
    except TypeError as e:
        raise ConfigurationError(
            f"Identifier of {type_name} is not hashable: {entity_id!r}"
        ) from e
    return entity_id


def _partition(items: List[Any], parts: int) -> List[List[Any]]:
    """Split into at most `parts` contiguous, non-empty chunks."""
    if not items:
        return []
    size = -(-len(items) // max(parts, 1))
    return [items[i:i + size] for i in range(0, len(items), size)]


class ModelGraphBuilder:
    """
    Builds the model graph for one migration run.

    Usage:
        builder = ModelGraphBuilder(importer, source, import_workers=4, edge_workers=4)
        store = builder.build(metamodel)
        builder.last_report.skipped   # {"FIELD_UNSET": 1, ...}
    """

    def __init__(
        self,
        entity_importer: EntityImporter,
        source: SourceStore,
        *,
        import_workers: int = 1,
        edge_workers: int = 1,
        event_logger: Optional[BuildLogger] = None,
    ):
        if import_workers < 1 or edge_workers < 1:
            raise ConfigurationError(
                f"Worker counts must be >= 1, got import={import_workers} edge={edge_workers}"
            )
        self._importer = entity_importer
        self._source = source
        self._import_workers = import_workers
        self._edge_workers = edge_workers
        self._event_logger = event_logger

        self.last_report: Optional[BuildReport] = None

    @property
    def events(self) -> BuildLogger:
        return self._event_logger or get_logger()

    # =========================================================================
    # BUILD
    # =========================================================================

    def build(self, metamodel: Metamodel) -> GraphStore:
        """
        Build and freeze the model graph.

        Raises:
            ConfigurationError: Malformed metamodel or an entity without id
            DuplicateVertexError: Two entities of one type share an id
            SourceIOError: The source could not be read
        """
        self.last_report = None
        started = time.perf_counter()
        store = GraphStore(metamodel)
        phase = BuildPhase.VERTICES

        try:
            field_edges = _checked_field_edges(metamodel)

            logger.info("Creating model vertices for %d entity types", len(metamodel))
            self.events.log_phase_started(phase.value)
            vertices_by_type = self._create_vertices(metamodel, store)
            self.events.log_phase_completed(phase.value, store.vertex_count)

            phase = BuildPhase.EDGES
            logger.info("Creating model edges for %d vertices", store.vertex_count)
            self.events.log_phase_started(phase.value)
            skipped = self._create_edges(field_edges, store)
            self.events.log_phase_completed(phase.value, store.edge_count)
        except Exception as e:
            logger.error("Model graph build failed during %s phase: %s", phase.value, e)
            self.events.log_build_failed(phase.value, e)
            raise

        store.freeze()
        self.last_report = BuildReport(
            vertices_by_type=vertices_by_type,
            edge_count=store.edge_count,
            skipped={reason.value: count for reason, count in skipped.items()},
            elapsed_seconds=time.perf_counter() - started,
        )
        logger.info(
            "Model graph built: %d vertices, %d edges, %d references skipped",
            store.vertex_count, store.edge_count, self.last_report.skipped_count,
        )
        return store

    # =========================================================================
    # PHASE 1 - VERTEX MATERIALIZATION
    # =========================================================================

    def _create_vertices(self, metamodel: Metamodel, store: GraphStore) -> Dict[str, int]:
        types = metamodel.vertices()
        counts: Dict[str, int] = {}

        with self._source.snapshot() as snapshot:
            if self._import_workers > 1 and len(types) > 1:
                with ThreadPoolExecutor(max_workers=self._import_workers,
                                        thread_name_prefix="import") as pool:
                    futures = {pool.submit(self._import_type, mv, snapshot, store): mv for mv in types}
                    try:
                        for future in as_completed(futures):
                            counts[futures[future].type_name] = future.result()
                    except BaseException:
                        for future in futures:
                            future.cancel()
                        raise
            else:
                for mv in types:
                    counts[mv.type_name] = self._import_type(mv, snapshot, store)

        return counts

    def _import_type(self, metamodel_vertex: MetamodelVertex, snapshot: SourceSnapshot, store: GraphStore) -> int:
        """Import every entity of one type and add it as a vertex."""
        type_name = metamodel_vertex.type_name
        entities = self._importer.import_entities(metamodel_vertex, snapshot, [])

        for entity in entities:
            entity_id = metamodel_vertex.get_id(entity)
            if entity_id is None:
                raise ConfigurationError(f"Entity of type {type_name} has no identifier: {entity!r}")
            _checked_id(type_name, entity_id)

            store.add_vertex(
                type_name,
                entity_id,
                metamodel_vertex,
                entity,
                metamodel_vertex.get_additional_properties(entity),
            )
            self.events.log_vertex_created(type_name, entity_id)

        logger.info("Imported %d entities of type %s", len(entities), type_name)
        return len(entities)

    # =========================================================================
    # PHASE 2 - EDGE RESOLUTION
    # =========================================================================

    def _create_edges(self, field_edges: Dict[str, List[FieldEdge]], store: GraphStore) -> Counter:
        chunks = _partition(list(store.all_vertices()), self._edge_workers)

        if len(chunks) > 1:
            with ThreadPoolExecutor(max_workers=len(chunks), thread_name_prefix="edges") as pool:
                results = list(pool.map(lambda chunk: self._resolve_edges(chunk, field_edges, store), chunks))
        else:
            results = [self._resolve_edges(chunk, field_edges, store) for chunk in chunks]

        edges: List[ModelEdge] = []
        skipped: Counter = Counter()
        for chunk_edges, chunk_skipped in results:
            edges.extend(chunk_edges)
            skipped.update(chunk_skipped)

        store.add_edges_batch(edges)
        for edge in edges:
            self.events.log_edge_created(
                edge.source.type_name, edge.source.id, edge.field_name,
                edge.target.type_name, edge.target.id,
            )
        return skipped

    def _resolve_edges(
        self,
        vertices: List[ModelVertex],
        field_edges: Dict[str, List[FieldEdge]],
        store: GraphStore,
    ) -> Tuple[List[ModelEdge], Counter]:
        """Resolve outbound edges of a partition. Reads the store, never writes it."""
        edges: List[ModelEdge] = []
        skipped: Counter = Counter()

        for vertex in vertices:
            logger.debug("Looking for edges of %s:%r", vertex.type_name, vertex.id)
            for field_edge in field_edges[vertex.type_name]:
                value = field_edge.relationship_value(vertex.entity, store)
                if value is None:
                    self._skip(skipped, vertex, field_edge, SkipReason.FIELD_UNSET)
                    continue

                for related in normalize_related(field_edge, value):
                    target_id = None if related is None else field_edge.target.get_id(related)
                    if target_id is None:
                        self._skip(skipped, vertex, field_edge, SkipReason.NULL_TARGET_ID)
                        continue

                    target = store.get_vertex(
                        field_edge.target_type_name,
                        _checked_id(field_edge.target_type_name, target_id),
                    )
                    if target is None:
                        self._skip(skipped, vertex, field_edge, SkipReason.TARGET_NOT_IMPORTED, target_id)
                        continue

                    edges.append(ModelEdge(
                        source=vertex,
                        target=target,
                        field_name=field_edge.field_name,
                        field_edge=field_edge,
                    ))

        return edges, skipped

    def _skip(
        self,
        skipped: Counter,
        vertex: ModelVertex,
        field_edge: FieldEdge,
        reason: SkipReason,
        target_id: Any = None,
    ) -> None:
        skipped[reason] += 1
        logger.debug(
            "No edge %s:%r.%s (%s)", vertex.type_name, vertex.id, field_edge.field_name, reason.value,
        )
        self.events.log_reference_skipped(
            vertex.type_name, vertex.id, field_edge.field_name, reason.value,
            target_type=field_edge.target_type_name, target_id=target_id,
        )


# =============================================================================
# FACTORY FUNCTIONS
# =============================================================================

def create_builder_from_config(config: MigratorConfig) -> Tuple[ModelGraphBuilder, Metamodel]:
    """
    Wire a SQLite source, its importer and the declared metamodel.

    Also installs the global build event logger described by [logging].
    """
    metamodel = metamodel_from_config(config.entities)
    event_logger = configure_logger(LoggerConfig(
        enable_file_log=config.logging.event_log,
        log_path=Path(config.logging.event_log_path),
        buffer_size=config.logging.buffer_size,
    ))
    builder = ModelGraphBuilder(
        SqliteEntityImporter(config.entities),
        SqliteSourceStore(config.source.path, timeout=config.source.timeout),
        import_workers=config.build.import_workers,
        edge_workers=config.build.edge_workers,
        event_logger=event_logger,
    )
    return builder, metamodel


def build_from_config(config: MigratorConfig) -> GraphStore:
    """Build the model graph described by a loaded configuration."""
    builder, metamodel = create_builder_from_config(config)
    return builder.build(metamodel)


def build_from_file(config_path: Path | str) -> GraphStore:
    """
    Load a migrator TOML file, configure logging from it, and build.

    Raises:
        ConfigurationError: If the file is missing or invalid
    """
    config = load_config(config_path)
    configure_logging(config.logging.level)
    return build_from_config(config)
