"""
Caso de uso: migrar una tabla SQLite a una tabla de Azure Table Storage.

Estados:
    INIT -> SCHEMA_VALIDATED -> DESTINATION_VALIDATED -> TRANSFERRING -> COMPLETED
    FAILED es alcanzable desde cualquier estado.

Diseño (resumen):
- Valida el esquema origen (tabla, PK, columnas del mapeo, nombres reservados)
- Valida el destino (alcance, creación idempotente de tabla, aviso si no está vacía)
- Lee páginas ordenadas por PK, convierte cada fila y sube batches atómicos
- Fail-fast: cualquier error detiene la corrida. Lo ya confirmado queda en el
  destino (no hay rollback compensatorio), y lo mismo aplica a una cancelación.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, ContextManager, List, Optional, Union

from loguru import logger
from sqlalchemy.engine import Connection

from tablemigrator.application.interfaces.table_store import TableStore
from tablemigrator.application.services.batch_uploader import BatchUploader
from tablemigrator.application.services.entity_mapper import EntityMapper
from tablemigrator.domain.entities import (
    DEFAULT_PAGE_SIZE,
    DEFAULT_PARTITION_KEY,
    MAX_BATCH_SIZE,
    RESERVED_PROPERTY_NAMES,
    TableSchema,
    TypeMapping,
    WriteMode,
)
from tablemigrator.infrastructure.database.paginator import PaginationStrategy, Paginator
from tablemigrator.infrastructure.database.schema_introspector import SchemaIntrospector
from tablemigrator.infrastructure.database.session import open_source
from tablemigrator.shared.exceptions import (
    MigrationCancelledError,
    MigrationException,
    SchemaError,
)


class PipelineState(Enum):
    INIT = "init"
    SCHEMA_VALIDATED = "schema_validated"
    DESTINATION_VALIDATED = "destination_validated"
    TRANSFERRING = "transferring"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class MigrationOptions:
    """
    Parámetros de una corrida. Se pasan explícitamente (sin estado global).

    verbose: si True, el progreso por página/batch se loguea en INFO (si no, DEBUG).
    """

    source_path: Union[str, Path]
    source_table: str
    dest_table: str
    type_mapping: TypeMapping = field(default_factory=TypeMapping)
    page_size: int = DEFAULT_PAGE_SIZE
    max_batch_size: int = MAX_BATCH_SIZE
    pagination: PaginationStrategy = PaginationStrategy.KEYSET
    write_mode: WriteMode = WriteMode.REPLACE
    partition_key: str = DEFAULT_PARTITION_KEY
    verbose: bool = False


@dataclass
class MigrationResult:
    state: PipelineState = PipelineState.INIT
    pages_read: int = 0
    rows_uploaded: int = 0
    batches_committed: int = 0
    destination_was_empty: Optional[bool] = None
    duration_s: float = 0.0


# (páginas leídas, filas subidas, batches confirmados)
ProgressCallback = Callable[[int, int, int], None]
SourceOpener = Callable[[Union[str, Path]], ContextManager[Connection]]


class MigrationPipeline:
    """
    Orquestador Paginator -> EntityMapper -> BatchUploader.

    Uso:
        with AzureTableServiceClient.from_connection_string(conn_str) as store:
            result = MigrationPipeline(store, options).run()
    """

    def __init__(
        self,
        store: TableStore,
        options: MigrationOptions,
        *,
        cancel_event: Optional[threading.Event] = None,
        progress_callback: Optional[ProgressCallback] = None,
        source_opener: SourceOpener = open_source,
    ) -> None:
        self._store = store
        self._options = options
        self._cancel_event = cancel_event
        self._progress_callback = progress_callback
        self._source_opener = source_opener
        self._result = MigrationResult()
        self._history: List[PipelineState] = [PipelineState.INIT]

    @property
    def state(self) -> PipelineState:
        return self._result.state

    @property
    def state_history(self) -> List[PipelineState]:
        return list(self._history)

    @property
    def result(self) -> MigrationResult:
        return self._result

    def run(self) -> MigrationResult:
        """
        Ejecuta la corrida completa.

        Returns:
            MigrationResult con estado COMPLETED

        Raises:
            MigrationException: cualquier fallo (el estado queda en FAILED)
        """
        started = time.monotonic()
        opts = self._options
        logger.info(
            f"Migración: SQLite '{opts.source_path}' tabla '{opts.source_table}' -> "
            f"tabla destino '{opts.dest_table}' (modo={opts.write_mode.value}, "
            f"paginación={opts.pagination.value}, página={opts.page_size})"
        )
        try:
            with self._source_opener(opts.source_path) as conn:
                schema = self._validate_schema(conn)
                self._validate_destination()
                self._transfer(conn, schema)
        except MigrationException as e:
            self._fail(e)
            raise
        except Exception as e:
            logger.exception("Error inesperado durante la migración")
            error = MigrationException(
                f"Error inesperado ({type(e).__name__}): {e}",
                error_code="UNEXPECTED_ERROR",
                details={"exception_type": type(e).__name__},
            )
            self._fail(error)
            raise error from e
        finally:
            self._result.duration_s = time.monotonic() - started

        logger.success(
            f"Migración completada. filas={self._result.rows_uploaded}, "
            f"batches={self._result.batches_committed}, páginas={self._result.pages_read}"
        )
        return self._result

    # ------------------------------------------------------------------
    # Pasos
    # ------------------------------------------------------------------

    def _validate_schema(self, conn: Connection) -> TableSchema:
        self._check_cancelled()
        schema = SchemaIntrospector(conn).get_table_schema(self._options.source_table)

        if not schema.primary_key_columns:
            raise SchemaError(
                f"La tabla '{schema.table_name}' no tiene clave primaria",
                error_code="MISSING_PRIMARY_KEY",
                details={"table": schema.table_name},
            )

        reserved = [c for c in schema.column_names if c.lower() in RESERVED_PROPERTY_NAMES]
        if reserved:
            raise SchemaError(
                f"Columnas con nombre reservado por el servicio de tablas: {reserved}",
                error_code="RESERVED_COLUMN_NAME",
                details={"table": schema.table_name, "columns": reserved},
            )

        unknown = [c for c in self._options.type_mapping if not schema.has_column(c)]
        if unknown:
            raise SchemaError(
                f"El mapeo de tipos referencia columnas inexistentes en '{schema.table_name}': {unknown}",
                error_code="COLUMN_NOT_FOUND",
                details={"table": schema.table_name, "columns": unknown},
            )

        logger.info(f"Clave primaria: {', '.join(schema.primary_key_columns)}")
        self._transition(PipelineState.SCHEMA_VALIDATED)
        return schema

    def _validate_destination(self) -> None:
        self._check_cancelled()
        dest = self._options.dest_table
        self._store.get_service_properties()

        self._check_cancelled()
        created = self._store.create_table_if_not_exists(dest)
        if created:
            logger.info(f"Tabla destino '{dest}' creada")
            self._result.destination_was_empty = True
        else:
            self._check_cancelled()
            empty = not self._store.has_any_entity(dest)
            self._result.destination_was_empty = empty
            if not empty:
                logger.warning(f"La tabla destino '{dest}' no está vacía")

        self._transition(PipelineState.DESTINATION_VALIDATED)

    def _transfer(self, conn: Connection, schema: TableSchema) -> None:
        opts = self._options
        self._transition(PipelineState.TRANSFERRING)

        mapper = EntityMapper(schema.primary_key_columns, opts.type_mapping, partition_key=opts.partition_key)
        uploader = BatchUploader(
            self._store,
            opts.dest_table,
            mode=opts.write_mode,
            max_batch_size=opts.max_batch_size,
        )
        paginator = Paginator(
            conn,
            schema,
            page_size=opts.page_size,
            strategy=opts.pagination,
            cancel_event=self._cancel_event,
        )

        for page in paginator.iter_pages():
            self._check_cancelled()
            try:
                entities = mapper.map_rows(page.rows)
                upload = uploader.upload(entities)
            except MigrationException as e:
                # Batches de esta página confirmados antes del fallo
                self._result.batches_committed += e.details.get("committed_before_failure", 0)
                self._result.rows_uploaded += e.details.get("entities_before_failure", 0)
                e.details.setdefault("table", schema.table_name)
                e.details.setdefault("page_offset", page.offset)
                raise

            self._result.pages_read += 1
            self._result.batches_committed += upload.batches_committed
            self._result.rows_uploaded += upload.entities_committed
            self._log_progress(
                f"Offset: {page.offset}; Obtenidas: {len(page)}; "
                f"Batches: {upload.batches_committed}; Total filas: {self._result.rows_uploaded}"
            )
            if self._progress_callback is not None:
                self._progress_callback(
                    self._result.pages_read,
                    self._result.rows_uploaded,
                    self._result.batches_committed,
                )

        self._transition(PipelineState.COMPLETED)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _transition(self, new_state: PipelineState) -> None:
        logger.debug(f"Estado: {self._result.state.value} -> {new_state.value}")
        self._result.state = new_state
        self._history.append(new_state)

    def _check_cancelled(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise MigrationCancelledError()

    def _log_progress(self, message: str) -> None:
        if self._options.verbose:
            logger.info(message)
        else:
            logger.debug(message)

    def _fail(self, error: MigrationException) -> None:
        failed_from = self._result.state
        self._transition(PipelineState.FAILED)
        error.details.update({
            "failed_from_state": failed_from.value,
            "batches_committed": self._result.batches_committed,
            "rows_uploaded": self._result.rows_uploaded,
        })
        if isinstance(error, MigrationCancelledError):
            logger.warning(
                f"Migración cancelada. Batches confirmados: {self._result.batches_committed} "
                f"({self._result.rows_uploaded} filas); el destino conserva esa migración parcial"
            )
            return
        logger.error(
            f"Migración fallida {error}. Detalles: {error.details}. "
            f"Batches confirmados antes del fallo: {self._result.batches_committed}"
        )
