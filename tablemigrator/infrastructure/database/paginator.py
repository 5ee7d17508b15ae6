"""
Lectura paginada de la tabla origen, ordenada por la clave primaria completa.

Estrategias:
- KEYSET (default): WHERE (pk...) > (:ultimo...) ORDER BY pk LIMIT n. Costo lineal.
- OFFSET: ORDER BY pk LIMIT n OFFSET m. Se mantiene como opción; costo cuadrático
  en tablas grandes porque SQLite re-escanea las filas saltadas.

Convención de terminación: la primera página con menos de page_size filas cierra
el barrido. Una página vacía nunca se entrega (tabla vacía = cero páginas; si el
total es múltiplo exacto de page_size se paga una lectura vacía extra).
"""

from __future__ import annotations

import threading
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from loguru import logger
from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import DBAPIError

from tablemigrator.domain.entities import DEFAULT_PAGE_SIZE, Page, SourceRow, TableSchema
from tablemigrator.infrastructure.database.session import quote_identifier
from tablemigrator.shared.exceptions import MigrationCancelledError, SchemaError


class PaginationStrategy(Enum):
    KEYSET = "keyset"
    OFFSET = "offset"


class Paginator:
    """
    Produce páginas ordenadas, sin solapamiento y exhaustivas.

    Es perezoso y reiniciable desde cero: cada llamada a iter_pages() empieza
    un barrido nuevo. No se puede retomar a mitad de camino.
    """

    def __init__(
        self,
        conn: Connection,
        schema: TableSchema,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        strategy: PaginationStrategy = PaginationStrategy.KEYSET,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        if page_size < 1:
            raise ValueError(f"page_size debe ser >= 1, recibido {page_size}")
        if not schema.primary_key_columns:
            raise SchemaError(
                f"La tabla '{schema.table_name}' no tiene clave primaria; no hay orden estable para paginar",
                error_code="MISSING_PRIMARY_KEY",
                details={"table": schema.table_name},
            )
        self._conn = conn
        self._schema = schema
        self._page_size = page_size
        self._strategy = strategy
        self._cancel_event = cancel_event
        self._pk_columns = schema.primary_key_columns

        self._table_sql = quote_identifier(schema.table_name)
        self._order_sql = ", ".join(quote_identifier(c) for c in self._pk_columns)

    @property
    def page_size(self) -> int:
        return self._page_size

    def iter_pages(self) -> Iterator[Page]:
        offset = 0
        last_key: Optional[Tuple[Any, ...]] = None

        while True:
            if self._cancel_event is not None and self._cancel_event.is_set():
                raise MigrationCancelledError()

            rows = self._fetch(offset, last_key)
            logger.debug(f"Offset: {offset}; Obtenidas: {len(rows)}")
            if not rows:
                return

            last_key = self._key_of(rows[-1])
            page = Page(offset=offset, rows=rows, page_size=self._page_size, last_key=last_key)
            yield page

            if page.is_terminal:
                return
            offset += len(rows)

    def _fetch(self, offset: int, last_key: Optional[Tuple[Any, ...]]) -> List[SourceRow]:
        sql, params = self._build_query(offset, last_key)
        try:
            result = self._conn.execute(text(sql), params)
            return [dict(row._mapping) for row in result]
        except DBAPIError as e:
            raise SchemaError(
                f"Error leyendo '{self._schema.table_name}' en offset {offset}: {e.orig}",
                error_code="SOURCE_UNAVAILABLE",
                details={"table": self._schema.table_name, "offset": offset},
            ) from e

    def _build_query(self, offset: int, last_key: Optional[Tuple[Any, ...]]) -> Tuple[str, Dict[str, Any]]:
        params: Dict[str, Any] = {"limit": self._page_size}
        where = ""

        if self._strategy is PaginationStrategy.OFFSET:
            params["offset"] = offset
            return (
                f"SELECT * FROM {self._table_sql} ORDER BY {self._order_sql} "
                f"LIMIT :limit OFFSET :offset",
                params,
            )

        if last_key is not None:
            names = [f"k{i}" for i in range(len(last_key))]
            params.update(dict(zip(names, last_key)))
            if len(names) == 1:
                where = f" WHERE {self._order_sql} > :{names[0]}"
            else:
                placeholders = ", ".join(f":{n}" for n in names)
                where = f" WHERE ({self._order_sql}) > ({placeholders})"

        return f"SELECT * FROM {self._table_sql}{where} ORDER BY {self._order_sql} LIMIT :limit", params

    def _key_of(self, row: SourceRow) -> Tuple[Any, ...]:
        key = tuple(row[c] for c in self._pk_columns)
        if self._strategy is PaginationStrategy.KEYSET and any(v is None for v in key):
            # "> NULL" nunca es verdadero: el barrido terminaría en silencio
            raise SchemaError(
                f"Valor NULL en la clave primaria de '{self._schema.table_name}'",
                error_code="NULL_PRIMARY_KEY",
                details={"table": self._schema.table_name, "key": list(key)},
            )
        return key
