"""
Introspección del esquema SQLite (columnas, tipos declarados, nulabilidad, defaults, PK).
"""

from __future__ import annotations

from typing import Dict, List

from loguru import logger
from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import DBAPIError

from tablemigrator.domain.entities import ColumnDefinition, TableSchema
from tablemigrator.shared.exceptions import SchemaError, TableNotFoundError

SCHEMA_QUERY = text(
    """
    SELECT t.name AS tbl_name,
           c.name AS col_name,
           c.type AS col_type,
           c."notnull" AS not_null,
           c.dflt_value AS dflt_value,
           c.pk AS pk
    FROM sqlite_master AS t, pragma_table_info(t.name) AS c
    WHERE t.type = 'table'
    ORDER BY t.name, c.cid
    """
)


class SchemaIntrospector:
    """
    Lee la metadata de columnas de todas las tablas del origen.

    La búsqueda por nombre de tabla no distingue mayúsculas.
    """

    def __init__(self, conn: Connection) -> None:
        self._conn = conn

    def load_all(self) -> Dict[str, TableSchema]:
        """Retorna {nombre_tabla_en_minúsculas: TableSchema}."""
        try:
            rows = self._conn.execute(SCHEMA_QUERY).mappings().all()
        except DBAPIError as e:
            raise SchemaError(
                f"No se pudo leer el esquema del origen: {e.orig}",
                error_code="SOURCE_UNAVAILABLE",
            ) from e

        grouped: Dict[str, List[ColumnDefinition]] = {}
        names: Dict[str, str] = {}
        for row in rows:
            key = row["tbl_name"].lower()
            names.setdefault(key, row["tbl_name"])
            grouped.setdefault(key, []).append(
                ColumnDefinition(
                    table_name=row["tbl_name"],
                    column_name=row["col_name"],
                    declared_type=row["col_type"] or "",
                    nullable=not bool(row["not_null"]),
                    default_value=row["dflt_value"],
                    pk_position=int(row["pk"] or 0),
                )
            )

        return {key: TableSchema(names[key], tuple(cols)) for key, cols in grouped.items()}

    def get_table_schema(self, table_name: str) -> TableSchema:
        """
        Retorna el esquema de la tabla indicada.

        Raises:
            TableNotFoundError: si no hay metadata de columnas para ese nombre
        """
        schema = self.load_all().get(table_name.lower())
        if schema is None:
            raise TableNotFoundError(table_name)

        logger.info(f"Esquema de la tabla origen '{schema.table_name}'")
        for col in schema.columns:
            logger.info(
                f"Col {col.column_name}; Tipo: {col.declared_type}; "
                f"Def: {col.default_value}; EsPK: {col.is_primary_key}"
            )
        return schema
