"""
Mapeo de filas SQLite a entidades del servicio de tablas.

- RowKeyBuilder: deriva el RowKey desde la(s) columna(s) de la PK.
- EntityMapper: convierte cada columna con su tipo declarado y arma la entidad.

Cualquier ConversionError aborta el mapeo de la fila completa (no hay entidades parciales).
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Iterable, List, Optional, Sequence

from tablemigrator.application.services.type_converter import convert_value
from tablemigrator.domain.entities import (
    DEFAULT_PARTITION_KEY,
    ConvertedEntity,
    EntityProperty,
    SourceRow,
    TypeMapping,
)
from tablemigrator.shared.exceptions import ConversionError, SchemaError

ROW_KEY_SEPARATOR = "|"

# Caracteres que Azure Tables no admite en PartitionKey/RowKey, más el separador y '%'.
_ESCAPED_CHARS = frozenset("%|/\\#?")


def escape_key_part(text: str) -> str:
    """
    Escapa un componente de RowKey con percent-encoding.

    Solo se escapan '%', el separador, los caracteres prohibidos por el servicio
    y los caracteres de control; un valor común queda igual.
    """
    out = []
    for ch in text:
        code = ord(ch)
        if ch in _ESCAPED_CHARS or code < 0x20 or 0x7F <= code <= 0x9F:
            out.append("".join(f"%{b:02X}" for b in ch.encode("utf-8")))
        else:
            out.append(ch)
    return "".join(out)


def key_value_to_text(value: Any) -> str:
    """Forma textual de un valor de PK ya convertido."""
    if isinstance(value, EntityProperty):
        value = value.value
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat().replace("+00:00", "Z")
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, float):
        return repr(value)
    return str(value)


def lookup_column(row: SourceRow, column: str) -> Any:
    """
    Busca una columna en la fila (primero exacta, luego case-insensitive).

    Raises:
        KeyError: si la columna no está en la fila
    """
    if column in row:
        return row[column]
    lowered = column.lower()
    for name, value in row.items():
        if name.lower() == lowered:
            return value
    raise KeyError(column)


class RowKeyBuilder:
    """
    Construye el RowKey a partir de las columnas de la PK.

    Cada columna se busca individualmente, se convierte con su mapeo y se
    serializa; las partes escapadas se unen con '|'.
    """

    def __init__(self, primary_key_columns: Sequence[str], type_mapping: Optional[TypeMapping] = None) -> None:
        if not primary_key_columns:
            raise SchemaError(
                "La tabla no tiene clave primaria: no se puede derivar un RowKey único",
                error_code="MISSING_PRIMARY_KEY",
            )
        self._pk_columns = tuple(primary_key_columns)
        self._mapping = type_mapping or TypeMapping()

    @property
    def primary_key_columns(self) -> tuple:
        return self._pk_columns

    def build(self, row: SourceRow) -> str:
        parts: List[str] = []
        for column in self._pk_columns:
            try:
                raw = lookup_column(row, column)
            except KeyError:
                raise SchemaError(
                    f"La fila no contiene la columna de PK '{column}'",
                    error_code="COLUMN_NOT_FOUND",
                    details={"column": column},
                ) from None
            if raw is None:
                raise SchemaError(
                    f"Valor NULL en la columna de PK '{column}'",
                    error_code="NULL_PRIMARY_KEY",
                    details={"column": column},
                )
            try:
                converted = convert_value(raw, self._mapping.get(column))
            except ConversionError as e:
                raise e.with_column(column) from e
            parts.append(escape_key_part(key_value_to_text(converted)))
        return ROW_KEY_SEPARATOR.join(parts)


class EntityMapper:
    """
    Convierte filas de origen en ConvertedEntity.

    Uso:
        mapper = EntityMapper(schema.primary_key_columns, type_mapping)
        entities = mapper.map_rows(page.rows)
    """

    def __init__(
        self,
        primary_key_columns: Sequence[str],
        type_mapping: Optional[TypeMapping] = None,
        *,
        partition_key: str = DEFAULT_PARTITION_KEY,
    ) -> None:
        self._mapping = type_mapping or TypeMapping()
        self._row_keys = RowKeyBuilder(primary_key_columns, self._mapping)
        self._partition_key = partition_key

    def map_row(self, row: SourceRow) -> ConvertedEntity:
        properties = {}
        for column, raw in row.items():
            try:
                properties[column] = convert_value(raw, self._mapping.get(column))
            except ConversionError as e:
                raise e.with_column(column) from e

        return ConvertedEntity(
            partition_key=self._partition_key,
            row_key=self._row_keys.build(row),
            properties=properties,
        )

    def map_rows(self, rows: Iterable[SourceRow]) -> List[ConvertedEntity]:
        return [self.map_row(row) for row in rows]
