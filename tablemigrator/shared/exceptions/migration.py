"""
Excepciones relacionadas con la migración SQLite -> Azure Tables.

Taxonomía:
- SchemaError: tabla/columna inexistente o esquema no migrable. Fatal antes de escribir.
- ConnectivityError: destino inalcanzable o creación de tabla denegada. Fatal antes de escribir.
- ConversionError: conversión de tipo no soportada. Fatal para la corrida completa.
- TransactionError: batch rechazado por el destino. Fatal para la corrida completa.
- MigrationCancelledError: cancelación externa (Ctrl+C / SIGTERM).
"""
from typing import Any, Optional

from tablemigrator.shared.exceptions.base import MigrationException


class SchemaError(MigrationException):
    """Excepción de esquema de origen (tabla, columnas, clave primaria)."""

    def __init__(self, message: str, error_code: str = "SCHEMA_ERROR", details=None):
        super().__init__(message=message, error_code=error_code, details=details)


class TableNotFoundError(SchemaError):
    """Excepción cuando la tabla origen no existe."""

    def __init__(self, table_name: str):
        super().__init__(
            message=f"No existe la tabla origen '{table_name}'",
            error_code="TABLE_NOT_FOUND",
            details={"table": table_name}
        )


class ConnectivityError(MigrationException):
    """Excepción cuando el servicio de tablas destino no es utilizable."""

    def __init__(self, message: str, error_code: str = "DESTINATION_UNREACHABLE", details=None):
        super().__init__(message=message, error_code=error_code, details=details)


class ConversionError(MigrationException):
    """Excepción cuando un valor no puede convertirse al tipo destino declarado."""

    def __init__(
        self,
        message: str,
        error_code: str = "NOT_CONVERTIBLE",
        *,
        destination_type: Optional[str] = None,
        value: Any = None,
        column: Optional[str] = None,
    ):
        self.destination_type = destination_type
        self.column = column
        details = {
            "destination_type": destination_type,
            "source_type": type(value).__name__,
        }
        if column is not None:
            details["column"] = column
        super().__init__(message=message, error_code=error_code, details=details)

    def with_column(self, column: str) -> "ConversionError":
        """Retorna una copia del error con el nombre de columna como contexto."""
        error = ConversionError(
            f"Columna '{column}': {self.message}",
            self.error_code,
            destination_type=self.destination_type,
            column=column,
        )
        error.details = {**self.details, "column": column}
        return error


class TransactionError(MigrationException):
    """Excepción cuando el destino rechaza un batch (o una request) completo."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        store_error_code: Optional[str] = None,
        failed_index: Optional[int] = None,
        transient: bool = False,
        details: Optional[dict] = None,
    ):
        self.status_code = status_code
        self.store_error_code = store_error_code
        self.failed_index = failed_index
        self.transient = transient
        merged = {
            "status_code": status_code,
            "store_error_code": store_error_code,
            "failed_index": failed_index,
            "transient": transient,
        }
        merged.update(details or {})
        super().__init__(message=message, error_code="BATCH_REJECTED", details=merged)


class MigrationCancelledError(MigrationException):
    """Excepción cuando la corrida se cancela desde afuera."""

    def __init__(self, message: str = "Migración cancelada por el operador"):
        super().__init__(message=message, error_code="CANCELLED")
