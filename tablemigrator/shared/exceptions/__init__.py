from tablemigrator.shared.exceptions.base import MigrationException
from tablemigrator.shared.exceptions.migration import (
    ConnectivityError,
    ConversionError,
    MigrationCancelledError,
    SchemaError,
    TableNotFoundError,
    TransactionError,
)

__all__ = [
    "MigrationException",
    "SchemaError",
    "TableNotFoundError",
    "ConnectivityError",
    "ConversionError",
    "TransactionError",
    "MigrationCancelledError",
]
