from tablemigrator.domain.entities.entity import (
    DEFAULT_PAGE_SIZE,
    DEFAULT_PARTITION_KEY,
    MAX_BATCH_SIZE,
    RESERVED_PROPERTY_NAMES,
    Batch,
    ConvertedEntity,
    EntityProperty,
    Page,
    SourceRow,
    WriteMode,
)
from tablemigrator.domain.entities.schema import ColumnDefinition, TableSchema
from tablemigrator.domain.entities.type_mapping import DestinationType, TypeMapping

__all__ = [
    "DEFAULT_PAGE_SIZE",
    "DEFAULT_PARTITION_KEY",
    "MAX_BATCH_SIZE",
    "RESERVED_PROPERTY_NAMES",
    "Batch",
    "ColumnDefinition",
    "ConvertedEntity",
    "DestinationType",
    "EntityProperty",
    "Page",
    "SourceRow",
    "TableSchema",
    "TypeMapping",
    "WriteMode",
]
