"""
Servicios de aplicación.

Conversión de tipos, armado de entidades y subida en batches. No dependen
de SQLite ni de HTTP: reciben filas y un TableStore.
"""
from tablemigrator.application.services.batch_uploader import BatchUploader, UploadResult, split_into_batches
from tablemigrator.application.services.entity_mapper import EntityMapper, RowKeyBuilder
from tablemigrator.application.services.type_converter import convert_value

__all__ = [
    "BatchUploader",
    "EntityMapper",
    "RowKeyBuilder",
    "UploadResult",
    "convert_value",
    "split_into_batches",
]
