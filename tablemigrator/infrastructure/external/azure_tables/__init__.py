"""
Cliente mínimo de Azure Table Storage (REST, sin SDKs externos).

Cubre solo lo que necesita la migración:
- chequeo de alcance del servicio
- creación idempotente de tabla
- consulta "¿tiene alguna entidad?"
- transacciones atómicas ($batch) de hasta 100 operaciones

Módulos:
- connection_string: parseo de connection strings (cuenta, clave, SAS, Azurite)
- types: serialización pura de entidades a JSON OData con anotaciones EDM
- batch: armado y parseo del cuerpo multipart de $batch
- table_client: cliente HTTP (requests) con firma SharedKeyLite y backoff
"""

from tablemigrator.infrastructure.external.azure_tables.connection_string import (
    TableConnectionSettings,
    parse_connection_string,
)
from tablemigrator.infrastructure.external.azure_tables.table_client import (
    AzureTableServiceClient,
    TableServiceApiError,
)

__all__ = [
    "AzureTableServiceClient",
    "TableConnectionSettings",
    "TableServiceApiError",
    "parse_connection_string",
]
