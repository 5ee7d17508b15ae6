"""
Serialización pura de entidades a JSON OData (con anotaciones de tipo EDM).

Se mantiene libre de I/O para poder testearla fácilmente.
"""

from __future__ import annotations

import base64
import math
import uuid
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from tablemigrator.application.services.type_converter import ensure_utc
from tablemigrator.domain.entities import ConvertedEntity, DestinationType, EntityProperty
from tablemigrator.shared.exceptions import ConversionError

INT32_MIN, INT32_MAX = -(2**31), 2**31 - 1
INT64_MIN, INT64_MAX = -(2**63), 2**63 - 1

Encoded = Tuple[Any, Optional[str]]


def format_edm_datetime(dt: datetime) -> str:
    """Serializa datetime como ISO 8601 UTC con 'Z' (formato Edm.DateTime)."""
    return ensure_utc(dt).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _encode_double(value: Any) -> Encoded:
    number = float(value)
    if math.isnan(number):
        return "NaN", DestinationType.DOUBLE.edm_name
    if math.isinf(number):
        return ("Infinity" if number > 0 else "-Infinity"), DestinationType.DOUBLE.edm_name
    return number, DestinationType.DOUBLE.edm_name


def _encode_int(value: int, name: str) -> Encoded:
    if INT32_MIN <= value <= INT32_MAX:
        return value, None
    if INT64_MIN <= value <= INT64_MAX:
        return str(value), DestinationType.INT64.edm_name
    raise ConversionError(
        f"Propiedad '{name}': entero {value} fuera de rango Int64",
        "NOT_CONVERTIBLE",
        destination_type=DestinationType.INT64.value,
        value=value,
        column=name,
    )


def _encode_typed(prop: EntityProperty, name: str) -> Encoded:
    value, edm = prop.value, prop.edm_type
    if edm is DestinationType.STRING:
        return str(value), None
    if edm is DestinationType.BOOLEAN:
        return bool(value), None
    if edm is DestinationType.BINARY:
        return base64.b64encode(bytes(value)).decode("ascii"), edm.edm_name
    if edm is DestinationType.DATETIME:
        return format_edm_datetime(value), edm.edm_name
    if edm is DestinationType.DOUBLE:
        return _encode_double(value)
    if edm is DestinationType.GUID:
        return str(value), edm.edm_name
    if edm is DestinationType.INT32:
        # Int32 es el tipo implícito de un número JSON entero
        return int(value), None
    if edm is DestinationType.INT64:
        return str(int(value)), edm.edm_name
    raise ConversionError(
        f"Propiedad '{name}': tipo EDM no soportado {edm!r}",
        "UNSUPPORTED_DESTINATION_TYPE",
        value=value,
        column=name,
    )


def encode_property(name: str, value: Any) -> Encoded:
    """
    Retorna (valor JSON, anotación EDM o None) para una propiedad.

    Raises:
        ConversionError: si el tipo Python no tiene representación en el servicio
    """
    if isinstance(value, EntityProperty):
        return _encode_typed(value, name)
    # bool antes que int (bool es subclase de int)
    if isinstance(value, bool):
        return value, None
    if isinstance(value, int):
        return _encode_int(value, name)
    if isinstance(value, float):
        return _encode_double(value)
    if isinstance(value, str):
        return value, None
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii"), DestinationType.BINARY.edm_name
    if isinstance(value, datetime):
        return format_edm_datetime(value), DestinationType.DATETIME.edm_name
    if isinstance(value, uuid.UUID):
        return str(value), DestinationType.GUID.edm_name
    raise ConversionError(
        f"Propiedad '{name}': tipo Python sin representación en el servicio de tablas",
        "UNSUPPORTED_DESTINATION_TYPE",
        value=value,
        column=name,
    )


def serialize_entity(entity: ConvertedEntity) -> Dict[str, Any]:
    """
    Convierte una entidad a payload JSON.

    Las propiedades None se omiten: el servicio no almacena nulos.
    """
    body: Dict[str, Any] = {
        "PartitionKey": entity.partition_key,
        "RowKey": entity.row_key,
    }
    for name, value in entity.properties.items():
        if value is None or (isinstance(value, EntityProperty) and value.value is None):
            continue
        encoded, edm = encode_property(name, value)
        body[name] = encoded
        if edm:
            body[f"{name}@odata.type"] = edm
    return body
