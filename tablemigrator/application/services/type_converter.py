"""
Conversión de valores crudos de SQLite a tipos del servicio de tablas.

Funciones puras, sin I/O. El despacho es un mapeo cerrado DestinationType -> función;
cualquier combinación no soportada falla explícitamente con ConversionError,
nunca con un valor por defecto.

Reglas:
- NULL queda como None para cualquier tipo (no se inventa 0/false).
- String y Binary pasan sin cambios.
- Guid: bytes (primeros 16, layout de Guid(byte[]) de .NET) o texto GUID.
- DateTime: entero = epoch Unix en segundos, o texto fecha/hora; siempre UTC.
- Boolean/Double/Int32/Int64: coerción numérica/booleana estándar.
"""
from __future__ import annotations

import math
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from tablemigrator.domain.entities import DestinationType, EntityProperty
from tablemigrator.shared.exceptions import ConversionError

INT32_MIN, INT32_MAX = -(2**31), 2**31 - 1
INT64_MIN, INT64_MAX = -(2**63), 2**63 - 1

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Formatos aceptados además de ISO 8601 (cultura invariante).
_INVARIANT_DATE_FORMATS = (
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y",
)


def ensure_utc(dt: datetime) -> datetime:
    """
    Normaliza datetime a UTC (aware).

    Un datetime naive se interpreta como UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def unix_timestamp_to_datetime(seconds: int) -> datetime:
    """Convierte segundos desde epoch Unix a datetime UTC."""
    return _EPOCH + timedelta(seconds=seconds)


def _is_bytes(value: Any) -> bool:
    return isinstance(value, (bytes, bytearray, memoryview))


def _fail(dest: DestinationType, value: Any, code: str, reason: str) -> ConversionError:
    return ConversionError(
        f"No se puede convertir {type(value).__name__} a {dest.value}: {reason}",
        code,
        destination_type=dest.value,
        value=value,
    )


def _to_guid(value: Any) -> EntityProperty:
    dest = DestinationType.GUID
    if isinstance(value, uuid.UUID):
        return EntityProperty(value, dest)
    if _is_bytes(value):
        raw = bytes(value)
        if len(raw) < 16:
            raise _fail(dest, value, "UNSUPPORTED_GUID_SOURCE", f"se requieren 16 bytes, hay {len(raw)}")
        return EntityProperty(uuid.UUID(bytes_le=raw[:16]), dest)
    if isinstance(value, str):
        try:
            return EntityProperty(uuid.UUID(value.strip()), dest)
        except ValueError:
            raise _fail(dest, value, "UNSUPPORTED_GUID_SOURCE", f"texto GUID inválido '{value}'") from None
    raise _fail(dest, value, "UNSUPPORTED_GUID_SOURCE", "origen no soportado")


def parse_datetime_text(text: str) -> datetime:
    """
    Parsea texto de fecha/hora (ISO 8601 o formatos invariantes) a datetime UTC.

    Raises:
        ValueError: si el texto no es una fecha reconocible
    """
    candidate = text.strip()
    if candidate.endswith(("Z", "z")):
        candidate = candidate[:-1] + "+00:00"
    try:
        return ensure_utc(datetime.fromisoformat(candidate))
    except ValueError:
        pass
    for fmt in _INVARIANT_DATE_FORMATS:
        try:
            return ensure_utc(datetime.strptime(candidate, fmt))
        except ValueError:
            continue
    raise ValueError(f"Fecha no reconocida: '{text}'")


def _to_datetime(value: Any) -> EntityProperty:
    dest = DestinationType.DATETIME
    if isinstance(value, datetime):
        return EntityProperty(ensure_utc(value), dest)
    # bool es subclase de int, pero no es un timestamp
    if isinstance(value, int) and not isinstance(value, bool):
        try:
            return EntityProperty(unix_timestamp_to_datetime(value), dest)
        except OverflowError:
            raise _fail(dest, value, "UNSUPPORTED_DATE_SOURCE", f"timestamp fuera de rango {value}") from None
    if isinstance(value, str):
        try:
            return EntityProperty(parse_datetime_text(value), dest)
        except ValueError as e:
            raise _fail(dest, value, "UNSUPPORTED_DATE_SOURCE", str(e)) from None
    raise _fail(dest, value, "UNSUPPORTED_DATE_SOURCE", "origen no soportado")


def _to_boolean(value: Any) -> EntityProperty:
    dest = DestinationType.BOOLEAN
    if isinstance(value, bool):
        return EntityProperty(value, dest)
    if isinstance(value, (int, float)):
        return EntityProperty(value != 0, dest)
    if isinstance(value, str):
        text = value.strip().lower()
        if text == "true":
            return EntityProperty(True, dest)
        if text == "false":
            return EntityProperty(False, dest)
        try:
            return EntityProperty(float(text) != 0, dest)
        except ValueError:
            raise _fail(dest, value, "NOT_CONVERTIBLE", f"texto '{value}' no es booleano") from None
    raise _fail(dest, value, "NOT_CONVERTIBLE", "origen no soportado")


def _to_double(value: Any) -> EntityProperty:
    dest = DestinationType.DOUBLE
    if isinstance(value, (bool, int, float)):
        try:
            return EntityProperty(float(value), dest)
        except OverflowError:
            raise _fail(dest, value, "NOT_CONVERTIBLE", "valor fuera de rango") from None
    if isinstance(value, str):
        # float() acepta "1_000"; el formato numérico estándar no
        if "_" in value:
            raise _fail(dest, value, "NOT_CONVERTIBLE", f"texto '{value}' no es numérico")
        try:
            return EntityProperty(float(value.strip()), dest)
        except ValueError:
            raise _fail(dest, value, "NOT_CONVERTIBLE", f"texto '{value}' no es numérico") from None
    raise _fail(dest, value, "NOT_CONVERTIBLE", "origen no soportado")


def _coerce_integer(value: Any, dest: DestinationType) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            raise _fail(dest, value, "NOT_CONVERTIBLE", f"{value} no es un entero exacto")
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        # int() acepta "1_000"; el formato numérico estándar no
        if "_" in text:
            raise _fail(dest, value, "NOT_CONVERTIBLE", f"texto '{value}' no es entero")
        try:
            return int(text)
        except ValueError:
            raise _fail(dest, value, "NOT_CONVERTIBLE", f"texto '{value}' no es entero") from None
    raise _fail(dest, value, "NOT_CONVERTIBLE", "origen no soportado")


def _to_int32(value: Any) -> EntityProperty:
    dest = DestinationType.INT32
    number = _coerce_integer(value, dest)
    if not INT32_MIN <= number <= INT32_MAX:
        raise _fail(dest, value, "NOT_CONVERTIBLE", f"{number} fuera de rango Int32")
    return EntityProperty(number, dest)


def _to_int64(value: Any) -> EntityProperty:
    dest = DestinationType.INT64
    number = _coerce_integer(value, dest)
    if not INT64_MIN <= number <= INT64_MAX:
        raise _fail(dest, value, "NOT_CONVERTIBLE", f"{number} fuera de rango Int64")
    return EntityProperty(number, dest)


def _passthrough(value: Any) -> Any:
    return value


_CONVERTERS: Dict[DestinationType, Callable[[Any], Any]] = {
    DestinationType.STRING: _passthrough,
    DestinationType.BINARY: _passthrough,
    DestinationType.GUID: _to_guid,
    DestinationType.DATETIME: _to_datetime,
    DestinationType.BOOLEAN: _to_boolean,
    DestinationType.DOUBLE: _to_double,
    DestinationType.INT32: _to_int32,
    DestinationType.INT64: _to_int64,
}


def convert_value(value: Any, destination_type: Optional[DestinationType]) -> Any:
    """
    Convierte un valor crudo al tipo destino declarado.

    Args:
        value: valor tal como lo devuelve SQLite (int, float, str, bytes o None)
        destination_type: tipo declarado; None = columna sin mapeo (pasa sin cambios)

    Returns:
        El valor original (sin mapeo, String, Binary, NULL) o un EntityProperty tipado

    Raises:
        ConversionError: si la combinación (valor, tipo) no está soportada
    """
    if destination_type is None or value is None:
        return value
    converter = _CONVERTERS.get(destination_type)
    if converter is None:
        raise ConversionError(
            f"Tipo destino no soportado: {destination_type!r}",
            "UNSUPPORTED_DESTINATION_TYPE",
            destination_type=str(destination_type),
            value=value,
        )
    return converter(value)
