"""
Mapeo de tipos declarado por el usuario (columna -> tipo destino).

El conjunto de tipos destino es cerrado: son los tipos primitivos (EDM)
que acepta Azure Table Storage.
"""
from __future__ import annotations

from enum import Enum
from typing import Dict, Iterable, Iterator, Mapping, Optional


class DestinationType(Enum):
    """Tipos destino soportados por el servicio de tablas."""

    STRING = "String"
    BOOLEAN = "Boolean"
    BINARY = "Binary"
    DATETIME = "DateTime"
    DOUBLE = "Double"
    GUID = "Guid"
    INT32 = "Int32"
    INT64 = "Int64"

    @property
    def edm_name(self) -> str:
        """Nombre de tipo en el protocolo OData (ej: 'Edm.Int64')."""
        return f"Edm.{self.value}"

    @classmethod
    def parse(cls, token: str) -> "DestinationType":
        """
        Parsea un token de tipo sin distinguir mayúsculas.

        Raises:
            ValueError: si el token no es un tipo conocido
        """
        normalized = token.strip().lower()
        for member in cls:
            if member.value.lower() == normalized:
                return member
        valid = ", ".join(m.value for m in cls)
        raise ValueError(f"Tipo destino desconocido '{token}'. Válidos: {valid}")


class TypeMapping(Mapping[str, DestinationType]):
    """
    Mapeo inmutable columna -> DestinationType con claves case-insensitive.

    Las columnas ausentes del mapeo pasan sin conversión.
    """

    def __init__(self, entries: Optional[Mapping[str, DestinationType]] = None) -> None:
        self._entries: Dict[str, DestinationType] = {}
        self._names: Dict[str, str] = {}
        for column, dest_type in (entries or {}).items():
            key = column.lower()
            if key in self._entries:
                raise ValueError(f"Columna duplicada en el mapeo de tipos: '{column}'")
            self._entries[key] = dest_type
            self._names[key] = column

    @classmethod
    def from_tokens(cls, tokens: Iterable[str]) -> "TypeMapping":
        """
        Construye el mapeo desde tokens 'columna=Tipo'.

        Raises:
            ValueError: token mal formado, tipo desconocido o columna duplicada
        """
        parsed: Dict[str, DestinationType] = {}
        seen = set()
        for token in tokens:
            column, sep, type_token = token.partition("=")
            column = column.strip()
            if not sep or not column or not type_token.strip():
                raise ValueError(f"Entrada de mapeo inválida '{token}'. Formato esperado: columna=Tipo")
            if column.lower() in seen:
                raise ValueError(f"Columna duplicada en el mapeo de tipos: '{column}'")
            seen.add(column.lower())
            parsed[column] = DestinationType.parse(type_token)
        return cls(parsed)

    def __getitem__(self, column: str) -> DestinationType:
        return self._entries[column.lower()]

    def __iter__(self) -> Iterator[str]:
        return iter(self._names.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, column: object) -> bool:
        return isinstance(column, str) and column.lower() in self._entries

    def __repr__(self) -> str:
        inner = ", ".join(f"{name}={self._entries[key].value}" for key, name in self._names.items())
        return f"TypeMapping({inner})"
