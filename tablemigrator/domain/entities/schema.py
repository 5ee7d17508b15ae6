"""
Entidades de esquema de la tabla origen.

Se producen una sola vez por corrida (SchemaIntrospector) y son inmutables.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


@dataclass(frozen=True)
class ColumnDefinition:
    """
    Metadata de una columna, tal como la reporta SQLite.

    - declared_type: tipo textual declarado (solo informativo; el TypeMapping manda)
    - pk_position: posición dentro de la clave primaria (1..n), 0 si no es parte de ella
    """

    table_name: str
    column_name: str
    declared_type: str
    nullable: bool
    default_value: Optional[str]
    pk_position: int = 0

    @property
    def is_primary_key(self) -> bool:
        return self.pk_position > 0


@dataclass(frozen=True)
class TableSchema:
    """Esquema completo de una tabla, con lookup de columnas case-insensitive."""

    table_name: str
    columns: Tuple[ColumnDefinition, ...]
    _by_name: Dict[str, ColumnDefinition] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "_by_name",
            {c.column_name.lower(): c for c in self.columns},
        )

    @property
    def column_names(self) -> List[str]:
        return [c.column_name for c in self.columns]

    @property
    def primary_key_columns(self) -> Tuple[str, ...]:
        """Columnas de la PK ordenadas por su posición en la clave."""
        pk = sorted((c for c in self.columns if c.is_primary_key), key=lambda c: c.pk_position)
        return tuple(c.column_name for c in pk)

    def get_column(self, name: str) -> Optional[ColumnDefinition]:
        return self._by_name.get(name.lower())

    def has_column(self, name: str) -> bool:
        return name.lower() in self._by_name
