"""
Entidades del flujo de transferencia: páginas de origen, entidades convertidas y batches.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from tablemigrator.domain.entities.type_mapping import DestinationType

# Toda la tabla va a una sola partición (simplificación deliberada).
DEFAULT_PARTITION_KEY = "default"

# Límite de operaciones por transacción atómica en Azure Table Storage.
MAX_BATCH_SIZE = 100
DEFAULT_PAGE_SIZE = 100

# Propiedades de sistema del servicio de tablas: no pueden venir como columnas.
RESERVED_PROPERTY_NAMES = frozenset({"partitionkey", "rowkey", "timestamp"})

SourceRow = Dict[str, Any]


class WriteMode(Enum):
    """
    Modo de escritura de cada entidad dentro del batch.

    - ADD: inserción estricta, falla si la entidad ya existe (reruns no idempotentes)
    - MERGE: insert-or-merge
    - REPLACE: insert-or-replace (default, reruns seguros)
    """

    ADD = "add"
    MERGE = "merge"
    REPLACE = "replace"


@dataclass(frozen=True)
class EntityProperty:
    """Valor con tipo EDM explícito (ej: un int que debe viajar como Edm.Int64)."""

    value: Any
    edm_type: DestinationType


@dataclass(frozen=True)
class ConvertedEntity:
    """Entidad lista para el destino."""

    partition_key: str
    row_key: str
    properties: Dict[str, Any]


@dataclass(frozen=True)
class Page:
    """
    Página de filas leídas del origen.

    Solo se usa para detectar la página terminal (len < page_size).
    """

    offset: int
    rows: List[SourceRow]
    page_size: int
    last_key: Optional[Tuple[Any, ...]] = None

    def __len__(self) -> int:
        return len(self.rows)

    @property
    def is_terminal(self) -> bool:
        return len(self.rows) < self.page_size


@dataclass
class Batch:
    """Grupo de entidades de una misma partición enviado como unidad atómica."""

    entities: List[ConvertedEntity] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.entities)

    @property
    def partition_key(self) -> Optional[str]:
        return self.entities[0].partition_key if self.entities else None

    @property
    def row_key_range(self) -> Tuple[Optional[str], Optional[str]]:
        if not self.entities:
            return None, None
        return self.entities[0].row_key, self.entities[-1].row_key
