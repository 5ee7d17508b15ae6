"""
Agrupa entidades en batches atómicos acotados y los envía al destino.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

from loguru import logger

from tablemigrator.application.interfaces.table_store import TableStore
from tablemigrator.domain.entities import MAX_BATCH_SIZE, Batch, ConvertedEntity, WriteMode
from tablemigrator.shared.exceptions import MigrationException


def split_into_batches(entities: Sequence[ConvertedEntity], max_size: int = MAX_BATCH_SIZE) -> List[Batch]:
    """
    Divide entidades consecutivas en batches de a lo sumo max_size.

    Todas las entidades deben compartir PartitionKey (requisito de la transacción).
    """
    if not 1 <= max_size <= MAX_BATCH_SIZE:
        raise ValueError(f"max_size debe estar entre 1 y {MAX_BATCH_SIZE}, recibido {max_size}")

    partition_keys = {e.partition_key for e in entities}
    if len(partition_keys) > 1:
        raise ValueError(f"Un batch no puede mezclar particiones: {sorted(partition_keys)}")

    return [Batch(list(entities[i:i + max_size])) for i in range(0, len(entities), max_size)]


@dataclass(frozen=True)
class UploadResult:
    batches_committed: int
    entities_committed: int


class BatchUploader:
    """
    Envía entidades como transacciones atómicas consecutivas.

    Sin reintentos a este nivel: los transitorios ya se reintentan en el cliente HTTP.
    Un batch rechazado detiene la carga (las transacciones previas quedan aplicadas).
    """

    def __init__(
        self,
        store: TableStore,
        table_name: str,
        *,
        mode: WriteMode = WriteMode.REPLACE,
        max_batch_size: int = MAX_BATCH_SIZE,
    ) -> None:
        self._store = store
        self._table_name = table_name
        self._mode = mode
        self._max_batch_size = max_batch_size

    def upload(self, entities: Sequence[ConvertedEntity]) -> UploadResult:
        committed = 0
        committed_entities = 0
        for batch in split_into_batches(entities, self._max_batch_size):
            first_key, last_key = batch.row_key_range
            try:
                self._store.submit_transaction(self._table_name, batch.entities, self._mode)
            except MigrationException as e:
                e.details.update({
                    "table": self._table_name,
                    "batch_size": len(batch),
                    "row_key_range": [first_key, last_key],
                    "committed_before_failure": committed,
                    "entities_before_failure": committed_entities,
                })
                failed_index = getattr(e, "failed_index", None)
                if failed_index is not None and 0 <= failed_index < len(batch):
                    e.details["failed_row_key"] = batch.entities[failed_index].row_key
                raise
            committed += 1
            committed_entities += len(batch)
            logger.debug(
                f"Batch confirmado: {len(batch)} entidades, RowKey [{first_key} .. {last_key}]"
            )
        return UploadResult(batches_committed=committed, entities_committed=committed_entities)
