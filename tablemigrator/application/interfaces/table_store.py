"""
Interfaz del servicio de tablas destino.

Este contrato existe para:
- Mantener Clean Architecture: los casos de uso no dependen de HTTP directamente.
- Facilitar tests unitarios sin un endpoint real (fake en memoria).
"""

from __future__ import annotations

from typing import Protocol, Sequence

from tablemigrator.domain.entities import ConvertedEntity, WriteMode


class TableStore(Protocol):
    """
    Operaciones mínimas que necesita el pipeline sobre el destino.

    Implementaciones:
    - AzureTableServiceClient (REST con requests).
    - Fake en memoria para tests.
    """

    def get_service_properties(self) -> dict:
        """
        Verifica que el servicio responde.

        Debe lanzar ConnectivityError si el destino no es alcanzable.
        """

    def create_table_if_not_exists(self, table_name: str) -> bool:
        """
        Crea la tabla si no existe. Retorna True si la creó.

        Debe lanzar ConnectivityError si la creación es rechazada.
        """

    def has_any_entity(self, table_name: str) -> bool:
        """Indica si la tabla ya contiene al menos una entidad."""

    def submit_transaction(
        self,
        table_name: str,
        entities: Sequence[ConvertedEntity],
        mode: WriteMode,
    ) -> None:
        """
        Envía las entidades como una única transacción atómica.

        Reglas:
        - Todas las entidades comparten PartitionKey.
        - Si alguna operación falla, ninguna se aplica y se lanza TransactionError.
        """
