"""
Configuracion central del migrador.
Gestiona variables de entorno (prefijo TABLEMIGRATOR_) y valores por defecto.
Los flags del CLI tienen prioridad sobre estos valores.
"""
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings

from tablemigrator.domain.entities import DEFAULT_PAGE_SIZE, DEFAULT_PARTITION_KEY, MAX_BATCH_SIZE


class Settings(BaseSettings):
    """
    Clase de configuracion del migrador.
    Lee variables de entorno y proporciona valores por defecto.

    Ejemplo (.env):
        TABLEMIGRATOR_PAGE_SIZE=500
        TABLEMIGRATOR_WRITE_MODE=add
        TABLEMIGRATOR_LOG_FILE=logs/migration.log
    """

    # Transferencia
    PAGE_SIZE: int = Field(default=DEFAULT_PAGE_SIZE, ge=1)
    MAX_BATCH_SIZE: int = Field(default=MAX_BATCH_SIZE, ge=1, le=MAX_BATCH_SIZE)
    PAGINATION_STRATEGY: Literal["keyset", "offset"] = Field(default="keyset")
    # replace = insert-or-replace (reruns seguros); add = estricto
    WRITE_MODE: Literal["add", "merge", "replace"] = Field(default="replace")
    PARTITION_KEY: str = Field(default=DEFAULT_PARTITION_KEY, min_length=1)

    # HTTP hacia el servicio de tablas
    HTTP_TIMEOUT_S: float = Field(default=30.0, gt=0)
    MAX_RETRIES: int = Field(default=6, ge=0)
    MIN_BACKOFF_S: float = Field(default=0.8, ge=0)
    MAX_BACKOFF_S: float = Field(default=20.0, ge=0)

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FILE: str = Field(default="")

    class Config:
        """Configuracion de Pydantic."""
        env_prefix = "TABLEMIGRATOR_"
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignorar campos extra del .env


@lru_cache
def get_settings() -> Settings:
    """Instancia unica de configuracion (se construye al primer uso)."""
    return Settings()
