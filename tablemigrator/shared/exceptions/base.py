"""
Excepción base para todas las excepciones personalizadas de la migración.
"""
from typing import Optional, Dict, Any


class MigrationException(Exception):
    """
    Excepción base del migrador.
    Todas las excepciones personalizadas deben heredar de esta clase.
    """

    def __init__(
        self,
        message: str,
        error_code: str = "MIGRATION_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Inicializa la excepción.

        Args:
            message: Mensaje de error descriptivo
            error_code: Código de error (motivo) para clasificar el fallo
            details: Detalles adicionales del error (tabla, columna, rango de filas...)
        """
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"
