"""
Configuracion de logging (loguru).

Se llama una sola vez desde el CLI. El core nunca toca los sinks.
"""
import sys
from typing import Optional

from loguru import logger

CONSOLE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {message}"


def resolve_level(verbose: bool, default_level: str = "INFO") -> str:
    """-v fuerza DEBUG; si no, se usa el nivel configurado."""
    return "DEBUG" if verbose else default_level.upper()


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Reemplaza el sink por defecto de loguru.

    Args:
        level: nivel minimo para consola (DEBUG, INFO, WARNING, ERROR)
        log_file: archivo opcional con rotacion
    """
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=CONSOLE_FORMAT)

    if log_file:
        logger.add(
            log_file,
            rotation="10 MB",
            retention="10 days",
            level="DEBUG",
            format=CONSOLE_FORMAT,
        )
