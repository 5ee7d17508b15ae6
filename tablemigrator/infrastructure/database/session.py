"""
Gestión de la conexión a la base SQLite de origen.
"""
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union
from urllib.parse import quote

from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError

from tablemigrator.shared.exceptions import SchemaError


def quote_identifier(name: str) -> str:
    """Cita un identificador SQL ("nombre" con comillas internas duplicadas)."""
    return '"' + name.replace('"', '""') + '"'


def build_source_url(path: Union[str, Path]) -> str:
    """
    Construye la URL SQLAlchemy de solo lectura para el archivo origen.

    Se usa el modo URI de SQLite (mode=ro) para garantizar que la migración
    nunca escriba en el origen.
    """
    resolved = Path(path).expanduser().resolve()
    return f"sqlite:///file:{quote(resolved.as_posix(), safe='/:')}?mode=ro&uri=true"


def create_source_engine(path: Union[str, Path]) -> Engine:
    return create_engine(build_source_url(path), future=True)


@contextmanager
def open_source(path: Union[str, Path]) -> Iterator[Connection]:
    """
    Abre la base origen y entrega una conexión.

    El engine se libera en toda salida, incluidas las de error.

    Raises:
        SchemaError: si el archivo no existe o SQLite no puede abrirlo
    """
    db_path = Path(path).expanduser()
    if not db_path.is_file():
        raise SchemaError(
            f"No existe el archivo de base de datos origen: {db_path}",
            error_code="SOURCE_UNAVAILABLE",
            details={"source": str(db_path)},
        )

    engine = create_source_engine(db_path)
    try:
        try:
            conn = engine.connect()
        except DBAPIError as e:
            raise SchemaError(
                f"No se pudo abrir la base origen {db_path}: {e.orig}",
                error_code="SOURCE_UNAVAILABLE",
                details={"source": str(db_path)},
            ) from e
        with conn:
            yield conn
    finally:
        engine.dispose()
