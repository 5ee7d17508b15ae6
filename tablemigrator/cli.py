"""
CLI: SQLite -> Azure Table Storage (migración de una tabla).

Ejecución:
  sqlite-to-azure-tables upload --source app.db --sourceTable Users \\
      --destConnString "UseDevelopmentStorage=true" --destTableName Users
  python -m tablemigrator -v upload ... --sourceTypeMap id=Int64 created=DateTime

Variables de entorno opcionales (prefijo TABLEMIGRATOR_, ver core/config.py):
  - TABLEMIGRATOR_PAGE_SIZE, TABLEMIGRATOR_WRITE_MODE, TABLEMIGRATOR_LOG_FILE, ...

Códigos de salida:
  0 completada, 1 fallida, 2 error de argumentos, 130 cancelada.

La cancelación (Ctrl+C / SIGTERM) detiene la corrida antes de la siguiente operación
de I/O. Los batches ya confirmados quedan en la tabla destino (no hay rollback).
"""

from __future__ import annotations

import argparse
import signal
import threading
from pathlib import Path
from typing import List, Optional, Sequence

from dotenv import load_dotenv
from loguru import logger
from pydantic import ValidationError

from tablemigrator import __version__
from tablemigrator.application.use_cases.migration_pipeline import (
    MigrationOptions,
    MigrationPipeline,
)
from tablemigrator.core.config import Settings, get_settings
from tablemigrator.core.logging_config import configure_logging, resolve_level
from tablemigrator.domain.entities import TypeMapping, WriteMode
from tablemigrator.infrastructure.database.paginator import PaginationStrategy
from tablemigrator.infrastructure.external.azure_tables import (
    AzureTableServiceClient,
    parse_connection_string,
)
from tablemigrator.shared.exceptions import MigrationCancelledError, MigrationException

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_CANCELLED = 130


def _positive_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"se esperaba un entero: {raw!r}")
    if value < 1:
        raise argparse.ArgumentTypeError(f"debe ser >= 1: {value}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sqlite-to-azure-tables",
        description="Migra una tabla SQLite a una tabla de Azure Table Storage.",
        epilog=(
            "Si la corrida falla o se cancela, los batches ya confirmados quedan en la "
            "tabla destino (no hay rollback)."
        ),
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log detallado (DEBUG).")

    subparsers = parser.add_subparsers(dest="command", required=True)
    upload = subparsers.add_parser("upload", help="Sube una tabla SQLite a Azure Table Storage.")
    # -v también después del subcomando; SUPPRESS evita pisar el valor del parser principal
    upload.add_argument("-v", "--verbose", action="store_true", default=argparse.SUPPRESS,
                        help="Log detallado (DEBUG).")
    upload.add_argument("--source", required=True, help="Ruta al archivo SQLite origen.")
    upload.add_argument("--sourceTable", required=True, help="Tabla origen.")
    upload.add_argument(
        "--sourceTypeMap",
        nargs="*",
        default=[],
        metavar="COL=TYPE",
        help="Tipos destino por columna: String, Boolean, Binary, DateTime, Double, Guid, Int32, Int64.",
    )
    upload.add_argument("--destConnString", required=True, help="Connection string del servicio de tablas.")
    upload.add_argument("--destTableName", required=True, help="Tabla destino (se crea si no existe).")
    upload.add_argument(
        "--writeMode",
        choices=[m.value for m in WriteMode],
        default=None,
        help="add (estricto, falla si la entidad existe), merge o replace (por defecto).",
    )
    upload.add_argument(
        "--pagination",
        choices=[s.value for s in PaginationStrategy],
        default=None,
        help="keyset (por defecto) u offset.",
    )
    upload.add_argument("--pageSize", type=_positive_int, default=None, help="Filas por página de lectura.")
    return parser


def build_options(args: argparse.Namespace, type_mapping: TypeMapping, settings: Settings) -> MigrationOptions:
    """Combina flags y configuración. Los flags tienen prioridad."""
    return MigrationOptions(
        source_path=Path(args.source),
        source_table=args.sourceTable,
        dest_table=args.destTableName,
        type_mapping=type_mapping,
        page_size=args.pageSize or settings.PAGE_SIZE,
        max_batch_size=settings.MAX_BATCH_SIZE,
        pagination=PaginationStrategy(args.pagination or settings.PAGINATION_STRATEGY),
        write_mode=WriteMode(args.writeMode or settings.WRITE_MODE),
        partition_key=settings.PARTITION_KEY,
        verbose=args.verbose,
    )


def _install_signal_handlers(cancel_event: threading.Event) -> List[tuple]:
    def _handler(signum, _frame) -> None:
        logger.warning(f"Señal {signal.Signals(signum).name} recibida: cancelando tras la operación en curso...")
        cancel_event.set()

    previous = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        previous.append((sig, signal.signal(sig, _handler)))
    return previous


def _restore_signal_handlers(previous: List[tuple]) -> None:
    for sig, handler in previous:
        signal.signal(sig, handler)


def main(argv: Optional[Sequence[str]] = None) -> int:
    load_dotenv(Path.cwd() / ".env", override=False)

    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        type_mapping = TypeMapping.from_tokens(args.sourceTypeMap)
    except ValueError as e:
        parser.error(f"--sourceTypeMap inválido: {e}")

    try:
        settings = get_settings()
    except ValidationError as e:
        parser.error(f"Configuración inválida (variables TABLEMIGRATOR_*): {e}")

    configure_logging(resolve_level(args.verbose, settings.LOG_LEVEL), settings.LOG_FILE or None)
    options = build_options(args, type_mapping, settings)

    try:
        connection = parse_connection_string(args.destConnString)
    except MigrationException as e:
        logger.error(str(e))
        return EXIT_FAILED

    cancel_event = threading.Event()
    previous_handlers = _install_signal_handlers(cancel_event)
    try:
        with AzureTableServiceClient(
            connection,
            timeout_s=settings.HTTP_TIMEOUT_S,
            max_retries=settings.MAX_RETRIES,
            min_backoff_s=settings.MIN_BACKOFF_S,
            max_backoff_s=settings.MAX_BACKOFF_S,
            cancel_event=cancel_event,
        ) as store:
            result = MigrationPipeline(store, options, cancel_event=cancel_event).run()
    except MigrationCancelledError:
        return EXIT_CANCELLED
    except MigrationException:
        # El pipeline ya logueó el error con su contexto
        return EXIT_FAILED
    finally:
        _restore_signal_handlers(previous_handlers)

    logger.info(
        f"Resultado: estado={result.state.value}, filas={result.rows_uploaded}, "
        f"batches={result.batches_committed}, duración={result.duration_s:.1f}s"
    )
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
