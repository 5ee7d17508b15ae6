"""
Configuración de fixtures para pytest.

- sqlite_factory: crea archivos SQLite reales en tmp_path (SQLAlchemy).
- fake_store: servicio de tablas en memoria con semántica transaccional.
"""
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import pytest
from loguru import logger
from sqlalchemy import create_engine, text

from tablemigrator.domain.entities import MAX_BATCH_SIZE, ConvertedEntity, WriteMode
from tablemigrator.shared.exceptions import ConnectivityError, TransactionError


class InMemoryTableStore:
    """
    Fake del servicio de tablas.

    - Cada submit_transaction es atómico: o se aplica todo o nada.
    - ADD falla (409 EntityAlreadyExists) si la entidad ya existe.
    - unreachable=True simula un endpoint inalcanzable.
    - fail_on_submission=N hace fallar la N-ésima transacción (1-based).
    - fail_with: excepción a lanzar en ese fallo (por defecto, TransactionError 500).
    """

    def __init__(
        self,
        *,
        unreachable: bool = False,
        fail_on_submission: Optional[int] = None,
        fail_with: Optional[Exception] = None,
    ) -> None:
        self.unreachable = unreachable
        self.fail_on_submission = fail_on_submission
        self.fail_with = fail_with
        self.tables: Dict[str, Dict[Tuple[str, str], dict]] = {}
        self.submissions: List[Tuple[str, int, WriteMode]] = []
        self.calls: List[str] = []

    def get_service_properties(self) -> dict:
        self.calls.append("get_service_properties")
        if self.unreachable:
            raise ConnectivityError("Destino inalcanzable (fake)", details={"endpoint": "fake"})
        return {"status_code": 200}

    def create_table_if_not_exists(self, table_name: str) -> bool:
        self.calls.append("create_table_if_not_exists")
        if table_name in self.tables:
            return False
        self.tables[table_name] = {}
        return True

    def has_any_entity(self, table_name: str) -> bool:
        self.calls.append("has_any_entity")
        return bool(self.tables.get(table_name))

    def submit_transaction(self, table_name: str, entities: Sequence[ConvertedEntity], mode: WriteMode) -> None:
        self.calls.append("submit_transaction")
        if len(entities) > MAX_BATCH_SIZE:
            raise ValueError("batch demasiado grande")
        attempt = len(self.submissions) + 1
        if self.fail_on_submission == attempt:
            self.fail_on_submission = None
            if self.fail_with is not None:
                raise self.fail_with
            raise TransactionError("Fallo simulado", status_code=500, store_error_code="InternalError", transient=True)

        table = self.tables[table_name]
        staged = dict(table)
        for index, entity in enumerate(entities):
            key = (entity.partition_key, entity.row_key)
            if mode is WriteMode.ADD and key in staged:
                raise TransactionError(
                    f"{index}:The specified entity already exists.",
                    status_code=409,
                    store_error_code="EntityAlreadyExists",
                    failed_index=index,
                )
            if mode is WriteMode.MERGE and key in staged:
                staged[key] = {**staged[key], **entity.properties}
            else:
                staged[key] = dict(entity.properties)
        table.clear()
        table.update(staged)
        self.submissions.append((table_name, len(entities), mode))

    def seed(self, table_name: str, row_keys: Iterable[str], partition_key: str = "default") -> None:
        table = self.tables.setdefault(table_name, {})
        for row_key in row_keys:
            table[(partition_key, row_key)] = {}

    @property
    def batch_sizes(self) -> List[int]:
        return [size for _, size, _ in self.submissions]


@pytest.fixture
def fake_store() -> InMemoryTableStore:
    return InMemoryTableStore()


@pytest.fixture
def store_factory():
    return InMemoryTableStore


@pytest.fixture
def sqlite_factory(tmp_path: Path):
    """
    Crea una base SQLite real.

    Uso:
        path = sqlite_factory("CREATE TABLE t (id INTEGER PRIMARY KEY, name TEXT)",
                              "INSERT INTO t (id, name) VALUES (:id, :name)",
                              [{"id": 1, "name": "a"}])
    """
    counter = {"n": 0}

    def _create(ddl: str, insert_sql: Optional[str] = None, rows: Optional[List[dict]] = None) -> Path:
        counter["n"] += 1
        path = tmp_path / f"source_{counter['n']}.db"
        engine = create_engine(f"sqlite:///{path}")
        try:
            with engine.begin() as conn:
                for statement in ddl.split(";"):
                    if statement.strip():
                        conn.execute(text(statement))
                if insert_sql and rows:
                    conn.execute(text(insert_sql), rows)
        finally:
            engine.dispose()
        return path

    return _create


@pytest.fixture
def numbered_table(sqlite_factory):
    """Tabla `items(id INTEGER PK, name TEXT)` con ids 1..n."""

    def _create(n: int) -> Path:
        rows = [{"id": i, "name": f"item-{i}"} for i in range(1, n + 1)]
        return sqlite_factory(
            "CREATE TABLE items (id INTEGER PRIMARY KEY, name TEXT NOT NULL)",
            "INSERT INTO items (id, name) VALUES (:id, :name)",
            rows,
        )

    return _create


@pytest.fixture
def captured_logs():
    """Captura mensajes de loguru (nivel DEBUG+) en una lista."""
    messages: List[str] = []
    handler_id = logger.add(lambda msg: messages.append(msg.record["level"].name + " " + msg.record["message"]),
                            level="DEBUG")
    yield messages
    logger.remove(handler_id)
