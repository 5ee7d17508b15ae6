"""
Tests del caso de uso MigrationPipeline (SQLite real + servicio de tablas en memoria).
"""
import threading

import pytest

from tablemigrator.application.use_cases.migration_pipeline import (
    MigrationOptions,
    MigrationPipeline,
    PipelineState,
)
from tablemigrator.domain.entities import EntityProperty, TypeMapping, WriteMode
from tablemigrator.infrastructure.database.paginator import PaginationStrategy
from tablemigrator.shared.exceptions import (
    ConnectivityError,
    ConversionError,
    MigrationCancelledError,
    MigrationException,
    SchemaError,
    TableNotFoundError,
    TransactionError,
)

FULL_PATH = [
    PipelineState.INIT,
    PipelineState.SCHEMA_VALIDATED,
    PipelineState.DESTINATION_VALIDATED,
    PipelineState.TRANSFERRING,
    PipelineState.COMPLETED,
]


def _options(path, **overrides):
    values = {"source_path": path, "source_table": "items", "dest_table": "Items"}
    values.update(overrides)
    return MigrationOptions(**values)


class TestEscenarios:
    def test_tabla_vacia_completa_sin_batches(self, numbered_table, fake_store):
        pipeline = MigrationPipeline(fake_store, _options(numbered_table(0)))
        result = pipeline.run()

        assert result.state is PipelineState.COMPLETED
        assert result.batches_committed == 0
        assert result.rows_uploaded == 0
        assert pipeline.state_history == FULL_PATH
        assert fake_store.submissions == []
        assert "Items" in fake_store.tables

    @pytest.mark.parametrize("strategy", list(PaginationStrategy))
    def test_250_filas_en_tres_batches(self, numbered_table, fake_store, strategy):
        result = MigrationPipeline(fake_store, _options(numbered_table(250), pagination=strategy)).run()

        assert fake_store.batch_sizes == [100, 100, 50]
        assert result.batches_committed == 3
        assert result.rows_uploaded == 250
        assert result.pages_read == 3
        assert len(fake_store.tables["Items"]) == 250
        assert fake_store.tables["Items"][("default", "250")]["name"] == "item-250"

    def test_texto_en_columna_int64_falla_sin_batches(self, sqlite_factory, fake_store):
        path = sqlite_factory(
            "CREATE TABLE items (id TEXT PRIMARY KEY, name TEXT)",
            "INSERT INTO items (id, name) VALUES (:id, :name)",
            [{"id": "abc", "name": "x"}],
        )
        pipeline = MigrationPipeline(fake_store, _options(path, type_mapping=TypeMapping.from_tokens(["id=Int64"])))

        with pytest.raises(ConversionError) as exc:
            pipeline.run()

        assert pipeline.state is PipelineState.FAILED
        assert exc.value.details["batches_committed"] == 0
        assert exc.value.details["column"] == "id"
        assert fake_store.submissions == []

    def test_destino_inalcanzable(self, numbered_table, store_factory):
        store = store_factory(unreachable=True)
        pipeline = MigrationPipeline(store, _options(numbered_table(5)))

        with pytest.raises(ConnectivityError):
            pipeline.run()

        assert pipeline.state is PipelineState.FAILED
        assert PipelineState.DESTINATION_VALIDATED not in pipeline.state_history
        assert store.calls == ["get_service_properties"]

    def test_rerun_en_modo_add_falla(self, numbered_table, fake_store):
        path = numbered_table(10)
        MigrationPipeline(fake_store, _options(path, write_mode=WriteMode.ADD)).run()

        with pytest.raises(TransactionError) as exc:
            MigrationPipeline(fake_store, _options(path, write_mode=WriteMode.ADD)).run()
        assert exc.value.store_error_code == "EntityAlreadyExists"

    def test_rerun_en_modo_replace_es_seguro(self, numbered_table, fake_store):
        path = numbered_table(10)
        MigrationPipeline(fake_store, _options(path)).run()
        result = MigrationPipeline(fake_store, _options(path)).run()
        assert result.state is PipelineState.COMPLETED
        assert result.destination_was_empty is False
        assert len(fake_store.tables["Items"]) == 10


class TestValidaciones:
    def test_tabla_inexistente(self, numbered_table, fake_store):
        pipeline = MigrationPipeline(fake_store, _options(numbered_table(1), source_table="nope"))
        with pytest.raises(TableNotFoundError):
            pipeline.run()
        assert fake_store.calls == []
        assert pipeline.state_history == [PipelineState.INIT, PipelineState.FAILED]

    def test_tabla_sin_pk(self, sqlite_factory, fake_store):
        path = sqlite_factory("CREATE TABLE items (name TEXT)")
        with pytest.raises(SchemaError) as exc:
            MigrationPipeline(fake_store, _options(path)).run()
        assert exc.value.error_code == "MISSING_PRIMARY_KEY"

    def test_columna_reservada(self, sqlite_factory, fake_store):
        path = sqlite_factory("CREATE TABLE items (id INTEGER PRIMARY KEY, Timestamp TEXT)")
        with pytest.raises(SchemaError) as exc:
            MigrationPipeline(fake_store, _options(path)).run()
        assert exc.value.error_code == "RESERVED_COLUMN_NAME"

    def test_mapeo_con_columna_inexistente(self, numbered_table, fake_store):
        options = _options(numbered_table(1), type_mapping=TypeMapping.from_tokens(["missing=Int32"]))
        with pytest.raises(SchemaError) as exc:
            MigrationPipeline(fake_store, options).run()
        assert exc.value.error_code == "COLUMN_NOT_FOUND"
        assert exc.value.details["columns"] == ["missing"]

    def test_destino_no_vacio_solo_advierte(self, numbered_table, fake_store, captured_logs):
        fake_store.seed("Items", ["zzz"])
        result = MigrationPipeline(fake_store, _options(numbered_table(3))).run()

        assert result.state is PipelineState.COMPLETED
        assert result.destination_was_empty is False
        assert any(m.startswith("WARNING") and "no está vacía" in m for m in captured_logs)


class TestProgresoYCancelacion:
    def test_callback_de_progreso(self, numbered_table, fake_store):
        received = []
        MigrationPipeline(
            fake_store,
            _options(numbered_table(250)),
            progress_callback=lambda pages, rows, batches: received.append((pages, rows, batches)),
        ).run()
        assert received == [(1, 100, 1), (2, 200, 2), (3, 250, 3)]

    def test_verbose_loguea_progreso_en_info(self, numbered_table, fake_store, captured_logs):
        MigrationPipeline(fake_store, _options(numbered_table(5), verbose=True)).run()
        assert any(m.startswith("INFO") and "Obtenidas: 5" in m for m in captured_logs)

    def test_sin_verbose_el_progreso_va_a_debug(self, numbered_table, fake_store, captured_logs):
        MigrationPipeline(fake_store, _options(numbered_table(5))).run()
        progress = [m for m in captured_logs if "Total filas" in m]
        assert progress and all(m.startswith("DEBUG") for m in progress)

    def test_fallo_a_mitad_reporta_batches_confirmados(self, numbered_table, store_factory):
        store = store_factory(fail_on_submission=3)
        pipeline = MigrationPipeline(store, _options(numbered_table(250)))

        with pytest.raises(TransactionError) as exc:
            pipeline.run()

        assert exc.value.details["batches_committed"] == 2
        assert exc.value.details["rows_uploaded"] == 200
        assert exc.value.details["failed_from_state"] == "transferring"
        # Sin rollback: lo confirmado queda en el destino
        assert len(store.tables["Items"]) == 200

    @pytest.mark.parametrize("make_error,expected", [
        (lambda: MigrationCancelledError(), MigrationCancelledError),
        (lambda: ConversionError("Double fuera de rango", destination_type="Double", value=1e400), ConversionError),
    ])
    def test_fallo_no_transaccional_dentro_de_la_pagina_cuenta_lo_confirmado(
        self, numbered_table, store_factory, make_error, expected
    ):
        """Una página de 250 filas son 3 batches; el segundo falla sin ser un rechazo del servicio."""
        store = store_factory(fail_on_submission=2, fail_with=make_error())
        pipeline = MigrationPipeline(store, _options(numbered_table(250), page_size=250))

        with pytest.raises(expected) as exc:
            pipeline.run()

        assert pipeline.state is PipelineState.FAILED
        assert exc.value.details["batches_committed"] == 1
        assert exc.value.details["rows_uploaded"] == 100
        assert len(store.tables["Items"]) == 100

    def test_error_inesperado_se_envuelve_con_contexto(self, numbered_table, store_factory):
        store = store_factory(fail_on_submission=2, fail_with=RuntimeError("socket cerrado"))
        pipeline = MigrationPipeline(store, _options(numbered_table(250)))

        with pytest.raises(MigrationException) as exc:
            pipeline.run()

        assert exc.value.error_code == "UNEXPECTED_ERROR"
        assert isinstance(exc.value.__cause__, RuntimeError)
        assert pipeline.state is PipelineState.FAILED
        assert exc.value.details["exception_type"] == "RuntimeError"
        assert exc.value.details["failed_from_state"] == "transferring"
        assert exc.value.details["batches_committed"] == 1
        assert exc.value.details["rows_uploaded"] == 100

    def test_cancelacion_deja_lo_confirmado(self, numbered_table, fake_store):
        cancel = threading.Event()

        def _cancel_after_first_page(pages, rows, batches):
            cancel.set()

        pipeline = MigrationPipeline(
            fake_store,
            _options(numbered_table(250)),
            cancel_event=cancel,
            progress_callback=_cancel_after_first_page,
        )
        with pytest.raises(MigrationCancelledError) as exc:
            pipeline.run()

        assert pipeline.state is PipelineState.FAILED
        assert exc.value.details["batches_committed"] == 1
        assert len(fake_store.tables["Items"]) == 100

    def test_cancelado_antes_de_empezar(self, numbered_table, fake_store):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(MigrationCancelledError):
            MigrationPipeline(fake_store, _options(numbered_table(1)), cancel_event=cancel).run()
        assert fake_store.calls == []


def test_mapeo_int64_viaja_tipado(numbered_table, fake_store):
    options = _options(numbered_table(2), type_mapping=TypeMapping.from_tokens(["id=Int64"]))
    MigrationPipeline(fake_store, options).run()
    stored = fake_store.tables["Items"][("default", "1")]
    assert isinstance(stored["id"], EntityProperty)
