"""
Tests del CLI (parseo de argumentos, códigos de salida y cableado).
"""
import pytest

from tablemigrator import cli
from tablemigrator.core.config import Settings, get_settings
from tablemigrator.domain.entities import DestinationType, TypeMapping, WriteMode
from tablemigrator.infrastructure.database.paginator import PaginationStrategy
from tablemigrator.shared.exceptions import MigrationCancelledError

BASE_ARGS = [
    "upload",
    "--sourceTable", "items",
    "--destConnString", "UseDevelopmentStorage=true",
    "--destTableName", "Items",
]


class _StoreContext:
    """Envuelve el fake en memoria con la interfaz de context manager del cliente real."""

    def __init__(self, store) -> None:
        self.store = store
        self.closed = False

    def __enter__(self):
        return self.store

    def __exit__(self, exc_type, exc, tb):
        self.closed = True
        return False


@pytest.fixture(autouse=True)
def _clean_settings(monkeypatch):
    for name in ("PAGE_SIZE", "WRITE_MODE", "PAGINATION_STRATEGY", "LOG_FILE"):
        monkeypatch.delenv(f"TABLEMIGRATOR_{name}", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def patched_client(monkeypatch, fake_store):
    created = {}

    def _factory(connection, **kwargs):
        created["connection"] = connection
        created["kwargs"] = kwargs
        created["context"] = _StoreContext(fake_store)
        return created["context"]

    monkeypatch.setattr(cli, "AzureTableServiceClient", _factory)
    return created


class TestParser:
    def test_verbose_antes_o_despues_del_subcomando(self):
        parser = cli.build_parser()
        before = parser.parse_args(["-v", *BASE_ARGS, "--source", "a.db"])
        after = parser.parse_args([*BASE_ARGS, "--source", "a.db", "-v"])
        neither = parser.parse_args([*BASE_ARGS, "--source", "a.db"])
        assert before.verbose is True
        assert after.verbose is True
        assert neither.verbose is False

    def test_faltan_argumentos_obligatorios(self):
        with pytest.raises(SystemExit) as exc:
            cli.main(["upload", "--source", "a.db"])
        assert exc.value.code == 2

    def test_tipo_desconocido_en_type_map(self):
        with pytest.raises(SystemExit) as exc:
            cli.main([*BASE_ARGS, "--source", "a.db", "--sourceTypeMap", "id=Decimal"])
        assert exc.value.code == 2

    def test_page_size_invalido(self):
        with pytest.raises(SystemExit) as exc:
            cli.main([*BASE_ARGS, "--source", "a.db", "--pageSize", "0"])
        assert exc.value.code == 2

    def test_flags_tienen_prioridad_sobre_settings(self):
        args = cli.build_parser().parse_args(
            [*BASE_ARGS, "--source", "a.db", "--writeMode", "add", "--pagination", "offset", "--pageSize", "7"]
        )
        settings = Settings(WRITE_MODE="merge", PAGE_SIZE=50)
        options = cli.build_options(args, TypeMapping.from_tokens(["id=int64"]), settings)
        assert options.write_mode is WriteMode.ADD
        assert options.pagination is PaginationStrategy.OFFSET
        assert options.page_size == 7
        assert options.type_mapping["ID"] is DestinationType.INT64

    def test_settings_por_defecto(self):
        args = cli.build_parser().parse_args([*BASE_ARGS, "--source", "a.db"])
        options = cli.build_options(args, TypeMapping(), Settings())
        assert options.write_mode is WriteMode.REPLACE
        assert options.pagination is PaginationStrategy.KEYSET
        assert options.page_size == 100
        assert options.partition_key == "default"


class TestCodigosDeSalida:
    def test_migracion_completa(self, numbered_table, fake_store, patched_client):
        code = cli.main([*BASE_ARGS, "--source", str(numbered_table(120)), "--sourceTypeMap", "id=Int64"])
        assert code == cli.EXIT_OK
        assert fake_store.batch_sizes == [100, 20]
        assert patched_client["connection"].account_name == "devstoreaccount1"
        assert patched_client["context"].closed is True

    def test_origen_inexistente_sale_con_1(self, tmp_path, patched_client):
        code = cli.main([*BASE_ARGS, "--source", str(tmp_path / "missing.db")])
        assert code == cli.EXIT_FAILED

    def test_connection_string_invalida_sale_con_1(self, numbered_table, patched_client):
        args = ["upload", "--source", str(numbered_table(1)), "--sourceTable", "items",
                "--destConnString", "AccountName=acme", "--destTableName", "Items"]
        assert cli.main(args) == cli.EXIT_FAILED
        assert "connection" not in patched_client

    def test_cancelacion_sale_con_130(self, numbered_table, fake_store, patched_client, monkeypatch):
        def _cancelled():
            raise MigrationCancelledError()

        monkeypatch.setattr(fake_store, "get_service_properties", _cancelled)
        code = cli.main([*BASE_ARGS, "--source", str(numbered_table(1))])
        assert code == cli.EXIT_CANCELLED
