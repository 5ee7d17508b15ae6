"""
Cliente HTTP de Azure Table Storage (requests).

Requisitos cubiertos:
- firma SharedKeyLite o token SAS
- rate-limit/backoff (408, 429, 5xx, errores de red)
- cancelación cooperativa antes de cada intento y durante las esperas
- transacciones $batch con detección de fallos dentro del changeset
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import threading
import time
from email.utils import formatdate
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import parse_qsl, quote, urlparse

import requests
from loguru import logger

from tablemigrator.domain.entities import MAX_BATCH_SIZE, ConvertedEntity, WriteMode
from tablemigrator.infrastructure.external.azure_tables.batch import (
    build_batch_body,
    parse_batch_response,
    parse_error_payload,
)
from tablemigrator.infrastructure.external.azure_tables.connection_string import (
    TableConnectionSettings,
    parse_connection_string,
)
from tablemigrator.shared.exceptions import (
    ConnectivityError,
    MigrationCancelledError,
    TransactionError,
)

API_VERSION = "2019-02-02"
JSON_NO_METADATA = "application/json;odata=nometadata"


class TableServiceApiError(RuntimeError):
    """Error de integración con el servicio de tablas."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        transient: bool = False,
        outcome_unknown: bool = False,
    ) -> None:
        self.status_code = status_code
        self.error_code = error_code
        self.transient = transient
        # La request pudo haberse aplicado en el servidor
        self.outcome_unknown = outcome_unknown
        super().__init__(message)


def is_transient_status(status_code: int) -> bool:
    return status_code in (408, 429) or 500 <= status_code < 600


def is_throttled(status_code: int, error_code: Optional[str]) -> bool:
    """Rechazos por carga: el servicio no procesó la request."""
    return status_code == 429 or (status_code == 503 and error_code == "ServerBusy")


def build_string_to_sign(date: str, account_name: str, url: str, params: Sequence[Tuple[str, str]]) -> str:
    """
    StringToSign de SharedKeyLite para el servicio de tablas:
    fecha + '\\n' + '/' + cuenta + path (+ '?comp=...' si aplica).
    """
    resource = f"/{account_name}{urlparse(url).path}"
    comp = next((value for key, value in params if key == "comp"), None)
    if comp is not None:
        resource += f"?comp={comp}"
    return f"{date}\n{resource}"


def sign_shared_key_lite(account_key: str, string_to_sign: str) -> str:
    digest = hmac.new(
        base64.b64decode(account_key),
        string_to_sign.encode("utf-8"),
        hashlib.sha256,
    ).digest()
    return base64.b64encode(digest).decode("ascii")


class AzureTableServiceClient:
    """
    Cliente REST del servicio de tablas. Implementa la interfaz TableStore.

    Importante:
    - No convierte tipos: recibe entidades ya convertidas.
    - La sesión HTTP se libera con close() o usando el cliente como context manager.
    """

    def __init__(
        self,
        settings: TableConnectionSettings,
        *,
        session: Optional[requests.Session] = None,
        timeout_s: float = 30,
        max_retries: int = 6,
        min_backoff_s: float = 0.8,
        max_backoff_s: float = 20.0,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self._settings = settings
        self._endpoint = settings.endpoint.rstrip("/")
        self._timeout_s = timeout_s
        self._max_retries = max_retries
        self._min_backoff_s = min_backoff_s
        self._max_backoff_s = max_backoff_s
        self._cancel_event = cancel_event
        self._session = session or requests.Session()

    @classmethod
    def from_connection_string(cls, conn_str: str, **kwargs: Any) -> "AzureTableServiceClient":
        return cls(parse_connection_string(conn_str), **kwargs)

    @property
    def endpoint(self) -> str:
        return self._endpoint

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "AzureTableServiceClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Operaciones
    # ------------------------------------------------------------------

    def get_service_properties(self) -> Dict[str, Any]:
        """Chequeo de alcance: GET /?restype=service&comp=properties."""
        try:
            resp = self._request(
                "GET",
                "/",
                params=[("restype", "service"), ("comp", "properties")],
                headers={"Accept": "application/xml"},
            )
        except TableServiceApiError as e:
            raise ConnectivityError(
                f"No se puede conectar al servicio de tablas {self._endpoint}: {e}",
                error_code="DESTINATION_UNREACHABLE",
                details={"endpoint": self._endpoint, "status_code": e.status_code, "store_error_code": e.error_code},
            ) from e
        return {
            "status_code": resp.status_code,
            "request_id": resp.headers.get("x-ms-request-id"),
        }

    def create_table_if_not_exists(self, table_name: str) -> bool:
        """
        Crea la tabla. Retorna True si la creó, False si ya existía.
        """
        try:
            self._request(
                "POST",
                "/Tables",
                json_body={"TableName": table_name},
                headers={"Accept": JSON_NO_METADATA, "Prefer": "return-no-content"},
            )
            return True
        except TableServiceApiError as e:
            if e.error_code == "TableAlreadyExists":
                return False
            raise ConnectivityError(
                f"No se pudo crear la tabla '{table_name}': {e}",
                error_code="TABLE_CREATION_FAILED",
                details={"table": table_name, "status_code": e.status_code, "store_error_code": e.error_code},
            ) from e

    def has_any_entity(self, table_name: str) -> bool:
        try:
            resp = self._request(
                "GET",
                f"/{quote(table_name, safe='')}()",
                params=[("$top", "1")],
                headers={"Accept": JSON_NO_METADATA},
            )
        except TableServiceApiError as e:
            raise ConnectivityError(
                f"No se pudo consultar la tabla '{table_name}': {e}",
                error_code="DESTINATION_QUERY_FAILED",
                details={"table": table_name, "status_code": e.status_code},
            ) from e
        return bool((resp.json() or {}).get("value"))

    def submit_transaction(
        self,
        table_name: str,
        entities: Sequence[ConvertedEntity],
        mode: WriteMode = WriteMode.REPLACE,
    ) -> None:
        """
        Envía las entidades como una transacción atómica ($batch).

        Raises:
            TransactionError: si el servicio rechaza el batch o alguna de sus operaciones
        """
        if not entities:
            return
        if len(entities) > MAX_BATCH_SIZE:
            raise ValueError(f"Una transacción admite a lo sumo {MAX_BATCH_SIZE} operaciones, recibidas {len(entities)}")
        if len({e.partition_key for e in entities}) > 1:
            raise ValueError("Todas las entidades de una transacción deben compartir PartitionKey")

        body, content_type = build_batch_body(self._endpoint, table_name, entities, mode)
        try:
            resp = self._request(
                "POST",
                "/$batch",
                data=body,
                headers={
                    "Content-Type": content_type,
                    "Accept": "application/json;odata=minimalmetadata",
                    "MaxDataServiceVersion": "3.0;NetFx",
                },
                # ADD no es idempotente: reenviar un batch ya aplicado daría EntityAlreadyExists
                retry_ambiguous=mode is not WriteMode.ADD,
            )
        except TableServiceApiError as e:
            if e.outcome_unknown:
                raise TransactionError(
                    f"Resultado del batch desconocido (pudo haberse aplicado); no se reintenta en modo add: {e}",
                    status_code=e.status_code,
                    store_error_code=e.error_code,
                    transient=True,
                    details={"outcome_unknown": True},
                ) from e
            raise TransactionError(
                f"Batch rechazado por el servicio de tablas: {e}",
                status_code=e.status_code,
                store_error_code=e.error_code,
                transient=e.transient,
            ) from e

        failure = parse_batch_response(resp.text)
        if failure is not None:
            raise TransactionError(
                f"Batch rechazado ({failure.status_code} {failure.error_code}): {failure.message.splitlines()[0] if failure.message else ''}",
                status_code=failure.status_code,
                store_error_code=failure.error_code,
                failed_index=failure.failed_index,
                transient=is_transient_status(failure.status_code),
            )

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _check_cancelled(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise MigrationCancelledError()

    def _sleep(self, seconds: float) -> None:
        if self._cancel_event is None:
            time.sleep(seconds)
            return
        if self._cancel_event.wait(seconds):
            raise MigrationCancelledError()

    def _backoff_seconds(self, attempt: int, retry_after: Optional[str]) -> float:
        if retry_after:
            try:
                return float(retry_after)
            except ValueError:
                return self._min_backoff_s
        # Exponencial simple + jitter proporcional
        base = min(self._max_backoff_s, self._min_backoff_s * (2**attempt))
        return base + (0.15 * base)

    def _build_headers(
        self,
        method: str,
        url: str,
        params: List[Tuple[str, str]],
        extra: Optional[Dict[str, str]],
    ) -> Dict[str, str]:
        date = formatdate(usegmt=True)
        headers = {
            "x-ms-date": date,
            "x-ms-version": API_VERSION,
            "DataServiceVersion": "3.0",
        }
        headers.update(extra or {})
        if self._settings.account_key:
            string_to_sign = build_string_to_sign(date, self._settings.account_name or "", url, params)
            signature = sign_shared_key_lite(self._settings.account_key, string_to_sign)
            headers["Authorization"] = f"SharedKeyLite {self._settings.account_name}:{signature}"
        return headers

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[List[Tuple[str, str]]] = None,
        headers: Optional[Dict[str, str]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        data: Optional[bytes] = None,
        retry_ambiguous: bool = True,
    ) -> requests.Response:
        """
        Request HTTP con backoff.

        Estrategia:
        - 429/408/5xx y errores de red: reintento exponencial (respeta Retry-After).
        - 4xx restantes: error inmediato (config/auth/conflicto).
        - retry_ambiguous=False (requests no idempotentes): solo se reintenta cuando
          es seguro que el servidor no procesó la request (timeout de conexión o
          throttling). Otro fallo transitorio se lanza con outcome_unknown=True.
        """
        url = f"{self._endpoint}{path}"
        query = list(params or [])
        if not self._settings.account_key and self._settings.sas_token:
            query.extend(parse_qsl(self._settings.sas_token, keep_blank_values=True))

        for attempt in range(self._max_retries + 1):
            self._check_cancelled()
            request_headers = self._build_headers(method, url, query, headers)
            try:
                resp = self._session.request(
                    method=method,
                    url=url,
                    params=query,
                    headers=request_headers,
                    json=json_body,
                    data=data,
                    timeout=self._timeout_s,
                )
            except (requests.ConnectionError, requests.Timeout) as e:
                if not retry_ambiguous and not isinstance(e, requests.ConnectTimeout):
                    raise TableServiceApiError(
                        f"Sin respuesta de {self._endpoint}; resultado de {method} {path} desconocido: {e}",
                        transient=True,
                        outcome_unknown=True,
                    ) from e
                if attempt >= self._max_retries:
                    raise TableServiceApiError(
                        f"Sin respuesta de {self._endpoint} tras {attempt} reintentos: {e}",
                        transient=True,
                    ) from e
                sleep_s = self._backoff_seconds(attempt, None)
                logger.warning(f"Error de red ({type(e).__name__}), reintento {attempt + 1} en {sleep_s:.1f}s")
                self._sleep(sleep_s)
                continue

            if 200 <= resp.status_code < 300:
                return resp

            error_code = resp.headers.get("x-ms-error-code")
            code_from_body, message = parse_error_payload(resp.text or "")
            error_code = error_code or code_from_body

            # Errores recuperables
            if is_transient_status(resp.status_code):
                if not retry_ambiguous and not is_throttled(resp.status_code, error_code):
                    raise TableServiceApiError(
                        f"Error {resp.status_code} ({error_code}); resultado de {method} {path} desconocido: {message}",
                        status_code=resp.status_code,
                        error_code=error_code,
                        transient=True,
                        outcome_unknown=True,
                    )
                if attempt >= self._max_retries:
                    raise TableServiceApiError(
                        f"Error {resp.status_code} ({error_code}) tras {attempt} reintentos: {message}",
                        status_code=resp.status_code,
                        error_code=error_code,
                        transient=True,
                    )
                sleep_s = self._backoff_seconds(attempt, resp.headers.get("Retry-After"))
                logger.warning(
                    f"Servicio de tablas respondió {resp.status_code} ({error_code}), "
                    f"reintento {attempt + 1} en {sleep_s:.1f}s"
                )
                self._sleep(sleep_s)
                continue

            # Errores no recuperables
            raise TableServiceApiError(
                f"Request {method} {path} falló {resp.status_code} ({error_code}): {message}",
                status_code=resp.status_code,
                error_code=error_code,
            )

        # range() siempre retorna o lanza antes de llegar aquí
        raise TableServiceApiError(f"Request {method} {path} sin resultado")
