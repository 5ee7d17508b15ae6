"""
Parseo de connection strings de Azure Storage / Cosmos DB Table API.

Formato: pares Clave=Valor separados por ';' (claves case-insensitive).
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from typing import Dict, Optional

from tablemigrator.shared.exceptions import ConnectivityError

# Credenciales públicas y documentadas del emulador (Azurite).
DEV_STORE_ACCOUNT_NAME = "devstoreaccount1"
DEV_STORE_ACCOUNT_KEY = (
    "Eby8vdM02xNOcqFlqUwJPLlmEtlCDXJ1OUzFT50uSRZ6IFsuFq2UVErCz4I6tq/K1SZFPTOtr/KBHBeksoGMGw=="
)
DEV_STORE_TABLE_ENDPOINT = "http://127.0.0.1:10002/devstoreaccount1"


@dataclass(frozen=True)
class TableConnectionSettings:
    """
    Datos de conexión ya resueltos.

    Exactamente uno de account_key / sas_token se usa para autenticar
    (si vienen ambos, gana la clave de cuenta).
    """

    endpoint: str
    account_name: Optional[str] = None
    account_key: Optional[str] = None
    sas_token: Optional[str] = None

    def __repr__(self) -> str:
        # Nunca exponer secretos en logs
        return (
            f"TableConnectionSettings(endpoint={self.endpoint!r}, account_name={self.account_name!r}, "
            f"account_key={'***' if self.account_key else None}, sas_token={'***' if self.sas_token else None})"
        )


def _invalid(reason: str) -> ConnectivityError:
    return ConnectivityError(
        f"Connection string inválida: {reason}",
        error_code="INVALID_CONNECTION_STRING",
    )


def _split_pairs(conn_str: str) -> Dict[str, str]:
    pairs: Dict[str, str] = {}
    for segment in conn_str.split(";"):
        segment = segment.strip()
        if not segment:
            continue
        key, sep, value = segment.partition("=")
        if not sep or not key.strip():
            raise _invalid(f"segmento sin formato Clave=Valor: '{segment.split('=')[0]}...'")
        pairs[key.strip().lower()] = value.strip()
    return pairs


def parse_connection_string(conn_str: str) -> TableConnectionSettings:
    """
    Resuelve endpoint y credenciales desde una connection string.

    Raises:
        ConnectivityError: (INVALID_CONNECTION_STRING) si falta información o es inválida
    """
    if not conn_str or not conn_str.strip():
        raise _invalid("vacía")

    pairs = _split_pairs(conn_str)

    if pairs.get("usedevelopmentstorage", "").lower() == "true":
        return TableConnectionSettings(
            endpoint=DEV_STORE_TABLE_ENDPOINT,
            account_name=DEV_STORE_ACCOUNT_NAME,
            account_key=DEV_STORE_ACCOUNT_KEY,
        )

    account_name = pairs.get("accountname") or None
    account_key = pairs.get("accountkey") or None
    sas_token = (pairs.get("sharedaccesssignature") or "").lstrip("?") or None

    if not account_key and not sas_token:
        raise _invalid("se requiere AccountKey o SharedAccessSignature")
    if account_key and not account_name:
        raise _invalid("AccountKey requiere AccountName")
    if account_key:
        try:
            base64.b64decode(account_key, validate=True)
        except (binascii.Error, ValueError):
            raise _invalid("AccountKey no es base64 válido") from None

    endpoint = pairs.get("tableendpoint")
    if not endpoint:
        if not account_name:
            raise _invalid("se requiere TableEndpoint o AccountName")
        protocol = pairs.get("defaultendpointsprotocol", "https").lower()
        suffix = pairs.get("endpointsuffix", "core.windows.net")
        endpoint = f"{protocol}://{account_name}.table.{suffix}"

    return TableConnectionSettings(
        endpoint=endpoint.rstrip("/"),
        account_name=account_name,
        account_key=account_key,
        sas_token=sas_token,
    )
