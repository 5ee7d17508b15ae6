"""
Armado y parseo de transacciones $batch (multipart/mixed, un único changeset).

La respuesta del servicio es 202 aun cuando el changeset falla: el estado real
de cada operación viene dentro del cuerpo multipart, por eso hay que parsearlo.
"""

from __future__ import annotations

import json
import re
import uuid
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple
from urllib.parse import quote

from tablemigrator.domain.entities import ConvertedEntity, WriteMode
from tablemigrator.infrastructure.external.azure_tables.types import serialize_entity

CRLF = "\r\n"

_STATUS_LINE = re.compile(r"HTTP/1\.1 (\d{3})[^\r\n]*")
_INDEX_PREFIX = re.compile(r"^(\d+):")
_XML_CODE = re.compile(r"<Code>([^<]+)</Code>")
_XML_MESSAGE = re.compile(r"<Message>([^<]*)</Message>")

_METHODS = {
    WriteMode.ADD: "POST",
    WriteMode.MERGE: "PATCH",
    WriteMode.REPLACE: "PUT",
}


@dataclass(frozen=True)
class BatchFailure:
    """Primera operación fallida dentro de un changeset."""

    status_code: int
    error_code: Optional[str]
    message: str
    failed_index: Optional[int]


def _key_literal(value: str) -> str:
    return quote(value.replace("'", "''"), safe="")


def entity_url(endpoint: str, table_name: str, entity: ConvertedEntity) -> str:
    return (
        f"{endpoint}/{quote(table_name, safe='')}"
        f"(PartitionKey='{_key_literal(entity.partition_key)}',RowKey='{_key_literal(entity.row_key)}')"
    )


def build_batch_body(
    endpoint: str,
    table_name: str,
    entities: Sequence[ConvertedEntity],
    mode: WriteMode,
    *,
    batch_id: Optional[str] = None,
    changeset_id: Optional[str] = None,
) -> Tuple[bytes, str]:
    """
    Arma el cuerpo multipart de una transacción.

    Returns:
        (cuerpo en bytes, valor del header Content-Type)
    """
    batch_boundary = f"batch_{batch_id or uuid.uuid4()}"
    changeset_boundary = f"changeset_{changeset_id or uuid.uuid4()}"
    method = _METHODS[mode]

    lines = [
        f"--{batch_boundary}",
        f"Content-Type: multipart/mixed; boundary={changeset_boundary}",
        "",
    ]
    for entity in entities:
        if mode is WriteMode.ADD:
            url = f"{endpoint}/{quote(table_name, safe='')}"
        else:
            url = entity_url(endpoint, table_name, entity)
        lines.extend([
            f"--{changeset_boundary}",
            "Content-Type: application/http",
            "Content-Transfer-Encoding: binary",
            "",
            f"{method} {url} HTTP/1.1",
            "Content-Type: application/json",
            "Accept: application/json;odata=minimalmetadata",
            "Prefer: return-no-content",
            "DataServiceVersion: 3.0",
            "",
            json.dumps(serialize_entity(entity), ensure_ascii=False),
        ])
    lines.extend([
        f"--{changeset_boundary}--",
        "",
        f"--{batch_boundary}--",
        "",
    ])

    body = CRLF.join(lines).encode("utf-8")
    return body, f"multipart/mixed; boundary={batch_boundary}"


def parse_error_payload(text: str) -> Tuple[Optional[str], str]:
    """
    Extrae (código, mensaje) de un cuerpo de error JSON OData o XML.
    """
    start = text.find("{")
    if start != -1:
        try:
            payload, _ = json.JSONDecoder().raw_decode(text, start)
        except ValueError:
            payload = None
        if isinstance(payload, dict):
            error = payload.get("odata.error") or payload.get("error") or {}
            message = error.get("message")
            if isinstance(message, dict):
                message = message.get("value")
            return error.get("code"), str(message or "")

    code = _XML_CODE.search(text)
    message = _XML_MESSAGE.search(text)
    return (code.group(1) if code else None), (message.group(1) if message else text.strip()[:500])


def parse_batch_response(text: str) -> Optional[BatchFailure]:
    """
    Busca la primera operación con estado no exitoso.

    Returns:
        BatchFailure o None si todas las operaciones fueron aceptadas
    """
    for match in _STATUS_LINE.finditer(text):
        status = int(match.group(1))
        if status < 300:
            continue
        code, message = parse_error_payload(text[match.end():])
        index_match = _INDEX_PREFIX.match(message)
        failed_index = int(index_match.group(1)) if index_match else None
        return BatchFailure(
            status_code=status,
            error_code=code,
            message=message,
            failed_index=failed_index,
        )
    return None
