"""Thin urllib helpers shared by the hosted-service adapters."""

from __future__ import annotations

import json
import logging
import mimetypes
import uuid
import urllib.error
import urllib.request
from typing import Any


logger = logging.getLogger(__name__)


class ServiceError(RuntimeError):
    """Hosted service call failed, with structured details."""

    def __init__(self, service: str, code: str, message: str, status: int | None = None) -> None:
        self.error = {
            "service": service,
            "code": code,
            "message": message,
            "status": status,
        }
        super().__init__(json.dumps(self.error))

    @property
    def code(self) -> str:
        return str(self.error["code"])


def request_bytes(
    service: str,
    url: str,
    *,
    method: str = "POST",
    headers: dict[str, str] | None = None,
    data: bytes | None = None,
    timeout: int = 30,
) -> tuple[int, bytes]:
    """Perform one request; raise ServiceError on transport errors and non-2xx responses."""
    request = urllib.request.Request(url=url, method=method, headers=headers or {}, data=data)
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:  # noqa: S310
            body = response.read()
            status = response.status
    except urllib.error.HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="replace")
        logger.error("%s: %s %s failed status=%s body=%s", service, method, url, exc.code, detail[:500])
        raise ServiceError(service, "http_error", detail[:500] or str(exc), status=exc.code) from exc
    except (urllib.error.URLError, TimeoutError, OSError) as exc:
        logger.error("%s: %s %s failed error=%s", service, method, url, exc)
        raise ServiceError(service, "transport_error", str(exc)) from exc
    if not 200 <= status < 300:
        raise ServiceError(service, "http_error", f"unexpected status {status}", status=status)
    return status, body


def request_json(
    service: str,
    url: str,
    payload: Any | None = None,
    *,
    method: str = "POST",
    headers: dict[str, str] | None = None,
    timeout: int = 30,
) -> Any:
    """JSON in, JSON out. Empty bodies decode to None."""
    merged = {"Content-Type": "application/json", "Accept": "application/json", **(headers or {})}
    data = None if payload is None else json.dumps(payload).encode("utf-8")
    _, body = request_bytes(service, url, method=method, headers=merged, data=data, timeout=timeout)
    if not body.strip():
        return None
    try:
        return json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ServiceError(service, "invalid_response", f"response is not JSON: {exc}") from exc


def multipart_payload(fields: dict[str, str], file_field: str, filename: str, file_bytes: bytes) -> tuple[bytes, str]:
    boundary = f"----companion-{uuid.uuid4().hex}"
    lines: list[bytes] = []
    for key, value in fields.items():
        lines.extend(
            [
                f"--{boundary}\r\n".encode(),
                f'Content-Disposition: form-data; name="{key}"\r\n\r\n'.encode(),
                value.encode("utf-8"),
                b"\r\n",
            ]
        )

    mime = mimetypes.guess_type(filename)[0] or "application/octet-stream"
    lines.extend(
        [
            f"--{boundary}\r\n".encode(),
            f'Content-Disposition: form-data; name="{file_field}"; filename="{filename}"\r\n'.encode(),
            f"Content-Type: {mime}\r\n\r\n".encode(),
            file_bytes,
            b"\r\n",
            f"--{boundary}--\r\n".encode(),
        ]
    )
    return b"".join(lines), boundary
