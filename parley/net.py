"""Shared httpx plumbing for the remote-service clients."""

from __future__ import annotations

from typing import Any, Optional

import httpx

from parley.pipeline.errors import ServiceError

DEFAULT_TIMEOUT = 30.0


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value.strip()))
    except ValueError:
        # HTTP-date form is ignored
        return None


def _error_detail(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return (resp.text or resp.reason_phrase or "").strip()[:200]
    if isinstance(data, dict):
        err = data.get("error") or data.get("detail")
        if isinstance(err, dict):
            return str(err.get("message") or err.get("status") or err)
        if err:
            return str(err)
    return resp.reason_phrase or ""


def raise_for_service(resp: httpx.Response, service: str) -> None:
    if resp.is_success:
        return
    detail = _error_detail(resp) or resp.reason_phrase
    raise ServiceError(
        f"{service} API error ({resp.status_code}): {detail}",
        status_code=resp.status_code,
        retry_after=parse_retry_after(resp.headers.get("retry-after")),
    )


def send(client: httpx.Client, method: str, url: str, *, service: str, **kwargs: Any) -> httpx.Response:
    """
    Issue one request. Transport failures surface as the builtin TimeoutError /
    ConnectionError, non-2xx answers as ServiceError.
    """
    try:
        resp = client.request(method, url, **kwargs)
    except httpx.TimeoutException as exc:
        raise TimeoutError(f"{service} request timed out") from exc
    except httpx.TransportError as exc:
        raise ConnectionError(f"{service} connection failed: {exc}") from exc
    raise_for_service(resp, service)
    return resp


def make_client(timeout: float = DEFAULT_TIMEOUT) -> httpx.Client:
    return httpx.Client(timeout=timeout)
