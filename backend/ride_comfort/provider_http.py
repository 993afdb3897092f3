from __future__ import annotations

import asyncio
import logging
from typing import Any, Final

import httpx

from .logging_utils import log_event
from .provider_errors import ProviderError

RETRYABLE_STATUS: Final[set[int]] = {408, 425, 429, 500, 502, 503, 504}


class _Retryable(Exception):
    pass


def format_http_error(provider: str, resp: httpx.Response) -> str:
    """Best-effort decode of JSON error payloads."""
    try:
        data = resp.json()
        if isinstance(data, dict):
            code = data.get("code") or data.get("error")
            message = data.get("message")
            if code and message:
                return f"{provider} {resp.status_code} {code}: {message}"
            if code:
                return f"{provider} {resp.status_code} {code}"
            if message:
                return f"{provider} {resp.status_code}: {message}"
    except ValueError:
        pass

    body = (resp.text or "").strip().replace("\n", " ")
    if len(body) > 240:
        body = body[:240] + "..."
    if body:
        return f"{provider} {resp.status_code}: {body}"
    return f"{provider} HTTP {resp.status_code}"


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    provider: str,
    reason_code: str,
    params: dict[str, Any] | None = None,
    json_body: Any = None,
    max_retries: int = 3,
) -> Any:
    """Send one request, retrying transient failures with capped backoff."""
    attempts = max(1, int(max_retries))
    last_err: Exception | None = None

    for attempt in range(attempts):
        try:
            resp = await client.request(method, url, params=params, json=json_body)
            if resp.status_code in RETRYABLE_STATUS:
                raise _Retryable(format_http_error(provider, resp))
            if resp.status_code >= 400:
                raise ProviderError(
                    reason_code=reason_code,
                    message=format_http_error(provider, resp),
                    details={"status_code": resp.status_code, "url": url},
                )
            try:
                return resp.json()
            except ValueError as e:
                raise ProviderError(
                    reason_code=reason_code,
                    message=f"{provider} returned a non-JSON body",
                    details={"url": url},
                ) from e
        except _Retryable as e:
            last_err = e
        except (httpx.TimeoutException, httpx.NetworkError, httpx.TransportError) as e:
            last_err = e

        if attempt < attempts - 1:
            await asyncio.sleep(min(0.25 * (2**attempt), 2.0))

    # httpx exceptions can stringify to "" (e.g. some timeouts), so include the type.
    if last_err is None:
        detail = "unknown error"
    else:
        msg = str(last_err).strip()
        detail = f"{type(last_err).__name__}: {msg}" if msg else f"{type(last_err).__name__}: {last_err!r}"
    log_event(
        "provider_request_failed",
        level=logging.WARNING,
        provider=provider,
        url=url,
        attempts=attempts,
        detail=detail,
    )
    raise ProviderError(
        reason_code=reason_code,
        message=f"{provider} request failed after {attempts} attempts: {detail}",
        details={"url": url},
    )
