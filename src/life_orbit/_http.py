"""Minimal JSON-over-HTTP transport shared by the providers.

Stdlib only: urllib.request for the sync path, asyncio.open_connection
for the native async path (plain HTTP, meant for local servers).
Retries with exponential backoff + jitter on 5xx, 429 and socket errors.
"""

from __future__ import annotations

import asyncio
import http.client
import json
import random
import time
import urllib.error
import urllib.parse
import urllib.request


class RetryableHTTPError(Exception):
    """HTTP status that should trigger a retry (5xx, 429)."""

    def __init__(self, status: int, body: bytes):
        self.status = status
        self.body = body
        super().__init__(f"HTTP {status}")


def _is_retryable(status: int) -> bool:
    return status >= 500 or status == 429


def _backoff(attempt: int, base: float, cap: float) -> float:
    delay = min(base * (2 ** attempt), cap)
    return delay * random.uniform(0.5, 1.5)


def post_json(url: str, payload: dict, headers: dict | None = None,
              timeout: float = 30.0, max_retries: int = 0,
              retry_base_delay: float = 0.5,
              retry_max_delay: float = 10.0) -> dict:
    """POST a JSON body and decode the JSON reply."""
    body = json.dumps(payload).encode()
    all_headers = {"Content-Type": "application/json"}
    all_headers.update(headers or {})

    last_exc: Exception | None = None
    for attempt in range(max_retries + 1):
        req = urllib.request.Request(url, data=body, headers=all_headers, method="POST")
        try:
            with urllib.request.urlopen(req, timeout=timeout) as resp:
                return json.loads(resp.read())
        except urllib.error.HTTPError as exc:
            if not _is_retryable(exc.code):
                raise
            last_exc = RetryableHTTPError(exc.code, exc.read())
        except (urllib.error.URLError, http.client.HTTPException, OSError) as exc:
            last_exc = exc
        if attempt < max_retries:
            time.sleep(_backoff(attempt, retry_base_delay, retry_max_delay))
    raise last_exc  # type: ignore[misc]


async def apost_json(url: str, payload: dict, timeout: float = 30.0,
                     max_retries: int = 0, retry_base_delay: float = 0.5,
                     retry_max_delay: float = 10.0) -> dict:
    """Async POST via asyncio.open_connection. Plain HTTP only."""
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme != "http":
        raise ValueError(f"apost_json only speaks plain http, got {parsed.scheme!r}")
    host = parsed.hostname or "localhost"
    port = parsed.port or 80
    path = parsed.path or "/"
    if parsed.query:
        path += "?" + parsed.query
    body = json.dumps(payload).encode()

    last_exc: Exception | None = None
    for attempt in range(max_retries + 1):
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port), timeout=timeout
            )
            try:
                request = (
                    f"POST {path} HTTP/1.1\r\n"
                    f"Host: {host}:{port}\r\n"
                    f"Content-Type: application/json\r\n"
                    f"Content-Length: {len(body)}\r\n"
                    f"Connection: close\r\n"
                    f"\r\n"
                ).encode() + body
                writer.write(request)
                await writer.drain()

                status_line = await asyncio.wait_for(reader.readline(), timeout=timeout)
                status = int(status_line.split(b" ")[1])

                content_length = None
                while True:
                    line = await reader.readline()
                    if line in (b"\r\n", b""):
                        break
                    if line.lower().startswith(b"content-length:"):
                        content_length = int(line.split(b":")[1].strip())

                if content_length is None:
                    data = await asyncio.wait_for(reader.read(), timeout=timeout)
                else:
                    data = await asyncio.wait_for(
                        reader.readexactly(content_length), timeout=timeout
                    )

                if _is_retryable(status):
                    raise RetryableHTTPError(status, data)
                if status >= 400:
                    raise http.client.HTTPException(f"HTTP {status}: {data[:200]!r}")
                return json.loads(data)
            finally:
                writer.close()
                await writer.wait_closed()
        except (OSError, asyncio.TimeoutError, RetryableHTTPError) as exc:
            last_exc = exc
            if attempt < max_retries:
                await asyncio.sleep(_backoff(attempt, retry_base_delay, retry_max_delay))
    raise last_exc  # type: ignore[misc]
