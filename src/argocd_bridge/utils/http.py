# ABOUTME: Authenticated HTTP transport for the ArgoCD REST API
# ABOUTME: Buffered JSON requests, query serialization, and incremental NDJSON streams

"""
HTTP transport for the ArgoCD REST API.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

This module is the only place that touches the network. It handles:

1. URL AND QUERY BUILDING: base URL + path, with a fixed rule for turning
   Python values into query entries
2. AUTHENTICATION: a bearer token attached to every request
3. DECODING: JSON bodies for normal calls, newline-delimited JSON records
   for streamed calls (log tailing)
4. ERRORS: three distinguishable exception types, so callers never have to
   look inside httpx exceptions

=============================================================================
QUERY SERIALIZATION RULES
=============================================================================

    None            -> key omitted entirely (not "key=" and not "key=None")
    True / False    -> "true" / "false"
    7               -> "7"
    "abc"           -> "abc"
    ["a", "b"]      -> key=a&key=b   (repeated, never "a,b")

Omitting None is what lets callers say "not specified" and have it mean
something different from "specified empty". ArgoCD reads array parameters
from repeated keys, which is why lists are never comma-joined.

=============================================================================
STREAMED RESPONSES
=============================================================================

Log endpoints answer with a chunked body holding one JSON object per line:

    {"result":{"content":"starting","podName":"web-1"}}\\n
    {"result":{"content":"listening on :8080","podName":"web-1"}}\\n

Chunks arrive on the wire at arbitrary byte offsets, so one record can be
split across two reads:

    read 1: {"result":{"content":"sta
    read 2: rting","podName":"web-1"}}\\n{"result":

JsonLinesDecoder keeps the unfinished tail between reads and only parses
complete lines. Records are handed out one at a time through an async
generator, so nothing is read from the socket until the caller has finished
with the previous record.

=============================================================================
ERROR TAXONOMY
=============================================================================

    NetworkError      DNS failure, refused/reset connection, timeout,
                      stream cut off before the end
    HttpStatusError   ArgoCD answered with a non-2xx status
    DecodeError       ArgoCD answered 2xx but the body is not JSON, or could
                      not be decompressed per its Content-Encoding

All three derive from ArgocdBridgeError.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from contextlib import aclosing
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx
import structlog

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

logger = structlog.get_logger(__name__)

QueryValue = str | bool | int | Sequence[str] | None
QueryParams = Mapping[str, QueryValue]

# How much of an error body or bad record to keep in logs and messages
_PREVIEW_CHARS = 200


# =============================================================================
# ERRORS
# =============================================================================


class ArgocdBridgeError(Exception):
    """Base class for every error raised by the transport and client."""


class NetworkError(ArgocdBridgeError):
    """
    The request never produced a complete response.

    Raised for connection failures (DNS, refused, reset), timeouts, and
    streams that break before ArgoCD closes them normally.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(str(self))

    def __str__(self) -> str:
        return f"ArgoCD network error: {self.message}"


class HttpStatusError(ArgocdBridgeError):
    """
    ArgoCD responded with a non-2xx status.

    ArgoCD error bodies look like:
        {"error": "application not found", "code": 5, "message": "application not found"}

    USAGE:
    ------
    try:
        app = await client.get_application("nonexistent")
    except HttpStatusError as e:
        print(e.status, e.message)  # 404 application not found
    """

    def __init__(
        self,
        status: int,
        message: str,
        details: str | None = None,
        body: str = "",
    ) -> None:
        """
        Args:
            status: HTTP status code (e.g., 404, 500)
            message: ArgoCD's "message" field, or "HTTP <status>"
            details: ArgoCD's "error" field, or the raw text of a non-JSON body
            body: Raw response body, as received
        """
        self.status = status
        self.message = message
        self.details = details
        self.body = body
        super().__init__(str(self))

    def __str__(self) -> str:
        """
        Example:
            "ArgoCD API error (404): application not found"
        """
        base = f"ArgoCD API error ({self.status}): {self.message}"
        if self.details:
            base += f" - {self.details}"
        return base


class DecodeError(ArgocdBridgeError):
    """A response body that cannot be decompressed or is not valid JSON."""

    def __init__(self, message: str, body: str = "") -> None:
        self.message = message
        self.body = body
        super().__init__(message)


def _status_error(status: int, text: str) -> HttpStatusError:
    """Build an HttpStatusError from a response status and body text."""
    message = f"HTTP {status}"
    details = None
    try:
        error_json = json.loads(text) if text else None
    except ValueError:
        error_json = None

    if isinstance(error_json, dict):
        message = error_json.get("message") or message
        details = error_json.get("error")
        # ArgoCD usually repeats the message in "error"
        if details == message:
            details = None
    elif text:
        details = text[:_PREVIEW_CHARS]

    return HttpStatusError(status=status, message=message, details=details, body=text)


# =============================================================================
# QUERY PARAMETERS
# =============================================================================


def build_query(params: QueryParams | None) -> list[tuple[str, str]]:
    """
    Serialize query parameters into ordered (key, value) pairs.

    Example:
        >>> build_query({"appNamespace": "argocd", "cascade": False, "kind": None})
        [('appNamespace', 'argocd'), ('cascade', 'false')]
        >>> build_query({"syncOptions": ["CreateNamespace=true", "Validate=false"]})
        [('syncOptions', 'CreateNamespace=true'), ('syncOptions', 'Validate=false')]
    """
    query: list[tuple[str, str]] = []
    if not params:
        return query

    for key, value in params.items():
        if value is None:
            continue
        # bool before int: True is an int in Python
        if isinstance(value, bool):
            query.append((key, "true" if value else "false"))
        elif isinstance(value, str):
            query.append((key, value))
        elif isinstance(value, int):
            query.append((key, str(value)))
        else:
            query.extend((key, str(item)) for item in value)
    return query


# =============================================================================
# INCREMENTAL NDJSON DECODER
# =============================================================================


class JsonLinesDecoder:
    """
    Incremental decoder for newline-delimited JSON.

    Feed it raw chunks as they arrive; it returns the records completed by
    each chunk and keeps the unfinished tail for the next call.

        decoder = JsonLinesDecoder()
        decoder.feed(b'{"a": 1}\\n{"b"')   # [{'a': 1}]
        decoder.feed(b': 2}\\n')           # [{'b': 2}]
        decoder.flush()                    # []

    Bytes (not text) are buffered, so a multi-byte UTF-8 character split
    across two chunks is decoded correctly once the line is complete.

    MALFORMED LINES:
    ----------------
    A line that is not JSON, or is JSON but not an object, is skipped,
    logged, and counted in `skipped`. One bad line does not end the stream.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self.skipped = 0

    def feed(self, chunk: bytes) -> list[dict[str, Any]]:
        """Add a chunk and return every record it completes, in order."""
        self._buffer.extend(chunk)
        *lines, tail = self._buffer.split(b"\n")
        self._buffer = bytearray(tail)
        return self._decode_lines(lines)

    def flush(self) -> list[dict[str, Any]]:
        """Decode a final line that was not newline-terminated."""
        tail = bytes(self._buffer)
        self._buffer.clear()
        return self._decode_lines([tail])

    def _decode_lines(self, lines: list[bytearray] | list[bytes]) -> list[dict[str, Any]]:
        records = []
        for line in lines:
            record = self._decode(bytes(line))
            if record is not None:
                records.append(record)
        return records

    def _decode(self, line: bytes) -> dict[str, Any] | None:
        line = line.strip()
        if not line:
            return None

        try:
            record = json.loads(line)
        except ValueError:
            # JSONDecodeError and UnicodeDecodeError are both ValueErrors
            record = None

        if not isinstance(record, dict):
            self.skipped += 1
            logger.warning(
                "Skipping malformed stream record",
                preview=line[:_PREVIEW_CHARS].decode("utf-8", "replace"),
            )
            return None
        return record


def _unwrap_stream_record(record: dict[str, Any]) -> dict[str, Any]:
    """
    Remove the streaming gateway envelope from one record.

    ArgoCD streams each message as {"result": {...}}. A failure after the
    stream has started arrives in-band as:

        {"error": {"grpc_code": 5, "http_code": 404, "message": "...", "http_status": "Not Found"}}

    which is raised as HttpStatusError with the embedded status.
    """
    result = record.get("result")
    if isinstance(result, dict):
        return result

    error = record.get("error")
    if isinstance(error, dict) and "result" not in record:
        status = error.get("http_code") or 500
        raise HttpStatusError(
            status=int(status),
            message=error.get("message") or f"HTTP {status}",
            body=json.dumps(record),
        )
    return record


# =============================================================================
# HTTP CLIENT
# =============================================================================


@dataclass(frozen=True)
class HttpResponse:
    """Status and decoded JSON body of a successful buffered call."""

    status: int
    body: Any


class HttpClient:
    """
    Async HTTP transport bound to one base URL and one bearer token.

    LIFECYCLE:
    ----------
        async with HttpClient("https://argocd.example.com", token) as http:
            response = await http.get("/api/v1/applications")

    The connection pool is created in __aenter__ and closed in __aexit__.
    The base URL and token never change after construction, so one instance
    can serve many concurrent calls.

    No retries are performed here. Timeouts are the only guard against a
    server that stops responding; they surface as NetworkError.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        timeout: float = 30.0,
        verify: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Args:
            base_url: Server URL without a trailing slash
            token: Bearer token for the Authorization header
            timeout: Connect/read/write timeout in seconds
            verify: Verify the server's TLS certificate
            transport: Replacement httpx transport (tests use httpx.MockTransport)
        """
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._verify = verify
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def base_url(self) -> str:
        return self._base_url

    async def __aenter__(self) -> HttpClient:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={
                "Authorization": f"Bearer {self._token}",
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
            timeout=self._timeout,
            verify=self._verify,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _require_client(self) -> httpx.AsyncClient:
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")
        return self._client

    # =========================================================================
    # BUFFERED REQUESTS
    # =========================================================================

    async def request(
        self,
        method: str,
        path: str,
        params: QueryParams | None = None,
        body: Any = None,
    ) -> HttpResponse:
        """
        Send one request and decode its JSON body.

        Args:
            method: "GET", "POST", "PUT" or "DELETE"
            path: Path appended to the base URL, e.g. "/api/v1/applications"
            params: Query parameters, serialized by build_query()
            body: JSON-encodable request body; None sends no body at all

        Returns:
            HttpResponse with the status and decoded body ({} when empty)

        Raises:
            NetworkError: Connection failure or timeout
            HttpStatusError: Non-2xx status
            DecodeError: 2xx status with a non-JSON or undecompressable body
        """
        client = self._require_client()

        log = logger.bind(method=method, path=path)
        log.debug("Sending ArgoCD API request")

        kwargs: dict[str, Any] = {"params": build_query(params) or None}
        if body is not None:
            kwargs["json"] = body

        try:
            response = await client.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            log.warning("ArgoCD API unreachable", error=repr(exc))
            raise NetworkError(f"{method} {path}: {type(exc).__name__}: {exc}") from exc
        except httpx.DecodingError as exc:
            # Body could not be decompressed per its Content-Encoding
            log.warning("ArgoCD API body undecodable", error=repr(exc))
            raise DecodeError(f"{method} {path}: {exc}") from exc

        if not response.is_success:
            log.warning(
                "ArgoCD API error",
                status=response.status_code,
                body=response.text[:_PREVIEW_CHARS],
            )
            raise _status_error(response.status_code, response.text)

        if not response.content:
            return HttpResponse(status=response.status_code, body={})

        try:
            decoded = response.json()
        except ValueError as exc:
            log.warning("ArgoCD API returned invalid JSON", body=response.text[:_PREVIEW_CHARS])
            raise DecodeError(
                f"{method} {path}: response body is not valid JSON", body=response.text
            ) from exc

        return HttpResponse(status=response.status_code, body=decoded)

    async def get(self, path: str, params: QueryParams | None = None) -> HttpResponse:
        return await self.request("GET", path, params=params)

    async def post(
        self, path: str, params: QueryParams | None = None, body: Any = None
    ) -> HttpResponse:
        return await self.request("POST", path, params=params, body=body)

    async def put(
        self, path: str, params: QueryParams | None = None, body: Any = None
    ) -> HttpResponse:
        return await self.request("PUT", path, params=params, body=body)

    async def delete(self, path: str, params: QueryParams | None = None) -> HttpResponse:
        return await self.request("DELETE", path, params=params)

    # =========================================================================
    # STREAMED REQUESTS
    # =========================================================================

    async def iter_stream(
        self,
        path: str,
        params: QueryParams | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """
        GET a newline-delimited JSON stream and yield records as they arrive.

        This is an ASYNC GENERATOR. The next chunk is read from the socket
        only after the caller has asked for the next record, and records come
        out in exactly the order they appear in the body.

            async for record in http.iter_stream("/api/v1/applications/web/logs"):
                print(record["content"])

        Raises:
            NetworkError: Connection failure, timeout, or the stream broke
                          before ArgoCD closed it
            HttpStatusError: Non-2xx status, or an in-band error record
            DecodeError: Body could not be decompressed
        """
        client = self._require_client()

        log = logger.bind(method="GET", path=path)
        log.debug("Opening ArgoCD stream")

        decoder = JsonLinesDecoder()
        delivered = 0
        try:
            async with client.stream("GET", path, params=build_query(params) or None) as response:
                if not response.is_success:
                    await response.aread()
                    log.warning(
                        "ArgoCD stream rejected",
                        status=response.status_code,
                        body=response.text[:_PREVIEW_CHARS],
                    )
                    raise _status_error(response.status_code, response.text)

                async for chunk in response.aiter_bytes():
                    for record in decoder.feed(chunk):
                        delivered += 1
                        yield _unwrap_stream_record(record)

                for record in decoder.flush():
                    delivered += 1
                    yield _unwrap_stream_record(record)
        except httpx.TransportError as exc:
            log.warning("ArgoCD stream aborted", error=repr(exc), delivered=delivered)
            raise NetworkError(f"GET {path}: stream aborted: {type(exc).__name__}: {exc}") from exc
        except httpx.DecodingError as exc:
            log.warning("ArgoCD stream undecodable", error=repr(exc), delivered=delivered)
            raise DecodeError(f"GET {path}: {exc}") from exc

        log.debug("ArgoCD stream closed", delivered=delivered, skipped=decoder.skipped)

    async def get_stream(
        self,
        path: str,
        params: QueryParams | None,
        on_record: Callable[[dict[str, Any]], None],
    ) -> int:
        """
        Stream records to a callback until ArgoCD closes the stream.

        on_record runs synchronously for each record, before the next chunk
        is read.

        Returns:
            Number of records delivered
        """
        delivered = 0
        async with aclosing(self.iter_stream(path, params)) as records:
            async for record in records:
                on_record(record)
                delivered += 1
        return delivered
