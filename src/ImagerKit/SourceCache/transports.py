# === NAVMAP v1 ===
# {
#   "module": "ImagerKit.SourceCache.transports",
#   "purpose": "HTTP transports that stream remote images into staging files",
#   "sections": [
#     {"id": "transportresult", "name": "TransportResult", "anchor": "class-transportresult", "kind": "class"},
#     {"id": "httpxtransport", "name": "HttpxTransport", "anchor": "class-httpxtransport", "kind": "class"},
#     {"id": "streamcopytransport", "name": "StreamCopyTransport", "anchor": "class-streamcopytransport", "kind": "class"},
#     {"id": "select-transport", "name": "select_transport", "anchor": "function-select-transport", "kind": "function"},
#     {"id": "build-outbound-url", "name": "build_outbound_url", "anchor": "function-build-outbound-url", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""HTTP transports for remote image downloads.

Responsibilities
----------------
- :class:`HttpxTransport` is the primary transport: a synchronous
  :class:`httpx.Client` with bounded timeouts, redirect following, and a
  Certifi-backed SSL context.
- :class:`StreamCopyTransport` is the basic fallback: a :mod:`requests`
  session whose body is streamed straight into the destination file.
- :func:`select_transport` picks one according to
  :class:`~ImagerKit.SourceCache.config.models.TransportConfig` and raises
  :class:`ConfigurationError` when no transport can be used.
- :func:`build_outbound_url` re-encodes path segments for origins whose URLs
  carry raw Unicode or mixed percent-encoding.

Design Notes
------------
- Transports never interpret status codes. They write whatever body the
  origin sent and report the status; the fetcher decides what is a success.
- Connection-level failures surface as :class:`TransportError` carrying the
  client's exception name as ``code``.
- Client libraries are imported on construction so that a deployment
  missing one of them still gets a clear :class:`ConfigurationError`.
"""

from __future__ import annotations

import importlib
import importlib.util
import logging
import os
import ssl
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional, Protocol
from urllib.parse import quote, unquote, urlsplit, urlunsplit

import certifi

from .config.models import TransportConfig
from .errors import ConfigurationError, TransportError

if TYPE_CHECKING:
    import httpx
    import requests

__all__ = [
    "HttpxTransport",
    "StreamCopyTransport",
    "Transport",
    "TransportResult",
    "build_outbound_url",
    "select_transport",
]

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransportResult:
    """Outcome of one download attempt that reached the origin."""

    status_code: int
    bytes_written: int
    content_type: Optional[str] = None
    final_url: Optional[str] = None


class Transport(Protocol):
    """Downloads ``url`` into ``destination`` and reports the HTTP status."""

    name: str

    def download(self, url: str, destination: Path) -> TransportResult: ...

    def close(self) -> None: ...


def _module_available(name: str) -> bool:
    return importlib.util.find_spec(name) is not None


def _build_ssl_context() -> ssl.SSLContext:
    context = ssl.create_default_context()
    context.load_verify_locations(certifi.where())
    return context


def build_outbound_url(url: str, *, raw: bool = False) -> str:
    """Return the URL handed to the transport.

    Unless ``raw`` is set, every path segment is percent-decoded and then
    percent-encoded again so ``/imágenes/a b.jpg`` and
    ``/im%C3%A1genes/a%20b.jpg`` produce the same request. The query string is
    passed through untouched.

    Examples:
        >>> build_outbound_url("https://example.com/a b/ç.jpg?x=1 2")
        'https://example.com/a%20b/%C3%A7.jpg?x=1 2'
    """

    if raw:
        return url
    base, sep, query = url.partition("?")
    parts = urlsplit(base)
    path = "/".join(quote(unquote(segment), safe="") for segment in parts.path.split("/"))
    rebuilt = urlunsplit((parts.scheme, parts.netloc, path, "", ""))
    return rebuilt + sep + query


def _write_chunks(chunks: Any, destination: Path) -> int:
    written = 0
    with open(destination, "wb") as handle:
        for chunk in chunks:
            if chunk:
                handle.write(chunk)
                written += len(chunk)
        handle.flush()
        os.fsync(handle.fileno())
    return written


class HttpxTransport:
    """Primary transport backed by :class:`httpx.Client`.

    Args:
        config: Transport configuration
        transport: Optional custom :class:`httpx.BaseTransport` (e.g. ``MockTransport``)
        client: Pre-built client; when given the transport does not close it
    """

    name = "httpx"

    def __init__(
        self,
        config: TransportConfig,
        *,
        transport: Optional["httpx.BaseTransport"] = None,
        client: Optional["httpx.Client"] = None,
    ) -> None:
        self._httpx = importlib.import_module("httpx")
        self._config = config
        self._owns_client = client is None
        self._client = client if client is not None else self._build_client(transport)

    def _build_client(self, transport: Optional["httpx.BaseTransport"]) -> "httpx.Client":
        httpx = self._httpx
        config = self._config
        return httpx.Client(
            timeout=httpx.Timeout(config.timeout_s, connect=config.connect_timeout_s),
            follow_redirects=config.follow_redirects,
            max_redirects=config.max_redirects,
            verify=_build_ssl_context() if config.verify_tls else False,
            headers=dict(config.headers),
            transport=transport,
        )

    def download(self, url: str, destination: Path) -> TransportResult:
        httpx = self._httpx
        try:
            with self._client.stream("GET", url) as response:
                written = _write_chunks(
                    response.iter_bytes(self._config.chunk_size_bytes), destination
                )
                return TransportResult(
                    status_code=response.status_code,
                    bytes_written=written,
                    content_type=response.headers.get("content-type"),
                    final_url=str(response.url),
                )
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise TransportError(type(exc).__name__, str(exc) or repr(exc)) from exc

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


class StreamCopyTransport:
    """Basic fallback transport that stream-copies a :mod:`requests` response body.

    Args:
        config: Transport configuration
        session: Optional pre-built session (or compatible test double)
    """

    name = "stream"

    def __init__(self, config: TransportConfig, *, session: Optional["requests.Session"] = None) -> None:
        self._requests = importlib.import_module("requests")
        self._config = config
        self._owns_session = session is None
        self._session = session if session is not None else self._requests.Session()
        if self._owns_session:
            self._session.max_redirects = config.max_redirects

    def download(self, url: str, destination: Path) -> TransportResult:
        requests = self._requests
        config = self._config
        try:
            with self._session.get(
                url,
                stream=True,
                timeout=(config.connect_timeout_s, config.timeout_s),
                allow_redirects=config.follow_redirects,
                headers=dict(config.headers),
                verify=certifi.where() if config.verify_tls else False,
            ) as response:
                written = _write_chunks(
                    response.iter_content(chunk_size=config.chunk_size_bytes), destination
                )
                return TransportResult(
                    status_code=int(response.status_code),
                    bytes_written=written,
                    content_type=response.headers.get("Content-Type"),
                    final_url=getattr(response, "url", url),
                )
        except requests.RequestException as exc:
            raise TransportError(type(exc).__name__, str(exc) or repr(exc)) from exc

    def close(self) -> None:
        if self._owns_session:
            self._session.close()


def select_transport(config: TransportConfig) -> Transport:
    """Build the transport ``config`` asks for.

    ``auto``/``httpx`` use :class:`HttpxTransport` when httpx is importable.
    Otherwise (or for ``stream``) :class:`StreamCopyTransport` is used, when
    ``requests`` is importable and the fallback is allowed.

    Raises:
        ConfigurationError: If no transport is available.
    """

    if config.preferred != "stream":
        if _module_available("httpx"):
            return HttpxTransport(config)
        LOGGER.warning(
            "httpx is not installed; remote downloads need the stream-copy fallback",
            extra={"extra_fields": {"allow_stream_fallback": config.allow_stream_fallback}},
        )

    stream_allowed = config.preferred == "stream" or config.allow_stream_fallback
    if stream_allowed and _module_available("requests"):
        return StreamCopyTransport(config)

    raise ConfigurationError(
        "No HTTP transport is available to download remote images. Install httpx, "
        "or install requests and enable transport.allow_stream_fallback."
    )
