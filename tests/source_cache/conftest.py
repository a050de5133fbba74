"""Shared fixtures for SourceCache tests."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, List, Optional

import httpx
import pytest

from ImagerKit.SourceCache.config.models import SourceCacheConfig
from ImagerKit.SourceCache.transports import HttpxTransport
from tests.source_cache.fakes import JPEG_PAYLOAD, CountingHandler, make_config


@pytest.fixture
def config(tmp_path: Path) -> SourceCacheConfig:
    return make_config(tmp_path)


@pytest.fixture
def serve():
    """Factory returning ``(transport, handler)`` for a canned response.

    Transports built through the factory are closed at teardown.
    """

    created: List[HttpxTransport] = []

    def _factory(
        config: SourceCacheConfig,
        status: int = 200,
        body: bytes = JPEG_PAYLOAD,
        *,
        responder: Optional[Callable[[httpx.Request], httpx.Response]] = None,
    ):
        def _default(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, headers={"Content-Type": "image/jpeg"}, content=body)

        handler = CountingHandler(responder or _default)
        transport = HttpxTransport(config.transport, transport=httpx.MockTransport(handler))
        created.append(transport)
        return transport, handler

    yield _factory
    for transport in created:
        transport.close()


@pytest.fixture(autouse=True)
def _reset_package_logger():
    """Undo handlers and propagation changes made by ``setup_logging`` (CLI runs)."""

    yield
    logger = logging.getLogger("ImagerKit.SourceCache")
    for handler in list(logger.handlers):
        if getattr(handler, "_imagerkit_managed", False):
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
