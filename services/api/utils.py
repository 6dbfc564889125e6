"""Shared utilities for API routes."""

from __future__ import annotations

import tempfile
from typing import BinaryIO, Iterator

from fastapi import Request
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from starlette.concurrency import run_in_threadpool

from core.exceptions import ConfigurationError, UnauthorizedError
from core.service import Auth, PasteService
from core.storage.local import CHUNK_SIZE

# Request bodies stay in memory up to this size, then roll over to disk
SPOOL_MAX_MEMORY = 1024 * 1024

basic_auth = HTTPBasic(auto_error=False)


def get_service(request: Request) -> PasteService:
    service = getattr(request.app.state, "service", None)
    if service is None:
        raise ConfigurationError("Paste service is not initialised")
    return service


def optional_auth(credentials: HTTPBasicCredentials | None) -> Auth | None:
    if credentials is None:
        return None
    return (credentials.username, credentials.password)


def required_auth(credentials: HTTPBasicCredentials | None) -> Auth:
    if credentials is None:
        raise UnauthorizedError("Authentication required")
    return (credentials.username, credentials.password)


async def spool_body(request: Request) -> BinaryIO:
    """Copy the request body into a spooled temporary file, rewound for reading."""
    spool = tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_MEMORY)
    try:
        async for chunk in request.stream():
            if chunk:
                spool.write(chunk)
        spool.seek(0)
    except BaseException:
        spool.close()
        raise
    return spool  # type: ignore[return-value]


def iter_file(handle: BinaryIO) -> Iterator[bytes]:
    try:
        while True:
            chunk = handle.read(CHUNK_SIZE)
            if not chunk:
                break
            yield chunk
    finally:
        handle.close()


async def persist_state(request: Request, service: PasteService) -> None:
    """Dump the registry when the app is configured to persist on every write."""
    settings = getattr(request.app.state, "settings", None)
    if settings is None or not settings.state.persist_on_write:
        return
    await run_in_threadpool(service.dump_state, settings.state.path)
