from __future__ import annotations

import os

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import PlainTextResponse, StreamingResponse
from fastapi.security import HTTPBasicCredentials
from loguru import logger
from starlette.concurrency import run_in_threadpool

from core.service import PasteService
from services.api.schemas import PasteListResponse, RegisterUserRequest, RegisterUserResponse
from services.api.utils import (
    basic_auth,
    get_service,
    iter_file,
    optional_auth,
    persist_state,
    required_auth,
    spool_body,
)


router = APIRouter()


@router.get("/", response_class=PlainTextResponse, tags=["meta"])
async def root() -> str:
    return "Hello!"


@router.post("/paste", response_class=PlainTextResponse, status_code=status.HTTP_201_CREATED, tags=["pastes"])
async def create_paste(
    request: Request,
    credentials: HTTPBasicCredentials | None = Depends(basic_auth),
    service: PasteService = Depends(get_service),
) -> PlainTextResponse:
    """Store the raw request body and return its identifier."""
    auth = optional_auth(credentials)
    body = await spool_body(request)
    try:
        paste_id = await run_in_threadpool(service.create, body, auth)
    finally:
        body.close()
    if auth is not None:
        await persist_state(request, service)
    logger.info("Created paste {id} (owner={owner})", id=paste_id, owner=auth[0] if auth else None)
    return PlainTextResponse(paste_id, status_code=status.HTTP_201_CREATED)


@router.get("/paste/{paste_id}", tags=["pastes"])
async def get_paste(paste_id: str, service: PasteService = Depends(get_service)) -> StreamingResponse:
    handle = await run_in_threadpool(service.read, paste_id)
    try:
        size = os.fstat(handle.fileno()).st_size
    except BaseException:
        handle.close()
        raise
    return StreamingResponse(
        iter_file(handle),
        media_type="application/octet-stream",
        headers={"Content-Length": str(size)},
    )


@router.put("/paste/{paste_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["pastes"])
async def replace_paste(
    paste_id: str,
    request: Request,
    credentials: HTTPBasicCredentials | None = Depends(basic_auth),
    service: PasteService = Depends(get_service),
) -> Response:
    auth = optional_auth(credentials)
    body = await spool_body(request)
    try:
        await run_in_threadpool(service.replace, paste_id, body, auth)
    finally:
        body.close()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/paste/{paste_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["pastes"])
async def delete_paste(
    paste_id: str,
    request: Request,
    credentials: HTTPBasicCredentials | None = Depends(basic_auth),
    service: PasteService = Depends(get_service),
) -> Response:
    username, password = required_auth(credentials)
    await run_in_threadpool(service.delete, paste_id, username, password)
    await persist_state(request, service)
    logger.info("Deleted paste {id} (owner={owner})", id=paste_id, owner=username)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/pastes", response_model=PasteListResponse, tags=["pastes"])
async def list_pastes(
    credentials: HTTPBasicCredentials | None = Depends(basic_auth),
    service: PasteService = Depends(get_service),
) -> PasteListResponse:
    username, password = required_auth(credentials)
    ids = await run_in_threadpool(service.list, username, password)
    return PasteListResponse(ids=ids)


@router.post("/users", response_model=RegisterUserResponse, status_code=status.HTTP_201_CREATED, tags=["users"])
async def register_user(
    payload: RegisterUserRequest,
    request: Request,
    service: PasteService = Depends(get_service),
) -> RegisterUserResponse:
    await run_in_threadpool(service.register_user, payload.username, payload.password)
    await persist_state(request, service)
    return RegisterUserResponse(username=payload.username)
