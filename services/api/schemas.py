from __future__ import annotations

from pydantic import BaseModel, Field


class RegisterUserRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str


class RegisterUserResponse(BaseModel):
    username: str


class PasteListResponse(BaseModel):
    ids: list[str]
