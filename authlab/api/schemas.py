from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

# Upper bounds only; credentials are checked by the authentication provider
MAX_USERNAME_LENGTH = 256
MAX_PASSWORD_LENGTH = 1024


class LoginRequest(BaseModel):
    username: str = Field(min_length=1, max_length=MAX_USERNAME_LENGTH)
    password: str = Field(min_length=1, max_length=MAX_PASSWORD_LENGTH)


class LoginResponse(BaseModel):
    token: str
    token_type: str = "Bearer"
    expires_in: int


class ApiResponse(BaseModel):
    message: str


class ErrorResponse(BaseModel):
    timestamp: datetime
    status: int
    error: str
    message: str
    path: str


class HealthResponse(BaseModel):
    status: str = "UP"


class InfoResponse(BaseModel):
    app: str
    version: str
    build: str
