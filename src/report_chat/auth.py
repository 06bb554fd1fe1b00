"""Authentication header resolution for chat requests."""

from __future__ import annotations

import inspect
from typing import Annotated, Any, Awaitable, Callable, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_API_KEY_HEADER = "X-Project-Key"

TokenFactory = Callable[[], Union[str, Awaitable[str]]]
HeaderHandler = Callable[[dict[str, str]], Optional[Awaitable[None]]]


class ApiKeyAuth(BaseModel):
    """Send a project key in a fixed header."""

    type: Literal["api-key"] = "api-key"
    key: str
    header_name: str = DEFAULT_API_KEY_HEADER


class BearerAuth(BaseModel):
    """Send ``Authorization: Bearer <token>``; the token may be computed per turn."""

    type: Literal["bearer"] = "bearer"
    token: Union[str, TokenFactory]

    model_config = ConfigDict(arbitrary_types_allowed=True)


class CustomAuth(BaseModel):
    """Let the caller mutate the header mapping directly."""

    type: Literal["custom"] = "custom"
    handler: HeaderHandler

    model_config = ConfigDict(arbitrary_types_allowed=True)


class NoAuth(BaseModel):
    type: Literal["none"] = "none"


AuthConfig = Annotated[
    Union[ApiKeyAuth, BearerAuth, CustomAuth, NoAuth], Field(discriminator="type")
]


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


async def resolve_auth_headers(auth: Optional[AuthConfig]) -> dict[str, str]:
    """Build the auth headers for one request.

    Token factories and custom handlers run on every call so short-lived
    credentials are refreshed per turn. Failures propagate to the caller.
    """

    headers: dict[str, str] = {}
    if auth is None or isinstance(auth, NoAuth):
        return headers

    if isinstance(auth, ApiKeyAuth):
        headers[auth.header_name] = auth.key
    elif isinstance(auth, BearerAuth):
        token = auth.token() if callable(auth.token) else auth.token
        token = await _maybe_await(token)
        headers["Authorization"] = f"Bearer {token}"
    elif isinstance(auth, CustomAuth):
        await _maybe_await(auth.handler(headers))
    return headers


__all__ = [
    "ApiKeyAuth",
    "AuthConfig",
    "BearerAuth",
    "CustomAuth",
    "DEFAULT_API_KEY_HEADER",
    "NoAuth",
    "resolve_auth_headers",
]
