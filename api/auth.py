"""Bearer-token identity for REST routes and sockets."""
from __future__ import annotations

from typing import Mapping, Optional, Protocol

from fastapi import Header, HTTPException, Request
from starlette.requests import HTTPConnection

from config.settings import settings


class IdentityProvider(Protocol):
    def verify(self, token: str) -> Optional[str]: ...


class StaticTokenIdentity:
    """Token table identity; defaults to ``settings.AUTH_TOKENS``."""

    def __init__(self, tokens: Optional[Mapping[str, str]] = None) -> None:
        self._tokens = dict(settings.AUTH_TOKENS if tokens is None else tokens)

    def verify(self, token: str) -> Optional[str]:
        if not token:
            return None
        return self._tokens.get(token)


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


def connection_token(conn: HTTPConnection) -> Optional[str]:
    """Token from ``?token=`` or the Authorization header."""

    token = conn.query_params.get("token")
    if token:
        return token
    return bearer_token(conn.headers.get("authorization"))


def identify(conn: HTTPConnection) -> Optional[str]:
    identity: IdentityProvider = conn.app.state.identity
    token = connection_token(conn)
    return identity.verify(token) if token else None


def optional_user(request: Request, authorization: Optional[str] = Header(default=None)) -> Optional[str]:
    return identify(request)


def current_user(request: Request, authorization: Optional[str] = Header(default=None)) -> str:
    user_id = identify(request)
    if user_id is None:
        raise HTTPException(status_code=401, detail={"kind": "unauthorized", "message": "missing or invalid token"})
    return user_id


__all__ = [
    "IdentityProvider",
    "StaticTokenIdentity",
    "bearer_token",
    "connection_token",
    "current_user",
    "identify",
    "optional_user",
]
