"""Caller identity resolution for the roster API."""
from __future__ import annotations

import secrets
from typing import Mapping, Optional

from fastapi import Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .models import Caller


class TokenIdentity:
    """Map bearer tokens to caller ids using constant-time comparisons.

    The dependency never rejects a request itself. It returns ``None`` when
    no known token is presented and leaves the decision to the operations
    that require an authenticated caller.
    """

    def __init__(self, tokens: Mapping[str, int]) -> None:
        self._tokens = {token.strip(): int(caller_id) for token, caller_id in tokens.items() if token.strip()}
        self._bearer = HTTPBearer(auto_error=False)

    async def __call__(self, request: Request) -> Optional[Caller]:
        credentials: HTTPAuthorizationCredentials | None = await self._bearer(request)  # type: ignore[assignment]
        if credentials is None or credentials.scheme.lower() != "bearer":
            return None

        provided = credentials.credentials
        for token, caller_id in self._tokens.items():
            if secrets.compare_digest(provided.encode("utf-8"), token.encode("utf-8")):
                return Caller(id=caller_id)
        return None


__all__ = ["TokenIdentity"]
