"""Authentication type definitions."""

from __future__ import annotations

from typing import Callable, NamedTuple, Sequence


class AccessToken(NamedTuple):
    """Bearer token handed to the Graph client by the host application."""

    token: str
    """The token string."""

    expires_on: int
    """The token's expiration time in Unix time."""


TokenProvider = Callable[[Sequence[str]], AccessToken]


__all__ = ["AccessToken", "TokenProvider"]
