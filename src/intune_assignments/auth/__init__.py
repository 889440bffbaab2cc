"""Token types shared with the host application that owns sign-in."""

from .types import AccessToken, TokenProvider

__all__ = ["AccessToken", "TokenProvider"]
