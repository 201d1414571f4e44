from __future__ import annotations

from .client import IdentityClient, IdentityError, IdentityUser, TokenSession

__all__ = ["IdentityClient", "IdentityError", "IdentityUser", "TokenSession"]
