"""Hashed single-use token issuance and redemption."""

from .models import DEFAULT_TOKEN_TTLS, IssuedToken, StoredToken, TokenPurpose
from .service import TokenRepository, TokenService, hash_token

__all__ = [
    "DEFAULT_TOKEN_TTLS",
    "IssuedToken",
    "StoredToken",
    "TokenPurpose",
    "TokenRepository",
    "TokenService",
    "hash_token",
]
