import hashlib
import secrets
from typing import Optional


def generate_api_key() -> str:
    """Generate a new API key (64 hex chars)."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """Hash a token for secure storage."""
    return hashlib.sha256(token.encode()).hexdigest()


def parse_api_key(authorization: Optional[str], query_key: Optional[str]) -> Optional[str]:
    """
    Extract the API key from a request.

    The Authorization header wins over the ``api_key`` query parameter.
    Accepted header forms: ``Bearer <key>``, ``access_token=<key>`` (sent by
    butler) or the bare key. The query parameter may carry the
    ``access_token=`` prefix as well.
    """
    if authorization:
        if authorization.startswith("Bearer "):
            return authorization[len("Bearer "):].strip() or None
        if authorization.startswith("access_token="):
            return authorization[len("access_token="):].strip() or None
        return authorization.strip() or None

    if query_key:
        if query_key.startswith("access_token="):
            return query_key[len("access_token="):] or None
        return query_key

    return None
