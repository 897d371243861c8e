"""
Bearer-token authentication.

Tokens are Supabase-issued JWTs: HS256, signed with the project JWT secret,
audience ``authenticated``.  The ``sub`` claim is the user id used to scope
execution, cache and audit rows.
"""
from __future__ import annotations

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from src.core.config import get_settings
from src.core.errors import AuthError
from src.core.logging import get_logger

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


class AuthenticatedUser(BaseModel):
    id: str
    email: str | None = None
    role: str | None = None


def decode_token(token: str) -> dict:
    """Verify *token* and return its claims.

    Raises
    ------
    AuthError
        Secret not configured, token expired, or token invalid.
    """
    settings = get_settings()
    if not settings.supabase_jwt_secret:
        logger.error("supabase_jwt_secret is not set -- rejecting all requests")
        raise AuthError("Autenticação não configurada")
    try:
        return jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthError("Token expirado") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthError(f"Token inválido: {exc}") from exc


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> AuthenticatedUser:
    """FastAPI dependency: the user behind the ``Authorization`` header."""
    if credentials is None or not credentials.credentials:
        raise AuthError("Não autorizado")
    claims = decode_token(credentials.credentials)
    user_id = claims.get("sub")
    if not user_id:
        raise AuthError("Token sem identificação de usuário")
    return AuthenticatedUser(id=str(user_id), email=claims.get("email"), role=claims.get("role"))
