"""
verify.py
---------
Purpose:
    JWT verification for the agent routes (HS256, shared secret).

Notes:
    - Tokens carry `sub` (user id) and `household_id` claims.
    - Provides `auth_dependency` for protected routes and
      `household_identity` for routes scoped to a household.
"""

from dataclasses import dataclass

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from familyos.config import settings

_security = HTTPBearer()


@dataclass(slots=True, frozen=True)
class Identity:
    user_id: str
    household_id: str


def verify_jwt(token: str) -> dict:
    if not settings.JWT_SECRET:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication is not configured",
        )
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=["HS256"],
            audience=settings.JWT_AUDIENCE,
            options={"verify_exp": True, "require": ["sub", "exp"]},
        )
    except jwt.PyJWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid authentication token: {e}",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


def auth_dependency(credentials: HTTPAuthorizationCredentials = Depends(_security)) -> dict:
    return verify_jwt(credentials.credentials)


def household_identity(claims: dict = Depends(auth_dependency)) -> Identity:
    household_id = claims.get("household_id")
    if not household_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Token is not bound to a household",
        )
    return Identity(user_id=str(claims["sub"]), household_id=str(household_id))
