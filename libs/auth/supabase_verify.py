# libs/auth/supabase_verify.py
"""
Supabase access-token verification for FastAPI.

- verify_token:      FastAPI dependency returning the verified JWT claims
- get_current_user:  FastAPI dependency returning a CurrentUser (claims + raw token)

Env vars:
- SUPABASE_JWT_SECRET    project JWT secret (HS256)
- SUPABASE_JWT_AUDIENCE  expected audience (default "authenticated")
"""

import os
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from common.constants import JWT_ALGORITHMS, JWT_AUDIENCE

# ---------- Security scheme ----------
security = HTTPBearer()


@dataclass
class CurrentUser:
    user_id: str
    email: Optional[str]
    access_token: str


def decode_access_token(token: str) -> dict:
    """Decode and verify a Supabase access token. Raises jwt.PyJWTError."""
    secret = os.getenv("SUPABASE_JWT_SECRET")
    if not secret:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="SUPABASE_JWT_SECRET is not configured",
        )
    return jwt.decode(
        token,
        secret,
        algorithms=JWT_ALGORITHMS,
        audience=JWT_AUDIENCE,
        options={"require": ["exp", "sub"]},
    )


def verify_token(credentials: HTTPAuthorizationCredentials = Depends(security)) -> dict:
    """
    Verify a JWT issued by Supabase auth.
    Use as a FastAPI dependency on protected routes.
    """
    try:
        return decode_access_token(credentials.credentials)
    except jwt.ExpiredSignatureError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired"
        ) from e
    except jwt.InvalidAudienceError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid audience"
        ) from e
    except jwt.PyJWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Token verification failed: {e}",
        ) from e


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> CurrentUser:
    """Verified caller identity plus the raw token for calls made on their behalf."""
    payload = verify_token(credentials)
    return CurrentUser(
        user_id=payload["sub"],
        email=payload.get("email"),
        access_token=credentials.credentials,
    )
