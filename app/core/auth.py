"""
Authentication for landlord requests.

The dashboard signs landlords in through Supabase and forwards the access
token as a Bearer header. Tokens are verified with the project's shared
HS256 secret when SUPABASE_JWT_SECRET is set; otherwise against the
project's published JWKS (ES256/RS256), which is fetched once and cached.
"""
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from typing import Optional
import requests
from app.core.config import settings

security = HTTPBearer()


class User:
    """Authenticated identity taken from the token claims."""
    def __init__(self, user_id: str, email: Optional[str] = None, role: Optional[str] = None):
        self.id = user_id
        self.email = email
        self.role = role or "authenticated"


_jwks_cache = None


def get_supabase_jwks() -> dict:
    global _jwks_cache

    if _jwks_cache is not None:
        return _jwks_cache

    try:
        jwks_url = f"{settings.SUPABASE_URL}/auth/v1/.well-known/jwks.json"
        response = requests.get(jwks_url, timeout=10)
        response.raise_for_status()
        _jwks_cache = response.json()
        return _jwks_cache
    except requests.RequestException as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Failed to fetch JWKS from Supabase: {str(e)}",
        )


def verify_token(token: str) -> dict:
    """
    Verify a Supabase access token and return its claims.

    Raises:
        HTTPException 401 if the token is expired, malformed or signed by
        another key.
    """
    try:
        if settings.SUPABASE_JWT_SECRET:
            key, algorithms = settings.SUPABASE_JWT_SECRET, ["HS256"]
        else:
            key, algorithms = get_supabase_jwks(), ["ES256", "RS256"]
        return jwt.decode(
            token,
            key,
            algorithms=algorithms,
            audience="authenticated",
            options={"verify_aud": True},
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid authentication credentials: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> User:
    """FastAPI dependency: the caller's identity, or 401."""
    payload = verify_token(credentials.credentials)

    # Supabase puts the auth user id in "sub"
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate user",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return User(user_id=user_id, email=payload.get("email"), role=payload.get("role"))
