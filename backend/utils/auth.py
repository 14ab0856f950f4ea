"""
Authentication utilities

Signing and verification of extension session credentials, plus the
FastAPI dependencies that guard credential-protected and admin routes.
"""
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt
from datetime import datetime, timezone, timedelta
import os

security = HTTPBearer()
JWT_SECRET = os.environ.get('JWT_SECRET', 'extension-access-secret-key-change-in-production')
JWT_ALGORITHM = "HS256"


def sign_token(payload: dict, ttl_seconds: int, now: datetime = None) -> str:
    """Sign `payload` with issued-at and expiry claims added."""
    now = now or datetime.now(timezone.utc)
    claims = dict(payload)
    claims["iat"] = int(now.timestamp())
    claims["exp"] = int((now + timedelta(seconds=ttl_seconds)).timestamp())
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    """Verify signature and expiry. Raises jwt.InvalidTokenError subclasses."""
    return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])


async def get_current_session(credentials: HTTPAuthorizationCredentials = Depends(security)):
    """Verify a session credential and return its claims"""
    try:
        payload = decode_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    if not payload.get("session_id") or not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid token")
    return payload


async def get_admin_user(credentials: HTTPAuthorizationCredentials = Depends(security)):
    """Check the bearer token carries the admin flag"""
    try:
        payload = decode_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    if not payload.get("is_admin"):
        raise HTTPException(status_code=403, detail="Admin access required")
    return payload
