"""Access-key authentication for the Field Capture API.

Clients send `Authorization: Bearer <key>`. A key is an HS256 JWT whose
`role` claim is one of ALLOWED_ROLES.
"""
from datetime import datetime, timedelta
from typing import Optional

from fastapi import HTTPException, Request
from jose import JWTError, jwt

from config import settings

ALGORITHM = "HS256"
ALLOWED_ROLES = ("anon", "service_role")


def create_access_token(role: str = "anon", expires_days: Optional[int] = None) -> str:
    to_encode = {"role": role, "iat": datetime.utcnow()}
    if expires_days:
        to_encode["exp"] = datetime.utcnow() + timedelta(days=expires_days)
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=ALGORITHM)


def require_client(request: Request) -> str:
    """Dependency: validate the bearer key and return its role."""
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid access key")

    role = payload.get("role")
    if role not in ALLOWED_ROLES:
        raise HTTPException(status_code=403, detail="Access key role not allowed")
    return role
