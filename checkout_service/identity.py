"""
identity.py — Identity Context

Resolves the authenticated actor (id and role) for every request from an HS256
bearer token. Token issuance belongs to the authentication service; `create_token`
exists for tooling and tests.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from . import config

security = HTTPBearer()


class Role(str, Enum):
    CUSTOMER = "customer"
    SUPPLIER = "supplier"
    ADMIN = "admin"


@dataclass(frozen=True)
class Actor:
    id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def create_token(user_id: str, role: str, expires_in: timedelta = timedelta(days=7)) -> str:
    exp = datetime.now(timezone.utc) + expires_in
    return jwt.encode({"id": user_id, "role": role, "exp": exp}, config.JWT_SECRET, algorithm=config.JWT_ALGO)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


async def get_current_actor(credentials: HTTPAuthorizationCredentials = Depends(security)) -> Actor:
    payload = decode_token(credentials.credentials)
    user_id = payload.get("id")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token payload")
    try:
        role = Role(payload.get("role"))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token role")
    return Actor(id=user_id, role=role)
