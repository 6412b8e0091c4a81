import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
JWT_ALGO = "HS256"
TOKEN_TTL_DAYS = 7
ROLES = ("user", "seller", "admin")

security = HTTPBearer()


@dataclass(frozen=True)
class AuthScope:
    """Who is calling, computed once per request and passed to every service call."""

    user_id: str
    role: str = "user"
    segment_ids: List[str] = field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_seller(self) -> bool:
        return self.role == "seller"

    @property
    def is_customer(self) -> bool:
        return self.role == "user"


def create_token(payload: dict) -> str:
    exp = datetime.now(timezone.utc) + timedelta(days=TOKEN_TTL_DAYS)
    to_encode = {**payload, "exp": exp}
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGO)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def scope_from_token(token: str) -> AuthScope:
    payload = decode_token(token)
    user_id = payload.get("id")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token payload")
    role = payload.get("role", "user")
    if role not in ROLES:
        raise HTTPException(status_code=401, detail="Invalid token role")
    return AuthScope(user_id=str(user_id), role=role, segment_ids=list(payload.get("segment_ids") or []))


async def get_scope(credentials: HTTPAuthorizationCredentials = Depends(security)) -> AuthScope:
    return scope_from_token(credentials.credentials)


def require_roles(*roles: str):
    async def dependency(scope: AuthScope = Depends(get_scope)) -> AuthScope:
        if scope.role not in roles:
            raise HTTPException(status_code=403, detail="Role not allowed")
        return scope

    return dependency
