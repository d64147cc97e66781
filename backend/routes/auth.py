"""
Workflow Hub - Auth Router

Login for configured users and bearer-token actor resolution.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel
import jwt as pyjwt

from services.workflow_config import AUTH_USERS, JWT_SECRET, JWT_TTL_SECONDS
from services.workflow_models import Actor

router = APIRouter(prefix="/auth", tags=["auth"])

bearer_scheme = HTTPBearer(auto_error=False)


class LoginRequest(BaseModel):
    username: str
    password: str


def _find_user(username: str) -> Optional[Dict[str, Any]]:
    for user in AUTH_USERS:
        if user.get("username") == username:
            return user
    return None


def create_token(actor: Actor) -> str:
    payload = {
        "sub": actor.identity,
        "name": actor.name,
        "role": actor.role,
        "phone": actor.phone,
        "verified": actor.verified,
        "exp": datetime.now(timezone.utc).timestamp() + JWT_TTL_SECONDS,
    }
    return pyjwt.encode(payload, JWT_SECRET, algorithm="HS256")


def decode_token(token: str) -> Actor:
    try:
        claims = pyjwt.decode(token, JWT_SECRET, algorithms=["HS256"])
    except pyjwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except pyjwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    return Actor(
        identity=claims.get("sub", ""),
        role=claims.get("role", ""),
        name=claims.get("name"),
        phone=claims.get("phone"),
        verified=bool(claims.get("verified", False)),
    )


async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Actor:
    """FastAPI dependency: the Actor carried by the bearer token."""
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return decode_token(credentials.credentials)


@router.post("/login")
async def login(req: LoginRequest):
    """Authenticate user and return JWT token."""
    user = _find_user(req.username)
    if user is None or user.get("password") != req.password:
        raise HTTPException(status_code=401, detail="Invalid credentials")

    actor = Actor.from_dict(user)
    return {"token": create_token(actor), "user": actor.to_dict()}


@router.get("/me")
async def get_me(actor: Actor = Depends(get_current_actor)):
    """Current user as carried by the token."""
    return actor.to_dict()
