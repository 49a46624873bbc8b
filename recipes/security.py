from __future__ import annotations
from typing import Optional, Dict, Any
from datetime import datetime, timedelta, timezone

import jwt
from fastapi import Header, HTTPException, Request

from .config import Settings
from .schemas import Actor

ALGO = "HS256"


def create_access_token(settings: Settings, actor: Actor, expires_minutes: int | None = None) -> str:
    exp_minutes = expires_minutes or settings.jwt_expire_minutes
    now = datetime.now(tz=timezone.utc)
    payload: Dict[str, Any] = {
        "sub": actor.user_id,
        "role": actor.role,
        "family_id": actor.family_id,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=exp_minutes)).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=ALGO)


def _decode_jwt(settings: Settings, token: str) -> Actor:
    try:
        data = jwt.decode(token, settings.jwt_secret, algorithms=[ALGO])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")
    sub, role, family = data.get("sub"), data.get("role"), data.get("family_id")
    if not all(isinstance(v, str) and v for v in (sub, role, family)):
        raise HTTPException(status_code=401, detail="Invalid token payload")
    return Actor(user_id=sub, role=role, family_id=family)


def _extract_token(x_api_key: Optional[str], authorization: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    """
    Devuelve (api_key, bearer_token)
    """
    api_key = x_api_key.strip() if x_api_key else None
    bearer = None
    if authorization:
        parts = authorization.split(" ", 1)
        if len(parts) == 2 and parts[0].lower() == "bearer":
            bearer = parts[1].strip()
    return api_key or None, bearer or None


def get_current_actor(
    request: Request,
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> Actor:
    settings: Settings = request.app.state.settings
    api_key, bearer = _extract_token(x_api_key, authorization)
    # 1) JWT Bearer
    if bearer:
        return _decode_jwt(settings, bearer)

    # 2) API Key (dev / backend-to-backend)
    if api_key:
        entry = settings.parsed_api_keys().get(api_key)
        if not entry:
            raise HTTPException(status_code=401, detail="Invalid API key")
        user_id, role, family_id = entry
        return Actor(user_id=user_id, role=role, family_id=family_id)

    # 3) Fallback dev (si está configurado)
    if settings.auth_fallback_user:
        return Actor(
            user_id=settings.auth_fallback_user,
            role=settings.auth_fallback_role,
            family_id=settings.auth_fallback_family,
        )

    raise HTTPException(status_code=401, detail="Missing credentials")
