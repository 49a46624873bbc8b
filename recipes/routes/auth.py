from __future__ import annotations
from typing import Optional
from pydantic import BaseModel, EmailStr
from fastapi import APIRouter, HTTPException, Body, Depends

from ..config import Settings
from ..schemas import Actor
from ..security import create_access_token
from .recipes import get_settings

router = APIRouter(prefix="/auth", tags=["auth"])


class LoginRequest(BaseModel):
    email: EmailStr
    role: str = "PARENT"
    family_id: str
    dev_pin: Optional[str] = None


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: str
    role: str
    family_id: str


@router.post("/login", response_model=LoginResponse, summary="Login (modo dev) con PIN para emitir JWT")
def login_dev(
    req: LoginRequest = Body(..., examples=[
        {"email": "ana@example.com", "role": "PARENT", "family_id": "fam-1", "dev_pin": "000000"}
    ]),
    settings: Settings = Depends(get_settings),
):
    pin = req.dev_pin or ""
    if not settings.auth_dev_pin or pin != settings.auth_dev_pin:
        raise HTTPException(status_code=401, detail="Invalid PIN")
    actor = Actor(user_id=req.email.lower(), role=req.role, family_id=req.family_id)
    token = create_access_token(settings, actor)
    return LoginResponse(access_token=token, user_id=actor.user_id, role=actor.role, family_id=actor.family_id)
