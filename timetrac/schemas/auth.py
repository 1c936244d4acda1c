from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class Credentials(BaseModel):
    email: str
    password: str

    model_config = {
        "json_schema_extra": {
            "example": {"email": "dev@example.com", "password": "s3cret-pass"}
        }
    }


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    created_at: datetime
    updated_at: datetime


class AuthResponse(BaseModel):
    user: UserOut
    token: str
    token_type: str = "bearer"
    expires_at: datetime

    model_config = {
        "json_schema_extra": {
            "example": {
                "user": {
                    "id": "6d1f0c7e-0d8b-4a53-9a57-0c9f3f7f2b11",
                    "email": "dev@example.com",
                    "created_at": "2025-09-10T08:00:00Z",
                    "updated_at": "2025-09-10T08:00:00Z",
                },
                "token": "<jwt>",
                "token_type": "bearer",
                "expires_at": "2025-09-11T08:00:00Z",
            }
        }
    }


class LogoutResponse(BaseModel):
    status: str = "logged out"
