from datetime import date
from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6, max_length=200)
    name: str = Field(min_length=2, max_length=80)
    alias: Optional[str] = Field(default=None, max_length=40)
    fecha_ingreso: Optional[date] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str
