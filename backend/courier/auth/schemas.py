"""Pydantic schemas for signup, login and user listing."""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class Credentials(BaseModel):
    """Request body for signup and login.

    Both fields are optional at the schema level so the router can answer
    missing values with a 400 and a readable message.
    """
    email: Optional[str] = Field(default=None, max_length=254)
    password: Optional[str] = Field(default=None, max_length=1024)


class User(BaseModel):
    """Public view of a registered user (never includes the hash)."""
    id: str
    email: str
    createdAt: datetime


class LoginResponse(BaseModel):
    token: str
    userId: str
