"""
Authentication session model.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class AuthSession(BaseModel):
    """The signed-in user as reported by the financial data backend."""
    user_id: str = Field(..., description="Backend user identifier")
    email: Optional[str] = None
    created_at: Optional[datetime] = None
    last_sign_in_at: Optional[datetime] = None
    access_token: Optional[str] = Field(default=None, repr=False)
