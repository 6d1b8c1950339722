"""
Auth Schemas
Models for connecting and disconnecting a Google account
"""
from typing import List
from pydantic import BaseModel, Field


class CodeExchangeRequest(BaseModel):
    """Authorization code returned to the frontend by Google's consent screen."""
    code: str = Field(..., min_length=1)
    redirect_uri: str = Field(..., min_length=1)


class ConnectionResponse(BaseModel):
    status: str  # "connected", "disconnected"
    provider: str = "google"
    scopes: List[str] = []
