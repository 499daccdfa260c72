"""
Schemas for the MT5 API.

Request fields are optional at the schema level so that missing values
are reported by the lifecycle layer as a 400 ValidationError with the
usual ``{"success": false, ...}`` envelope.
"""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class ConnectRequest(BaseModel):
    """Credentials of the MT5 account to connect."""
    model_config = ConfigDict(extra="ignore")

    server: str | None = None
    login: str | int | None = None
    password: str | None = None


class DisconnectRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    accountId: str | None = None


class ErrorResponse(BaseModel):
    """Failure envelope shared by every endpoint."""
    success: bool = False
    error: str
    errorType: str
    message: str

    @classmethod
    def build(cls, error_type: str, message: str) -> "ErrorResponse":
        return cls(error=message, errorType=error_type, message=message)

