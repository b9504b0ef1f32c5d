"""Data models for the Salesforce REST API."""

from datetime import datetime, timedelta
from typing import List, Optional, Any, Dict
from pydantic import BaseModel, Field, field_validator

DEFAULT_TOKEN_LIFETIME = 7200


class TokenResponse(BaseModel):
    """Response from the OAuth2 token endpoint."""
    access_token: str
    instance_url: Optional[str] = None
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = None
    token_type: Optional[str] = "Bearer"

    @field_validator('expires_in', mode='before')
    @classmethod
    def validate_expires_in(cls, v):
        # Some token endpoints send the lifetime as a string
        if v in (None, ""):
            return None
        return int(v)


class OAuthToken(BaseModel):
    """Cached credential shared by every client in the process."""
    access_token: str
    expires_at: datetime
    refresh_token: Optional[str] = None
    instance_url: Optional[str] = None

    @classmethod
    def from_response(cls, response: TokenResponse, now: datetime,
                      previous_refresh_token: Optional[str] = None) -> "OAuthToken":
        lifetime = response.expires_in or DEFAULT_TOKEN_LIFETIME
        return cls(
            access_token=response.access_token,
            expires_at=now + timedelta(seconds=lifetime),
            # Refresh-token grants usually do not rotate the refresh token
            refresh_token=response.refresh_token or previous_refresh_token,
            instance_url=response.instance_url,
        )

    def is_valid(self, now: datetime, leeway_seconds: int = 60) -> bool:
        return bool(self.access_token) and now + timedelta(seconds=leeway_seconds) < self.expires_at


class UpsertResult(BaseModel):
    """Outcome of an external-id upsert."""
    remote_id: str
    created: bool


class RemoteError(BaseModel):
    """One entry of a Salesforce error response body."""
    message: str = "Unknown error"
    errorCode: Optional[str] = None
    fields: List[str] = Field(default_factory=list)


class QueryResponse(BaseModel):
    """Response from the SOQL query endpoint."""
    totalSize: int = 0
    done: bool = True
    records: List[Dict[str, Any]] = Field(default_factory=list)
    nextRecordsUrl: Optional[str] = None


class ConnectionCheck(BaseModel):
    """Result of a connectivity test."""
    success: bool
    message: str
    failure_kind: Optional[str] = None
    organization_id: Optional[str] = None
    instance_url: Optional[str] = None
