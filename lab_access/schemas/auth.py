"""Schemas related to the Slack OAuth flow."""

from __future__ import annotations

from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from lab_access.models.users import SlackIdentity

SUCCESS_TYPE = "SLACK_AUTH_SUCCESS"
ERROR_TYPE = "SLACK_AUTH_ERROR"


class RelayClientConfig(BaseModel):
    """Relay parameters the opener-side listener must share with the server."""

    model_config = ConfigDict(populate_by_name=True)

    storage_key: str = Field(..., alias="storageKey")
    timeout_ms: int = Field(..., alias="timeoutMs")
    close_grace_ms: int = Field(..., alias="closeGraceMs")


class StateIssueResponse(BaseModel):
    """Response body of the state issuance endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    state: str = Field(..., description="Signed anti-CSRF token.")
    expires_in: int = Field(..., alias="expiresIn")
    authorize_url: str = Field(..., alias="authorizeUrl")
    relay: RelayClientConfig


class AuthSuccessPayload(BaseModel):
    """Relayed to the opener when the login completed."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["SLACK_AUTH_SUCCESS"] = SUCCESS_TYPE
    user: SlackIdentity
    is_new_user: bool = Field(..., alias="isNewUser")
    state: str


class AuthErrorPayload(BaseModel):
    """Relayed to the opener when the login failed."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["SLACK_AUTH_ERROR"] = ERROR_TYPE
    error: str
    state: Optional[str] = None


RelayPayload = Union[AuthSuccessPayload, AuthErrorPayload]


__all__ = [
    "AuthErrorPayload",
    "AuthSuccessPayload",
    "ERROR_TYPE",
    "RelayClientConfig",
    "RelayPayload",
    "SUCCESS_TYPE",
    "StateIssueResponse",
]
