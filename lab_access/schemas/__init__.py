"""Public schema exports."""

from .auth import (
    AuthErrorPayload,
    AuthSuccessPayload,
    RelayClientConfig,
    RelayPayload,
    StateIssueResponse,
)

__all__ = [
    "AuthErrorPayload",
    "AuthSuccessPayload",
    "RelayClientConfig",
    "RelayPayload",
    "StateIssueResponse",
]
