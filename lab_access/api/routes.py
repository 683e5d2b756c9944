"""
FastAPI routes for the lab access service.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from lab_access.core.config import AppSettings
from lab_access.dependencies import (
    SettingsDependency,
    get_oauth_state_service,
    get_relay_page_renderer,
    get_slack_login_service,
    get_slack_oauth_client,
)
from lab_access.schemas import AuthErrorPayload, AuthSuccessPayload, StateIssueResponse
from lab_access.services.slack_login import LoginError

router = APIRouter()
logger = logging.getLogger(__name__)

_NO_STORE_HEADERS = {
    "Cache-Control": "no-store",
    "Pragma": "no-cache",
    "Referrer-Policy": "no-referrer",
}

UNEXPECTED_ERROR_MESSAGE = "内部サーバーエラーが発生しました。時間をおいて再度お試しください。"


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck(settings: AppSettings = SettingsDependency) -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok", "environment": settings.environment}


@router.post(
    "/auth/slack/state",
    status_code=HTTPStatus.OK,
    response_model=StateIssueResponse,
    response_model_by_alias=True,
)
async def issue_slack_oauth_state(
    state_service: Annotated[Any, Depends(get_oauth_state_service)],
    oauth_client: Annotated[Any, Depends(get_slack_oauth_client)],
    renderer: Annotated[Any, Depends(get_relay_page_renderer)],
) -> StateIssueResponse:
    """Issue a signed state token for the login popup to carry through Slack."""
    state = state_service.generate()
    return StateIssueResponse(
        success=True,
        state=state,
        expires_in=state_service.expires_in,
        authorize_url=oauth_client.build_authorization_url(state=state),
        relay=renderer.client_config(),
    )


@router.get("/auth/slack/authorize", status_code=HTTPStatus.OK)
async def start_slack_oauth_flow(
    request: Request,
    state_service: Annotated[Any, Depends(get_oauth_state_service)],
    oauth_client: Annotated[Any, Depends(get_slack_oauth_client)],
    redirect: bool = Query(
        default=False,
        description="When true, respond with a redirect to the Slack consent screen.",
    ),
) -> Any:
    """
    Kick off the OAuth flow by generating a state token and authorization URL.
    """
    state = state_service.generate()
    authorization_url = oauth_client.build_authorization_url(state=state)

    accept_header = request.headers.get("accept", "")
    wants_html = "text/html" in accept_header.lower()
    if redirect or wants_html:
        return RedirectResponse(url=authorization_url, status_code=HTTPStatus.TEMPORARY_REDIRECT)

    return {"authorization_url": authorization_url, "state": state}


@router.get("/auth/slack/callback", response_class=HTMLResponse)
async def handle_slack_oauth_callback(
    login_service: Annotated[Any, Depends(get_slack_login_service)],
    renderer: Annotated[Any, Depends(get_relay_page_renderer)],
    code: str | None = Query(default=None, description="Authorization code from Slack."),
    state: str | None = Query(default=None, description="OAuth state token."),
) -> HTMLResponse:
    """Complete the Slack login and relay the outcome to the opener window.

    Every outcome, including unexpected failures, is rendered as a relay page
    so the opener is never left waiting for its timeout.
    """
    try:
        result = await login_service.complete(code, state)
    except LoginError as exc:
        page = renderer.render_error(AuthErrorPayload(error=exc.message, state=exc.state))
        return HTMLResponse(page, status_code=exc.status_code, headers=_NO_STORE_HEADERS)
    except Exception:  # pylint: disable=broad-except
        logger.exception("Unexpected failure while completing Slack login")
        page = renderer.render_error(
            AuthErrorPayload(error=UNEXPECTED_ERROR_MESSAGE, state=state)
        )
        return HTMLResponse(
            page, status_code=HTTPStatus.INTERNAL_SERVER_ERROR, headers=_NO_STORE_HEADERS
        )

    payload = AuthSuccessPayload(
        user=result.identity, is_new_user=result.is_new_user, state=state
    )
    return HTMLResponse(renderer.render_success(payload), headers=_NO_STORE_HEADERS)


async def relay_bridge_page(
    renderer: Annotated[Any, Depends(get_relay_page_renderer)],
) -> HTMLResponse:
    """Fallback landing page that stores a relayed payload for the opener."""
    return HTMLResponse(renderer.render_bridge(), headers=_NO_STORE_HEADERS)


__all__ = ["relay_bridge_page", "router"]
