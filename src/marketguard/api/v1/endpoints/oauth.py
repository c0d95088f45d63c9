"""OAuth sign-in endpoints.

The browser keeps an opaque session key in the ``mg_oauth_session`` cookie;
the PKCE verifier, state and nonce stay server side under that key.
"""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Query, Request, Response, status
from fastapi.responses import ORJSONResponse, RedirectResponse

from marketguard.core.exceptions import oauth_error_response
from marketguard.oauth.exceptions import OAuthError
from marketguard.oauth.flow import TokenResponse
from marketguard.observability.logging import get_logger
from marketguard.schemas.oauth import (
    OAuthCallbackResponse,
    ProvidersResponse,
    RefreshTokenRequest,
)


if TYPE_CHECKING:
    from marketguard.core.config import Settings
    from marketguard.oauth.service import OAuthService

logger = get_logger(__name__)

router = APIRouter(prefix="/oauth", tags=["oauth"])

_SESSION_KEY_BYTES = 32

# Space separated RFC 6749 scope tokens
_SCOPE_PATTERN = r"^[\x21\x23-\x5B\x5D-\x7E]+( [\x21\x23-\x5B\x5D-\x7E]+)*$"


def _service(request: Request) -> OAuthService:
    return request.app.state.oauth_service


def _set_session_cookie(response: Response, settings: Settings, key: str) -> None:
    response.set_cookie(
        settings.oauth.session_cookie,
        key,
        max_age=settings.oauth.session_ttl,
        httponly=True,
        secure=settings.is_production,
        # The provider redirect back is a cross-site top-level navigation
        samesite="lax",
    )


@router.get(
    "/providers",
    response_model=ProvidersResponse,
    summary="List sign-in providers",
)
async def list_providers(request: Request) -> ProvidersResponse:
    return ProvidersResponse(providers=_service(request).providers())


@router.get(
    "/{provider}/authorize",
    status_code=status.HTTP_302_FOUND,
    summary="Start a sign-in",
    description=(
        "Stores a fresh PKCE session under the caller's session cookie and "
        "redirects to the provider's authorization endpoint."
    ),
    response_class=RedirectResponse,
)
async def authorize(
    provider: str,
    request: Request,
    login_hint: Annotated[str | None, Query(max_length=256)] = None,
    scope: Annotated[
        str | None,
        Query(
            max_length=1024,
            pattern=_SCOPE_PATTERN,
            description="Scopes to request instead of the provider defaults",
        ),
    ] = None,
) -> RedirectResponse:
    settings: Settings = request.app.state.settings
    flow = _service(request).flow(provider)

    session_key = request.cookies.get(settings.oauth.session_cookie)
    if not session_key:
        session_key = secrets.token_urlsafe(_SESSION_KEY_BYTES)

    additional: dict[str, str] = {}
    if login_hint:
        additional["login_hint"] = login_hint
    if scope:
        additional["scope"] = scope
    url = await flow.initiate_flow(session_key, additional or None)

    response = RedirectResponse(url, status_code=status.HTTP_302_FOUND)
    _set_session_cookie(response, settings, session_key)
    return response


@router.get(
    "/{provider}/callback",
    response_model=OAuthCallbackResponse,
    response_model_exclude_none=True,
    summary="Complete a sign-in",
    description=(
        "Validates the provider redirect against the stored PKCE session and "
        "exchanges the authorization code for tokens."
    ),
)
async def callback(
    provider: str,
    request: Request,
    response: Response,
) -> OAuthCallbackResponse | ORJSONResponse:
    settings: Settings = request.app.state.settings
    flow = _service(request).flow(provider)

    # A missing cookie is reported by the engine as invalid_session
    session_key = request.cookies.get(settings.oauth.session_cookie, "")
    try:
        result = await flow.handle_callback(session_key, str(request.url))
    except OAuthError as e:
        # The stored session is gone either way
        error_response = oauth_error_response(request, e)
        error_response.delete_cookie(settings.oauth.session_cookie)
        return error_response

    response.delete_cookie(settings.oauth.session_cookie)
    response.headers["Cache-Control"] = "no-store"
    return OAuthCallbackResponse(
        provider=result.provider,
        tokens=result.tokens,
        id_token_claims=result.id_token_claims,
        user_info=result.user_info,
    )


@router.post(
    "/{provider}/refresh",
    response_model=TokenResponse,
    response_model_exclude_none=True,
    summary="Refresh an access token",
    description=(
        "Trades a refresh token for a new access token at the provider's "
        "token endpoint. Tokens are passed through, never stored."
    ),
)
async def refresh(
    provider: str,
    body: RefreshTokenRequest,
    request: Request,
    response: Response,
) -> TokenResponse:
    flow = _service(request).flow(provider)
    tokens = await flow.refresh_tokens(body.refresh_token)

    response.headers["Cache-Control"] = "no-store"
    return tokens
