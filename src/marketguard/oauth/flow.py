"""PKCE authorization code flow.

``PKCEOAuthFlow`` drives one provider:

- ``initiate_flow`` generates verifier, challenge, state and nonce, stores
  them under the caller's session key and returns the authorization URL.
- ``handle_callback`` validates the provider redirect against the stored
  session, exchanges the code for tokens and checks the ID token claims.
- ``refresh_tokens`` trades a refresh token for a new access token.

The engine keeps no state of its own; sessions live in the injected
``SessionStore`` and tokens are returned to the caller, never retained.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
import orjson
from pydantic import BaseModel, ConfigDict, ValidationError

from marketguard.oauth.exceptions import OAuthError
from marketguard.oauth.id_token import validate_id_token_claims
from marketguard.oauth.pkce import (
    CODE_CHALLENGE_METHOD,
    generate_code_challenge,
    generate_code_verifier,
    generate_nonce,
    generate_state,
    validate_state,
)
from marketguard.oauth.session import SESSION_VALIDITY, PKCESession, utc_now
from marketguard.observability.logging import get_logger
from marketguard.observability.metrics import OAUTH_CALLBACKS, OAUTH_REFRESHES


if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from datetime import datetime, timedelta

    from marketguard.auth.audit import SecurityAuditLogger
    from marketguard.oauth.providers import OAuthClientConfig
    from marketguard.oauth.session import SessionStore

logger = get_logger(__name__)

DEFAULT_TOKEN_EXCHANGE_TIMEOUT = 10.0

_ENGINE_ERROR_CODES = frozenset(
    {
        OAuthError.MISSING_CODE,
        OAuthError.INVALID_SESSION,
        OAuthError.INVALID_STATE,
        OAuthError.INVALID_PROVIDER,
        OAuthError.INVALID_ID_TOKEN,
        OAuthError.TOKEN_EXCHANGE_FAILED,
    }
)


class TokenResponse(BaseModel):
    """Token endpoint response (RFC 6749 section 5.1).

    Provider-specific fields are kept as extras.
    """

    access_token: str
    token_type: str
    expires_in: int | None = None
    refresh_token: str | None = None
    scope: str | None = None
    id_token: str | None = None

    model_config = ConfigDict(extra="allow")


class CallbackResult(BaseModel):
    """Successful sign-in."""

    provider: str
    tokens: TokenResponse
    id_token_claims: dict[str, Any] | None = None
    user_info: dict[str, Any] | None = None


class CallbackParams(BaseModel):
    """Query parameters of the provider redirect."""

    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None

    @classmethod
    def from_url(cls, callback_url: str) -> CallbackParams:
        params = httpx.URL(callback_url).params
        return cls(
            code=params.get("code") or None,
            state=params.get("state") or None,
            error=params.get("error") or None,
            error_description=params.get("error_description") or None,
        )


def build_authorization_url(
    client: OAuthClientConfig,
    *,
    code_challenge: str,
    state: str,
    nonce: str,
    additional_params: Mapping[str, str] | None = None,
) -> str:
    """Build the authorization request URL.

    Query parameters already present on the authorization endpoint are
    kept. Caller parameters are applied after the protocol parameters and
    provider defaults last, each replacing earlier values of the same name.
    """
    params: dict[str, str] = {
        "client_id": client.client_id,
        "redirect_uri": client.redirect_uri,
        "response_type": "code",
        "scope": " ".join(client.scopes),
        "code_challenge": code_challenge,
        "code_challenge_method": CODE_CHALLENGE_METHOD,
        "state": state,
        "nonce": nonce,
    }
    if additional_params:
        params.update(additional_params)
    params.update(client.provider.extra_authorize_params)

    url = httpx.URL(client.provider.authorization_url)
    return str(url.copy_merge_params(params))


class PKCEOAuthFlow:
    """Authorization code flow with PKCE for a single provider.

    Example:
        ```python
        flow = PKCEOAuthFlow(client_config, store, http_client)
        url = await flow.initiate_flow(session_key)
        # ... browser returns to the callback ...
        result = await flow.handle_callback(session_key, str(request.url))
        ```
    """

    def __init__(
        self,
        client: OAuthClientConfig,
        store: SessionStore,
        http_client: httpx.AsyncClient,
        *,
        audit: SecurityAuditLogger | None = None,
        clock: Callable[[], datetime] = utc_now,
        session_validity: timedelta = SESSION_VALIDITY,
        token_exchange_timeout: float = DEFAULT_TOKEN_EXCHANGE_TIMEOUT,
        fetch_user_info: bool = False,
    ) -> None:
        self._client = client
        self._store = store
        self._http = http_client
        self._audit = audit
        self._clock = clock
        self._session_validity = session_validity
        self._timeout = token_exchange_timeout
        self._fetch_user_info = fetch_user_info

    @property
    def provider(self) -> str:
        """Provider identifier this engine drives."""
        return self._client.name

    # =========================================================================
    # Authorization request
    # =========================================================================

    async def initiate_flow(
        self,
        session_key: str,
        additional_params: Mapping[str, str] | None = None,
    ) -> str:
        """Start a sign-in and return the provider authorization URL.

        Any in-flight session stored under ``session_key`` is replaced.
        No network call is made to the provider.
        """
        code_verifier = generate_code_verifier()
        state = generate_state()
        nonce = generate_nonce()

        await self._store.set(
            session_key,
            PKCESession(
                code_verifier=code_verifier,
                state=state,
                nonce=nonce,
                provider=self.provider,
                redirect_uri=self._client.redirect_uri,
                created_at=self._clock(),
            ),
        )

        logger.info("OAuth flow initiated", provider=self.provider)

        return build_authorization_url(
            self._client,
            code_challenge=generate_code_challenge(code_verifier),
            state=state,
            nonce=nonce,
            additional_params=additional_params,
        )

    # =========================================================================
    # Callback
    # =========================================================================

    async def handle_callback(
        self,
        session_key: str,
        callback_url: str,
    ) -> CallbackResult:
        """Complete a sign-in from the provider redirect URL.

        The stored session is cleared whatever the outcome, so a callback
        can never be replayed.

        Raises:
            OAuthError: With the provider's own code when the provider
                reported an error, otherwise one of ``missing_code``,
                ``invalid_session``, ``invalid_state``, ``invalid_provider``,
                ``token_exchange_failed`` or ``invalid_id_token``.
        """
        try:
            result = await self._complete(session_key, callback_url)
        except OAuthError as e:
            outcome = e.code if e.code in _ENGINE_ERROR_CODES else "provider_error"
            OAUTH_CALLBACKS.labels(provider=self.provider, outcome=outcome).inc()
            logger.warning(
                "OAuth callback rejected",
                provider=self.provider,
                error_code=e.code,
            )
            raise
        finally:
            await self._store.clear(session_key)

        OAUTH_CALLBACKS.labels(provider=self.provider, outcome="success").inc()
        logger.info("OAuth sign-in completed", provider=self.provider)
        return result

    async def _complete(self, session_key: str, callback_url: str) -> CallbackResult:
        params = CallbackParams.from_url(callback_url)

        if params.error:
            raise OAuthError(params.error, params.error_description or "OAuth error")

        if not params.code:
            msg = "Authorization code not found"
            raise OAuthError(OAuthError.MISSING_CODE, msg)

        session = await self._store.get(session_key)
        if session is None or session.is_expired(
            self._clock(), self._session_validity
        ):
            msg = "PKCE session expired or invalid"
            raise OAuthError(OAuthError.INVALID_SESSION, msg)

        if not validate_state(params.state, session.state):
            self._report("oauth_state_mismatch", "State parameter mismatch")
            msg = "State parameter mismatch - possible CSRF attack"
            raise OAuthError(OAuthError.INVALID_STATE, msg)

        if session.provider != self.provider:
            self._report(
                "oauth_provider_mismatch",
                "Provider mismatch",
                stored_provider=session.provider,
            )
            raise OAuthError(OAuthError.INVALID_PROVIDER, "Provider mismatch")

        tokens = await self._exchange_code(params.code, session)

        claims = None
        if tokens.id_token and self._client.provider.issuer:
            validation = validate_id_token_claims(
                tokens.id_token,
                expected_issuer=self._client.provider.issuer,
                expected_audience=self._client.client_id,
                expected_nonce=session.nonce,
                now=self._clock(),
            )
            if not validation.valid:
                reason = validation.error or "ID token validation failed"
                if reason == "Invalid nonce":
                    self._report("oauth_nonce_mismatch", reason)
                raise OAuthError(OAuthError.INVALID_ID_TOKEN, reason)
            claims = validation.claims

        user_info = None
        if self._fetch_user_info and self._client.provider.userinfo_url:
            user_info = await self._get_user_info(tokens.access_token)

        return CallbackResult(
            provider=self.provider,
            tokens=tokens,
            id_token_claims=claims,
            user_info=user_info,
        )

    # =========================================================================
    # Provider calls
    # =========================================================================

    async def refresh_tokens(self, refresh_token: str) -> TokenResponse:
        """Trade a refresh token for a new access token.

        Providers that do not rotate refresh tokens omit it from the
        response; the one passed in is returned in its place. Not retried.

        Raises:
            OAuthError: ``refresh_failed`` for any failure, with the
                provider's error body in ``details`` when there is one.
        """
        form = {
            "grant_type": "refresh_token",
            "client_id": self._client.client_id,
            "refresh_token": refresh_token,
        }
        try:
            tokens = await self._post_token(form)
        except OAuthError as e:
            OAUTH_REFRESHES.labels(provider=self.provider, outcome="failure").inc()
            logger.warning(
                "OAuth token refresh failed",
                provider=self.provider,
                error_code=e.code,
            )
            raise OAuthError(
                OAuthError.REFRESH_FAILED, "Failed to refresh token", e.details
            ) from e

        OAUTH_REFRESHES.labels(provider=self.provider, outcome="success").inc()
        logger.info("OAuth tokens refreshed", provider=self.provider)
        if tokens.refresh_token is None:
            tokens.refresh_token = refresh_token
        return tokens

    async def _exchange_code(self, code: str, session: PKCESession) -> TokenResponse:
        """POST the authorization code and verifier to the token endpoint.

        Not retried: authorization codes are single use.
        """
        return await self._post_token(
            {
                "grant_type": "authorization_code",
                "client_id": self._client.client_id,
                "code": code,
                "code_verifier": session.code_verifier,
                "redirect_uri": session.redirect_uri,
            }
        )

    async def _post_token(self, form: dict[str, str]) -> TokenResponse:
        if self._client.client_secret:
            form["client_secret"] = self._client.client_secret

        try:
            response = await self._http.post(
                self._client.provider.token_url,
                data=form,
                headers={"Accept": "application/json"},
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            logger.warning("Token endpoint timed out", provider=self.provider)
            msg = "Token endpoint timed out"
            raise OAuthError(OAuthError.TOKEN_EXCHANGE_FAILED, msg) from e
        except httpx.RequestError as e:
            logger.warning(
                "Token endpoint unreachable",
                provider=self.provider,
                error=type(e).__name__,
            )
            msg = "Failed to exchange code for tokens"
            raise OAuthError(OAuthError.TOKEN_EXCHANGE_FAILED, msg) from e

        body = _json_body(response)

        # Some providers (GitHub) report errors with a 200 status
        if not response.is_success or (
            isinstance(body, dict) and body.get("error") and "access_token" not in body
        ):
            raise _token_error(body, response.status_code)

        try:
            return TokenResponse.model_validate(body)
        except ValidationError as e:
            msg = "Token endpoint returned an invalid token response"
            raise OAuthError(OAuthError.TOKEN_EXCHANGE_FAILED, msg) from e

    async def _get_user_info(self, access_token: str) -> dict[str, Any] | None:
        """Fetch the userinfo document; failures do not fail the sign-in."""
        userinfo_url = self._client.provider.userinfo_url
        if not userinfo_url:
            return None
        try:
            response = await self._http.get(
                userinfo_url,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/json",
                },
                timeout=self._timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(
                "Userinfo request failed",
                provider=self.provider,
                error=type(e).__name__,
            )
            return None

        body = _json_body(response)
        return body if isinstance(body, dict) else None

    def _report(self, event_type: str, reason: str, **details: Any) -> None:
        if self._audit is None:
            return
        self._audit.log_oauth_violation(
            event_type,
            provider=self.provider,
            reason=reason,
            **details,
        )


def _json_body(response: httpx.Response) -> Any:
    try:
        return orjson.loads(response.content)
    except orjson.JSONDecodeError:
        return None


def _token_error(body: Any, status_code: int) -> OAuthError:
    if not isinstance(body, dict):
        return OAuthError(
            OAuthError.TOKEN_EXCHANGE_FAILED,
            "Failed to exchange code for tokens",
            {"status_code": status_code},
        )
    return OAuthError(
        str(body.get("error") or OAuthError.TOKEN_EXCHANGE_FAILED),
        str(body.get("error_description") or "Failed to exchange code for tokens"),
        body,
    )


__all__ = [
    "DEFAULT_TOKEN_EXCHANGE_TIMEOUT",
    "CallbackParams",
    "CallbackResult",
    "PKCEOAuthFlow",
    "TokenResponse",
    "build_authorization_url",
]
