"""FastAPI dependencies wiring the access control pipeline into routes.

Routes declare what they need with ``RequireAccess``; the dependency
resolves the caller through the configured identity provider, runs the
pipeline and turns a denial into the matching HTTP response:

- layer 1 -> 401 with a login redirect carrying the original path
- layers 2 and 3 -> 403 "Access denied" with a safe redirect target

Usage:
    @router.get("/orders/{order_id}")
    async def get_order(
        principal: Annotated[
            Principal,
            Depends(
                RequireAccess(
                    AccessRequirement(
                        permission=Permission.ORDERS_OWN_VIEW,
                        resource_type=OwnableResource.ORDER,
                    ),
                    resource_param="order_id",
                )
            ),
        ],
    ): ...
"""

from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer

from marketguard.auth.pipeline import AccessRequirement, Principal
from marketguard.auth.providers import AuthenticationError
from marketguard.auth.redirects import build_login_redirect, sanitize_redirect_path
from marketguard.core.exceptions import AccessDenied, AuthenticationRequired
from marketguard.observability.logging import bind_context, get_logger


if TYPE_CHECKING:
    from marketguard.auth.pipeline import AccessControlPipeline, AccessDecision
    from marketguard.auth.providers import AuthProvider
    from marketguard.core.config import Settings

logger = get_logger(__name__)

# Used for token extraction only; sessions are issued by the sign-in service
oauth2_scheme_optional = OAuth2PasswordBearer(
    tokenUrl="/auth/token",
    scheme_name="SessionJWT",
    auto_error=False,
)


async def get_principal(
    request: Request,
    token: Annotated[str | None, Depends(oauth2_scheme_optional)],
) -> Principal | None:
    """Resolve the caller, or None when the request carries no valid identity.

    Invalid or expired credentials are treated like missing ones so the
    pipeline decides what an anonymous request may do.
    """
    provider: AuthProvider = request.app.state.auth_provider
    try:
        result = await provider.validate_token(token or "", request)
    except AuthenticationError as e:
        if token:
            logger.debug(
                "Credential rejected",
                provider=provider.provider_name,
                reason=str(e),
            )
        return None

    bind_context(user_id=result.user_id)
    return Principal.from_auth_result(result)


def _original_path(request: Request) -> str:
    path = request.url.path
    if request.url.query:
        path = f"{path}?{request.url.query}"
    return path


def raise_for_decision(
    decision: "AccessDecision",
    request: Request,
    settings: "Settings",
) -> None:
    """Raise the HTTP error for a denied decision; no-op when allowed.

    The response never names the failing check.
    """
    if decision.allowed:
        return
    if decision.layer == 1:
        raise AuthenticationRequired(
            build_login_redirect(settings.auth.login_path, _original_path(request))
        )
    raise AccessDenied(sanitize_redirect_path(settings.auth.denied_redirect))


class RequireAccess:
    """Dependency enforcing an ``AccessRequirement``.

    Args:
        requirement: What the route demands of its caller.
        resource_param: Path parameter holding the resource id, for
            requirements that name a resource type but no fixed id.
    """

    def __init__(
        self,
        requirement: AccessRequirement,
        *,
        resource_param: str | None = None,
    ) -> None:
        self.requirement = requirement
        self.resource_param = resource_param

    def _bind(self, request: Request) -> AccessRequirement:
        if self.resource_param is None or self.requirement.resource_id is not None:
            return self.requirement
        resource_id = request.path_params.get(self.resource_param)
        if resource_id is None:
            return self.requirement
        return self.requirement.model_copy(update={"resource_id": str(resource_id)})

    async def __call__(
        self,
        request: Request,
        principal: Annotated[Principal | None, Depends(get_principal)],
    ) -> Principal | None:
        """Evaluate the pipeline for this request.

        Returns:
            The caller; None only for requirements anonymous callers pass.

        Raises:
            AuthenticationRequired: On a layer 1 denial.
            AccessDenied: On a layer 2 or 3 denial.
        """
        pipeline: AccessControlPipeline = request.app.state.access_pipeline
        decision = await pipeline.evaluate(
            principal, self._bind(request), route=request.url.path
        )
        raise_for_decision(decision, request, request.app.state.settings)
        return principal


# Routes that only need a signed-in caller
RequireAuthenticated = RequireAccess(AccessRequirement())
