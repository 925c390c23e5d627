"""
FastAPI Dependencies

Service handles live on ``app.state`` (created in the lifespan) and are read
through ``HTTPConnection`` so the same providers serve HTTP routes and the
websocket endpoint.

Auth:
    - get_optional_claims: anonymous claims when the token is missing or rejected
    - get_current_claims: 401 / 503 on failure
    - require_roles(...): 403 unless the caller holds one of the roles
"""

import logging
from typing import Optional

from fastapi import Depends
from starlette.requests import HTTPConnection

from dining.errors import AuthenticationFailed, AuthServiceUnavailable, InsufficientRole
from dining.models import StaffRole
from dining.schemas import TokenClaims
from dining.services.auth import AuthServiceClient
from dining.services.checkout import CheckoutService
from dining.services.orders import OrdersService
from dining.services.realtime import BroadcastHub, OrderWebsocketHandler

logger = logging.getLogger(__name__)


# =============================================================================
# SERVICES
# =============================================================================

def get_orders_service(connection: HTTPConnection) -> OrdersService:
    return connection.app.state.orders_service


def get_checkout_service(connection: HTTPConnection) -> CheckoutService:
    return connection.app.state.checkout_service


def get_hub(connection: HTTPConnection) -> BroadcastHub:
    return connection.app.state.hub


def get_ws_handler(connection: HTTPConnection) -> OrderWebsocketHandler:
    return connection.app.state.ws_handler


def get_auth_client(connection: HTTPConnection) -> AuthServiceClient:
    return connection.app.state.auth_client


# =============================================================================
# AUTH
# =============================================================================

def authorization_value(connection: HTTPConnection) -> Optional[str]:
    """
    ``Authorization`` header, falling back to the ``token`` query parameter.

    Browsers cannot set headers on websocket upgrades, hence the query form.
    """
    header = connection.headers.get("authorization")
    if header:
        return header

    token = connection.query_params.get("token")
    if token:
        return token if token.lower().startswith("bearer ") else f"Bearer {token}"

    return None


async def get_optional_claims(
    connection: HTTPConnection,
    auth_client: AuthServiceClient = Depends(get_auth_client),
) -> TokenClaims:
    authorization = authorization_value(connection)
    if not authorization:
        return TokenClaims.anonymous()

    try:
        return await auth_client.verify(authorization)
    except (AuthenticationFailed, AuthServiceUnavailable) as e:
        logger.info(f"Continuing anonymously: {e}")
        return TokenClaims.anonymous()


async def get_current_claims(
    connection: HTTPConnection,
    auth_client: AuthServiceClient = Depends(get_auth_client),
) -> TokenClaims:
    claims = await auth_client.verify(authorization_value(connection))
    if claims.is_anonymous:
        raise AuthenticationFailed(detail="token carries no user")
    return claims


def require_roles(*roles: StaffRole):
    """
    Dependency factory restricting a route to the given staff roles.

    Example:
        @router.post("/", dependencies=[Depends(require_roles(StaffRole.MANAGER))])
    """
    async def dependency(claims: TokenClaims = Depends(get_current_claims)) -> TokenClaims:
        if not claims.has_role(*roles):
            raise InsufficientRole(detail=f"role {claims.role} not in {[r.name.lower() for r in roles]}")
        return claims

    return dependency
