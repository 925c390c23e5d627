"""
Auth Service Client

Token validation is delegated to the auth service: the raw
``Authorization`` header is forwarded and the service answers with the
caller's claims.

    POST {AUTH_SERVICE_URL}
    Authorization: Bearer <token>

    200 {"data": {"user_id": ..., "email": ..., "role": 2, "token_type": "access", "exp": ...}}
"""

import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from dining.core.config import get_settings
from dining.errors import AuthenticationFailed, AuthServiceUnavailable
from dining.schemas import TokenClaims

logger = logging.getLogger(__name__)


class AuthServiceClient:
    """
    Thin async client for the auth service.

    Example:
        >>> client = AuthServiceClient()
        >>> claims = await client.verify("Bearer eyJ...")
        >>> claims.user_id
        UUID('...')
    """

    def __init__(
        self,
        verify_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()

        self.verify_url = verify_url or settings.auth_service_url
        self._client = httpx.AsyncClient(
            timeout=timeout if timeout is not None else settings.auth_timeout_seconds,
            transport=transport,
        )

    async def verify(self, authorization: Optional[str]) -> TokenClaims:
        """
        Resolve an ``Authorization`` header value to claims.

        Raises:
            AuthenticationFailed: Missing header or rejected token
            AuthServiceUnavailable: The auth service cannot be reached or answers garbage
        """
        if not authorization:
            raise AuthenticationFailed(detail="missing Authorization header")

        try:
            response = await self._client.post(
                self.verify_url,
                headers={"Authorization": authorization},
            )
        except httpx.HTTPError as e:
            logger.error(f"Auth service unreachable at {self.verify_url}: {e}")
            raise AuthServiceUnavailable() from e

        if response.status_code != httpx.codes.OK:
            logger.info(f"Auth service rejected token ({response.status_code})")
            raise AuthenticationFailed(detail=f"auth service answered {response.status_code}")

        try:
            return TokenClaims.model_validate(response.json()["data"])
        except (ValueError, KeyError, TypeError, ValidationError) as e:
            logger.error(f"Failed to parse auth-service response: {e}")
            raise AuthServiceUnavailable(detail="failed to parse auth-service response") from e

    async def aclose(self) -> None:
        await self._client.aclose()
