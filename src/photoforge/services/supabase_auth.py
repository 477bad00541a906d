"""Supabase session verification.

Resolves a bearer access token to the authenticated user's id by asking the
Supabase Auth API (``GET /auth/v1/user``). Invalid or expired tokens resolve to
None; the API layer turns that into an Unauthenticated error. An unreachable
Auth API is an upstream failure, not a bad session.
"""

from typing import Optional
from uuid import UUID

import httpx
import structlog

from photoforge.services.exceptions import AuthServiceUnavailable

logger = structlog.get_logger(__name__)


class SupabaseSessionVerifier:
    """Verify Supabase access tokens against the project's Auth API."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize verifier.

        Args:
            base_url: Supabase project URL (from SUPABASE_URL env var)
            api_key: Project API key sent as the ``apikey`` header
            timeout_seconds: Request timeout
            transport: Custom httpx transport (tests)
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def verify(self, access_token: str) -> Optional[UUID]:
        """Return the user id for a valid access token, None otherwise.

        Raises:
            AuthServiceUnavailable: If the Auth API cannot be reached
        """
        if not access_token:
            return None

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self.transport
            ) as client:
                response = await client.get(
                    f"{self.base_url}/auth/v1/user",
                    headers={
                        "Authorization": f"Bearer {access_token}",
                        "apikey": self.api_key,
                    },
                )
        except httpx.HTTPError as e:
            logger.warning("auth.verification_unavailable", error=str(e))
            raise AuthServiceUnavailable(cause=e) from e

        if response.status_code in (401, 403):
            return None
        if response.status_code != 200:
            logger.warning("auth.unexpected_status", status=response.status_code)
            return None

        try:
            return UUID(response.json()["id"])
        except (KeyError, ValueError, TypeError):
            logger.warning("auth.malformed_user_payload")
            return None
