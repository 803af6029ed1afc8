"""Async HTTP client for the Identity service."""

from __future__ import annotations

from typing import Any

import httpx
from service_commons.exceptions import ServiceError

from task_market_service.logging import get_logger


class IdentityClient:
    """
    Client for Identity service bearer-token verification.

    The market never stores credentials: every bearer token is handed to
    the Identity service via POST ``verify_token_path``, which answers with
    the user id and display name it belongs to.
    """

    def __init__(
        self,
        base_url: str,
        verify_token_path: str,
        timeout_seconds: int,
    ) -> None:
        self._base_url = base_url
        self._verify_token_path = verify_token_path
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def verify_token(self, token: str) -> dict[str, Any]:
        """
        Verify a bearer token via the Identity service.

        Returns:
            dict with keys: valid (bool), user_id (str), username (str | None)

        Raises:
            ServiceError: FORBIDDEN (403) if the Identity service says valid=false
            ServiceError: IDENTITY_SERVICE_UNAVAILABLE (502) on connection/timeout/unexpected errors
        """
        logger = get_logger(__name__)

        try:
            response = await self._client.post(
                self._verify_token_path,
                json={"token": token},
            )
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            logger.warning(
                "Identity service connection failed",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise ServiceError(
                error="IDENTITY_SERVICE_UNAVAILABLE",
                message="Cannot connect to Identity service",
                status_code=502,
                details={},
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "Identity service HTTP error",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise ServiceError(
                error="IDENTITY_SERVICE_UNAVAILABLE",
                message="Identity service request failed",
                status_code=502,
                details={},
            ) from exc

        if response.status_code != 200:
            logger.warning(
                "Identity service unexpected status",
                extra={
                    "status_code": response.status_code,
                    "base_url": self._base_url,
                },
            )
            raise ServiceError(
                error="IDENTITY_SERVICE_UNAVAILABLE",
                message="Identity service returned unexpected status",
                status_code=502,
                details={},
            )

        try:
            result = response.json()
        except ValueError as exc:
            raise ServiceError(
                error="IDENTITY_SERVICE_UNAVAILABLE",
                message="Identity service returned invalid JSON",
                status_code=502,
                details={},
            ) from exc
        if not isinstance(result, dict):
            raise ServiceError(
                error="IDENTITY_SERVICE_UNAVAILABLE",
                message="Identity service returned invalid JSON",
                status_code=502,
                details={},
            )

        if not result.get("valid", False):
            logger.warning("Bearer token rejected by Identity service")
            raise ServiceError(
                error="FORBIDDEN",
                message="Bearer token verification failed",
                status_code=403,
                details={},
            )

        user_id = result.get("user_id")
        if not isinstance(user_id, str) or user_id == "":
            raise ServiceError(
                error="IDENTITY_SERVICE_UNAVAILABLE",
                message="Identity service response is missing user_id",
                status_code=502,
                details={},
            )

        return result

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
