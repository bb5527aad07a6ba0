"""
Async client for the Feegow clinic management API.

Only the paginated patient list is used:

    GET {base_url}/patient/list?start=<offset>&offset=<page size>
    x-access-token: <token>

    -> {"success": true, "content": [{...patient...}, ...]}

Feegow names the paging parameters unusually: `start` is the row offset and
`offset` is the page size.

Usage:
    async with FeegowClient.from_settings(get_settings()) as client:
        patients = await client.list_patients(page=0, page_size=500)
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from clinic_crm.core.config import Settings


logger = logging.getLogger(__name__)


class FeegowAPIError(Exception):
    """Raised when Feegow answers but reports a failure or an unexpected payload."""


class FeegowClient:
    """Thin wrapper around one httpx.AsyncClient bound to the Feegow API."""

    def __init__(
        self,
        token: str,
        base_url: str = 'https://api.feegow.com/v1/api',
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        if not token:
            raise ValueError("Feegow API token not configured")

        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip('/'),
            headers={
                'x-access-token': token,
                'Content-Type': 'application/json',
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> "FeegowClient":
        if not settings.feegow_api_token:
            raise ValueError("FEEGOW_API_TOKEN not configured. Set this environment variable to enable the patient sync.")

        return cls(
            token=settings.feegow_api_token,
            base_url=settings.feegow_base_url,
            timeout=settings.feegow_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "FeegowClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def list_patients(self, page: int, page_size: int) -> List[Dict[str, Any]]:
        """
        Fetch one page of patients.

        Args:
            page: Zero-based page number.
            page_size: Patients per page.

        Returns:
            The raw patient dicts of the page; an empty list past the last page.

        Raises:
            httpx.HTTPStatusError: On a non-2xx response.
            httpx.TransportError: On network failures and timeouts.
            FeegowAPIError: When the body reports success=false or has no patient list.
        """
        params = {'start': page * page_size, 'offset': page_size}
        logger.info(f"Fetching Feegow patients page {page} (start={params['start']}, size={page_size})")

        response = await self._client.get('/patient/list', params=params)

        if response.status_code != 200:
            logger.error(f"Feegow patient list failed: {response.status_code} {response.text[:500]}")
        response.raise_for_status()

        body = response.json()
        if not isinstance(body, dict) or not body.get('success', False):
            message = body.get('message') if isinstance(body, dict) else None
            raise FeegowAPIError(f"Feegow reported failure: {message or body!r}"[:500])

        content = body.get('content')
        if content is None:
            return []
        if not isinstance(content, list):
            raise FeegowAPIError(f"Unexpected Feegow content type: {type(content).__name__}")

        return content
