from typing import Optional

import aiohttp
from loguru import logger
from operation_poller.models import OperationHandle

TRANSIENT_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


def is_transient_http_error(error: Exception) -> bool:
    """Retry predicate for fetch errors that a later attempt may not hit again"""
    if isinstance(error, aiohttp.ClientResponseError):
        return error.status in TRANSIENT_STATUS_CODES
    if isinstance(error, aiohttp.ClientConnectorError):
        return False
    return isinstance(error, (aiohttp.ClientConnectionError, aiohttp.ServerTimeoutError))


class RestOperationClient:
    """Reads long-running operation resources from a REST endpoint.

    Use as an async context manager so the underlying session is closed:

        async with RestOperationClient("https://example.com/v1") as client:
            handle = await client.get_operation("operations/123")
    """

    def __init__(self, base_url: str, session: Optional[aiohttp.ClientSession] = None):
        self.base_url = base_url.rstrip("/")
        self.logger = logger
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "RestOperationClient":
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def get_operation(self, name: str) -> OperationHandle:
        """Fetches the current state of an operation from the server"""
        if self._session is None:
            raise RuntimeError("RestOperationClient used outside of its context")
        url = f"{self.base_url}/{name.lstrip('/')}"

        try:
            async with self._session.get(url) as response:
                response.raise_for_status()
                data = await response.json()
        except aiohttp.ClientResponseError as e:
            self.logger.error(f"HTTP error {e.status} at {url}: {e.message}")
            raise
        except aiohttp.ClientError as e:
            self.logger.error(f"Error fetching operation {name}: {e}")
            raise

        data.setdefault("name", name)
        return OperationHandle.model_validate(data)
