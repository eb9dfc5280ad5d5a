"""Async HTTP client for the Pin-a-Tree API.

Usage:
    async with PinATreeClient("http://localhost:8000") as client:
        await client.login("ada@example.com", "secret123")
        upload = await client.upload_image(asset)
        tree = await client.create_tree({
            "name": "Old oak",
            "species": "Quercus robur",
            "latitude": 51.5,
            "longitude": -0.12,
            "imageUrl": upload["imageUrl"],
        })
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from app.client.errors import (
    STATUS_ERRORS,
    APIError,
    RateLimitError,
    ServerError,
    TransportError,
)
from app.imaging.validation import ImageAsset

logger = logging.getLogger(__name__)

IDEMPOTENT_METHODS = frozenset({"GET", "HEAD"})


class PinATreeClient:
    """Client for the Pin-a-Tree REST API.

    Network failures on GET requests are retried with exponential
    backoff. Writes are never retried automatically; the caller decides.

    Args:
        base_url: Server root, e.g. ``http://localhost:8000``.
        token: Bearer token, if already logged in.
        api_prefix: Route prefix of the API.
        timeout: Request timeout in seconds.
        max_retries: Retries for idempotent requests.
        retry_delay: Initial retry delay (doubles each retry).
        transport: Optional httpx transport (tests, proxies).
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        api_prefix: str = "/api",
        timeout: float = 30.0,
        max_retries: int = 2,
        retry_delay: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_prefix = "/" + api_prefix.strip("/") if api_prefix.strip("/") else ""
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.token = token
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "PinATreeClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self.client.aclose()

    def _headers(self) -> Dict[str, str]:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}

    async def _request(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        """Send a request and decode the JSON body.

        Raises:
            TransportError: If no response was received.
            APIError: (or a subclass) for any status >= 400, or for a
                success response whose body is not JSON.
        """
        url = f"{self.api_prefix}{endpoint}"
        retries = self.max_retries if method.upper() in IDEMPOTENT_METHODS else 0
        attempt = 0

        while True:
            try:
                logger.debug(f"Request: {method} {url}")
                response = await self.client.request(
                    method, url, headers=self._headers(), **kwargs
                )
                break
            except httpx.RequestError as e:
                if attempt < retries:
                    delay = self.retry_delay * (2 ** attempt)
                    logger.warning(f"Request failed: {e}. Retrying in {delay}s...")
                    await asyncio.sleep(delay)
                    attempt += 1
                    continue
                raise TransportError(f"Network error: {e}") from e

        logger.debug(f"Response: {response.status_code}")
        self._handle_error(response)

        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            logger.warning(f"Response to {method} {url} is not JSON: {e}")
            raise APIError(
                "Invalid JSON in server response", status_code=response.status_code
            ) from e

    @staticmethod
    def _handle_error(response: httpx.Response) -> None:
        """Map an error response onto an ``APIError`` subclass."""
        if response.status_code < 400:
            return

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {"detail": body}
        message = (
            body.get("error")
            or body.get("detail")
            or response.text
            or f"HTTP {response.status_code}"
        )

        status = response.status_code
        if status == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                message,
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
                status_code=status,
                response=body,
            )
        if status >= 500:
            raise ServerError(message, status_code=status, response=body)
        error_class = STATUS_ERRORS.get(status, APIError)
        raise error_class(message, status_code=status, response=body)

    # Auth

    async def register(
        self,
        email: str,
        username: str,
        password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create an account and keep its token."""
        payload = {"email": email, "username": username, "password": password}
        if first_name:
            payload["firstName"] = first_name
        if last_name:
            payload["lastName"] = last_name
        response = await self._request("POST", "/auth/register", json=payload)
        self.token = response["token"]
        return response

    async def login(self, email: str, password: str) -> Dict[str, Any]:
        """Log in and keep the returned token."""
        response = await self._request(
            "POST", "/auth/login", json={"email": email, "password": password}
        )
        self.token = response["token"]
        return response

    async def me(self) -> Dict[str, Any]:
        return await self._request("GET", "/auth/me")

    # Uploads

    async def upload_image(self, asset: ImageAsset) -> Dict[str, Any]:
        """Upload an image as multipart field ``image``.

        Returns:
            ``{"imageUrl", "filename", "location"}``.
        """
        files = {
            "image": (
                asset.filename or "upload",
                asset.data,
                asset.content_type,
            )
        }
        return await self._request("POST", "/upload/image", files=files)

    # Trees

    async def create_tree(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/trees", json=payload)

    async def get_tree(self, tree_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/trees/{tree_id}")

    async def list_trees(
        self,
        page: int = 1,
        limit: int = 20,
        search: Optional[str] = None,
        species: Optional[str] = None,
        status: Optional[str] = None,
        owner_id: Optional[str] = None,
        bounds: Optional[str] = None,
    ) -> Dict[str, Any]:
        """List trees with optional filters.

        Args:
            bounds: ``south,west,north,east`` bounding box.

        Returns:
            ``{"trees", "total", "page", "limit", "totalPages"}``.
        """
        params: Dict[str, Any] = {"page": page, "limit": limit}
        if search:
            params["search"] = search
        if species:
            params["species"] = species
        if status:
            params["status"] = status
        if owner_id:
            params["owner_id"] = owner_id
        if bounds:
            params["bounds"] = bounds
        return await self._request("GET", "/trees", params=params)

    async def update_tree(self, tree_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("PUT", f"/trees/{tree_id}", json=payload)

    async def delete_tree(self, tree_id: str) -> None:
        await self._request("DELETE", f"/trees/{tree_id}")

    async def nearby(
        self,
        latitude: float,
        longitude: float,
        radius_km: float = 10.0,
    ) -> List[Dict[str, Any]]:
        return await self._request(
            "GET",
            "/trees/nearby",
            params={"latitude": latitude, "longitude": longitude, "radius": radius_km},
        )
