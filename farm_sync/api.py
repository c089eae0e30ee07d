"""Async client for the farms backend.

Only the calls the field boundary engine needs are covered. Authentication,
token refresh and the wider REST surface belong to the host application;
this client just attaches a bearer token when one is configured.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Mapping
from typing import Any

import aiohttp
from aiohttp import ClientError, ClientSession
from yarl import URL

from .const import (
    ASSIGNED_FARMERS_PATH,
    DEFAULT_MAX_RETRIES,
    DEFAULT_REQUEST_TIMEOUT,
    FARM_BOUNDARY_PATH,
    FARM_PATH,
    FARMS_ALL_PATH,
    FARMS_PATH,
    RETRYABLE,
)
from .utils.logging import warn_once

_LOGGER = logging.getLogger(__name__)


class FarmsApiError(ClientError):
    """Raised when the farms backend rejects or fails a request."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.message = message

    def __str__(self) -> str:
        return self.message


class FarmsApiAuthError(FarmsApiError):
    """Raised on 401/403; never retried."""


def _error_message(payload: Any, status: int) -> str:
    if isinstance(payload, Mapping):
        for key in ("message", "error", "detail"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    if isinstance(payload, str) and payload.strip():
        return payload.strip()
    return f"HTTP error! status: {status}"


def _segment(value: Any) -> str:
    """Quote ``value`` for use as a single path segment."""

    return URL.build(path=str(value).strip()).raw_path.replace("/", "%2F")


class FarmsApiClient:
    """Thin retrying wrapper around the farm endpoints."""

    def __init__(
        self,
        session: ClientSession | None,
        base_url: str,
        *,
        access_token: str | None = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_delay: float = 1.0,
    ) -> None:
        self._session = session
        self._owns_session = session is None
        self._base_url = base_url.rstrip("/")
        self._access_token = (access_token or "").strip()
        self._timeout = timeout
        self._max_retries = max(1, int(max_retries))
        self._initial_delay = initial_delay

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def session(self) -> ClientSession:
        """The HTTP session; an owned one is opened on first use inside the loop."""

        if self._session is None:
            self._session = ClientSession()
        return self._session

    async def close(self) -> None:
        """Close the session if this client opened it."""

        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        if self._owns_session:
            self._session = None

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
        return headers

    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
        data: Any = None,
        attempts: int | None = None,
    ) -> Any:
        url = self._url(path)
        attempts = attempts or self._max_retries
        delay = self._initial_delay
        for attempt in range(attempts):
            last = attempt == attempts - 1
            try:
                async with asyncio.timeout(self._timeout):
                    async with self.session.request(
                        method,
                        url,
                        params=dict(params) if params else None,
                        json=json,
                        data=data,
                        headers=self._headers(),
                    ) as resp:
                        if resp.status in {401, 403}:
                            payload = await self._read_payload(resp)
                            raise FarmsApiAuthError(_error_message(payload, resp.status), status=resp.status)
                        if resp.status in RETRYABLE:
                            raise FarmsApiError(f"Retryable status: {resp.status}", status=resp.status)
                        payload = await self._read_payload(resp)
                        if resp.status >= 400:
                            raise FarmsApiError(_error_message(payload, resp.status), status=resp.status)
                        return payload
            except FarmsApiAuthError:
                raise
            except FarmsApiError as err:
                if err.status not in RETRYABLE or last:
                    raise
                warn_once(_LOGGER, f"farms_http_{err.status}", f"{method} {path} failed with {err.status}")
            except (TimeoutError, ClientError) as err:
                if last:
                    raise FarmsApiError(f"{method} {path} failed: {err}") from err
                warn_once(_LOGGER, "farms_network_error", f"{method} {path}: {err}")
            await asyncio.sleep(delay + 0.25 * random.random())
            delay = min(delay * 2, 30)

        raise FarmsApiError(f"{method} {path} failed after {attempts} attempts")

    async def _read_payload(self, resp: aiohttp.ClientResponse) -> Any:
        try:
            return await resp.json(content_type=None)
        except ValueError:
            return await resp.text()

    async def list_farms(self, page: int, page_size: int) -> Any:
        """Return the raw response for one page of the farm catalog."""

        return await self._request("GET", FARMS_PATH, params={"page": page, "pageSize": page_size})

    async def list_all_farms(self) -> Any:
        """Return the raw response of the un-paginated catalog endpoint."""

        return await self._request("GET", FARMS_ALL_PATH)

    async def get_farm(self, farm_id: str) -> Any:
        return await self._request("GET", FARM_PATH.format(farm_id=_segment(farm_id)))

    async def update_farm(self, farm_id: str, patch: Mapping[str, Any]) -> Any:
        return await self._request(
            "PATCH",
            FARM_PATH.format(farm_id=_segment(farm_id)),
            json=dict(patch),
        )

    async def upload_boundary(
        self,
        farm_id: str,
        filename: str,
        content: bytes,
        *,
        name: str | None = None,
        content_type: str = "application/octet-stream",
    ) -> Any:
        """Upload a KML/KMZ boundary file for ``farm_id``."""

        form = aiohttp.FormData()
        form.add_field("file", content, filename=filename, content_type=content_type)
        if name:
            form.add_field("name", name)
        # Uploads are not idempotent on the backend; a single attempt only.
        return await self._request("POST", FARM_BOUNDARY_PATH.format(farm_id=_segment(farm_id)), data=form, attempts=1)

    async def list_assigned_farmers(self) -> Any:
        return await self._request("GET", ASSIGNED_FARMERS_PATH)
