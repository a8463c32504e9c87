"""
Bearer-authenticated JSON client for the dashboard backend.

Blocking `requests` calls run in a worker thread (asyncio.to_thread) and are
bounded by asyncio.wait_for, so the event loop never stalls on a slow
provider. Transport failures are mapped onto the domain error hierarchy:

    requests.Timeout / asyncio timeout -> FetchTimeoutError
    other requests.RequestException    -> NetworkError
    non-2xx status, undecodable body   -> ProviderError
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Mapping, Optional

import requests

from ...domain.exceptions import FetchTimeoutError, NetworkError, ProviderError
from ...utils.logging_setup import get_logger


logger = get_logger(__name__)


class ApiHttpClient:
    """Thin async facade over a requests.Session."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout_sec: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Args:
            base_url: Backend root URL (no trailing slash needed).
            token: Bearer credential; attached only, never issued here.
            timeout_sec: Default per-request timeout.
            session: Injected session (tests pass a mock).
        """
        self.base_url = base_url.rstrip("/")
        self.timeout_sec = timeout_sec
        self._token = token
        self._session = session or requests.Session()
        self._closed = False

        # Stats (mirrors adapter connection info)
        self._request_count = 0
        self._error_count = 0

    def set_token(self, token: Optional[str]) -> None:
        self._token = token

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    @staticmethod
    def _clean_params(params: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        """Drop unset query parameters."""
        if not params:
            return {}
        return {k: v for k, v in params.items() if v is not None and v != ""}

    async def get_json(
        self,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        provider: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        GET `path` and decode the JSON body.

        Args:
            path: Path relative to base_url.
            params: Query parameters (None/empty values are dropped).
            provider: Provider tag used in error messages.
            timeout: Override for the default timeout.

        Returns:
            Decoded JSON body ({} for an empty body).

        Raises:
            FetchTimeoutError: Request exceeded the timeout.
            NetworkError: Connection failure.
            ProviderError: Non-2xx status or undecodable body.
        """
        effective_timeout = timeout if timeout is not None else self.timeout_sec
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(
                    self._get_sync, path, self._clean_params(params), provider, effective_timeout
                ),
                timeout=effective_timeout,
            )
        except asyncio.TimeoutError as e:
            # asyncio.TimeoutError is TimeoutError on 3.11+; keep the domain type
            if isinstance(e, FetchTimeoutError):
                raise
            self._error_count += 1
            raise FetchTimeoutError(
                f"GET {path} timed out after {effective_timeout:.0f}s"
            ) from e

    def _get_sync(
        self,
        path: str,
        params: Dict[str, Any],
        provider: Optional[str],
        timeout: float,
    ) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        self._request_count += 1
        logger.debug(f"GET {url} params={params}")

        try:
            response = self._session.get(
                url, params=params, headers=self._headers(), timeout=timeout
            )
        except requests.Timeout as e:
            self._error_count += 1
            raise FetchTimeoutError(f"GET {path} timed out after {timeout:.0f}s") from e
        except requests.RequestException as e:
            self._error_count += 1
            raise NetworkError(f"GET {path} failed: {e}") from e

        status = response.status_code
        if not 200 <= status < 300:
            self._error_count += 1
            message = self._error_message(response)
            logger.warning(f"GET {path} -> {status}: {message}")
            raise ProviderError(message, provider=provider, status_code=status)

        if status == 204 or not response.content:
            return {}

        try:
            return response.json()
        except ValueError as e:
            self._error_count += 1
            raise ProviderError(
                f"invalid JSON body: {e}", provider=provider, status_code=status
            ) from e

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        """Prefer the backend's `message` field, then the HTTP reason."""
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            for key in ("message", "mensagem", "error"):
                value = body.get(key)
                if value:
                    return str(value)
        return response.reason or f"HTTP {response.status_code}"

    def get_stats(self) -> Dict[str, Any]:
        return {
            "base_url": self.base_url,
            "requests": self._request_count,
            "errors": self._error_count,
            "authenticated": bool(self._token),
        }

    def close(self) -> None:
        if not self._closed:
            self._session.close()
            self._closed = True
