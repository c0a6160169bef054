"""
HTTP access layer for the WispHub REST API.

- ``Authorization: Api-Key <key>`` on every request
- cache-aside reads (``get`` with ``cache_ttl``)
- retry with exponential backoff on transport failures and 5xx responses
- transport/API failures classified into typed errors
"""

import json
import logging
import time
from typing import Any, Callable, Dict, Optional

import httpx

from .cache import CacheStats, TTLCache
from .config import ServerConfig
from .errors import ApiError, NetworkError, RequestTimeoutError, WispHubError
from .transform import dump

logger = logging.getLogger(__name__)


class WispHubClient:
    """
    Small synchronous client for the WispHub API.

    Args:
        base_url: API root, e.g. ``https://api.wisphub.net``
        api_key: Static credential forwarded as ``Api-Key``
        timeout: Transport timeout in seconds
        retry_attempts: Retries after the first attempt (total = retries + 1)
        cache: Read cache; a private TTLCache is created when omitted
        transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        sleep: Backoff delay function, ``time.sleep`` unless overridden
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        retry_attempts: int = 3,
        cache: Optional[TTLCache] = None,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.cache = cache if cache is not None else TTLCache()
        self._sleep = sleep
        self._http = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Api-Key {api_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )

    @classmethod
    def from_config(cls, config: ServerConfig, **kwargs) -> "WispHubClient":
        return cls(
            base_url=config.base_url,
            api_key=config.api_key,
            timeout=config.timeout,
            retry_attempts=config.retry_attempts,
            **kwargs,
        )

    # Public verbs

    def get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        cache_ttl: Optional[int] = None,
    ) -> Any:
        """
        GET with optional cache-aside.

        Args:
            path: Endpoint path, e.g. ``/api/clientes/``
            params: Query parameters (None values are dropped)
            cache_ttl: Cache lifetime in ms; 0/None bypasses the cache entirely

        Returns:
            Decoded JSON body
        """
        params = _clean_params(params)
        use_cache = bool(cache_ttl and cache_ttl > 0)
        key = self.cache_key("GET", path, params)

        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("Cache hit", extra={"path": path, "cache_key": key})
                return cached

        body = self._request("GET", path, params=params)

        if use_cache:
            self.cache.set(key, body, cache_ttl)
            logger.debug("Response cached", extra={"path": path, "cache_key": key, "ttl_ms": cache_ttl})
        return body

    def post(self, path: str, body: Optional[Dict[str, Any]] = None) -> Any:
        return self._request("POST", path, json_body=body)

    def put(self, path: str, body: Optional[Dict[str, Any]] = None) -> Any:
        return self._request("PUT", path, json_body=body)

    def patch(self, path: str, body: Optional[Dict[str, Any]] = None) -> Any:
        return self._request("PATCH", path, json_body=body)

    def delete(self, path: str) -> Any:
        return self._request("DELETE", path)

    # Cache management

    @staticmethod
    def cache_key(method: str, path: str, params: Optional[Dict[str, Any]] = None) -> str:
        param_string = json.dumps(params, sort_keys=True, default=str) if params else ""
        return f"{method}:{path}:{param_string}"

    def invalidate(self, path: str, params: Optional[Dict[str, Any]] = None) -> bool:
        """Drop the cached GET for ``path``/``params``."""
        return self.cache.delete(self.cache_key("GET", path, _clean_params(params)))

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.info("Cache cleared")

    def cache_stats(self) -> CacheStats:
        return self.cache.stats()

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "WispHubClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # Transport

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Perform one logical request, retrying transport failures and 5xx."""
        url = f"{self.base_url}{path}"
        last_error: Optional[WispHubError] = None

        for attempt in range(self.retry_attempts + 1):
            if attempt > 0:
                delay = 2 ** (attempt - 1)
                logger.info(
                    "Retrying request",
                    extra={"method": method, "url": url, "attempt": attempt, "delay_s": delay},
                )
                self._sleep(delay)

            logger.debug("HTTP Request", extra={"method": method, "url": url, "params": params})
            started = time.monotonic()

            try:
                response = self._http.request(method, path, params=params, json=json_body)
            except httpx.TimeoutException:
                last_error = RequestTimeoutError(url, self.timeout)
                logger.warning("HTTP timeout", extra={"method": method, "url": url, "attempt": attempt})
                continue
            except httpx.RequestError as exc:
                last_error = NetworkError(str(exc) or type(exc).__name__, url)
                logger.warning(
                    "HTTP transport error",
                    extra={"method": method, "url": url, "attempt": attempt, "error": str(exc)},
                )
                continue

            duration_ms = int((time.monotonic() - started) * 1000)
            logger.debug(
                "HTTP Response",
                extra={"status": response.status_code, "url": url, "duration_ms": duration_ms},
            )

            if response.is_success:
                return _decode(response)

            error = _api_error(response, url)
            logger.error(
                "HTTP Response Error",
                extra={
                    "method": method,
                    "url": url,
                    "status": response.status_code,
                    "attempt": attempt,
                    "body": dump(error.body, 300),
                },
            )
            if response.status_code < 500:
                raise error
            last_error = error

        assert last_error is not None
        logger.error(
            "Request failed after retries",
            extra={"method": method, "url": url, "attempts": self.retry_attempts + 1, "error": str(last_error)},
        )
        raise last_error


def _clean_params(params: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not params:
        return None
    cleaned = {key: value for key, value in params.items() if value is not None}
    return cleaned or None


def _decode(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def _api_error(response: httpx.Response, url: str) -> ApiError:
    """Build an ApiError from whatever error shape the body has."""
    try:
        body = response.json()
    except ValueError:
        body = response.text
        message = body.strip()[:200] or response.reason_phrase or "Unknown API error"
        return ApiError(response.status_code, message, url=url, body=body)

    if isinstance(body, dict):
        message = body.get("message") or body.get("error") or body.get("detail")
        if not message:
            message = dump(body)
        elif not isinstance(message, str):
            message = dump(message)
    else:
        message = dump(body)
    return ApiError(response.status_code, message or "Unknown API error", url=url, body=body)
