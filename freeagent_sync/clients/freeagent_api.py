"""
Authenticated, rate-limited and cached access to the FreeAgent REST API.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
import time
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Sequence

import httpx

from freeagent_sync.clients.cache import SQLiteCache
from freeagent_sync.core.config import FreeAgentConfig
from freeagent_sync.core.exceptions import (
    AuthenticationError,
    DecodingError,
    NetworkError,
    OAuthError,
    RateLimitError,
    RequestFailed,
)
from freeagent_sync.utils.http import DEFAULT_TIMEOUT, RetryConfig, request_with_retry
from freeagent_sync.utils.rate_limit import RateLimiter

if TYPE_CHECKING:  # pragma: no cover
    from freeagent_sync.services.oauth_manager import OAuthManager

logger = logging.getLogger(__name__)

_LIST_PARAMS = {
    "invoices": ("contact", "view", "from_date", "to_date"),
    "contacts": ("view",),
    "projects": ("contact", "view"),
}

_PDF_SIGNATURE = b"%PDF"

API_CACHE_PREFIX = "api:"


def extract_id(url_or_id: str) -> str:
    """Return the trailing path segment of a FreeAgent resource URL."""
    if "/" not in url_or_id:
        return url_or_id
    return url_or_id.rstrip("/").rsplit("/", 1)[-1]


def build_rate_limiter(config: FreeAgentConfig) -> RateLimiter:
    return RateLimiter(
        [(config.rate_limit_per_minute, 60), (config.rate_limit_per_hour, 3600)]
    )


class FreeAgentApiClient:
    """Gateway for every call made against the FreeAgent API on behalf of an owner."""

    def __init__(
        self,
        config: FreeAgentConfig,
        oauth_manager: "OAuthManager",
        cache: SQLiteCache,
        rate_limiter: Optional[RateLimiter] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_config: Optional[RetryConfig] = None,
    ) -> None:
        self._config = config
        self._oauth = oauth_manager
        self._cache = cache
        self._limiter = rate_limiter or build_rate_limiter(config)
        self._transport = transport
        self._retry = retry_config or RetryConfig()

    # Low-level calls

    async def request(
        self,
        method: str,
        path: str,
        owner_id: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Perform one authenticated call and return the decoded JSON body.

        Raises ``OAuthError`` when the owner has no usable token,
        ``RateLimitError`` when the local or remote limit is hit,
        ``AuthenticationError`` on 401, ``RequestFailed`` on any other non-2xx
        status and ``NetworkError`` once transport retries are exhausted.
        """
        token = await self._oauth.get_valid_token(owner_id)
        if token is None:
            raise OAuthError.no_token()

        if not self._limiter.attempt(owner_id):
            logger.warning("FreeAgent rate limit reached", extra={"owner_id": owner_id})
            raise RateLimitError()

        url = f"{self._config.api_url}/{path.lstrip('/')}"
        headers = {
            "Authorization": f"Bearer {token.access_token}",
            "Accept": "application/json",
        }
        started = time.perf_counter()
        try:
            async with httpx.AsyncClient(
                timeout=DEFAULT_TIMEOUT, transport=self._transport
            ) as client:
                response = await request_with_retry(
                    client.request,
                    method,
                    url,
                    params=params if method.upper() == "GET" else None,
                    json=params if method.upper() != "GET" else None,
                    headers=headers,
                    retry_config=self._retry,
                )
        except httpx.TransportError as exc:
            self._log_request(method, path, started, 0, error=str(exc))
            raise NetworkError(str(exc)) from exc

        self._log_request(method, path, started, response.status_code)
        return self._handle_response(response)

    @staticmethod
    def _handle_response(response: httpx.Response) -> Dict[str, Any]:
        if response.is_success:
            if not response.content:
                return {}
            return response.json()

        status_code = response.status_code
        if status_code == 401:
            raise AuthenticationError()
        if status_code == 429:
            raise RateLimitError()
        try:
            response_data = response.json()
        except ValueError:
            response_data = response.text or None
        raise RequestFailed(status_code, response_data)

    @staticmethod
    def _log_request(
        method: str,
        path: str,
        started: float,
        status_code: int,
        *,
        error: Optional[str] = None,
    ) -> None:
        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        success = error is None and 200 <= status_code < 300
        logger.log(
            logging.INFO if success else logging.ERROR,
            "FreeAgent API request %s %s -> %s (%.2f ms)",
            method.upper(),
            path,
            status_code,
            duration_ms,
            extra={
                "method": method.upper(),
                "endpoint": path,
                "duration_ms": duration_ms,
                "status_code": status_code,
                "success": success,
                "error": error,
            },
        )

    async def fetch_all_pages(
        self,
        kind: str,
        owner_id: str,
        filters: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """Walk every page of a list endpoint and return the combined records."""
        filters = filters or {}
        base_params = {
            key: filters[key]
            for key in _LIST_PARAMS.get(kind, ())
            if filters.get(key) is not None
        }
        page_size = self._config.page_size
        records: List[Dict[str, Any]] = []
        page = 0

        for page in range(1, self._config.max_pages + 1):
            body = await self.request(
                "GET",
                kind,
                owner_id,
                {**base_params, "page": page, "per_page": page_size},
            )
            results = body.get(kind) or []
            records.extend(results)
            if len(results) < page_size:
                break
        else:
            logger.warning(
                "FreeAgent pagination safety limit reached",
                extra={"endpoint": kind, "page": page, "total_results": len(records)},
            )

        logger.info(
            "FreeAgent pagination completed",
            extra={"endpoint": kind, "total_pages": page, "total_results": len(records)},
        )
        return records

    async def get_binary_resource(
        self,
        path: str,
        owner_id: str,
        field_path: Sequence[str] = ("pdf", "content"),
    ) -> bytes:
        """Fetch a JSON document and base64-decode the field at ``field_path``."""
        body: Any = await self.request("GET", path, owner_id)
        for field in field_path:
            if not isinstance(body, dict) or field not in body:
                raise DecodingError(
                    f"Field {'.'.join(field_path)} not found in FreeAgent response"
                )
            body = body[field]
        if not isinstance(body, str):
            raise DecodingError(f"Field {'.'.join(field_path)} is not a base64 string")
        try:
            return base64.b64decode(body, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise DecodingError("Failed to decode base64 content") from exc

    async def get_invoice_pdf(self, owner_id: str, invoice_id: str) -> bytes:
        content = await self.get_binary_resource(
            f"invoices/{extract_id(invoice_id)}/pdf", owner_id
        )
        if not content.startswith(_PDF_SIGNATURE):
            logger.error(
                "FreeAgent returned content that is not a PDF",
                extra={"owner_id": owner_id, "invoice_id": invoice_id},
            )
            raise DecodingError("Decoded content is not a PDF document")
        return content

    # Cached fetchers

    async def get_invoices(
        self, owner_id: str, filters: Optional[Dict[str, Any]] = None, *, use_cache: bool = True
    ) -> List[Dict[str, Any]]:
        return await self._cached(
            "invoices",
            owner_id,
            filters or {},
            self._config.invoices_ttl,
            use_cache,
            lambda: self.fetch_all_pages("invoices", owner_id, filters),
        )

    async def get_invoice(
        self, owner_id: str, invoice_id: str, *, use_cache: bool = True
    ) -> Dict[str, Any]:
        return await self._cached(
            "invoice",
            owner_id,
            {"id": invoice_id},
            self._config.invoices_ttl,
            use_cache,
            lambda: self._get_single("invoice", "invoices", invoice_id, owner_id),
        )

    async def get_contacts(
        self, owner_id: str, filters: Optional[Dict[str, Any]] = None, *, use_cache: bool = True
    ) -> List[Dict[str, Any]]:
        return await self._cached(
            "contacts",
            owner_id,
            filters or {},
            self._config.contacts_ttl,
            use_cache,
            lambda: self.fetch_all_pages("contacts", owner_id, filters),
        )

    async def get_contact(
        self, owner_id: str, contact_id: str, *, use_cache: bool = True
    ) -> Dict[str, Any]:
        return await self._cached(
            "contact",
            owner_id,
            {"id": contact_id},
            self._config.contacts_ttl,
            use_cache,
            lambda: self._get_single("contact", "contacts", contact_id, owner_id),
        )

    async def get_projects(
        self, owner_id: str, filters: Optional[Dict[str, Any]] = None, *, use_cache: bool = True
    ) -> List[Dict[str, Any]]:
        return await self._cached(
            "projects",
            owner_id,
            filters or {},
            self._config.projects_ttl,
            use_cache,
            lambda: self.fetch_all_pages("projects", owner_id, filters),
        )

    async def get_project(
        self, owner_id: str, project_id: str, *, use_cache: bool = True
    ) -> Dict[str, Any]:
        return await self._cached(
            "project",
            owner_id,
            {"id": project_id},
            self._config.projects_ttl,
            use_cache,
            lambda: self._get_single("project", "projects", project_id, owner_id),
        )

    async def _get_single(
        self, key: str, endpoint: str, resource_id: str, owner_id: str
    ) -> Dict[str, Any]:
        body = await self.request("GET", f"{endpoint}/{extract_id(resource_id)}", owner_id)
        return body.get(key) or {}

    async def _cached(
        self,
        kind: str,
        owner_id: str,
        filters: Dict[str, Any],
        ttl_seconds: int,
        use_cache: bool,
        loader: Callable[[], Awaitable[Any]],
    ) -> Any:
        key = self.cache_key(kind, owner_id, filters)
        if use_cache:
            cached = self._cache.get(key)
            if cached is not None:
                return cached
        value = await loader()
        self._cache.put(key, value, ttl_seconds=ttl_seconds, owner_id=owner_id)
        return value

    @staticmethod
    def cache_key(kind: str, owner_id: str, filters: Dict[str, Any]) -> str:
        digest = hashlib.sha256(
            json.dumps(filters, sort_keys=True, default=str).encode("utf-8")
        ).hexdigest()
        return f"{API_CACHE_PREFIX}{kind}:{owner_id}:{digest}"

    def clear_owner_cache(self, owner_id: str) -> int:
        """Drop cached API responses belonging to ``owner_id`` only."""
        removed = self._cache.forget_owner(owner_id, key_prefix=API_CACHE_PREFIX)
        logger.info(
            "FreeAgent response cache cleared",
            extra={"owner_id": owner_id, "entries": removed},
        )
        return removed

    extract_id = staticmethod(extract_id)


__all__ = ["FreeAgentApiClient", "build_rate_limiter", "extract_id"]
