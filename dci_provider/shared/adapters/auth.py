"""
Authenticated Request Pipeline.

Decorates every DoiT Console API request with a bearer token, the provider
User-Agent and the optional customerContext scope, then hands the finished
RequestAttempt to the ResilientTransport.
"""
from __future__ import annotations

import asyncio
import json as jsonlib
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Optional, Protocol, Union, runtime_checkable

import httpx
import structlog
from pydantic import SecretStr

from dci_provider.shared.adapters.http_retry import RequestAttempt, ResilientTransport
from dci_provider.shared.core.exceptions import CredentialError

logger = structlog.get_logger()

CUSTOMER_CONTEXT_PARAM = "customerContext"
USER_AGENT_PRODUCT = "dci-provider"

QueryParams = Mapping[str, Union[str, int, float, bool, None]]


@runtime_checkable
class CredentialSource(Protocol):
    """Anything that can hand out a current bearer token. Must be safe to share across tasks."""

    async def token(self) -> str: ...


class StaticTokenSource:
    """A fixed API token, as configured through DOIT_API_TOKEN."""

    def __init__(self, token: Union[str, SecretStr, None]):
        if isinstance(token, str):
            token = SecretStr(token)
        self._token = token

    async def token(self) -> str:
        value = self._token.get_secret_value().strip() if self._token else ""
        if not value:
            raise CredentialError("No API token configured (set DOIT_API_TOKEN)")
        return value


class CachedTokenSource:
    """
    Caches tokens from an async fetcher for `ttl_seconds`.

    Refreshes are serialized by the source's own lock so concurrent callers
    trigger at most one fetch.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[str]],
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self._fetch = fetch
        self._ttl = ttl_seconds
        self._clock = clock
        self._cached: Optional[str] = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    def invalidate(self) -> None:
        self._cached = None
        self._expires_at = 0.0

    async def token(self) -> str:
        if self._cached and self._clock() < self._expires_at:
            return self._cached
        async with self._lock:
            # Another task may have refreshed while we waited
            if self._cached and self._clock() < self._expires_at:
                return self._cached
            try:
                value = await self._fetch()
            except CredentialError:
                raise
            except Exception as exc:
                raise CredentialError(f"Token refresh failed: {exc}") from exc
            if not value:
                raise CredentialError("Token source returned an empty token")
            self._cached = value
            self._expires_at = self._clock() + self._ttl
            logger.debug("dci_token_refreshed", ttl_seconds=self._ttl)
            return value


def build_user_agent(
    host_version: str, provider_version: str, append: Optional[str] = None
) -> str:
    """
    Terraform/<host_version> dci-provider/<provider_version>[ <append>]

    `append` comes from TF_APPEND_USER_AGENT so CI systems can tag their traffic.
    """
    user_agent = f"Terraform/{host_version} {USER_AGENT_PRODUCT}/{provider_version}"
    extra = (append or "").strip()
    if extra:
        user_agent = f"{user_agent} {extra}"
    return user_agent


class AuthenticatedPipeline:
    """Builds authenticated RequestAttempts and executes them reliably."""

    def __init__(
        self,
        transport: ResilientTransport,
        credentials: CredentialSource,
        *,
        customer_context: Optional[str] = None,
        user_agent: Optional[str] = None,
    ):
        self.transport = transport
        self.credentials = credentials
        self.customer_context = (customer_context or "").strip() or None
        self.user_agent = user_agent

    async def _bearer_token(self) -> str:
        try:
            token = await self.credentials.token()
        except CredentialError:
            raise
        except Exception as exc:
            raise CredentialError(f"Unable to obtain API token: {exc}") from exc
        if not token:
            raise CredentialError("Credential source returned an empty token")
        return token

    def _build_url(self, url: str, params: Optional[QueryParams]) -> str:
        merged: dict[str, Any] = {
            k: v for k, v in (params or {}).items() if v is not None
        }
        if self.customer_context:
            merged[CUSTOMER_CONTEXT_PARAM] = self.customer_context
        if not merged:
            return url
        query = {
            k: (str(v).lower() if isinstance(v, bool) else str(v))
            for k, v in merged.items()
        }
        return str(httpx.URL(url).copy_merge_params(query))

    async def prepare(
        self,
        method: str,
        url: str,
        *,
        params: Optional[QueryParams] = None,
        json: Any = None,
        content: Optional[bytes] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> RequestAttempt:
        """Resolve credentials and build the attempt. Fails before any network I/O."""
        token = await self._bearer_token()

        request_headers = httpx.Headers({"Accept": "application/json"})
        if self.user_agent:
            request_headers["User-Agent"] = self.user_agent
        if json is not None:
            if content is not None:
                raise ValueError("Pass either json or content, not both")
            content = jsonlib.dumps(json).encode("utf-8")
            request_headers["Content-Type"] = "application/json"
        # Case-insensitive merge: a caller override replaces rather than duplicates
        request_headers.update(headers or {})
        request_headers["Authorization"] = f"Bearer {token}"

        return RequestAttempt(
            method=method.upper(),
            url=self._build_url(url, params),
            headers=dict(request_headers),
            content=content,
        )

    async def send(
        self,
        method: str,
        url: str,
        *,
        params: Optional[QueryParams] = None,
        json: Any = None,
        content: Optional[bytes] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> httpx.Response:
        attempt = await self.prepare(
            method, url, params=params, json=json, content=content, headers=headers
        )
        return await self.transport.execute(attempt)
