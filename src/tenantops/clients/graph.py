"""
Microsoft Graph style directory client.

Objects are addressed by natural key: the item name is the object's
``displayName`` (authentication method configurations are addressed by
their fixed id instead). Upserts look the object up first and then PATCH
or POST, so repeating a call converges on the same state.

The bearer token is supplied by the caller; acquiring it is out of scope.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from circuitbreaker import CircuitBreakerError, circuit

from tenantops.clients.base import is_retryable_status
from tenantops.clients.payload import writable
from tenantops.core.errors import NotFoundError, TerminalRemoteError, TransientRemoteError
from tenantops.store.models import ItemKind, format_key

logger = structlog.get_logger()

COLLECTIONS: dict[ItemKind, str] = {
    ItemKind.GROUP: "/groups",
    ItemKind.NAMED_LOCATION: "/identity/conditionalAccess/namedLocations",
    ItemKind.ACCESS_POLICY: "/identity/conditionalAccess/policies",
    ItemKind.SERVICE_PRINCIPAL: "/servicePrincipals",
    ItemKind.SSO_APP: "/applications",
    ItemKind.AUTH_METHOD_POLICY: (
        "/policies/authenticationMethodsPolicy/authenticationMethodConfigurations"
    ),
}


class GraphDirectoryClient:
    """Directory client over HTTP with a per-instance circuit breaker."""

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        timeout: float = 30.0,
        circuit_failure_threshold: int = 5,
        circuit_recovery_timeout: int = 60,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._client = http_client or httpx.Client(timeout=timeout)
        self._send = circuit(
            failure_threshold=circuit_failure_threshold,
            recovery_timeout=circuit_recovery_timeout,
            expected_exception=TransientRemoteError,
        )(self._send_once)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> GraphDirectoryClient:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
            "ConsistencyLevel": "eventual",
        }

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        try:
            return self._send(method, path, params=params, json=json)
        except CircuitBreakerError as exc:
            raise TransientRemoteError(f"Directory service circuit open: {exc}") from exc

    def _send_once(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        try:
            response = self._client.request(
                method, url, params=params, json=json, headers=self._headers(), timeout=self._timeout
            )
        except (httpx.TimeoutException, httpx.ConnectError, httpx.ReadError) as exc:
            logger.warning("http_network_error", method=method, url=url, error=str(exc))
            raise TransientRemoteError(f"{method} {url}: {exc}") from exc

        if response.status_code == 404:
            raise NotFoundError(f"{method} {url}: not found")
        if is_retryable_status(response.status_code):
            logger.warning(
                "http_retryable_error", status=response.status_code, method=method, url=url
            )
            raise TransientRemoteError(f"HTTP {response.status_code}: {response.text}")
        if response.status_code >= 400:
            logger.error(
                "http_permanent_error", status=response.status_code, method=method, url=url
            )
            raise TerminalRemoteError(
                f"HTTP {response.status_code}: {response.text}",
                {"status": response.status_code},
            )
        return response.json() if response.content else {}

    def _find(self, kind: ItemKind, name: str) -> dict[str, Any] | None:
        collection = COLLECTIONS[kind]
        if kind is ItemKind.AUTH_METHOD_POLICY:
            try:
                return self._request("GET", f"{collection}/{name}")
            except NotFoundError:
                return None

        escaped = name.replace("'", "''")
        data = self._request("GET", collection, params={"$filter": f"displayName eq '{escaped}'"})
        matches = data.get("value", [])
        if len(matches) > 1:
            raise TerminalRemoteError(
                f"{format_key((kind, name))} matches {len(matches)} objects; "
                "natural key is ambiguous"
            )
        return matches[0] if matches else None

    def create_or_update(self, kind: ItemKind, name: str, body: dict[str, Any]) -> str:
        collection = COLLECTIONS[kind]
        payload = writable(body)

        if kind is ItemKind.AUTH_METHOD_POLICY:
            self._request("PATCH", f"{collection}/{name}", json=payload)
            return name

        existing = self._find(kind, name)
        if existing is not None:
            self._request("PATCH", f"{collection}/{existing['id']}", json=payload)
            logger.debug("graph_updated", item=format_key((kind, name)), remote_id=existing["id"])
            return existing["id"]

        created = self._request("POST", collection, json=payload)
        logger.debug("graph_created", item=format_key((kind, name)), remote_id=created.get("id"))
        return created["id"]

    def get(self, kind: ItemKind, name: str) -> dict[str, Any]:
        document = self._find(kind, name)
        if document is None:
            raise NotFoundError(f"{format_key((kind, name))} not found")
        return document

    def delete(self, kind: ItemKind, name: str) -> None:
        if kind is ItemKind.AUTH_METHOD_POLICY:
            raise TerminalRemoteError(
                f"{format_key((kind, name))} is a built-in configuration and cannot be deleted"
            )
        existing = self.get(kind, name)
        self._request("DELETE", f"{COLLECTIONS[kind]}/{existing['id']}")
