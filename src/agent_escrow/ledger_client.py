"""
HTTP client for the remote payment (escrow ledger) service.

The engine only depends on the ``LedgerClient`` protocol; ``HttpLedgerClient``
is the httpx-backed implementation. Calls are single-shot: failures surface as
``TransportError`` subclasses and retrying is left to the caller.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

import httpx

from .config import EscrowConfig, Network
from .errors import LedgerTimeoutError, RemoteRejectedError, TransportError

logger = logging.getLogger(__name__)


class LedgerClient(Protocol):
    def create_payment(self, payload: dict[str, Any]) -> dict[str, Any]: ...

    def resolve_payment(self, blockchain_identifier: str, network: str) -> dict[str, Any]: ...

    def submit_result(
        self, blockchain_identifier: str, network: str, result_hash: str
    ) -> dict[str, Any]: ...

    def authorize_refund(self, blockchain_identifier: str, network: str) -> dict[str, Any]: ...

    def list_payments(
        self,
        network: str,
        limit: int,
        cursor: Optional[str] = None,
        filter_smart_contract_address: Optional[str] = None,
    ) -> dict[str, Any]: ...

    def get_wallet(self, network: str) -> dict[str, Any]: ...

    def close(self) -> None: ...


class HttpLedgerClient:
    """Payment service API v1 over httpx."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        seller_vkey: Optional[str] = None,
        timeout_seconds: float = 30.0,
        http: Optional[httpx.Client] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        headers = {"accept": "application/json"}
        if api_key:
            headers["token"] = api_key
        if seller_vkey:
            headers["X-Seller-Vkey"] = seller_vkey
        if http is not None:
            http.headers.update(headers)
            self._http = http
        else:
            self._http = httpx.Client(
                timeout=timeout_seconds,
                headers=headers,
                transport=transport,
            )

    @classmethod
    def from_config(cls, config: EscrowConfig, **kwargs) -> "HttpLedgerClient":
        return cls(
            base_url=config.payment_service_url,
            api_key=config.payment_api_key,
            seller_vkey=config.identity.seller_vkey,
            timeout_seconds=config.timeout_seconds,
            **kwargs,
        )

    def set_seller_vkey(self, seller_vkey: Optional[str]) -> None:
        """Scope subsequent requests to *seller_vkey* (or unscope them)."""
        if seller_vkey:
            self._http.headers["X-Seller-Vkey"] = seller_vkey
        else:
            self._http.headers.pop("X-Seller-Vkey", None)

    def create_payment(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self._request("POST", "/payment", json=payload)

    def resolve_payment(self, blockchain_identifier: str, network: str) -> dict[str, Any]:
        return self._request(
            "POST",
            "/payment/resolve-blockchain-identifier",
            json={"blockchainIdentifier": blockchain_identifier, "network": _net(network)},
        )

    def submit_result(
        self, blockchain_identifier: str, network: str, result_hash: str
    ) -> dict[str, Any]:
        return self._request(
            "POST",
            "/payment/submit-result",
            json={
                "blockchainIdentifier": blockchain_identifier,
                "network": _net(network),
                "resultHash": result_hash,
            },
        )

    def authorize_refund(self, blockchain_identifier: str, network: str) -> dict[str, Any]:
        return self._request(
            "POST",
            "/payment/authorize-refund",
            json={"blockchainIdentifier": blockchain_identifier, "network": _net(network)},
        )

    def list_payments(
        self,
        network: str,
        limit: int,
        cursor: Optional[str] = None,
        filter_smart_contract_address: Optional[str] = None,
    ) -> dict[str, Any]:
        params = {"network": _net(network), "limit": str(limit)}
        if cursor:
            params["cursorId"] = cursor
        if filter_smart_contract_address:
            params["filterSmartContractAddress"] = filter_smart_contract_address
        return self._request("GET", "/payment", params=params)

    def get_wallet(self, network: str) -> dict[str, Any]:
        return self._request("GET", "/wallet", params={"network": _net(network)})

    def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            resp = self._http.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise LedgerTimeoutError(f"{method} {url} timed out: {e}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

        if not 200 <= resp.status_code < 300:
            raise RemoteRejectedError(resp.status_code, _error_message(resp))

        try:
            body = resp.json()
        except ValueError as e:
            raise TransportError(f"{method} {url} returned invalid JSON: {e}") from e
        logger.debug("%s %s -> %d", method, path, resp.status_code)
        return _unwrap(body)

    def close(self):
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


def _net(network: str | Network) -> str:
    return network.value if isinstance(network, Network) else str(network)


def _unwrap(body: Any) -> dict[str, Any]:
    if (
        isinstance(body, dict)
        and body.get("status") == "success"
        and isinstance(body.get("data"), dict)
    ):
        body = body["data"]
    if not isinstance(body, dict):
        raise TransportError(f"Expected a JSON object from ledger, got {type(body).__name__}")
    return body


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        if body.get("message"):
            return str(body["message"])
    return resp.text[:200]
