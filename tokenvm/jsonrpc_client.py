"""Client for the token VM JSON-RPC service."""

from __future__ import annotations

import base64
import itertools
import json
import logging
import time
import urllib.error
import urllib.request
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .address import encode_id
from .errors import AssetNotFoundError, RPCError, TxNotFoundError
from .jsonrpc_server import DEFAULT_NAMESPACE, JSONRPC_ENDPOINT, SERVER_ERROR

logger = logging.getLogger(__name__)

Transport = Callable[[str, bytes], bytes]
"""Posts a request body to a URL and returns the response body."""


@dataclass(frozen=True)
class AssetInfo:
    metadata: bytes
    supply: int
    owner: str
    warp: bool


@dataclass(frozen=True)
class TxStatus:
    found: bool
    success: bool
    timestamp: int


def _http_transport(timeout: float) -> Transport:
    def post(url: str, body: bytes) -> bytes:
        request = urllib.request.Request(
            url,
            data=body,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=timeout) as response:
                return response.read()
        except urllib.error.HTTPError as exc:
            payload = exc.read()
            if payload:
                return payload
            raise RPCError(f"http status {exc.code}") from exc

    return post


class JSONRPCClient:
    """Queries balances, assets, orders, loans and transactions of one chain."""

    def __init__(
        self,
        uri: str,
        chain_id: bytes,
        *,
        namespace: str = DEFAULT_NAMESPACE,
        transport: Transport | None = None,
        request_timeout: float = 30.0,
        poll_interval: float = 1.0,
    ) -> None:
        self.url = uri.removesuffix("/") + JSONRPC_ENDPOINT
        self.chain_id = bytes(chain_id)
        self.namespace = namespace
        self.poll_interval = poll_interval
        self._transport = transport or _http_transport(request_timeout)
        self._request_ids = itertools.count(1)
        self._genesis: Any = None

    def _send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        body = json.dumps(
            {
                "jsonrpc": "2.0",
                "method": f"{self.namespace}.{method}",
                "params": [params or {}],
                "id": next(self._request_ids),
            }
        ).encode("utf-8")
        try:
            reply = json.loads(self._transport(self.url, body))
        except ValueError as exc:
            raise RPCError(f"malformed response: {exc}") from exc
        error = reply.get("error")
        if error:
            raise RPCError(error.get("message", RPCError.default_message), error.get("code", SERVER_ERROR))
        return reply.get("result") or {}

    def genesis(self) -> Any:
        """Return the chain genesis, fetched once and then cached."""
        if self._genesis is None:
            self._genesis = self._send("genesis").get("genesis")
        return self._genesis

    def tx(self, tx_id: bytes) -> TxStatus:
        try:
            reply = self._send("tx", {"txId": encode_id(tx_id)})
        except RPCError as exc:
            # The error travels as text, so it is recognised by its message.
            if TxNotFoundError.default_message in exc.message:
                return TxStatus(found=False, success=False, timestamp=-1)
            raise
        return TxStatus(found=True, success=bool(reply.get("success")), timestamp=reply.get("timestamp", 0))

    def asset(self, asset: bytes) -> AssetInfo | None:
        """Return the asset, or None if it does not exist."""
        try:
            reply = self._send("asset", {"asset": encode_id(asset)})
        except RPCError as exc:
            if AssetNotFoundError.default_message in exc.message:
                return None
            raise
        metadata = reply.get("metadata")
        return AssetInfo(
            metadata=base64.b64decode(metadata) if metadata else b"",
            supply=reply.get("supply", 0),
            owner=reply.get("owner", ""),
            warp=bool(reply.get("warp")),
        )

    def balance(self, addr: str, asset: bytes) -> int:
        return self._send("balance", {"address": addr, "asset": encode_id(asset)}).get("amount", 0)

    def orders(self, pair: str) -> list[Any]:
        return list(self._send("orders", {"pair": pair}).get("orders") or [])

    def loan(self, asset: bytes, destination: bytes) -> int:
        reply = self._send("loan", {"asset": encode_id(asset), "destination": encode_id(destination)})
        return reply.get("amount", 0)

    def _wait(self, done: Callable[[], bool], timeout: float | None, what: str) -> None:
        deadline = None if timeout is None else time.monotonic() + timeout
        while not done():
            if deadline is not None and time.monotonic() >= deadline:
                raise TimeoutError(f"timed out waiting for {what}")
            time.sleep(self.poll_interval)

    def wait_for_balance(self, addr: str, asset: bytes, minimum: int, timeout: float | None = None) -> None:
        """Poll until the balance of addr reaches minimum."""

        def reached() -> bool:
            if self.balance(addr, asset) >= minimum:
                return True
            logger.info("waiting for %d balance: %s", minimum, addr)
            return False

        self._wait(reached, timeout, "balance")

    def wait_for_transaction(self, tx_id: bytes, timeout: float | None = None) -> bool:
        """Poll until the transaction is known and return whether it succeeded."""
        seen: list[TxStatus] = []

        def found() -> bool:
            status = self.tx(tx_id)
            if status.found:
                seen.append(status)
            return status.found

        self._wait(found, timeout, "transaction")
        return seen[-1].success