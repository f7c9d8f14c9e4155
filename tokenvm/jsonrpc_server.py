"""JSON-RPC service that answers queries about token VM state."""

from __future__ import annotations

import base64
import json
import logging
from collections.abc import Mapping, Sequence
from typing import Any, Callable, Protocol

from .address import address, decode_id, parse_address
from .errors import AssetNotFoundError, RPCError, TxNotFoundError
from .storage import AssetRecord, TransactionRecord

JSONRPC_ENDPOINT = "/tokenapi"
ORDERS_TO_SEND = 128
DEFAULT_NAMESPACE = "tokenvm"
DEFAULT_HRP = "token"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
SERVER_ERROR = -32000

logger = logging.getLogger(__name__)


class Controller(Protocol):
    """What the server needs from the running VM."""

    def genesis(self) -> Any:
        """Return the JSON-serialisable genesis of the chain."""
        ...

    def get_transaction(self, tx_id: bytes) -> TransactionRecord | None:
        """Return the stored result of a transaction, or None."""
        ...

    def get_asset_from_state(self, asset: bytes) -> AssetRecord | None:
        """Return the asset record, or None if the asset does not exist."""
        ...

    def get_balance_from_state(self, public_key: bytes, asset: bytes) -> int:
        """Return the balance of an account in an asset."""
        ...

    def orders(self, pair: str, limit: int) -> Sequence[Any]:
        """Return at most limit JSON-serialisable orders for a pair."""
        ...

    def get_loan_from_state(self, asset: bytes, destination: bytes) -> int:
        """Return the amount of an asset loaned to a destination chain."""
        ...


def _field(args: Mapping[str, Any], name: str) -> Any:
    try:
        return args[name]
    except KeyError:
        raise ValueError(f"missing field {name!r}") from None


def _id_field(args: Mapping[str, Any], name: str) -> bytes:
    value = _field(args, name)
    if not isinstance(value, str):
        raise ValueError(f"field {name!r} must be a string")
    return decode_id(value)


class JSONRPCServer:
    """Dispatches JSON-RPC requests to a controller; also a WSGI application."""

    def __init__(
        self,
        controller: Controller,
        namespace: str = DEFAULT_NAMESPACE,
        hrp: str = DEFAULT_HRP,
    ) -> None:
        self.controller = controller
        self.namespace = namespace
        self.hrp = hrp
        self._methods: dict[str, Callable[[Mapping[str, Any]], dict[str, Any]]] = {
            "genesis": self.genesis,
            "tx": self.tx,
            "asset": self.asset,
            "balance": self.balance,
            "orders": self.orders,
            "loan": self.loan,
        }

    def genesis(self, args: Mapping[str, Any] | None = None) -> dict[str, Any]:
        return {"genesis": self.controller.genesis()}

    def tx(self, args: Mapping[str, Any]) -> dict[str, Any]:
        record = self.controller.get_transaction(_id_field(args, "txId"))
        if record is None:
            raise TxNotFoundError()
        return {"timestamp": record.timestamp, "success": record.success, "units": record.units}

    def asset(self, args: Mapping[str, Any]) -> dict[str, Any]:
        record = self.controller.get_asset_from_state(_id_field(args, "asset"))
        if record is None:
            raise AssetNotFoundError()
        return {
            "metadata": base64.b64encode(record.metadata).decode("ascii"),
            "supply": record.supply,
            "owner": address(record.owner, self.hrp),
            "warp": record.warp,
        }

    def balance(self, args: Mapping[str, Any]) -> dict[str, Any]:
        text = _field(args, "address")
        if not isinstance(text, str):
            raise ValueError("field 'address' must be a string")
        public_key = parse_address(text, self.hrp)
        amount = self.controller.get_balance_from_state(public_key, _id_field(args, "asset"))
        return {"amount": amount}

    def orders(self, args: Mapping[str, Any]) -> dict[str, Any]:
        pair = _field(args, "pair")
        return {"orders": list(self.controller.orders(pair, ORDERS_TO_SEND))}

    def loan(self, args: Mapping[str, Any]) -> dict[str, Any]:
        amount = self.controller.get_loan_from_state(
            _id_field(args, "asset"), _id_field(args, "destination")
        )
        return {"amount": amount}

    def _resolve(self, name: str) -> Callable[[Mapping[str, Any]], dict[str, Any]]:
        namespace, _, method = name.rpartition(".")
        if namespace != self.namespace or method not in self._methods:
            raise RPCError(f"method {name!r} not found", METHOD_NOT_FOUND)
        return self._methods[method]

    @staticmethod
    def _params(params: Any) -> Mapping[str, Any]:
        if params is None:
            return {}
        if isinstance(params, list):
            if not params:
                return {}
            params = params[0]
        if not isinstance(params, Mapping):
            raise TypeError("params must be an object")
        return params

    @staticmethod
    def _error(request_id: Any, code: int, message: str) -> dict[str, Any]:
        return {"jsonrpc": "2.0", "error": {"code": code, "message": message}, "id": request_id}

    def handle(self, request: Any) -> dict[str, Any]:
        """Answer one decoded JSON-RPC request with a response envelope."""
        request_id = request.get("id") if isinstance(request, Mapping) else None
        try:
            if not isinstance(request, Mapping) or not isinstance(request.get("method"), str):
                raise RPCError("invalid request", INVALID_REQUEST)
            method = self._resolve(request["method"])
            result = method(self._params(request.get("params")))
        except RPCError as exc:
            return self._error(request_id, exc.code, exc.message)
        except (ValueError, KeyError, TypeError) as exc:
            return self._error(request_id, INVALID_PARAMS, str(exc))
        except Exception as exc:  # controller failures become error replies
            logger.exception("request failed")
            return self._error(request_id, SERVER_ERROR, str(exc))
        return {"jsonrpc": "2.0", "result": result, "id": request_id}

    def __call__(self, environ: dict[str, Any], start_response: Callable[..., Any]) -> list[bytes]:
        if environ.get("REQUEST_METHOD") != "POST":
            start_response(
                "405 Method Not Allowed",
                [("Allow", "POST"), ("Content-Type", "text/plain")],
            )
            return [b"method not allowed\n"]
        try:
            length = int(environ.get("CONTENT_LENGTH") or 0)
        except ValueError:
            length = 0
        body = environ["wsgi.input"].read(length) if length > 0 else b""
        try:
            request = json.loads(body)
        except ValueError:
            response = self._error(None, PARSE_ERROR, "parse error")
        else:
            response = self.handle(request)
        payload = json.dumps(response).encode("utf-8")
        start_response(
            "200 OK",
            [("Content-Type", "application/json"), ("Content-Length", str(len(payload)))],
        )
        return [payload]