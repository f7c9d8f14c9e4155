import base64
import io
import json

import pytest

from tokenvm import storage
from tokenvm.address import address, encode_id
from tokenvm.errors import AssetNotFoundError, TxNotFoundError
from tokenvm.jsonrpc_server import (
    DEFAULT_HRP,
    DEFAULT_NAMESPACE,
    ORDERS_TO_SEND,
    JSONRPCServer,
)

TX_ID = bytes([1]) * 32
ASSET = bytes([2]) * 32
DEST = bytes([3]) * 32
OWNER = bytes([7]) * 32


class FakeController:
    def __init__(self):
        self.db = storage.MemoryDatabase()
        self.order_book = {}
        self.order_limits = []

    def genesis(self):
        return {"minUnitPrice": 1}

    def get_transaction(self, tx_id):
        return storage.get_transaction(self.db, tx_id)

    def get_asset_from_state(self, asset):
        return storage.get_asset_from_state(self.db.read_state, asset)

    def get_balance_from_state(self, public_key, asset):
        return storage.get_balance_from_state(self.db.read_state, public_key, asset)

    def orders(self, pair, limit):
        self.order_limits.append(limit)
        return self.order_book.get(pair, [])[:limit]

    def get_loan_from_state(self, asset, destination):
        return storage.get_loan_from_state(self.db.read_state, asset, destination)


@pytest.fixture
def controller():
    return FakeController()


@pytest.fixture
def server(controller):
    return JSONRPCServer(controller)


def test_genesis_passes_controller_value(server):
    assert server.genesis({}) == {"genesis": {"minUnitPrice": 1}}


def test_tx_found(server, controller):
    storage.store_transaction(controller.db, TX_ID, 1234, True, 99)
    reply = server.tx({"txId": encode_id(TX_ID)})
    assert reply == {"timestamp": 1234, "success": True, "units": 99}


def test_tx_missing(server):
    with pytest.raises(TxNotFoundError):
        server.tx({"txId": encode_id(TX_ID)})


def test_asset_found(server, controller):
    storage.set_asset(controller.db, ASSET, b"meta", 500, OWNER, True)
    reply = server.asset({"asset": encode_id(ASSET)})
    assert base64.b64decode(reply["metadata"]) == b"meta"
    assert reply["supply"] == 500
    assert reply["owner"] == address(OWNER, DEFAULT_HRP)
    assert reply["warp"] is True


def test_asset_missing(server):
    with pytest.raises(AssetNotFoundError):
        server.asset({"asset": encode_id(ASSET)})


def test_balance(server, controller):
    storage.set_balance(controller.db, OWNER, ASSET, 42)
    reply = server.balance({"address": address(OWNER, DEFAULT_HRP), "asset": encode_id(ASSET)})
    assert reply == {"amount": 42}


def test_balance_missing_is_zero(server):
    reply = server.balance({"address": address(OWNER, DEFAULT_HRP), "asset": encode_id(ASSET)})
    assert reply == {"amount": 0}


def test_balance_bad_address(server):
    with pytest.raises(ValueError):
        server.balance({"address": "not-an-address", "asset": encode_id(ASSET)})


def test_orders_uses_fixed_limit(server, controller):
    controller.order_book["a-b"] = [{"id": "x"}, {"id": "y"}]
    reply = server.orders({"pair": "a-b"})
    assert reply == {"orders": [{"id": "x"}, {"id": "y"}]}
    assert controller.order_limits == [ORDERS_TO_SEND] == [128]


def test_loan(server, controller):
    storage.set_loan(controller.db, ASSET, DEST, 110)
    reply = server.loan({"asset": encode_id(ASSET), "destination": encode_id(DEST)})
    assert reply == {"amount": 110}


def test_handle_envelope_with_list_params(server, controller):
    storage.set_balance(controller.db, OWNER, ASSET, 8)
    response = server.handle(
        {
            "jsonrpc": "2.0",
            "method": f"{DEFAULT_NAMESPACE}.balance",
            "params": [{"address": address(OWNER, DEFAULT_HRP), "asset": encode_id(ASSET)}],
            "id": 5,
        }
    )
    assert response["result"] == {"amount": 8}
    assert response["id"] == 5


def test_handle_not_found_error(server):
    response = server.handle(
        {"method": f"{DEFAULT_NAMESPACE}.tx", "params": {"txId": encode_id(TX_ID)}, "id": 1}
    )
    assert response["error"]["message"] == "tx not found"
    assert "result" not in response


def test_handle_unknown_method(server):
    response = server.handle({"method": f"{DEFAULT_NAMESPACE}.nothing", "id": 2})
    assert response["error"]["code"] == -32601


def test_handle_missing_field_is_error(server):
    response = server.handle({"method": f"{DEFAULT_NAMESPACE}.loan", "params": {}, "id": 3})
    assert "destination" in response["error"]["message"] or "asset" in response["error"]["message"]


def _call_wsgi(app, method, body):
    captured = {}

    def start_response(status, headers):
        captured["status"] = status
        captured["headers"] = dict(headers)

    environ = {
        "REQUEST_METHOD": method,
        "CONTENT_LENGTH": str(len(body)),
        "wsgi.input": io.BytesIO(body),
    }
    chunks = app(environ, start_response)
    return captured, b"".join(chunks)


def test_wsgi_post(server, controller):
    storage.set_loan(controller.db, ASSET, DEST, 9)
    body = json.dumps(
        {
            "method": f"{DEFAULT_NAMESPACE}.loan",
            "params": {"asset": encode_id(ASSET), "destination": encode_id(DEST)},
            "id": 1,
        }
    ).encode()
    captured, payload = _call_wsgi(server, "POST", body)
    assert captured["status"] == "200 OK"
    assert captured["headers"]["Content-Type"] == "application/json"
    assert json.loads(payload)["result"] == {"amount": 9}


def test_wsgi_rejects_get(server):
    captured, _ = _call_wsgi(server, "GET", b"")
    assert captured["status"].startswith("405")


def test_wsgi_parse_error(server):
    _, payload = _call_wsgi(server, "POST", b"{not json")
    assert json.loads(payload)["error"]["code"] == -32700