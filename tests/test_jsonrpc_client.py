import json
import threading
from wsgiref.simple_server import WSGIRequestHandler, make_server

import pytest

from tokenvm import storage
from tokenvm.address import address
from tokenvm.errors import RPCError
from tokenvm.jsonrpc_client import AssetInfo, JSONRPCClient, TxStatus
from tokenvm.jsonrpc_server import DEFAULT_HRP, JSONRPCServer

CHAIN = bytes([9]) * 32
TX_ID = bytes([1]) * 32
ASSET = bytes([2]) * 32
DEST = bytes([3]) * 32
OWNER = bytes([7]) * 32
ADDR = address(OWNER, DEFAULT_HRP)


class FakeController:
    def __init__(self):
        self.db = storage.MemoryDatabase()
        self.order_book = {}
        self.genesis_calls = 0

    def genesis(self):
        self.genesis_calls += 1
        return {"minUnitPrice": 1}

    def get_transaction(self, tx_id):
        return storage.get_transaction(self.db, tx_id)

    def get_asset_from_state(self, asset):
        return storage.get_asset_from_state(self.db.read_state, asset)

    def get_balance_from_state(self, public_key, asset):
        return storage.get_balance_from_state(self.db.read_state, public_key, asset)

    def orders(self, pair, limit):
        return self.order_book.get(pair, [])[:limit]

    def get_loan_from_state(self, asset, destination):
        return storage.get_loan_from_state(self.db.read_state, asset, destination)


@pytest.fixture
def controller():
    return FakeController()


@pytest.fixture
def urls():
    return []


@pytest.fixture
def client(controller, urls):
    server = JSONRPCServer(controller)

    def transport(url, body):
        urls.append(url)
        return json.dumps(server.handle(json.loads(body))).encode()

    return JSONRPCClient("http://node.example.com/ext/bc/x/", CHAIN, transport=transport, poll_interval=0)


def test_endpoint_url(client, controller, urls):
    storage.set_balance(controller.db, OWNER, ASSET, 12)
    assert client.balance(ADDR, ASSET) == 12
    assert urls == ["http://node.example.com/ext/bc/x/tokenapi"]


def test_genesis_is_cached(client, controller):
    first = client.genesis()
    second = client.genesis()
    assert first == second == {"minUnitPrice": 1}
    assert controller.genesis_calls == 1


def test_tx_found_and_missing(client, controller):
    assert client.tx(TX_ID) == TxStatus(found=False, success=False, timestamp=-1)
    storage.store_transaction(controller.db, TX_ID, 77, True, 5)
    assert client.tx(TX_ID) == TxStatus(found=True, success=True, timestamp=77)


def test_asset_round_trip(client, controller):
    assert client.asset(ASSET) is None
    storage.set_asset(controller.db, ASSET, b"blah", 15, OWNER, False)
    assert client.asset(ASSET) == AssetInfo(metadata=b"blah", supply=15, owner=ADDR, warp=False)


def test_asset_empty_metadata(client, controller):
    storage.set_asset(controller.db, ASSET, b"", 0, OWNER, True)
    info = client.asset(ASSET)
    assert info.metadata == b""
    assert info.warp is True


def test_balance_and_loan(client, controller):
    assert client.balance(ADDR, ASSET) == 0
    storage.set_balance(controller.db, OWNER, ASSET, 100000)
    storage.set_loan(controller.db, ASSET, DEST, 2900)
    assert client.balance(ADDR, ASSET) == 100000
    assert client.loan(ASSET, DEST) == 2900


def test_orders(client, controller):
    controller.order_book["p"] = [{"id": "o1", "remaining": 4}]
    assert client.orders("p") == [{"id": "o1", "remaining": 4}]
    assert client.orders("other") == []


def test_bad_address_raises(client):
    with pytest.raises(RPCError):
        client.balance("bogus", ASSET)


def test_wait_for_balance_polls_until_reached(client, controller):
    calls = []
    original = controller.get_balance_from_state

    def delayed(public_key, asset):
        calls.append(public_key)
        if len(calls) == 3:
            storage.set_balance(controller.db, public_key, asset, 50)
        return original(public_key, asset)

    controller.get_balance_from_state = delayed
    client.wait_for_balance(ADDR, ASSET, 50, timeout=5)
    assert len(calls) == 3
    assert client.balance(ADDR, ASSET) == 50


def test_wait_for_balance_times_out(client):
    with pytest.raises(TimeoutError):
        client.wait_for_balance(ADDR, ASSET, 1, timeout=0.01)


def test_wait_for_transaction_reports_failure(client, controller):
    calls = []
    original = controller.get_transaction

    def delayed(tx_id):
        calls.append(tx_id)
        if len(calls) == 2:
            storage.store_transaction(controller.db, tx_id, 5, False, 1)
        return original(tx_id)

    controller.get_transaction = delayed
    assert client.wait_for_transaction(TX_ID, timeout=5) is False
    assert len(calls) == 2


def test_wait_for_transaction_times_out(client):
    with pytest.raises(TimeoutError):
        client.wait_for_transaction(TX_ID, timeout=0.01)


class _QuietHandler(WSGIRequestHandler):
    def log_message(self, *args):
        pass


def test_over_http(controller):
    storage.set_balance(controller.db, OWNER, ASSET, 321)
    httpd = make_server("127.0.0.1", 0, JSONRPCServer(controller), handler_class=_QuietHandler)
    thread = threading.Thread(target=httpd.handle_request)
    thread.start()
    try:
        host, port = httpd.server_address
        client = JSONRPCClient(f"http://{host}:{port}", CHAIN, request_timeout=5)
        assert client.balance(ADDR, ASSET) == 321
    finally:
        thread.join(timeout=5)
        httpd.server_close()