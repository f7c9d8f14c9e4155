# tokenvm

Storage layout and JSON-RPC access for a simple token ledger: account
balances per asset, asset records (metadata, supply, owner, warp flag),
order records, cross-chain loans and transaction results.

The package has no runtime dependencies.

## Installing

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Modules

- `tokenvm.storage` – the binary key/value layout. Every record lives under
  a one-byte prefix followed by fixed-width 32-byte identifiers or public
  keys. Amounts, supplies, ticks and units are stored as big-endian unsigned
  64-bit integers, transaction timestamps as big-endian signed 64-bit
  integers, and asset metadata behind a big-endian 16-bit length.
  `MemoryDatabase` is an in-memory store with `get_value` (raises
  `NotFoundError` for a missing key), `insert`, `remove` and `read_state`
  (returns `None` for each missing key). Records are read back as the
  frozen dataclasses `TransactionRecord`, `AssetRecord` and `OrderRecord`;
  `get_transaction`, `get_asset` and `get_order` return `None` when there
  is no record.
- `tokenvm.address` – `address(public_key, hrp)` and
  `parse_address(text, hrp)` convert between 32-byte public keys and bech32
  addresses; `encode_id` and `decode_id` convert 32-byte identifiers to and
  from CB58 text (base58 with a 4-byte SHA-256 checksum).
- `tokenvm.errors` – the exceptions raised by the package:
  `NotFoundError`, `InvalidBalanceError`, `RPCError`, and its subclasses
  `TxNotFoundError` and `AssetNotFoundError`.
- `tokenvm.jsonrpc_server` – `Controller`, the interface the server reads
  state through, and `JSONRPCServer`, which answers the `genesis`, `tx`,
  `asset`, `balance`, `orders` and `loan` methods and is also a WSGI
  application.
- `tokenvm.jsonrpc_client` – `JSONRPCClient`, the matching client, with
  `wait_for_balance` and `wait_for_transaction` that poll until their
  condition holds.

## Working with balances

```python
from tokenvm.errors import InvalidBalanceError
from tokenvm.storage import MemoryDatabase, add_balance, get_balance, sub_balance

db = MemoryDatabase()
owner = bytes(32)   # a public key
asset = bytes(32)   # the native asset

add_balance(db, owner, asset, 100)
sub_balance(db, owner, asset, 40)
assert get_balance(db, owner, asset) == 60

try:
    sub_balance(db, owner, asset, 1_000)
except InvalidBalanceError as exc:
    print(exc)
```

A balance that drops to zero is removed from the store rather than kept as
zero, and reading an absent balance gives `0`. Additions that would
overflow an unsigned 64-bit value, subtractions below zero and negative
amounts raise `InvalidBalanceError`. Loans (`add_loan`, `sub_loan`,
`get_loan`, `set_loan`) follow the same rules. The `*_from_state`
functions read through any callable shaped like
`MemoryDatabase.read_state`.

## Serving the API

Implement a `Controller` over your state and hand it to `JSONRPCServer`.
Methods are called by their namespaced name, `tokenvm.balance` and so on
(the namespace and the address prefix, `token` by default, are constructor
arguments). Identifiers travel as CB58 text, addresses as bech32 text and
asset metadata as base64. `handle` answers one decoded request; the server
object is also a WSGI application that accepts only `POST`:

```python
from wsgiref.simple_server import make_server

from tokenvm.jsonrpc_server import JSONRPCServer

server = JSONRPCServer(my_controller)
make_server("localhost", 9650, server).serve_forever()
```

Order listings ask the controller for at most 128 entries per pair.
Looking up a missing transaction or asset answers with an error whose
message is `tx not found` or `asset not found`.

## Querying

`JSONRPCClient(uri, chain_id)` posts to `uri` followed by `/tokenapi`, over
`urllib` unless a `transport` callable is given. `tx` returns a `TxStatus`
with `found=False` and `timestamp=-1` for an unknown transaction; `asset`
returns an `AssetInfo` or `None` for an unknown asset. Any other error
reply is raised as `RPCError`. The genesis is fetched once and cached.
`wait_for_balance` and `wait_for_transaction` poll every `poll_interval`
seconds and raise `TimeoutError` if a given timeout runs out;
`wait_for_transaction` returns whether the transaction succeeded.

## What this package does not do

It does not execute transactions, build or sign them, produce blocks,
define a genesis or keep an order book. It holds the storage layout and
the query API; the state behind a `Controller` and the store behind the
storage functions (beyond `MemoryDatabase`) come from the caller.