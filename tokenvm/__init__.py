"""Token ledger storage layout, addresses, and a JSON-RPC server and client."""

__version__ = "0.0.1"