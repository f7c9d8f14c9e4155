"""Exceptions raised by the token VM storage and RPC layers."""


class NotFoundError(LookupError):
    """A key is missing from the database."""

    def __init__(self, key: bytes | None = None) -> None:
        self.key = key
        super().__init__("not found")


class InvalidBalanceError(ValueError):
    """A balance or loan update would overflow or underflow."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        message = "invalid balance"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class RPCError(Exception):
    """An error reported by a JSON-RPC call."""

    default_message = "rpc error"

    def __init__(self, message: str | None = None, code: int = -32000) -> None:
        self.message = message if message is not None else self.default_message
        self.code = code
        super().__init__(self.message)


class TxNotFoundError(RPCError):
    """The requested transaction is unknown."""

    default_message = "tx not found"


class AssetNotFoundError(RPCError):
    """The requested asset is unknown."""

    default_message = "asset not found"