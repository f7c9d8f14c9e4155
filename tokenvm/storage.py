"""State layout of the token VM: keys, value encodings and balance updates.

Metadata
  0x0/ (tx)       [txID] => timestamp|success|units

State
  0x0/ (balance)  [owner|asset] => balance
  0x1/ (assets)   [asset] => metadataLen|metadata|supply|owner|warp
  0x2/ (orders)   [txID] => in|inTick|out|outTick|remaining|owner
  0x3/ (loans)    [asset|destination] => amount
  0x4/ (height)
  0x5/ (incoming warp)
  0x6/ (outgoing warp)
"""

from __future__ import annotations

import struct
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol

from .address import encode_id
from .errors import InvalidBalanceError, NotFoundError

ID_LEN = 32
PUBLIC_KEY_LEN = 32
UINT64_LEN = 8
UINT16_LEN = 2
MAX_UINT64 = (1 << 64) - 1
MAX_UINT16 = (1 << 16) - 1

TX_PREFIX = 0x0
BALANCE_PREFIX = 0x0
ASSET_PREFIX = 0x1
ORDER_PREFIX = 0x2
LOAN_PREFIX = 0x3
HEIGHT_PREFIX = 0x4
INCOMING_WARP_PREFIX = 0x5
OUTGOING_WARP_PREFIX = 0x6

_FAILURE_BYTE = 0x0
_SUCCESS_BYTE = 0x1

_U64 = struct.Struct(">Q")
_I64 = struct.Struct(">q")
_U16 = struct.Struct(">H")

ReadState = Callable[[Sequence[bytes]], list]
"""Reads many keys at once; a missing key comes back as None."""


class Database(Protocol):
    def get_value(self, key: bytes) -> bytes: ...

    def insert(self, key: bytes, value: bytes) -> None: ...

    def remove(self, key: bytes) -> None: ...


class MemoryDatabase:
    """A dictionary-backed key-value store."""

    def __init__(self, items: Mapping[bytes, bytes] | None = None) -> None:
        self._data: dict[bytes, bytes] = {bytes(k): bytes(v) for k, v in (items or {}).items()}

    def get_value(self, key: bytes) -> bytes:
        """Return the value at key, raising NotFoundError if absent."""
        try:
            return self._data[bytes(key)]
        except KeyError:
            raise NotFoundError(bytes(key)) from None

    def insert(self, key: bytes, value: bytes) -> None:
        self._data[bytes(key)] = bytes(value)

    def remove(self, key: bytes) -> None:
        self._data.pop(bytes(key), None)

    def read_state(self, keys: Sequence[bytes]) -> list[bytes | None]:
        """Return the value of each key, or None where it is missing."""
        return [self._data.get(bytes(k)) for k in keys]

    def __contains__(self, key: object) -> bool:
        return isinstance(key, (bytes, bytearray)) and bytes(key) in self._data

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator[bytes]:
        return iter(self._data)


@dataclass(frozen=True)
class TransactionRecord:
    timestamp: int
    success: bool
    units: int


@dataclass(frozen=True)
class AssetRecord:
    metadata: bytes
    supply: int
    owner: bytes
    warp: bool


@dataclass(frozen=True)
class OrderRecord:
    in_asset: bytes
    in_tick: int
    out_asset: bytes
    out_tick: int
    remaining: int
    owner: bytes


def _fixed(value: bytes, length: int, what: str) -> bytes:
    raw = bytes(value)
    if len(raw) != length:
        raise ValueError(f"{what} must be {length} bytes, got {len(raw)}")
    return raw


def _id(value: bytes) -> bytes:
    return _fixed(value, ID_LEN, "identifier")


def _pk(value: bytes) -> bytes:
    return _fixed(value, PUBLIC_KEY_LEN, "public key")


def _u64(value: int, what: str) -> bytes:
    if not 0 <= value <= MAX_UINT64:
        raise ValueError(f"{what} out of uint64 range: {value}")
    return _U64.pack(value)


def _get_or_none(db: Database, key: bytes) -> bytes | None:
    try:
        return db.get_value(key)
    except NotFoundError:
        return None


def _read_one(read_state: ReadState, key: bytes) -> bytes | None:
    return read_state([key])[0]


# Transactions


def prefix_tx_key(tx_id: bytes) -> bytes:
    return bytes([TX_PREFIX]) + _id(tx_id)


def store_transaction(db: Database, tx_id: bytes, timestamp: int, success: bool, units: int) -> None:
    if not -(1 << 63) <= timestamp < (1 << 63):
        raise ValueError(f"timestamp out of int64 range: {timestamp}")
    value = (
        _I64.pack(timestamp)
        + bytes([_SUCCESS_BYTE if success else _FAILURE_BYTE])
        + _u64(units, "units")
    )
    db.insert(prefix_tx_key(tx_id), value)


def get_transaction(db: Database, tx_id: bytes) -> TransactionRecord | None:
    """Return the stored transaction result, or None if unknown."""
    value = _get_or_none(db, prefix_tx_key(tx_id))
    if value is None:
        return None
    (timestamp,) = _I64.unpack_from(value, 0)
    success = value[UINT64_LEN] != _FAILURE_BYTE
    (units,) = _U64.unpack_from(value, UINT64_LEN + 1)
    return TransactionRecord(timestamp, success, units)


# Balances


def prefix_balance_key(public_key: bytes, asset: bytes) -> bytes:
    return bytes([BALANCE_PREFIX]) + _pk(public_key) + _id(asset)


def _decode_amount(value: bytes | None) -> int:
    if value is None:
        return 0
    return _U64.unpack_from(value, 0)[0]


def get_balance(db: Database, public_key: bytes, asset: bytes) -> int:
    """Return the balance; a missing account has balance 0."""
    return _decode_amount(_get_or_none(db, prefix_balance_key(public_key, asset)))


def get_balance_from_state(read_state: ReadState, public_key: bytes, asset: bytes) -> int:
    return _decode_amount(_read_one(read_state, prefix_balance_key(public_key, asset)))


def set_balance(db: Database, public_key: bytes, asset: bytes, balance: int) -> None:
    db.insert(prefix_balance_key(public_key, asset), _u64(balance, "balance"))


def delete_balance(db: Database, public_key: bytes, asset: bytes) -> None:
    db.remove(prefix_balance_key(public_key, asset))


def add_balance(db: Database, public_key: bytes, asset: bytes, amount: int) -> None:
    key = prefix_balance_key(public_key, asset)
    balance = _decode_amount(_get_or_none(db, key))
    new_balance = balance + amount
    if amount < 0 or new_balance > MAX_UINT64:
        raise InvalidBalanceError(
            f"could not add balance (asset={encode_id(asset)}, bal={balance}, "
            f"addr={bytes(public_key).hex()}, amount={amount})"
        )
    db.insert(key, _U64.pack(new_balance))


def sub_balance(db: Database, public_key: bytes, asset: bytes, amount: int) -> None:
    key = prefix_balance_key(public_key, asset)
    balance = _decode_amount(_get_or_none(db, key))
    new_balance = balance - amount
    if amount < 0 or new_balance < 0:
        raise InvalidBalanceError(
            f"could not subtract balance (asset={encode_id(asset)}, bal={balance}, "
            f"addr={bytes(public_key).hex()}, amount={amount})"
        )
    if new_balance == 0:
        # An empty balance is removed rather than stored as zero.
        db.remove(key)
        return
    db.insert(key, _U64.pack(new_balance))


# Assets


def prefix_asset_key(asset: bytes) -> bytes:
    return bytes([ASSET_PREFIX]) + _id(asset)


def _decode_asset(value: bytes | None) -> AssetRecord | None:
    if value is None:
        return None
    (metadata_len,) = _U16.unpack_from(value, 0)
    offset = UINT16_LEN + metadata_len
    metadata = bytes(value[UINT16_LEN:offset])
    (supply,) = _U64.unpack_from(value, offset)
    offset += UINT64_LEN
    owner = bytes(value[offset:offset + PUBLIC_KEY_LEN])
    warp = value[offset + PUBLIC_KEY_LEN] == 0x1
    return AssetRecord(metadata, supply, owner, warp)


def get_asset_from_state(read_state: ReadState, asset: bytes) -> AssetRecord | None:
    return _decode_asset(_read_one(read_state, prefix_asset_key(asset)))


def get_asset(db: Database, asset: bytes) -> AssetRecord | None:
    """Return the asset record, or None if it does not exist."""
    return _decode_asset(_get_or_none(db, prefix_asset_key(asset)))


def set_asset(
    db: Database,
    asset: bytes,
    metadata: bytes,
    supply: int,
    owner: bytes,
    warp: bool,
) -> None:
    metadata = bytes(metadata)
    if len(metadata) > MAX_UINT16:
        raise ValueError(f"metadata too long: {len(metadata)} bytes")
    value = (
        _U16.pack(len(metadata))
        + metadata
        + _u64(supply, "supply")
        + _pk(owner)
        + bytes([0x1 if warp else 0x0])
    )
    db.insert(prefix_asset_key(asset), value)


def delete_asset(db: Database, asset: bytes) -> None:
    db.remove(prefix_asset_key(asset))


# Orders


def prefix_order_key(tx_id: bytes) -> bytes:
    return bytes([ORDER_PREFIX]) + _id(tx_id)


def set_order(
    db: Database,
    tx_id: bytes,
    in_asset: bytes,
    in_tick: int,
    out_asset: bytes,
    out_tick: int,
    supply: int,
    owner: bytes,
) -> None:
    value = (
        _id(in_asset)
        + _u64(in_tick, "in tick")
        + _id(out_asset)
        + _u64(out_tick, "out tick")
        + _u64(supply, "supply")
        + _pk(owner)
    )
    db.insert(prefix_order_key(tx_id), value)


def get_order(db: Database, order: bytes) -> OrderRecord | None:
    """Return the order, or None if it does not exist."""
    value = _get_or_none(db, prefix_order_key(order))
    if value is None:
        return None
    in_asset = bytes(value[:ID_LEN])
    (in_tick,) = _U64.unpack_from(value, ID_LEN)
    out_start = ID_LEN + UINT64_LEN
    out_asset = bytes(value[out_start:out_start + ID_LEN])
    (out_tick,) = _U64.unpack_from(value, ID_LEN * 2 + UINT64_LEN)
    (remaining,) = _U64.unpack_from(value, ID_LEN * 2 + UINT64_LEN * 2)
    owner_start = ID_LEN * 2 + UINT64_LEN * 3
    owner = bytes(value[owner_start:owner_start + PUBLIC_KEY_LEN])
    return OrderRecord(in_asset, in_tick, out_asset, out_tick, remaining, owner)


def delete_order(db: Database, order: bytes) -> None:
    db.remove(prefix_order_key(order))


# Loans


def prefix_loan_key(asset: bytes, destination: bytes) -> bytes:
    return bytes([LOAN_PREFIX]) + _id(asset) + _id(destination)


def get_loan_from_state(read_state: ReadState, asset: bytes, destination: bytes) -> int:
    return _decode_amount(_read_one(read_state, prefix_loan_key(asset, destination)))


def get_loan(db: Database, asset: bytes, destination: bytes) -> int:
    return _decode_amount(_get_or_none(db, prefix_loan_key(asset, destination)))


def set_loan(db: Database, asset: bytes, destination: bytes, amount: int) -> None:
    db.insert(prefix_loan_key(asset, destination), _u64(amount, "loan"))


def add_loan(db: Database, asset: bytes, destination: bytes, amount: int) -> None:
    loan = get_loan(db, asset, destination)
    new_loan = loan + amount
    if amount < 0 or new_loan > MAX_UINT64:
        raise InvalidBalanceError(
            f"could not add loan (asset={encode_id(asset)}, "
            f"destination={encode_id(destination)}, amount={amount})"
        )
    set_loan(db, asset, destination, new_loan)


def sub_loan(db: Database, asset: bytes, destination: bytes, amount: int) -> None:
    loan = get_loan(db, asset, destination)
    new_loan = loan - amount
    if amount < 0 or new_loan < 0:
        raise InvalidBalanceError(
            f"could not subtract loan (asset={encode_id(asset)}, "
            f"destination={encode_id(destination)}, amount={amount})"
        )
    if new_loan == 0:
        db.remove(prefix_loan_key(asset, destination))
        return
    set_loan(db, asset, destination, new_loan)


# Chain keys


def height_key() -> bytes:
    return bytes([HEIGHT_PREFIX])


def incoming_warp_key_prefix(source_chain_id: bytes, msg_id: bytes) -> bytes:
    return bytes([INCOMING_WARP_PREFIX]) + _id(source_chain_id) + _id(msg_id)


def outgoing_warp_key_prefix(tx_id: bytes) -> bytes:
    return bytes([OUTGOING_WARP_PREFIX]) + _id(tx_id)