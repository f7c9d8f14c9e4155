"""Bech32 addresses for public keys and CB58 text for identifiers."""

import hashlib

PUBLIC_KEY_LEN = 32
ID_LEN = 32

_BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_BECH32_GENERATORS = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)
_BECH32_MAX_LEN = 90

_BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_CHECKSUM_LEN = 4


def _polymod(values: list[int]) -> int:
    chk = 1
    for value in values:
        top = chk >> 25
        chk = ((chk & 0x1FFFFFF) << 5) ^ value
        for i, gen in enumerate(_BECH32_GENERATORS):
            if (top >> i) & 1:
                chk ^= gen
    return chk


def _hrp_expand(hrp: str) -> list[int]:
    return [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]


def _create_checksum(hrp: str, data: list[int]) -> list[int]:
    pm = _polymod(_hrp_expand(hrp) + data + [0] * 6) ^ 1
    return [(pm >> (5 * (5 - i))) & 31 for i in range(6)]


def _convert_bits(data: bytes | list[int], from_bits: int, to_bits: int, pad: bool) -> list[int]:
    acc = 0
    bits = 0
    out: list[int] = []
    max_value = (1 << to_bits) - 1
    for value in data:
        if value < 0 or value >> from_bits:
            raise ValueError("invalid data value for bit conversion")
        acc = (acc << from_bits) | value
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            out.append((acc >> bits) & max_value)
    if pad:
        if bits:
            out.append((acc << (to_bits - bits)) & max_value)
    elif bits >= from_bits or (acc << (to_bits - bits)) & max_value:
        raise ValueError("invalid padding in bech32 data")
    return out


def _bech32_encode(hrp: str, data: list[int]) -> str:
    combined = data + _create_checksum(hrp, data)
    return hrp + "1" + "".join(_BECH32_CHARSET[d] for d in combined)


def _bech32_decode(text: str) -> tuple[str, list[int]]:
    if not 8 <= len(text) <= _BECH32_MAX_LEN:
        raise ValueError(f"invalid bech32 string length {len(text)}")
    if any(not 33 <= ord(c) <= 126 for c in text):
        raise ValueError("invalid character in bech32 string")
    if text.lower() != text and text.upper() != text:
        raise ValueError("bech32 string has mixed case")
    text = text.lower()
    sep = text.rfind("1")
    if sep < 1 or sep + 7 > len(text):
        raise ValueError("invalid bech32 separator position")
    hrp = text[:sep]
    data: list[int] = []
    for char in text[sep + 1:]:
        index = _BECH32_CHARSET.find(char)
        if index < 0:
            raise ValueError(f"invalid bech32 character {char!r}")
        data.append(index)
    if _polymod(_hrp_expand(hrp) + data) != 1:
        raise ValueError("invalid bech32 checksum")
    return hrp, data[:-6]


def address(public_key: bytes, hrp: str) -> str:
    """Format a public key as a bech32 address with the given prefix."""
    raw = bytes(public_key)
    if len(raw) != PUBLIC_KEY_LEN:
        raise ValueError(f"public key must be {PUBLIC_KEY_LEN} bytes, got {len(raw)}")
    return _bech32_encode(hrp, _convert_bits(raw, 8, 5, True))


def parse_address(text: str, hrp: str) -> bytes:
    """Parse a bech32 address and return the public key it holds."""
    got_hrp, data = _bech32_decode(text)
    if got_hrp != hrp:
        raise ValueError(f"incorrect address prefix: expected {hrp!r}, got {got_hrp!r}")
    raw = bytes(_convert_bits(data, 5, 8, False))
    if len(raw) != PUBLIC_KEY_LEN:
        raise ValueError(f"invalid address size: {len(raw)} bytes")
    return raw


def _base58_encode(raw: bytes) -> str:
    number = int.from_bytes(raw, "big")
    chars: list[str] = []
    while number:
        number, rem = divmod(number, 58)
        chars.append(_BASE58_ALPHABET[rem])
    leading = len(raw) - len(raw.lstrip(b"\x00"))
    return "1" * leading + "".join(reversed(chars))


def _base58_decode(text: str) -> bytes:
    number = 0
    for char in text:
        index = _BASE58_ALPHABET.find(char)
        if index < 0:
            raise ValueError(f"invalid base58 character {char!r}")
        number = number * 58 + index
    leading = len(text) - len(text.lstrip("1"))
    body = number.to_bytes((number.bit_length() + 7) // 8, "big") if number else b""
    return b"\x00" * leading + body


def encode_id(raw: bytes) -> str:
    """Return the CB58 text of a 32-byte identifier."""
    raw = bytes(raw)
    if len(raw) != ID_LEN:
        raise ValueError(f"identifier must be {ID_LEN} bytes, got {len(raw)}")
    checksum = hashlib.sha256(raw).digest()[-_CHECKSUM_LEN:]
    return _base58_encode(raw + checksum)


def decode_id(text: str) -> bytes:
    """Parse CB58 text into a 32-byte identifier."""
    decoded = _base58_decode(text)
    if len(decoded) < _CHECKSUM_LEN:
        raise ValueError("input string is smaller than the checksum size")
    raw, checksum = decoded[:-_CHECKSUM_LEN], decoded[-_CHECKSUM_LEN:]
    if hashlib.sha256(raw).digest()[-_CHECKSUM_LEN:] != checksum:
        raise ValueError("invalid input checksum")
    if len(raw) != ID_LEN:
        raise ValueError(f"identifier must be {ID_LEN} bytes, got {len(raw)}")
    return raw