"""
Clarity value codec for read-only call results.

The Stacks API returns read-only results as hex-serialised Clarity values.
Only decoding is needed; principals are rendered as c32check addresses.
"""
import hashlib
from dataclasses import dataclass
from typing import Any

C32_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"

# Serialisation type prefixes
_INT = 0x00
_UINT = 0x01
_BUFFER = 0x02
_TRUE = 0x03
_FALSE = 0x04
_STANDARD_PRINCIPAL = 0x05
_CONTRACT_PRINCIPAL = 0x06
_RESPONSE_OK = 0x07
_RESPONSE_ERR = 0x08
_NONE = 0x09
_SOME = 0x0A
_LIST = 0x0B
_TUPLE = 0x0C
_STRING_ASCII = 0x0D
_STRING_UTF8 = 0x0E


class ClarityDecodeError(ValueError):
    pass


@dataclass(frozen=True)
class ClarityResponse:
    ok: bool
    value: Any


def c32encode(data: bytes) -> str:
    """Base-32 (Crockford alphabet) of the big-endian integer, one '0' per leading zero byte."""
    number = int.from_bytes(data, "big")
    digits = []
    while number > 0:
        number, remainder = divmod(number, 32)
        digits.append(C32_ALPHABET[remainder])
    leading_zeros = len(data) - len(data.lstrip(b"\x00"))
    return "0" * leading_zeros + "".join(reversed(digits))


def c32_address(version: int, hash160: bytes) -> str:
    """Stacks address for a version byte and 20-byte hash160 (c32check)."""
    if not 0 <= version < 32:
        raise ClarityDecodeError(f"invalid address version {version}")
    if len(hash160) != 20:
        raise ClarityDecodeError("hash160 must be 20 bytes")
    checksum = hashlib.sha256(hashlib.sha256(bytes([version]) + hash160).digest()).digest()[:4]
    return "S" + C32_ALPHABET[version] + c32encode(hash160 + checksum)


class _Reader:
    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    def take(self, size: int) -> bytes:
        if self.pos + size > len(self.data):
            raise ClarityDecodeError("unexpected end of clarity value")
        chunk = self.data[self.pos:self.pos + size]
        self.pos += size
        return chunk

    def byte(self) -> int:
        return self.take(1)[0]

    def u32(self) -> int:
        return int.from_bytes(self.take(4), "big")

    def principal(self) -> str:
        version = self.byte()
        return c32_address(version, self.take(20))

    def value(self) -> Any:
        prefix = self.byte()
        if prefix == _INT:
            return int.from_bytes(self.take(16), "big", signed=True)
        if prefix == _UINT:
            return int.from_bytes(self.take(16), "big")
        if prefix == _BUFFER:
            return self.take(self.u32())
        if prefix == _TRUE:
            return True
        if prefix == _FALSE:
            return False
        if prefix == _STANDARD_PRINCIPAL:
            return self.principal()
        if prefix == _CONTRACT_PRINCIPAL:
            address = self.principal()
            name = self.take(self.byte()).decode("ascii")
            return f"{address}.{name}"
        if prefix in (_RESPONSE_OK, _RESPONSE_ERR):
            return ClarityResponse(ok=prefix == _RESPONSE_OK, value=self.value())
        if prefix == _NONE:
            return None
        if prefix == _SOME:
            return self.value()
        if prefix == _LIST:
            return [self.value() for _ in range(self.u32())]
        if prefix == _TUPLE:
            result = {}
            for _ in range(self.u32()):
                name = self.take(self.byte()).decode("ascii")
                result[name] = self.value()
            return result
        if prefix == _STRING_ASCII:
            return self.take(self.u32()).decode("ascii")
        if prefix == _STRING_UTF8:
            return self.take(self.u32()).decode("utf-8")
        raise ClarityDecodeError(f"unknown clarity type prefix 0x{prefix:02x}")


def decode_clarity_hex(serialized: str) -> Any:
    """Decode a ``0x``-prefixed hex Clarity value into plain Python values."""
    text = serialized[2:] if serialized.startswith("0x") else serialized
    try:
        data = bytes.fromhex(text)
    except ValueError as e:
        raise ClarityDecodeError(f"not hex: {e}") from e
    reader = _Reader(data)
    value = reader.value()
    if reader.pos != len(data):
        raise ClarityDecodeError("trailing bytes after clarity value")
    return value


def unwrap_response(value: Any) -> Any:
    """Return the ok branch of a response; an err branch raises."""
    if isinstance(value, ClarityResponse):
        if not value.ok:
            raise ClarityDecodeError(f"contract returned err: {value.value!r}")
        return value.value
    return value
