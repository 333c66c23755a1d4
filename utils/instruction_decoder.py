"""
Decoders for the two instructions the listing detector cares about.

* Token Metadata ``CreateMetadataAccountV3`` (borsh): a one-byte
  discriminator followed by ``DataV2`` whose first fields are the
  length-prefixed ``name``, ``symbol`` and ``uri`` strings.
* The launchpad's own ``create`` instruction: an 8-byte anchor discriminator,
  the same three strings and the 32-byte creator key.

Both take the base58 ``data`` string exactly as it appears in a jsonParsed
transaction.
"""
from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Optional, Tuple

import base58
from solders.pubkey import Pubkey

from utils.exceptions import DecodeError

CREATE_METADATA_V3_DISCRIMINATOR = 33
LAUNCH_CREATE_DISCRIMINATOR = bytes([24, 30, 200, 40, 5, 28, 7, 119])


@dataclass(frozen=True)
class MetadataInstruction:
    name: str
    symbol: str
    uri: str
    seller_fee_basis_points: Optional[int] = None


@dataclass(frozen=True)
class LaunchCreateInstruction:
    name: str
    symbol: str
    uri: str
    creator: str


def _clean(value: str) -> str:
    return value.replace("\x00", "").strip()


def _read_string(buf: bytes, offset: int) -> Tuple[str, int]:
    if offset + 4 > len(buf):
        raise DecodeError(f"buffer corto leyendo longitud en {offset}")
    (length,) = struct.unpack_from("<I", buf, offset)
    offset += 4
    end = offset + length
    if end > len(buf):
        raise DecodeError(f"cadena de {length} bytes fuera de rango en {offset}")
    try:
        text = buf[offset:end].decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecodeError(f"utf-8 inválido: {e}") from e
    return _clean(text), end


def _b58(data: str) -> bytes:
    try:
        return base58.b58decode(data)
    except ValueError as e:
        raise DecodeError(f"base58 inválido: {e}") from e


def decode_create_metadata_v3(data: str) -> MetadataInstruction:
    raw = _b58(data)
    if not raw or raw[0] != CREATE_METADATA_V3_DISCRIMINATOR:
        raise DecodeError("no es CreateMetadataAccountV3")

    name, off = _read_string(raw, 1)
    symbol, off = _read_string(raw, off)
    uri, off = _read_string(raw, off)
    fee = struct.unpack_from("<H", raw, off)[0] if off + 2 <= len(raw) else None
    return MetadataInstruction(name=name, symbol=symbol, uri=uri, seller_fee_basis_points=fee)


def decode_launch_create(data: str) -> LaunchCreateInstruction:
    raw = _b58(data)
    if raw[:8] != LAUNCH_CREATE_DISCRIMINATOR:
        raise DecodeError("no es la instrucción create del launchpad")

    name, off = _read_string(raw, 8)
    symbol, off = _read_string(raw, off)
    uri, off = _read_string(raw, off)
    if off + 32 > len(raw):
        raise DecodeError("falta la clave del creador")
    creator = str(Pubkey.from_bytes(raw[off:off + 32]))
    return LaunchCreateInstruction(name=name, symbol=symbol, uri=uri, creator=creator)
