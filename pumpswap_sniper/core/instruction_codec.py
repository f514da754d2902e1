"""
BUY/SELL instruction payload codec.

Layout (little-endian, no padding, 11 bytes):
    tag           u8    0 = BUY, 1 = SELL
    amount_in     u64   quote lamports for BUY, base units for SELL
    slippage_bps  u16
"""
from __future__ import annotations

import struct

from pumpswap_sniper.constants import BUY_TAG, PAYLOAD_SIZE, SELL_TAG
from pumpswap_sniper.core.models import TradeInstructionPayload, TradeSide
from pumpswap_sniper.exceptions import MalformedPayload

_PAYLOAD = struct.Struct("<BQH")

U64_MAX = 2**64 - 1
U16_MAX = 2**16 - 1

VALID_TAGS = (BUY_TAG, SELL_TAG)


def tag_for(side: TradeSide) -> int:
    return BUY_TAG if side == TradeSide.BUY else SELL_TAG


def encode(tag: int, amount_in: int, slippage_bps: int) -> bytes:
    if tag not in VALID_TAGS:
        raise MalformedPayload("Unknown instruction tag", tag=tag)
    if not 0 <= amount_in <= U64_MAX:
        raise MalformedPayload("amount_in out of u64 range", amount_in=amount_in)
    if not 0 <= slippage_bps <= U16_MAX:
        raise MalformedPayload("slippage_bps out of u16 range", slippage_bps=slippage_bps)
    return _PAYLOAD.pack(tag, amount_in, slippage_bps)


def decode(buffer: bytes) -> TradeInstructionPayload:
    if len(buffer) != PAYLOAD_SIZE:
        raise MalformedPayload("Payload must be 11 bytes", length=len(buffer))
    tag, amount_in, slippage_bps = _PAYLOAD.unpack(bytes(buffer))
    if tag not in VALID_TAGS:
        raise MalformedPayload("Unknown instruction tag", tag=tag)
    return TradeInstructionPayload(tag=tag, amount_in=amount_in, slippage_bps=slippage_bps)


def encode_payload(payload: TradeInstructionPayload) -> bytes:
    return encode(payload.tag, payload.amount_in, payload.slippage_bps)
