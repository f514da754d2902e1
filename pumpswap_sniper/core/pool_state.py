"""Decoders for the PumpSwap Pool and GlobalConfig account records."""
from __future__ import annotations

import struct
from dataclasses import dataclass

from solders.pubkey import Pubkey  # type: ignore

from pumpswap_sniper.constants import (
    GLOBAL_CONFIG_ACCOUNT_DISC,
    GLOBAL_CONFIG_ADMIN_OFFSET,
    GLOBAL_CONFIG_DISABLE_FLAGS_OFFSET,
    GLOBAL_CONFIG_FEE_RECIPIENT_COUNT,
    GLOBAL_CONFIG_FEE_RECIPIENTS_OFFSET,
    GLOBAL_CONFIG_LP_FEE_OFFSET,
    GLOBAL_CONFIG_MIN_SIZE,
    GLOBAL_CONFIG_PROTOCOL_FEE_OFFSET,
    POOL_ACCOUNT_DISC,
    POOL_BASE_MINT_OFFSET,
    POOL_BASE_TOKEN_ACCOUNT_OFFSET,
    POOL_BUMP_OFFSET,
    POOL_COIN_CREATOR_OFFSET,
    POOL_CREATOR_OFFSET,
    POOL_INDEX_OFFSET,
    POOL_LP_MINT_OFFSET,
    POOL_LP_SUPPLY_OFFSET,
    POOL_MIN_SIZE,
    POOL_QUOTE_MINT_OFFSET,
    POOL_QUOTE_TOKEN_ACCOUNT_OFFSET,
)
from pumpswap_sniper.exceptions import AccountDataError


@dataclass(frozen=True)
class PoolState:
    bump: int
    index: int
    creator: Pubkey
    base_mint: Pubkey
    quote_mint: Pubkey
    lp_mint: Pubkey
    pool_base_token_account: Pubkey
    pool_quote_token_account: Pubkey
    lp_supply: int
    coin_creator: Pubkey


@dataclass(frozen=True)
class GlobalConfigState:
    admin: Pubkey
    lp_fee_bps: int
    protocol_fee_bps: int
    disable_flags: int
    protocol_fee_recipients: tuple[Pubkey, ...]

    @property
    def primary_fee_recipient(self) -> Pubkey:
        return self.protocol_fee_recipients[0]


def _pubkey_at(data: bytes, offset: int) -> Pubkey:
    return Pubkey.from_bytes(data[offset:offset + 32])


def _u64_at(data: bytes, offset: int) -> int:
    return struct.unpack_from("<Q", data, offset)[0]


def _check(data: bytes, disc: bytes, min_size: int, name: str) -> None:
    if len(data) < min_size:
        raise AccountDataError(f"{name} account data too short", length=len(data), expected=min_size)
    if data[:8] != disc:
        raise AccountDataError(f"{name} account discriminator mismatch", found=data[:8].hex())


def decode_pool(data: bytes) -> PoolState:
    data = bytes(data)
    _check(data, POOL_ACCOUNT_DISC, POOL_MIN_SIZE, "Pool")
    return PoolState(
        bump=data[POOL_BUMP_OFFSET],
        index=struct.unpack_from("<H", data, POOL_INDEX_OFFSET)[0],
        creator=_pubkey_at(data, POOL_CREATOR_OFFSET),
        base_mint=_pubkey_at(data, POOL_BASE_MINT_OFFSET),
        quote_mint=_pubkey_at(data, POOL_QUOTE_MINT_OFFSET),
        lp_mint=_pubkey_at(data, POOL_LP_MINT_OFFSET),
        pool_base_token_account=_pubkey_at(data, POOL_BASE_TOKEN_ACCOUNT_OFFSET),
        pool_quote_token_account=_pubkey_at(data, POOL_QUOTE_TOKEN_ACCOUNT_OFFSET),
        lp_supply=_u64_at(data, POOL_LP_SUPPLY_OFFSET),
        coin_creator=_pubkey_at(data, POOL_COIN_CREATOR_OFFSET),
    )


def decode_global_config(data: bytes) -> GlobalConfigState:
    data = bytes(data)
    _check(data, GLOBAL_CONFIG_ACCOUNT_DISC, GLOBAL_CONFIG_MIN_SIZE, "GlobalConfig")
    recipients = tuple(
        _pubkey_at(data, GLOBAL_CONFIG_FEE_RECIPIENTS_OFFSET + 32 * i)
        for i in range(GLOBAL_CONFIG_FEE_RECIPIENT_COUNT)
    )
    return GlobalConfigState(
        admin=_pubkey_at(data, GLOBAL_CONFIG_ADMIN_OFFSET),
        lp_fee_bps=_u64_at(data, GLOBAL_CONFIG_LP_FEE_OFFSET),
        protocol_fee_bps=_u64_at(data, GLOBAL_CONFIG_PROTOCOL_FEE_OFFSET),
        disable_flags=data[GLOBAL_CONFIG_DISABLE_FLAGS_OFFSET],
        protocol_fee_recipients=recipients,
    )
