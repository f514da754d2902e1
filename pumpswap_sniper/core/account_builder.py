"""
PumpSwap BUY/SELL account lists and instructions.

The AMM program validates accounts by position, so the order here is fixed:
23 accounts for BUY, and the same list minus the two volume accumulators
(21 accounts) for SELL.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from solders.instruction import Instruction  # type: ignore
from solders.pubkey import Pubkey  # type: ignore

from pumpswap_sniper.constants import (
    ASSOC_TOKEN_ACC_PROG,
    BUY_ACCOUNT_COUNT,
    BUY_TAG,
    PUMP_AMM_FEE_PROGRAM,
    PUMP_AMM_PROGRAM,
    SELL_ACCOUNT_COUNT,
    SELL_TAG,
    SYSTEM_PROGRAM,
    TOKEN_PROGRAM,
)
from pumpswap_sniper.core import addresses
from pumpswap_sniper.core.instruction_codec import encode
from pumpswap_sniper.core.models import AccountDescriptor
from pumpswap_sniper.core.network import NetworkClient
from pumpswap_sniper.core.pool_state import (
    GlobalConfigState,
    PoolState,
    decode_global_config,
    decode_pool,
)
from pumpswap_sniper.exceptions import AccountDataError, AccountOrderMismatch

logger = logging.getLogger("pumpswap_sniper.builder")


@dataclass(frozen=True)
class OnChainContext:
    pool: PoolState
    global_config: GlobalConfigState


async def fetch_context(
    network: NetworkClient,
    pool: Pubkey,
    attempts: int = 1,
    delay: float = 0.35,
) -> OnChainContext:
    """Read and decode the Pool and GlobalConfig records.

    A freshly created pool can lag behind the creation event on the RPC node,
    so the pool read is retried ``attempts`` times.
    """
    pool_data = None
    for attempt in range(max(attempts, 1)):
        pool_data = await network.get_account(pool)
        if pool_data is not None:
            break
        if attempt + 1 < attempts:
            await asyncio.sleep(delay)
    if pool_data is None:
        raise AccountDataError("Pool account not found", pool=str(pool), attempts=attempts)

    config_address = addresses.global_config_pda()
    config_data = await network.get_account(config_address)
    if config_data is None:
        raise AccountDataError("GlobalConfig account not found", address=str(config_address))

    return OnChainContext(pool=decode_pool(pool_data), global_config=decode_global_config(config_data))


def _accounts(
    context: OnChainContext,
    pool: Pubkey,
    user: Pubkey,
    base_mint: Pubkey,
    quote_mint: Pubkey,
    with_volume_accumulators: bool,
) -> list[AccountDescriptor]:
    fee_recipient = context.global_config.primary_fee_recipient
    coin_creator = context.pool.coin_creator

    accounts = [
        AccountDescriptor(pool, is_writable=True),
        AccountDescriptor(user, is_writable=True, is_signer=True),
        AccountDescriptor(addresses.global_config_pda()),
        AccountDescriptor(base_mint),
        AccountDescriptor(quote_mint),
        AccountDescriptor(addresses.user_token_account(user, base_mint), is_writable=True),
        AccountDescriptor(addresses.user_token_account(user, quote_mint), is_writable=True),
        AccountDescriptor(addresses.pool_token_account(pool, base_mint), is_writable=True),
        AccountDescriptor(addresses.pool_token_account(pool, quote_mint), is_writable=True),
        AccountDescriptor(fee_recipient),
        AccountDescriptor(addresses.protocol_fee_recipient_token_account(fee_recipient, quote_mint),
                          is_writable=True),
        AccountDescriptor(TOKEN_PROGRAM),  # base token program
        AccountDescriptor(TOKEN_PROGRAM),  # quote token program
        AccountDescriptor(SYSTEM_PROGRAM),
        AccountDescriptor(ASSOC_TOKEN_ACC_PROG),
        AccountDescriptor(addresses.event_authority_pda()),
        AccountDescriptor(PUMP_AMM_PROGRAM),
        AccountDescriptor(addresses.coin_creator_vault_ata(coin_creator, quote_mint), is_writable=True),
        AccountDescriptor(addresses.coin_creator_vault_authority_pda(coin_creator)),
    ]
    if with_volume_accumulators:
        accounts.append(AccountDescriptor(addresses.global_volume_accumulator_pda()))
        accounts.append(AccountDescriptor(addresses.user_volume_accumulator_pda(user), is_writable=True))
    accounts.append(AccountDescriptor(addresses.fee_config_pda()))
    accounts.append(AccountDescriptor(PUMP_AMM_FEE_PROGRAM))
    return accounts


def buy_accounts_from_context(context: OnChainContext, pool: Pubkey, user: Pubkey,
                              base_mint: Pubkey, quote_mint: Pubkey) -> list[AccountDescriptor]:
    accounts = _accounts(context, pool, user, base_mint, quote_mint, with_volume_accumulators=True)
    verify_account_layout(accounts, BUY_TAG, user)
    return accounts


def sell_accounts_from_context(context: OnChainContext, pool: Pubkey, user: Pubkey,
                               base_mint: Pubkey, quote_mint: Pubkey) -> list[AccountDescriptor]:
    accounts = _accounts(context, pool, user, base_mint, quote_mint, with_volume_accumulators=False)
    verify_account_layout(accounts, SELL_TAG, user)
    return accounts


async def build_buy_accounts(network: NetworkClient, pool: Pubkey, user: Pubkey,
                             base_mint: Pubkey, quote_mint: Pubkey) -> list[AccountDescriptor]:
    context = await fetch_context(network, pool)
    return buy_accounts_from_context(context, pool, user, base_mint, quote_mint)


async def build_sell_accounts(network: NetworkClient, pool: Pubkey, user: Pubkey,
                              base_mint: Pubkey, quote_mint: Pubkey) -> list[AccountDescriptor]:
    context = await fetch_context(network, pool)
    return sell_accounts_from_context(context, pool, user, base_mint, quote_mint)


def verify_account_layout(accounts: list[AccountDescriptor], tag: int, user: Pubkey) -> None:
    """Check count and the positions the program pins, before anything is signed."""
    expected = BUY_ACCOUNT_COUNT if tag == BUY_TAG else SELL_ACCOUNT_COUNT
    if len(accounts) != expected:
        raise AccountOrderMismatch("Wrong number of accounts", expected=expected, found=len(accounts))

    pinned = {
        1: user,
        2: addresses.global_config_pda(),
        11: TOKEN_PROGRAM,
        12: TOKEN_PROGRAM,
        13: SYSTEM_PROGRAM,
        14: ASSOC_TOKEN_ACC_PROG,
        15: addresses.event_authority_pda(),
        16: PUMP_AMM_PROGRAM,
        expected - 2: addresses.fee_config_pda(),
        expected - 1: PUMP_AMM_FEE_PROGRAM,
    }
    if tag == BUY_TAG:
        pinned[19] = addresses.global_volume_accumulator_pda()
        pinned[20] = addresses.user_volume_accumulator_pda(user)

    for index, address in pinned.items():
        if accounts[index].address != address:
            raise AccountOrderMismatch("Unexpected account at pinned position",
                                       index=index, expected=str(address),
                                       found=str(accounts[index].address))

    signers = [i for i, acc in enumerate(accounts) if acc.is_signer]
    if signers != [1]:
        raise AccountOrderMismatch("Only the user may sign", signers=signers)


def build_instruction(accounts: list[AccountDescriptor], tag: int, amount_in: int,
                      slippage_bps: int) -> Instruction:
    return Instruction(
        PUMP_AMM_PROGRAM,
        encode(tag, amount_in, slippage_bps),
        [acc.to_account_meta() for acc in accounts],
    )


async def build_buy_instruction(network: NetworkClient, pool: Pubkey, user: Pubkey, base_mint: Pubkey,
                                quote_mint: Pubkey, amount_in: int, slippage_bps: int) -> Instruction:
    accounts = await build_buy_accounts(network, pool, user, base_mint, quote_mint)
    return build_instruction(accounts, BUY_TAG, amount_in, slippage_bps)


async def build_sell_instruction(network: NetworkClient, pool: Pubkey, user: Pubkey, base_mint: Pubkey,
                                 quote_mint: Pubkey, amount_in: int, slippage_bps: int) -> Instruction:
    accounts = await build_sell_accounts(network, pool, user, base_mint, quote_mint)
    return build_instruction(accounts, SELL_TAG, amount_in, slippage_bps)
