"""
PumpSwap address derivation.

Program-derived addresses and associated token accounts used by the BUY and
SELL instructions. Pure functions: same inputs always give the same address.
"""
from __future__ import annotations

from solders.pubkey import Pubkey  # type: ignore
from spl.token.instructions import get_associated_token_address

from pumpswap_sniper.constants import (
    CREATOR_VAULT_SEED,
    EVENT_AUTHORITY_SEED,
    FEE_CONFIG_SALT,
    FEE_CONFIG_SEED,
    GLOBAL_CONFIG_SEED,
    GLOBAL_VOLUME_ACCUMULATOR_SEED,
    POOL_AUTHORITY_SEED,
    POOL_SEED,
    PUMP_AMM_FEE_PROGRAM,
    PUMP_AMM_PROGRAM,
    PUMP_PROGRAM,
    TOKEN_PROGRAM,
    USER_VOLUME_ACCUMULATOR_SEED,
)
from pumpswap_sniper.exceptions import ConfigurationError


def _find_pda(seeds: list[bytes], program_id: Pubkey) -> Pubkey:
    try:
        address, _bump = Pubkey.find_program_address(seeds, program_id)
    except Exception as e:
        raise ConfigurationError(
            "Unable to derive program address",
            program=str(program_id),
            seeds=[s.hex() for s in seeds],
        ) from e
    return address


def global_config_pda() -> Pubkey:
    return _find_pda([GLOBAL_CONFIG_SEED], PUMP_AMM_PROGRAM)


def global_volume_accumulator_pda() -> Pubkey:
    return _find_pda([GLOBAL_VOLUME_ACCUMULATOR_SEED], PUMP_AMM_PROGRAM)


def user_volume_accumulator_pda(user: Pubkey) -> Pubkey:
    return _find_pda([USER_VOLUME_ACCUMULATOR_SEED, bytes(user)], PUMP_AMM_PROGRAM)


def fee_config_pda() -> Pubkey:
    """Fee config lives under the fee program, keyed by a fixed salt."""
    return _find_pda([FEE_CONFIG_SEED, FEE_CONFIG_SALT], PUMP_AMM_FEE_PROGRAM)


def event_authority_pda() -> Pubkey:
    return _find_pda([EVENT_AUTHORITY_SEED], PUMP_AMM_PROGRAM)


def coin_creator_vault_authority_pda(coin_creator: Pubkey) -> Pubkey:
    return _find_pda([CREATOR_VAULT_SEED, bytes(coin_creator)], PUMP_AMM_PROGRAM)


def pumpfun_pool_authority_pda(base_mint: Pubkey) -> Pubkey:
    return _find_pda([POOL_AUTHORITY_SEED, bytes(base_mint)], PUMP_PROGRAM)


def canonical_pumpfun_pool_pda(base_mint: Pubkey, quote_mint: Pubkey) -> Pubkey:
    """Pool address the pump.fun migration creates (index 0, pool-authority creator)."""
    creator = pumpfun_pool_authority_pda(base_mint)
    index = (0).to_bytes(2, "little")
    return _find_pda([POOL_SEED, index, bytes(creator), bytes(base_mint), bytes(quote_mint)],
                     PUMP_AMM_PROGRAM)


def associated_token_address(owner: Pubkey, mint: Pubkey, token_program: Pubkey = TOKEN_PROGRAM) -> Pubkey:
    """ATA for owner x mint x token program. Owners may be off-curve (pool and vault PDAs)."""
    return get_associated_token_address(owner, mint, token_program_id=token_program)


def user_token_account(user: Pubkey, mint: Pubkey) -> Pubkey:
    return associated_token_address(user, mint)


def pool_token_account(pool: Pubkey, mint: Pubkey) -> Pubkey:
    return associated_token_address(pool, mint)


def protocol_fee_recipient_token_account(recipient: Pubkey, quote_mint: Pubkey) -> Pubkey:
    return associated_token_address(recipient, quote_mint)


def coin_creator_vault_ata(coin_creator: Pubkey, quote_mint: Pubkey) -> Pubkey:
    return associated_token_address(coin_creator_vault_authority_pda(coin_creator), quote_mint)
