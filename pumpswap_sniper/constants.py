import hashlib
from solders.pubkey import Pubkey

# ============================================
# PROGRAM IDS
# ============================================
PUMP_AMM_PROGRAM = Pubkey.from_string("pAMMBay6oceH9fJKBRHGP5D4bD4sWpmSwMn52FMfXEA")
PUMP_AMM_FEE_PROGRAM = Pubkey.from_string("pfeeUxB6jkeY1Hxd7CsFCAjcbHA9rWtchMGdZ6VojVZ")
PUMP_PROGRAM = Pubkey.from_string("6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P")

SYSTEM_PROGRAM = Pubkey.from_string("11111111111111111111111111111111")
TOKEN_PROGRAM = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOC_TOKEN_ACC_PROG = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")
WSOL_MINT = Pubkey.from_string("So11111111111111111111111111111111111111112")

# ============================================
# PDA SEEDS
# ============================================
GLOBAL_CONFIG_SEED = b"global_config"
GLOBAL_VOLUME_ACCUMULATOR_SEED = b"global_volume_accumulator"
USER_VOLUME_ACCUMULATOR_SEED = b"user_volume_accumulator"
FEE_CONFIG_SEED = b"fee_config"
EVENT_AUTHORITY_SEED = b"__event_authority"
CREATOR_VAULT_SEED = b"creator_vault"
POOL_SEED = b"pool"
POOL_AUTHORITY_SEED = b"pool-authority"

# Salt the fee program expects after FEE_CONFIG_SEED
FEE_CONFIG_SALT = bytes([
    12, 20, 222, 252, 130, 94, 198, 118, 148, 37, 8, 24, 187, 101, 64, 101,
    244, 41, 141, 49, 86, 213, 113, 180, 212, 248, 9, 12, 24, 233, 168, 99,
])

# ============================================
# DISCRIMINATORS
# ============================================
def anchor_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


def account_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"account:{name}".encode()).digest()[:8]


CREATE_POOL_DISC = anchor_discriminator("create_pool")
POOL_ACCOUNT_DISC = account_discriminator("Pool")
GLOBAL_CONFIG_ACCOUNT_DISC = account_discriminator("GlobalConfig")

# ============================================
# INSTRUCTION PAYLOAD
# ============================================
BUY_TAG = 0
SELL_TAG = 1
PAYLOAD_SIZE = 11
DEFAULT_SLIPPAGE_BPS = 300

BUY_ACCOUNT_COUNT = 23
SELL_ACCOUNT_COUNT = 21

# ============================================
# PRIORITY FEES
# ============================================
DEFAULT_COMPUTE_UNIT_PRICE = 50_000  # micro-lamports
DEFAULT_COMPUTE_UNIT_LIMIT = 300_000

# ============================================
# STRUCT OFFSETS (Anchor accounts, after the 8-byte discriminator)
# ============================================
POOL_BUMP_OFFSET = 8
POOL_INDEX_OFFSET = 9
POOL_CREATOR_OFFSET = 11
POOL_BASE_MINT_OFFSET = 43
POOL_QUOTE_MINT_OFFSET = 75
POOL_LP_MINT_OFFSET = 107
POOL_BASE_TOKEN_ACCOUNT_OFFSET = 139
POOL_QUOTE_TOKEN_ACCOUNT_OFFSET = 171
POOL_LP_SUPPLY_OFFSET = 203
POOL_COIN_CREATOR_OFFSET = 211
POOL_MIN_SIZE = POOL_COIN_CREATOR_OFFSET + 32

GLOBAL_CONFIG_ADMIN_OFFSET = 8
GLOBAL_CONFIG_LP_FEE_OFFSET = 40
GLOBAL_CONFIG_PROTOCOL_FEE_OFFSET = 48
GLOBAL_CONFIG_DISABLE_FLAGS_OFFSET = 56
GLOBAL_CONFIG_FEE_RECIPIENTS_OFFSET = 57
GLOBAL_CONFIG_FEE_RECIPIENT_COUNT = 8
GLOBAL_CONFIG_MIN_SIZE = GLOBAL_CONFIG_FEE_RECIPIENTS_OFFSET + 32 * GLOBAL_CONFIG_FEE_RECIPIENT_COUNT

MINT_DECIMALS_OFFSET = 44

# ============================================
# MISC
# ============================================
LAMPORTS_PER_SOL = 1_000_000_000
QUOTE_DECIMALS = 9

# Log keywords that hint at pool creation on the AMM program
POOL_CREATION_LOG_KEYWORDS = (
    "CreateAndBuy",
    "initialize_pool",
    "CreatePool",
    "create_pool",
    "finish_bond",
)
