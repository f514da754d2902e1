"""
In-memory stand-ins for the network, decision service, notifier and sell
executor, plus builders for raw Pool / GlobalConfig account bytes.
"""

import asyncio
import struct

from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from pumpswap_sniper.config import Settings
from pumpswap_sniper.constants import GLOBAL_CONFIG_ACCOUNT_DISC, POOL_ACCOUNT_DISC
from pumpswap_sniper.core import addresses
from pumpswap_sniper.core.models import (
    NewPoolEvent,
    PoolReference,
    SellResult,
    TradeAction,
    TradeDecision,
)
from pumpswap_sniper.core.network import TxResult, TxStatus


def random_key() -> Pubkey:
    return Keypair().pubkey()


def pool_bytes(creator: Pubkey, base_mint: Pubkey, quote_mint: Pubkey, coin_creator: Pubkey) -> bytes:
    return (
        POOL_ACCOUNT_DISC
        + bytes([255])
        + struct.pack("<H", 0)
        + bytes(creator)
        + bytes(base_mint)
        + bytes(quote_mint)
        + bytes(random_key())  # lp mint
        + bytes(random_key())  # pool base token account
        + bytes(random_key())  # pool quote token account
        + struct.pack("<Q", 1_000_000)
        + bytes(coin_creator)
    )


def global_config_bytes(fee_recipients: list[Pubkey]) -> bytes:
    recipients = list(fee_recipients) + [Pubkey.default()] * (8 - len(fee_recipients))
    return (
        GLOBAL_CONFIG_ACCOUNT_DISC
        + bytes(random_key())  # admin
        + struct.pack("<Q", 20)
        + struct.pack("<Q", 5)
        + bytes([0])
        + b"".join(bytes(r) for r in recipients)
    )


def make_settings(**overrides) -> Settings:
    values = dict(
        PRIORITY_FEE_ENABLED=True,
        SUBMIT_MAX_ATTEMPTS=2,
        CONFIRM_TIMEOUT_SEC=1.0,
        VERIFY_FETCH_ATTEMPTS=1,
        POOL_FETCH_ATTEMPTS=1,
        POOL_FETCH_DELAY_SEC=0.0,
    )
    values.update(overrides)
    return Settings(**values)


class MarketFixture:
    """A pool with its on-chain records loaded into a FakeNetwork."""

    def __init__(self, network: "FakeNetwork"):
        self.pool = random_key()
        self.base_mint = random_key()
        self.quote_mint = random_key()
        self.creator = random_key()
        self.coin_creator = random_key()
        self.fee_recipient = random_key()
        network.accounts[self.pool] = pool_bytes(self.creator, self.base_mint, self.quote_mint, self.coin_creator)
        network.accounts[addresses.global_config_pda()] = global_config_bytes([self.fee_recipient])

    @property
    def reference(self) -> PoolReference:
        return PoolReference(
            pool=str(self.pool),
            base_mint=str(self.base_mint),
            quote_mint=str(self.quote_mint),
            creator=str(self.creator),
        )

    def event(self, **overrides) -> NewPoolEvent:
        values = dict(pool=self.reference, liquidity_usd=1_000.0, recent_buyers=3, age_ms=1_000, decimals=9)
        values.update(overrides)
        return NewPoolEvent(**values)


class FakeNetwork:
    def __init__(self):
        self.accounts: dict = {}
        self.submitted: list = []
        self.deltas: dict = {}  # mint -> delta for the wallet
        self.parsed: dict = {}  # signature -> jsonParsed tx
        self.confirm_status = TxStatus.CONFIRMED
        self.submit_errors: list = []
        self.closed = False

    async def get_account(self, address):
        return self.accounts.get(address)

    async def get_latest_recency_token(self):
        return Hash.default()

    async def submit_transaction(self, tx, skip_preflight=True):
        if self.submit_errors:
            raise self.submit_errors.pop(0)
        self.submitted.append(tx)
        return f"sig{len(self.submitted)}"

    async def confirm_transaction(self, signature, commitment="confirmed", timeout=60.0):
        error = None if self.confirm_status != TxStatus.FAILED else "InstructionError"
        return TxResult(signature=signature, status=self.confirm_status, error=error)

    async def get_token_balance_delta(self, signature, owner, mint):
        return self.deltas.get(mint)

    async def get_parsed_transaction(self, signature):
        return self.parsed.get(signature)

    async def close(self):
        self.closed = True


class FakeDecisionService:
    def __init__(self, decision: TradeDecision | None = None):
        self.decision = decision or TradeDecision(
            action=TradeAction.BUY, amount_in=100_000_000, take_profit_pct=200, stop_loss_pct=50, reason="ok",
        )
        self.requests: list = []

    async def decide(self, request):
        self.requests.append(request)
        return self.decision


class FakeNotifier:
    def __init__(self):
        self.messages: list[str] = []
        self.opened: list = []
        self.closed: list = []

    async def send_message(self, text):
        self.messages.append(text)

    async def notify_open(self, position):
        self.opened.append(position)

    async def notify_close(self, position):
        self.closed.append(position)


class FakeExecutor:
    """Counts SELLs; blocks each one on ``gate`` until the test releases it."""

    def __init__(self, close_price: float | None = None, error: Exception | None = None):
        self.calls: list = []
        self.gate = asyncio.Event()
        self.gate.set()
        self.close_price = close_price
        self.error = error

    async def execute_sell(self, position, trigger_price):
        self.calls.append((position.id, trigger_price))
        await self.gate.wait()
        if self.error is not None:
            raise self.error
        price = self.close_price if self.close_price is not None else trigger_price
        return SellResult(signature=f"sell{len(self.calls)}", close_price=price)


class FakeSolPrice:
    def __init__(self, price: float | None = 150.0):
        self.price = price

    async def get_sol_price_usd(self):
        return self.price


class FakeConnection:
    """Scripted WebSocket: yields ``messages`` then ends as a closed socket would."""

    def __init__(self, messages=()):
        self.messages = list(messages)
        self.sent: list[str] = []
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.closed = True
        return False

    async def send(self, data):
        self.sent.append(data)

    async def close(self):
        self.closed = True

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self.messages:
            await asyncio.sleep(0)
            yield message


class ScriptedConnector:
    """Hands out the scripted connections in order; an exception in the script is raised instead."""

    def __init__(self, script):
        self.script = list(script)
        self.calls = 0

    def __call__(self, url):
        self.calls += 1
        item = self.script.pop(0) if self.script else OSError("no more connections")
        if isinstance(item, Exception):
            raise item
        return item
