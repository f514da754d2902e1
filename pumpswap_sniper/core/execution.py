"""
Trade execution pipeline.

BUY:  CANDIDATE -> RISK_CHECKED -> DECISION_CHECKED -> SUBMITTED -> VERIFIED
      (or REJECTED / FAILED / VERIFICATION_FAILED)
SELL: build -> submit -> confirm, no decision service involved.

Nothing here creates positions; the caller opens one from a VERIFIED outcome.
"""
from __future__ import annotations

import asyncio
import logging

from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price  # type: ignore
from solders.instruction import Instruction  # type: ignore
from solders.keypair import Keypair  # type: ignore
from solders.message import MessageV0  # type: ignore
from solders.pubkey import Pubkey  # type: ignore
from solders.system_program import TransferParams, transfer  # type: ignore
from solders.transaction import VersionedTransaction  # type: ignore
from spl.token.instructions import (
    SyncNativeParams,
    create_associated_token_account,
    sync_native,
)

from pumpswap_sniper.config import PositionLimits, Settings
from pumpswap_sniper.constants import BUY_TAG, SELL_TAG, TOKEN_PROGRAM, WSOL_MINT
from pumpswap_sniper.core import addresses
from pumpswap_sniper.core.account_builder import (
    build_instruction,
    buy_accounts_from_context,
    fetch_context,
    sell_accounts_from_context,
)
from pumpswap_sniper.core.decision import DecisionRequest, DecisionService, validate_decision
from pumpswap_sniper.core.models import (
    NewPoolEvent,
    PipelineOutcome,
    PipelineState,
    PoolReference,
    Position,
    SellResult,
    TradeDecision,
    VerifiedFill,
)
from pumpswap_sniper.core.network import NetworkClient
from pumpswap_sniper.core.risk_gate import RiskGate
from pumpswap_sniper.exceptions import (
    AccountDataError,
    AccountOrderMismatch,
    DecisionRejected,
    MalformedPayload,
    NetworkError,
    RiskRejection,
    SubmissionFailure,
    VerificationFailed,
)
from pumpswap_sniper.logger import trade_logger


class ExecutionPipeline:
    def __init__(
        self,
        settings: Settings,
        network: NetworkClient,
        wallet: Keypair,
        risk_gate: RiskGate,
        decision_service: DecisionService,
        limits: PositionLimits,
    ) -> None:
        self.settings = settings
        self.network = network
        self.wallet = wallet
        self.user = wallet.pubkey()
        self.risk_gate = risk_gate
        self.decision_service = decision_service
        self.limits = limits
        self.retry_delay = 0.5
        self.logger = logging.getLogger("pumpswap_sniper.execution")

    # =====================================================================
    # BUY
    # =====================================================================

    async def process(self, event: NewPoolEvent) -> PipelineOutcome:
        """Run a candidate through every stage. Never raises for expected outcomes."""
        outcome = PipelineOutcome(pool=event.pool, state=PipelineState.CANDIDATE)
        outcome.history.append(PipelineState.CANDIDATE)

        def advance(state: PipelineState) -> None:
            outcome.state = state
            outcome.history.append(state)

        try:
            self.check_risk(event)
            advance(PipelineState.RISK_CHECKED)

            decision = await self.decide(event)
            outcome.decision = decision
            advance(PipelineState.DECISION_CHECKED)

            signature = await self.submit_buy(event.pool, decision.amount_in)
            outcome.signature = signature
            advance(PipelineState.SUBMITTED)

            outcome.fill = await self.verify_buy(signature, event.pool, decision.amount_in)
            advance(PipelineState.VERIFIED)

        except (RiskRejection, DecisionRejected) as e:
            advance(PipelineState.REJECTED)
            outcome.reason = e.message if isinstance(e, DecisionRejected) else e.reason.value
            trade_logger.log_rejection(event.pool.pool, outcome.history[-2].value, outcome.reason)
        except VerificationFailed as e:
            advance(PipelineState.VERIFICATION_FAILED)
            outcome.reason = str(e)
            outcome.needs_review = True
            self.logger.error("🚨 BUY %s needs manual review: %s", outcome.signature, e)
        except (SubmissionFailure, AccountDataError, AccountOrderMismatch, MalformedPayload, NetworkError) as e:
            advance(PipelineState.FAILED)
            outcome.reason = str(e)
            self.logger.error("❌ BUY failed for %s: %s", event.pool.pool[:8], e)

        return outcome

    def check_risk(self, event: NewPoolEvent) -> None:
        decision = self.risk_gate.evaluate(event)
        if not decision.approved:
            raise RiskRejection(decision.reason, pool=event.pool.pool)

    async def decide(self, event: NewPoolEvent) -> TradeDecision:
        ceiling = self.limits.max_trade_lamports
        request = DecisionRequest.from_event(event, ceiling)
        decision = await self.decision_service.decide(request)
        return validate_decision(decision, ceiling)

    async def submit_buy(self, pool: PoolReference, amount_in: int) -> str:
        pool_key = pool.pool_key()
        base_mint = pool.base_mint_key()
        quote_mint = pool.quote_mint_key()

        context = await fetch_context(self.network, pool_key,
                                      attempts=self.settings.POOL_FETCH_ATTEMPTS,
                                      delay=self.settings.POOL_FETCH_DELAY_SEC)
        accounts = buy_accounts_from_context(context, pool_key, self.user, base_mint, quote_mint)
        swap_ix = build_instruction(accounts, BUY_TAG, amount_in, self.settings.SLIPPAGE_BPS)

        setup = await self._ensure_token_account(base_mint)
        if self.settings.AUTO_WRAP_SOL and quote_mint == WSOL_MINT:
            setup += await self._wrap_sol(amount_in)

        signature = await self.submit([*setup, swap_ix])
        self.logger.info("🚀 BUY submitted %s | pool=%s amount=%d", signature, pool.pool[:8], amount_in)
        return signature

    async def verify_buy(self, signature: str, pool: PoolReference, amount_in: int) -> VerifiedFill:
        """Confirm the BUY and measure what the wallet actually received."""
        result = await self.network.confirm_transaction(
            signature, self.settings.VERIFY_COMMITMENT, self.settings.CONFIRM_TIMEOUT_SEC)
        if not result.is_success:
            raise VerificationFailed("BUY did not confirm", signature=signature,
                                     status=result.status.value, error=result.error)

        base_received = await self._balance_delta(signature, pool.base_mint)
        if base_received is None:
            raise VerificationFailed("BUY transaction not available for inspection", signature=signature)
        if base_received <= 0:
            raise VerificationFailed("BUY produced no base tokens", signature=signature, delta=base_received)

        quote_delta = await self._balance_delta(signature, pool.quote_mint)
        quote_spent = -quote_delta if quote_delta is not None and quote_delta < 0 else amount_in

        fill = VerifiedFill(signature=signature, base_received=base_received, quote_spent=quote_spent)
        self.logger.info("✅ BUY verified %s | received=%d spent=%d price=%.12f",
                         signature[:16], base_received, quote_spent, fill.entry_price)
        trade_logger.log_buy(pool=pool.pool, mint=pool.base_mint, amount_in=quote_spent,
                             signature=signature, entry_price=fill.entry_price,
                             token_amount=base_received)
        return fill

    # =====================================================================
    # SELL
    # =====================================================================

    async def execute_sell(self, position: Position, trigger_price: float) -> SellResult:
        """Sell the whole position. Raises SubmissionFailure when it does not land."""
        pool = position.pool
        pool_key = pool.pool_key()
        base_mint = pool.base_mint_key()
        quote_mint = pool.quote_mint_key()

        context = await fetch_context(self.network, pool_key)
        accounts = sell_accounts_from_context(context, pool_key, self.user, base_mint, quote_mint)
        swap_ix = build_instruction(accounts, SELL_TAG, position.entry_amount, self.settings.SLIPPAGE_BPS)
        setup = await self._ensure_token_account(quote_mint)

        signature = await self.submit([*setup, swap_ix])
        self.logger.info("💰 SELL submitted %s | position=%s", signature, position.id)

        result = await self.network.confirm_transaction(
            signature, self.settings.VERIFY_COMMITMENT, self.settings.CONFIRM_TIMEOUT_SEC)
        if not result.is_success:
            raise SubmissionFailure("SELL did not confirm", signature=signature,
                                    status=result.status.value, error=result.error)

        quote_received = await self._balance_delta(signature, pool.quote_mint) or 0
        if quote_received > 0:
            close_price = quote_received / position.entry_amount
        else:
            close_price = trigger_price
        return SellResult(signature=signature, close_price=close_price, quote_received=max(quote_received, 0))

    # =====================================================================
    # TRANSACTION ASSEMBLY
    # =====================================================================

    async def submit(self, instructions: list[Instruction]) -> str:
        """Sign with a fresh blockhash and submit, retrying transport failures."""
        attempts = self.settings.SUBMIT_MAX_ATTEMPTS
        last_error: SubmissionFailure | None = None
        for attempt in range(1, attempts + 1):
            try:
                blockhash = await self.network.get_latest_recency_token()
                tx = self.assemble(instructions, blockhash)
                return await self.network.submit_transaction(tx, skip_preflight=self.settings.SKIP_PREFLIGHT)
            except SubmissionFailure as e:
                last_error = e
                self.logger.warning("Submit attempt %d/%d failed: %s", attempt, attempts, e)
                if attempt < attempts:
                    await asyncio.sleep(self.retry_delay * attempt)
        raise SubmissionFailure("Submission abandoned", attempts=attempts,
                                error=last_error.message if last_error else "")

    def assemble(self, instructions: list[Instruction], blockhash) -> VersionedTransaction:
        ixs: list[Instruction] = []
        if self.settings.PRIORITY_FEE_ENABLED:
            ixs.append(set_compute_unit_price(self.settings.COMPUTE_UNIT_PRICE))
            ixs.append(set_compute_unit_limit(self.settings.COMPUTE_UNIT_LIMIT))
        ixs.extend(instructions)
        message = MessageV0.try_compile(self.user, ixs, [], blockhash)
        return VersionedTransaction(message, [self.wallet])

    async def _ensure_token_account(self, mint: Pubkey) -> list[Instruction]:
        ata = addresses.user_token_account(self.user, mint)
        if await self.network.get_account(ata) is not None:
            return []
        return [create_associated_token_account(payer=self.user, owner=self.user, mint=mint,
                                                token_program_id=TOKEN_PROGRAM)]

    async def _wrap_sol(self, lamports: int) -> list[Instruction]:
        wsol_ata = addresses.user_token_account(self.user, WSOL_MINT)
        ixs = await self._ensure_token_account(WSOL_MINT)
        ixs.append(transfer(TransferParams(from_pubkey=self.user, to_pubkey=wsol_ata, lamports=lamports)))
        ixs.append(sync_native(SyncNativeParams(program_id=TOKEN_PROGRAM, account=wsol_ata)))
        return ixs

    async def _balance_delta(self, signature: str, mint: str) -> int | None:
        """Balance change for the wallet, waiting for the RPC node to index the transaction."""
        owner = str(self.user)
        for attempt in range(self.settings.VERIFY_FETCH_ATTEMPTS):
            try:
                delta = await self.network.get_token_balance_delta(signature, owner, mint)
            except NetworkError as e:
                self.logger.debug("Balance lookup failed for %s: %s", signature[:16], e)
                delta = None
            if delta is not None:
                return delta
            if attempt + 1 < self.settings.VERIFY_FETCH_ATTEMPTS:
                await asyncio.sleep(self.retry_delay)
        return None
