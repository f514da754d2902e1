"""
Decision gate.

The decision service is a black box asked "BUY or IGNORE?" for a candidate
pool. Its answer is untrusted: parsing never raises, anything malformed or
incomplete becomes IGNORE, and amounts are re-checked against the local
capital ceiling before they reach a transaction.
"""
from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Protocol

import openai
from openai import AsyncOpenAI

from pumpswap_sniper.core.models import NewPoolEvent, TradeAction, TradeDecision
from pumpswap_sniper.exceptions import DecisionRejected

logger = logging.getLogger("pumpswap_sniper.decision")


@dataclass
class DecisionRequest:
    pool: str
    base_mint: str
    quote_mint: str
    creator: str
    liquidity_usd: float
    recent_buyers: int
    age_ms: int
    max_amount_in: int

    @classmethod
    def from_event(cls, event: NewPoolEvent, max_amount_in: int) -> "DecisionRequest":
        return cls(
            pool=event.pool.pool,
            base_mint=event.pool.base_mint,
            quote_mint=event.pool.quote_mint,
            creator=event.pool.creator,
            liquidity_usd=event.liquidity_usd,
            recent_buyers=event.recent_buyers,
            age_ms=event.age_ms,
            max_amount_in=max_amount_in,
        )


class DecisionService(Protocol):
    async def decide(self, request: DecisionRequest) -> TradeDecision: ...


def _ignore(reason: str) -> TradeDecision:
    return TradeDecision(action=TradeAction.IGNORE, reason=reason)


def parse_trade_decision(raw: Any) -> TradeDecision:
    """Turn an untrusted response (JSON text or dict) into a TradeDecision.

    Expected shape: {"action": "BUY"|"IGNORE", "reason": str,
    "amountInLamports": int, "tpPercent": number, "slPercent": number}.
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            return _ignore("decision response is not valid JSON")
    if not isinstance(raw, dict):
        return _ignore("decision response is not an object")

    reason = str(raw.get("reason") or "")
    action = str(raw.get("action") or "").strip().upper()
    if action != TradeAction.BUY.value:
        return _ignore(reason or "service said IGNORE")

    try:
        amount_raw = raw.get("amountInLamports", raw.get("amount_in"))
        tp = float(raw.get("tpPercent", raw.get("take_profit_pct")))
        sl = float(raw.get("slPercent", raw.get("stop_loss_pct")))
        if isinstance(amount_raw, int):
            amount = amount_raw
        else:
            amount_float = float(amount_raw)
            if not math.isfinite(amount_float) or amount_float != int(amount_float):
                return _ignore("amount is not a whole number of lamports")
            amount = int(amount_float)
    except (TypeError, ValueError, OverflowError):
        return _ignore("BUY decision is missing amount, take-profit or stop-loss")
    if not (math.isfinite(tp) and math.isfinite(sl)):
        return _ignore("take-profit and stop-loss must be finite")

    return TradeDecision(
        action=TradeAction.BUY,
        amount_in=amount,
        take_profit_pct=tp,
        stop_loss_pct=abs(sl),
        reason=reason,
    )


def validate_decision(decision: TradeDecision, max_amount_in: int) -> TradeDecision:
    """Raise DecisionRejected unless the decision is a BUY the engine may execute."""
    if decision.action != TradeAction.BUY:
        raise DecisionRejected("Decision service declined", reason=decision.reason)
    if not isinstance(decision.amount_in, int) or decision.amount_in <= 0:
        raise DecisionRejected("Amount must be a positive whole number", amount_in=decision.amount_in)
    if decision.amount_in > max_amount_in:
        raise DecisionRejected("Amount above capital ceiling",
                               amount_in=decision.amount_in, ceiling=max_amount_in)
    if not math.isfinite(decision.take_profit_pct) or decision.take_profit_pct <= 0:
        raise DecisionRejected("Take-profit must be a positive finite number", tp=decision.take_profit_pct)
    if not 0 < decision.stop_loss_pct <= 100:
        raise DecisionRejected("Stop-loss must be in (0, 100]", sl=decision.stop_loss_pct)
    return decision


SYSTEM_PROMPT = (
    "You are a risk-aware trading agent for newly created PumpSwap pools on Solana. "
    "Answer with a single JSON object: "
    '{"action": "BUY" | "IGNORE", "reason": string, "amountInLamports": integer, '
    '"tpPercent": number, "slPercent": number}. '
    "Never exceed the maximum amount you are given. Prefer IGNORE when unsure."
)


class OpenAIDecisionService:
    """DecisionService backed by an OpenAI-compatible chat completions API."""

    def __init__(self, api_key: str, model: str, base_url: str | None = None,
                 timeout: float = 15.0, client: AsyncOpenAI | None = None) -> None:
        self.model = model
        self.client = client or AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout)

    async def close(self) -> None:
        await self.client.close()

    async def decide(self, request: DecisionRequest) -> TradeDecision:
        user_prompt = (
            f"New pool {request.pool}\n"
            f"- base mint: {request.base_mint}\n"
            f"- quote mint: {request.quote_mint}\n"
            f"- creator: {request.creator}\n"
            f"- liquidity: ${request.liquidity_usd:,.0f}\n"
            f"- recent buyers: {request.recent_buyers}\n"
            f"- age: {request.age_ms} ms\n"
            f"Maximum amount: {request.max_amount_in} lamports."
        )
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": user_prompt},
                ],
                response_format={"type": "json_object"},
                temperature=0,
            )
        except openai.OpenAIError as e:
            logger.warning("Decision service call failed for %s: %s", request.pool[:8], e)
            return _ignore(f"decision service error: {e}")

        if not response.choices:
            return _ignore("decision service returned no choices")
        content = response.choices[0].message.content or ""
        decision = parse_trade_decision(content)
        logger.info("🧠 %s -> %s (%s)", request.pool[:8], decision.action.value, decision.reason)
        return decision
