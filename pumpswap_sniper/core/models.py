from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from solders.instruction import AccountMeta  # type: ignore
from solders.pubkey import Pubkey  # type: ignore


class TradeSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class TradeAction(str, Enum):
    BUY = "BUY"
    IGNORE = "IGNORE"


class RiskReason(str, Enum):
    BLACKLIST_CREATOR = "BLACKLIST_CREATOR"
    LOW_LIQUIDITY = "LOW_LIQUIDITY"
    NO_BUYER_SUPPORT = "NO_BUYER_SUPPORT"
    TOO_EARLY = "TOO_EARLY"
    TOO_LATE = "TOO_LATE"
    INVALID_DECIMALS = "INVALID_DECIMALS"


class PositionStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class ExitReason(str, Enum):
    TAKE_PROFIT = "TAKE_PROFIT"
    STOP_LOSS = "STOP_LOSS"
    MOMENTUM = "MOMENTUM"
    MANUAL = "MANUAL"


class PipelineState(str, Enum):
    CANDIDATE = "CANDIDATE"
    RISK_CHECKED = "RISK_CHECKED"
    DECISION_CHECKED = "DECISION_CHECKED"
    SUBMITTED = "SUBMITTED"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"
    FAILED = "FAILED"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"


@dataclass(frozen=True)
class PoolReference:
    pool: str
    base_mint: str
    quote_mint: str
    creator: str = ""

    def pool_key(self) -> Pubkey:
        return Pubkey.from_string(self.pool)

    def base_mint_key(self) -> Pubkey:
        return Pubkey.from_string(self.base_mint)

    def quote_mint_key(self) -> Pubkey:
        return Pubkey.from_string(self.quote_mint)


@dataclass(frozen=True)
class AccountDescriptor:
    address: Pubkey
    is_writable: bool = False
    is_signer: bool = False

    def to_account_meta(self) -> AccountMeta:
        return AccountMeta(self.address, self.is_signer, self.is_writable)


@dataclass(frozen=True)
class TradeInstructionPayload:
    tag: int
    amount_in: int
    slippage_bps: int


@dataclass(frozen=True)
class RiskDecision:
    approved: bool
    reason: RiskReason | None = None


@dataclass
class NewPoolEvent:
    """Candidate produced by pool discovery."""
    pool: PoolReference
    liquidity_usd: float
    recent_buyers: int
    age_ms: int
    decimals: int
    signature: str = ""
    is_pumpfun_pool: bool = False


@dataclass
class TradeDecision:
    action: TradeAction
    amount_in: int = 0
    take_profit_pct: float = 0.0
    stop_loss_pct: float = 0.0
    reason: str = ""


@dataclass
class PriceUpdate:
    asset_id: str
    price: float
    timestamp: float
    liquidity: float | None = None


@dataclass
class BuyerObservation:
    asset_id: str
    buyer: str
    timestamp: float


@dataclass
class VerifiedFill:
    """Balance-verified outcome of a BUY."""
    signature: str
    base_received: int
    quote_spent: int

    @property
    def entry_price(self) -> float:
        return self.quote_spent / self.base_received


@dataclass
class SellResult:
    signature: str
    close_price: float
    quote_received: int = 0


@dataclass
class Position:
    id: str
    pool: PoolReference
    entry_signature: str
    entry_price: float
    entry_amount: int
    entry_quote_amount: int
    take_profit_pct: float
    stop_loss_pct: float
    opened_at: float
    status: PositionStatus = PositionStatus.OPEN
    close_signature: str | None = None
    close_price: float | None = None
    closed_at: float | None = None
    realized_pnl: float | None = None
    exit_reason: ExitReason | None = None
    abandoned_at: float | None = None

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["exit_reason"] = self.exit_reason.value if self.exit_reason else None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Position":
        exit_reason = data.get("exit_reason")
        return cls(
            id=str(data["id"]),
            pool=PoolReference(**data["pool"]),
            entry_signature=str(data["entry_signature"]),
            entry_price=float(data["entry_price"]),
            entry_amount=int(data["entry_amount"]),
            entry_quote_amount=int(data["entry_quote_amount"]),
            take_profit_pct=float(data["take_profit_pct"]),
            stop_loss_pct=float(data["stop_loss_pct"]),
            opened_at=float(data["opened_at"]),
            status=PositionStatus(data.get("status", PositionStatus.OPEN.value)),
            close_signature=data.get("close_signature"),
            close_price=data.get("close_price"),
            closed_at=data.get("closed_at"),
            realized_pnl=data.get("realized_pnl"),
            exit_reason=ExitReason(exit_reason) if exit_reason else None,
            abandoned_at=data.get("abandoned_at"),
        )


@dataclass
class PipelineOutcome:
    pool: PoolReference
    state: PipelineState
    reason: str = ""
    signature: str | None = None
    decision: TradeDecision | None = None
    fill: VerifiedFill | None = None
    position: Position | None = None
    needs_review: bool = False
    history: list[PipelineState] = field(default_factory=list)
