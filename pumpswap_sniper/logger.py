"""
Logging setup for the PumpSwap sniper.

The console gets short colored lines; ``bot.log``, ``errors.log`` and
``trades.log`` under the log directory get one JSON object per record.
Structured fields travel in ``extra={"extra_data": {...}}``.
"""

import json
import logging
import logging.handlers
import os
from datetime import datetime, timezone

DEFAULT_LOG_DIR = "logs"
NOISY_LOGGERS = ("solana", "solders", "httpx", "httpcore", "websockets", "openai")

_MB = 1024 * 1024


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, extra_data merged at top level."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        payload.update(getattr(record, "extra_data", None) or {})
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Colored ``HH:MM:SS LEVEL name: message (k=v ...)`` lines for the terminal."""

    COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelno, self.RESET)
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        name = record.name.rsplit(".", 1)[-1]
        line = f"{color}{clock} {record.levelname:<8}{self.RESET} {name}: {record.getMessage()}"

        extra = {k: v for k, v in (getattr(record, "extra_data", None) or {}).items() if k != "trade_event"}
        if extra:
            line += " (" + " ".join(f"{k}={v}" for k, v in extra.items()) + ")"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _is_trade_event(record: logging.LogRecord) -> bool:
    extra = getattr(record, "extra_data", None)
    return bool(extra and extra.get("trade_event"))


def _json_file(log_dir: str, name: str, max_mb: int, backups: int, level: int) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        os.path.join(log_dir, name), maxBytes=max_mb * _MB, backupCount=backups, encoding="utf-8",
    )
    handler.setFormatter(StructuredFormatter())
    handler.setLevel(level)
    return handler


def setup_logging(
    level: str = "INFO",
    log_dir: str = DEFAULT_LOG_DIR,
    enable_console: bool = True,
    enable_file: bool = True,
):
    """
    Replace the root handlers with console and rotating JSON file handlers.

    Args:
        level: Console / root level name (DEBUG, INFO, ...)
        log_dir: Directory for bot.log, errors.log and trades.log
        enable_console: Attach the colored console handler
        enable_file: Attach the JSON file handlers
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(min(numeric_level, logging.DEBUG) if enable_file else numeric_level)
    root.handlers.clear()

    if enable_console:
        console = logging.StreamHandler()
        console.setFormatter(HumanReadableFormatter())
        console.setLevel(numeric_level)
        root.addHandler(console)

    if enable_file:
        os.makedirs(log_dir, exist_ok=True)
        root.addHandler(_json_file(log_dir, "bot.log", 10, 5, logging.DEBUG))
        root.addHandler(_json_file(log_dir, "errors.log", 5, 3, logging.ERROR))
        trades = _json_file(log_dir, "trades.log", 10, 10, logging.DEBUG)
        trades.addFilter(_is_trade_event)
        root.addHandler(trades)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


class TradeLogger:
    """
    Structured BUY / SELL / rejection events.

    Every record carries ``trade_event`` so it lands in trades.log as well.

    Usage:
        trade_logger.log_buy(pool="...", mint="...", amount_in=10_000_000,
                             signature="...", entry_price=1e-6, token_amount=10**13)
    """

    def __init__(self):
        self.logger = logging.getLogger("pumpswap_sniper.trades")

    def _emit(self, level: int, event_type: str, **fields):
        fields.update(trade_event=True, event_type=event_type)
        self.logger.log(level, event_type, extra={"extra_data": fields})

    def log_buy(self, pool: str, mint: str, amount_in: int, signature: str,
                entry_price: float, token_amount: int):
        self._emit(logging.INFO, "BUY", pool=pool, mint=mint, amount_in=amount_in,
                   signature=signature, entry_price=entry_price, token_amount=token_amount)

    def log_sell(self, pool: str, mint: str, signature: str, reason: str, close_price: float,
                 realized_pnl: float, hold_time_seconds: float = 0.0, token_amount: int = 0):
        self._emit(logging.INFO, "SELL", pool=pool, mint=mint, signature=signature, reason=reason,
                   close_price=close_price, realized_pnl=realized_pnl,
                   hold_time_seconds=round(hold_time_seconds, 3), token_amount=token_amount)

    def log_rejection(self, pool: str, stage: str, reason: str):
        """Candidate stopped before submission."""
        self._emit(logging.DEBUG, "REJECT", pool=pool, stage=stage, reason=reason)


trade_logger = TradeLogger()
