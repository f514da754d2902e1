from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any

from pumpswap_sniper.core.models import Position, PositionStatus
from pumpswap_sniper.exceptions import ConfigurationError


class PositionStore:
    """JSON-file position store.

    Writes to one position are serialized by a per-id lock. The whole file is
    rewritten through a temp file and ``os.replace`` under a writer lock, so a
    reader never sees a half-written file.
    """

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self.logger = logging.getLogger("pumpswap_sniper.store")
        self._positions: dict[str, Position] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._write_lock = asyncio.Lock()
        self.load()

    def load(self) -> None:
        if not self.path.exists():
            self.logger.info("No positions file at %s, starting fresh", self.path)
            return
        try:
            content = self.path.read_text(encoding="utf-8").strip()
            records = json.loads(content) if content else []
        except (OSError, ValueError) as e:
            raise ConfigurationError("Positions file is unreadable", path=str(self.path), error=str(e)) from e
        if not isinstance(records, list):
            raise ConfigurationError("Positions file must hold a JSON array", path=str(self.path))
        try:
            self._positions = {p.id: p for p in (Position.from_dict(r) for r in records)}
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError("Positions file has a malformed record", path=str(self.path), error=str(e)) from e
        self.logger.info("Restored %d positions (%d open) from %s",
                         len(self._positions), len(self.list_open()), self.path)

    def lock_for(self, position_id: str) -> asyncio.Lock:
        lock = self._locks.get(position_id)
        if lock is None:
            lock = self._locks[position_id] = asyncio.Lock()
        return lock

    async def save(self, position: Position) -> None:
        async with self.lock_for(position.id):
            self._positions[position.id] = position
            await self._flush()

    async def _flush(self) -> None:
        async with self._write_lock:
            records = [p.to_dict() for p in self._positions.values()]
            self._write_atomic(records)

    def _write_atomic(self, records: list[dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(json.dumps(records, indent=2), encoding="utf-8")
        os.replace(tmp_path, self.path)

    def get(self, position_id: str) -> Position | None:
        return self._positions.get(position_id)

    def contains(self, position_id: str) -> bool:
        return position_id in self._positions

    def list_all(self) -> list[Position]:
        return list(self._positions.values())

    def list_open(self, pool: str | None = None) -> list[Position]:
        return [
            p for p in self._positions.values()
            if p.status == PositionStatus.OPEN and (pool is None or p.pool.pool == pool)
        ]

    def pnl_summary(self) -> dict[str, Any]:
        """Realized P&L summed over CLOSED positions only."""
        closed = [p for p in self._positions.values() if p.status == PositionStatus.CLOSED]
        pnls = [p.realized_pnl or 0.0 for p in closed]
        return {
            "total_realized_pnl": sum(pnls),
            "closed_count": len(closed),
            "open_count": len(self.list_open()),
            "wins": sum(1 for x in pnls if x > 0),
            "losses": sum(1 for x in pnls if x < 0),
        }
