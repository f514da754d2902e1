"""
Creator Deny-List

Creators whose pools are never traded. Loaded from a JSON array of addresses;
entries can also be added at runtime.
"""

import json
import logging
from pathlib import Path
from typing import Iterable, Set

from pumpswap_sniper.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class CreatorDenyList:
    def __init__(self, creators: Iterable[str] = ()):
        self.denied: Set[str] = {c.strip() for c in creators if c and c.strip()}

    @classmethod
    def from_file(cls, path: str) -> "CreatorDenyList":
        """Load from a JSON list. A missing file means an empty list."""
        file_path = Path(path)
        if not file_path.exists():
            logger.info(f"No deny-list at {file_path}, starting empty")
            return cls()
        try:
            data = json.loads(file_path.read_text(encoding="utf-8") or "[]")
        except (OSError, ValueError) as e:
            raise ConfigurationError("Cannot read creator deny-list", path=str(file_path), error=str(e)) from e
        if not isinstance(data, list):
            raise ConfigurationError("Creator deny-list must be a JSON array", path=str(file_path))
        deny_list = cls(str(item) for item in data)
        logger.info(f"🛑 Loaded {len(deny_list.denied)} denied creators from {file_path}")
        return deny_list

    def add(self, creator: str):
        self.denied.add(creator)
        logger.info(f"🛑 Denied creator {creator[:8]}...")

    def is_denied(self, creator: str) -> bool:
        return creator in self.denied

    def __len__(self) -> int:
        return len(self.denied)
