"""Trader keypair loading."""
from __future__ import annotations

import json

import base58
from solders.keypair import Keypair  # type: ignore

from pumpswap_sniper.exceptions import ConfigurationError


def load_keypair(secret: str) -> Keypair:
    """Accepts a base58 secret key or a JSON array of 64 bytes (solana-keygen format)."""
    secret = (secret or "").strip()
    if not secret:
        raise ConfigurationError("Trader secret key is empty")

    if secret.startswith("["):
        try:
            raw = bytes(json.loads(secret))
        except (ValueError, TypeError) as e:
            raise ConfigurationError("Secret key JSON array is invalid") from e
    else:
        try:
            raw = base58.b58decode(secret)
        except ValueError as e:
            raise ConfigurationError("Secret key is not valid base58") from e

    if len(raw) != 64:
        raise ConfigurationError("Secret key must be 64 bytes", length=len(raw))
    return Keypair.from_bytes(raw)
