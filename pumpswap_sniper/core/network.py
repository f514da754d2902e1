"""
Network client boundary.

``NetworkClient`` is the narrow interface the engine talks to. The concrete
``SolanaNetworkClient`` uses solana-py's AsyncClient for account reads,
blockhashes, submission and signature polling, and raw JSON-RPC over httpx
for jsonParsed transaction lookups.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solders.hash import Hash  # type: ignore
from solders.pubkey import Pubkey  # type: ignore
from solders.signature import Signature  # type: ignore
from solders.transaction import VersionedTransaction  # type: ignore
from solders.transaction_status import TransactionConfirmationStatus  # type: ignore

from pumpswap_sniper.exceptions import NetworkError, SubmissionFailure
from pumpswap_sniper.utils.retry import async_retry


class TxStatus(Enum):
    """Transaction status"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"
    FAILED = "failed"
    EXPIRED = "expired"


@dataclass
class TxResult:
    """Transaction confirmation result"""
    signature: str
    status: TxStatus
    slot: int | None = None
    error: str | None = None
    elapsed_seconds: float = 0.0

    @property
    def is_success(self) -> bool:
        return self.status in (TxStatus.CONFIRMED, TxStatus.FINALIZED)


class NetworkClient(Protocol):
    async def get_account(self, address: Pubkey) -> bytes | None: ...

    async def get_latest_recency_token(self) -> Hash: ...

    async def submit_transaction(self, tx: VersionedTransaction, skip_preflight: bool = True) -> str: ...

    async def confirm_transaction(self, signature: str, commitment: str = "confirmed",
                                  timeout: float = 60.0) -> TxResult: ...

    async def get_token_balance_delta(self, signature: str, owner: str, mint: str) -> int | None: ...

    async def get_parsed_transaction(self, signature: str) -> dict[str, Any] | None: ...

    async def close(self) -> None: ...


def token_balance_delta(tx: dict[str, Any], owner: str, mint: str) -> int:
    """Net change (post - pre) of ``owner``'s ``mint`` balance across all its token accounts.

    Pre balances are matched to post balances by account index; an account
    absent from the pre list started at zero.
    """
    meta = tx.get("meta") or {}
    pre_by_index: dict[int, int] = {}
    for entry in meta.get("preTokenBalances") or []:
        if entry.get("owner") == owner and entry.get("mint") == mint:
            pre_by_index[entry.get("accountIndex")] = int(entry["uiTokenAmount"]["amount"])

    delta = 0
    seen: set[int] = set()
    for entry in meta.get("postTokenBalances") or []:
        if entry.get("owner") != owner or entry.get("mint") != mint:
            continue
        index = entry.get("accountIndex")
        seen.add(index)
        delta += int(entry["uiTokenAmount"]["amount"]) - pre_by_index.get(index, 0)

    # Accounts closed during the transaction only show up in the pre list
    for index, amount in pre_by_index.items():
        if index not in seen:
            delta -= amount
    return delta


class TransactionConfirmer:
    """
    Polls signature statuses until the requested commitment, an execution
    error, or the timeout.

    Usage:
        confirmer = TransactionConfirmer(client)
        result = await confirmer.confirm(signature, "confirmed", timeout=60)
    """

    MIN_POLL_INTERVAL = 0.5
    MAX_POLL_INTERVAL = 2.0

    def __init__(self, client: AsyncClient):
        self.client = client
        self.logger = logging.getLogger("pumpswap_sniper.confirmer")

    async def confirm(self, signature: str, commitment: str = "confirmed", timeout: float = 60.0) -> TxResult:
        start_time = time.time()
        poll_interval = self.MIN_POLL_INTERVAL
        result = TxResult(signature=signature, status=TxStatus.PENDING)
        wanted = {TransactionConfirmationStatus.Finalized}
        if commitment == "confirmed":
            wanted.add(TransactionConfirmationStatus.Confirmed)

        while True:
            elapsed = time.time() - start_time
            if elapsed >= timeout:
                result.status = TxStatus.EXPIRED
                result.error = f"Timeout after {timeout}s"
                result.elapsed_seconds = elapsed
                self.logger.warning("Transaction %s... expired after %.1fs", signature[:20], elapsed)
                return result

            status = await self._check_status(signature)
            if status is not None:
                result.slot = status.slot
                if status.err is not None:
                    result.status = TxStatus.FAILED
                    result.error = str(status.err)
                    result.elapsed_seconds = time.time() - start_time
                    self.logger.error("Transaction %s... failed: %s", signature[:20], result.error)
                    return result

                if status.confirmation_status in wanted:
                    finalized = status.confirmation_status == TransactionConfirmationStatus.Finalized
                    result.status = TxStatus.FINALIZED if finalized else TxStatus.CONFIRMED
                    result.elapsed_seconds = time.time() - start_time
                    self.logger.info("Transaction %s... %s in %.1fs",
                                     signature[:20], result.status.value, result.elapsed_seconds)
                    return result

            await asyncio.sleep(poll_interval)
            poll_interval = min(poll_interval * 1.5, self.MAX_POLL_INTERVAL)

    async def _check_status(self, signature: str):
        try:
            response = await self.client.get_signature_statuses([Signature.from_string(signature)])
        except (RPCException, SolanaRpcException, httpx.HTTPError) as e:
            self.logger.debug("Status check error: %s", e)
            return None
        if response and response.value:
            return response.value[0]
        return None


class SolanaNetworkClient:
    """NetworkClient backed by a Solana JSON-RPC endpoint."""

    def __init__(self, rpc_url: str, timeout: float = 10.0) -> None:
        self.rpc_url = rpc_url
        self.client = AsyncClient(rpc_url, commitment=Confirmed, timeout=timeout)
        self.http = httpx.AsyncClient(timeout=timeout)
        self.confirmer = TransactionConfirmer(self.client)
        self.logger = logging.getLogger("pumpswap_sniper.network")

    async def close(self) -> None:
        await self.http.aclose()
        await self.client.close()

    async def get_account(self, address: Pubkey) -> bytes | None:
        try:
            resp = await self.client.get_account_info(address)
        except (RPCException, SolanaRpcException, httpx.HTTPError) as e:
            raise NetworkError("getAccountInfo failed", address=str(address), error=str(e)) from e
        if resp.value is None:
            return None
        return bytes(resp.value.data)

    async def get_latest_recency_token(self) -> Hash:
        try:
            response = await self.client.get_latest_blockhash()
        except (RPCException, SolanaRpcException, httpx.HTTPError) as e:
            raise SubmissionFailure("getLatestBlockhash failed", error=str(e)) from e
        return response.value.blockhash

    async def submit_transaction(self, tx: VersionedTransaction, skip_preflight: bool = True) -> str:
        opts = TxOpts(skip_preflight=skip_preflight, preflight_commitment=Confirmed)
        try:
            resp = await self.client.send_transaction(tx, opts=opts)
        except (RPCException, SolanaRpcException, httpx.HTTPError) as e:
            raise SubmissionFailure("sendTransaction failed", error=str(e)) from e
        if resp.value is None:
            raise SubmissionFailure("sendTransaction returned no signature")
        return str(resp.value)

    async def confirm_transaction(self, signature: str, commitment: str = "confirmed",
                                  timeout: float = 60.0) -> TxResult:
        return await self.confirmer.confirm(signature, commitment, timeout)

    async def get_token_balance_delta(self, signature: str, owner: str, mint: str) -> int | None:
        tx = await self.get_parsed_transaction(signature)
        if tx is None:
            return None
        return token_balance_delta(tx, owner, mint)

    @async_retry(max_attempts=3, delay=0.5, exceptions=(NetworkError,))
    async def get_parsed_transaction(self, signature: str) -> dict[str, Any] | None:
        return await self._rpc("getTransaction", [
            signature,
            {"encoding": "jsonParsed", "commitment": "confirmed", "maxSupportedTransactionVersion": 0},
        ])

    async def _rpc(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        try:
            response = await self.http.post(self.rpc_url, json=payload)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise NetworkError(f"{method} request failed", error=str(e)) from e
        if "error" in data:
            raise NetworkError(f"{method} returned an error", error=data["error"])
        return data.get("result")
