"""
Jito block-engine client for atomic bundle submission.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

import base58
import httpx
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction, VersionedTransaction

from .utils import get_terminal_colors

logger = logging.getLogger(__name__)
colors = get_terminal_colors()


@dataclass
class BundleResult:
    """Outcome of a sendBundle call."""
    success: bool
    bundle_id: Optional[str] = None
    error: Optional[str] = None


class JitoClient:
    """Submits [trade, tip] bundles to a Jito block engine over JSON-RPC."""

    def __init__(
        self,
        block_engine_url: str,
        tip_account: str,
        timeout: float = 10.0,
        max_retries: int = 2,
        retry_delay_base: float = 2.0
    ):
        self.block_engine_url = block_engine_url
        self.tip_account = Pubkey.from_string(tip_account)
        self.max_retries = max_retries
        self.retry_delay_base = retry_delay_base
        self.client = httpx.AsyncClient(timeout=timeout)

    def build_tip_transaction(self, payer: Keypair, lamports: int, blockhash: Hash) -> Transaction:
        """Signed system transfer of `lamports` to the tip account."""
        ix = transfer(TransferParams(
            from_pubkey=payer.pubkey(),
            to_pubkey=self.tip_account,
            lamports=lamports
        ))
        return Transaction.new_signed_with_payer([ix], payer.pubkey(), [payer], blockhash)

    async def send_bundle(self, transactions: List[bytes]) -> BundleResult:
        """
        Send serialized, signed transactions as one bundle.

        Timeouts and connection errors are retried with exponential backoff;
        a JSON-RPC error in the response is final.
        """
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "sendBundle",
            "params": [[base58.b58encode(tx).decode("ascii") for tx in transactions]]
        }

        last_error = "no attempt made"
        for attempt in range(self.max_retries + 1):
            try:
                response = await self.client.post(self.block_engine_url, json=payload)
                response.raise_for_status()
                data = response.json()
            except (httpx.TimeoutException, httpx.ConnectError) as e:
                last_error = f"{type(e).__name__}: {e}"
                if attempt < self.max_retries:
                    wait_time = self.retry_delay_base * (2 ** attempt)
                    logger.warning(
                        f"Bundle submission failed ({last_error}), "
                        f"retrying in {wait_time:.1f}s (attempt {attempt + 1}/{self.max_retries})"
                    )
                    await asyncio.sleep(wait_time)
                    continue
                break
            except httpx.HTTPStatusError as e:
                logger.error(f"Block engine returned {e.response.status_code}: {e.response.text}")
                return BundleResult(success=False, error=f"HTTP {e.response.status_code}")
            except Exception as e:
                logger.error(f"Unexpected error sending bundle: {e}")
                return BundleResult(success=False, error=str(e))

            if not isinstance(data, dict):
                logger.error(f"Malformed block engine response: {data!r}")
                return BundleResult(success=False, error="Malformed response")
            if data.get("error"):
                logger.error(f"Bundle rejected: {data['error']}")
                return BundleResult(success=False, error=str(data["error"]))
            if data.get("result"):
                bundle_id = str(data["result"])
                logger.info(f"Bundle accepted: {colors['CYAN']}{bundle_id}{colors['RESET']}")
                return BundleResult(success=True, bundle_id=bundle_id)
            return BundleResult(success=False, error="Response has neither result nor error")

        logger.error(f"Bundle submission gave up after {self.max_retries + 1} attempts: {last_error}")
        return BundleResult(success=False, error=last_error)

    async def send_trade_bundle(
        self,
        trade_tx: VersionedTransaction,
        payer: Keypair,
        tip_lamports: int,
        blockhash: Hash
    ) -> BundleResult:
        """Build the tip transaction and submit [trade, tip]."""
        tip_tx = self.build_tip_transaction(payer, tip_lamports, blockhash)
        return await self.send_bundle([bytes(trade_tx), bytes(tip_tx)])

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()
