"""
Solana RPC client for balances, lookup tables, token accounts and settlement.
"""
import asyncio
import base64
import logging
from enum import Enum
from typing import Optional, List

from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.rpc.responses import GetBalanceResp
from solders.signature import Signature
from solders.transaction import Transaction
from solders.transaction_status import TransactionConfirmationStatus
from solders.address_lookup_table_account import AddressLookupTableAccount, AddressLookupTable
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.models import TxOpts

from .config import TOKEN_PROGRAM_ID, ASSOCIATED_TOKEN_PROGRAM_ID
from .utils import get_terminal_colors, short_address

logger = logging.getLogger(__name__)
colors = get_terminal_colors()

TOKEN_PROGRAM = Pubkey.from_string(TOKEN_PROGRAM_ID)
ASSOCIATED_TOKEN_PROGRAM = Pubkey.from_string(ASSOCIATED_TOKEN_PROGRAM_ID)
SYSTEM_PROGRAM = Pubkey.from_string("11111111111111111111111111111111")


class ConfirmationOutcome(Enum):
    """Result of polling a submitted signature."""
    CONFIRMED = "confirmed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


def get_associated_token_address(owner: Pubkey, mint: Pubkey) -> Pubkey:
    """Derive the associated token account of `owner` for `mint`."""
    address, _bump = Pubkey.find_program_address(
        [bytes(owner), bytes(TOKEN_PROGRAM), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM
    )
    return address


def create_associated_token_account_instruction(payer: Pubkey, owner: Pubkey, mint: Pubkey) -> Instruction:
    """Build the associated-token-program `create` instruction (empty data)."""
    ata = get_associated_token_address(owner, mint)
    accounts = [
        AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=ata, is_signer=False, is_writable=True),
        AccountMeta(pubkey=owner, is_signer=False, is_writable=False),
        AccountMeta(pubkey=mint, is_signer=False, is_writable=False),
        AccountMeta(pubkey=SYSTEM_PROGRAM, is_signer=False, is_writable=False),
        AccountMeta(pubkey=TOKEN_PROGRAM, is_signer=False, is_writable=False),
    ]
    return Instruction(ASSOCIATED_TOKEN_PROGRAM, b"", accounts)


def _account_data_to_bytes(raw) -> bytes:
    """Normalize account data returned by solana-py to raw bytes."""
    if isinstance(raw, (bytes, bytearray)):
        return bytes(raw)
    if isinstance(raw, str):
        return base64.b64decode(raw)
    if isinstance(raw, list) and raw and isinstance(raw[0], str):
        # ["<base64>", "base64"]
        return base64.b64decode(raw[0])
    raise TypeError(f"Unexpected account data type: {type(raw).__name__}")


class SolanaClient:
    """Client for Solana RPC operations."""

    def __init__(self, rpc_url: str, wallet_keypair: Optional[Keypair] = None):
        self.rpc_url = rpc_url
        self.client = AsyncClient(rpc_url)
        self.wallet = wallet_keypair

    async def is_healthy(self) -> bool:
        """Check that the RPC endpoint answers."""
        try:
            return bool(await self.client.is_connected())
        except Exception as e:
            logger.error(f"RPC health check failed: {e}")
            return False

    async def get_balance(self, pubkey: Optional[Pubkey] = None) -> int:
        """
        Get SOL balance in lamports.

        Args:
            pubkey: Public key (defaults to wallet)

        Returns:
            Balance in lamports (0 if the RPC call failed)
        """
        if pubkey is None:
            if self.wallet is None:
                raise ValueError("No wallet or pubkey provided")
            pubkey = self.wallet.pubkey()

        try:
            resp: GetBalanceResp = await self.client.get_balance(pubkey, commitment=Confirmed)
            return resp.value
        except Exception as e:
            logger.error(f"Error getting balance: {e}")
            return 0

    async def get_recent_blockhash(self) -> Optional[Hash]:
        """
        Get recent blockhash for transaction building.

        Returns:
            Recent blockhash as Hash object, or None if failed
        """
        try:
            result = await self.client.get_latest_blockhash(commitment=Confirmed)
            if result.value:
                return result.value.blockhash
            return None
        except Exception as e:
            logger.error(f"Error getting recent blockhash: {e}")
            return None

    async def get_address_lookup_table_accounts(
        self,
        addresses: List[str]
    ) -> List[AddressLookupTableAccount]:
        """
        Load Address Lookup Table (ALT) accounts.

        Tables that are missing or cannot be decoded are logged and skipped;
        the caller decides what an empty result means.

        Args:
            addresses: List of ALT addresses (base58 strings)

        Returns:
            List of AddressLookupTableAccount objects that loaded successfully
        """
        alt_accounts = []
        for alt_address in addresses:
            try:
                pubkey = Pubkey.from_string(alt_address)
                account_info = await self.client.get_account_info(pubkey, commitment=Confirmed)
                if account_info.value is None:
                    raise ValueError("account not found")

                table = AddressLookupTable.deserialize(_account_data_to_bytes(account_info.value.data))
                alt_account = AddressLookupTableAccount(pubkey, table.addresses)
                alt_accounts.append(alt_account)
                logger.debug(f"Loaded ALT account: {alt_address} with {len(alt_account.addresses)} addresses")
            except Exception as e:
                logger.warning(f"Skipping lookup table {short_address(alt_address)}: {e}")

        return alt_accounts

    async def send_raw_transaction(self, tx_bytes: bytes) -> Optional[str]:
        """
        Submit a signed, serialized transaction.

        Preflight is skipped; the node retries delivery up to 3 times.

        Returns:
            Transaction signature (base58 string), or None if submission failed
        """
        try:
            opts = TxOpts(skip_preflight=True, max_retries=3)
            result = await self.client.send_raw_transaction(tx_bytes, opts=opts)
            if result.value:
                sig = str(result.value)
                logger.debug(f"Transaction sent: {sig}")
                return sig
            logger.warning("Transaction send returned no signature")
            return None
        except Exception as e:
            logger.error(f"Error sending transaction: {e}")
            return None

    async def wait_for_confirmation(
        self,
        signature: str,
        timeout: float = 30.0,
        poll_interval: float = 1.0
    ) -> ConfirmationOutcome:
        """
        Poll signature status until confirmed, failed, or the timeout elapses.

        A status carrying an error is a failure. Confirmed or finalized
        commitment is success. Nothing is resent on timeout.
        """
        sig = Signature.from_string(signature)
        polls = max(1, round(timeout / poll_interval))

        for _ in range(polls):
            try:
                resp = await self.client.get_signature_statuses([sig])
                status = resp.value[0] if resp.value else None
                if status is not None:
                    if status.err is not None:
                        logger.warning(f"Transaction {short_address(signature)} failed on-chain: {status.err}")
                        return ConfirmationOutcome.FAILED
                    if status.confirmation_status in (
                        TransactionConfirmationStatus.Confirmed,
                        TransactionConfirmationStatus.Finalized
                    ):
                        return ConfirmationOutcome.CONFIRMED
            except Exception as e:
                logger.debug(f"Signature status poll failed for {short_address(signature)}: {e}")

            await asyncio.sleep(poll_interval)

        logger.warning(f"Transaction {short_address(signature)} not confirmed within {timeout:.0f}s")
        return ConfirmationOutcome.TIMED_OUT

    async def _token_account_exists(self, address: Pubkey) -> Optional[bool]:
        try:
            result = await self.client.get_account_info(address, commitment=Confirmed)
            return result.value is not None
        except Exception as e:
            logger.error(f"Error checking token account {short_address(str(address))}: {e}")
            return None

    async def _create_token_account(self, mint: Pubkey, confirmation_timeout: float) -> bool:
        owner = self.wallet.pubkey()
        blockhash = await self.get_recent_blockhash()
        if blockhash is None:
            return False

        ix = create_associated_token_account_instruction(owner, owner, mint)
        tx = Transaction.new_signed_with_payer([ix], owner, [self.wallet], blockhash)
        signature = await self.send_raw_transaction(bytes(tx))
        if signature is None:
            return False

        outcome = await self.wait_for_confirmation(signature, timeout=confirmation_timeout)
        if outcome is not ConfirmationOutcome.CONFIRMED:
            logger.error(f"Token account creation for mint {short_address(str(mint))} {outcome.value}")
            return False

        logger.info(
            f"Created token account {colors['CYAN']}{short_address(str(get_associated_token_address(owner, mint)))}"
            f"{colors['RESET']} for mint {short_address(str(mint))}"
        )
        return True

    async def ensure_token_accounts(self, mints: List[str], confirmation_timeout: float = 30.0) -> bool:
        """
        Make sure the wallet holds an associated token account for every mint.

        Existence checks run concurrently; each missing account is created
        and confirmed before returning.

        Returns:
            True if every account exists afterwards
        """
        if self.wallet is None:
            raise ValueError("Wallet is required to manage token accounts")

        unique_mints = [Pubkey.from_string(m) for m in dict.fromkeys(mints)]
        owner = self.wallet.pubkey()
        addresses = [get_associated_token_address(owner, mint) for mint in unique_mints]

        exists = await asyncio.gather(*(self._token_account_exists(addr) for addr in addresses))
        if any(flag is None for flag in exists):
            return False

        for mint, present in zip(unique_mints, exists):
            if present:
                continue
            logger.info(f"Token account for mint {short_address(str(mint))} is missing, creating it")
            if not await self._create_token_account(mint, confirmation_timeout):
                return False

        return True

    async def close(self):
        """Close RPC client."""
        await self.client.close()
