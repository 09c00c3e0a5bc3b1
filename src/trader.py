"""
Execution of verified opportunities: direct broadcast or Jito bundle.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from solders.address_lookup_table_account import AddressLookupTableAccount

from .config import BotConfig
from .jito_client import JitoClient
from .jupiter_client import JupiterClient, JupiterSwapInstructionsResponse
from .opportunity_verifier import VerifiedOpportunity
from .solana_client import SolanaClient, ConfirmationOutcome
from .trade_journal import TradeJournal, TradeRecord
from .transaction_builder import (
    TransactionAssembler,
    CompactedEncoder,
    LegacyEncoder,
    Encoder
)
from .utils import get_terminal_colors

colors = get_terminal_colors()

logger = logging.getLogger(__name__)

METHOD_JITO_BUNDLE = "jito_bundle"
METHOD_VERSIONED_WITH_ALT = "versioned_transaction_with_alt"
METHOD_STANDARD = "standard_transaction"


class TradeState(Enum):
    QUOTING = "quoting"
    ASSEMBLING = "assembling"
    ABORTED = "aborted"
    SIGNING = "signing"
    SUBMITTING = "submitting"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class TradeResult:
    """Outcome of one execution attempt."""
    success: bool
    state: TradeState
    error: Optional[str] = None
    signature: Optional[str] = None
    bundle_id: Optional[str] = None
    execution_method: Optional[str] = None
    transaction_type: Optional[str] = None
    net_negative: bool = False


class _Abort(Exception):
    """Ends an attempt early with a terminal state."""

    def __init__(self, state: TradeState, message: str):
        super().__init__(message)
        self.state = state


class ExecutionDispatcher:
    """
    Executes a VerifiedOpportunity.

    Picks the bundle path when Jito is enabled, otherwise broadcasts
    directly, preferring the compacted (v0 + lookup tables) encoding and
    falling back to legacy on any failure before submission.
    """

    def __init__(
        self,
        config: BotConfig,
        jupiter_client: JupiterClient,
        solana_client: SolanaClient,
        assembler: TransactionAssembler,
        journal: TradeJournal,
        lookup_tables: Optional[List[AddressLookupTableAccount]] = None,
        jito_client: Optional[JitoClient] = None
    ):
        self.config = config
        self.jupiter = jupiter_client
        self.solana = solana_client
        self.assembler = assembler
        self.journal = journal
        self.lookup_tables = list(lookup_tables or [])
        self.jito = jito_client
        self.trade_in_progress = False

        if config.use_jito and jito_client is None:
            raise ValueError("Jito client is required when use_jito is enabled")

    @property
    def transaction_type(self) -> str:
        return "jito_bundle_arbitrage" if self.config.use_jito else "standard_arbitrage"

    async def execute(self, verified: VerifiedOpportunity) -> TradeResult:
        """
        Run one attempt through the state machine and journal it.

        Never raises: unexpected errors become a FAILED result.
        """
        if self.trade_in_progress:
            return TradeResult(
                success=False,
                state=TradeState.ABORTED,
                error="Another trade is already in progress",
                transaction_type=self.transaction_type,
                net_negative=verified.net_negative
            )

        logger.info(
            f"{colors['CYAN']}Executing:{colors['RESET']} {colors['YELLOW']}{verified.route}{colors['RESET']} "
            f"via {colors['CYAN']}{'Jito bundle' if self.config.use_jito else 'direct broadcast'}{colors['RESET']}"
        )

        self.trade_in_progress = True
        self._state = TradeState.QUOTING
        self._method: Optional[str] = None
        try:
            result = await self._execute(verified)
        except _Abort as e:
            logger.warning(f"Trade {e.state.value}: {e}")
            result = TradeResult(success=False, state=e.state, error=str(e), execution_method=self._method)
        except Exception as e:
            logger.error(f"Error executing {verified.route}: {e}")
            result = TradeResult(success=False, state=TradeState.FAILED, error=str(e), execution_method=self._method)
        finally:
            self.trade_in_progress = False

        result.transaction_type = self.transaction_type
        result.net_negative = verified.net_negative
        self._record(verified, result)

        if result.success:
            logger.info(
                f"{colors['GREEN']}Trade {result.state.value}{colors['RESET']} "
                f"({result.execution_method}): {result.signature or result.bundle_id}"
            )
        else:
            logger.error(f"{colors['RED']}Trade {result.state.value}:{colors['RESET']} {result.error}")
        return result

    def _enter(self, state: TradeState):
        logger.debug(f"Trade state: {self._state.value} -> {state.value}")
        self._state = state

    async def _execute(self, verified: VerifiedOpportunity) -> TradeResult:
        if len(verified.edges) != 2:
            raise _Abort(TradeState.ABORTED, f"Execution requires exactly 2 verified edges, got {len(verified.edges)}")
        if self.solana.wallet is None:
            raise _Abort(TradeState.ABORTED, "No wallet available for signing")
        if self.config.use_jito and not self.lookup_tables:
            raise _Abort(TradeState.ABORTED, "Bundle mode requires loaded address lookup tables")

        mints: List[str] = []
        for verified_edge in verified.edges:
            mints.extend([verified_edge.edge.from_token.mint, verified_edge.edge.to_token.mint])
        if not await self.solana.ensure_token_accounts(mints, self.config.confirmation_timeout):
            raise _Abort(TradeState.FAILED, "Required token accounts could not be ensured")

        swaps = await self._quote_legs(verified)

        self._enter(TradeState.ASSEMBLING)
        payer = self.solana.wallet.pubkey()
        instructions = self.assembler.build_instructions(payer, verified.flash_loan_amount, swaps)

        if self.config.use_jito:
            return await self._execute_bundle(verified, instructions)
        return await self._execute_direct(instructions)

    async def _quote_legs(self, verified: VerifiedOpportunity) -> List[JupiterSwapInstructionsResponse]:
        """Re-quote both legs with direct routes, chaining leg 2 from leg 1's output."""
        self._enter(TradeState.QUOTING)
        user_pubkey = str(self.solana.wallet.pubkey())
        amount = verified.flash_loan_amount
        swaps = []
        for i, verified_edge in enumerate(verified.edges, start=1):
            edge = verified_edge.edge
            quote = await self.jupiter.get_quote(
                edge.from_token.mint, edge.to_token.mint, amount, only_direct_routes=True
            )
            if quote is None:
                raise _Abort(TradeState.FAILED, f"No direct-route quote for leg {i} ({edge.label})")

            instructions = await self.jupiter.get_swap_instructions(quote, user_pubkey)
            if instructions is None:
                raise _Abort(TradeState.FAILED, f"Failed to get swap instructions for leg {i}")

            logger.debug(f"Leg {i} {edge.label}: in={amount} out={quote.out_amount}")
            swaps.append(instructions)
            amount = quote.out_amount
        return swaps

    async def _execute_bundle(self, verified: VerifiedOpportunity, instructions) -> TradeResult:
        self._method = METHOD_JITO_BUNDLE
        blockhash = await self.solana.get_recent_blockhash()
        if blockhash is None:
            raise _Abort(TradeState.FAILED, "Failed to get recent blockhash")

        payer = self.solana.wallet.pubkey()
        assembled = self.assembler.assemble(CompactedEncoder(self.lookup_tables), payer, instructions, blockhash)
        if assembled is None:
            raise _Abort(TradeState.ABORTED, "Bundle transaction could not be assembled within the size limit")

        self._enter(TradeState.SIGNING)
        tx = self.assembler.sign(assembled, self.solana.wallet)

        self._enter(TradeState.SUBMITTING)
        bundle = await self.jito.send_trade_bundle(tx, self.solana.wallet, verified.estimated_tip, blockhash)
        if not bundle.success:
            raise _Abort(TradeState.FAILED, f"Bundle submission failed: {bundle.error}")

        # Accepted bundles are terminal; there is no on-chain confirmation step
        return TradeResult(
            success=True,
            state=TradeState.CONFIRMED,
            bundle_id=bundle.bundle_id,
            signature=str(tx.signatures[0]),
            execution_method=METHOD_JITO_BUNDLE
        )

    async def _execute_direct(self, instructions) -> TradeResult:
        encoders: List[Encoder] = []
        if self.lookup_tables:
            encoders.append(CompactedEncoder(self.lookup_tables))
        encoders.append(LegacyEncoder())

        payer = self.solana.wallet.pubkey()
        last_error = "No encoder produced a transaction"
        last_state = TradeState.ABORTED
        for encoder in encoders:
            self._method = METHOD_VERSIONED_WITH_ALT if isinstance(encoder, CompactedEncoder) else METHOD_STANDARD
            self._enter(TradeState.ASSEMBLING)

            blockhash = await self.solana.get_recent_blockhash()
            if blockhash is None:
                last_error, last_state = "Failed to get recent blockhash", TradeState.FAILED
                continue

            assembled = self.assembler.assemble(encoder, payer, instructions, blockhash)
            if assembled is None:
                last_error, last_state = f"{encoder.name} transaction could not be assembled", TradeState.ABORTED
                continue

            self._enter(TradeState.SIGNING)
            try:
                tx = self.assembler.sign(assembled, self.solana.wallet)
            except Exception as e:
                logger.warning(f"Signing {encoder.name} transaction failed: {e}")
                last_error, last_state = f"Signing failed: {e}", TradeState.FAILED
                continue

            self._enter(TradeState.SUBMITTING)
            signature = await self.solana.send_raw_transaction(bytes(tx))
            if signature is None:
                last_error, last_state = f"{encoder.name} transaction submission failed", TradeState.FAILED
                continue

            # Submitted: no fallback or resend from here on
            self._enter(TradeState.AWAITING_CONFIRMATION)
            logger.info(f"Transaction sent: {colors['CYAN']}{signature}{colors['RESET']}")
            outcome = await self.solana.wait_for_confirmation(signature, timeout=self.config.confirmation_timeout)
            if outcome is ConfirmationOutcome.CONFIRMED:
                return TradeResult(
                    success=True, state=TradeState.CONFIRMED,
                    signature=signature, execution_method=self._method
                )
            if outcome is ConfirmationOutcome.FAILED:
                return TradeResult(
                    success=False, state=TradeState.FAILED, error="Transaction failed on-chain",
                    signature=signature, execution_method=self._method
                )
            return TradeResult(
                success=False, state=TradeState.TIMED_OUT,
                error=f"Not confirmed within {self.config.confirmation_timeout:.0f}s",
                signature=signature, execution_method=self._method
            )

        raise _Abort(last_state, last_error)

    def _record(self, verified: VerifiedOpportunity, result: TradeResult):
        record = TradeRecord(
            transaction_type=result.transaction_type,
            execution_method=result.execution_method or (
                METHOD_JITO_BUNDLE if self.config.use_jito else METHOD_STANDARD
            ),
            successful=result.success,
            signature=result.signature,
            bundle_id=result.bundle_id,
            flash_loan_amount=verified.flash_loan_amount,
            expected_gross_profit=verified.gross_profit,
            flash_loan_fee=verified.flash_loan_fee,
            jito_tip=verified.estimated_tip,
            net_profit=verified.net_profit,
            profit_percentage=f"{verified.profit_percentage:.4f}",
            net_negative=verified.net_negative,
            error=result.error
        )
        self.journal.record(record)
