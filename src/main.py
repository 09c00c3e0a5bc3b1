"""
Main entry point for the Solana flash-loan arbitrage bot.
"""
import asyncio
import logging
import os
import sys
import time
from dataclasses import dataclass, field
from typing import List, Optional

import base58
from solders.keypair import Keypair

from .arbitrage_finder import RateGraphBuilder, OpportunityScanner
from .config import BotConfig, load_config
from .jito_client import JitoClient
from .jupiter_client import JupiterClient, RateLimiter
from .opportunity_verifier import OpportunityVerifier, VerifiedOpportunity
from .solana_client import SolanaClient
from .trade_journal import TradeJournal
from .trader import ExecutionDispatcher
from .transaction_builder import TransactionAssembler
from .utils import get_terminal_colors, format_sol

logger = logging.getLogger(__name__)
colors = get_terminal_colors()

STATS_REPORT_EVERY = 5


def setup_logging(level: int = logging.INFO):
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler('arbitrage_bot.log')
        ]
    )


def load_wallet(private_key_str: Optional[str] = None) -> Optional[Keypair]:
    """Load wallet from a base58 private key (defaults to WALLET_PRIVATE_KEY)."""
    if not private_key_str:
        private_key_str = os.getenv('WALLET_PRIVATE_KEY')

    if not private_key_str:
        logger.warning("No wallet private key provided")
        return None

    try:
        key_bytes = base58.b58decode(private_key_str)
        return Keypair.from_bytes(key_bytes)
    except Exception as e:
        logger.error(f"Error loading wallet: {e}")
        return None


@dataclass
class RunStats:
    """Counters for the check loop."""
    checks: int = 0
    successful_trades: int = 0
    failed_trades: int = 0
    errors: int = 0
    opportunities_found: int = 0
    net_negative_executions: int = 0
    total_check_seconds: float = 0.0
    started_at: float = field(default_factory=time.time)

    def success_rate(self) -> float:
        attempts = self.successful_trades + self.failed_trades
        return self.successful_trades / attempts * 100 if attempts else 0.0

    def average_check_seconds(self) -> float:
        return self.total_check_seconds / self.checks if self.checks else 0.0


class Orchestrator:
    """Runs detection, verification and (in live mode) execution in a loop."""

    def __init__(
        self,
        config: BotConfig,
        graph_builder: RateGraphBuilder,
        scanner: OpportunityScanner,
        verifier: OpportunityVerifier,
        dispatcher: Optional[ExecutionDispatcher] = None,
        mode: str = 'scan',
        closeables: Optional[List] = None
    ):
        if mode not in ('scan', 'live'):
            raise ValueError(f"Unknown mode: {mode}. Use: scan or live")
        if mode == 'live' and dispatcher is None:
            raise ValueError("Live mode requires an execution dispatcher")
        self.config = config
        self.graph_builder = graph_builder
        self.scanner = scanner
        self.verifier = verifier
        self.dispatcher = dispatcher
        self.mode = mode
        self.stats = RunStats()
        self._closeables = closeables or []

    async def check_once(self) -> Optional[VerifiedOpportunity]:
        """
        One detection/verification pass; executes the best candidate in live mode.

        Detection is the rate-graph scan, or the fixed base -> pair -> base
        check when graph scanning is off.

        Returns:
            The verified opportunity that was selected, or None
        """
        if self.config.use_graph_scan:
            verified = await self._scan_graph()
        else:
            verified = await self.verifier.verify_pair(self.config.tokens, self.config.pair_token_index)
            self.stats.opportunities_found += len(verified)
        if not verified:
            logger.info(f"{colors['DIM']}No opportunity survived verification{colors['RESET']}")
            return None

        best = verified[0]
        if self.mode != 'live':
            logger.info(
                f"[scan] Best: {colors['CYAN']}{best.route}{colors['RESET']} "
                f"gross={format_sol(best.gross_profit)} net={format_sol(best.net_profit)} "
                f"({colors['YELLOW']}{best.profit_percentage:.4f}%{colors['RESET']})"
            )
            return best

        result = await self.dispatcher.execute(best)
        if result.success:
            self.stats.successful_trades += 1
            if result.net_negative:
                self.stats.net_negative_executions += 1
        else:
            self.stats.failed_trades += 1
        return best

    async def _scan_graph(self) -> List[VerifiedOpportunity]:
        edges = await self.graph_builder.build()
        opportunities = self.scanner.scan(edges)
        if not opportunities:
            logger.info(f"{colors['DIM']}No opportunities above {self.config.min_profit_percentage}%{colors['RESET']}")
            return []

        self.stats.opportunities_found += len(opportunities)
        return await self.verifier.verify(opportunities)

    def log_stats(self):
        stats = self.stats
        logger.info(
            f"Stats after {colors['GREEN']}{stats.checks}{colors['RESET']} checks: "
            f"successful={colors['GREEN']}{stats.successful_trades}{colors['RESET']} "
            f"failed={colors['RED']}{stats.failed_trades}{colors['RESET']} "
            f"success_rate={stats.success_rate():.1f}% "
            f"avg_check={stats.average_check_seconds():.2f}s "
            f"opportunities={stats.opportunities_found} errors={stats.errors} "
            f"net_negative={stats.net_negative_executions}"
        )

    async def run(self, max_checks: Optional[int] = None):
        """Check loop. Sleeps check_interval between checks, twice that after an error."""
        interval = self.config.check_interval
        while max_checks is None or self.stats.checks < max_checks:
            started = time.monotonic()
            delay = interval
            try:
                await self.check_once()
            except Exception as e:
                self.stats.errors += 1
                logger.error(f"Error in check loop: {e}")
                delay = interval * 2

            self.stats.checks += 1
            self.stats.total_check_seconds += time.monotonic() - started
            if self.stats.checks % STATS_REPORT_EVERY == 0:
                self.log_stats()

            if max_checks is not None and self.stats.checks >= max_checks:
                break
            await asyncio.sleep(delay)

    async def close(self):
        for client in self._closeables:
            await client.close()


def log_startup_summary(config: BotConfig, mode: str, wallet: Optional[Keypair], lookup_tables_loaded: int):
    logger.info("=" * 60)
    logger.info(f"Mode: {colors['CYAN']}{mode.upper()}{colors['RESET']}")
    logger.info(f"Flash loan: {colors['GREEN']}{format_sol(config.flash_loan_amount)}{colors['RESET']}")
    if config.use_graph_scan:
        logger.info(f"Detection: {colors['CYAN']}rate graph{colors['RESET']}")
    else:
        pair = config.tokens[config.pair_token_index].symbol
        buffer = f"{(1 - config.safety_buffer_percentage) * 100:.4f}%" if config.use_safety_buffer else "off"
        logger.info(
            f"Detection: {colors['CYAN']}fixed pair {config.base_token.symbol} -> {pair} -> "
            f"{config.base_token.symbol}{colors['RESET']} (safety buffer: {buffer})"
        )
    logger.info(f"Min profit: {colors['YELLOW']}{config.min_profit_percentage}%{colors['RESET']}")
    logger.info(
        f"Execution: {colors['CYAN']}{'Jito bundle' if config.use_jito else 'direct broadcast'}{colors['RESET']} "
        f"(lookup tables loaded: {lookup_tables_loaded}/{len(config.lookup_table_addresses)})"
    )
    logger.info(f"Tokens: {colors['CYAN']}{', '.join(t.symbol for t in config.tokens)}{colors['RESET']}")
    if wallet:
        logger.info(f"Wallet: {wallet.pubkey()}")
    logger.info("=" * 60)


async def bootstrap(config: BotConfig, mode: str, wallet: Optional[Keypair]) -> Orchestrator:
    """
    Build all components. Exits the process on fatal conditions:
    unreachable RPC, no wallet in live mode, or a wallet balance below
    min_wallet_balance_lamports.
    """
    solana = SolanaClient(config.rpc_url, wallet)
    if not await solana.is_healthy():
        logger.error(f"RPC endpoint {config.rpc_url} is unreachable")
        sys.exit(1)

    if mode == 'live' and wallet is None:
        logger.error("Wallet required for live trading (set WALLET_PRIVATE_KEY)")
        sys.exit(1)

    if wallet is not None:
        balance = await solana.get_balance()
        logger.info(f"Wallet balance: {colors['GREEN']}{format_sol(balance)}{colors['RESET']}")
        if balance < config.min_wallet_balance_lamports:
            logger.error(
                f"Wallet balance {format_sol(balance)} is below the minimum "
                f"{format_sol(config.min_wallet_balance_lamports)}"
            )
            sys.exit(1)

    lookup_tables = await solana.get_address_lookup_table_accounts(config.lookup_table_addresses)
    if config.use_jito and not lookup_tables:
        logger.warning("No lookup tables loaded: bundle attempts will be aborted")

    rate_limiter = RateLimiter(
        min_interval=config.min_request_interval,
        max_requests=config.max_requests_per_window,
        window_seconds=config.request_window_seconds
    )
    jupiter = JupiterClient(
        api_url=config.jupiter_api_url,
        rate_limiter=rate_limiter,
        slippage_bps=config.slippage_bps,
        max_retries_on_429=config.max_retries,
        backoff_base_seconds=config.retry_delay_base
    )
    closeables = [jupiter, solana]

    graph_builder = RateGraphBuilder(jupiter, config.tokens, config.probe_amount)
    scanner = OpportunityScanner(config.min_profit_percentage)
    verifier = OpportunityVerifier(
        jupiter,
        flash_loan_amount=config.flash_loan_amount,
        min_profit_percentage=config.min_profit_percentage,
        flash_loan_fee_rate=config.flash_loan_fee_rate,
        use_jito=config.use_jito,
        jito_min_tip=config.jito_min_tip,
        jito_tip_percentage=config.jito_tip_percentage,
        top_k=config.top_k,
        use_safety_buffer=config.use_safety_buffer,
        safety_buffer_percentage=config.safety_buffer_percentage
    )

    dispatcher = None
    if mode == 'live':
        jito = None
        if config.use_jito:
            jito = JitoClient(
                config.jito_block_engine_url,
                config.jito_tip_account,
                timeout=config.jito_bundle_timeout,
                max_retries=config.jito_max_retries,
                retry_delay_base=config.retry_delay_base
            )
            closeables.append(jito)
        assembler = TransactionAssembler(
            config.kamino,
            compute_unit_price_micro_lamports=config.compute_unit_price_micro_lamports,
            compute_unit_limit=config.compute_unit_limit,
            max_transaction_size=config.max_transaction_size
        )
        dispatcher = ExecutionDispatcher(
            config, jupiter, solana, assembler, TradeJournal(config.trades_dir),
            lookup_tables=lookup_tables, jito_client=jito
        )

    log_startup_summary(config, mode, wallet, len(lookup_tables))
    return Orchestrator(config, graph_builder, scanner, verifier, dispatcher, mode, closeables)


async def main(mode: Optional[str] = None):
    """Main function."""
    setup_logging()
    logger.info("Starting Solana flash-loan arbitrage bot")

    try:
        config = load_config()
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    mode = (mode or os.getenv('MODE', 'scan')).lower()
    if mode not in ('scan', 'live'):
        logger.error(f"Unknown mode: {mode}. Use: scan or live")
        sys.exit(1)

    if mode == 'live':
        logger.warning("=" * 60)
        logger.warning("LIVE MODE ENABLED - REAL TRANSACTIONS WILL BE SENT!")
        logger.warning("=" * 60)

    wallet = load_wallet()
    orchestrator = await bootstrap(config, mode, wallet)
    try:
        await orchestrator.run()
    finally:
        await orchestrator.close()
        logger.info("Bot stopped")


if __name__ == '__main__':
    asyncio.run(main())
