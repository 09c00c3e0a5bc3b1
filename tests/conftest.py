"""
Pytest configuration and fixtures for the flash-loan arbitrage bot tests.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock
from solders.keypair import Keypair

from src.config import BotConfig, Token, SOL_MINT, USDC_MINT, BONK_MINT
from src.arbitrage_finder import Edge
from src.jupiter_client import (
    JupiterQuote,
    JupiterSwapInstructionsResponse,
    SwapInstruction,
    SwapAccountMeta
)


@pytest.fixture
def sol_mint():
    """SOL mint address."""
    return SOL_MINT


@pytest.fixture
def usdc_mint():
    """USDC mint address."""
    return USDC_MINT


@pytest.fixture
def bonk_mint():
    """BONK mint address."""
    return BONK_MINT


@pytest.fixture
def tokens():
    """SOL (base), USDC, BONK."""
    return [
        Token(mint=SOL_MINT, symbol="SOL", decimals=9),
        Token(mint=USDC_MINT, symbol="USDC", decimals=6),
        Token(mint=BONK_MINT, symbol="BONK", decimals=5),
    ]


@pytest.fixture
def bot_config(tokens, tmp_path):
    """BotConfig with fast timings and a temporary trades directory."""
    return BotConfig(
        tokens=tokens,
        min_request_interval=0.0,
        retry_delay_base=0.0,
        confirmation_timeout=0.05,
        check_interval=0.01,
        trades_dir=str(tmp_path / "trades")
    )


@pytest.fixture
def mock_keypair():
    """Create a keypair for testing."""
    return Keypair()


@pytest.fixture
def mock_jupiter_client():
    """Create a mock JupiterClient for testing."""
    client = AsyncMock()
    return client


@pytest.fixture
def mock_solana_client(mock_keypair):
    """Create a mock SolanaClient with a wallet."""
    client = AsyncMock()
    client.wallet = mock_keypair
    return client


@pytest.fixture
def make_quote():
    """Factory for JupiterQuote objects."""
    def _make(input_mint, output_mint, in_amount, out_amount, labels=("Raydium",)):
        route_plan = [{"swapInfo": {"label": label}} for label in labels]
        return JupiterQuote(
            input_mint=input_mint,
            output_mint=output_mint,
            in_amount=in_amount,
            out_amount=out_amount,
            price_impact_pct=0.0,
            route_plan=route_plan,
            raw={"inAmount": str(in_amount), "outAmount": str(out_amount), "routePlan": route_plan}
        )
    return _make


@pytest.fixture
def make_edge(tokens):
    """Factory for Edge objects between indices of the `tokens` fixture."""
    def _make(from_index, to_index, rate, in_amount=1_000_000_000, out_amount=1_000_000_000):
        return Edge(
            from_index=from_index,
            to_index=to_index,
            from_token=tokens[from_index],
            to_token=tokens[to_index],
            rate=rate,
            in_amount=in_amount,
            out_amount=out_amount
        )
    return _make


@pytest.fixture
def make_swap_response():
    """Factory for swap-instructions responses with a single-account swap instruction."""
    def _make(program_id="JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4", data="AQID", setup=0):
        swap = SwapInstruction(
            program_id=program_id,
            accounts=[SwapAccountMeta(
                pubkey="EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
                is_signer=False,
                is_writable=False
            )],
            data=data
        )
        setup_instructions = [
            SwapInstruction(program_id="ComputeBudget111111111111111111111111111111", accounts=[], data="AA==")
            for _ in range(setup)
        ]
        return JupiterSwapInstructionsResponse(
            setup_instructions=setup_instructions,
            swap_instruction=swap,
            cleanup_instruction=None,
            address_lookup_tables=[]
        )
    return _make


@pytest.fixture
def mock_http_response():
    """Factory for a successful httpx response mock."""
    def _make(payload):
        response = MagicMock()
        response.json.return_value = payload
        response.raise_for_status = MagicMock()
        return response
    return _make
