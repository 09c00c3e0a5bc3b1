"""
Tests for jupiter_client.py
"""
import time
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
import httpx
from src.jupiter_client import (
    JupiterClient,
    JupiterQuote,
    RateLimiter,
    extract_venue_names
)


def _http_error(status_code: int, text: str = "") -> httpx.HTTPStatusError:
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    return httpx.HTTPStatusError(f"{status_code}", request=MagicMock(), response=response)


class TestRateLimiter:
    """Tests for RateLimiter."""

    @pytest.mark.asyncio
    async def test_pauses_when_window_is_full(self):
        """The (cap+1)-th call waits for the oldest call to leave the window."""
        limiter = RateLimiter(min_interval=0.0, max_requests=2, window_seconds=0.3)

        start = time.monotonic()
        await limiter.acquire()
        await limiter.acquire()
        fast = time.monotonic() - start
        await limiter.acquire()
        total = time.monotonic() - start

        assert fast < 0.1
        assert total >= 0.25

    @pytest.mark.asyncio
    async def test_enforces_min_interval(self):
        limiter = RateLimiter(min_interval=0.1, max_requests=100, window_seconds=60)

        start = time.monotonic()
        await limiter.acquire()
        await limiter.acquire()

        assert time.monotonic() - start >= 0.09

    @pytest.mark.asyncio
    async def test_counts_requests_in_window(self):
        limiter = RateLimiter(min_interval=0.0, max_requests=10, window_seconds=60)
        for _ in range(3):
            await limiter.acquire()
        assert limiter.requests_in_window == 3


class TestExtractVenueNames:
    """Tests for the tolerant route-plan decoder."""

    def test_swap_info_labels(self):
        plan = [{"swapInfo": {"label": "Raydium"}}, {"swapInfo": {"label": "Orca"}}]
        assert extract_venue_names(plan) == ["Raydium", "Orca"]

    def test_amm_label(self):
        assert extract_venue_names([{"amm": {"label": "Meteora"}}]) == ["Meteora"]

    def test_market_infos_labels(self):
        plan = [{"marketInfos": [{"label": "Lifinity"}, {"label": "Phoenix"}]}]
        assert extract_venue_names(plan) == ["Lifinity", "Phoenix"]

    def test_unknown_shapes_give_empty_list(self):
        assert extract_venue_names(None) == []
        assert extract_venue_names("Raydium") == []
        assert extract_venue_names([{"swapInfo": {"ammKey": "abc"}}, 42]) == []


class TestJupiterClient:
    """Tests for JupiterClient class."""

    @pytest.fixture
    def client(self):
        limiter = RateLimiter(min_interval=0.0, max_requests=1000, window_seconds=60)
        return JupiterClient(
            api_url="https://quote-api.jup.ag/v6/",
            rate_limiter=limiter,
            slippage_bps=100,
            max_retries_on_429=3,
            backoff_base_seconds=2.0
        )

    @pytest.fixture
    def quote_payload(self, sol_mint, usdc_mint):
        return {
            "inputMint": sol_mint,
            "outputMint": usdc_mint,
            "inAmount": "1000000000",
            "outAmount": "150000000",
            "priceImpactPct": "0.01",
            "routePlan": [{"swapInfo": {"label": "Whirlpool"}}],
            "contextSlot": 123
        }

    def test_strips_trailing_slash(self, client):
        assert client.api_url == "https://quote-api.jup.ag/v6"

    @pytest.mark.asyncio
    async def test_get_quote_success(self, client, sol_mint, usdc_mint, quote_payload, mock_http_response):
        with patch.object(client.client, 'get', return_value=mock_http_response(quote_payload)) as mock_get:
            quote = await client.get_quote(sol_mint, usdc_mint, 1_000_000_000)

        assert quote.in_amount == 1_000_000_000
        assert quote.out_amount == 150_000_000
        assert quote.price_impact_pct == pytest.approx(0.01)
        assert quote.venue_names == ["Whirlpool"]
        assert quote.raw == quote_payload

        url = mock_get.call_args.args[0]
        params = mock_get.call_args.kwargs['params']
        assert url == "https://quote-api.jup.ag/v6/quote"
        assert params["amount"] == "1000000000"
        assert params["slippageBps"] == 100
        assert params["onlyDirectRoutes"] == "false"
        assert params["maxAccounts"] == 30
        assert params["platformFeeBps"] == 0

    @pytest.mark.asyncio
    async def test_get_quote_direct_routes_caps_accounts(self, client, sol_mint, usdc_mint, quote_payload,
                                                         mock_http_response):
        with patch.object(client.client, 'get', return_value=mock_http_response(quote_payload)) as mock_get:
            await client.get_quote(sol_mint, usdc_mint, 1_000_000_000, only_direct_routes=True)

        params = mock_get.call_args.kwargs['params']
        assert params["onlyDirectRoutes"] == "true"
        assert params["maxAccounts"] == 10

    @pytest.mark.asyncio
    async def test_get_quote_retries_on_429(self, client, sol_mint, usdc_mint, quote_payload, mock_http_response):
        side_effect = [_http_error(429), _http_error(429), mock_http_response(quote_payload)]
        with patch.object(client.client, 'get', side_effect=side_effect) as mock_get, \
                patch('src.jupiter_client.asyncio.sleep', new_callable=AsyncMock) as mock_sleep:
            quote = await client.get_quote(sol_mint, usdc_mint, 1_000_000_000)

        assert quote is not None
        assert mock_get.call_count == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_get_quote_gives_up_after_max_retries(self, client, sol_mint, usdc_mint):
        with patch.object(client.client, 'get', side_effect=_http_error(429)) as mock_get, \
                patch('src.jupiter_client.asyncio.sleep', new_callable=AsyncMock):
            quote = await client.get_quote(sol_mint, usdc_mint, 1_000_000_000)

        assert quote is None
        assert mock_get.call_count == 4

    @pytest.mark.asyncio
    async def test_get_quote_other_http_error_is_not_retried(self, client, sol_mint, usdc_mint):
        with patch.object(client.client, 'get', side_effect=_http_error(400, "Bad Request")) as mock_get:
            quote = await client.get_quote(sol_mint, usdc_mint, 1_000_000_000)

        assert quote is None
        assert mock_get.call_count == 1

    @pytest.mark.asyncio
    async def test_get_quote_timeout_returns_none(self, client, sol_mint, usdc_mint):
        with patch.object(client.client, 'get', side_effect=httpx.TimeoutException("timeout")):
            assert await client.get_quote(sol_mint, usdc_mint, 1_000_000_000) is None

    @pytest.mark.asyncio
    async def test_get_quote_malformed_response(self, client, sol_mint, usdc_mint, mock_http_response):
        with patch.object(client.client, 'get', return_value=mock_http_response({"inAmount": "1"})):
            assert await client.get_quote(sol_mint, usdc_mint, 1) is None

    @pytest.mark.asyncio
    async def test_get_quote_consults_rate_limiter(self, client, sol_mint, usdc_mint, quote_payload,
                                                   mock_http_response):
        with patch.object(client.rate_limiter, 'acquire', new_callable=AsyncMock) as mock_acquire, \
                patch.object(client.client, 'get', return_value=mock_http_response(quote_payload)):
            await client.get_quote(sol_mint, usdc_mint, 1_000_000_000)

        mock_acquire.assert_awaited_once()


class TestGetSwapInstructions:
    """Tests for JupiterClient.get_swap_instructions."""

    @pytest.fixture
    def client(self):
        limiter = RateLimiter(min_interval=0.0, max_requests=1000, window_seconds=60)
        return JupiterClient(api_url="https://quote-api.jup.ag/v6", rate_limiter=limiter)

    @pytest.fixture
    def quote(self, sol_mint, usdc_mint):
        return JupiterQuote(
            input_mint=sol_mint,
            output_mint=usdc_mint,
            in_amount=1_000_000_000,
            out_amount=150_000_000,
            price_impact_pct=0.0,
            route_plan=[],
            raw={"inAmount": "1000000000", "outAmount": "150000000"}
        )

    @pytest.fixture
    def instructions_payload(self):
        return {
            "setupInstructions": [
                {
                    "programId": "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL",
                    "accounts": [{"pubkey": "11111111111111111111111111111111", "isSigner": False, "isWritable": False}],
                    "data": "AQ=="
                }
            ],
            "swapInstruction": {
                "programId": "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4",
                "accounts": [
                    {"pubkey": "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v", "isSigner": False, "isWritable": True}
                ],
                "data": "AQID"
            },
            "cleanupInstruction": None,
            "addressLookupTableAddresses": ["8HvgxVyd22Jq9mmoojm4Awqw6sbymbF5pwLr8FtvySHs"]
        }

    @pytest.mark.asyncio
    async def test_request_body(self, client, quote, instructions_payload, mock_http_response):
        with patch.object(client.client, 'post', return_value=mock_http_response(instructions_payload)) as mock_post:
            await client.get_swap_instructions(quote, "wallet-pubkey")

        assert mock_post.call_args.args[0] == "https://quote-api.jup.ag/v6/swap-instructions"
        body = mock_post.call_args.kwargs['json']
        assert body["userPublicKey"] == "wallet-pubkey"
        assert body["wrapAndUnwrapSol"] is False
        assert body["useSharedAccounts"] is True
        assert body["computeUnitPriceMicroLamports"] == 0
        assert body["quoteResponse"] is quote.raw

    @pytest.mark.asyncio
    async def test_parses_instructions(self, client, quote, instructions_payload, mock_http_response):
        with patch.object(client.client, 'post', return_value=mock_http_response(instructions_payload)):
            response = await client.get_swap_instructions(quote, "wallet-pubkey")

        assert len(response.setup_instructions) == 1
        assert response.swap_instruction.program_id == "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4"
        assert response.swap_instruction.accounts[0].is_writable is True
        assert response.swap_instruction.data == "AQID"
        assert response.cleanup_instruction is None
        assert response.address_lookup_tables == ["8HvgxVyd22Jq9mmoojm4Awqw6sbymbF5pwLr8FtvySHs"]

    @pytest.mark.asyncio
    async def test_missing_swap_instruction(self, client, quote, mock_http_response):
        with patch.object(client.client, 'post', return_value=mock_http_response({"setupInstructions": []})):
            assert await client.get_swap_instructions(quote, "wallet-pubkey") is None

    @pytest.mark.asyncio
    async def test_accounts_without_metadata_are_rejected(self, client, quote, instructions_payload,
                                                          mock_http_response):
        instructions_payload["swapInstruction"]["accounts"] = ["EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"]
        with patch.object(client.client, 'post', return_value=mock_http_response(instructions_payload)):
            assert await client.get_swap_instructions(quote, "wallet-pubkey") is None

    @pytest.mark.asyncio
    async def test_retries_on_429(self, client, quote, instructions_payload, mock_http_response):
        side_effect = [_http_error(429), mock_http_response(instructions_payload)]
        with patch.object(client.client, 'post', side_effect=side_effect) as mock_post, \
                patch('src.jupiter_client.asyncio.sleep', new_callable=AsyncMock):
            response = await client.get_swap_instructions(quote, "wallet-pubkey")

        assert response is not None
        assert mock_post.call_count == 2
