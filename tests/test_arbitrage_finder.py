"""
Tests for arbitrage_finder.py
"""
import random
import pytest
from unittest.mock import AsyncMock

from src.arbitrage_finder import compute_rate, RateGraphBuilder, OpportunityScanner


class TestComputeRate:

    def test_normalizes_decimals(self):
        # 1 SOL -> 150 USDC
        assert compute_rate(1_000_000_000, 150_000_000, 9, 6) == pytest.approx(150.0)

    def test_rejects_zero_input(self):
        with pytest.raises(ValueError):
            compute_rate(0, 1, 9, 6)


class TestRateGraphBuilder:
    """Tests for RateGraphBuilder."""

    @pytest.mark.asyncio
    async def test_builds_both_directions(self, tokens, make_quote, sol_mint, usdc_mint, bonk_mint):
        quotes = {
            (sol_mint, usdc_mint): make_quote(sol_mint, usdc_mint, 1_000_000_000, 150_000_000),
            (usdc_mint, sol_mint): make_quote(usdc_mint, sol_mint, 1_000_000_000, 6_600_000_000_000),
            (sol_mint, bonk_mint): make_quote(sol_mint, bonk_mint, 1_000_000_000, 700_000_000_000),
            (bonk_mint, sol_mint): make_quote(bonk_mint, sol_mint, 1_000_000_000, 140_000),
        }
        jupiter = AsyncMock()
        jupiter.get_quote.side_effect = lambda i, o, amount: quotes[(i, o)]

        edges = await RateGraphBuilder(jupiter, tokens, 1_000_000_000).build()

        assert [(e.from_index, e.to_index) for e in edges] == [(0, 1), (1, 0), (0, 2), (2, 0)]
        assert edges[0].rate == pytest.approx(150.0)
        assert edges[0].venue_names == ("Raydium",)
        assert all(call.args[2] == 1_000_000_000 for call in jupiter.get_quote.call_args_list)

    @pytest.mark.asyncio
    async def test_failed_quote_omits_edge(self, tokens, make_quote, sol_mint, usdc_mint):
        def fake_quote(i, o, amount):
            if (i, o) == (sol_mint, usdc_mint):
                return make_quote(i, o, amount, 150_000_000)
            if (i, o) == (usdc_mint, sol_mint):
                raise RuntimeError("boom")
            return None

        jupiter = AsyncMock()
        jupiter.get_quote.side_effect = fake_quote

        edges = await RateGraphBuilder(jupiter, tokens, 1_000_000_000).build()

        assert len(edges) == 1
        assert (edges[0].from_index, edges[0].to_index) == (0, 1)


class TestOpportunityScanner:
    """Tests for OpportunityScanner."""

    def test_round_trip_math(self, make_edge):
        edges = [make_edge(0, 1, 100.0), make_edge(1, 0, 0.0105)]

        opportunities = OpportunityScanner(min_profit_percentage=0.1).scan(edges)

        assert len(opportunities) == 1
        opp = opportunities[0]
        assert opp.cycle == [0, 1, 0]
        assert opp.round_trip_rate == pytest.approx(1.05)
        assert opp.profit_percentage == pytest.approx(5.0)
        assert opp.route == "SOL -> USDC -> SOL"

    def test_returns_none_when_nothing_qualifies(self, make_edge):
        edges = [make_edge(0, 1, 100.0), make_edge(1, 0, 0.01)]
        assert OpportunityScanner(min_profit_percentage=0.1).scan(edges) is None

    def test_requires_both_directions(self, make_edge):
        edges = [make_edge(0, 1, 100.0), make_edge(2, 0, 1.0)]
        assert OpportunityScanner(min_profit_percentage=0.0).scan(edges) is None

    def test_sorted_by_profit_descending(self, make_edge):
        edges = [
            make_edge(0, 1, 100.0), make_edge(1, 0, 0.0101),
            make_edge(0, 2, 1.0), make_edge(2, 0, 1.03),
        ]

        opportunities = OpportunityScanner(min_profit_percentage=0.5).scan(edges)

        assert [opp.cycle[1] for opp in opportunities] == [2, 1]

    def test_never_returns_below_threshold(self, make_edge):
        rng = random.Random(7)
        for _ in range(200):
            threshold = rng.uniform(0, 2)
            edges = [
                make_edge(0, 1, rng.uniform(0.9, 1.1)), make_edge(1, 0, rng.uniform(0.9, 1.1)),
                make_edge(0, 2, rng.uniform(0.9, 1.1)), make_edge(2, 0, rng.uniform(0.9, 1.1)),
            ]
            opportunities = OpportunityScanner(threshold).scan(edges) or []
            assert all(opp.profit_percentage >= threshold for opp in opportunities)
