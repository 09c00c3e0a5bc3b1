"""
Arbitrage opportunity detection.
Builds a base<->token rate graph at the probe notional and scans it for
two-hop cycles (base -> token -> base) above the profit threshold.
"""
import logging
from typing import List, Optional, Dict, Any, Tuple
from dataclasses import dataclass

from .config import Token
from .jupiter_client import JupiterClient, JupiterQuote
from .utils import get_terminal_colors

logger = logging.getLogger(__name__)
colors = get_terminal_colors()


def compute_rate(in_amount: int, out_amount: int, decimals_from: int, decimals_to: int) -> float:
    """
    Destination units per source unit, normalized by token decimals.

    Raises:
        ValueError: If in_amount is not positive
    """
    if in_amount <= 0:
        raise ValueError(f"in_amount must be positive, got {in_amount}")
    return (out_amount / 10 ** decimals_to) / (in_amount / 10 ** decimals_from)


@dataclass(frozen=True)
class Edge:
    """A directed quote between two tokens at the probe notional."""
    from_index: int
    to_index: int
    from_token: Token
    to_token: Token
    rate: float
    in_amount: int
    out_amount: int
    route_plan: Tuple[Dict[str, Any], ...] = ()
    venue_names: Tuple[str, ...] = ()

    @property
    def label(self) -> str:
        return f"{self.from_token.symbol}->{self.to_token.symbol}"


def edge_from_quote(from_index: int, to_index: int, from_token: Token, to_token: Token, quote: JupiterQuote) -> Edge:
    rate = compute_rate(quote.in_amount, quote.out_amount, from_token.decimals, to_token.decimals)
    return Edge(
        from_index=from_index,
        to_index=to_index,
        from_token=from_token,
        to_token=to_token,
        rate=rate,
        in_amount=quote.in_amount,
        out_amount=quote.out_amount,
        route_plan=tuple(quote.route_plan),
        venue_names=tuple(quote.venue_names)
    )


@dataclass
class Opportunity:
    """A two-hop cycle base -> token -> base found at the probe notional."""
    cycle: List[int]
    edges: List[Edge]
    round_trip_rate: float
    profit_percentage: float

    @property
    def route(self) -> str:
        first, second = self.edges
        return f"{first.from_token.symbol} -> {first.to_token.symbol} -> {second.to_token.symbol}"


class RateGraphBuilder:
    """Quotes base<->token in both directions at the probe notional."""

    def __init__(self, jupiter_client: JupiterClient, tokens: List[Token], probe_amount: int):
        self.jupiter = jupiter_client
        self.tokens = tokens
        self.probe_amount = probe_amount

    async def _quote_edge(self, from_index: int, to_index: int) -> Optional[Edge]:
        from_token = self.tokens[from_index]
        to_token = self.tokens[to_index]
        try:
            quote = await self.jupiter.get_quote(from_token.mint, to_token.mint, self.probe_amount)
        except Exception as e:
            logger.error(f"Error quoting {from_token.symbol}->{to_token.symbol}: {e}")
            return None

        if quote is None or quote.in_amount <= 0:
            logger.debug(f"No quote for {from_token.symbol}->{to_token.symbol}, edge omitted")
            return None

        return edge_from_quote(from_index, to_index, from_token, to_token, quote)

    async def build(self) -> List[Edge]:
        """
        Build the edge list. Requests are issued sequentially through the
        client's rate limiter; a failed direction is simply left out.
        """
        edges: List[Edge] = []
        for index in range(1, len(self.tokens)):
            for from_index, to_index in ((0, index), (index, 0)):
                edge = await self._quote_edge(from_index, to_index)
                if edge is not None:
                    edges.append(edge)
                    logger.debug(
                        f"Edge {colors['CYAN']}{edge.label}{colors['RESET']}: "
                        f"rate={colors['YELLOW']}{edge.rate:.8f}{colors['RESET']}"
                    )

        logger.info(f"Rate graph built: {colors['GREEN']}{len(edges)}{colors['RESET']} edges")
        return edges


class OpportunityScanner:
    """Finds two-hop cycles through the base token above the profit threshold."""

    def __init__(self, min_profit_percentage: float):
        self.min_profit_percentage = min_profit_percentage

    def scan(self, edges: List[Edge]) -> Optional[List[Opportunity]]:
        """
        Evaluate every token that has both directions in the graph.

        Returns:
            Opportunities sorted by profit percentage (descending), or None if
            nothing reaches the threshold
        """
        outbound: Dict[int, Edge] = {}
        inbound: Dict[int, Edge] = {}
        for edge in edges:
            if edge.from_index == 0 and edge.to_index != 0:
                outbound[edge.to_index] = edge
            elif edge.to_index == 0 and edge.from_index != 0:
                inbound[edge.from_index] = edge

        opportunities: List[Opportunity] = []
        for index in sorted(outbound):
            if index not in inbound:
                continue
            first, second = outbound[index], inbound[index]
            round_trip_rate = first.rate * second.rate
            profit_percentage = (round_trip_rate - 1) * 100

            if profit_percentage >= self.min_profit_percentage:
                opportunities.append(Opportunity(
                    cycle=[0, index, 0],
                    edges=[first, second],
                    round_trip_rate=round_trip_rate,
                    profit_percentage=profit_percentage
                ))
            else:
                logger.debug(
                    f"{first.from_token.symbol}->{first.to_token.symbol}->{second.to_token.symbol}: "
                    f"{profit_percentage:.4f}% below threshold"
                )

        if not opportunities:
            return None

        opportunities.sort(key=lambda opp: opp.profit_percentage, reverse=True)
        for opp in opportunities:
            logger.info(
                f"Opportunity {colors['CYAN']}{opp.route}{colors['RESET']}: "
                f"profit={colors['YELLOW']}{opp.profit_percentage:.4f}%{colors['RESET']}"
            )
        return opportunities
