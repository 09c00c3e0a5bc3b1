"""
Verification of detected opportunities at the real flash-loan notional.
"""
import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .arbitrage_finder import Edge, Opportunity, edge_from_quote
from .config import Token
from .jupiter_client import JupiterClient, JupiterQuote
from .utils import get_terminal_colors, format_sol

logger = logging.getLogger(__name__)
colors = get_terminal_colors()


@dataclass
class VerifiedEdge:
    """An edge re-quoted with the actual amount that will flow through it."""
    edge: Edge
    in_amount: int
    out_amount: int
    quote: JupiterQuote


@dataclass
class VerifiedOpportunity:
    """
    An opportunity priced at the real notional. Only these reach execution.

    Amounts are in base-token minor units (lamports).
    """
    opportunity: Opportunity
    edges: List[VerifiedEdge]
    amounts: List[int]
    flash_loan_amount: int
    gross_profit: int
    flash_loan_fee: int
    estimated_tip: int
    net_profit: int
    profit_percentage: float

    @property
    def net_negative(self) -> bool:
        return self.net_profit < 0

    @property
    def route(self) -> str:
        return self.opportunity.route


def estimate_costs(
    notional: int,
    gross_profit: int,
    fee_rate: float,
    use_jito: bool,
    min_tip: int,
    tip_percentage: float
) -> Tuple[int, int, int]:
    """
    Flash-loan fee and bundle tip for a trade.

    Returns:
        (flash_loan_fee, tip, net_profit)
    """
    fee = math.ceil(notional * fee_rate)
    tip = max(min_tip, math.floor(gross_profit * tip_percentage)) if use_jito else 0
    return fee, tip, gross_profit - fee - tip


class OpportunityVerifier:
    """Re-quotes the best candidates at the flash-loan notional."""

    def __init__(
        self,
        jupiter_client: JupiterClient,
        flash_loan_amount: int,
        min_profit_percentage: float,
        flash_loan_fee_rate: float = 0.0005,
        use_jito: bool = False,
        jito_min_tip: int = 5000,
        jito_tip_percentage: float = 0.07,
        top_k: int = 3,
        use_safety_buffer: bool = True,
        safety_buffer_percentage: float = 0.9995
    ):
        self.jupiter = jupiter_client
        self.flash_loan_amount = flash_loan_amount
        self.min_profit_percentage = min_profit_percentage
        self.flash_loan_fee_rate = flash_loan_fee_rate
        self.use_jito = use_jito
        self.jito_min_tip = jito_min_tip
        self.jito_tip_percentage = jito_tip_percentage
        self.top_k = top_k
        self.use_safety_buffer = use_safety_buffer
        self.safety_buffer_percentage = safety_buffer_percentage

    def _priced(
        self,
        opportunity: Opportunity,
        verified_edges: List[VerifiedEdge],
        amounts: List[int]
    ) -> VerifiedOpportunity:
        notional = self.flash_loan_amount
        gross_profit = amounts[-1] - notional
        fee, tip, net_profit = estimate_costs(
            notional, gross_profit, self.flash_loan_fee_rate,
            self.use_jito, self.jito_min_tip, self.jito_tip_percentage
        )
        return VerifiedOpportunity(
            opportunity=opportunity,
            edges=verified_edges,
            amounts=amounts,
            flash_loan_amount=notional,
            gross_profit=gross_profit,
            flash_loan_fee=fee,
            estimated_tip=tip,
            net_profit=net_profit,
            profit_percentage=gross_profit / notional * 100
        )

    def _accept(self, result: VerifiedOpportunity) -> bool:
        """Gross-percentage gate; net profit is reported but does not gate."""
        if result.profit_percentage < self.min_profit_percentage:
            logger.info(
                f"{result.route} rejected at {format_sol(self.flash_loan_amount)}: "
                f"{colors['YELLOW']}{result.profit_percentage:.4f}%{colors['RESET']} "
                f"< {self.min_profit_percentage}%"
            )
            return False

        if result.net_negative:
            logger.warning(
                f"{colors['RED']}{result.route} passes on gross profit but is net-negative: "
                f"gross={result.gross_profit} fee={result.flash_loan_fee} "
                f"tip={result.estimated_tip} net={result.net_profit}{colors['RESET']}"
            )
        else:
            logger.info(
                f"Verified {colors['CYAN']}{result.route}{colors['RESET']}: "
                f"gross={colors['GREEN']}{format_sol(result.gross_profit)}{colors['RESET']} "
                f"({colors['YELLOW']}{result.profit_percentage:.4f}%{colors['RESET']}), "
                f"net={format_sol(result.net_profit)}"
            )
        return True

    async def _verify_one(self, opportunity: Opportunity) -> Optional[VerifiedOpportunity]:
        edges = opportunity.edges
        if not edges or edges[0].from_index != 0 or edges[-1].to_index != 0:
            logger.debug(f"Skipping {opportunity.route}: cycle does not start and end at the base token")
            return None

        amount = self.flash_loan_amount
        amounts = [amount]
        verified_edges: List[VerifiedEdge] = []
        for edge in edges:
            quote = await self.jupiter.get_quote(edge.from_token.mint, edge.to_token.mint, amount)
            if quote is None:
                logger.debug(f"Skipping {opportunity.route}: no quote for {edge.label} at {amount}")
                return None
            verified_edges.append(VerifiedEdge(
                edge=edge,
                in_amount=amount,
                out_amount=quote.out_amount,
                quote=quote
            ))
            amount = quote.out_amount
            amounts.append(amount)

        return self._priced(opportunity, verified_edges, amounts)

    async def verify(self, opportunities: List[Opportunity]) -> List[VerifiedOpportunity]:
        """
        Verify the top-K opportunities sequentially.

        A candidate is kept when its gross profit percentage reaches the
        threshold; net profit is reported but does not gate.

        Returns:
            Verified opportunities sorted by profit percentage (descending)
        """
        verified: List[VerifiedOpportunity] = []
        for opportunity in opportunities[:self.top_k]:
            try:
                result = await self._verify_one(opportunity)
            except Exception as e:
                logger.error(f"Error verifying {opportunity.route}: {e}")
                continue
            if result is not None and self._accept(result):
                verified.append(result)

        verified.sort(key=lambda v: v.profit_percentage, reverse=True)
        return verified

    async def verify_pair(self, tokens: List[Token], pair_index: int) -> List[VerifiedOpportunity]:
        """
        Fixed base -> pair -> base check at the flash-loan notional.

        When the safety buffer is on, the second leg is quoted for
        floor(first_out * safety_buffer_percentage) instead of the full
        first-leg output. Gating is the same gross-percentage rule as
        verify().

        Returns:
            A single-element list, or an empty list when quoting fails or
            the round trip is below the threshold
        """
        base, pair = tokens[0], tokens[pair_index]
        notional = self.flash_loan_amount
        route = f"{base.symbol} -> {pair.symbol} -> {base.symbol}"
        try:
            first = await self.jupiter.get_quote(base.mint, pair.mint, notional)
            if first is None:
                logger.info(f"No {base.symbol}->{pair.symbol} quote for {route}")
                return []

            second_in = first.out_amount
            if self.use_safety_buffer:
                second_in = math.floor(first.out_amount * self.safety_buffer_percentage)
                logger.debug(
                    f"Safety buffer {(1 - self.safety_buffer_percentage) * 100:.4f}%: "
                    f"{first.out_amount} -> {second_in} {pair.symbol} minor units"
                )
            if second_in <= 0:
                logger.info(f"Buffered {pair.symbol} amount is zero, skipping {route}")
                return []

            second = await self.jupiter.get_quote(pair.mint, base.mint, second_in)
            if second is None:
                logger.info(f"No {pair.symbol}->{base.symbol} quote for {route}")
                return []

            edges = [
                edge_from_quote(0, pair_index, base, pair, first),
                edge_from_quote(pair_index, 0, pair, base, second),
            ]
        except Exception as e:
            logger.error(f"Error checking {route}: {e}")
            return []

        round_trip_rate = edges[0].rate * edges[1].rate
        opportunity = Opportunity(
            cycle=[0, pair_index, 0],
            edges=edges,
            round_trip_rate=round_trip_rate,
            profit_percentage=(round_trip_rate - 1) * 100
        )
        result = self._priced(
            opportunity,
            [
                VerifiedEdge(edge=edges[0], in_amount=notional, out_amount=first.out_amount, quote=first),
                VerifiedEdge(edge=edges[1], in_amount=second_in, out_amount=second.out_amount, quote=second),
            ],
            [notional, second_in, second.out_amount]
        )
        return [result] if self._accept(result) else []
