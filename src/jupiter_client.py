"""
Jupiter API Client for quotes and swap instructions.
"""
import httpx
import time
import asyncio
from collections import deque
from typing import Deque, Dict, List, Optional, Any, Union
from dataclasses import dataclass, field
import logging

from .utils import get_terminal_colors, short_address

logger = logging.getLogger(__name__)
colors = get_terminal_colors()


class RateLimiter:
    """
    Process-wide rate limiter for routing-service requests.

    Enforces two limits before every call:
    - a minimum spacing between any two calls
    - a maximum number of calls per rolling time window

    One instance is created at startup and injected into every client that
    talks to the routing service.
    """

    def __init__(
        self,
        min_interval: float = 1.0,
        max_requests: int = 60,
        window_seconds: float = 60.0
    ):
        """
        Initialize rate limiter.

        Args:
            min_interval: Minimum seconds between two requests
            max_requests: Maximum requests inside one rolling window
            window_seconds: Length of the rolling window in seconds
        """
        self.min_interval = min_interval
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._last_request_time: Optional[float] = None
        self._request_times: Deque[float] = deque()
        self._lock = asyncio.Lock()

    def _evict_expired(self, now: float):
        while self._request_times and now - self._request_times[0] >= self.window_seconds:
            self._request_times.popleft()

    async def acquire(self):
        """
        Wait until a request can be made, then record it.

        Callers are serialized: the lock is held while sleeping so that
        concurrent callers queue behind each other.
        """
        async with self._lock:
            if self._last_request_time is not None:
                time_since_last = time.monotonic() - self._last_request_time
                if time_since_last < self.min_interval:
                    await asyncio.sleep(self.min_interval - time_since_last)

            now = time.monotonic()
            self._evict_expired(now)

            if len(self._request_times) >= self.max_requests:
                wait_time = self.window_seconds - (now - self._request_times[0])
                if wait_time > 0:
                    logger.info(
                        f"Rate limit reached ({self.max_requests} requests per {self.window_seconds:.0f}s), "
                        f"waiting {colors['YELLOW']}{wait_time:.1f}s{colors['RESET']} for the window to roll"
                    )
                    await asyncio.sleep(wait_time)
                now = time.monotonic()
                self._evict_expired(now)

            self._request_times.append(now)
            self._last_request_time = now

    @property
    def requests_in_window(self) -> int:
        """Number of requests recorded in the current window."""
        self._evict_expired(time.monotonic())
        return len(self._request_times)


def extract_venue_names(route_plan: Any) -> List[str]:
    """
    Decode liquidity venue names from a quote's route plan.

    Accepts the route-plan shapes the API has used (``swapInfo.label``,
    ``amm.label``, ``marketInfos[].label``) and returns an empty list for
    anything it does not recognize.
    """
    if not isinstance(route_plan, list):
        return []

    names: List[str] = []
    for step in route_plan:
        if not isinstance(step, dict):
            continue
        for key in ("swapInfo", "amm"):
            info = step.get(key)
            if isinstance(info, dict) and isinstance(info.get("label"), str):
                names.append(info["label"])
                break
        else:
            for market in step.get("marketInfos") or []:
                if isinstance(market, dict) and isinstance(market.get("label"), str):
                    names.append(market["label"])
    return names


@dataclass
class JupiterQuote:
    """Quote response from Jupiter API."""
    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    price_impact_pct: float
    route_plan: List[Dict[str, Any]]
    raw: Dict[str, Any] = field(default_factory=dict)  # Verbatim response, sent back for swap-instructions
    context_slot: Optional[int] = None
    time_taken: Optional[float] = None

    @property
    def venue_names(self) -> List[str]:
        return extract_venue_names(self.route_plan)


@dataclass
class SwapAccountMeta:
    """Account metadata for swap instruction."""
    pubkey: str
    is_signer: bool
    is_writable: bool


@dataclass
class SwapInstruction:
    """Single instruction from Jupiter API."""
    program_id: str
    accounts: List[SwapAccountMeta]
    data: str  # base64


@dataclass
class JupiterSwapInstructionsResponse:
    """Swap instructions response from Jupiter API."""
    setup_instructions: List[SwapInstruction]
    swap_instruction: SwapInstruction
    cleanup_instruction: Optional[SwapInstruction]
    address_lookup_tables: List[str]


class JupiterClient:
    """Client for the Jupiter Aggregator v6 API."""

    def __init__(
        self,
        api_url: str,
        rate_limiter: RateLimiter,
        timeout: float = 10.0,
        slippage_bps: int = 100,
        max_retries_on_429: int = 3,
        backoff_base_seconds: float = 2.0
    ):
        """
        Initialize Jupiter API client.

        Args:
            api_url: Base API URL (e.g. https://quote-api.jup.ag/v6)
            rate_limiter: Shared RateLimiter consulted before every request
            timeout: Request timeout in seconds
            slippage_bps: Slippage tolerance sent with every quote
            max_retries_on_429: Maximum retries on 429 rate limit error
            backoff_base_seconds: Base delay for 429 retries (doubled per attempt)
        """
        self.api_url = api_url.rstrip('/')
        self.rate_limiter = rate_limiter
        self.timeout = timeout
        self.slippage_bps = slippage_bps
        self.max_retries_on_429 = max_retries_on_429
        self.backoff_base_seconds = backoff_base_seconds
        self.client = httpx.AsyncClient(timeout=timeout)

    async def _request_with_backoff(
        self,
        method: str,
        url: str,
        description: str,
        **kwargs
    ) -> Optional[Dict[str, Any]]:
        """
        Send a rate-limited request, retrying on 429 with exponential backoff.

        Returns:
            Decoded JSON body, or None on any failure
        """
        for attempt in range(self.max_retries_on_429 + 1):
            await self.rate_limiter.acquire()
            try:
                if method == "GET":
                    response = await self.client.get(url, **kwargs)
                else:
                    response = await self.client.post(url, **kwargs)
                response.raise_for_status()
                return response.json()

            except httpx.HTTPStatusError as e:
                if e.response.status_code == 429 and attempt < self.max_retries_on_429:
                    wait_time = self.backoff_base_seconds * (2 ** attempt)
                    logger.warning(
                        f"Rate limit exceeded (429) for {description}, "
                        f"retrying in {wait_time:.1f}s (attempt {attempt + 1}/{self.max_retries_on_429})"
                    )
                    await asyncio.sleep(wait_time)
                    continue
                if e.response.status_code == 429:
                    logger.error(f"Rate limit exceeded (429) for {description} after {self.max_retries_on_429} retries")
                else:
                    logger.warning(f"Jupiter {description} failed: {e.response.status_code} - {e.response.text}")
                return None

            except (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError) as e:
                logger.warning(f"Network error for {description}: {e}")
                return None

            except Exception as e:
                logger.error(f"Unexpected error for {description}: {e}")
                return None

        return None

    async def get_quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        only_direct_routes: bool = False
    ) -> Optional[JupiterQuote]:
        """
        Get a quote for swapping tokens.

        Args:
            input_mint: Input token mint address
            output_mint: Output token mint address
            amount: Amount in smallest unit (lamports for SOL)
            only_direct_routes: Only return single-venue routes (also caps accounts at 10)

        Returns:
            JupiterQuote or None if the request failed
        """
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": self.slippage_bps,
            "onlyDirectRoutes": str(only_direct_routes).lower(),
            "maxAccounts": 10 if only_direct_routes else 30,
            "platformFeeBps": 0
        }
        description = f"quote {short_address(input_mint)} -> {short_address(output_mint)}"

        start_time = time.time()
        data = await self._request_with_backoff("GET", f"{self.api_url}/quote", description, params=params)
        if data is None:
            return None

        try:
            quote = JupiterQuote(
                input_mint=data.get("inputMint", input_mint),
                output_mint=data.get("outputMint", output_mint),
                in_amount=int(data.get("inAmount", amount)),
                out_amount=int(data["outAmount"]),
                price_impact_pct=float(data.get("priceImpactPct", 0) or 0),
                route_plan=data.get("routePlan") or [],
                raw=data,
                context_slot=data.get("contextSlot"),
                time_taken=time.time() - start_time
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Malformed quote response for {description}: {e}")
            return None

        venues = quote.venue_names
        logger.debug(
            f"Quote {short_address(input_mint)} -> {short_address(output_mint)}: "
            f"in={quote.in_amount} out={quote.out_amount} "
            f"via [{', '.join(venues) if venues else 'Jupiter'}]"
        )
        return quote

    def _parse_accounts(self, accounts_data: Union[List[str], List[Dict[str, Any]]]) -> List[SwapAccountMeta]:
        """
        Parse accounts from Jupiter API response.

        Args:
            accounts_data: List of {"pubkey", "isSigner", "isWritable"} objects

        Returns:
            List of SwapAccountMeta objects

        Raises:
            ValueError: If accounts lack signer/writable metadata
        """
        parsed_accounts = []
        for account_data in accounts_data or []:
            if not isinstance(account_data, dict) or "pubkey" not in account_data:
                raise ValueError(f"Unexpected account format: {account_data!r}")
            parsed_accounts.append(SwapAccountMeta(
                pubkey=account_data["pubkey"],
                is_signer=bool(account_data.get("isSigner", False)),
                is_writable=bool(account_data.get("isWritable", False))
            ))
        return parsed_accounts

    def _parse_instruction(self, instr_data: Dict[str, Any]) -> SwapInstruction:
        if not isinstance(instr_data, dict) or not instr_data.get("programId"):
            raise ValueError("Instruction is missing programId")
        return SwapInstruction(
            program_id=instr_data["programId"],
            accounts=self._parse_accounts(instr_data.get("accounts", [])),
            data=instr_data.get("data", "")
        )

    async def get_swap_instructions(
        self,
        quote: JupiterQuote,
        user_public_key: str,
        compute_unit_price_micro_lamports: int = 0
    ) -> Optional[JupiterSwapInstructionsResponse]:
        """
        Get swap instructions for a quote (for building our own transaction).

        Args:
            quote: JupiterQuote returned by get_quote
            user_public_key: Wallet public key (base58)
            compute_unit_price_micro_lamports: Priority fee embedded by Jupiter (0 = none,
                the assembler adds its own budget instructions)

        Returns:
            JupiterSwapInstructionsResponse, or None if failed
        """
        payload = {
            "userPublicKey": user_public_key,
            "wrapAndUnwrapSol": False,
            "useSharedAccounts": True,
            "computeUnitPriceMicroLamports": compute_unit_price_micro_lamports,
            "quoteResponse": quote.raw
        }
        description = f"swap-instructions {short_address(quote.input_mint)} -> {short_address(quote.output_mint)}"

        data = await self._request_with_backoff(
            "POST", f"{self.api_url}/swap-instructions", description, json=payload
        )
        if data is None:
            return None

        if not data.get("swapInstruction"):
            logger.error(f"Response for {description} has no swapInstruction")
            return None

        try:
            setup_instructions = [
                self._parse_instruction(instr) for instr in data.get("setupInstructions") or []
            ]
            swap_instruction = self._parse_instruction(data["swapInstruction"])
            cleanup_instruction = None
            if data.get("cleanupInstruction"):
                cleanup_instruction = self._parse_instruction(data["cleanupInstruction"])
        except ValueError as e:
            logger.error(f"Malformed instructions in {description}: {e}")
            return None

        address_lookup_tables = [
            alt for alt in data.get("addressLookupTableAddresses") or [] if isinstance(alt, str)
        ]

        logger.debug(
            f"Swap instructions OK: {len(setup_instructions)} setup, 1 swap, "
            f"{1 if cleanup_instruction else 0} cleanup, {len(address_lookup_tables)} ALTs"
        )
        return JupiterSwapInstructionsResponse(
            setup_instructions=setup_instructions,
            swap_instruction=swap_instruction,
            cleanup_instruction=cleanup_instruction,
            address_lookup_tables=address_lookup_tables
        )

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()
