"""
Configuration for the flash-loan arbitrage bot.

Values are resolved in order: environment (.env), then config.json, then the
defaults declared on BotConfig.
"""
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import dotenv

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent

SOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDT_MINT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"
BONK_MINT = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
ASSOCIATED_TOKEN_PROGRAM_ID = "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"
SYSVAR_INSTRUCTIONS_ID = "Sysvar1nstructions1111111111111111111111111"

# Lookup tables provisioned by the separate setup utility
DEFAULT_LOOKUP_TABLES = [
    "8HvgxVyd22Jq9mmoojm4Awqw6sbymbF5pwLr8FtvySHs",
    "4sKLJ1Qoudh8PJyqBeuKocYdsZvxTcRShUt9aKqwhgvC",
]


@dataclass(frozen=True)
class Token:
    """A tradable token. The base asset is always the first token."""
    mint: str
    symbol: str
    decimals: int


DEFAULT_TOKENS = [
    Token(mint=SOL_MINT, symbol="SOL", decimals=9),
    Token(mint=USDC_MINT, symbol="USDC", decimals=6),
    Token(mint=USDT_MINT, symbol="USDT", decimals=6),
    Token(mint=BONK_MINT, symbol="BONK", decimals=5),
]


@dataclass(frozen=True)
class KaminoAccounts:
    """Kamino lending accounts used by flash borrow / flash repay."""
    program_id: str = "KLend2g3cP87fffoy8q1mQqGKjrxjC8boSyAYavgmjD"
    lending_market: str = "H6rHXmXoCQvq8Ue81MqNh7ow5ysPa1dSozwW3PU1dDH6"
    lending_market_authority: str = "Dx8iy2o46sK1DzWbEcznqSKeLbLVeu7otkibA3WohGAj"
    sol_reserve: str = "6gTJfuPHEg6uRAijRkMqNc9kan4sVZejKMxmvx2grT1p"
    sol_reserve_liquidity: str = "ywaaLvG7t1vXJo8sT3UzE8yzzZtxLM7Fmev64Jbooye"
    sol_fee_receiver: str = "EQ7hw63aBS7aPQqXsoxaaBxiwbEzaAiY9Js6tCekkqxf"
    # No referrer: the program id stands in for the optional account
    referrer_token_state: str = "KLend2g3cP87fffoy8q1mQqGKjrxjC8boSyAYavgmjD"
    referrer_account: str = "EQ7hw63aBS7aPQqXsoxaaBxiwbEzaAiY9Js6tCekkqxf"
    wsol_mint: str = SOL_MINT


@dataclass
class BotConfig:
    """All tunables of the bot. Amounts are in minor units (lamports for SOL)."""
    rpc_url: str = "https://solana-rpc.publicnode.com"
    jupiter_api_url: str = "https://quote-api.jup.ag/v6"
    jito_block_engine_url: str = "https://frankfurt.mainnet.block-engine.jito.wtf/api/v1/bundles"
    jito_tip_account: str = "Cw8CFyM9FkoMi7K7Crf6HNQqf4uEMzpKw6QNghXLvLkY"
    use_jito: bool = False

    tokens: List[Token] = field(default_factory=lambda: list(DEFAULT_TOKENS))
    kamino: KaminoAccounts = field(default_factory=KaminoAccounts)

    # Detection / verification
    flash_loan_amount: int = 1_000_000_000
    flash_loan_fee_rate: float = 0.0005
    probe_amount: int = 1_000_000_000
    use_graph_scan: bool = True
    min_profit_percentage: float = 0.1
    top_k: int = 3
    slippage_bps: int = 100
    # Fixed-pair check, used when graph scanning is off
    pair_token_symbol: str = "USDC"
    use_safety_buffer: bool = True
    safety_buffer_percentage: float = 0.9995

    # Bundle settlement
    jito_min_tip: int = 5000
    jito_tip_percentage: float = 0.07
    jito_bundle_timeout: float = 10.0
    jito_max_retries: int = 2

    # Rate limiting and retries against the routing service
    min_request_interval: float = 1.0
    max_requests_per_window: int = 60
    request_window_seconds: float = 60.0
    max_retries: int = 3
    retry_delay_base: float = 2.0

    # Transaction assembly and settlement
    compute_unit_price_micro_lamports: int = 20_000
    compute_unit_limit: int = 200_000
    max_transaction_size: int = 1232
    lookup_table_addresses: List[str] = field(default_factory=lambda: list(DEFAULT_LOOKUP_TABLES))
    confirmation_timeout: float = 30.0

    # Loop and bootstrap
    check_interval: float = 5.0
    min_wallet_balance_lamports: int = 10_000_000
    trades_dir: str = "trades"

    def __post_init__(self):
        """Validate configuration."""
        if len(self.tokens) < 2:
            raise ValueError("At least two tokens are required (base token first)")
        mints = [token.mint for token in self.tokens]
        if len(set(mints)) != len(mints):
            raise ValueError("Token mints must be unique")
        if self.flash_loan_amount <= 0:
            raise ValueError("flash_loan_amount must be positive")
        if self.probe_amount <= 0:
            raise ValueError("probe_amount must be positive")
        if self.min_profit_percentage < 0:
            raise ValueError("min_profit_percentage must not be negative")
        for name in ("flash_loan_fee_rate", "jito_tip_percentage"):
            value = getattr(self, name)
            if not 0 <= value < 1:
                raise ValueError(f"{name} must be in [0, 1), got {value}")
        if self.top_k < 1:
            raise ValueError("top_k must be at least 1")
        if self.check_interval <= 0:
            raise ValueError("check_interval must be positive")
        if self.max_requests_per_window < 1:
            raise ValueError("max_requests_per_window must be at least 1")
        if not 0 < self.safety_buffer_percentage <= 1:
            raise ValueError(f"safety_buffer_percentage must be in (0, 1], got {self.safety_buffer_percentage}")
        if not self.use_graph_scan and self.pair_token_symbol not in [t.symbol for t in self.tokens[1:]]:
            raise ValueError(f"pair_token_symbol {self.pair_token_symbol!r} is not a configured non-base token")

    @property
    def base_token(self) -> Token:
        return self.tokens[0]

    @property
    def pair_token_index(self) -> int:
        """Index of the fixed-pair token among the non-base tokens."""
        for index, token in enumerate(self.tokens[1:], start=1):
            if token.symbol == self.pair_token_symbol:
                return index
        raise ValueError(f"pair_token_symbol {self.pair_token_symbol!r} is not a configured non-base token")


def _parse_tokens(raw_tokens: List[Dict[str, Any]]) -> List[Token]:
    tokens = []
    for raw in raw_tokens:
        try:
            tokens.append(Token(
                mint=raw["mint"],
                symbol=raw.get("symbol") or raw.get("name") or raw["mint"][:8],
                decimals=int(raw["decimals"])
            ))
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Invalid token entry in config.json: {raw} ({e})") from e
    return tokens


TRUE_VALUES = ("1", "true", "yes")
FALSE_VALUES = ("0", "false", "no")


def _parse_bool(value: Any, name: str) -> bool:
    """Accept JSON booleans or the usual true/false strings; anything else is an error."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in TRUE_VALUES:
            return True
        if lowered in FALSE_VALUES:
            return False
    raise ValueError(f"{name} must be a boolean, got {value!r}")


def _env_bool(name: str) -> Optional[bool]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return _parse_bool(value, name)


def load_config(env_path: Optional[Path] = None, config_path: Optional[Path] = None) -> BotConfig:
    """Load configuration from .env and config.json."""
    # Load .env
    env_path = env_path or PROJECT_ROOT / '.env'
    if env_path.exists():
        dotenv.load_dotenv(env_path)
    else:
        logger.warning(f".env file not found at {env_path}")

    # Load config.json
    config_path = config_path or PROJECT_ROOT / 'config.json'
    if config_path.exists():
        with open(config_path, 'r') as f:
            data = json.load(f)
    else:
        logger.warning(f"config.json not found at {config_path}, using defaults")
        data = {}

    arbitrage = data.get('arbitrage', {})
    flash_loan = data.get('flash_loan', {})
    jito = data.get('jito', {})
    rate_limit = data.get('rate_limit', {})
    transaction = data.get('transaction', {})

    kwargs: Dict[str, Any] = {}
    if data.get('tokens'):
        kwargs['tokens'] = _parse_tokens(data['tokens'])

    section_keys = [
        (arbitrage, 'min_profit_percentage', 'min_profit_percentage', float),
        (arbitrage, 'probe_amount', 'probe_amount', int),
        (arbitrage, 'top_k', 'top_k', int),
        (arbitrage, 'slippage_bps', 'slippage_bps', int),
        (arbitrage, 'check_interval', 'check_interval', float),
        (arbitrage, 'pair_token', 'pair_token_symbol', str),
        (arbitrage, 'safety_buffer_percentage', 'safety_buffer_percentage', float),
        (flash_loan, 'amount', 'flash_loan_amount', int),
        (flash_loan, 'fee_rate', 'flash_loan_fee_rate', float),
        (jito, 'tip_account', 'jito_tip_account', str),
        (jito, 'min_tip', 'jito_min_tip', int),
        (jito, 'tip_percentage', 'jito_tip_percentage', float),
        (jito, 'timeout', 'jito_bundle_timeout', float),
        (jito, 'max_retries', 'jito_max_retries', int),
        (rate_limit, 'min_request_interval', 'min_request_interval', float),
        (rate_limit, 'max_requests_per_window', 'max_requests_per_window', int),
        (rate_limit, 'window_seconds', 'request_window_seconds', float),
        (rate_limit, 'max_retries', 'max_retries', int),
        (rate_limit, 'retry_delay_base', 'retry_delay_base', float),
        (transaction, 'compute_unit_price', 'compute_unit_price_micro_lamports', int),
        (transaction, 'compute_unit_limit', 'compute_unit_limit', int),
        (transaction, 'max_size', 'max_transaction_size', int),
        (transaction, 'confirmation_timeout', 'confirmation_timeout', float),
    ]
    for section, key, attr, cast in section_keys:
        if key in section:
            kwargs[attr] = cast(section[key])
    if 'lookup_tables' in transaction:
        kwargs['lookup_table_addresses'] = list(transaction['lookup_tables'])
    if 'trades_dir' in data:
        kwargs['trades_dir'] = str(data['trades_dir'])

    # Environment takes precedence over config.json
    env_strings = [
        ('RPC_URL', 'rpc_url'),
        ('JUPITER_API_URL', 'jupiter_api_url'),
        ('JITO_BLOCK_ENGINE_URL', 'jito_block_engine_url'),
    ]
    for env_name, attr in env_strings:
        value = os.getenv(env_name)
        if value:
            kwargs[attr] = value.rstrip('/')

    use_jito = _env_bool('USE_JITO')
    if use_jito is not None:
        kwargs['use_jito'] = use_jito
    elif 'enabled' in jito:
        kwargs['use_jito'] = _parse_bool(jito['enabled'], 'jito.enabled')

    for section, key, attr in (
        (arbitrage, 'use_graph_scan', 'use_graph_scan'),
        (arbitrage, 'use_safety_buffer', 'use_safety_buffer'),
    ):
        env_value = _env_bool(attr.upper())
        if env_value is not None:
            kwargs[attr] = env_value
        elif key in section:
            kwargs[attr] = _parse_bool(section[key], f'arbitrage.{key}')

    min_profit_env = os.getenv('MIN_PROFIT_PERCENTAGE')
    if min_profit_env:
        kwargs['min_profit_percentage'] = float(min_profit_env)

    flash_loan_env = os.getenv('FLASH_LOAN_AMOUNT')
    if flash_loan_env:
        kwargs['flash_loan_amount'] = int(flash_loan_env)

    return BotConfig(**kwargs)
