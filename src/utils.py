"""
Utility functions for the flash-loan arbitrage bot.
"""
import sys
from typing import Dict

LAMPORTS_PER_SOL = 1_000_000_000


def get_terminal_colors() -> Dict[str, str]:
    """
    Get ANSI color codes for terminal output.

    Returns empty strings if output is not a TTY (e.g., redirected to file),
    so the log file stays free of escape codes.

    Returns:
        Dictionary with color codes: GREEN, CYAN, YELLOW, RED, DIM, RESET
    """
    use_color = sys.stdout.isatty()
    return {
        'GREEN': '\033[92m' if use_color else '',   # Amounts, counters, config values
        'CYAN': '\033[96m' if use_color else '',    # Tokens, routes, venues, modes
        'YELLOW': '\033[93m' if use_color else '',  # Rates, profit, thresholds
        'RED': '\033[91m' if use_color else '',     # Failures, net-negative trades
        'DIM': '\033[90m' if use_color else '',     # Service messages
        'RESET': '\033[0m' if use_color else ''
    }


def format_sol(lamports: int) -> str:
    """Format a lamport amount as SOL with 9 decimals."""
    return f"{lamports / LAMPORTS_PER_SOL:.9f} SOL"


def short_address(address: str, length: int = 8) -> str:
    """Shorten a base58 address for log lines."""
    if len(address) <= length:
        return address
    return f"{address[:length]}..."
