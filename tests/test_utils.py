"""
Tests for utils.py
"""
from unittest.mock import patch
from src.utils import get_terminal_colors, format_sol, short_address


class TestGetTerminalColors:
    """Tests for get_terminal_colors function."""

    def test_get_terminal_colors_with_tty(self):
        """Color codes are returned when stdout is a TTY."""
        with patch('sys.stdout.isatty', return_value=True):
            colors = get_terminal_colors()
            assert colors['GREEN'] == '\033[92m'
            assert colors['RED'] == '\033[91m'
            assert colors['DIM'] == '\033[90m'
            assert colors['RESET'] == '\033[0m'

    def test_get_terminal_colors_without_tty(self):
        """Empty strings are returned when stdout is redirected."""
        with patch('sys.stdout.isatty', return_value=False):
            colors = get_terminal_colors()
            assert set(colors.values()) == {''}


class TestFormatting:

    def test_format_sol(self):
        assert format_sol(1_500_000_000) == "1.500000000 SOL"
        assert format_sol(-2_000_000) == "-0.002000000 SOL"

    def test_short_address(self):
        assert short_address("So11111111111111111111111111111111111111112") == "So111111..."
        assert short_address("abc") == "abc"
