#!/usr/bin/env python3
"""
Launcher script for the flash-loan arbitrage bot.
"""
import argparse
import sys
from src.main import main
import asyncio

if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Solana flash-loan arbitrage bot')
    parser.add_argument(
        'mode',
        nargs='?',
        default='scan',
        choices=['scan', 'live'],
        help='Operation mode: scan (detect and verify only, default) or live (execute trades)'
    )

    args = parser.parse_args()

    try:
        asyncio.run(main(mode=args.mode))
    except KeyboardInterrupt:
        print("\nBot stopped by user")
        sys.exit(0)
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)
