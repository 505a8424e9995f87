"""Verify the configuration and connectivity to the price API."""

import asyncio
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from tokenbalancer.config import AppConfig, Secrets, load_config
from tokenbalancer.prices.cryptocompare import CryptoCompareProvider
from tokenbalancer.rebalancing.planner import sum_fractions


def check_config(config: AppConfig) -> bool:
    """Verify goal fractions sum to one."""
    print("Checking configuration...")
    total = sum_fractions(config.rebalancing.goal_fractions)
    print(f"  Tokens: {', '.join(t.symbol for t in config.tokens)}")
    print(f"  Goal fractions sum: {total:.6f}")
    if abs(total - 1) > config.rebalancing.fraction_tolerance:
        print("  Config: FAILED - goal fractions must sum to 1")
        return False
    print("  Config: OK")
    return True


def check_cryptocompare(config: AppConfig, secrets: Secrets) -> bool:
    """Fetch USD prices for every configured token."""
    print("\nChecking CryptoCompare API...")
    try:
        provider = CryptoCompareProvider(config, secrets)
        prices = asyncio.run(provider.fetch_usd_prices([t.symbol for t in config.tokens]))
        for symbol, price in prices.items():
            shown = f"${price:,.4f}" if price is not None else "no quote"
            print(f"  {symbol}: {shown}")
        print("  CryptoCompare: OK")
        return True
    except Exception as e:
        print(f"  CryptoCompare: FAILED - {e}")
        return False


def main():
    print("=" * 50)
    print("Tokenbalancer - Connectivity Check")
    print("=" * 50)

    try:
        config = load_config()
        secrets = Secrets()
    except Exception as e:
        print(f"\nFailed to load config/settings.yaml or .env: {e}")
        sys.exit(1)

    results = [
        check_config(config),
        check_cryptocompare(config, secrets),
    ]

    print("\n" + "=" * 50)
    if all(results):
        print("All checks passed. Ready to rebalance.")
    else:
        print("Some checks failed. Fix the issues above.")
        sys.exit(1)


if __name__ == "__main__":
    main()
