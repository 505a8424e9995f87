"""Entry point: python -m tokenbalancer [config/settings.yaml]"""

import asyncio
import sys
from pathlib import Path

from tokenbalancer.config import Secrets, load_config
from tokenbalancer.engine import RebalancingEngine
from tokenbalancer.logging_config import configure_logging

DEFAULT_CONFIG = Path("config/settings.yaml")


def main():
    config_path = Path(sys.argv[1]) if len(sys.argv) > 1 else DEFAULT_CONFIG
    try:
        config = load_config(config_path)
    except Exception as e:
        print(f"Failed to load {config_path}: {e}")
        sys.exit(1)
    try:
        secrets = Secrets()
    except Exception as e:
        print(f"Failed to load secrets from .env: {e}")
        sys.exit(1)

    configure_logging(config.logging, wallet=config.wallet.address)

    engine = RebalancingEngine.from_config(config, secrets)
    asyncio.run(engine.run())


if __name__ == "__main__":
    main()
