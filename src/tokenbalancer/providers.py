"""Provider factory: creates the right implementation based on config."""

import importlib

from tokenbalancer.config import AppConfig, Secrets
from tokenbalancer.prices.base import PriceProvider
from tokenbalancer.trading.base import BalanceSource, OrderTransport, TradingRightsSource

PRICE_PROVIDERS = {
    "cryptocompare": "tokenbalancer.prices.cryptocompare:CryptoCompareProvider",
}

VENUE_PROVIDERS = {
    "paper": "tokenbalancer.trading.paper:PaperVenue",
}

# Every role the engine wires a venue into
VENUE_ROLES = (BalanceSource, TradingRightsSource, OrderTransport)


def _import_class(path: str):
    """Import a class from a 'module:ClassName' string."""
    module_path, class_name = path.split(":")
    module = importlib.import_module(module_path)
    return getattr(module, class_name)


def _resolve(kind: str, name: str, registry: dict[str, str], roles: tuple[type, ...]):
    if name not in registry:
        raise ValueError(f"Unknown {kind}: '{name}'. Available: {list(registry.keys())}")
    cls = _import_class(registry[name])
    missing = [role.__name__ for role in roles if not issubclass(cls, role)]
    if missing:
        raise TypeError(f"{kind.capitalize()} '{name}' does not implement {', '.join(missing)}")
    return cls


def create_price_provider(config: AppConfig, secrets: Secrets) -> PriceProvider:
    """Create a price provider based on config.providers.prices."""
    cls = _resolve("price provider", config.providers.prices, PRICE_PROVIDERS, (PriceProvider,))
    return cls(config, secrets)


def create_venue(config: AppConfig, secrets: Secrets):
    """Create a venue based on config.providers.venue.

    A venue supplies wallet balances, trading rights and the order
    transport, so it must implement all three interfaces.
    """
    cls = _resolve("venue", config.providers.venue, VENUE_PROVIDERS, VENUE_ROLES)
    return cls(config, secrets)
