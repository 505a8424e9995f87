"""Error taxonomy for the rebalancing engine."""


class TokenBalancerError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(TokenBalancerError):
    """Raised when goal fractions do not sum to one within tolerance."""


class InsufficientTradingRights(TokenBalancerError):
    """Raised when the wallet holds too few trading-rights tokens for the plan."""

    def __init__(self, shortfall: int, needed_intents: int):
        self.shortfall = shortfall
        self.needed_intents = needed_intents
        super().__init__(
            f"Missing {shortfall} trading-rights tokens to post {needed_intents} intents"
        )


class PriceDriftDetected(TokenBalancerError):
    """Raised when a live price moves too far from a trusted baseline."""

    def __init__(self, pair: tuple[str, str], kind: str, ratio: float, limit: float):
        self.pair = pair
        self.kind = kind  # "relative" or "average"
        self.ratio = ratio
        self.limit = limit
        super().__init__(
            f"{kind} price change {ratio:.4f} for {pair[0]}/{pair[1]} "
            f"outside +/-{limit:.2%}"
        )


class RequestValidationFailure(TokenBalancerError):
    """Raised when an inbound order request cannot be answered."""

    def __init__(self, reason: str, **context):
        self.reason = reason
        self.context = context
        super().__init__(reason)


class TransientFetchFailure(TokenBalancerError):
    """Raised when a price, balance or trading-rights lookup fails."""
