"""Operator notifications."""

from tokenbalancer.logging_config import get_decision_logger
from tokenbalancer.trading.base import NotificationSink


class LogNotificationSink(NotificationSink):
    """Writes operator messages to the decision log."""

    def __init__(self):
        self._log = get_decision_logger()

    def notify(self, message: str) -> None:
        self._log.warning("operator.notification", message=message)
