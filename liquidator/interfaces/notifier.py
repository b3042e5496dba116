"""Notifier protocol — outbound notification channel."""
from typing import Protocol


class Notifier(Protocol):
    """Abstract interface for sending notifications.

    ``send_alert`` is for executions and newly liquidatable positions,
    ``send_log`` for routine cycle summaries. Both return False on failure.
    """

    async def send_alert(self, message: str, subject: str = "") -> bool: ...

    async def send_log(self, message: str, silent: bool = True) -> bool: ...
