from __future__ import annotations

from typing import Protocol

from ..models import QueuedEmail


class MailTransportError(Exception):
    """Raised by a transport when a message could not be handed over."""


class MailTransport(Protocol):
    """Outbound mail capability. The only place the queue performs network I/O."""

    def send(self, email: QueuedEmail) -> None:
        """Deliver ``email`` or raise."""
        ...
