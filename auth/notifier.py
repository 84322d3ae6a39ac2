"""
auth/notifier.py -- Contract with the mail-delivery collaborator.

The core never sends mail. When a reset token is issued it hands the
principal and the raw token to a ResetNotifier; a mail integration implements
send_reset() and owns templating and delivery. Possessing the token stands in
for proof of mailbox control, so the notifier is the only place the raw token
goes besides the (debug-only) API response.

LoggingResetNotifier is the default wiring. It records that a reset was
requested, never the token itself.
"""

from __future__ import annotations

import logging
from typing import Protocol

from auth.models import Principal

logger = logging.getLogger("siteguard.auth.notifier")


class ResetNotifier(Protocol):
    def send_reset(self, principal: Principal, token: str) -> None: ...


class LoggingResetNotifier:
    """Default notifier: log the event, deliver nothing."""

    def send_reset(self, principal: Principal, token: str) -> None:
        logger.info("Password reset requested for principal %s (no mail transport configured)", principal.id)
