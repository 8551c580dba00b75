"""Notification cue for new messages from the other party. Fire and forget."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from spg_chat.schemas.message import LocalMessage

logger = logging.getLogger(__name__)


class NotificationCue(Protocol):
    def play(self, message: Optional[LocalMessage] = None) -> None: ...


class LoggingNotificationCue:
    """Default cue for headless clients: one log line per new message."""

    def play(self, message: Optional[LocalMessage] = None) -> None:
        if message is None:
            logger.info("New message")
            return
        logger.info(
            "New %s message in %s: %s",
            message.sender_role,
            message.ref_code,
            message.text or message.media_kind,
        )


def fire_cue(cue: Optional[NotificationCue], message: Optional[LocalMessage] = None) -> None:
    """Play the cue; playback problems are logged and never raised."""
    if cue is None:
        return
    try:
        cue.play(message)
    except Exception as e:
        logger.debug("Notification cue failed: %s", e)
