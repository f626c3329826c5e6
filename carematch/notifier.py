"""
Outbound channels. Delivery is fire-and-forget: callers must not let a
failure here undo a state change that already happened.
"""

import logging
from typing import Any

from carematch.models import BookingEvent

logger = logging.getLogger(__name__)


async def publish_booking_event(event: BookingEvent) -> None:
    logger.info(
        "booking event %s: %s -> %s",
        event.booking_id,
        event.old_status,
        event.new_status,
    )


async def send_email(recipient: str, template: str, data: dict[str, Any]) -> None:
    logger.info("email %s queued for %s", template, recipient)
