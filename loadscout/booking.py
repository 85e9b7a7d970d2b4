"""Booking interface. Automated booking is not implemented."""

import logging

from loadscout.core.schemas import BookingResult, SessionCredentials

logger = logging.getLogger(__name__)


class Booker:
    """Placeholder for automated load booking.

    The provider's booking protocol is unknown, so every call returns a
    ``not_implemented`` result instead of guessing at it.
    """

    async def book(
        self,
        load_id: str,
        credentials: SessionCredentials,
        dry_run: bool = True,
    ) -> BookingResult:
        logger.info(
            "Booking requested for load %s by user %s (dry_run=%s): not implemented",
            load_id, credentials.user_id, dry_run,
        )
        return BookingResult(
            status="not_implemented",
            load_id=load_id,
            detail="Automated booking is not available",
        )
