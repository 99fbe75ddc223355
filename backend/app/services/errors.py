"""
Booking error taxonomy.

Routers translate these into HTTP responses (see main.py); sweeps and
worker handlers log and continue.
"""


class BookingError(Exception):
    """Base class for scheduling/booking failures."""


class BookingValidationError(BookingError):
    """Missing or malformed input. Raised before the store is touched."""


class SlotUnavailableError(BookingError):
    """Requested slot is no longer free."""

    def __init__(self, message: str = "Slot no longer available, please pick another time"):
        super().__init__(message)


class AppointmentNotFoundError(BookingError):
    pass


class InvalidTransitionError(BookingError):
    """Status change not allowed from the appointment's current state."""


class ProviderError(BookingError):
    """Payment, calendar or messaging provider failed or timed out."""


class CalendarAuthError(ProviderError):
    """Calendar tokens could not be refreshed; the stylist has to reconnect."""


class WebhookVerificationError(BookingError):
    """Payment webhook payload failed signature verification."""


class ScheduleIntegrityError(BookingError):
    """Overlapping active appointments found for one stylist."""
