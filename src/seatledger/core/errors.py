"""
Exception taxonomy for the billing core.

Services raise these; the HTTP layer turns them into responses in a single
exception handler (see ``src.seatledger.main``).
"""


class BillingError(Exception):
    """Base class for every error raised by the billing core."""

    status_code = 400

    def __init__(self, message: str = "", **context):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.context = context


class ValidationError(BillingError):
    """Bad input shape or range."""

    status_code = 422


class NotFound(BillingError):
    status_code = 404


class SeatLimitExceeded(BillingError):
    status_code = 403


class InvalidQuantity(BillingError):
    status_code = 400


class InvariantViolation(BillingError):
    """Seat count would go negative, or an illegal status transition."""

    status_code = 409


class NoActiveSubscription(BillingError):
    status_code = 400


class PermissionDenied(BillingError):
    status_code = 403


class OrganizationBusy(BillingError):
    """The organization lock could not be acquired in time."""

    status_code = 503


class ProcessorError(BillingError):
    """An external payment processor call failed."""

    status_code = 502


class ProcessorDeclined(ProcessorError):
    status_code = 402


class ProcessorNotFound(ProcessorError):
    status_code = 404


class ProcessorTransient(ProcessorError):
    """Network failure, timeout, rate limit or processor-side outage."""

    status_code = 503


class WebhookSignatureError(BillingError):
    status_code = 400
