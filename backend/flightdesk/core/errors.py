"""
Error taxonomy shared by the supplier client and the orchestration services.

Transport errors are retryable; supplier rejections are not retryable without
changed input; validation errors are raised before any supplier call.
"""


class FlightDeskError(Exception):
    """Base class for every error raised by the orchestration core."""


class TransportError(FlightDeskError):
    """Network or timeout failure talking to the supplier. Retryable."""


class NetworkUnreachable(TransportError):
    pass


class SupplierTimeout(TransportError):
    pass


class SupplierUnavailable(TransportError):
    """Supplier answered with a 5xx."""


class SupplierRejected(FlightDeskError):
    def __init__(self, code: str, message: str):
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message


class NotFoundError(FlightDeskError):
    """Stale or expired session, unknown order, unknown booking."""


class ValidationError(FlightDeskError):
    """Input is incomplete or malformed."""


class InvalidTransition(ValidationError):
    """The booking's current state does not allow the requested transition."""


class ConcurrencyConflict(FlightDeskError):
    """Lost the per-booking lock or compare-and-swap race."""


class PersistenceError(FlightDeskError):
    pass


class PaymentVerificationError(FlightDeskError):
    pass
