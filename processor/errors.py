"""Exception taxonomy for the traffic tracker.

ValidationError      unknown campaign or malformed sample, never retried.
VendorTransientError timeout, 429, 5xx or connection reset, retried with backoff.
VendorPermanentError any other vendor failure, logged and not retried.
PersistenceError     the backing store rejected a read or write.
"""


class TrackingError(Exception):
    """Base class for every error raised by the tracker."""


class ValidationError(TrackingError):
    pass


class CampaignNotFound(ValidationError):
    pass


class PersistenceError(TrackingError):
    pass


class VendorError(TrackingError):
    """A vendor call failed. ``status`` carries the HTTP status when there was one."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class VendorTransientError(VendorError):
    pass


class VendorTimeout(VendorTransientError):
    pass


class VendorRateLimited(VendorTransientError):
    pass


class VendorUnavailable(VendorTransientError):
    pass


class VendorPermanentError(VendorError):
    pass


class VendorProtocolError(VendorPermanentError):
    pass
