class DomainError(Exception):
    """Base class for errors the reservation core reports to its callers."""

    retryable = False


class InvalidWindowError(DomainError):
    """Time window is inverted, empty or starts too soon."""


class SlotUnavailableError(DomainError):
    """A blocking reservation already holds one of the requested spots."""


class InvalidStateError(DomainError):
    """Operation is not legal for the reservation's current status."""


class NotFoundError(DomainError):
    pass


class StoreUnavailableError(DomainError):
    """Persistence failed transiently; nothing was committed."""

    retryable = True
