class DomainError(Exception):
    """Base class for errors raised by the booking domain."""


class ReservationValidationError(DomainError):
    """The request cannot be honoured given the current state. Never retried."""


class SlotUnavailableError(ReservationValidationError):
    def __init__(self, message: str = "The escape room time slot is no longer available") -> None:
        super().__init__(message)


class ReservationNotFoundError(ReservationValidationError):
    def __init__(self, message: str = "No reservation found") -> None:
        super().__init__(message)


class ReservationUnavailableError(ReservationValidationError):
    def __init__(self, message: str = "Reservation no longer available.") -> None:
        super().__init__(message)


class InconsistentStateError(ReservationValidationError):
    """A reservation and its slot disagree, or one of them is missing."""


class InvalidTransitionError(ReservationValidationError):
    pass


class VersionConflictError(DomainError):
    """A conditional write lost the race against a concurrent writer."""


class StoreUnavailableError(DomainError):
    """The record store failed for reasons unrelated to business state."""


class SlotAlreadyExistsError(DomainError):
    pass
