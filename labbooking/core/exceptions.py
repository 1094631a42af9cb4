class BookingEngineError(RuntimeError):
    """Base class for errors raised by the booking engine."""
    pass


class CoordinatorBusyError(BookingEngineError):
    """Raised when a coordinated update is already in progress for the same entity."""

    def __init__(self, entity_key: str | None = None):
        self.entity_key = entity_key
        scope = f"'{entity_key}'" if entity_key else "all entities"
        super().__init__(f"An update for {scope} is already in progress, try again shortly.")


class SlotUnavailableError(BookingEngineError):
    """Raised when a requested time window conflicts with the lab schedule or another booking."""
    pass


class LabNotFoundError(BookingEngineError):
    """Raised when no schedule is known for a lab id."""
    pass


class BookingNotFoundError(BookingEngineError):
    """Raised when a reservation key does not resolve to a booking."""
    pass


class LeadTimeError(BookingEngineError):
    """Raised when a booking is too close to its start to be cancelled or modified."""
    pass


class CommitError(BookingEngineError):
    """Raised when the reservation store rejects a state transition."""
    pass


class BookingValidationError(BookingEngineError):
    """Raised when a booking request breaks one or more submission rules."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid booking request")


class InvalidTransitionError(BookingEngineError):
    """Raised when a booking is not in a state the requested transition can start from."""
    pass
