"""Error taxonomy shared by the store, the slot resolver and the negotiation engine."""


class SchedulingError(Exception):
    """Base class for every business-rule failure raised by the scheduling core."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(SchedulingError):
    """Malformed input, such as an end time that is not after the start time."""

    status_code = 400


class NoFieldsError(ValidationError):
    """An update payload that carries no field at all."""


class NotFoundError(SchedulingError):
    status_code = 404


class UnauthorizedError(SchedulingError):
    """The acting user is not the party allowed to perform the transition."""

    status_code = 403


class InvalidTransitionError(SchedulingError):
    """A status change that is not an edge of the state machine."""

    status_code = 409


class ConflictError(SchedulingError):
    """The requested window overlaps an active appointment of the professional."""

    status_code = 409
