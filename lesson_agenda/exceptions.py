"""Errors raised by the agenda engine.

All of them derive from ValueError so routers that only know the generic
``except ValueError`` convention still turn them into client errors.
"""


class AgendaError(ValueError):
    pass


class ValidationError(AgendaError):
    """A deviation row would break one of its invariants.

    ``reason`` is a stable, machine-checkable code:
    original_immutable, outside_window, must_deviate, end_before_start, not_recurring.
    """

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason
        self.message = message


class ConflictError(AgendaError):
    """Unique (agreement_id, original_date) collision; retry as an update."""


class NotFoundError(AgendaError):
    """Target agreement or deviation is gone, or there is nothing left to change."""
