"""
Domain errors raised by the workflow services.

Each blueprint maps them onto HTTP statuses through
``register_error_handlers``:

    ValidationError  400    ForbiddenError  403
    NotFoundError    404    ConflictError   409

Services check every precondition before writing, so a handler only ever
sees an untouched session. ``ImmutableHistoryError`` is a programming
error and surfaces as a 500.
"""


class PortalError(Exception):
    """Base class for errors the API turns into a JSON response."""


class ValidationError(PortalError):
    """Bad input or a state transition the assignment cannot make.

    ``details`` is returned to the client verbatim, e.g.
    ``{"returnToId": 7}`` when a mark-back target is not on the chain.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.details = dict(details or {})


class NotFoundError(PortalError):
    def __init__(self, resource: str, resource_id=None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        ref = resource if resource_id is None else f"{resource} {resource_id}"
        super().__init__(f"{ref} does not exist")


class ForbiddenError(PortalError):
    """Caller lacks access, lab scope, approval authority or delegation rights."""


class ConflictError(PortalError):
    def __init__(self, resource: str, field: str, value=None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"A {resource} already exists for {field}={value}")


class ImmutableHistoryError(Exception):
    """A persisted assignment's custody fields were about to be rewritten."""

    def __init__(self, field: str, assignment_id=None) -> None:
        self.field = field
        self.assignment_id = assignment_id
        super().__init__(f"FormAssignment {assignment_id}: '{field}' cannot change after insert")
