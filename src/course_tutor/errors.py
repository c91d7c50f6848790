"""Exceptions raised by the tutor."""


class TutorError(Exception):
    """Base exception for all tutor errors."""
    pass


class ValidationError(TutorError):
    """Malformed course/session reference or missing required field."""
    pass


class NotFoundError(TutorError):
    """Unknown course or session."""
    pass


class ConflictError(TutorError):
    """An active session already exists for this (user, course) pair."""
    pass


class GenerationFailure(TutorError):
    """The generation collaborator failed or timed out.

    Raised before any mastery or scheduling state is touched, so the turn
    can simply be retried.
    """
    pass


class PersistenceError(TutorError):
    """Writing the session to storage failed."""
    pass


class InvalidTransition(TutorError):
    """Attempt to move the session backwards through its phases."""
    pass
