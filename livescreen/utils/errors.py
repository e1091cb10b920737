from __future__ import annotations


class LiveScreenError(Exception):
    """Base class for failures scoped to a single operation."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LiveScreenError):
    """Malformed or missing input, caught before a command is issued."""

    status_code = 422


class InvalidTransition(ValidationError):
    """The command is not allowed in the session's current phase."""

    status_code = 409


class NotFoundError(ValidationError):
    status_code = 404


class AuthorizationError(ValidationError):
    """Write attempted without the assessor token."""

    status_code = 403


class PersistenceError(LiveScreenError):
    """Durable read/write failure; retry by re-issuing the action."""

    status_code = 503


class ChannelError(LiveScreenError):
    """Transport failure on the synchronization channel."""

    status_code = 503


class DataShapeError(LiveScreenError):
    """Stimulus payload is missing the fields a renderer or scorer needs."""

    status_code = 422
