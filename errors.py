# errors.py


class PlaytimeError(Exception):
    """Base class for every error raised by the playtime core."""


class NotFoundError(PlaytimeError):
    """A referenced activity or session does not exist."""


class ConflictError(PlaytimeError):
    """A user already has a live session."""


class ValidationError(PlaytimeError):
    """A duration is negative or otherwise unusable."""


class StorageError(PlaytimeError):
    """The database failed. Retrying the whole signal is safe."""
