"""Error taxonomy shared by the core, the web layer and the CLI."""


class TrackMeError(Exception):
    """Base class for errors surfaced to callers."""

    status_code = 500
    rate_limited = False

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class ValidationError(TrackMeError):
    """Bad input shape or an illegal state transition."""

    status_code = 400


class NotFoundError(TrackMeError):
    """Project or task absent, or not owned by the requesting principal."""

    status_code = 404


class ConflictError(TrackMeError):
    """A project was modified by another writer since it was read."""

    status_code = 409


class StorageError(TrackMeError):
    """The database rejected a read or write."""

    status_code = 500
