class RecordStoreError(Exception):
    """Base class for every error raised by the record store."""


class NotFoundError(RecordStoreError):
    pass


class ConflictError(RecordStoreError):
    """A unique field (username, patient code) is already taken."""


class BadCredentialError(RecordStoreError):
    pass


class AuthenticationError(RecordStoreError):
    """
    Raised for any failed login.

    Unknown usernames and wrong passwords both end up here with the same
    message so callers cannot tell which part was wrong.
    """

    def __init__(self, message: str = "Invalid username or password"):
        super().__init__(message)


class ValidationError(RecordStoreError, ValueError):
    pass


class PermissionDeniedError(RecordStoreError):
    pass
