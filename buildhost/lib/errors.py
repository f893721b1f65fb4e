"""
Error taxonomy.

Services raise these; main.py renders every one of them as
``{"errors": [message]}`` with the class's HTTP status.
"""
from fastapi import status


class BuildhostError(Exception):
    """Base class for errors surfaced to API clients."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class MalformedInputError(BuildhostError):
    """Bad target format, missing or unparsable field."""
    status_code = status.HTTP_400_BAD_REQUEST


class UnauthenticatedError(BuildhostError):
    status_code = status.HTTP_401_UNAUTHORIZED


class AccessDeniedError(BuildhostError):
    """The acting user may not touch the requested namespace."""
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "access denied"):
        super().__init__(message)


class NotFoundError(BuildhostError):
    status_code = status.HTTP_404_NOT_FOUND


class UploadVerificationError(BuildhostError):
    """The client finalized a file whose object never landed in storage."""
    status_code = status.HTTP_400_BAD_REQUEST


class StorageError(BuildhostError):
    """Blob store call failed."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class StorageUnavailableError(StorageError):
    """Blob store did not answer in time. Safe to retry."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class InternalError(BuildhostError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
